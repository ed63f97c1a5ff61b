"""Attachment reading and image-link handling for chat messages."""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass
from urllib.parse import urlsplit

import httpx

from .delivery import RetryingDelivery
from .errors import AttachmentError
from .logging import get_logger
from .model import FilePart, ImagePart, MediaPart
from .settings import MEGABYTE, AttachmentSettings, OutboundImageSettings
from .transport import Attachment, FileUpload, PostPayload, StoredMessage, Thread

logger = get_logger(__name__)

IMAGE_EXT_TO_MIME: dict[str, str] = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
    "bmp": "image/bmp",
    "tif": "image/tiff",
    "tiff": "image/tiff",
    "svg": "image/svg+xml",
}
SUPPORTED_FILE_MIMES = frozenset({"application/pdf", "text/plain"})
DEFAULT_IMAGE_MIME = "image/png"

UPLOAD_FAILED_NOTICE = (
    "I found image links in my response, but couldn't upload them to this platform."
)

_EXTENSION_RE = re.compile(r"\.([a-zA-Z0-9]+)$")
_MARKDOWN_IMAGE_RE = re.compile(r"!\[[^\]]*]\((https?://[^)\s]+)\)", re.IGNORECASE)
_BARE_URL_RE = re.compile(r"(https?://[^\s<>\"'`]+)", re.IGNORECASE)
_IMAGE_URL_RE = re.compile(
    r"\.(png|jpg|jpeg|gif|webp|bmp|tiff?|svg)(\?.*)?$", re.IGNORECASE
)
_TRAILING_PUNCT_RE = re.compile(r"[),.!?]+$")
_UNSAFE_FILENAME_RE = re.compile(r"[^a-zA-Z0-9._-]")
_LOCAL_HOSTNAMES = frozenset({"localhost", "127.0.0.1", "::1", "0.0.0.0"})


@dataclass(frozen=True, slots=True)
class AttachmentLimits:
    max_attachments: int = 4
    max_image_bytes: int = 5 * MEGABYTE
    max_file_bytes: int = 10 * MEGABYTE

    @classmethod
    def from_settings(cls, settings: AttachmentSettings) -> AttachmentLimits:
        return cls(
            max_attachments=settings.max_attachments,
            max_image_bytes=settings.max_image_bytes,
            max_file_bytes=settings.max_file_bytes,
        )


def file_extension(value: str) -> str | None:
    match = _EXTENSION_RE.search(value)
    if match is None:
        return None
    return match.group(1).lower()


def infer_mime_from_url(url: str | None) -> str | None:
    if not url:
        return None
    try:
        path = urlsplit(url).path
    except ValueError:
        return None
    ext = file_extension(path)
    if ext is None:
        return None
    return IMAGE_EXT_TO_MIME.get(ext)


def is_supported_mime(mime_type: str | None) -> bool:
    if not mime_type:
        return False
    return mime_type.startswith("image/") or mime_type in SUPPORTED_FILE_MIMES


def is_supported_attachment(attachment: Attachment) -> bool:
    return is_supported_mime(attachment.mime_type) or attachment.type == "image"


async def read_attachment_data(attachment: Attachment) -> bytes | None:
    if attachment.data is not None:
        return attachment.data
    if attachment.fetch_data is None:
        return None
    try:
        return await attachment.fetch_data()
    except Exception as exc:
        label = attachment.name or attachment.url or "attachment"
        raise AttachmentError(f"failed to fetch {label}") from exc


async def attachment_to_media_part(
    attachment: Attachment, limits: AttachmentLimits
) -> MediaPart | None:
    """Convert one attachment into a model content part.

    Returns ``None`` when the attachment is unsupported, empty or too large.
    Raises :class:`AttachmentError` when fetching the data fails.
    """
    data = await read_attachment_data(attachment)
    if not data:
        return None

    raw_mime = attachment.mime_type or ""
    if raw_mime.startswith("image/"):
        if len(data) > limits.max_image_bytes:
            return None
        return ImagePart(data=data, media_type=raw_mime)

    if raw_mime in SUPPORTED_FILE_MIMES:
        if len(data) > limits.max_file_bytes:
            return None
        return FilePart(data=data, media_type=raw_mime, filename=attachment.name)

    inferred = infer_mime_from_url(attachment.url) or infer_mime_from_url(
        attachment.name
    )
    if inferred is None and attachment.type == "image":
        inferred = DEFAULT_IMAGE_MIME
    if inferred is not None and inferred.startswith("image/"):
        if len(data) > limits.max_image_bytes:
            return None
        return ImagePart(data=data, media_type=inferred)
    return None


async def extract_media_parts(
    message: StoredMessage, limits: AttachmentLimits
) -> list[MediaPart]:
    candidates = [a for a in message.attachments if is_supported_attachment(a)]
    parts: list[MediaPart] = []
    for attachment in candidates[: limits.max_attachments]:
        try:
            part = await attachment_to_media_part(attachment, limits)
        except AttachmentError as exc:
            logger.debug(
                "media.history.skipped",
                message_id=message.id,
                attachment=attachment.name,
                error=str(exc),
            )
            continue
        if part is not None:
            parts.append(part)
    return parts


def is_private_or_local_host(host: str) -> bool:
    normalized = host.lower().strip("[]")
    if normalized in _LOCAL_HOSTNAMES:
        return True
    try:
        address = ipaddress.ip_address(normalized)
    except ValueError:
        return False
    return (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_unspecified
    )


def _strip_trailing_punctuation(url: str) -> str:
    return _TRAILING_PUNCT_RE.sub("", url)


def _is_public_http_url(raw_url: str) -> bool:
    try:
        parts = urlsplit(raw_url)
    except ValueError:
        return False
    if parts.scheme not in {"http", "https"} or not parts.hostname:
        return False
    return not is_private_or_local_host(parts.hostname)


def extract_image_urls_from_text(text: str, *, limit: int = 3) -> list[str]:
    found: dict[str, None] = {}
    for match in _MARKDOWN_IMAGE_RE.finditer(text):
        found.setdefault(_strip_trailing_punctuation(match.group(1)), None)
    for match in _BARE_URL_RE.finditer(text):
        value = _strip_trailing_punctuation(match.group(1))
        if _IMAGE_URL_RE.search(value):
            found.setdefault(value, None)
    return [url for url in found if _is_public_http_url(url)][:limit]


def _extension_for_mime(mime_type: str) -> str:
    for ext, mime in IMAGE_EXT_TO_MIME.items():
        if mime == mime_type:
            return ext
    return "png"


def build_image_filename(url: str, mime_type: str) -> str:
    raw_name = urlsplit(url).path.rsplit("/", 1)[-1] or "image"
    sanitized = _UNSAFE_FILENAME_RE.sub("_", raw_name) or "image"
    if file_extension(sanitized):
        return sanitized
    return f"{sanitized}.{_extension_for_mime(mime_type)}"


async def download_image(
    client: httpx.AsyncClient, url: str, *, max_bytes: int
) -> FileUpload | None:
    async with client.stream("GET", url, follow_redirects=True) as response:
        if not response.is_success:
            logger.debug("media.download.status", url=url, status=response.status_code)
            return None
        header = response.headers.get("content-type", "")
        mime_type = header.split(";", 1)[0].strip().lower()
        if not mime_type.startswith("image/"):
            mime_type = infer_mime_from_url(url) or DEFAULT_IMAGE_MIME
        chunks: list[bytes] = []
        size = 0
        async for chunk in response.aiter_bytes():
            size += len(chunk)
            if size > max_bytes:
                logger.debug("media.download.too_large", url=url, max_bytes=max_bytes)
                return None
            chunks.append(chunk)
    data = b"".join(chunks)
    if not data:
        return None
    return FileUpload(
        data=data, filename=build_image_filename(url, mime_type), mime_type=mime_type
    )


async def upload_image_links(
    thread: Thread,
    response_text: str,
    *,
    delivery: RetryingDelivery,
    client: httpx.AsyncClient,
    settings: OutboundImageSettings | None = None,
) -> int:
    """Re-post images linked in a reply as uploads. Never raises."""
    settings = settings or OutboundImageSettings()
    if not settings.enabled or not response_text:
        return 0
    urls = extract_image_urls_from_text(response_text, limit=settings.max_images)
    if not urls:
        return 0

    uploaded = 0
    for url in urls:
        try:
            upload = await download_image(
                client, url, max_bytes=settings.max_image_bytes
            )
            if upload is None:
                continue
            await delivery.deliver(
                thread,
                PostPayload(markdown=f"Uploaded image from {url}", files=(upload,)),
            )
            uploaded += 1
        except Exception as exc:
            logger.info(
                "media.upload.failed",
                url=url,
                error=str(exc),
                error_type=exc.__class__.__name__,
            )

    if uploaded == 0:
        try:
            await delivery.deliver(thread, UPLOAD_FAILED_NOTICE)
        except Exception as exc:
            logger.info("media.upload.notice_failed", error=str(exc))
    logger.info("media.upload.done", found=len(urls), uploaded=uploaded)
    return uploaded
