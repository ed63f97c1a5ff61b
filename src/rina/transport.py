from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol, runtime_checkable, TypeAlias

AttachmentType: TypeAlias = Literal["image", "file", "video", "audio"]


@dataclass(frozen=True, slots=True)
class FileUpload:
    data: bytes = field(repr=False)
    filename: str
    mime_type: str


@dataclass(frozen=True, slots=True)
class PostPayload:
    markdown: str | None = None
    files: tuple[FileUpload, ...] = ()


PostContent: TypeAlias = str | PostPayload | AsyncIterator[str]


@dataclass(frozen=True, slots=True)
class SentMessage:
    id: str
    raw: Any | None = field(default=None, compare=False, hash=False)


@dataclass(frozen=True, slots=True)
class Author:
    user_id: str | None
    is_me: bool = False
    user_name: str | None = None
    full_name: str | None = None


@dataclass(frozen=True, slots=True)
class Attachment:
    type: AttachmentType
    mime_type: str | None = None
    data: bytes | None = field(default=None, repr=False)
    fetch_data: Callable[[], Awaitable[bytes | None]] | None = field(
        default=None, repr=False, compare=False
    )
    url: str | None = None
    name: str | None = None


@dataclass(frozen=True, slots=True)
class StoredMessage:
    id: str
    author: Author
    text: str = ""
    attachments: tuple[Attachment, ...] = ()


class Thread(Protocol):
    id: str
    channel_id: str
    platform: str
    is_dm: bool

    async def post(self, content: PostContent) -> SentMessage | None:
        """Post a static payload or consume a lazy text sequence.

        For a lazy sequence the call returns once the sequence is exhausted.
        """
        ...

    def all_messages(self) -> AsyncIterator[StoredMessage]:
        """Stored messages, oldest first. Restartable per call."""
        ...

    async def get_state(self) -> dict[str, Any] | None: ...

    async def set_state(
        self, state: dict[str, Any], *, replace: bool = False
    ) -> None: ...

    async def subscribe(self) -> None: ...


@runtime_checkable
class MessageFetcher(Protocol):
    """A thread that can re-read one of its messages from the platform."""

    async def fetch_message(self, message_id: str) -> StoredMessage | None: ...


class KeyedStore(Protocol):
    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl_ms: int | None = None) -> None: ...
