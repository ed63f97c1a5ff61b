from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from .errors import AttachmentError
from .logging import get_logger
from .media import AttachmentLimits, attachment_to_media_part, is_supported_attachment
from .model import ContentPart, ConversationTurn, TextPart, TurnContent, merge_turns
from .transport import Author, StoredMessage

logger = get_logger(__name__)

EMPTY_PROMPT_TEXT = "Hello"
ATTACHMENTS_ONLY_TEXT = "Please analyze the attached file(s)."
NO_READABLE_ATTACHMENTS_TEXT = (
    "I tried to process your attachments, but none could be read. "
    "Ask me to re-upload."
)


@dataclass(frozen=True, slots=True)
class PromptBuild:
    content: TurnContent
    warnings: tuple[str, ...] = field(default=())

    def turn(self) -> ConversationTurn:
        return ConversationTurn(role="user", content=self.content)


def author_prefix(author: Author | None) -> str:
    if author is None or author.is_me:
        return ""
    name = author.user_name or author.full_name or ""
    user_id = author.user_id or ""
    if name and user_id:
        return f"[user: @{name} ({user_id})] "
    if user_id:
        return f"[user: {user_id}] "
    if name:
        return f"[user: @{name}] "
    return ""


def labeled_text(message: StoredMessage) -> str:
    return (author_prefix(message.author) + message.text.strip()).strip()


async def build_prompt(
    message: StoredMessage, limits: AttachmentLimits | None = None
) -> PromptBuild:
    """Build the live user turn for ``message``.

    Attachments that cannot be read are skipped and reported in
    ``warnings`` so the caller can tell the user what was dropped.
    """
    limits = limits or AttachmentLimits()
    text = labeled_text(message)
    supported = [a for a in message.attachments if is_supported_attachment(a)]
    if not supported:
        return PromptBuild(content=text or EMPTY_PROMPT_TEXT)

    warnings: list[str] = []
    parts: list[ContentPart] = [TextPart(text=text or ATTACHMENTS_ONLY_TEXT)]
    for index, attachment in enumerate(supported[: limits.max_attachments], start=1):
        try:
            part = await attachment_to_media_part(attachment, limits)
        except AttachmentError as exc:
            logger.info(
                "prompt.attachment.failed",
                index=index,
                attachment=attachment.name,
                error=str(exc),
            )
            warnings.append(f"Couldn't process attachment #{index}; skipped it.")
            continue
        if part is None:
            logger.info(
                "prompt.attachment.skipped",
                index=index,
                attachment=attachment.name,
                mime_type=attachment.mime_type,
            )
            warnings.append(
                f"Couldn't read attachment #{index} "
                f"({attachment.name or 'unknown'}); skipped it."
            )
            continue
        parts.append(part)

    if len(supported) > limits.max_attachments:
        warnings.append(
            f"Only the first {limits.max_attachments} attachments were sent to the model."
        )

    if len(parts) == 1:
        return PromptBuild(
            content=text or NO_READABLE_ATTACHMENTS_TEXT, warnings=tuple(warnings)
        )
    return PromptBuild(content=tuple(parts), warnings=tuple(warnings))


def compose_turns(
    history: Sequence[ConversationTurn],
    content: TurnContent,
    *,
    prelude: str | None = None,
) -> list[ConversationTurn]:
    """Append an optional prelude and the live turn, keeping roles alternating."""
    turns = list(history)
    if prelude:
        turns.append(ConversationTurn(role="user", content=prelude))
    turns.append(ConversationTurn(role="user", content=content))
    return merge_turns(turns)
