"""Rebuild the model-facing conversation from a thread's message log."""

from __future__ import annotations

from .logging import get_logger
from .media import AttachmentLimits, extract_media_parts
from .model import ContentPart, ConversationTurn, TextPart, merge_turns
from .prompt import labeled_text
from .transport import StoredMessage, Thread

logger = get_logger(__name__)

SYNTHETIC_MEDIA_NOTE = "[This is the file you just posted to the chat.]"
MEDIA_ONLY_TEXT = "See attached file(s)."
EMPTY_MESSAGE_TEXT = "(empty message)"


class HistoryAssembler:
    def __init__(self, *, limits: AttachmentLimits | None = None) -> None:
        self._limits = limits or AttachmentLimits()

    async def turns_for_message(
        self, message: StoredMessage
    ) -> list[ConversationTurn]:
        text = message.text.strip()
        if not text and not message.attachments:
            return []

        if message.author.is_me:
            turns: list[ConversationTurn] = []
            if text:
                turns.append(ConversationTurn(role="assistant", content=text))
            media = await extract_media_parts(message, self._limits)
            if media:
                parts: tuple[ContentPart, ...] = (
                    TextPart(text=SYNTHETIC_MEDIA_NOTE),
                    *media,
                )
                turns.append(ConversationTurn(role="user", content=parts))
            return turns

        label = labeled_text(message)
        media = await extract_media_parts(message, self._limits)
        if media:
            parts = (TextPart(text=label or MEDIA_ONLY_TEXT), *media)
            return [ConversationTurn(role="user", content=parts)]
        return [ConversationTurn(role="user", content=label or EMPTY_MESSAGE_TEXT)]

    async def assemble(
        self, thread: Thread, *, exclude_id: str | None
    ) -> list[ConversationTurn]:
        """Return alternating turns for ``thread``, oldest first.

        The message with id ``exclude_id`` (the one being answered) is left
        out; the caller appends it as the live turn.
        """
        raw: list[ConversationTurn] = []
        async for message in thread.all_messages():
            if exclude_id is not None and message.id == exclude_id:
                continue
            raw.extend(await self.turns_for_message(message))
        merged = merge_turns(raw)
        logger.debug(
            "history.assembled",
            thread_id=thread.id,
            turns=len(merged),
            raw_turns=len(raw),
        )
        return merged
