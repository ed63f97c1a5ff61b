"""Inbound message handling: one user message in, one agent reply out."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from contextlib import aclosing
from weakref import WeakValueDictionary

import anyio
import httpx

from .access import AccessPolicy
from .capabilities import capabilities_for, quote_notice
from .delivery import RetryingDelivery
from .digest import build_digest_prelude, load_digest_context
from .dispatcher import DispatchResult, ResponseDispatcher
from .history import HistoryAssembler
from .logging import bind_run_context, clear_context, get_logger
from .media import (
    AttachmentLimits,
    extract_image_urls_from_text,
    upload_image_links,
)
from .model import ConversationTurn
from .prompt import build_prompt, compose_turns
from .runtime import AgentRunOptions, AgentRuntime, iter_agent_events
from .sessions import SessionContinuity
from .settings import RinaSettings
from .transport import KeyedStore, MessageFetcher, StoredMessage, Thread

logger = get_logger(__name__)

GENERIC_ERROR_NOTICE = (
    "I hit an internal error while generating a reply. Please try again."
)


class TurnHandler:
    def __init__(
        self,
        *,
        runtime: AgentRuntime,
        settings: RinaSettings | None = None,
        store: KeyedStore | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
    ) -> None:
        self.settings = settings or RinaSettings()
        self.runtime = runtime
        self.store = store
        self.http_client = http_client
        self.delivery = RetryingDelivery(
            delays=self.settings.retry_delays_s, sleep=sleep
        )
        self.sessions = SessionContinuity(delivery=self.delivery)
        self.limits = AttachmentLimits.from_settings(self.settings.attachments)
        self.history = HistoryAssembler(limits=self.limits)
        self.access = AccessPolicy(self.settings.access)
        self._locks: WeakValueDictionary[str, anyio.Lock] = WeakValueDictionary()

    def lock_for(self, thread: Thread) -> anyio.Lock:
        key = f"{thread.platform}:{thread.id}"
        lock = self._locks.get(key)
        if lock is None:
            lock = anyio.Lock()
            self._locks[key] = lock
        return lock

    async def handle_new_mention(self, thread: Thread, message: StoredMessage) -> bool:
        return await self._handle(thread, message, follow_up=False)

    async def handle_subscribed_message(
        self, thread: Thread, message: StoredMessage
    ) -> bool:
        if message.author.is_me:
            return False
        return await self._handle(thread, message, follow_up=True)

    async def handle_direct_message(
        self, thread: Thread, message: StoredMessage
    ) -> bool:
        if thread.platform != "telegram" or not thread.is_dm:
            return False
        return await self._handle(thread, message, follow_up=False)

    async def _handle(
        self, thread: Thread, message: StoredMessage, *, follow_up: bool
    ) -> bool:
        if not self.access.allows(thread, message):
            return False
        bind_run_context(
            platform=thread.platform,
            thread_id=thread.id,
            message_id=message.id,
        )
        try:
            logger.info(
                "handle.incoming",
                follow_up=follow_up,
                user_id=message.author.user_id,
                attachments=len(message.attachments),
            )
            lock = self.lock_for(thread)
            async with lock:
                try:
                    if not follow_up and self.settings.subscribe_on_mention:
                        await thread.subscribe()
                    await self.run_turn(thread, message, follow_up=follow_up)
                except Exception as exc:
                    logger.exception(
                        "handle.failed",
                        error=str(exc),
                        error_type=exc.__class__.__name__,
                    )
                    await self._post_error_notice(thread)
                    return False
            return True
        finally:
            clear_context()

    async def run_turn(
        self, thread: Thread, message: StoredMessage, *, follow_up: bool
    ) -> DispatchResult:
        message = await self._ensure_attachments(thread, message)
        built = await build_prompt(message, self.limits)
        if built.warnings:
            await self.delivery.deliver(thread, quote_notice("\n".join(built.warnings)))

        history: list[ConversationTurn] = []
        prelude: str | None = None
        if follow_up:
            history = await self.history.assemble(thread, exclude_id=message.id)
            prelude = await self._digest_prelude(thread)
        turns = compose_turns(history, built.content, prelude=prelude)
        capabilities = capabilities_for(self.settings, thread.platform)

        async def attempt(resume: str | None) -> DispatchResult:
            dispatcher = ResponseDispatcher(
                thread=thread,
                capabilities=capabilities,
                delivery=self.delivery,
                tool_status=self.settings.tool_status,
            )
            options = AgentRunOptions(resume=resume, max_steps=self.settings.max_steps)
            logger.info("handle.run", resume=resume, turns=len(turns))
            async with aclosing(
                iter_agent_events(self.runtime, turns, options)
            ) as events:
                return await dispatcher.run(events)

        result = await self.sessions.run(thread, attempt, resume=follow_up)
        await self._upload_images(thread, result.response_text)
        return result

    async def _ensure_attachments(
        self, thread: Thread, message: StoredMessage
    ) -> StoredMessage:
        """Re-read an attachment-less message; some platform events drop files."""
        if message.attachments or not isinstance(thread, MessageFetcher):
            return message
        try:
            fetched = await thread.fetch_message(message.id)
        except Exception as exc:
            logger.warning(
                "handle.refetch.failed",
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
            return message
        if fetched is None or not fetched.attachments:
            return message
        logger.info("handle.refetch.attachments", count=len(fetched.attachments))
        return fetched

    async def _digest_prelude(self, thread: Thread) -> str | None:
        if self.store is None:
            return None
        context = await load_digest_context(self.store, thread.id)
        if context is None:
            return None
        return build_digest_prelude(context)

    async def _upload_images(self, thread: Thread, response_text: str) -> None:
        settings = self.settings.outbound_images
        if not settings.enabled or not response_text:
            return
        if not extract_image_urls_from_text(response_text, limit=settings.max_images):
            return
        if self.http_client is not None:
            await upload_image_links(
                thread,
                response_text,
                delivery=self.delivery,
                client=self.http_client,
                settings=settings,
            )
            return
        async with httpx.AsyncClient(timeout=settings.timeout_s) as client:
            await upload_image_links(
                thread,
                response_text,
                delivery=self.delivery,
                client=client,
                settings=settings,
            )

    async def _post_error_notice(self, thread: Thread) -> None:
        try:
            await self.delivery.deliver(thread, GENERIC_ERROR_NOTICE)
        except Exception as exc:
            logger.warning(
                "handle.error_notice.failed",
                error=str(exc),
                error_type=exc.__class__.__name__,
            )
