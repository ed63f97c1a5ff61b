"""Turn an agent event stream into an ordered series of platform posts."""

from __future__ import annotations

from collections.abc import AsyncIterable, Mapping
from dataclasses import dataclass, field
from typing import Literal, TypeAlias

import anyio

from .capabilities import PlatformCapabilities, quote_notice
from .delivery import RetryingDelivery
from .logging import bind_run_context, get_logger, truncate_for_log
from .model import (
    AgentEvent,
    SessionInit,
    TextDelta,
    TextEnd,
    TextStart,
    ToolInvocationStart,
    ToolResult,
)
from .relay import StreamRelay
from .segment import split_long_text
from .settings import DEFAULT_TOOL_STATUS
from .transport import Thread

logger = get_logger(__name__)

DispatchState: TypeAlias = Literal["idle", "in_segment"]


@dataclass(slots=True)
class DispatchResult:
    session_id: str | None = None
    response_text: str = ""
    segments: int = 0
    notices: int = 0
    tools: list[str] = field(default_factory=list)


class ResponseDispatcher:
    """Walks one agent event stream and delivers its prose and tool notices.

    Live platforms get one streaming post per prose segment through a
    :class:`StreamRelay`; buffering platforms get each segment re-split to the
    platform's message limit once the segment ends. Deliveries happen in
    event order and never overlap: a tool notice arriving while a live
    segment is open is held until that segment's post completes.
    """

    def __init__(
        self,
        *,
        thread: Thread,
        capabilities: PlatformCapabilities,
        delivery: RetryingDelivery,
        tool_status: Mapping[str, str] | None = None,
    ) -> None:
        self._thread = thread
        self._capabilities = capabilities
        self._delivery = delivery
        self._tool_status = DEFAULT_TOOL_STATUS if tool_status is None else tool_status
        self.state: DispatchState = "idle"
        self._buffer: list[str] = []
        self._response: list[str] = []
        self._relay: StreamRelay | None = None
        self._held_notices: list[str] = []
        self._result = DispatchResult()

    @property
    def live(self) -> bool:
        return self._capabilities.live_streaming

    async def run(self, events: AsyncIterable[AgentEvent]) -> DispatchResult:
        error: Exception | None = None
        async with anyio.create_task_group() as tg:
            if self.live:
                self._relay = StreamRelay(
                    thread=self._thread, delivery=self._delivery, task_group=tg
                )
            try:
                async for event in events:
                    await self.on_event(event)
                if self.state == "in_segment":
                    logger.warning("dispatch.segment.unclosed")
                    await self._close_segment()
            except Exception as exc:
                error = exc
                tg.cancel_scope.cancel()
        if error is not None:
            logger.info(
                "dispatch.aborted",
                error=str(error),
                error_type=error.__class__.__name__,
                segments=self._result.segments,
            )
            raise error
        self._result.response_text = "".join(self._response)
        logger.info(
            "dispatch.completed",
            segments=self._result.segments,
            notices=self._result.notices,
            response_len=len(self._result.response_text),
        )
        return self._result

    async def on_event(self, event: AgentEvent) -> None:
        if isinstance(event, TextStart):
            if self.state == "in_segment":
                logger.warning("dispatch.segment.restarted")
                await self._close_segment()
            self._open_segment()
        elif isinstance(event, TextDelta):
            if self.state != "in_segment":
                logger.warning("dispatch.delta.orphaned", length=len(event.text))
                return
            if not event.text:
                return
            self._response.append(event.text)
            if self._relay is not None:
                self._relay.push(event.text)
            else:
                self._buffer.append(event.text)
        elif isinstance(event, TextEnd):
            if self.state != "in_segment":
                logger.debug("dispatch.end.orphaned")
                return
            await self._close_segment()
        elif isinstance(event, ToolInvocationStart):
            await self._on_tool_start(event.tool_name)
        elif isinstance(event, ToolResult):
            logger.debug(
                "dispatch.tool.result",
                tool=event.tool_name,
                output=truncate_for_log(_render_output(event.output)),
            )
        elif isinstance(event, SessionInit):
            if self._result.session_id is None:
                self._result.session_id = event.session_id
                bind_run_context(session_id=event.session_id)
        else:
            logger.debug(
                "dispatch.event.ignored", event_type=getattr(event, "type", None)
            )

    def _open_segment(self) -> None:
        self.state = "in_segment"
        self._buffer = []
        if self._relay is not None:
            self._relay.open()

    async def _close_segment(self) -> None:
        self.state = "idle"
        self._result.segments += 1
        if self._relay is not None:
            await self._relay.close()
            logger.debug("dispatch.segment.closed", mode="live")
            await self._flush_notices()
            return
        text = "".join(self._buffer)
        self._buffer = []
        if not text.strip():
            logger.debug("dispatch.segment.empty")
            return
        chunks = split_long_text(text, self._capabilities.max_message_length)
        for chunk in chunks:
            await self._delivery.deliver(self._thread, chunk)
        logger.debug("dispatch.segment.closed", mode="buffered", chunks=len(chunks))

    async def _on_tool_start(self, name: str) -> None:
        logger.debug("dispatch.tool.start", tool=name)
        self._result.tools.append(name)
        status = self._tool_status.get(name)
        if not status:
            return
        if self._relay is not None and self.state == "in_segment":
            # The live post is still open; notices wait for it to finish.
            self._held_notices.append(status)
            return
        await self._post_notice(status)

    async def _flush_notices(self) -> None:
        held, self._held_notices = self._held_notices, []
        for status in held:
            await self._post_notice(status)

    async def _post_notice(self, status: str) -> None:
        await self._delivery.deliver(self._thread, quote_notice(status))
        self._result.notices += 1


def _render_output(output: object) -> str:
    if output is None:
        return ""
    if isinstance(output, str):
        return output
    if isinstance(output, (list, tuple)):
        return "\n".join(_render_output(item) for item in output)
    if isinstance(output, dict):
        text = output.get("text")
        if isinstance(text, str):
            return text
    return repr(output)


__all__ = ["DispatchResult", "ResponseDispatcher"]
