from __future__ import annotations

from typing import TypeAlias

from collections.abc import Awaitable, Callable

from .capabilities import quote_notice
from .delivery import RetryingDelivery
from .dispatcher import DispatchResult
from .errors import AgentProcessError
from .logging import get_logger
from .model import ThreadSession
from .transport import Thread

logger = get_logger(__name__)

SESSION_STATE_KEY = "agent_session_id"
RESUME_FAILED_NOTICE = quote_notice(
    "I couldn't resume the previous session context, so I started a new one."
)

RunTurn: TypeAlias = Callable[[str | None], Awaitable[DispatchResult]]


class SessionContinuity:
    """Stores the agent session per thread and resumes it on follow-ups."""

    def __init__(self, *, delivery: RetryingDelivery) -> None:
        self._delivery = delivery

    async def load(self, thread: Thread) -> ThreadSession | None:
        state = await thread.get_state()
        if not state:
            return None
        value = state.get(SESSION_STATE_KEY)
        if not isinstance(value, str) or not value:
            return None
        return ThreadSession(thread_id=thread.id, agent_session_id=value)

    async def save(self, thread: Thread, session_id: str) -> None:
        await thread.set_state({SESSION_STATE_KEY: session_id})
        logger.debug("session.saved", thread_id=thread.id, session_id=session_id)

    async def reset(self, thread: Thread) -> None:
        await thread.set_state({}, replace=True)
        logger.debug("session.cleared", thread_id=thread.id)

    async def run(
        self, thread: Thread, run_turn: RunTurn, *, resume: bool = True
    ) -> DispatchResult:
        session = await self.load(thread) if resume else None
        resume_id = session.agent_session_id if session is not None else None
        try:
            result = await run_turn(resume_id)
        except AgentProcessError as exc:
            if resume_id is None:
                raise
            logger.warning(
                "session.resume_failed",
                thread_id=thread.id,
                session_id=resume_id,
                error=str(exc),
            )
            await self.reset(thread)
            await self._delivery.deliver(thread, RESUME_FAILED_NOTICE)
            result = await run_turn(None)
        if result.session_id:
            await self.save(thread, result.session_id)
        return result
