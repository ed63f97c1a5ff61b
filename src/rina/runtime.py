from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import Protocol, TypeAlias

from .errors import wrap_runtime_error
from .model import AgentEvent, ConversationTurn

DEFAULT_MAX_STEPS = 20

Prompt: TypeAlias = str | Sequence[ConversationTurn]


@dataclass(frozen=True, slots=True)
class AgentRunOptions:
    resume: str | None = None
    max_steps: int = DEFAULT_MAX_STEPS


class AgentRuntime(Protocol):
    def stream(
        self, prompt: Prompt, options: AgentRunOptions
    ) -> AsyncIterator[AgentEvent]: ...


async def iter_agent_events(
    runtime: AgentRuntime, prompt: Prompt, options: AgentRunOptions
) -> AsyncIterator[AgentEvent]:
    """Yield runtime events, wrapping pull failures into the error taxonomy."""
    iterator = runtime.stream(prompt, options)
    try:
        while True:
            try:
                event = await anext(iterator)
            except StopAsyncIteration:
                return
            except Exception as exc:
                error = wrap_runtime_error(exc)
                if error is exc:
                    raise
                raise error from exc
            yield event
    finally:
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()
