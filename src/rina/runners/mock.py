from __future__ import annotations

from typing import TypeAlias

from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass

import anyio

from ..model import AgentEvent, SessionInit, TextDelta, TextEnd, TextStart
from ..runtime import AgentRunOptions, Prompt


@dataclass(frozen=True, slots=True)
class Raise:
    error: Exception


@dataclass(frozen=True, slots=True)
class Wait:
    event: anyio.Event


@dataclass(frozen=True, slots=True)
class Sleep:
    seconds: float


ScriptStep: TypeAlias = AgentEvent | Raise | Wait | Sleep


def text_reply(*segments: str, session_id: str | None = None) -> list[AgentEvent]:
    events: list[AgentEvent] = []
    if session_id is not None:
        events.append(SessionInit(session_id=session_id))
    for segment in segments:
        events.extend([TextStart(), TextDelta(text=segment), TextEnd()])
    return events


class ScriptedRuntime:
    """Replays prepared event scripts, one script per ``stream`` call."""

    def __init__(
        self,
        *scripts: Iterable[ScriptStep],
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
    ) -> None:
        self._scripts: deque[Sequence[ScriptStep]] = deque(
            tuple(script) for script in scripts
        )
        self._sleep = sleep
        self.calls: list[tuple[Prompt, AgentRunOptions]] = []

    @property
    def remaining(self) -> int:
        return len(self._scripts)

    async def stream(
        self, prompt: Prompt, options: AgentRunOptions
    ) -> AsyncIterator[AgentEvent]:
        self.calls.append((prompt, options))
        if not self._scripts:
            raise RuntimeError("no scripted run left")
        script = self._scripts.popleft()
        for step in script:
            if isinstance(step, Raise):
                raise step.error
            if isinstance(step, Wait):
                await step.event.wait()
                continue
            if isinstance(step, Sleep):
                await self._sleep(step.seconds)
                continue
            yield step
