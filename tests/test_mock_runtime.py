import pytest

from rina.errors import AgentRuntimeError
from rina.model import SessionInit, TextDelta, TextEnd, TextStart
from rina.runners.mock import Raise, ScriptedRuntime, Sleep, text_reply
from rina.runtime import AgentRunOptions, iter_agent_events
from tests.fakes import FakeSleep


def test_text_reply_builds_segments() -> None:
    assert text_reply("a", "b", session_id="s") == [
        SessionInit(session_id="s"),
        TextStart(),
        TextDelta(text="a"),
        TextEnd(),
        TextStart(),
        TextDelta(text="b"),
        TextEnd(),
    ]


@pytest.mark.anyio
async def test_scripts_are_replayed_in_order(fake_sleep: FakeSleep) -> None:
    runtime = ScriptedRuntime(
        [Sleep(0.5), TextStart()], [TextEnd()], sleep=fake_sleep
    )
    options = AgentRunOptions(resume="r1")

    first = [event async for event in runtime.stream("one", options)]
    second = [event async for event in runtime.stream("two", options)]

    assert first == [TextStart()]
    assert second == [TextEnd()]
    assert fake_sleep.calls == [0.5]
    assert runtime.calls == [("one", options), ("two", options)]
    assert runtime.remaining == 0


@pytest.mark.anyio
async def test_raised_errors_are_wrapped_by_iter_agent_events() -> None:
    runtime = ScriptedRuntime([TextStart(), Raise(ValueError("bad frame"))])
    seen = []

    with pytest.raises(AgentRuntimeError, match="bad frame"):
        async for event in iter_agent_events(runtime, "x", AgentRunOptions()):
            seen.append(event)

    assert seen == [TextStart()]


@pytest.mark.anyio
async def test_exhausted_runtime_raises() -> None:
    runtime = ScriptedRuntime()

    with pytest.raises(RuntimeError, match="no scripted run left"):
        async for _ in runtime.stream("x", AgentRunOptions()):
            pass

    assert runtime.calls == [("x", AgentRunOptions())]
