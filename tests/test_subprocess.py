import json
import subprocess
import sys
from contextlib import aclosing
from pathlib import Path

import anyio
import pytest

from rina.errors import AgentProcessError, AgentRuntimeError
from rina.handlers import GENERIC_ERROR_NOTICE, TurnHandler
from rina.model import SessionInit, TextDelta, TextEnd, TextStart
from rina.runners.claude import ClaudeCodeRuntime
from rina.runtime import AgentRunOptions
from rina.utils import subprocess as subprocess_utils
from rina.utils.streams import iter_lines
from tests.fakes import FakeSleep, FakeThread, user_message

FAKE_CLAUDE = """\
import json
import sys
import time

request = json.loads(sys.stdin.readline())
with open(sys.argv[0] + ".request", "w") as fh:
    json.dump({{"argv": sys.argv[1:], "request": request}}, fh)

def emit(obj):
    print(json.dumps(obj), flush=True)

emit({{"type": "system", "subtype": "init", "session_id": "fake-session"}})
print("this is not json", flush=True)
emit({{"type": "assistant", "message": {{"role": "assistant",
      "content": [{{"type": "text", "text": "echo"}}]}}}})
emit({{"type": "result", "subtype": "{subtype}", "is_error": {is_error},
      "result": "{result}"}})
print("stderr noise", file=sys.stderr, flush=True)
time.sleep({linger_s})
sys.exit({exit_code})
"""


def _fake_claude(
    tmp_path: Path,
    *,
    exit_code: int = 0,
    is_error: bool = False,
    result: str = "done",
    linger_s: float = 0.0,
) -> Path:
    script = tmp_path / "fake-claude"
    body = FAKE_CLAUDE.format(
        exit_code=exit_code,
        is_error="True" if is_error else "False",
        subtype="error_during_execution" if is_error else "success",
        result=result,
        linger_s=linger_s,
    )
    script.write_text(f"#!{sys.executable}\n{body}", encoding="utf-8")
    script.chmod(0o755)
    return script


@pytest.mark.anyio
async def test_iter_lines_yields_unterminated_tail() -> None:
    async with subprocess_utils.manage_subprocess(
        [sys.executable, "-c", "print('a'); print(); print('b', end='')"],
        stdout=subprocess.PIPE,
    ) as proc:
        assert proc.stdout is not None
        lines = [line async for line in iter_lines(proc.stdout)]
        await proc.wait()

    assert lines == [b"a", b"", b"b"]


@pytest.mark.anyio
async def test_manage_subprocess_terminates_on_exit() -> None:
    async with subprocess_utils.manage_subprocess(
        [sys.executable, "-c", "import time; time.sleep(30)"], grace_s=1.0
    ) as proc:
        assert proc.returncode is None

    assert proc.returncode is not None
    assert proc.returncode != 0


@pytest.mark.anyio
async def test_manage_subprocess_kills_when_terminate_times_out(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def fake_wait_for_exit(_proc, timeout: float) -> bool:
        _ = timeout
        return True

    monkeypatch.setattr(subprocess_utils, "wait_for_exit", fake_wait_for_exit)

    async with subprocess_utils.manage_subprocess(
        [
            sys.executable,
            "-c",
            "import signal, time; signal.signal(signal.SIGTERM, signal.SIG_IGN); "
            "time.sleep(10)",
        ]
    ) as proc:
        await anyio.sleep(0.2)
        assert proc.returncode is None

    assert proc.returncode is not None
    assert proc.returncode != 0


@pytest.mark.anyio
async def test_claude_runtime_against_fake_cli(tmp_path: Path) -> None:
    script = _fake_claude(tmp_path)
    runtime = ClaudeCodeRuntime(command=str(script), model="haiku")

    events = [
        event
        async for event in runtime.stream(
            "hello", AgentRunOptions(resume="prev", max_steps=3)
        )
    ]

    assert events == [
        SessionInit(session_id="fake-session"),
        TextStart(),
        TextDelta(text="echo"),
        TextEnd(),
    ]
    recorded = json.loads(Path(f"{script}.request").read_text(encoding="utf-8"))
    assert recorded["request"] == {
        "type": "user",
        "message": {"content": [{"type": "text", "text": "hello"}], "role": "user"},
    }
    argv = recorded["argv"]
    assert argv[argv.index("--resume") + 1] == "prev"
    assert argv[argv.index("--max-turns") + 1] == "3"
    assert argv[argv.index("--model") + 1] == "haiku"


@pytest.mark.anyio
async def test_claude_runtime_nonzero_exit(tmp_path: Path) -> None:
    runtime = ClaudeCodeRuntime(command=str(_fake_claude(tmp_path, exit_code=3)))

    with pytest.raises(
        AgentProcessError, match="claude code process exited with code 3"
    ):
        async for _ in runtime.stream("hello", AgentRunOptions()):
            pass


@pytest.mark.anyio
async def test_claude_runtime_error_result(tmp_path: Path) -> None:
    script = _fake_claude(tmp_path, is_error=True, result="max turns reached")
    runtime = ClaudeCodeRuntime(command=str(script))

    with pytest.raises(AgentRuntimeError, match="max turns reached") as exc_info:
        async for _ in runtime.stream("hello", AgentRunOptions()):
            pass

    assert not isinstance(exc_info.value, AgentProcessError)


@pytest.mark.anyio
async def test_claude_runtime_closed_mid_stream(tmp_path: Path) -> None:
    runtime = ClaudeCodeRuntime(command=str(_fake_claude(tmp_path, linger_s=30)))

    with anyio.fail_after(10):
        async with aclosing(runtime.stream("hello", AgentRunOptions())) as events:
            first = await anext(events)

    assert first == SessionInit(session_id="fake-session")


@pytest.mark.anyio
async def test_delivery_failure_mid_stream_posts_generic_notice(
    tmp_path: Path, fake_sleep: FakeSleep
) -> None:
    runtime = ClaudeCodeRuntime(command=str(_fake_claude(tmp_path, linger_s=30)))
    thread = FakeThread(failures=[ValueError("message rejected")])
    handler = TurnHandler(runtime=runtime, sleep=fake_sleep)

    with anyio.fail_after(10):
        handled = await handler.handle_new_mention(thread, user_message("m1", "hi"))

    assert handled is False
    assert thread.texts == [GENERIC_ERROR_NOTICE]
    assert thread.post_calls == 2
