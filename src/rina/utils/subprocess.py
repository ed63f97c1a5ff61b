from __future__ import annotations

import os
import signal
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any

import anyio
from anyio.abc import Process

from ..logging import get_logger

logger = get_logger(__name__)

TERMINATE_GRACE_S = 2.0


async def wait_for_exit(proc: Process, timeout: float) -> bool:
    """Wait up to ``timeout`` seconds; return True if the process is still running."""
    with anyio.move_on_after(timeout) as scope:
        await proc.wait()
    return scope.cancel_called


def send_signal(proc: Process, sig: signal.Signals) -> None:
    if proc.returncode is not None:
        return
    if os.name == "posix" and proc.pid is not None:
        try:
            os.killpg(proc.pid, sig)
            return
        except ProcessLookupError:
            return
        except OSError as exc:
            logger.debug(
                "subprocess.signal.failed",
                signal=sig.name,
                error=str(exc),
                pid=proc.pid,
            )
    try:
        if sig == signal.SIGKILL:
            proc.kill()
        else:
            proc.terminate()
    except ProcessLookupError:
        return


@asynccontextmanager
async def manage_subprocess(
    cmd: Sequence[str], *, grace_s: float = TERMINATE_GRACE_S, **kwargs: Any
) -> AsyncIterator[Process]:
    """Open ``cmd`` in its own process group and reap it on exit.

    A process still running when the block exits gets SIGTERM, then SIGKILL
    after ``grace_s`` seconds.
    """
    if os.name == "posix":
        kwargs.setdefault("start_new_session", True)
    proc = await anyio.open_process(list(cmd), **kwargs)
    try:
        yield proc
    finally:
        if proc.returncode is None:
            with anyio.CancelScope(shield=True):
                send_signal(proc, signal.SIGTERM)
                if await wait_for_exit(proc, grace_s):
                    send_signal(proc, signal.SIGKILL)
                    await proc.wait()
