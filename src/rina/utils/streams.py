from __future__ import annotations

from collections import deque
from collections.abc import AsyncIterator

import anyio
from anyio.abc import ByteReceiveStream
from anyio.streams.buffered import BufferedByteReceiveStream

from ..logging import get_logger

logger = get_logger(__name__)

MAX_LINE_BYTES = 16 * 1024 * 1024


async def iter_lines(
    stream: ByteReceiveStream, *, max_bytes: int = MAX_LINE_BYTES
) -> AsyncIterator[bytes]:
    """Yield newline-delimited lines (without the newline) until EOF."""
    buffered = BufferedByteReceiveStream(stream)
    while True:
        try:
            line = await buffered.receive_until(b"\n", max_bytes)
        except anyio.IncompleteRead:
            tail = buffered.buffer
            if tail.strip():
                yield bytes(tail)
            return
        yield line


async def drain_stderr(
    stream: ByteReceiveStream, tail: deque[str], tag: str
) -> None:
    async for raw in iter_lines(stream):
        line = raw.decode("utf-8", errors="replace")
        tail.append(line)
        logger.debug("subprocess.stderr", tag=tag, line=line)
