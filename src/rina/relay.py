"""Push-to-pull bridge for live message posts.

The dispatcher pushes fragments as the agent produces them while the
platform's post call pulls them through :meth:`StreamRelay.drain`. One relay
instance serves any number of consecutive segments; each segment gets its
own channel, opened with :meth:`StreamRelay.open` and finished with
:meth:`StreamRelay.close`.
"""

from __future__ import annotations

import math
from collections.abc import AsyncIterator

import anyio
from anyio.abc import TaskGroup
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from .delivery import RetryingDelivery
from .logging import get_logger
from .transport import SentMessage, Thread

logger = get_logger(__name__)


class StreamRelay:
    def __init__(
        self,
        *,
        thread: Thread,
        delivery: RetryingDelivery,
        task_group: TaskGroup,
    ) -> None:
        self._thread = thread
        self._delivery = delivery
        self._task_group = task_group
        self._send: MemoryObjectSendStream[str] | None = None
        self._receive: MemoryObjectReceiveStream[str] | None = None
        self._done: anyio.Event | None = None
        self._error: Exception | None = None
        self._consumed = False
        self.segments = 0
        self.last_sent: SentMessage | None = None

    @property
    def is_open(self) -> bool:
        return self._send is not None

    @property
    def consumed(self) -> bool:
        return self._consumed

    def open(self) -> anyio.Event:
        if self._send is not None:
            raise RuntimeError("relay segment is already open")
        send, receive = anyio.create_memory_object_stream[str](math.inf)
        done = anyio.Event()
        self._send = send
        self._receive = receive
        self._done = done
        self._error = None
        self._consumed = False
        self.segments += 1
        self._task_group.start_soon(self._post, receive, done)
        logger.debug("relay.opened", segment=self.segments)
        return done

    def push(self, fragment: str) -> None:
        if self._send is None:
            raise RuntimeError("relay segment is not open")
        try:
            self._send.send_nowait(fragment)
        except anyio.BrokenResourceError:
            # The post already failed; close() reports it.
            logger.debug("relay.push.dropped", segment=self.segments)

    async def close(self) -> None:
        send, done = self._send, self._done
        if send is None or done is None:
            return
        self._send = None
        send.close()
        await done.wait()
        self._done = None
        error, self._error = self._error, None
        logger.debug("relay.closed", segment=self.segments, failed=error is not None)
        if error is not None:
            raise error

    async def drain(self) -> AsyncIterator[str]:
        receive = self._receive
        if receive is None:
            raise RuntimeError("relay segment is not open")
        async for fragment in receive:
            self._consumed = True
            yield fragment

    async def _post(
        self, receive: MemoryObjectReceiveStream[str], done: anyio.Event
    ) -> None:
        try:
            with receive:
                self.last_sent = await self._delivery.deliver(self._thread, self)
        except Exception as exc:
            self._error = exc
        finally:
            if self._receive is receive:
                self._receive = None
            done.set()
