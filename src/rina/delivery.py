from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from typing import Protocol, runtime_checkable, TypeAlias

import anyio

from .errors import TransientDeliveryError, wrap_delivery_error
from .logging import get_logger
from .transport import PostContent, PostPayload, SentMessage, Thread

logger = get_logger(__name__)

DEFAULT_RETRY_DELAYS_S: tuple[float, ...] = (0.4, 1.2, 2.5)


@runtime_checkable
class LiveSource(Protocol):
    """A lazy fragment sequence posted as a single live message."""

    @property
    def consumed(self) -> bool: ...

    def drain(self) -> AsyncIterator[str]: ...


DeliveryUnit: TypeAlias = str | PostPayload | LiveSource


def _describe(unit: DeliveryUnit) -> str:
    if isinstance(unit, str):
        return "text"
    if isinstance(unit, PostPayload):
        return "files" if unit.files else "text"
    return "live"


class RetryingDelivery:
    def __init__(
        self,
        *,
        delays: Sequence[float] = DEFAULT_RETRY_DELAYS_S,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
    ) -> None:
        self._delays = tuple(delays)
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return len(self._delays) + 1

    def _content(self, unit: DeliveryUnit) -> PostContent:
        if isinstance(unit, str):
            return PostPayload(markdown=unit)
        if isinstance(unit, PostPayload):
            return unit
        return unit.drain()

    def _can_retry(self, unit: DeliveryUnit, attempt: int) -> bool:
        if attempt >= len(self._delays):
            return False
        # A live sequence can be replayed only while nothing has been pulled.
        if isinstance(unit, LiveSource) and unit.consumed:
            return False
        return True

    async def deliver(self, thread: Thread, unit: DeliveryUnit) -> SentMessage | None:
        kind = _describe(unit)
        attempt = 0
        while True:
            try:
                return await thread.post(self._content(unit))
            except Exception as exc:
                error = wrap_delivery_error(exc)
                if not isinstance(error, TransientDeliveryError) or not self._can_retry(
                    unit, attempt
                ):
                    logger.warning(
                        "delivery.failed",
                        kind=kind,
                        attempts=attempt + 1,
                        error=str(error),
                        error_type=exc.__class__.__name__,
                    )
                    if error is exc:
                        raise
                    raise error from exc
                delay = self._delays[attempt]
                attempt += 1
                logger.info(
                    "delivery.retry",
                    kind=kind,
                    attempt=attempt,
                    delay_s=delay,
                    error=str(error),
                )
                await self._sleep(delay)
