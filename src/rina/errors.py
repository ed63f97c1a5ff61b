"""Error taxonomy for the response bridge.

Raw exceptions coming out of a platform adapter or an agent runtime are
wrapped into one of these kinds at the boundary where they enter the core,
so downstream code branches on types instead of inspecting messages.
"""

from __future__ import annotations

import errno

import httpx

TRANSIENT_ERROR_CODES = frozenset(
    {
        "NETWORK_ERROR",
        "UND_ERR_CONNECT_TIMEOUT",
        "ETIMEDOUT",
        "ECONNRESET",
    }
)
TRANSIENT_ERRNOS = frozenset({errno.ETIMEDOUT, errno.ECONNRESET})
TRANSIENT_MESSAGE_MARKERS = (
    "network error",
    "connect timeout",
    "connection reset",
    "timed out",
)
AGENT_PROCESS_MARKERS = (
    "process exited with code",
    "failed to spawn",
)


class RinaError(Exception):
    """Base exception class for Rina errors."""


class ConfigError(RinaError):
    """Raised when settings fail validation."""


class DeliveryError(RinaError):
    """A platform post failed and must not be retried."""


class TransientDeliveryError(DeliveryError):
    """A platform post failed with a network timeout or reset."""


class AgentRuntimeError(RinaError):
    """Pulling the agent event stream failed."""


class AgentProcessError(AgentRuntimeError):
    """The agent process crashed or could not be spawned."""


class AttachmentError(RinaError):
    """An attachment could not be read."""


def _error_codes(exc: BaseException) -> list[object]:
    codes: list[object] = [getattr(exc, "code", None)]
    for nested in (exc.__cause__, getattr(exc, "original_error", None)):
        if nested is not None:
            codes.append(getattr(nested, "code", None))
    return codes


def is_transient_network_error(exc: BaseException) -> bool:
    if isinstance(exc, TransientDeliveryError):
        return True
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    if isinstance(exc, (TimeoutError, ConnectionResetError)):
        return True
    if isinstance(exc, OSError) and exc.errno in TRANSIENT_ERRNOS:
        return True
    if any(
        isinstance(code, str) and code in TRANSIENT_ERROR_CODES
        for code in _error_codes(exc)
    ):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in TRANSIENT_MESSAGE_MARKERS)


def wrap_delivery_error(exc: Exception) -> DeliveryError:
    if isinstance(exc, DeliveryError):
        return exc
    message = str(exc) or exc.__class__.__name__
    if is_transient_network_error(exc):
        return TransientDeliveryError(message)
    return DeliveryError(message)


def is_agent_process_error(exc: BaseException) -> bool:
    if isinstance(exc, AgentProcessError):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in AGENT_PROCESS_MARKERS)


def wrap_runtime_error(exc: Exception) -> RinaError:
    if isinstance(exc, RinaError):
        return exc
    message = str(exc) or exc.__class__.__name__
    if is_agent_process_error(exc):
        return AgentProcessError(message)
    return AgentRuntimeError(message)


__all__ = [
    "AgentProcessError",
    "AgentRuntimeError",
    "AttachmentError",
    "ConfigError",
    "DeliveryError",
    "RinaError",
    "TransientDeliveryError",
    "is_agent_process_error",
    "is_transient_network_error",
    "wrap_delivery_error",
    "wrap_runtime_error",
]
