import errno

import httpx

from rina.errors import (
    AgentProcessError,
    AgentRuntimeError,
    DeliveryError,
    TransientDeliveryError,
    is_transient_network_error,
    wrap_delivery_error,
    wrap_runtime_error,
)


class CodedError(Exception):
    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class WrappedPlatformError(Exception):
    def __init__(self, message: str, original_error: Exception) -> None:
        super().__init__(message)
        self.original_error = original_error


def test_transient_signatures() -> None:
    request = httpx.Request("POST", "https://slack.test/api/chat.postMessage")

    assert is_transient_network_error(TimeoutError())
    assert is_transient_network_error(ConnectionResetError())
    assert is_transient_network_error(OSError(errno.ETIMEDOUT, "timeout"))
    assert is_transient_network_error(httpx.ReadTimeout("slow", request=request))
    assert is_transient_network_error(httpx.ConnectError("refused", request=request))
    assert is_transient_network_error(CodedError("post failed", code="ECONNRESET"))
    assert is_transient_network_error(
        WrappedPlatformError("slack", CodedError("x", code="UND_ERR_CONNECT_TIMEOUT"))
    )
    assert is_transient_network_error(RuntimeError("Connect Timeout Error"))


def test_non_transient_signatures() -> None:
    assert not is_transient_network_error(ValueError("invalid_auth"))
    assert not is_transient_network_error(CodedError("x", code="rate_limited"))
    assert not is_transient_network_error(OSError(errno.EACCES, "denied"))


def test_code_on_cause_is_checked() -> None:
    try:
        try:
            raise CodedError("inner", code="NETWORK_ERROR")
        except CodedError as inner:
            raise RuntimeError("post failed") from inner
    except RuntimeError as exc:
        assert is_transient_network_error(exc)


def test_wrap_delivery_error() -> None:
    transient = wrap_delivery_error(TimeoutError("timed out"))
    fatal = wrap_delivery_error(KeyError("x"))
    existing = DeliveryError("already wrapped")

    assert isinstance(transient, TransientDeliveryError)
    assert type(fatal) is DeliveryError
    assert wrap_delivery_error(existing) is existing


def test_wrap_runtime_error() -> None:
    crashed = wrap_runtime_error(RuntimeError("Claude Code process exited with code 1"))
    spawn = wrap_runtime_error(OSError("failed to spawn process"))
    other = wrap_runtime_error(ValueError("bad json"))
    existing = AgentProcessError("boom")

    assert isinstance(crashed, AgentProcessError)
    assert isinstance(spawn, AgentProcessError)
    assert type(other) is AgentRuntimeError
    assert str(other) == "bad json"
    assert wrap_runtime_error(existing) is existing
