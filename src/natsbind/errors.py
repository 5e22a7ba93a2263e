"""NATS error types and the status-to-exception mapping."""

from __future__ import annotations

from typing import TypeVar

from natsbind.status import Status

T = TypeVar("T")


class NatsError(Exception):
    """Base exception for all natsbind errors. Carries the native status."""

    def __init__(self, message: str = "", status: Status = Status.ERR) -> None:
        super().__init__(message or status.name)
        self.status = status

    def is_retryable(self) -> bool:
        """Whether the failure is transient and the operation can be retried.

        Retryable errors: ConnectionError, TimeoutError, NoRespondersError,
        SlowConsumerError. Retry policy itself belongs to the caller or to
        the native library's reconnect options.
        """
        return False


class ConnectionError(NatsError):
    """Connection-level errors (no server, closed, stale, TLS negotiation)."""

    def is_retryable(self) -> bool:
        return True


class AuthenticationError(ConnectionError):
    """Server rejected the credentials or the operation."""

    def is_retryable(self) -> bool:
        return False


class TimeoutError(NatsError):
    """Operation exceeded its deadline."""

    def is_retryable(self) -> bool:
        return True


class InvalidArgumentError(NatsError):
    """Invalid subject, queue name, timeout or other argument."""


class HandleReleasedError(InvalidArgumentError):
    """A wrapper was used after ``destroy()`` or destroyed twice."""

    def __init__(self, kind: str) -> None:
        super().__init__(f"{kind} has already been destroyed", Status.INVALID_ARG)
        self.kind = kind


class ProtocolError(NatsError):
    """Protocol violation or a server feature mismatch."""


class NoRespondersError(NatsError):
    """A request was published but no subscriber was listening."""

    def is_retryable(self) -> bool:
        return True


class SlowConsumerError(NatsError):
    """A subscription fell behind and messages were dropped."""

    def is_retryable(self) -> bool:
        return True


class LibraryStateError(NatsError):
    """Process-wide library state is wrong for the call (not initialized, live resources)."""


# Map native status codes to exception classes
ERROR_CODE_MAP: dict[Status, type[NatsError]] = {
    Status.ERR: NatsError,
    Status.PROTOCOL_ERROR: ProtocolError,
    Status.IO_ERROR: ConnectionError,
    Status.LINE_TOO_LONG: ProtocolError,
    Status.CONNECTION_CLOSED: ConnectionError,
    Status.NO_SERVER: ConnectionError,
    Status.STALE_CONNECTION: ConnectionError,
    Status.SECURE_CONNECTION_WANTED: ConnectionError,
    Status.SECURE_CONNECTION_REQUIRED: ConnectionError,
    Status.CONNECTION_DISCONNECTED: ConnectionError,
    Status.CONNECTION_AUTH_FAILED: AuthenticationError,
    Status.NOT_PERMITTED: AuthenticationError,
    Status.NOT_FOUND: NatsError,
    Status.ADDRESS_MISSING: ConnectionError,
    Status.INVALID_SUBJECT: InvalidArgumentError,
    Status.INVALID_ARG: InvalidArgumentError,
    Status.INVALID_SUBSCRIPTION: InvalidArgumentError,
    Status.INVALID_TIMEOUT: InvalidArgumentError,
    Status.ILLEGAL_STATE: LibraryStateError,
    Status.SLOW_CONSUMER: SlowConsumerError,
    Status.MAX_PAYLOAD: ProtocolError,
    Status.MAX_DELIVERED_MSGS: NatsError,
    Status.INSUFFICIENT_BUFFER: NatsError,
    Status.NO_MEMORY: NatsError,
    Status.SYS_ERROR: NatsError,
    Status.TIMEOUT: TimeoutError,
    Status.FAILED_TO_INITIALIZE: LibraryStateError,
    Status.NOT_INITIALIZED: LibraryStateError,
    Status.SSL_ERROR: ConnectionError,
    Status.NO_SERVER_SUPPORT: ProtocolError,
    Status.NOT_YET_CONNECTED: ConnectionError,
    Status.DRAINING: LibraryStateError,
    Status.INVALID_QUEUE_NAME: InvalidArgumentError,
    Status.NO_RESPONDERS: NoRespondersError,
    Status.MISMATCH: ProtocolError,
    Status.MISSED_HEARTBEAT: SlowConsumerError,
    Status.LIMIT_REACHED: NatsError,
}


def _status_text(status: Status) -> str:
    # Only ask the native library when it is already loaded; error mapping
    # must never trigger a library load on its own.
    from natsbind import _native

    lib = _native.loaded_library()
    if lib is None:
        return status.name
    text = lib.nats_GetStatusText(int(status))
    if not text:
        return status.name
    return text.decode("utf-8", errors="replace")


def error_from_status(status: int | Status, message: str | None = None) -> NatsError:
    """Create the appropriate exception for a non-OK native status."""
    status = Status.from_int(int(status))
    exc_class = ERROR_CODE_MAP.get(status, NatsError)
    return exc_class(message or _status_text(status), status)


def to_error(code: int | Status, message: str | None = None) -> NatsError | None:
    """Return None for OK, otherwise the exception for the status. Never raises."""
    status = Status.from_int(int(code))
    if status is Status.OK:
        return None
    return error_from_status(status, message)


def raise_for_status(code: int | Status, message: str | None = None) -> None:
    """Raise the mapped exception unless ``code`` is OK."""
    err = to_error(code, message)
    if err is not None:
        raise err


def value_or_raise(code: int | Status, value: T, message: str | None = None) -> T:
    """Return ``value`` if ``code`` is OK, otherwise raise the mapped exception."""
    raise_for_status(code, message)
    return value
