"""Native status codes returned by every libnats call.

Values follow ``natsStatus`` in ``nats/status.h``; the order matters because
the native library returns them as plain ints.
"""

from __future__ import annotations

from enum import IntEnum


class Status(IntEnum):
    """``natsStatus`` result codes."""

    OK = 0
    ERR = 1
    PROTOCOL_ERROR = 2
    IO_ERROR = 3
    LINE_TOO_LONG = 4
    CONNECTION_CLOSED = 5
    NO_SERVER = 6
    STALE_CONNECTION = 7
    SECURE_CONNECTION_WANTED = 8
    SECURE_CONNECTION_REQUIRED = 9
    CONNECTION_DISCONNECTED = 10
    CONNECTION_AUTH_FAILED = 11
    NOT_PERMITTED = 12
    NOT_FOUND = 13
    ADDRESS_MISSING = 14
    INVALID_SUBJECT = 15
    INVALID_ARG = 16
    INVALID_SUBSCRIPTION = 17
    INVALID_TIMEOUT = 18
    ILLEGAL_STATE = 19
    SLOW_CONSUMER = 20
    MAX_PAYLOAD = 21
    MAX_DELIVERED_MSGS = 22
    INSUFFICIENT_BUFFER = 23
    NO_MEMORY = 24
    SYS_ERROR = 25
    TIMEOUT = 26
    FAILED_TO_INITIALIZE = 27
    NOT_INITIALIZED = 28
    SSL_ERROR = 29
    NO_SERVER_SUPPORT = 30
    NOT_YET_CONNECTED = 31
    DRAINING = 32
    INVALID_QUEUE_NAME = 33
    NO_RESPONDERS = 34
    MISMATCH = 35
    MISSED_HEARTBEAT = 36
    LIMIT_REACHED = 37

    @classmethod
    def from_int(cls, code: int) -> Status:
        """Convert a raw native code. Codes this binding does not know become ERR."""
        try:
            return cls(code)
        except ValueError:
            return cls.ERR

    @property
    def ok(self) -> bool:
        return self is Status.OK


class ConnectionStatus(IntEnum):
    """``natsConnStatus``: the native connection state machine's states."""

    DISCONNECTED = 0
    CONNECTING = 1
    CONNECTED = 2
    CLOSED = 3
    RECONNECTING = 4
    DRAINING_SUBS = 5
    DRAINING_PUBS = 6
