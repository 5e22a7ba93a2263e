"""Message wrapper around ``natsMsg``."""

from __future__ import annotations

import ctypes
from ctypes import byref, c_char_p, c_void_p
from typing import TYPE_CHECKING

from natsbind import _native, runtime
from natsbind.errors import InvalidArgumentError, raise_for_status
from natsbind.status import Status

if TYPE_CHECKING:
    from natsbind.connection import Connection


class Message(runtime.NativeResource):
    """One received or constructed message.

    ``data`` keeps three states apart: ``None`` (no payload at all),
    ``b""`` (a zero-length payload) and non-empty bytes.
    """

    kind = "message"

    @classmethod
    def create(
        cls,
        subject: str,
        data: bytes | bytearray | memoryview | None = None,
        reply: str | None = None,
    ) -> Message:
        """Build a message to send with :meth:`Connection.publish_msg`."""
        runtime.require_initialized()
        payload, length = _native.payload(data)
        handle = c_void_p()
        status = _native.get_library().natsMsg_Create(
            byref(handle), subject.encode("utf-8"), _native.encode(reply), payload, length
        )
        raise_for_status(status)
        return cls(handle.value)

    # ----- accessors -----

    def get_subject(self) -> str:
        return _native.decode(_native.get_library().natsMsg_GetSubject(self.handle)) or ""

    def get_reply(self) -> str | None:
        """Reply subject, or None when the message is not a request."""
        reply = _native.decode(_native.get_library().natsMsg_GetReply(self.handle))
        return reply or None

    def get_data(self) -> bytes | None:
        lib = _native.get_library()
        ptr = lib.natsMsg_GetData(self.handle)
        if not ptr:
            return None
        return ctypes.string_at(ptr, lib.natsMsg_GetDataLength(self.handle))

    @property
    def subject(self) -> str:
        return self.get_subject()

    @property
    def reply(self) -> str | None:
        return self.get_reply()

    @property
    def data(self) -> bytes | None:
        return self.get_data()

    # ----- headers -----

    def get_header(self, key: str) -> str | None:
        """First value of header ``key``, or None if it is not set."""
        value = c_char_p()
        status = _native.get_library().natsMsgHeader_Get(
            self.handle, key.encode("utf-8"), byref(value)
        )
        if status == Status.NOT_FOUND:
            return None
        raise_for_status(status)
        return _native.decode(value.value)

    def set_header(self, key: str, value: str) -> Message:
        raise_for_status(
            _native.get_library().natsMsgHeader_Set(
                self.handle, key.encode("utf-8"), value.encode("utf-8")
            )
        )
        return self

    # ----- replies -----

    def respond(self, connection: Connection, data: bytes | None) -> None:
        """Publish ``data`` to this message's reply subject."""
        reply = self.get_reply()
        if reply is None:
            raise InvalidArgumentError(
                f"Message on {self.get_subject()!r} has no reply subject", Status.INVALID_ARG
            )
        connection.publish(reply, data)

    # ----- lifecycle -----

    def destroy(self) -> None:
        _native.get_library().natsMsg_Destroy(self._release())

    def __repr__(self) -> str:
        if self.released:
            return "<Message released>"
        return f"<Message subject={self.get_subject()!r}>"
