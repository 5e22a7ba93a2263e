"""Opaque pass-through wrappers for ``natsInbox`` and ``natsMsgList``.

The native library documents little about these beyond create/destroy, so
they expose nothing else. An inbox is a unique subject string suitable as
a reply subject.
"""

from __future__ import annotations

import ctypes
from ctypes import byref, c_void_p

from natsbind import _native, runtime
from natsbind.errors import raise_for_status


class Inbox(runtime.NativeResource):
    kind = "inbox"

    @classmethod
    def create(cls) -> Inbox:
        runtime.require_initialized()
        handle = c_void_p()
        raise_for_status(_native.get_library().natsInbox_Create(byref(handle)))
        return cls(handle.value)

    @property
    def value(self) -> str:
        return ctypes.string_at(self.handle).decode("ascii")

    def __str__(self) -> str:
        return self.value

    def destroy(self) -> None:
        _native.get_library().natsInbox_Destroy(self._release())


class MessageList(runtime.NativeResource):
    """Takes ownership of a ``natsMsgList*`` handed back by the native library."""

    kind = "message list"

    def destroy(self) -> None:
        _native.get_library().natsMsgList_Destroy(self._release())
