"""ctypes loader and prototypes for the libnats C API.

The binding talks to the native library only through the object returned
by :func:`get_library`. Anything exposing the same call surface can be
installed with :func:`set_library` (a custom build, or the fake used by the
test suite).

Handles are passed around as ``c_void_p`` values; out-parameters are
``byref`` objects whose ``.value`` the native call fills in.
"""

from __future__ import annotations

import ctypes
import ctypes.util
import logging
import os
import sys
import threading
from ctypes import (
    CDLL,
    CFUNCTYPE,
    POINTER,
    c_bool,
    c_char_p,
    c_int,
    c_int64,
    c_size_t,
    c_uint32,
    c_uint64,
    c_void_p,
)
from typing import Any

log = logging.getLogger("natsbind.native")

LIBRARY_ENV = "NATSBIND_LIBRARY"
LIBRARY_DIR_ENV = "NATS_LIB_DIR"

# void (*natsMsgHandler)(natsConnection *nc, natsSubscription *sub, natsMsg *msg, void *closure)
MSG_HANDLER = CFUNCTYPE(None, c_void_p, c_void_p, c_void_p, c_void_p)
# void (*natsConnectionHandler)(natsConnection *nc, void *closure)
CONNECTION_HANDLER = CFUNCTYPE(None, c_void_p, c_void_p)
# void (*natsErrHandler)(natsConnection *nc, natsSubscription *sub, natsStatus err, void *closure)
ERR_HANDLER = CFUNCTYPE(None, c_void_p, c_void_p, c_int, c_void_p)

_OUT = POINTER(c_void_p)

# name -> (restype, argtypes)
_PROTOTYPES: dict[str, tuple[Any, list[Any]]] = {
    # library
    "nats_Open": (c_int, [c_int64]),
    "nats_Close": (None, []),
    "nats_CloseAndWait": (c_int, [c_int64]),
    "nats_GetVersion": (c_char_p, []),
    "nats_GetVersionNumber": (c_uint32, []),
    "nats_GetStatusText": (c_char_p, [c_int]),
    "nats_Now": (c_int64, []),
    "nats_NowInNanoSeconds": (c_int64, []),
    "nats_Sleep": (None, [c_int64]),
    "nats_SetMessageDeliveryPoolSize": (c_int, [c_int]),
    "nats_ReleaseThreadMemory": (None, []),
    "nats_Sign": (c_int, [c_char_p, c_char_p, _OUT, POINTER(c_int)]),
    # connection
    "natsConnection_ConnectTo": (c_int, [_OUT, c_char_p]),
    "natsConnection_Connect": (c_int, [_OUT, c_void_p]),
    "natsConnection_Publish": (c_int, [c_void_p, c_char_p, c_char_p, c_int]),
    "natsConnection_PublishString": (c_int, [c_void_p, c_char_p, c_char_p]),
    "natsConnection_PublishRequest": (c_int, [c_void_p, c_char_p, c_char_p, c_char_p, c_int]),
    "natsConnection_PublishMsg": (c_int, [c_void_p, c_void_p]),
    "natsConnection_Subscribe": (c_int, [_OUT, c_void_p, c_char_p, MSG_HANDLER, c_void_p]),
    "natsConnection_QueueSubscribe": (
        c_int,
        [_OUT, c_void_p, c_char_p, c_char_p, MSG_HANDLER, c_void_p],
    ),
    "natsConnection_SubscribeSync": (c_int, [_OUT, c_void_p, c_char_p]),
    "natsConnection_Request": (c_int, [_OUT, c_void_p, c_char_p, c_char_p, c_int, c_int64]),
    "natsConnection_RequestString": (c_int, [_OUT, c_void_p, c_char_p, c_char_p, c_int64]),
    "natsConnection_Flush": (c_int, [c_void_p]),
    "natsConnection_FlushTimeout": (c_int, [c_void_p, c_int64]),
    "natsConnection_Close": (None, [c_void_p]),
    "natsConnection_Destroy": (None, [c_void_p]),
    "natsConnection_IsClosed": (c_bool, [c_void_p]),
    "natsConnection_IsReconnecting": (c_bool, [c_void_p]),
    "natsConnection_Status": (c_int, [c_void_p]),
    "natsConnection_GetStats": (c_int, [c_void_p, c_void_p]),
    "natsConnection_GetConnectedUrl": (c_int, [c_void_p, c_char_p, c_size_t]),
    "natsConnection_GetConnectedServerId": (c_int, [c_void_p, c_char_p, c_size_t]),
    "natsConnection_GetLastError": (c_int, [c_void_p, POINTER(c_char_p)]),
    "natsConnection_GetMaxPayload": (c_int64, [c_void_p]),
    # subscription
    "natsSubscription_Destroy": (None, [c_void_p]),
    "natsSubscription_Unsubscribe": (c_int, [c_void_p]),
    "natsSubscription_AutoUnsubscribe": (c_int, [c_void_p, c_int]),
    "natsSubscription_NextMsg": (c_int, [_OUT, c_void_p, c_int64]),
    "natsSubscription_IsValid": (c_bool, [c_void_p]),
    "natsSubscription_GetSubject": (c_char_p, [c_void_p]),
    "natsSubscription_GetDelivered": (c_int, [c_void_p, POINTER(c_int64)]),
    # message
    "natsMsg_Create": (c_int, [_OUT, c_char_p, c_char_p, c_char_p, c_int]),
    "natsMsg_GetSubject": (c_char_p, [c_void_p]),
    "natsMsg_GetReply": (c_char_p, [c_void_p]),
    "natsMsg_GetData": (c_void_p, [c_void_p]),
    "natsMsg_GetDataLength": (c_int, [c_void_p]),
    "natsMsg_Destroy": (None, [c_void_p]),
    "natsMsgHeader_Set": (c_int, [c_void_p, c_char_p, c_char_p]),
    "natsMsgHeader_Get": (c_int, [c_void_p, c_char_p, POINTER(c_char_p)]),
    # statistics
    "natsStatistics_Create": (c_int, [_OUT]),
    "natsStatistics_GetCounts": (
        c_int,
        [c_void_p] + [POINTER(c_uint64)] * 5,
    ),
    "natsStatistics_Destroy": (None, [c_void_p]),
    # inbox / message list
    "natsInbox_Create": (c_int, [_OUT]),
    "natsInbox_Destroy": (None, [c_void_p]),
    "natsMsgList_Destroy": (None, [c_void_p]),
    # options
    "natsOptions_Create": (c_int, [_OUT]),
    "natsOptions_Destroy": (None, [c_void_p]),
    "natsOptions_SetURL": (c_int, [c_void_p, c_char_p]),
    "natsOptions_SetServers": (c_int, [c_void_p, POINTER(c_char_p), c_int]),
    "natsOptions_SetUserInfo": (c_int, [c_void_p, c_char_p, c_char_p]),
    "natsOptions_SetToken": (c_int, [c_void_p, c_char_p]),
    "natsOptions_SetName": (c_int, [c_void_p, c_char_p]),
    "natsOptions_SetTimeout": (c_int, [c_void_p, c_int64]),
    "natsOptions_SetSecure": (c_int, [c_void_p, c_bool]),
    "natsOptions_LoadCATrustedCertificates": (c_int, [c_void_p, c_char_p]),
    "natsOptions_LoadCertificatesChain": (c_int, [c_void_p, c_char_p, c_char_p]),
    "natsOptions_SetCiphers": (c_int, [c_void_p, c_char_p]),
    "natsOptions_SetExpectedHostname": (c_int, [c_void_p, c_char_p]),
    "natsOptions_SkipServerVerification": (c_int, [c_void_p, c_bool]),
    "natsOptions_SetVerbose": (c_int, [c_void_p, c_bool]),
    "natsOptions_SetPedantic": (c_int, [c_void_p, c_bool]),
    "natsOptions_SetPingInterval": (c_int, [c_void_p, c_int64]),
    "natsOptions_SetMaxPingsOut": (c_int, [c_void_p, c_int]),
    "natsOptions_SetIOBufSize": (c_int, [c_void_p, c_int]),
    "natsOptions_SetAllowReconnect": (c_int, [c_void_p, c_bool]),
    "natsOptions_SetMaxReconnect": (c_int, [c_void_p, c_int]),
    "natsOptions_SetReconnectWait": (c_int, [c_void_p, c_int64]),
    "natsOptions_SetReconnectJitter": (c_int, [c_void_p, c_int64, c_int64]),
    "natsOptions_SetReconnectBufSize": (c_int, [c_void_p, c_int]),
    "natsOptions_SetMaxPendingMsgs": (c_int, [c_void_p, c_int]),
    "natsOptions_SetNoEcho": (c_int, [c_void_p, c_bool]),
    "natsOptions_SetRetryOnFailedConnect": (
        c_int,
        [c_void_p, c_bool, CONNECTION_HANDLER, c_void_p],
    ),
    "natsOptions_SetUserCredentialsFromFiles": (c_int, [c_void_p, c_char_p, c_char_p]),
    "natsOptions_SetNKeyFromSeed": (c_int, [c_void_p, c_char_p, c_char_p]),
    "natsOptions_DisableNoResponders": (c_int, [c_void_p, c_bool]),
    "natsOptions_SetCustomInboxPrefix": (c_int, [c_void_p, c_char_p]),
    "natsOptions_SetClosedCB": (c_int, [c_void_p, CONNECTION_HANDLER, c_void_p]),
    "natsOptions_SetDisconnectedCB": (c_int, [c_void_p, CONNECTION_HANDLER, c_void_p]),
    "natsOptions_SetReconnectedCB": (c_int, [c_void_p, CONNECTION_HANDLER, c_void_p]),
    "natsOptions_SetErrorHandler": (c_int, [c_void_p, ERR_HANDLER, c_void_p]),
}


class NativeLibrary:
    """A loaded libnats with prototypes declared.

    Attribute access falls through to the underlying :class:`ctypes.CDLL`.
    """

    def __init__(self, cdll: CDLL) -> None:
        self._cdll = cdll
        for name, (restype, argtypes) in _PROTOTYPES.items():
            try:
                func = getattr(cdll, name)
            except AttributeError:
                # Older libnats builds lack some newer setters; calling one
                # of them raises AttributeError at the call site instead.
                log.debug("libnats does not export %s", name)
                continue
            func.restype = restype
            func.argtypes = argtypes
        self._libc = _load_libc()

    def __getattr__(self, name: str) -> Any:
        return getattr(self._cdll, name)

    def free(self, ptr: int | None) -> None:
        """Release a buffer the native library allocated on the caller's behalf."""
        if ptr:
            self._libc.free(c_void_p(ptr))


def _load_libc() -> CDLL:
    if sys.platform == "win32":
        return ctypes.cdll.msvcrt
    name = ctypes.util.find_library("c")
    libc = CDLL(name) if name else CDLL(None)
    libc.free.argtypes = [c_void_p]
    libc.free.restype = None
    return libc


def _candidates(path: str | None) -> list[str]:
    if path:
        return [path]
    found: list[str] = []
    explicit = os.environ.get(LIBRARY_ENV)
    if explicit:
        found.append(explicit)
    env_dir = os.environ.get(LIBRARY_DIR_ENV)
    if env_dir:
        for name in ("libnats.so", "libnats.dylib", "nats.dll"):
            candidate = os.path.join(env_dir, name)
            if os.path.exists(candidate):
                found.append(candidate)
    located = ctypes.util.find_library("nats")
    if located:
        found.append(located)
    found.extend(["libnats.so", "libnats.dylib", "nats.dll"])
    return found


def load_library(path: str | None = None) -> NativeLibrary:
    """Locate libnats and declare its prototypes."""
    for candidate in _candidates(path):
        try:
            cdll = CDLL(candidate)
        except OSError:
            continue
        log.debug("Loaded libnats from %s", candidate)
        return NativeLibrary(cdll)
    raise OSError(
        f"libnats not found; set {LIBRARY_ENV} to the library file or "
        f"{LIBRARY_DIR_ENV} to its directory"
    )


_lib: Any = None
_lib_lock = threading.Lock()


def get_library() -> Any:
    """Return the active native library, loading libnats on first use."""
    global _lib
    if _lib is None:
        with _lib_lock:
            if _lib is None:
                _lib = load_library()
    return _lib


def loaded_library() -> Any:
    """Return the active native library, or None if nothing is loaded yet."""
    return _lib


def set_library(lib: Any) -> Any:
    """Install ``lib`` as the native library. Returns the previous one."""
    global _lib
    with _lib_lock:
        previous, _lib = _lib, lib
    return previous


def encode(text: str | None) -> bytes | None:
    """Encode an optional Python string for a ``const char *`` argument."""
    if text is None:
        return None
    return text.encode("utf-8")


def decode(raw: bytes | None) -> str | None:
    """Decode an optional ``const char *`` result."""
    if raw is None:
        return None
    return raw.decode("utf-8", errors="replace")


def payload(data: bytes | bytearray | memoryview | None) -> tuple[bytes | None, int]:
    """Normalize an optional payload to ``(bytes, length)`` for a ``const void *`` argument.

    ``None`` stays ``None`` so the native side sees a message without payload.
    """
    if data is None:
        return None, 0
    if not isinstance(data, bytes):
        data = bytes(data)
    return data, len(data)
