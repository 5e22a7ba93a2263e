"""Process-wide library lifecycle and native resource ownership.

libnats keeps internal thread pools and global state. It must be opened
before any connection is made and closed only after every connection,
subscription and message has been released. This module tracks that state
explicitly:

- :func:`init` fails on double initialization.
- :func:`deinit` / :func:`deinit_wait` fail loudly while wrappers are
  still live, instead of tearing the library down underneath them.

Every wrapper around a native handle derives from :class:`NativeResource`,
which registers itself here on creation and unregisters on ``destroy()``.
Garbage collection never releases native handles: the native library's
memory is invisible to the collector, so callers must call ``destroy()``
(or use the wrapper as a context manager).

Example::

    import natsbind

    with natsbind.initialized():
        with natsbind.Connection.connect_to() as conn:
            conn.publish("updates", b"hello")
"""

from __future__ import annotations

import contextlib
import ctypes
import itertools
import logging
import threading
from ctypes import byref, c_int, c_void_p
from typing import Any, Iterator

from natsbind import _native
from natsbind.errors import HandleReleasedError, LibraryStateError, raise_for_status
from natsbind.status import Status

log = logging.getLogger("natsbind.runtime")

# Oldest libnats release whose API this binding was written against.
REQUIRED_VERSION = "3.0.0"
REQUIRED_VERSION_NUMBER = 0x030000


class _LibraryState:
    """Mutable process-wide state guarded by a lock."""

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.initialized = False
        self.live: dict[int, NativeResource] = {}
        self.connections: dict[int, Any] = {}
        # closure key -> Python target of a native callback
        self.closures: dict[int, Any] = {}
        self.closure_ids = itertools.count(1)

    def track(self, resource: NativeResource) -> None:
        with self.lock:
            self.live[id(resource)] = resource

    def untrack(self, resource: NativeResource) -> None:
        with self.lock:
            self.live.pop(id(resource), None)


_state = _LibraryState()


# ----- lifecycle -----


def init(lock_spin_count: int = -1) -> None:
    """Open the native library. ``-1`` keeps libnats' default spin count."""
    with _state.lock:
        if _state.initialized:
            raise LibraryStateError("natsbind is already initialized", Status.ILLEGAL_STATE)
        raise_for_status(_native.get_library().nats_Open(lock_spin_count))
        _state.initialized = True
    log.debug("Library opened (lock_spin_count=%d)", lock_spin_count)


def deinit() -> None:
    """Close the native library without waiting for its threads."""
    with _state.lock:
        _check_teardown()
        _native.get_library().nats_Close()
        _state.initialized = False
        _state.closures.clear()
    log.debug("Library closed")


def deinit_wait(timeout_ms: int) -> None:
    """Close the native library and wait up to ``timeout_ms`` for its threads.

    ``0`` waits indefinitely. Raises TimeoutError if the native threads did
    not finish in time; the library is considered closed either way.
    """
    with _state.lock:
        _check_teardown()
        status = _native.get_library().nats_CloseAndWait(timeout_ms)
        _state.initialized = False
        _state.closures.clear()
    log.debug("Library closed (wait %d ms, status %s)", timeout_ms, Status.from_int(status).name)
    raise_for_status(status)


def _check_teardown() -> None:
    if not _state.initialized:
        raise LibraryStateError("natsbind is not initialized", Status.NOT_INITIALIZED)
    if _state.live:
        names = sorted(repr(r) for r in _state.live.values())
        raise LibraryStateError(
            f"Cannot close the library with {len(names)} live resource(s): {', '.join(names)}",
            Status.ILLEGAL_STATE,
        )


@contextlib.contextmanager
def initialized(lock_spin_count: int = -1) -> Iterator[None]:
    """Open the library for the duration of a ``with`` block."""
    init(lock_spin_count)
    try:
        yield
    finally:
        deinit()


def is_initialized() -> bool:
    return _state.initialized


def require_initialized() -> None:
    if not _state.initialized:
        raise LibraryStateError(
            "natsbind.init() must be called before creating native resources",
            Status.NOT_INITIALIZED,
        )


def live_resources() -> list[NativeResource]:
    """Wrappers that have been created but not yet destroyed."""
    with _state.lock:
        return list(_state.live.values())


def register_connection(handle: int, connection: Any) -> None:
    with _state.lock:
        _state.connections[handle] = connection


def unregister_connection(handle: int) -> None:
    with _state.lock:
        _state.connections.pop(handle, None)


def lookup_connection(handle: int | None) -> Any:
    """Map a native ``natsConnection*`` back to its Connection wrapper, if any."""
    if not handle:
        return None
    with _state.lock:
        return _state.connections.get(handle)


# ----- callback closures -----
#
# Native callbacks are module-level CFUNCTYPE thunks that live as long as the
# interpreter. Each registration passes an integer key as the native
# ``void *closure``; the thunk resolves it here. A key that is no longer
# registered (the owner was destroyed, or the library closed) resolves to
# None, so a late native callback never reaches freed Python state.


def register_closure(target: Any) -> int:
    with _state.lock:
        key = next(_state.closure_ids)
        _state.closures[key] = target
    return key


def unregister_closure(key: int) -> None:
    with _state.lock:
        _state.closures.pop(key, None)


def lookup_closure(key: int | None) -> Any:
    if not key:
        return None
    with _state.lock:
        return _state.closures.get(key)


# ----- native resources -----


class NativeResource:
    """Exclusive owner of one native handle. Released exactly once by ``destroy()``."""

    kind = "resource"

    def __init__(self, handle: int) -> None:
        require_initialized()
        self._handle: int | None = handle
        _state.track(self)
        log.debug("Created %s %#x", self.kind, handle or 0)

    @property
    def handle(self) -> int:
        """The raw native pointer. Raises HandleReleasedError after ``destroy()``."""
        if self._handle is None:
            raise HandleReleasedError(self.kind)
        return self._handle

    @property
    def released(self) -> bool:
        return self._handle is None

    def _release(self) -> int:
        """Give up ownership and return the handle for the native destroy call."""
        handle = self.handle
        self._handle = None
        _state.untrack(self)
        log.debug("Destroyed %s %#x", self.kind, handle or 0)
        return handle

    def destroy(self) -> None:
        raise NotImplementedError

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        if not self.released:
            self.destroy()

    def __repr__(self) -> str:
        state = "released" if self._handle is None else f"{self._handle:#x}"
        return f"<{type(self).__name__} {state}>"


# ----- pass-through helpers -----


def get_version() -> str:
    """Version string of the loaded libnats, e.g. ``"3.8.2"``."""
    return _native.decode(_native.get_library().nats_GetVersion()) or ""


def get_version_number() -> int:
    """Version of the loaded libnats as ``0xMMmmpp``."""
    return int(_native.get_library().nats_GetVersionNumber())


def check_compatibility() -> bool:
    """Whether the loaded libnats is at least :data:`REQUIRED_VERSION`."""
    number = get_version_number()
    if number < REQUIRED_VERSION_NUMBER:
        log.warning(
            "libnats %s is older than the required %s", get_version(), REQUIRED_VERSION
        )
        return False
    return True


def now() -> int:
    """Native wall clock in milliseconds."""
    return int(_native.get_library().nats_Now())


def now_ns() -> int:
    """Native wall clock in nanoseconds."""
    return int(_native.get_library().nats_NowInNanoSeconds())


def sleep(sleep_ms: int) -> None:
    _native.get_library().nats_Sleep(sleep_ms)


def set_message_delivery_pool_size(max_size: int) -> None:
    """Size the native library's shared message delivery thread pool."""
    raise_for_status(_native.get_library().nats_SetMessageDeliveryPoolSize(max_size))


def release_thread_memory() -> None:
    """Free native thread-local storage for the calling thread."""
    _native.get_library().nats_ReleaseThreadMemory()


def sign(encoded_seed: str, data: str | bytes) -> bytes:
    """Sign ``data`` with an encoded NKey seed. Returns the raw signature."""
    lib = _native.get_library()
    if isinstance(data, str):
        data = data.encode("utf-8")
    signature = c_void_p()
    length = c_int(0)
    raise_for_status(
        lib.nats_Sign(encoded_seed.encode("utf-8"), data, byref(signature), byref(length))
    )
    try:
        return ctypes.string_at(signature.value, length.value)
    finally:
        lib.free(signature.value)
