"""Subscription wrapper and the native-to-Python callback trampoline.

Messages are delivered by libnats on its own delivery threads, never on the
caller's thread. Ordering is FIFO per subscription as received from the
server; different subscriptions deliver independently and concurrently.
The binding does not buffer, reorder or throttle anything.

Handlers receive four arguments::

    def on_message(userdata, connection, subscription, message):
        ...

``userdata`` is the exact object passed to ``subscribe`` (never copied) and
must stay valid as long as the subscription exists. ``connection`` is the
owning :class:`~natsbind.connection.Connection`. A handler may inspect the
subscription but must not destroy it from inside the callback.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from ctypes import byref, c_int64, c_void_p
from typing import TYPE_CHECKING, Any, Callable, Iterator

from natsbind import _native, runtime
from natsbind.errors import LibraryStateError, NatsError, raise_for_status, value_or_raise
from natsbind.message import Message
from natsbind.status import Status

if TYPE_CHECKING:
    from natsbind.connection import Connection

log = logging.getLogger("natsbind.subscription")

MessageHandler = Callable[[Any, "Connection", "Subscription", Message], None]


def _dispatch(nc: int | None, sub: int | None, msg: int | None, closure: int | None) -> None:
    if not msg:
        return
    subscription = runtime.lookup_closure(closure)
    if subscription is None:
        # Late delivery after destroy(); the callback still owns the message.
        _native.get_library().natsMsg_Destroy(msg)
        return
    subscription._deliver(msg)


# One thunk for every subscription, alive for the life of the interpreter.
_MSG_THUNK = _native.MSG_HANDLER(_dispatch)


class Subscription(runtime.NativeResource):
    """One registered interest in a subject, owned by the caller.

    Created by :meth:`Connection.subscribe`, :meth:`Connection.queue_subscribe`
    or :meth:`Connection.subscribe_sync`. Once :meth:`destroy` returns, no
    handler invocation is running or will start.
    """

    kind = "subscription"

    def __init__(
        self,
        connection: Connection,
        subject: str,
        handler: MessageHandler | None = None,
        userdata: Any = None,
        *,
        auto_release: bool = True,
    ) -> None:
        # The native handle is filled in by attach(), inside arming().
        self._connection = connection
        self._subject = subject
        self._handler = handler
        self._userdata = userdata
        self._auto_release = auto_release
        self._active = handler is not None
        self._dispatch_lock = threading.Lock()
        self._dispatching_thread: int | None = None
        self._closure: int | None = None
        self._handle = None

    @contextlib.contextmanager
    def arming(self) -> Iterator[None]:
        """Hold back delivery while the native subscription is created and attached.

        A message routed before :meth:`attach` waits on the dispatch lock, so
        handlers always see an attached subscription.
        """
        with self._dispatch_lock:
            if self._handler is not None:
                self._closure = runtime.register_closure(self)
            try:
                yield
            except BaseException:
                if self._closure is not None:
                    runtime.unregister_closure(self._closure)
                    self._closure = None
                raise

    def attach(self, handle: int) -> Subscription:
        runtime.NativeResource.__init__(self, handle)
        return self

    @property
    def native_callback(self) -> Any:
        """The ctypes callback passed to libnats, or None for a sync subscription."""
        return _MSG_THUNK if self._handler is not None else None

    @property
    def closure(self) -> int | None:
        """Key passed to libnats as the callback closure."""
        return self._closure

    # ----- delivery -----

    def _deliver(self, msg: int) -> None:
        try:
            message = Message(msg)
        except NatsError:
            log.exception("Dropping message on %r", self._subject)
            _native.get_library().natsMsg_Destroy(msg)
            return
        handed_off = False
        try:
            with self._dispatch_lock:
                if not self._active:
                    log.debug("Dropping message for inactive subscription on %s", self._subject)
                    return
                handed_off = True
                self._dispatching_thread = threading.get_ident()
                try:
                    self._handler(self._userdata, self._connection, self, message)
                except Exception:
                    log.exception("Message handler for %r raised", self._subject)
                finally:
                    self._dispatching_thread = None
        finally:
            # Once handed to a handler without auto_release, the message is
            # the handler's, whatever happened to the subscription since.
            if (self._auto_release or not handed_off) and not message.released:
                message.destroy()

    def deactivate(self, *, strict: bool = True) -> None:
        """Stop invoking the handler. Waits for an in-flight invocation to finish.

        Called from inside this subscription's own handler, it raises unless
        ``strict`` is False, in which case the flag is cleared without waiting.
        """
        if self._dispatching_thread == threading.get_ident():
            if not strict:
                self._active = False
                return
            raise LibraryStateError(
                "A subscription cannot be destroyed from inside its own handler",
                Status.ILLEGAL_STATE,
            )
        with self._dispatch_lock:
            self._active = False

    # ----- operations -----

    @property
    def subject(self) -> str:
        return self._subject

    @property
    def connection(self) -> Connection:
        return self._connection

    def is_valid(self) -> bool:
        """Whether the native subscription can still receive messages."""
        return bool(_native.get_library().natsSubscription_IsValid(self.handle))

    def unsubscribe(self) -> None:
        """Remove interest on the server. The wrapper still needs ``destroy()``."""
        raise_for_status(_native.get_library().natsSubscription_Unsubscribe(self.handle))

    def auto_unsubscribe(self, max_messages: int) -> None:
        """Unsubscribe automatically after ``max_messages`` deliveries."""
        raise_for_status(
            _native.get_library().natsSubscription_AutoUnsubscribe(self.handle, max_messages)
        )

    def next_message(self, timeout_ms: int) -> Message:
        """Wait for the next message on a synchronous subscription.

        The caller owns the returned message.
        """
        if self._handler is not None:
            raise LibraryStateError(
                "next_message() is only valid on synchronous subscriptions",
                Status.ILLEGAL_STATE,
            )
        handle = c_void_p()
        status = _native.get_library().natsSubscription_NextMsg(
            byref(handle), self.handle, timeout_ms
        )
        raise_for_status(status)
        return Message(handle.value)

    @property
    def delivered_count(self) -> int:
        delivered = c_int64(0)
        status = _native.get_library().natsSubscription_GetDelivered(self.handle, byref(delivered))
        return value_or_raise(status, delivered.value)

    # ----- lifecycle -----

    def destroy(self) -> None:
        """Release the subscription. Exactly once, never from its own handler."""
        handle = self.handle
        self.deactivate()
        if self._closure is not None:
            runtime.unregister_closure(self._closure)
        self._connection._forget_subscription(self)
        self._release()
        _native.get_library().natsSubscription_Destroy(handle)

    def __repr__(self) -> str:
        state = "released" if self.released else "active"
        return f"<Subscription {self._subject!r} {state}>"
