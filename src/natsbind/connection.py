"""Connection wrapper around ``natsConnection``.

Connecting, publishing, subscribing and request/reply go straight to
libnats; the wrapper only translates arguments, statuses and ownership.
Reconnects, TLS, buffering and socket-level serialization are libnats'
business. A single Connection is safe for concurrent publish/request calls
from several threads.

Example::

    with natsbind.initialized():
        with Connection.connect_to("nats://localhost:4222") as conn:
            conn.publish("updates", b"hello")
            reply = conn.request("service", b"ping", timeout_ms=1000)
            print(reply.data)
            reply.destroy()
"""

from __future__ import annotations

import asyncio
import ctypes
import logging
import threading
from ctypes import byref, c_char_p, c_void_p
from typing import Any

from natsbind import _native, runtime
from natsbind.config import DEFAULT_SERVER_URL, ConnectionConfig
from natsbind.errors import (
    ConnectionError,
    NatsError,
    NoRespondersError,
    TimeoutError,
    raise_for_status,
    to_error,
    value_or_raise,
)
from natsbind.inbox import Inbox
from natsbind.message import Message
from natsbind.options import Options
from natsbind.statistics import Statistics, StatsCounts
from natsbind.status import ConnectionStatus, Status
from natsbind.subscription import MessageHandler, Subscription

log = logging.getLogger("natsbind.connection")

_URL_BUFFER_SIZE = 256
NO_RESPONDERS_STATUS = "503"


class Connection(runtime.NativeResource):
    """One live session to a NATS server, exclusively owned by the caller."""

    kind = "connection"

    def __init__(self, handle: int) -> None:
        super().__init__(handle)
        self._subscriptions: dict[int, Subscription] = {}
        self._pending: set[asyncio.Future] = set()
        self._lock = threading.Lock()
        runtime.register_connection(handle, self)

    # ----- connect -----

    @classmethod
    def connect_to(cls, url: str = DEFAULT_SERVER_URL) -> Connection:
        """Connect to ``url`` (a comma-separated list is accepted) with default options."""
        runtime.require_initialized()
        handle = c_void_p()
        status = _native.get_library().natsConnection_ConnectTo(byref(handle), url.encode("utf-8"))
        raise_for_status(status)
        log.info("Connected to %s", url)
        return cls(handle.value)

    @classmethod
    def connect(cls, options: Options | ConnectionConfig) -> Connection:
        """Connect with native Options or a :class:`ConnectionConfig`.

        Options passed in stay owned by the caller; Options built from a
        config are destroyed here once the connection exists.
        """
        runtime.require_initialized()
        if isinstance(options, ConnectionConfig):
            opts = options.to_options()
            try:
                return cls._connect_with(opts, options.url)
            finally:
                opts.destroy()
        return cls._connect_with(options, None)

    @classmethod
    def _connect_with(cls, opts: Options, url: str | None) -> Connection:
        handle = c_void_p()
        status = _native.get_library().natsConnection_Connect(byref(handle), opts.handle)
        raise_for_status(status)
        conn = cls(handle.value)
        log.info("Connected to %s", url or conn.connected_url)
        return conn

    # ----- publish -----

    def publish(self, subject: str, data: bytes | None) -> None:
        """Fire-and-forget publish. ``None`` sends a message without payload."""
        payload, length = _native.payload(data)
        raise_for_status(
            _native.get_library().natsConnection_Publish(
                self.handle, subject.encode("utf-8"), payload, length
            )
        )

    def publish_string(self, subject: str, text: str) -> None:
        raise_for_status(
            _native.get_library().natsConnection_PublishString(
                self.handle, subject.encode("utf-8"), text.encode("utf-8")
            )
        )

    def publish_request(self, subject: str, reply: str, data: bytes | None) -> None:
        """Publish with a reply subject set, without waiting for the reply."""
        payload, length = _native.payload(data)
        raise_for_status(
            _native.get_library().natsConnection_PublishRequest(
                self.handle, subject.encode("utf-8"), reply.encode("utf-8"), payload, length
            )
        )

    def publish_msg(self, message: Message) -> None:
        """Publish a message built with :meth:`Message.create`. The caller keeps ownership."""
        raise_for_status(
            _native.get_library().natsConnection_PublishMsg(self.handle, message.handle)
        )

    # ----- subscribe -----

    def subscribe(
        self,
        subject: str,
        handler: MessageHandler,
        userdata: Any = None,
        *,
        auto_release: bool = True,
    ) -> Subscription:
        """Invoke ``handler(userdata, connection, subscription, message)`` per message.

        Handlers run on libnats delivery threads. With ``auto_release`` the
        message is released after the handler returns; otherwise the handler
        owns it and must call ``destroy()``.
        """
        sub = Subscription(self, subject, handler, userdata, auto_release=auto_release)
        handle = c_void_p()
        with sub.arming():
            status = _native.get_library().natsConnection_Subscribe(
                byref(handle), self.handle, subject.encode("utf-8"), sub.native_callback, sub.closure
            )
            raise_for_status(status)
            return self._adopt(sub, handle.value)

    def queue_subscribe(
        self,
        subject: str,
        queue: str,
        handler: MessageHandler,
        userdata: Any = None,
        *,
        auto_release: bool = True,
    ) -> Subscription:
        """Like :meth:`subscribe`, load-balanced across members of ``queue``."""
        sub = Subscription(self, subject, handler, userdata, auto_release=auto_release)
        handle = c_void_p()
        with sub.arming():
            status = _native.get_library().natsConnection_QueueSubscribe(
                byref(handle),
                self.handle,
                subject.encode("utf-8"),
                queue.encode("utf-8"),
                sub.native_callback,
                sub.closure,
            )
            raise_for_status(status)
            return self._adopt(sub, handle.value)

    def subscribe_sync(self, subject: str) -> Subscription:
        """Subscription polled with :meth:`Subscription.next_message`."""
        sub = Subscription(self, subject)
        handle = c_void_p()
        status = _native.get_library().natsConnection_SubscribeSync(
            byref(handle), self.handle, subject.encode("utf-8")
        )
        raise_for_status(status)
        return self._adopt(sub, handle.value)

    def _adopt(self, sub: Subscription, handle: int) -> Subscription:
        sub.attach(handle)
        with self._lock:
            self._subscriptions[id(sub)] = sub
        log.debug("Subscribed to %s", sub.subject)
        return sub

    def _forget_subscription(self, sub: Subscription) -> None:
        with self._lock:
            self._subscriptions.pop(id(sub), None)

    # ----- request/reply -----

    def request(self, subject: str, data: bytes | None, timeout_ms: int) -> Message:
        """Send a request and block until one reply arrives. The caller owns the reply.

        Raises TimeoutError when no reply arrives within ``timeout_ms`` and
        NoRespondersError when the server reports nobody is subscribed.
        """
        payload, length = _native.payload(data)
        reply = c_void_p()
        status = _native.get_library().natsConnection_Request(
            byref(reply), self.handle, subject.encode("utf-8"), payload, length, timeout_ms
        )
        raise_for_status(status)
        return Message(reply.value)

    def request_string(self, subject: str, text: str, timeout_ms: int) -> Message:
        reply = c_void_p()
        status = _native.get_library().natsConnection_RequestString(
            byref(reply), self.handle, subject.encode("utf-8"), text.encode("utf-8"), timeout_ms
        )
        raise_for_status(status)
        return Message(reply.value)

    async def request_async(self, subject: str, data: bytes | None, timeout_ms: int) -> Message:
        """Awaitable request: the reply callback resolves a future on the running loop.

        The calling task is suspended, not the thread. Closing or destroying
        the connection fails the pending request with ConnectionError.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[Message] = loop.create_future()

        def on_reply(fut: asyncio.Future, connection: Connection, sub: Subscription, message: Message) -> None:
            loop.call_soon_threadsafe(_resolve, fut, message)

        inbox = Inbox.create()
        try:
            sub = self.subscribe(inbox.value, on_reply, future, auto_release=False)
            try:
                sub.auto_unsubscribe(1)
                with self._lock:
                    self._pending.add(future)
                self.publish_request(subject, inbox.value, data)
                try:
                    message = await asyncio.wait_for(future, timeout_ms / 1000)
                except asyncio.TimeoutError as e:
                    raise TimeoutError(
                        f"No reply on {subject!r} within {timeout_ms} ms", Status.TIMEOUT
                    ) from e
            finally:
                with self._lock:
                    self._pending.discard(future)
                sub.destroy()
        finally:
            inbox.destroy()

        if _is_no_responders(message):
            message.destroy()
            raise NoRespondersError(f"No responders on {subject!r}", Status.NO_RESPONDERS)
        return message

    # ----- state -----

    def flush(self) -> None:
        raise_for_status(_native.get_library().natsConnection_Flush(self.handle))

    def flush_timeout(self, timeout_ms: int) -> None:
        raise_for_status(_native.get_library().natsConnection_FlushTimeout(self.handle, timeout_ms))

    def is_closed(self) -> bool:
        return bool(_native.get_library().natsConnection_IsClosed(self.handle))

    def is_reconnecting(self) -> bool:
        return bool(_native.get_library().natsConnection_IsReconnecting(self.handle))

    @property
    def status(self) -> ConnectionStatus:
        return ConnectionStatus(_native.get_library().natsConnection_Status(self.handle))

    @property
    def connected_url(self) -> str | None:
        return self._read_string("natsConnection_GetConnectedUrl")

    @property
    def connected_server_id(self) -> str | None:
        return self._read_string("natsConnection_GetConnectedServerId")

    @property
    def max_payload(self) -> int:
        return int(_native.get_library().natsConnection_GetMaxPayload(self.handle))

    @property
    def last_error(self) -> NatsError | None:
        """The last asynchronous error recorded on the connection, if any."""
        text = c_char_p()
        status = _native.get_library().natsConnection_GetLastError(self.handle, byref(text))
        return to_error(status, _native.decode(text.value))

    def get_stats(self, stats: Statistics | None = None) -> StatsCounts:
        """Snapshot the connection counters, optionally into a caller-owned Statistics."""
        owned = stats is None
        target = Statistics.create() if owned else stats
        try:
            status = _native.get_library().natsConnection_GetStats(self.handle, target.handle)
            raise_for_status(status)
            return target.get_counts()
        finally:
            if owned:
                target.destroy()

    def _read_string(self, getter: str) -> str | None:
        buf = ctypes.create_string_buffer(_URL_BUFFER_SIZE)
        status = getattr(_native.get_library(), getter)(self.handle, buf, _URL_BUFFER_SIZE)
        value = value_or_raise(status, buf.value)
        return _native.decode(value) or None

    # ----- lifecycle -----

    def close(self) -> None:
        """Close the session. The wrapper still needs ``destroy()``."""
        handle = self.handle
        self._fail_pending()
        _native.get_library().natsConnection_Close(handle)
        log.info("Closed connection %#x", handle)

    def destroy(self) -> None:
        """Close (if needed) and release the connection. Exactly once.

        Subscriptions created from this connection stop delivering but must
        still be destroyed by their owners.
        """
        handle = self.handle
        self._fail_pending()
        with self._lock:
            subscriptions = list(self._subscriptions.values())
            self._subscriptions.clear()
        for sub in subscriptions:
            sub.deactivate(strict=False)
        runtime.unregister_connection(handle)
        self._release()
        _native.get_library().natsConnection_Destroy(handle)

    def _fail_pending(self) -> None:
        with self._lock:
            pending = list(self._pending)
            self._pending.clear()
        for fut in pending:
            err = ConnectionError("Connection closed with a request in flight", Status.CONNECTION_CLOSED)
            fut.get_loop().call_soon_threadsafe(_fail, fut, err)


def _resolve(fut: asyncio.Future, message: Message) -> None:
    if fut.done():
        message.destroy()
    else:
        fut.set_result(message)


def _fail(fut: asyncio.Future, err: NatsError) -> None:
    if not fut.done():
        fut.set_exception(err)


def _is_no_responders(message: Message) -> bool:
    return not message.get_data() and message.get_header("Status") == NO_RESPONDERS_STATUS
