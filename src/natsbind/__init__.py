"""natsbind: Python binding for the NATS C client library (libnats).

Wraps libnats' opaque handles and status codes: statuses become
exceptions, out-parameters become return values, native callbacks become
Python callables, and every native handle gets an explicit ``destroy()``
(plus context-manager support). Protocol handling, reconnection, TLS and
message delivery threads all belong to libnats.

Example usage::

    import threading

    import natsbind

    def on_message(done, connection, subscription, message):
        print(message.subject, message.data)
        if message.reply:
            connection.publish_string(message.reply, "salutations")
        done.set()

    with natsbind.initialized():
        with natsbind.Connection.connect_to(natsbind.DEFAULT_SERVER_URL) as conn:
            done = threading.Event()
            with conn.subscribe("channel", on_message, done):
                with conn.request_string("channel", "greetings", 1000) as reply:
                    print(reply.data)
"""

from natsbind._native import get_library, load_library, set_library
from natsbind.config import (
    DEFAULT_SERVER_URL,
    ConnectionConfig,
    ReconnectConfig,
    TlsConfig,
)
from natsbind.connection import Connection
from natsbind.errors import (
    ERROR_CODE_MAP,
    AuthenticationError,
    ConnectionError,
    HandleReleasedError,
    InvalidArgumentError,
    LibraryStateError,
    NatsError,
    NoRespondersError,
    ProtocolError,
    SlowConsumerError,
    TimeoutError,
    error_from_status,
    raise_for_status,
    to_error,
    value_or_raise,
)
from natsbind.inbox import Inbox, MessageList
from natsbind.message import Message
from natsbind.options import Options
from natsbind.runtime import (
    check_compatibility,
    deinit,
    deinit_wait,
    get_version,
    get_version_number,
    init,
    initialized,
    is_initialized,
    live_resources,
    now,
    now_ns,
    release_thread_memory,
    set_message_delivery_pool_size,
    sign,
    sleep,
)
from natsbind.statistics import Statistics, StatsCounts
from natsbind.status import ConnectionStatus, Status
from natsbind.subscription import Subscription

__version__ = "0.1.0"

__all__ = [
    # Native library
    "get_library",
    "load_library",
    "set_library",
    # Status and errors
    "Status",
    "ConnectionStatus",
    "ERROR_CODE_MAP",
    "NatsError",
    "ConnectionError",
    "AuthenticationError",
    "TimeoutError",
    "InvalidArgumentError",
    "HandleReleasedError",
    "ProtocolError",
    "NoRespondersError",
    "SlowConsumerError",
    "LibraryStateError",
    "error_from_status",
    "to_error",
    "raise_for_status",
    "value_or_raise",
    # Process lifecycle
    "init",
    "deinit",
    "deinit_wait",
    "initialized",
    "is_initialized",
    "live_resources",
    "get_version",
    "get_version_number",
    "check_compatibility",
    "now",
    "now_ns",
    "sleep",
    "set_message_delivery_pool_size",
    "release_thread_memory",
    "sign",
    # Config
    "DEFAULT_SERVER_URL",
    "ConnectionConfig",
    "ReconnectConfig",
    "TlsConfig",
    "Options",
    # Handles
    "Connection",
    "Subscription",
    "Message",
    "Statistics",
    "StatsCounts",
    "Inbox",
    "MessageList",
]
