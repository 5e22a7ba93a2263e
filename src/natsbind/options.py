"""Connection options (``natsOptions``), one method per native setter.

Every setter returns ``self`` so calls can be chained, and raises the mapped
exception on a non-OK status::

    opts = Options.create().set_url("nats://10.0.0.5:4222").set_name("worker")
    conn = Connection.connect(opts)
    opts.destroy()

Callbacks installed here stay registered until the library is closed, since
libnats may invoke them after the connection that used them is destroyed.
"""

from __future__ import annotations

import logging
from ctypes import byref, c_char_p, c_void_p
from typing import Any, Callable

from natsbind import _native, runtime
from natsbind.errors import NatsError, error_from_status, raise_for_status

log = logging.getLogger("natsbind.options")

ConnectionCallback = Callable[[Any], None]
ErrorCallback = Callable[[Any, NatsError], None]


class Options(runtime.NativeResource):
    kind = "options"

    def __init__(self, handle: int) -> None:
        super().__init__(handle)
        # closure keys of the callbacks installed on this object
        self.callbacks: list[int] = []

    @classmethod
    def create(cls) -> Options:
        runtime.require_initialized()
        handle = c_void_p()
        raise_for_status(_native.get_library().natsOptions_Create(byref(handle)))
        return cls(handle.value)

    def _set(self, setter: str, *args: Any) -> Options:
        raise_for_status(getattr(_native.get_library(), setter)(self.handle, *args))
        return self

    # ----- servers and identity -----

    def set_url(self, url: str) -> Options:
        return self._set("natsOptions_SetURL", url.encode("utf-8"))

    def set_servers(self, servers: list[str]) -> Options:
        array = (c_char_p * len(servers))(*(s.encode("utf-8") for s in servers))
        return self._set("natsOptions_SetServers", array, len(servers))

    def set_name(self, name: str) -> Options:
        return self._set("natsOptions_SetName", name.encode("utf-8"))

    def set_user_info(self, user: str, password: str) -> Options:
        return self._set("natsOptions_SetUserInfo", user.encode("utf-8"), password.encode("utf-8"))

    def set_token(self, token: str) -> Options:
        return self._set("natsOptions_SetToken", token.encode("utf-8"))

    def set_user_credentials_from_files(self, user_or_chained_file: str, seed_file: str | None = None) -> Options:
        return self._set(
            "natsOptions_SetUserCredentialsFromFiles",
            user_or_chained_file.encode("utf-8"),
            _native.encode(seed_file),
        )

    def set_nkey_from_seed(self, public_key: str, seed_file: str) -> Options:
        return self._set(
            "natsOptions_SetNKeyFromSeed", public_key.encode("utf-8"), seed_file.encode("utf-8")
        )

    # ----- TLS -----

    def set_secure(self, secure: bool) -> Options:
        return self._set("natsOptions_SetSecure", secure)

    def load_ca_trusted_certificates(self, file_name: str) -> Options:
        return self._set("natsOptions_LoadCATrustedCertificates", file_name.encode("utf-8"))

    def load_certificates_chain(self, certs_file: str, key_file: str) -> Options:
        return self._set(
            "natsOptions_LoadCertificatesChain", certs_file.encode("utf-8"), key_file.encode("utf-8")
        )

    def set_ciphers(self, ciphers: str) -> Options:
        return self._set("natsOptions_SetCiphers", ciphers.encode("utf-8"))

    def set_expected_hostname(self, hostname: str) -> Options:
        return self._set("natsOptions_SetExpectedHostname", hostname.encode("utf-8"))

    def skip_server_verification(self, skip: bool) -> Options:
        return self._set("natsOptions_SkipServerVerification", skip)

    # ----- protocol -----

    def set_timeout(self, timeout_ms: int) -> Options:
        return self._set("natsOptions_SetTimeout", timeout_ms)

    def set_verbose(self, verbose: bool) -> Options:
        return self._set("natsOptions_SetVerbose", verbose)

    def set_pedantic(self, pedantic: bool) -> Options:
        return self._set("natsOptions_SetPedantic", pedantic)

    def set_ping_interval(self, interval_ms: int) -> Options:
        return self._set("natsOptions_SetPingInterval", interval_ms)

    def set_max_pings_out(self, max_pings_out: int) -> Options:
        return self._set("natsOptions_SetMaxPingsOut", max_pings_out)

    def set_io_buf_size(self, size: int) -> Options:
        return self._set("natsOptions_SetIOBufSize", size)

    def set_max_pending_msgs(self, max_pending: int) -> Options:
        return self._set("natsOptions_SetMaxPendingMsgs", max_pending)

    def set_no_echo(self, no_echo: bool) -> Options:
        return self._set("natsOptions_SetNoEcho", no_echo)

    def disable_no_responders(self, disabled: bool) -> Options:
        return self._set("natsOptions_DisableNoResponders", disabled)

    def set_custom_inbox_prefix(self, prefix: str) -> Options:
        return self._set("natsOptions_SetCustomInboxPrefix", prefix.encode("utf-8"))

    # ----- reconnect policy (executed by libnats) -----

    def set_allow_reconnect(self, allow: bool) -> Options:
        return self._set("natsOptions_SetAllowReconnect", allow)

    def set_max_reconnect(self, max_reconnect: int) -> Options:
        return self._set("natsOptions_SetMaxReconnect", max_reconnect)

    def set_reconnect_wait(self, wait_ms: int) -> Options:
        return self._set("natsOptions_SetReconnectWait", wait_ms)

    def set_reconnect_jitter(self, jitter_ms: int, jitter_tls_ms: int) -> Options:
        return self._set("natsOptions_SetReconnectJitter", jitter_ms, jitter_tls_ms)

    def set_reconnect_buf_size(self, size: int) -> Options:
        return self._set("natsOptions_SetReconnectBufSize", size)

    def set_retry_on_failed_connect(self, retry: bool, on_connected: ConnectionCallback | None = None) -> Options:
        if on_connected is None:
            return self._set("natsOptions_SetRetryOnFailedConnect", retry, _native.CONNECTION_HANDLER(), None)
        return self._set(
            "natsOptions_SetRetryOnFailedConnect", retry, _CONNECTION_THUNK, self._register(on_connected)
        )

    # ----- event callbacks -----

    def set_closed_callback(self, callback: ConnectionCallback) -> Options:
        return self._set("natsOptions_SetClosedCB", _CONNECTION_THUNK, self._register(callback))

    def set_disconnected_callback(self, callback: ConnectionCallback) -> Options:
        return self._set("natsOptions_SetDisconnectedCB", _CONNECTION_THUNK, self._register(callback))

    def set_reconnected_callback(self, callback: ConnectionCallback) -> Options:
        return self._set("natsOptions_SetReconnectedCB", _CONNECTION_THUNK, self._register(callback))

    def set_error_handler(self, callback: ErrorCallback) -> Options:
        return self._set("natsOptions_SetErrorHandler", _ERROR_THUNK, self._register(callback))

    def _register(self, callback: Any) -> int:
        # libnats may run these after the connection is destroyed, so the
        # keys stay registered until the library is closed.
        key = runtime.register_closure(callback)
        self.callbacks.append(key)
        return key

    # ----- lifecycle -----

    def destroy(self) -> None:
        _native.get_library().natsOptions_Destroy(self._release())


def _on_connection_event(nc: int | None, closure: int | None) -> None:
    callback = runtime.lookup_closure(closure)
    if callback is None:
        return
    try:
        callback(runtime.lookup_connection(nc))
    except Exception:
        log.exception("Connection callback raised")


def _on_async_error(nc: int | None, sub: int | None, status: int, closure: int | None) -> None:
    callback = runtime.lookup_closure(closure)
    if callback is None:
        return
    try:
        callback(runtime.lookup_connection(nc), error_from_status(status))
    except Exception:
        log.exception("Error handler raised")


# Shared by every Options object, alive for the life of the interpreter.
_CONNECTION_THUNK = _native.CONNECTION_HANDLER(_on_connection_event)
_ERROR_THUNK = _native.ERR_HANDLER(_on_async_error)
