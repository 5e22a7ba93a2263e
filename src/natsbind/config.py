"""Configuration classes translated to native :class:`~natsbind.options.Options`."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any

from natsbind.errors import NatsError
from natsbind.options import Options

DEFAULT_SERVER_URL = "nats://localhost:4222"

log = logging.getLogger("natsbind.config")


@dataclass(slots=True)
class ReconnectConfig:
    """Reconnect policy handed to libnats, which performs the reconnects.

    ``None`` leaves the native default in place.
    """

    allow: bool = True
    max_reconnect: int | None = None
    wait_ms: int | None = None
    jitter_ms: int | None = None
    jitter_tls_ms: int | None = None
    buffer_size: int | None = None

    def with_allow(self, allow: bool) -> ReconnectConfig:
        self.allow = allow
        return self

    def with_max_reconnect(self, n: int) -> ReconnectConfig:
        self.max_reconnect = n
        return self

    def with_wait(self, wait_ms: int) -> ReconnectConfig:
        self.wait_ms = wait_ms
        return self

    def with_jitter(self, jitter_ms: int, jitter_tls_ms: int | None = None) -> ReconnectConfig:
        self.jitter_ms = jitter_ms
        self.jitter_tls_ms = jitter_tls_ms
        return self

    def with_buffer_size(self, size: int) -> ReconnectConfig:
        self.buffer_size = size
        return self

    def apply(self, opts: Options) -> None:
        opts.set_allow_reconnect(self.allow)
        if self.max_reconnect is not None:
            opts.set_max_reconnect(self.max_reconnect)
        if self.wait_ms is not None:
            opts.set_reconnect_wait(self.wait_ms)
        if self.jitter_ms is not None:
            jitter_tls = self.jitter_tls_ms if self.jitter_tls_ms is not None else self.jitter_ms
            opts.set_reconnect_jitter(self.jitter_ms, jitter_tls)
        if self.buffer_size is not None:
            opts.set_reconnect_buf_size(self.buffer_size)


@dataclass(slots=True)
class TlsConfig:
    """TLS parameters. Any field set implies a secure connection."""

    ca_file: str | None = None
    cert_file: str | None = None
    key_file: str | None = None
    ciphers: str | None = None
    expected_hostname: str | None = None
    skip_verify: bool = False

    def with_ca_file(self, path: str) -> TlsConfig:
        self.ca_file = path
        return self

    def with_client_cert(self, cert_file: str, key_file: str) -> TlsConfig:
        self.cert_file = cert_file
        self.key_file = key_file
        return self

    def with_skip_verify(self, skip: bool = True) -> TlsConfig:
        self.skip_verify = skip
        return self

    def apply(self, opts: Options) -> None:
        opts.set_secure(True)
        if self.ca_file:
            opts.load_ca_trusted_certificates(self.ca_file)
        if self.cert_file and self.key_file:
            opts.load_certificates_chain(self.cert_file, self.key_file)
        if self.ciphers:
            opts.set_ciphers(self.ciphers)
        if self.expected_hostname:
            opts.set_expected_hostname(self.expected_hostname)
        if self.skip_verify:
            opts.skip_server_verification(True)


@dataclass(slots=True)
class ConnectionConfig:
    """Everything needed to open a :class:`~natsbind.connection.Connection`."""

    servers: list[str] = field(default_factory=lambda: [DEFAULT_SERVER_URL])
    name: str | None = None
    user: str | None = None
    password: str | None = None
    token: str | None = None
    credentials_file: str | None = None
    seed_file: str | None = None
    nkey: str | None = None
    timeout_ms: int | None = None
    ping_interval_ms: int | None = None
    max_pings_out: int | None = None
    io_buffer_size: int | None = None
    max_pending_msgs: int | None = None
    no_echo: bool = False
    no_responders: bool = True
    inbox_prefix: str | None = None
    tls: TlsConfig | None = None
    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)
    log_events: bool = True

    @classmethod
    def from_env(cls, prefix: str = "NATS_", environ: dict[str, str] | None = None) -> ConnectionConfig:
        """Build a config from ``NATS_URL``, ``NATS_NAME``, ``NATS_USER``,
        ``NATS_PASSWORD``, ``NATS_TOKEN``, ``NATS_CREDS`` and ``NATS_TIMEOUT_MS``.

        ``NATS_URL`` may list several servers separated by commas.
        """
        env = os.environ if environ is None else environ
        cfg = cls()
        urls = env.get(f"{prefix}URL")
        if urls:
            cfg.servers = [u.strip() for u in urls.split(",") if u.strip()]
        cfg.name = env.get(f"{prefix}NAME") or None
        cfg.user = env.get(f"{prefix}USER") or None
        cfg.password = env.get(f"{prefix}PASSWORD") or None
        cfg.token = env.get(f"{prefix}TOKEN") or None
        cfg.credentials_file = env.get(f"{prefix}CREDS") or None
        timeout = env.get(f"{prefix}TIMEOUT_MS")
        if timeout:
            cfg.timeout_ms = int(timeout)
        return cfg

    @property
    def url(self) -> str:
        return self.servers[0] if self.servers else DEFAULT_SERVER_URL

    def with_servers(self, *servers: str) -> ConnectionConfig:
        self.servers = list(servers)
        return self

    def with_name(self, name: str) -> ConnectionConfig:
        self.name = name
        return self

    def with_user_info(self, user: str, password: str) -> ConnectionConfig:
        self.user = user
        self.password = password
        return self

    def with_token(self, token: str) -> ConnectionConfig:
        self.token = token
        return self

    def with_credentials(self, credentials_file: str, seed_file: str | None = None) -> ConnectionConfig:
        self.credentials_file = credentials_file
        self.seed_file = seed_file
        return self

    def with_nkey(self, public_key: str, seed_file: str) -> ConnectionConfig:
        self.nkey = public_key
        self.seed_file = seed_file
        return self

    def with_timeout(self, timeout_ms: int) -> ConnectionConfig:
        self.timeout_ms = timeout_ms
        return self

    def with_ping_interval(self, interval_ms: int, max_pings_out: int | None = None) -> ConnectionConfig:
        self.ping_interval_ms = interval_ms
        self.max_pings_out = max_pings_out
        return self

    def with_tls(self, tls: TlsConfig) -> ConnectionConfig:
        self.tls = tls
        return self

    def with_reconnect(self, reconnect: ReconnectConfig) -> ConnectionConfig:
        self.reconnect = reconnect
        return self

    def with_no_echo(self, no_echo: bool = True) -> ConnectionConfig:
        self.no_echo = no_echo
        return self

    def with_log_events(self, enabled: bool) -> ConnectionConfig:
        self.log_events = enabled
        return self

    def to_options(self) -> Options:
        """Create native Options for this config. The caller must destroy them."""
        opts = Options.create()
        try:
            self._apply(opts)
        except NatsError:
            opts.destroy()
            raise
        return opts

    def _apply(self, opts: Options) -> None:
        if len(self.servers) == 1:
            opts.set_url(self.servers[0])
        elif self.servers:
            opts.set_servers(self.servers)
        if self.name:
            opts.set_name(self.name)
        if self.user is not None:
            opts.set_user_info(self.user, self.password or "")
        if self.token:
            opts.set_token(self.token)
        if self.credentials_file:
            opts.set_user_credentials_from_files(self.credentials_file, self.seed_file)
        elif self.nkey and self.seed_file:
            opts.set_nkey_from_seed(self.nkey, self.seed_file)
        if self.timeout_ms is not None:
            opts.set_timeout(self.timeout_ms)
        if self.ping_interval_ms is not None:
            opts.set_ping_interval(self.ping_interval_ms)
        if self.max_pings_out is not None:
            opts.set_max_pings_out(self.max_pings_out)
        if self.io_buffer_size is not None:
            opts.set_io_buf_size(self.io_buffer_size)
        if self.max_pending_msgs is not None:
            opts.set_max_pending_msgs(self.max_pending_msgs)
        if self.no_echo:
            opts.set_no_echo(True)
        if not self.no_responders:
            opts.disable_no_responders(True)
        if self.inbox_prefix:
            opts.set_custom_inbox_prefix(self.inbox_prefix)
        if self.tls is not None:
            self.tls.apply(opts)
        self.reconnect.apply(opts)
        if self.log_events:
            _install_event_logging(opts)


def _describe(connection: Any) -> str:
    if connection is None or connection.released:
        return "connection"
    return f"connection to {connection.connected_url or '<none>'}"


def _install_event_logging(opts: Options) -> None:
    opts.set_disconnected_callback(lambda conn: log.warning("Disconnected: %s", _describe(conn)))
    opts.set_reconnected_callback(lambda conn: log.warning("Reconnected: %s", _describe(conn)))
    opts.set_closed_callback(lambda conn: log.info("Closed: %s", _describe(conn)))
    opts.set_error_handler(lambda conn, err: log.error("Asynchronous error: %s", err))
