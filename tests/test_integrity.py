"""Integrity tests for natsbind against a live NATS server and the real libnats.

These tests require a running nats-server and an installed libnats, and are
skipped by default.

Run with:
    NATS_TEST_URL=nats://host:4222 pytest tests/test_integrity.py -v -s
"""

from __future__ import annotations

import os
import threading
import time
import uuid

import pytest

from natsbind import Connection, ConnectionConfig, runtime
from natsbind.errors import NoRespondersError, TimeoutError

# ---------------------------------------------------------------------------
# Fixtures / helpers
# ---------------------------------------------------------------------------

NATS_TEST_URL = os.environ.get("NATS_TEST_URL", "")

pytestmark = pytest.mark.skipif(
    not NATS_TEST_URL,
    reason="NATS_TEST_URL not set, skipping integrity tests",
)


def _unique_subject(prefix: str) -> str:
    """Generate a unique subject for test isolation."""
    return f"pytest.{prefix}.{uuid.uuid4().hex[:8]}"


@pytest.fixture
def live():
    with runtime.initialized():
        with Connection.connect_to(NATS_TEST_URL) as connection:
            yield connection


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


# ---------------------------------------------------------------------------
# Connection Tests
# ---------------------------------------------------------------------------


class TestConnection:
    """Verify basic connectivity to the NATS server."""

    def test_connect_and_close(self, live):
        """Connect to the server and report what it tells us."""
        print(f"\n  Connected to {live.connected_url}")
        print(f"  Server id: {live.connected_server_id}")
        print(f"  Max payload: {live.max_payload}")
        assert live.max_payload > 0
        live.flush()

    def test_connect_with_config(self):
        """Connect through a ConnectionConfig with a client name."""
        cfg = ConnectionConfig().with_servers(NATS_TEST_URL).with_name("natsbind-pytest")
        with runtime.initialized():
            with Connection.connect(cfg) as connection:
                connection.flush_timeout(2000)
                assert not connection.is_closed()

    def test_version(self):
        print(f"\n  libnats {runtime.get_version()}")
        assert runtime.check_compatibility()


# ---------------------------------------------------------------------------
# Publish / Subscribe Tests
# ---------------------------------------------------------------------------


class TestPubSub:
    """Verify delivery through the server."""

    def test_round_trip_order(self, live):
        """Publish a burst and verify FIFO delivery on one subscription."""
        subject = _unique_subject("fifo")
        received: list[bytes] = []
        lock = threading.Lock()

        def handler(ud, connection, subscription, message):
            with lock:
                received.append(message.data)

        with live.subscribe(subject, handler):
            live.flush()
            start = time.perf_counter()
            for i in range(1000):
                live.publish(subject, str(i).encode())
            live.flush()
            assert _wait_for(lambda: len(received) == 1000)
            elapsed = time.perf_counter() - start

        print(f"\n  1000 messages in {elapsed * 1000:.1f}ms")
        assert received == [str(i).encode() for i in range(1000)]

    def test_empty_and_binary_payloads(self, live):
        subject = _unique_subject("payload")
        received: list[bytes | None] = []

        with live.subscribe(subject, lambda ud, c, s, m: received.append(m.data)):
            live.flush()
            live.publish(subject, b"")
            live.publish(subject, b"\x00\xff\x00")
            live.flush()
            assert _wait_for(lambda: len(received) == 2)

        assert received[1] == b"\x00\xff\x00"
        assert not received[0]

    def test_no_callbacks_after_destroy(self, live):
        """Destroy a busy subscription and verify the handler goes quiet."""
        subject = _unique_subject("quiet")
        counter = {"n": 0}
        lock = threading.Lock()

        def handler(ud, connection, subscription, message):
            with lock:
                counter["n"] += 1

        sub = live.subscribe(subject, handler)
        live.flush()
        for _ in range(500):
            live.publish(subject, b"x")
        sub.destroy()
        with lock:
            after = counter["n"]
        for _ in range(500):
            live.publish(subject, b"x")
        live.flush()
        time.sleep(0.2)
        print(f"\n  Delivered before destroy: {after}")
        assert counter["n"] == after


# ---------------------------------------------------------------------------
# Request / Reply Tests
# ---------------------------------------------------------------------------


class TestRequestReply:
    """Verify request/reply and its failure modes."""

    def test_greetings_salutations(self, live):
        subject = _unique_subject("greet")

        def handler(ud, connection, subscription, message):
            connection.publish_string(message.reply, "salutations")

        with live.subscribe(subject, handler):
            live.flush()
            with live.request_string(subject, "greetings", 2000) as reply:
                assert reply.data == b"salutations"

    def test_no_responders(self, live):
        with pytest.raises(NoRespondersError):
            live.request(_unique_subject("nobody"), b"?", 1000)

    def test_timeout(self, live):
        subject = _unique_subject("silent")
        with live.subscribe(subject, lambda ud, c, s, m: None):
            live.flush()
            with pytest.raises(TimeoutError):
                live.request(subject, b"?", 100)

    async def test_request_async(self, live):
        subject = _unique_subject("async")

        def handler(ud, connection, subscription, message):
            connection.publish(message.reply, message.data)

        with live.subscribe(subject, handler):
            live.flush()
            reply = await live.request_async(subject, b"echo", 2000)
            try:
                assert reply.data == b"echo"
            finally:
                reply.destroy()

    def test_stats_after_traffic(self, live):
        subject = _unique_subject("stats")
        with live.subscribe(subject, lambda ud, c, s, m: None):
            live.flush()
            for _ in range(10):
                live.publish(subject, b"12345")
            live.flush()
            assert _wait_for(lambda: live.get_stats().messages_in >= 10)
        counts = live.get_stats()
        print(f"\n  {counts}")
        assert counts.messages_out >= 10
        assert counts.bytes_out >= 50
