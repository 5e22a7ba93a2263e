"""Tests for Connection: connect, publish/subscribe, request/reply, stats, and lifecycle."""

import asyncio
import logging
import threading
import time

import pytest

from natsbind.config import ConnectionConfig
from natsbind.connection import Connection
from natsbind.errors import (
    ConnectionError,
    HandleReleasedError,
    InvalidArgumentError,
    NoRespondersError,
    TimeoutError,
)
from natsbind.message import Message
from natsbind.statistics import Statistics, StatsCounts
from natsbind.status import ConnectionStatus, Status

from fake_libnats import FakeMsg


def _collect(received, connection, subscription, message):
    received.append((message.subject, message.data, message.reply))


def _reply_salutations(calls, connection, subscription, message):
    calls.append(message.data)
    if message.reply is not None:
        connection.publish_string(message.reply, "salutations")


class TestConnect:
    """Test connection establishment."""

    def test_connect_to(self, nats_runtime):
        conn = Connection.connect_to("nats://localhost:4222")
        try:
            assert conn.connected_url == "nats://localhost:4222"
            assert conn.connected_server_id == "NFAKESERVER"
            assert conn.status is ConnectionStatus.CONNECTED
            assert not conn.is_closed()
            assert not conn.is_reconnecting()
            assert conn.max_payload == 1024 * 1024
            assert conn.last_error is None
        finally:
            conn.destroy()

    def test_unreachable_server(self, nats_runtime):
        with pytest.raises(ConnectionError) as exc_info:
            Connection.connect_to("nats://unreachable:4222")
        assert exc_info.value.status is Status.NO_SERVER
        assert nats_runtime.connections == {}

    def test_invalid_url(self, nats_runtime):
        with pytest.raises(ConnectionError) as exc_info:
            Connection.connect_to("localhost")
        assert exc_info.value.status is Status.ADDRESS_MISSING

    def test_connect_with_config(self, nats_runtime):
        cfg = ConnectionConfig().with_servers("nats://10.1.1.1:4222").with_name("svc")
        with Connection.connect(cfg) as conn:
            assert conn.connected_url == "nats://10.1.1.1:4222"
        # options built from the config are released after connecting
        assert nats_runtime.options == {}

    def test_connect_with_config_failure_releases_options(self, nats_runtime):
        cfg = ConnectionConfig().with_servers("nats://unreachable:4222")
        with pytest.raises(ConnectionError):
            Connection.connect(cfg)
        assert nats_runtime.options == {}


class TestPublishSubscribe:
    """Test publish/subscribe round trips."""

    def test_round_trip(self, conn):
        received = []
        with conn.subscribe("updates", _collect, received):
            conn.publish("updates", b"hello")
        assert received == [("updates", b"hello", None)]

    def test_absent_vs_empty_payload(self, conn):
        received = []
        with conn.subscribe("updates", _collect, received):
            conn.publish("updates", None)
            conn.publish("updates", b"")
        assert received[0][1] is None
        assert received[1][1] == b""

    def test_publish_string(self, conn):
        received = []
        with conn.subscribe("greet", _collect, received):
            conn.publish_string("greet", "héllo")
        assert received == [("greet", "héllo".encode(), None)]

    def test_publish_request_sets_reply(self, conn):
        received = []
        with conn.subscribe("svc", _collect, received):
            conn.publish_request("svc", "reply.here", b"q")
        assert received == [("svc", b"q", "reply.here")]

    def test_publish_msg(self, conn):
        received = []
        with conn.subscribe("built", _collect, received):
            with Message.create("built", b"data", reply="r.1") as msg:
                conn.publish_msg(msg)
                assert not msg.released
        assert received == [("built", b"data", "r.1")]

    def test_publish_bytearray(self, conn):
        received = []
        with conn.subscribe("raw", _collect, received):
            conn.publish("raw", bytearray(b"abc"))
        assert received[0][1] == b"abc"

    def test_wildcards(self, conn):
        received = []
        with conn.subscribe("orders.*", _collect, received):
            conn.publish("orders.new", b"1")
            conn.publish("orders.new.eu", b"2")
        assert [r[1] for r in received] == [b"1"]

    def test_fifo_per_subscription(self, conn):
        received = []
        with conn.subscribe("seq", _collect, received):
            for i in range(20):
                conn.publish("seq", str(i).encode())
        assert [r[1] for r in received] == [str(i).encode() for i in range(20)]

    def test_invalid_subject(self, conn):
        with pytest.raises(InvalidArgumentError) as exc_info:
            conn.publish("bad subject", b"x")
        assert exc_info.value.status is Status.INVALID_SUBJECT

    def test_userdata_passed_by_reference(self, conn):
        userdata = {"seen": 0}
        observed = []

        def handler(data, connection, subscription, message):
            data["seen"] += 1
            observed.append((data, connection, subscription))

        with conn.subscribe("ref", handler, userdata) as sub:
            conn.publish("ref", b"x")
        assert userdata["seen"] == 1
        data, connection, subscription = observed[0]
        assert data is userdata
        assert connection is conn
        assert subscription is sub

    def test_queue_subscribe_load_balances(self, conn):
        first, second = [], []
        with conn.queue_subscribe("jobs", "workers", _collect, first):
            with conn.queue_subscribe("jobs", "workers", _collect, second):
                for _ in range(4):
                    conn.publish("jobs", b"j")
        assert len(first) == 2
        assert len(second) == 2

    def test_invalid_queue_name(self, conn):
        with pytest.raises(InvalidArgumentError) as exc_info:
            conn.queue_subscribe("jobs", "bad queue", _collect, [])
        assert exc_info.value.status is Status.INVALID_QUEUE_NAME

    def test_subscribe_sync(self, conn):
        with conn.subscribe_sync("poll") as sub:
            conn.publish("poll", b"1")
            with sub.next_message(100) as msg:
                assert msg.data == b"1"
            with pytest.raises(TimeoutError):
                sub.next_message(10)


class TestRequestReply:
    """Test blocking request/reply."""

    def test_greetings_salutations(self, conn):
        calls = []
        with conn.subscribe("channel", _reply_salutations, calls):
            with conn.request_string("channel", "greetings", 1000) as reply:
                assert reply.data == b"salutations"
        assert calls == [b"greetings"]

    def test_request_bytes(self, conn):
        calls = []
        with conn.subscribe("channel", _reply_salutations, calls):
            reply = conn.request("channel", b"greetings", 1000)
            assert reply.get_data() == b"salutations"
            reply.destroy()

    def test_no_responders(self, conn):
        with pytest.raises(NoRespondersError):
            conn.request("nobody.home", b"?", 1000)

    def test_timeout_when_nobody_replies(self, conn):
        with conn.subscribe("silent", _collect, []):
            with pytest.raises(TimeoutError) as exc_info:
                conn.request("silent", b"?", 20)
        assert exc_info.value.status is Status.TIMEOUT

    def test_close_wakes_blocked_request(self, conn):
        errors = []

        def blocked():
            try:
                conn.request("silent", b"?", 5000)
            except ConnectionError as e:
                errors.append(e)

        with conn.subscribe("silent", _collect, []):
            worker = threading.Thread(target=blocked)
            worker.start()
            # wait for the request to register its inbox
            for _ in range(200):
                if nats_waiters(conn):
                    break
                time.sleep(0.005)
            conn.close()
            worker.join(timeout=2)
        assert not worker.is_alive()
        assert errors[0].status is Status.CONNECTION_CLOSED


def nats_waiters(conn):
    from natsbind import _native

    return _native.get_library().connections[conn.handle].waiters


class TestRequestAsync:
    """Test the awaitable request."""

    async def test_reply(self, conn):
        calls = []
        with conn.subscribe("channel", _reply_salutations, calls):
            reply = await conn.request_async("channel", b"greetings", 1000)
            try:
                assert reply.data == b"salutations"
            finally:
                reply.destroy()

    async def test_no_responders(self, conn, nats_runtime):
        with pytest.raises(NoRespondersError):
            await conn.request_async("nobody.home", b"?", 1000)
        assert nats_runtime.msgs == {}

    async def test_timeout(self, conn):
        with conn.subscribe("silent", _collect, []):
            with pytest.raises(TimeoutError):
                await conn.request_async("silent", b"?", 20)

    async def test_destroy_fails_pending_request(self, conn):
        with conn.subscribe("silent", _collect, []) as sub:
            task = asyncio.create_task(conn.request_async("silent", b"?", 5000))
            await asyncio.sleep(0.01)
            conn.destroy()
            with pytest.raises(ConnectionError) as exc_info:
                await task
            assert exc_info.value.status is Status.CONNECTION_CLOSED
            assert not sub.released


class TestStats:
    """Test statistics retrieval."""

    def test_get_stats(self, conn):
        with conn.subscribe("s", _collect, []):
            conn.publish("s", b"12345")
        counts = conn.get_stats()
        assert counts == StatsCounts(
            messages_in=1, bytes_in=5, messages_out=1, bytes_out=5, reconnects=0
        )

    def test_get_stats_into_caller_statistics(self, conn):
        conn.publish("s", b"abc")
        with Statistics.create() as stats:
            counts = conn.get_stats(stats)
            assert counts.messages_out == 1
            assert stats.get_counts() == counts


class TestLifecycle:
    """Test close/destroy semantics."""

    def test_publish_after_close(self, conn):
        conn.close()
        assert conn.is_closed()
        assert conn.status is ConnectionStatus.CLOSED
        with pytest.raises(ConnectionError) as exc_info:
            conn.publish("x", b"y")
        assert exc_info.value.status is Status.CONNECTION_CLOSED

    def test_use_after_destroy(self, conn):
        conn.destroy()
        with pytest.raises(HandleReleasedError):
            conn.publish("x", b"y")
        with pytest.raises(HandleReleasedError):
            conn.destroy()

    def test_destroy_silences_subscriptions(self, conn, nats_runtime):
        received = []
        sub = conn.subscribe("s", _collect, received)
        handle = sub.handle
        conn.destroy()
        # a stray native delivery after destroy never reaches the handler
        msg_handle = nats_runtime._new_handle()
        nats_runtime.msgs[msg_handle] = FakeMsg(b"s", None, b"late")
        sub.native_callback(None, handle, msg_handle, sub.closure)
        assert received == []
        assert msg_handle not in nats_runtime.msgs
        sub.destroy()

    def test_flush(self, conn):
        conn.flush()
        conn.flush_timeout(100)
        with pytest.raises(InvalidArgumentError):
            conn.flush_timeout(0)

    def test_last_error(self, conn, nats_runtime):
        nats_runtime.fire_async_error(conn.handle, Status.SLOW_CONSUMER)
        err = conn.last_error
        assert err.status is Status.SLOW_CONSUMER
        assert str(err) == "async failure"

    def test_info_logged_on_connect(self, nats_runtime, caplog):
        with caplog.at_level(logging.INFO, logger="natsbind.connection"):
            with Connection.connect_to("nats://localhost:4222"):
                pass
        assert "Connected to nats://localhost:4222" in caplog.text
