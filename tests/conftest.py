"""Shared fixtures: a fake libnats installed in place of the native library."""

from __future__ import annotations

import pytest

from natsbind import _native, runtime
from natsbind.connection import Connection

from fake_libnats import FakeLibnats


@pytest.fixture
def fake_lib(monkeypatch) -> FakeLibnats:
    """Fake native library with fresh, uninitialized process state."""
    lib = FakeLibnats()
    previous = _native.set_library(lib)
    monkeypatch.setattr(runtime, "_state", runtime._LibraryState())
    yield lib
    _native.set_library(previous)


@pytest.fixture
def nats_runtime(fake_lib) -> FakeLibnats:
    """Initialized library. Teardown fails if a test leaked native resources."""
    runtime.init()
    yield fake_lib
    if runtime.is_initialized():
        runtime.deinit()


@pytest.fixture
def conn(nats_runtime) -> Connection:
    connection = Connection.connect_to("nats://localhost:4222")
    yield connection
    if not connection.released:
        connection.destroy()


@pytest.fixture
def threaded_runtime(monkeypatch) -> FakeLibnats:
    """Initialized library whose fake delivers on per-subscription threads."""
    lib = FakeLibnats(threaded=True)
    previous = _native.set_library(lib)
    monkeypatch.setattr(runtime, "_state", runtime._LibraryState())
    runtime.init()
    yield lib
    if runtime.is_initialized():
        runtime.deinit()
    _native.set_library(previous)


@pytest.fixture
def threaded_conn(threaded_runtime) -> Connection:
    connection = Connection.connect_to("nats://localhost:4222")
    yield connection
    if not connection.released:
        connection.destroy()
