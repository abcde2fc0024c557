"""Tests for the shared connection state."""

import threading

import pytest

from build_cache.connection import ConnectionState, ConnectionStatus
from build_cache.errors import ConfigurationError


class Counter:
    def __init__(self):
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return object()


class TestConnectionState:
    """Tests for ConnectionState."""

    def test_starts_disconnected(self):
        state = ConnectionState(Counter())

        assert state.status is ConnectionStatus.DISCONNECTED
        assert state.connect_count == 0

    def test_acquire_connects_once(self):
        connector = Counter()
        state = ConnectionState(connector)

        first = state.acquire()
        second = state.acquire()

        assert first is second
        assert connector.calls == 1
        assert state.status is ConnectionStatus.CONNECTED

    def test_invalidate_forces_reconnect(self):
        connector = Counter()
        state = ConnectionState(connector)
        handle = state.acquire()

        assert state.invalidate(handle) is True
        assert state.status is ConnectionStatus.STALE

        new_handle = state.acquire()
        assert new_handle is not handle
        assert state.connect_count == 2

    def test_invalidate_stale_handle_keeps_current(self):
        state = ConnectionState(Counter())
        old = state.acquire()
        state.invalidate(old)
        current = state.acquire()

        assert state.invalidate(old) is False
        assert state.acquire() is current

    def test_connector_failure_leaves_state(self):
        def failing():
            raise ConfigurationError("Bucket 'cache-1' is unavailable")

        state = ConnectionState(failing)

        with pytest.raises(ConfigurationError):
            state.acquire()

        assert state.status is ConnectionStatus.DISCONNECTED
        assert state.connect_count == 0

    def test_concurrent_acquire_connects_once(self):
        release = threading.Event()
        connector_calls = []

        def slow_connector():
            connector_calls.append(1)
            release.wait(timeout=5)
            return object()

        state = ConnectionState(slow_connector)
        handles = []
        threads = [threading.Thread(target=lambda: handles.append(state.acquire())) for _ in range(8)]
        for thread in threads:
            thread.start()
        release.set()
        for thread in threads:
            thread.join()

        assert len(connector_calls) == 1
        assert len({id(h) for h in handles}) == 1
