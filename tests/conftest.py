"""Shared fixtures for build-cache tests."""

from datetime import datetime, timedelta, timezone

import pytest

from build_cache.remote import RemoteObject, remote_error


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeBucket:
    """In-memory bucket handle with the S3Bucket interface.

    Objects share one dict across handles so reconnecting keeps the data.
    Failures queued with fail_next() are raised by the next put/get.
    """

    def __init__(self, name, objects, clock):
        self.name = name
        self.objects = objects
        self.clock = clock
        self.puts = []
        self.gets = []
        self._failures = []

    def fail_next(self, status_code, message="", operation=None):
        self._failures.append((status_code, message or f"status {status_code}", operation))

    def _maybe_fail(self, operation):
        if self._failures and self._failures[0][2] in (None, operation):
            status_code, message, _ = self._failures.pop(0)
            raise remote_error(message, status_code, operation)

    def put(self, key, content):
        self._maybe_fail("PutObject")
        self.puts.append(key)
        self.objects[key] = RemoteObject(content=bytes(content), last_modified=self.clock())

    def get(self, key):
        self._maybe_fail("GetObject")
        self.gets.append(key)
        return self.objects.get(key)


class FakeStore:
    """Connector producing FakeBuckets over shared object storage."""

    def __init__(self, name, clock):
        self.name = name
        self.clock = clock
        self.objects = {}
        self.handles = []
        self.connect_error = None

    def __call__(self):
        if self.connect_error is not None:
            raise self.connect_error
        handle = FakeBucket(self.name, self.objects, self.clock)
        self.handles.append(handle)
        return handle

    @property
    def current(self):
        return self.handles[-1]


@pytest.fixture
def clock():
    """Clock starting at a fixed UTC instant."""
    return FakeClock(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(clock):
    """In-memory object store for bucket "cache-1"."""
    return FakeStore("cache-1", clock)


@pytest.fixture
def make_client(store, clock):
    """Factory for CacheClients wired to the fake store."""
    from build_cache.client import CacheClient

    def factory(refresh_after_seconds=0, refresh_mode="blocking"):
        return CacheClient(
            "cache-1",
            refresh_after_seconds,
            refresh_mode,
            connector=store,
            clock=clock,
        )

    return factory


