"""Shared connection state for the cache client.

One handle is current at a time. Worker threads read it, connect when it is
missing and drop it when credentials look expired; all three steps happen
under a single lock so concurrent failures cannot clobber a fresh handle.
"""

import threading
from enum import Enum
from typing import Callable, Generic, Optional, TypeVar

from build_cache.logging_config import get_logger

logger = get_logger(__name__)

HandleT = TypeVar("HandleT")


class ConnectionStatus(Enum):
    """Lifecycle of the bucket handle."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    STALE = "stale"


class ConnectionState(Generic[HandleT]):
    """Lock-guarded holder of the current bucket handle.

    Attributes:
        connector: Zero-argument callable returning a new handle
    """

    def __init__(self, connector: Callable[[], HandleT]):
        self.connector = connector
        self._lock = threading.Lock()
        self._handle: Optional[HandleT] = None
        self._status = ConnectionStatus.DISCONNECTED
        self._connect_count = 0

    @property
    def status(self) -> ConnectionStatus:
        with self._lock:
            return self._status

    @property
    def connect_count(self) -> int:
        """Number of successful connects so far."""
        with self._lock:
            return self._connect_count

    def acquire(self) -> HandleT:
        """Return the current handle, connecting first if there is none.

        Connector errors propagate and leave the state untouched.
        """
        with self._lock:
            if self._handle is not None:
                return self._handle

            if self._status is ConnectionStatus.STALE:
                logger.info("Reconnecting after invalidated connection")

            handle = self.connector()
            self._handle = handle
            self._status = ConnectionStatus.CONNECTED
            self._connect_count += 1
            return handle

    def invalidate(self, handle: HandleT) -> bool:
        """Drop ``handle`` if it is still the current one.

        Args:
            handle: The handle the failing operation used

        Returns:
            True if the handle was dropped, False if it had already been replaced
        """
        with self._lock:
            if self._handle is None or self._handle is not handle:
                return False
            self._handle = None
            self._status = ConnectionStatus.STALE
            logger.warning("Connection invalidated, next operation will reconnect")
            return True
