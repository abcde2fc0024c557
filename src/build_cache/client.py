"""Remote build cache client.

Stores and loads opaque build outputs by key in an object store bucket.
Entries that are still being read get re-uploaded once they are older than
the refresh interval, so a bucket lifecycle rule that deletes old objects
only removes artifacts nobody has used recently.
"""

import io
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import partial
from pathlib import Path
from typing import BinaryIO, Callable, Dict, Optional, Union

from build_cache.config import REFRESH_MODES, CacheConfig, get_config_path
from build_cache.connection import ConnectionState
from build_cache.errors import BuildCacheError, LoadError, StoreError
from build_cache.logging_config import get_logger, setup_logging
from build_cache.remote import RemoteError
from build_cache.services import s3

logger = get_logger(__name__)

MAX_KEY_BYTES = 1024

Payload = Union[bytes, bytearray, memoryview]


def validate_key(key: str) -> str:
    """Check that a cache key can be used verbatim as an object name.

    Args:
        key: Cache key (usually a hex content hash)

    Returns:
        The key unchanged

    Raises:
        TypeError: If the key is not a string
        ValueError: If the key is empty, too long, starts with "/" or
            contains control characters
    """
    if not isinstance(key, str):
        raise TypeError(f"Cache key must be a string, got {type(key).__name__}")
    if not key:
        raise ValueError("Cache key must not be empty")
    if len(key.encode("utf-8")) > MAX_KEY_BYTES:
        raise ValueError(f"Cache key exceeds {MAX_KEY_BYTES} bytes: {key[:32]}...")
    if key.startswith("/"):
        raise ValueError(f"Cache key must not start with '/': {key}")
    if any(ord(c) < 32 or ord(c) == 127 for c in key):
        raise ValueError(f"Cache key contains control characters: {key!r}")
    return key


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CacheEntry:
    """A cache hit.

    Attributes:
        key: Cache key
        content: Stored bytes
        last_modified: Store-side modification time before any refresh
        refreshed: Whether this load re-uploaded (or scheduled re-uploading) the entry
    """

    key: str
    content: bytes
    last_modified: datetime
    refreshed: bool = False

    @property
    def size(self) -> int:
        return len(self.content)


class CacheClient:
    """Key-addressed store/load against a remote bucket.

    The bucket handle is created at construction and re-created lazily after
    an operation fails with a status that suggests expired credentials
    (400, 401, 403). The failing operation still raises; only later calls
    benefit from the new connection.

    Attributes:
        bucket_name: Bucket holding cache entries
        refresh_after_seconds: Entry age that triggers a refresh on read (0 disables)
        refresh_mode: "blocking" refreshes inside load(); "background" uses a thread
    """

    def __init__(
        self,
        bucket_name: str,
        refresh_after_seconds: int = 0,
        refresh_mode: str = "blocking",
        *,
        endpoint_url: Optional[str] = None,
        region: Optional[str] = None,
        profile: Optional[str] = None,
        connector: Optional[Callable[[], "s3.S3Bucket"]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the client and connect to the bucket.

        Args:
            bucket_name: Bucket holding cache entries
            refresh_after_seconds: Entry age that triggers a refresh on read
            refresh_mode: "blocking" or "background"
            endpoint_url: Custom S3-compatible endpoint
            region: Region name
            profile: Named credentials profile
            connector: Callable returning a bucket handle (defaults to s3.connect)
            clock: Callable returning the current timezone-aware time

        Raises:
            ValueError: If an argument is out of range
            ConfigurationError: If the bucket is missing or not accessible
            TransportError: If the store cannot be reached
        """
        if not bucket_name:
            raise ValueError("bucket_name must not be empty")
        if refresh_after_seconds < 0:
            raise ValueError(f"refresh_after_seconds must be >= 0, got {refresh_after_seconds}")
        if refresh_mode not in REFRESH_MODES:
            raise ValueError(f"refresh_mode must be one of {', '.join(REFRESH_MODES)}, got {refresh_mode!r}")

        self.bucket_name = bucket_name
        self.refresh_after_seconds = refresh_after_seconds
        self.refresh_mode = refresh_mode

        if connector is None:
            connector = partial(
                s3.connect,
                bucket_name,
                endpoint_url=endpoint_url,
                region=region,
                profile=profile,
            )
        self._connection = ConnectionState(connector)
        self._clock = clock or _utc_now

        self._refresh_lock = threading.Lock()
        self._pending_refreshes: Dict[str, threading.Thread] = {}

        self._connection.acquire()

    @classmethod
    def from_config(
        cls,
        config: CacheConfig,
        connector: Optional[Callable[[], "s3.S3Bucket"]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "CacheClient":
        """Build a client from a validated CacheConfig."""
        config.validate()
        return cls(
            config.bucket,
            config.refresh_after_seconds,
            config.refresh_mode,
            endpoint_url=config.endpoint_url or None,
            region=config.region or None,
            profile=config.profile or None,
            connector=connector,
            clock=clock,
        )

    @property
    def connection(self) -> ConnectionState:
        return self._connection

    def store(self, key: str, payload: Payload) -> None:
        """Upload ``payload`` as the entry for ``key``, replacing any previous one.

        Args:
            key: Cache key
            payload: Fully materialized bytes

        Raises:
            StoreError: If the upload fails
            ConfigurationError: If (re)connecting fails
            TransportError: If (re)connecting fails at the network level
        """
        validate_key(key)
        if not isinstance(payload, (bytes, bytearray, memoryview)):
            raise TypeError(f"payload must be bytes, got {type(payload).__name__}")
        content = bytes(payload)

        bucket = self._connection.acquire()
        self._put(bucket, key, content)
        logger.debug(f"Stored {key} ({len(content)} bytes) in {self.bucket_name}")

    def store_from(self, key: str, writer: Callable[[BinaryIO], None]) -> None:
        """Drain ``writer`` into memory, then store the result under ``key``.

        Args:
            key: Cache key
            writer: Callable writing the entry to the binary file it is given
        """
        buffer = io.BytesIO()
        writer(buffer)
        self.store(key, buffer.getvalue())

    def load(self, key: str) -> Optional[CacheEntry]:
        """Fetch the entry for ``key``.

        Args:
            key: Cache key

        Returns:
            The entry, or None on a cache miss

        Raises:
            LoadError: If the download fails
            StoreError: If a blocking freshness refresh fails
            ConfigurationError: If (re)connecting fails
            TransportError: If (re)connecting fails at the network level
        """
        return self._load(key)

    def load_into(self, key: str, reader: Callable[[BinaryIO], None]) -> bool:
        """Fetch the entry for ``key`` and hand it to ``reader``.

        Args:
            key: Cache key
            reader: Callable consuming the entry from the binary file it is given

        Returns:
            True on a hit, False on a miss (reader is not called)
        """
        entry = self._load(key, deliver=lambda content: reader(io.BytesIO(content)))
        return entry is not None

    def needs_refresh(self, last_modified: datetime, now: Optional[datetime] = None) -> bool:
        """Check whether an entry modified at ``last_modified`` is due a refresh."""
        if self.refresh_after_seconds <= 0:
            return False
        if now is None:
            now = self._clock()
        return now > last_modified + timedelta(seconds=self.refresh_after_seconds)

    def close(self) -> None:
        """Wait for background refreshes. Bucket handles need no teardown."""
        with self._refresh_lock:
            pending = list(self._pending_refreshes.values())

        for thread in pending:
            thread.join()

    def __enter__(self) -> "CacheClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _load(
        self,
        key: str,
        deliver: Optional[Callable[[bytes], None]] = None,
    ) -> Optional[CacheEntry]:
        validate_key(key)
        bucket = self._connection.acquire()

        try:
            obj = bucket.get(key)
        except RemoteError as e:
            self._note_failure(bucket, e)
            if not e.not_found:
                raise LoadError(key, self.bucket_name, e.status_code) from e
            obj = None

        if obj is None:
            logger.debug(f"Cache miss for {key} in {self.bucket_name}")
            return None

        logger.debug(f"Cache hit for {key} in {self.bucket_name} ({len(obj.content)} bytes)")
        if deliver is not None:
            deliver(obj.content)

        refreshed = self.needs_refresh(obj.last_modified)
        if refreshed:
            if self.refresh_mode == "background":
                self._schedule_refresh(key, obj.content)
            else:
                self._refresh(bucket, key, obj.content)

        return CacheEntry(
            key=key,
            content=obj.content,
            last_modified=obj.last_modified,
            refreshed=refreshed,
        )

    def _put(self, bucket: "s3.S3Bucket", key: str, content: bytes) -> None:
        try:
            bucket.put(key, content)
        except RemoteError as e:
            self._note_failure(bucket, e)
            raise StoreError(key, self.bucket_name, e.status_code) from e

    def _refresh(self, bucket: "s3.S3Bucket", key: str, content: bytes) -> None:
        self._put(bucket, key, content)
        logger.info(f"Refreshed {key} in {self.bucket_name}")

    def _schedule_refresh(self, key: str, content: bytes) -> bool:
        with self._refresh_lock:
            if key in self._pending_refreshes:
                return False
            thread = threading.Thread(
                target=self._run_background_refresh,
                args=(key, content),
                name=f"build-cache-refresh-{key[:16]}",
                daemon=True,
            )
            self._pending_refreshes[key] = thread
            # Start under the lock so close() never joins an unstarted thread
            thread.start()
        return True

    def _run_background_refresh(self, key: str, content: bytes) -> None:
        try:
            bucket = self._connection.acquire()
            self._refresh(bucket, key, content)
        except BuildCacheError as e:
            logger.error(f"Background refresh of {key} failed: {e}")
        finally:
            with self._refresh_lock:
                self._pending_refreshes.pop(key, None)

    def _note_failure(self, bucket: "s3.S3Bucket", error: RemoteError) -> None:
        logger.warning(
            f"{error.operation or 'Remote operation'} on {self.bucket_name} failed "
            f"(status {error.status_code}): {error}"
        )
        if error.reauthentication_likely:
            self._connection.invalidate(bucket)


def open_cache(
    config_path: Optional[Path] = None,
    connector: Optional[Callable[[], "s3.S3Bucket"]] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> CacheClient:
    """Load configuration, start the session log and connect a client.

    Reads ``config_path`` (or the default config file when it exists,
    otherwise only BUILD_CACHE_* environment variables), writes logs to the
    configured log directory at the configured level, then builds the client.

    Args:
        config_path: Explicit config file
        connector: Callable returning a bucket handle (defaults to s3.connect)
        clock: Callable returning the current timezone-aware time

    Returns:
        Connected CacheClient

    Raises:
        FileNotFoundError: If ``config_path`` is given but missing
        ConfigurationError: If the configuration is invalid or the bucket is unavailable
        TransportError: If the store cannot be reached
    """
    if config_path is None and get_config_path().exists():
        config_path = get_config_path()

    config = CacheConfig.load(config_path) if config_path is not None else CacheConfig.from_env()
    config.validate()

    setup_logging(config.log_dir, config.log_level)
    logger.info(f"Opening cache on bucket {config.bucket}")
    return CacheClient.from_config(config, connector=connector, clock=clock)
