"""Error taxonomy for build-cache.

Every failure raised to callers derives from BuildCacheError. A cache miss
is not an error: load() returns None for it.
"""

from typing import Optional


class BuildCacheError(Exception):
    """Base class for all build-cache errors."""

    pass


class ConfigurationError(BuildCacheError):
    """The configured bucket cannot be found or accessed."""

    def __init__(
        self,
        message: str,
        bucket: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.bucket = bucket
        self.status_code = status_code


class TransportError(BuildCacheError):
    """Network-level failure while talking to the object store."""

    def __init__(self, message: str, bucket: Optional[str] = None):
        super().__init__(message)
        self.bucket = bucket


class CacheOperationError(BuildCacheError):
    """A store or load failed at the object store after connecting.

    Attributes:
        key: Cache key the operation was for
        bucket: Bucket name
        operation: "store" or "load"
        status_code: HTTP status reported by the store, if any
    """

    def __init__(
        self,
        message: str,
        key: str,
        bucket: str,
        operation: str,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.key = key
        self.bucket = bucket
        self.operation = operation
        self.status_code = status_code


class StoreError(CacheOperationError):
    """Storing an entry (or refreshing it) failed."""

    def __init__(self, key: str, bucket: str, status_code: Optional[int] = None):
        super().__init__(
            f"Unable to store '{key}' in bucket '{bucket}'",
            key=key,
            bucket=bucket,
            operation="store",
            status_code=status_code,
        )


class LoadError(CacheOperationError):
    """Loading an entry failed for a reason other than the entry being absent."""

    def __init__(self, key: str, bucket: str, status_code: Optional[int] = None):
        super().__init__(
            f"Unable to load '{key}' from bucket '{bucket}'",
            key=key,
            bucket=bucket,
            operation="load",
            status_code=status_code,
        )
