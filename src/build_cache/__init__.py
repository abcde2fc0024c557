"""build-cache - remote build-artifact cache on S3-compatible object stores.

Stores build outputs by content key and keeps entries that are still read
fresh, so a bucket lifecycle rule can expire the ones nobody uses.
"""

from build_cache.client import CacheClient, CacheEntry, open_cache, validate_key
from build_cache.config import CacheConfig
from build_cache.errors import (
    BuildCacheError,
    CacheOperationError,
    ConfigurationError,
    LoadError,
    StoreError,
    TransportError,
)

__version__ = "0.1.0"

__all__ = [
    "BuildCacheError",
    "CacheClient",
    "CacheConfig",
    "CacheEntry",
    "CacheOperationError",
    "ConfigurationError",
    "LoadError",
    "StoreError",
    "TransportError",
    "open_cache",
    "validate_key",
]
