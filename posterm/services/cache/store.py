"""
Durable Cache Store

Persistent key/value cache with per-entry TTL and an optional monotonic
version stamp. Storage failures are logged and downgraded to a cache miss;
this class never raises to its callers, who always have a network path.
"""

import math
import time
from typing import Any, Callable

from ...common.exceptions import StorageError
from ...common.logging_setup import get_service_logger, log_cache_write
from ...common.models import CacheEntry, CacheStats
from ...storage.kv_store import KeyValueStore

logger = get_service_logger("cache.store")

# Every cache key lives under this prefix
CACHE_PREFIX = "offline:"
LAST_SYNC_KEY = "offline:last_sync"


class CacheStore:
    """
    Local cache over an injected KeyValueStore.

    Entry rules:
    - Expired entries (now > expires_at) are purged when read
    - Versioned writes never move a key's version backwards
    - Returned data is always a fresh copy
    """

    def __init__(
        self,
        kv: KeyValueStore,
        clock: Callable[[], float] = time.time,
    ):
        self.kv = kv
        self.clock = clock

    # ============================================
    # ENTRY ACCESS
    # ============================================

    def _read_entry(self, key: str) -> CacheEntry | None:
        """Read an entry, purging it if expired"""
        try:
            raw = self.kv.get(key)
        except StorageError as e:
            logger.error(f"Error getting {key}: {e}", extra={"cache_key": key})
            return None

        if not isinstance(raw, dict) or "key" not in raw:
            return None

        entry = CacheEntry.from_dict(raw)
        if entry.is_expired(self.clock()):
            logger.info(f"Cache expired for {key}", extra={"cache_key": key})
            self.delete(key)
            return None

        return entry

    def get(self, key: str) -> Any | None:
        """Get cached data, or None on miss/expiry/storage error"""
        entry = self._read_entry(key)
        return entry.data if entry else None

    def get_entry(self, key: str) -> CacheEntry | None:
        """Get the full entry including staleness metadata"""
        return self._read_entry(key)

    def set(
        self,
        key: str,
        data: Any,
        ttl_minutes: float | None = None,
        version: int | None = None,
    ) -> bool:
        """
        Write data to the cache.

        Args:
            key: Cache key
            data: JSON-serializable value
            ttl_minutes: Hard expiry, None for no expiry
            version: Monotonic version stamp

        Returns:
            True if persisted, False if rejected as stale or storage failed
        """
        current = self._read_entry(key)

        if version is not None and current and current.version is not None:
            if version < current.version:
                logger.warning(
                    f"Ignoring stale write for {key}: version {version} < stored {current.version}",
                    extra={"cache_key": key, "version": version, "stored_version": current.version},
                )
                return False

        # An unversioned write keeps the stamp already on the key
        if version is None and current is not None:
            version = current.version

        now = self.clock()
        entry = CacheEntry(
            key=key,
            data=data,
            cached_at=now,
            expires_at=now + ttl_minutes * 60 if ttl_minutes else None,
            version=version,
        )

        try:
            self.kv.set(key, entry.to_dict())
        except StorageError as e:
            logger.error(f"Error setting {key}: {e}", extra={"cache_key": key})
            return False

        log_cache_write(logger, key, ttl_minutes, version)
        return True

    def delete(self, key: str) -> None:
        try:
            self.kv.delete(key)
        except StorageError as e:
            logger.error(f"Error deleting {key}: {e}", extra={"cache_key": key})

    def get_version(self, key: str) -> int:
        """Stored version stamp, 0 if absent"""
        entry = self._read_entry(key)
        if entry is None or entry.version is None:
            return 0
        return entry.version

    def get_age(self, key: str) -> float:
        """Whole minutes since the entry was cached, infinity if absent"""
        entry = self._read_entry(key)
        if entry is None:
            return math.inf
        return float(math.floor((self.clock() - entry.cached_at) / 60))

    # ============================================
    # SYNC TRACKING
    # ============================================

    def get_last_sync(self) -> float | None:
        value = self.get(LAST_SYNC_KEY)
        return float(value) if value else None

    def mark_synced(self) -> None:
        self.set(LAST_SYNC_KEY, self.clock())

    # ============================================
    # UTILITIES
    # ============================================

    def clear_all(self, prefix: str = CACHE_PREFIX) -> int:
        """
        Delete every entry under prefix.

        Returns:
            Number of entries removed
        """
        try:
            keys = self.kv.keys(prefix)
            for key in keys:
                self.kv.delete(key)
        except StorageError as e:
            logger.error(f"Error clearing cache: {e}")
            return 0

        logger.info(f"Cache cleared ({len(keys)} entries under '{prefix}')")
        return len(keys)

    def stats(self) -> CacheStats:
        try:
            count = len(self.kv.keys(CACHE_PREFIX))
        except StorageError as e:
            logger.error(f"Error reading cache stats: {e}")
            count = 0

        return CacheStats(count=count, last_sync_at=self.get_last_sync())
