"""
Two-tier Cache Manager.

This module provides a cache with a bounded in-process tier in front of a
DynamoDB tier. Entries carry a TTL and tags; the in-process tier is evicted
in LRU batches when it exceeds its byte or entry budget.

The cache is strictly an optimization: DynamoDB failures are logged and
degrade to a miss or a failed write, never to an exception.
"""

import copy
import math
import threading
import time
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple, Union

from ..config.settings import CacheConfig
from ..config.table_names import get_table_name
from ..data_access.cache_repository import CacheRepository
from ..data_access.exceptions import DynamoDBError
from ..models.cache_entry import CacheEntry, detach_payload
from ..utils.metrics import MetricsPublisher
from ..utils.structured_logger import get_structured_logger

logger = get_structured_logger('CacheManager')

# Share of the in-process tier dropped per eviction pass
EVICTION_FRACTION = 0.25

Loader = Tuple[Callable[[], Any], Optional[float], Iterable[str]]


class CacheManager:
    """
    Manages a two-tier (in-process + DynamoDB) cache with TTL and LRU eviction.

    The in-process tier is private to the instance and only ever holds
    copies of what was written to or read from DynamoDB. It is guarded by
    a re-entrant lock because the memory monitor calls ``cleanup`` from its
    own thread.
    """

    def __init__(
        self,
        repository: Optional[CacheRepository] = None,
        config: Optional[CacheConfig] = None,
        metrics_publisher: Optional[MetricsPublisher] = None,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize Cache Manager.

        Args:
            repository: Durable tier (defaults to the CACHE_TABLE_NAME table)
            config: Cache configuration (defaults to CacheConfig.from_env())
            metrics_publisher: Optional CloudWatch publisher
            clock: Time source returning epoch seconds
        """
        self.repository = repository or CacheRepository(get_table_name('CACHE_TABLE_NAME'))
        self.config = config or CacheConfig.from_env()
        self.metrics_publisher = metrics_publisher
        self.clock = clock

        self._memory: Dict[str, CacheEntry] = {}
        self._memory_size = 0
        self._lock = threading.RLock()
        self.last_cleanup = self.clock()

        # Metrics tracking
        self._cache_hits = 0
        self._cache_misses = 0
        self._cache_evictions = 0

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    @property
    def memory_entries(self) -> int:
        """Number of entries in the in-process tier."""
        with self._lock:
            return len(self._memory)

    @property
    def memory_size_bytes(self) -> int:
        """Accounted size of the in-process tier."""
        with self._lock:
            return self._memory_size

    def get(self, key: str) -> Any:
        """
        Retrieve a cached value.

        Checks the in-process tier first, then DynamoDB. A DynamoDB hit is
        promoted into memory. Expired entries are deleted from both tiers
        and reported as a miss.

        Args:
            key: Cache key

        Returns:
            Cached value or None on a miss
        """
        now_ms = self._now_ms()

        with self._lock:
            entry = self._memory.get(key)
            if entry is not None:
                if not entry.is_expired(now_ms):
                    entry.record_hit(now_ms)
                    self._cache_hits += 1
                    return copy.deepcopy(entry.data)
                # DynamoDB may hold a newer copy written by another instance
                self._remove_from_memory(key)

        try:
            entry = self.repository.get_entry(key)
        except DynamoDBError as e:
            logger.warning(f"Cache lookup error for {key}", operation='get', error=str(e))
            self._cache_misses += 1
            return None

        if entry is None:
            self._cache_misses += 1
            return None

        if entry.is_expired(now_ms):
            self._expire(key, now_ms)
            self._cache_misses += 1
            return None

        try:
            self.repository.record_hit(key, now_ms)
        except DynamoDBError as e:
            logger.debug(f"Could not record hit for {key}", operation='get', error=str(e))

        entry.record_hit(now_ms)
        with self._lock:
            self._set_memory(entry)
        self._cache_hits += 1
        return copy.deepcopy(entry.data)

    def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[float] = None,
        tags: Optional[Iterable[str]] = None
    ) -> bool:
        """
        Store a value in both tiers.

        Args:
            key: Cache key
            value: JSON-serializable value
            ttl_seconds: Time to live (defaults to config.default_ttl_seconds)
            tags: Invalidation groups for clear_by_tags

        Returns:
            True if stored, False if the key is empty, the value is too large
            or not serializable, or DynamoDB rejected the write

        Raises:
            ValueError: If ttl_seconds is not positive
        """
        ttl = self.config.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl}")

        if not key:
            logger.warning("Cache key cannot be empty", operation='set')
            return False

        try:
            data, size = detach_payload(value)
        except (TypeError, ValueError) as e:
            logger.warning(f"Cache value for {key} is not serializable", operation='set', error=str(e))
            return False

        if size > self.config.max_entry_size_bytes:
            logger.warning(
                f"Cache entry too large: {size} bytes for key {key}",
                operation='set',
                size_bytes=size,
                limit_bytes=self.config.max_entry_size_bytes
            )
            return False

        entry = CacheEntry.create(
            key=key,
            data=data,
            now_ms=self._now_ms(),
            ttl_ms=math.ceil(ttl * 1000),
            tags=tags or (),
            size_bytes=size
        )

        try:
            self.repository.put_entry(entry)
        except DynamoDBError as e:
            logger.warning(f"Cache storage error for {key}", operation='set', error=str(e))
            return False

        with self._lock:
            self._set_memory(entry)

        self._cleanup_if_needed()
        return True

    def delete(self, key: str) -> bool:
        """
        Remove a key from both tiers. Deleting a missing key succeeds.

        Args:
            key: Cache key

        Returns:
            False only if the DynamoDB delete failed
        """
        with self._lock:
            self._remove_from_memory(key)

        try:
            self.repository.delete_entry(key)
        except DynamoDBError as e:
            logger.warning(f"Cache delete error for {key}", operation='delete', error=str(e))
            return False
        return True

    def clear_by_tags(self, tags: Union[str, Iterable[str]]) -> int:
        """
        Remove every entry, in either tier, carrying any of the given tags.

        Args:
            tags: Tags to invalidate; a single string is one tag

        Returns:
            Number of distinct keys removed
        """
        tags = {tags} if isinstance(tags, str) else set(tags)
        if not tags:
            return 0

        removed = set()
        with self._lock:
            for key, entry in list(self._memory.items()):
                if entry.has_any_tag(tags):
                    self._remove_from_memory(key)
                    removed.add(key)

        durable_removed = set()
        for tag in sorted(tags):
            try:
                keys = [
                    key for key in self.repository.find_keys_by_tag(tag)
                    if key not in durable_removed
                ]
                self.repository.delete_keys(keys)
                durable_removed.update(keys)
            except DynamoDBError as e:
                logger.warning(
                    f"Cache clear error for tag {tag}",
                    operation='clear_by_tags',
                    error=str(e)
                )

        removed |= durable_removed
        logger.info(
            f"Cleared {len(removed)} cache entries with tags: {', '.join(sorted(tags))}",
            operation='clear_by_tags',
            removed=len(removed)
        )
        return len(removed)

    def get_or_set(
        self,
        key: str,
        supplier: Callable[[], Any],
        ttl_seconds: Optional[float] = None,
        tags: Optional[Iterable[str]] = None
    ) -> Any:
        """
        Cache-aside lookup.

        On a miss the supplier is called and a non-None result is stored
        (best-effort) before being returned. Exceptions raised by the
        supplier propagate; cache failures never do.

        Args:
            key: Cache key
            supplier: Zero-argument callable producing the value
            ttl_seconds: Time to live for a freshly computed value
            tags: Invalidation groups for a freshly computed value

        Returns:
            Cached or freshly computed value (None if the supplier returned None)
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        value = supplier()

        if value is not None and not self.set(key, value, ttl_seconds, tags):
            logger.debug(f"Computed value for {key} was not cached", operation='get_or_set')

        return value

    def cleanup(self) -> int:
        """
        Remove expired entries from both tiers.

        The DynamoDB pass removes at most config.cleanup_batch_size entries
        and reads at most config.cleanup_max_pages pages of that size;
        anything left over is picked up by the next pass (or DynamoDB TTL).

        Returns:
            Number of distinct keys removed
        """
        now_ms = self._now_ms()
        removed = set()

        with self._lock:
            for key, entry in list(self._memory.items()):
                if entry.is_expired(now_ms):
                    self._remove_from_memory(key)
                    removed.add(key)

        try:
            expired_keys = self.repository.find_expired_keys(
                now_ms, self.config.cleanup_batch_size, self.config.cleanup_max_pages
            )
            self.repository.delete_keys(expired_keys)
            removed.update(expired_keys)
        except DynamoDBError as e:
            logger.warning("Cache cleanup error", operation='cleanup', error=str(e))

        self.last_cleanup = self.clock()

        if removed:
            logger.info(
                f"Cache cleanup: removed {len(removed)} expired entries",
                operation='cleanup',
                removed=len(removed)
            )
        return len(removed)

    def get_stats(self) -> Dict[str, Any]:
        """
        Get a diagnostic snapshot of both tiers. Read-only.

        Returns:
            Dictionary with memory, durable, counters and config sections;
            ``durable`` is None if DynamoDB could not be read
        """
        with self._lock:
            memory_stats = {
                'entries': len(self._memory),
                'size_bytes': self._memory_size,
                'size_mb': round(self._memory_size / (1024 * 1024), 2)
            }

        durable_stats = None
        try:
            items = self.repository.scan_statistics()
            now_ms = self._now_ms()
            durable_stats = {
                'entries': len(items),
                'total_size_bytes': sum(int(item.get('sizeBytes', 0)) for item in items),
                'average_access_count': (
                    sum(int(item.get('accessCount', 0)) for item in items) / len(items)
                    if items else 0
                ),
                'expired_entries': sum(
                    1 for item in items if int(item.get('expiresAt', 0)) <= now_ms
                )
            }
        except DynamoDBError as e:
            logger.warning("Error reading durable cache stats", operation='get_stats', error=str(e))

        total_requests = self._cache_hits + self._cache_misses
        return {
            'memory': memory_stats,
            'durable': durable_stats,
            'cache_hits': self._cache_hits,
            'cache_misses': self._cache_misses,
            'hit_rate': (self._cache_hits / total_requests) if total_requests > 0 else 0,
            'evictions': self._cache_evictions,
            'config': {
                'default_ttl_seconds': self.config.default_ttl_seconds,
                'max_cache_size_bytes': self.config.max_cache_size_bytes,
                'max_cache_entries': self.config.max_cache_entries,
                'cleanup_interval_seconds': self.config.cleanup_interval_seconds
            },
            'last_cleanup': self.last_cleanup
        }

    def warm_cache(self, loaders: Mapping[str, Loader]) -> int:
        """
        Pre-populate frequently read keys.

        Args:
            loaders: key -> (supplier, ttl_seconds, tags)

        Returns:
            Number of keys holding a value afterwards
        """
        logger.info(f"Starting cache warmup for {len(loaders)} keys", operation='warm_cache')
        warmed = 0

        for key, (supplier, ttl_seconds, tags) in loaders.items():
            try:
                if self.get_or_set(key, supplier, ttl_seconds, tags) is not None:
                    warmed += 1
            except Exception as e:
                # One failing loader must not stop the rest
                logger.error(f"Cache warmup failed for {key}", operation='warm_cache', error=e)

        logger.info(f"Cache warmup completed: {warmed}/{len(loaders)}", operation='warm_cache')
        return warmed

    def emit_metrics(self) -> None:
        """Publish hit rate, in-process size and evictions to CloudWatch."""
        if self.metrics_publisher is None:
            self.metrics_publisher = MetricsPublisher()

        total_requests = self._cache_hits + self._cache_misses
        hit_rate = (self._cache_hits / total_requests * 100) if total_requests > 0 else 0

        self.metrics_publisher.emit_cache_stats(
            hit_rate_percent=hit_rate,
            memory_entries=self.memory_entries,
            evictions=self._cache_evictions
        )

        # Reset eviction counter after emission
        self._cache_evictions = 0

    def clear_memory(self) -> None:
        """Drop the in-process tier; DynamoDB is untouched."""
        with self._lock:
            self._memory.clear()
            self._memory_size = 0

    def _expire(self, key: str, now_ms: int) -> None:
        """Lazily delete an entry found expired."""
        with self._lock:
            self._remove_from_memory(key)
        try:
            self.repository.delete_expired_entry(key, now_ms)
        except DynamoDBError as e:
            logger.debug(f"Lazy expiry of {key} failed", operation='get', error=str(e))

    def _cleanup_if_needed(self) -> None:
        """Run cleanup if the cleanup interval has elapsed."""
        if self.clock() - self.last_cleanup > self.config.cleanup_interval_seconds:
            self.cleanup()

    def _remove_from_memory(self, key: str) -> None:
        # Caller holds self._lock
        entry = self._memory.pop(key, None)
        if entry is not None:
            self._memory_size -= entry.size_bytes

    def _set_memory(self, entry: CacheEntry) -> None:
        # Caller holds self._lock
        self._remove_from_memory(entry.key)

        while self._memory and (
            self._memory_size + entry.size_bytes > self.config.max_cache_size_bytes
            or len(self._memory) >= self.config.max_cache_entries
        ):
            self._evict_memory()

        self._memory[entry.key] = entry
        self._memory_size += entry.size_bytes

    def _evict_memory(self) -> None:
        """Evict the least recently accessed 25% of the in-process tier."""
        # Caller holds self._lock; sorted() is stable so ties keep insertion order
        entries = sorted(self._memory.values(), key=lambda e: e.last_accessed)
        to_remove = math.ceil(len(entries) * EVICTION_FRACTION)

        for entry in entries[:to_remove]:
            self._remove_from_memory(entry.key)

        self._cache_evictions += to_remove
        logger.info(
            f"Evicted {to_remove} entries from memory cache",
            operation='evict',
            remaining=len(self._memory)
        )
