"""
Cache entry data model for the two-tier cache.

This module defines the dataclass shared by the in-process tier and the
DynamoDB tier, and its conversion to and from DynamoDB items.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Tuple


def serialize_payload(data: Any) -> str:
    """
    Serialize a cache payload to compact JSON.

    Raises:
        TypeError: If the payload is not JSON serializable
        ValueError: If the payload contains circular references
    """
    return json.dumps(data, separators=(',', ':'), ensure_ascii=False)


def detach_payload(data: Any) -> Tuple[Any, int]:
    """
    Copy a payload through its JSON form.

    The copy shares no mutable state with ``data`` and equals what the
    DynamoDB tier returns for it.

    Returns:
        Tuple of (copy, size in bytes of the UTF-8 JSON form)

    Raises:
        TypeError: If the payload is not JSON serializable
        ValueError: If the payload contains circular references
    """
    serialized = serialize_payload(data)
    return json.loads(serialized), len(serialized.encode('utf-8'))


@dataclass
class CacheEntry:
    """
    Entry in the two-tier cache.

    All timestamps are Unix epoch milliseconds.

    Attributes:
        key: Natural key of the cached value
        data: Opaque JSON-serializable payload
        created_at: When the entry was written
        expires_at: created_at + ttl; the entry is dead at or after this instant
        access_count: Number of hits served
        last_accessed: Time of the latest hit (drives LRU eviction)
        tags: Invalidation groups the entry belongs to
        size_bytes: Serialized size used for capacity accounting
    """

    key: str
    data: Any
    created_at: int
    expires_at: int
    access_count: int = 0
    last_accessed: int = 0
    tags: FrozenSet[str] = field(default_factory=frozenset)
    size_bytes: int = 0

    def __post_init__(self):
        """Validate field constraints."""
        if not self.key:
            raise ValueError("key cannot be empty")

        if self.expires_at <= self.created_at:
            raise ValueError(
                f"expires_at ({self.expires_at}) must be after created_at ({self.created_at})"
            )

        self.tags = frozenset(self.tags)
        if not self.last_accessed:
            self.last_accessed = self.created_at

    @classmethod
    def create(
        cls,
        key: str,
        data: Any,
        now_ms: int,
        ttl_ms: int,
        tags: Iterable[str] = (),
        size_bytes: int = 0
    ) -> 'CacheEntry':
        """Build a fresh entry written at ``now_ms``."""
        return cls(
            key=key,
            data=data,
            created_at=now_ms,
            expires_at=now_ms + max(1, int(ttl_ms)),
            access_count=0,
            last_accessed=now_ms,
            tags=frozenset(tags),
            size_bytes=size_bytes
        )

    def is_expired(self, now_ms: int) -> bool:
        """
        Check if entry has expired.

        Returns:
            True if expires_at <= now_ms
        """
        return self.expires_at <= now_ms

    def record_hit(self, now_ms: int) -> None:
        """Update access statistics for a cache hit."""
        self.access_count += 1
        self.last_accessed = now_ms

    def has_any_tag(self, tags: Iterable[str]) -> bool:
        """Check whether the entry belongs to any of the given tags."""
        return not self.tags.isdisjoint(tags)

    def to_item(self) -> Dict[str, Any]:
        """
        Convert to dictionary for DynamoDB storage.

        The payload is stored as a JSON string so arbitrary values
        (including floats) survive the DynamoDB type system. ``ttl`` is in
        epoch seconds for DynamoDB's native TTL sweeper.
        """
        return {
            'cacheKey': self.key,
            'data': serialize_payload(self.data),
            'createdAt': self.created_at,
            'expiresAt': self.expires_at,
            'accessCount': self.access_count,
            'lastAccessed': self.last_accessed,
            'tags': sorted(self.tags),
            'sizeBytes': self.size_bytes,
            'ttl': self.expires_at // 1000 + 1
        }

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> 'CacheEntry':
        """
        Create CacheEntry from a DynamoDB item.

        Args:
            item: Item as returned by the DynamoDB resource API

        Returns:
            CacheEntry instance
        """
        return cls(
            key=item['cacheKey'],
            data=json.loads(item['data']),
            created_at=int(item['createdAt']),
            expires_at=int(item['expiresAt']),
            access_count=int(item.get('accessCount', 0)),
            last_accessed=int(item.get('lastAccessed', 0)),
            tags=frozenset(item.get('tags') or []),
            size_bytes=int(item.get('sizeBytes', 0))
        )
