"""
Repository for the durable cache tier (SidekickCache table).
"""
import logging
from typing import Any, Dict, List, Optional

from .dynamodb_client import DynamoDBClient
from .exceptions import ConditionalCheckFailedError
from ..models.cache_entry import CacheEntry

logger = logging.getLogger(__name__)


class CacheRepository:
    """
    Repository for managing cache entries in DynamoDB.
    """

    def __init__(self, table_name: str, dynamodb_client: Optional[DynamoDBClient] = None):
        """
        Initialize Cache repository.

        Args:
            table_name: Name of the cache table
            dynamodb_client: Optional DynamoDB client instance
        """
        self.table_name = table_name
        self.client = dynamodb_client or DynamoDBClient()

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """
        Get cache entry by key.

        Args:
            key: Cache key

        Returns:
            CacheEntry or None if not found (expired entries included)
        """
        item = self.client.get_item(
            table_name=self.table_name,
            key={'cacheKey': key}
        )
        return CacheEntry.from_item(item) if item else None

    def put_entry(self, entry: CacheEntry) -> None:
        """
        Write (or overwrite) a cache entry.

        Args:
            entry: Entry to store
        """
        self.client.put_item(
            table_name=self.table_name,
            item=entry.to_item()
        )

    def delete_entry(self, key: str) -> None:
        """
        Delete cache entry. Deleting a missing key succeeds.

        Args:
            key: Cache key
        """
        self.client.delete_item(
            table_name=self.table_name,
            key={'cacheKey': key}
        )

    def delete_expired_entry(self, key: str, now_ms: int) -> bool:
        """
        Delete an entry only if it is (still) expired.

        A fresh value written by another instance after the expired one was
        read is left alone.

        Args:
            key: Cache key
            now_ms: Current time in epoch milliseconds

        Returns:
            False if the stored entry is no longer expired
        """
        try:
            self.client.delete_item(
                table_name=self.table_name,
                key={'cacheKey': key},
                condition_expression='attribute_not_exists(cacheKey) OR expiresAt <= :now',
                expression_attribute_values={':now': now_ms}
            )
        except ConditionalCheckFailedError:
            logger.debug(f"Cache entry {key} was refreshed before lazy expiry")
            return False
        return True

    def record_hit(self, key: str, now_ms: int) -> None:
        """
        Atomically bump access statistics of an existing entry.

        A concurrent delete makes this a no-op rather than resurrecting
        a partial item.

        Args:
            key: Cache key
            now_ms: Access time in epoch milliseconds
        """
        try:
            self.client.update_item(
                table_name=self.table_name,
                key={'cacheKey': key},
                update_expression='ADD accessCount :one SET lastAccessed = :now',
                condition_expression='attribute_exists(cacheKey)',
                expression_attribute_values={':one': 1, ':now': now_ms}
            )
        except ConditionalCheckFailedError:
            logger.debug(f"Cache entry {key} vanished before hit was recorded")

    def find_keys_by_tag(self, tag: str) -> List[str]:
        """
        Find keys of all entries carrying a tag.

        Args:
            tag: Tag to match

        Returns:
            Matching cache keys
        """
        items = self.client.scan(
            table_name=self.table_name,
            filter_expression='contains(#tags, :tag)',
            expression_attribute_names={'#tags': 'tags'},
            expression_attribute_values={':tag': tag},
            projection_expression='cacheKey'
        )
        return [item['cacheKey'] for item in items]

    def find_expired_keys(
        self,
        now_ms: int,
        limit: int,
        max_pages: Optional[int] = None
    ) -> List[str]:
        """
        Find keys of entries that expired at or before now.

        Reads pages of ``limit`` items and stops after ``max_pages`` of them,
        so one pass reads at most ``limit * max_pages`` items.

        Args:
            now_ms: Current time in epoch milliseconds
            limit: Maximum number of keys to return
            max_pages: Maximum number of scan requests

        Returns:
            Expired cache keys
        """
        items = self.client.scan(
            table_name=self.table_name,
            filter_expression='expiresAt <= :now',
            expression_attribute_values={':now': now_ms},
            projection_expression='cacheKey',
            max_items=limit,
            page_size=limit,
            max_pages=max_pages
        )
        return [item['cacheKey'] for item in items]

    def delete_keys(self, keys: List[str]) -> None:
        """
        Batch delete cache entries.

        Args:
            keys: Cache keys to delete
        """
        if not keys:
            return
        self.client.batch_delete(
            table_name=self.table_name,
            keys=[{'cacheKey': key} for key in keys]
        )
        logger.info(f"Deleted {len(keys)} cache entries from {self.table_name}")

    def scan_statistics(self) -> List[Dict[str, Any]]:
        """
        Read the accounting attributes of every entry.

        Returns:
            Items with cacheKey, sizeBytes, accessCount and expiresAt
        """
        return self.client.scan(
            table_name=self.table_name,
            projection_expression='cacheKey, sizeBytes, accessCount, expiresAt'
        )
