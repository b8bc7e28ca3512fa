"""Redis-based queue store for embedding generation."""

import json
import uuid
from datetime import datetime
from typing import List, Optional, Dict, Any

import redis

from .models import EntityType, QueueItem, QueueStatus, utcnow
from .queue_store import QueueStore


class RedisQueueStore(QueueStore):
    """Manages embedding queue items with Redis.

    Layout:
    - Pending items in a sorted set scored by created_at (FIFO that is
      stable across retries)
    - Processing items in a sorted set scored by claim time (stale
      detection)
    - Completed/failed item ids in sets
    - One JSON document per item
    - An active-entity index so an entity is queued at most once

    Every state change runs as one WATCH/MULTI/EXEC transaction that
    moves the id between indexes, rewrites the document and updates the
    active marker, so a dropped connection never leaves an item outside
    every index.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        client: Optional[redis.Redis] = None,
        prefix: str = "embq"
    ):
        """Initialize the queue store.

        Args:
            redis_url: Redis connection URL
            client: Existing Redis client (must use decode_responses=True)
            prefix: Key namespace
        """
        self.redis = client or redis.from_url(redis_url, decode_responses=True)

        # Queue keys
        self.pending_key = f"{prefix}:pending"
        self.processing_key = f"{prefix}:processing"
        self.completed_key = f"{prefix}:completed"
        self.failed_key = f"{prefix}:failed"
        self.item_prefix = f"{prefix}:item:"
        self.active_prefix = f"{prefix}:active:"

        self.index_keys = {
            QueueStatus.PENDING: self.pending_key,
            QueueStatus.PROCESSING: self.processing_key,
            QueueStatus.COMPLETED: self.completed_key,
            QueueStatus.FAILED: self.failed_key,
        }

    def fetch_pending(self, limit: int) -> List[QueueItem]:
        if limit <= 0:
            return []
        item_ids = self.redis.zrange(self.pending_key, 0, limit - 1)
        items = []
        for item_id in item_ids:
            item = self._get_item(item_id)
            if item:
                items.append(item)
        return items

    def mark_processing(self, item_id: str) -> bool:
        return self._move(item_id, QueueStatus.PENDING, status=QueueStatus.PROCESSING) is not None

    def mark_completed(self, item_id: str) -> bool:
        now = utcnow()
        return self._move(
            item_id, QueueStatus.PROCESSING,
            status=QueueStatus.COMPLETED, error_message=None, processed_at=now
        ) is not None

    def mark_failed_terminal(self, item_id: str, attempts: int, error: str) -> bool:
        return self._move(
            item_id, QueueStatus.PROCESSING,
            status=QueueStatus.FAILED, attempts=attempts, error_message=error
        ) is not None

    def mark_retry(self, item_id: str, attempts: int, error: str) -> bool:
        return self._move(
            item_id, QueueStatus.PROCESSING,
            status=QueueStatus.PENDING, attempts=attempts, error_message=error
        ) is not None

    def list_stale_processing(self, cutoff: datetime) -> List[QueueItem]:
        item_ids = self.redis.zrangebyscore(self.processing_key, "-inf", f"({cutoff.timestamp()}")
        return [item for item in map(self._get_item, item_ids) if item]

    def enqueue(self, entity_type: EntityType, entity_id: str) -> Optional[QueueItem]:
        now = utcnow()
        item = QueueItem(
            id=str(uuid.uuid4()),
            entity_type=entity_type,
            entity_id=entity_id,
            created_at=now,
            updated_at=now,
        )
        active_key = self._active_key(entity_type, entity_id)

        with self.redis.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(active_key)
                    # Skip if the entity already has a pending or processing item
                    if pipe.exists(active_key):
                        return None
                    pipe.multi()
                    pipe.set(active_key, item.id)
                    self._write(pipe, item)
                    pipe.execute()
                    return item
                except redis.WatchError:
                    continue

    def get_item(self, item_id: str) -> Optional[QueueItem]:
        return self._get_item(item_id)

    def get_stats(self) -> Dict[str, int]:
        return {
            QueueStatus.PENDING.value: self.redis.zcard(self.pending_key),
            QueueStatus.PROCESSING.value: self.redis.zcard(self.processing_key),
            QueueStatus.COMPLETED.value: self.redis.scard(self.completed_key),
            QueueStatus.FAILED.value: self.redis.scard(self.failed_key),
        }

    def get_failed_items(self, limit: int = 50) -> List[QueueItem]:
        failed_ids = self.redis.smembers(self.failed_key)
        items = [item for item in map(self._get_item, failed_ids) if item]
        items.sort(key=lambda i: i.updated_at, reverse=True)
        return items[:limit]

    def reset_item(self, item_id: str) -> bool:
        return self._move(
            item_id, QueueStatus.FAILED,
            status=QueueStatus.PENDING, attempts=0, error_message=None, processed_at=None
        ) is not None

    def _move(self, item_id: str, source: QueueStatus, **changes: Any) -> Optional[QueueItem]:
        """Atomically move an item out of ``source`` and rewrite it.

        Returns:
            The updated item, or None if the item is not in ``source`` or
            would become active while another item holds its entity
        """
        item_key = self._item_key(item_id)

        with self.redis.pipeline() as pipe:
            while True:
                try:
                    # Index changes always rewrite the document in the same
                    # transaction, so watching the document covers them
                    pipe.watch(item_key)
                    if not self._indexed(pipe, source, item_id):
                        return None
                    data = pipe.get(item_key)
                    if data is None:
                        raise KeyError(f"Queue item {item_id} has no stored document")
                    item = QueueItem.from_row(json.loads(data)).copy(updated_at=utcnow(), **changes)

                    active_key = self._active_key(item.entity_type, item.entity_id)
                    pipe.watch(active_key)
                    holder = pipe.get(active_key)
                    if not item.status.is_terminal and holder not in (None, item.id):
                        return None

                    pipe.multi()
                    self._unindex(pipe, source, item_id)
                    self._write(pipe, item)
                    if not item.status.is_terminal:
                        pipe.set(active_key, item.id)
                    elif holder == item.id:
                        pipe.delete(active_key)
                    pipe.execute()
                    return item
                except redis.WatchError:
                    continue

    def _indexed(self, pipe, status: QueueStatus, item_id: str) -> bool:
        key = self.index_keys[status]
        if status.is_terminal:
            return bool(pipe.sismember(key, item_id))
        return pipe.zscore(key, item_id) is not None

    def _unindex(self, pipe, status: QueueStatus, item_id: str):
        key = self.index_keys[status]
        if status.is_terminal:
            pipe.srem(key, item_id)
        else:
            pipe.zrem(key, item_id)

    def _write(self, pipe, item: QueueItem):
        """Queue the document write and index insert for ``item``."""
        key = self.index_keys[item.status]
        if item.status is QueueStatus.PENDING:
            # Original created_at keeps retries in FIFO position
            pipe.zadd(key, {item.id: item.created_at.timestamp()})
        elif item.status is QueueStatus.PROCESSING:
            pipe.zadd(key, {item.id: item.updated_at.timestamp()})
        else:
            pipe.sadd(key, item.id)
        pipe.set(self._item_key(item.id), json.dumps(item.to_row()))

    def _active_key(self, entity_type: EntityType, entity_id: str) -> str:
        return f"{self.active_prefix}{entity_type.value}:{entity_id}"

    def _item_key(self, item_id: str) -> str:
        return f"{self.item_prefix}{item_id}"

    def _get_item(self, item_id: str) -> Optional[QueueItem]:
        """Retrieve item data from Redis."""
        data = self.redis.get(self._item_key(item_id))
        return QueueItem.from_row(json.loads(data)) if data else None
