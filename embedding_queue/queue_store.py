"""Queue store contract shared by the worker and the operator tools."""

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from .models import (
    EntityType, ProcessingOutcome, QueueItem, QueueStatus, Transition,
    STALE_PROCESSING_ERROR, decide_transition, utcnow
)

logger = logging.getLogger(__name__)


class QueueStore(ABC):
    """Durable store of embedding queue items.

    Every ``mark_*`` transition is conditional on the item's current
    status and returns False when the item was not in the expected
    state. That makes ``mark_processing`` an atomic claim and makes the
    terminal states absorbing.
    """

    @abstractmethod
    def fetch_pending(self, limit: int) -> List[QueueItem]:
        """Return up to ``limit`` pending items, oldest ``created_at`` first."""

    @abstractmethod
    def mark_processing(self, item_id: str) -> bool:
        """Claim a pending item. Succeeds for at most one caller."""

    @abstractmethod
    def mark_completed(self, item_id: str) -> bool:
        """processing -> completed; sets processed_at and clears the error."""

    @abstractmethod
    def mark_failed_terminal(self, item_id: str, attempts: int, error: str) -> bool:
        """processing -> failed; the item is never picked up again."""

    @abstractmethod
    def mark_retry(self, item_id: str, attempts: int, error: str) -> bool:
        """processing -> pending with the new attempt count and error."""

    @abstractmethod
    def list_stale_processing(self, cutoff: datetime) -> List[QueueItem]:
        """Items in processing whose claim is older than ``cutoff``."""

    @abstractmethod
    def enqueue(self, entity_type: EntityType, entity_id: str) -> Optional[QueueItem]:
        """Queue an entity. Returns None if it already has an active item."""

    @abstractmethod
    def get_item(self, item_id: str) -> Optional[QueueItem]:
        pass

    @abstractmethod
    def get_stats(self) -> Dict[str, int]:
        """Item counts keyed by status value."""

    @abstractmethod
    def get_failed_items(self, limit: int = 50) -> List[QueueItem]:
        """Failed items, most recently updated first."""

    @abstractmethod
    def reset_item(self, item_id: str) -> bool:
        """failed -> pending with attempts and error cleared.

        Refused while another item for the same entity is pending or
        processing, so an entity never has two active items.
        """

    def apply_transition(self, item_id: str, transition: Transition) -> bool:
        """Write a decided transition back to the store."""
        if transition.status is QueueStatus.COMPLETED:
            return self.mark_completed(item_id)
        if transition.status is QueueStatus.FAILED:
            return self.mark_failed_terminal(item_id, transition.attempts, transition.error_message)
        if transition.status is QueueStatus.PENDING:
            return self.mark_retry(item_id, transition.attempts, transition.error_message)
        raise ValueError(f"Cannot transition an item to {transition.status.value}")

    def requeue_stale(self, older_than_seconds: int, max_attempts: int) -> int:
        """Recover items abandoned in processing by a dead worker.

        A stale claim counts as a failed attempt, so an item that keeps
        killing workers still ends up failed at the attempt cap.

        Returns:
            Number of items moved out of processing
        """
        if older_than_seconds <= 0:
            return 0

        cutoff = utcnow() - timedelta(seconds=older_than_seconds)
        outcome = ProcessingOutcome.failure(STALE_PROCESSING_ERROR)
        count = 0

        for item in self.list_stale_processing(cutoff):
            transition = decide_transition(item, outcome, max_attempts)
            if self.apply_transition(item.id, transition):
                count += 1
                logger.warning(
                    f"Reclaimed stale {item.entity_type.value} {item.entity_id} "
                    f"(item {item.id}) -> {transition.status.value}"
                )

        return count

    def retry_failed_items(self) -> int:
        """Reset every failed item to pending.

        Returns:
            Number of items re-queued
        """
        count = 0
        for item in self.get_failed_items(limit=10_000):
            if self.reset_item(item.id):
                count += 1
        return count


class InMemoryQueueStore(QueueStore):
    """In-process queue store (for testing and local runs only)."""

    def __init__(self):
        self._items: Dict[str, QueueItem] = {}
        self._lock = threading.Lock()

    def add(self, item: QueueItem) -> QueueItem:
        """Insert a fully specified item, bypassing enqueue dedup."""
        with self._lock:
            now = utcnow()
            stored = item.copy(
                created_at=item.created_at or now,
                updated_at=item.updated_at or item.created_at or now,
            )
            self._items[stored.id] = stored
            return stored.copy()

    def fetch_pending(self, limit: int) -> List[QueueItem]:
        with self._lock:
            pending = [i for i in self._items.values() if i.status is QueueStatus.PENDING]
            pending.sort(key=lambda i: i.created_at)
            return [i.copy() for i in pending[:limit]]

    def _transition(self, item_id: str, expected: QueueStatus, **changes) -> bool:
        with self._lock:
            item = self._items.get(item_id)
            if item is None or item.status is not expected:
                return False
            self._items[item_id] = item.copy(updated_at=utcnow(), **changes)
            return True

    def mark_processing(self, item_id: str) -> bool:
        return self._transition(item_id, QueueStatus.PENDING, status=QueueStatus.PROCESSING)

    def mark_completed(self, item_id: str) -> bool:
        return self._transition(
            item_id, QueueStatus.PROCESSING,
            status=QueueStatus.COMPLETED, error_message=None, processed_at=utcnow()
        )

    def mark_failed_terminal(self, item_id: str, attempts: int, error: str) -> bool:
        return self._transition(
            item_id, QueueStatus.PROCESSING,
            status=QueueStatus.FAILED, attempts=attempts, error_message=error
        )

    def mark_retry(self, item_id: str, attempts: int, error: str) -> bool:
        return self._transition(
            item_id, QueueStatus.PROCESSING,
            status=QueueStatus.PENDING, attempts=attempts, error_message=error
        )

    def list_stale_processing(self, cutoff: datetime) -> List[QueueItem]:
        with self._lock:
            return [
                i.copy() for i in self._items.values()
                if i.status is QueueStatus.PROCESSING and i.updated_at < cutoff
            ]

    def _has_active(self, entity_type: EntityType, entity_id: str) -> bool:
        return any(
            item.entity_type is entity_type
            and item.entity_id == entity_id
            and not item.status.is_terminal
            for item in self._items.values()
        )

    def enqueue(self, entity_type: EntityType, entity_id: str) -> Optional[QueueItem]:
        with self._lock:
            if self._has_active(entity_type, entity_id):
                return None
            now = utcnow()
            item = QueueItem(
                id=str(uuid.uuid4()),
                entity_type=entity_type,
                entity_id=entity_id,
                created_at=now,
                updated_at=now,
            )
            self._items[item.id] = item
            return item.copy()

    def get_item(self, item_id: str) -> Optional[QueueItem]:
        with self._lock:
            item = self._items.get(item_id)
            return item.copy() if item else None

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            stats = {status.value: 0 for status in QueueStatus}
            for item in self._items.values():
                stats[item.status.value] += 1
            return stats

    def get_failed_items(self, limit: int = 50) -> List[QueueItem]:
        with self._lock:
            failed = [i for i in self._items.values() if i.status is QueueStatus.FAILED]
            failed.sort(key=lambda i: i.updated_at, reverse=True)
            return [i.copy() for i in failed[:limit]]

    def reset_item(self, item_id: str) -> bool:
        with self._lock:
            item = self._items.get(item_id)
            if item is None or item.status is not QueueStatus.FAILED:
                return False
            if self._has_active(item.entity_type, item.entity_id):
                return False
            self._items[item_id] = item.copy(
                status=QueueStatus.PENDING, attempts=0, error_message=None,
                processed_at=None, updated_at=utcnow()
            )
            return True


def create_queue_store(backend: str, supabase_client=None, redis_url: Optional[str] = None,
                       table: Optional[str] = None) -> QueueStore:
    """Factory for the configured queue backend.

    Args:
        backend: 'supabase', 'redis' or 'memory'
        supabase_client: Client used by the supabase backend
        redis_url: Redis connection URL for the redis backend
        table: Queue table name for the supabase backend

    Returns:
        QueueStore instance
    """
    if backend == "supabase":
        from .supabase_queue import SupabaseQueueStore
        if supabase_client is None:
            raise ValueError("supabase backend requires a client")
        if table:
            return SupabaseQueueStore(supabase_client, table=table)
        return SupabaseQueueStore(supabase_client)

    if backend == "redis":
        from .redis_queue import RedisQueueStore
        if redis_url:
            return RedisQueueStore(redis_url=redis_url)
        return RedisQueueStore()

    if backend == "memory":
        return InMemoryQueueStore()

    raise ValueError(f"Unknown queue backend: {backend}")
