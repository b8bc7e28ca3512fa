"""Queue store backed by the embedding_generation_queue table."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from .config import QUEUE_TABLE
from .models import EntityType, QueueItem, QueueStatus, utcnow
from .queue_store import QueueStore

logger = logging.getLogger(__name__)


class SupabaseQueueStore(QueueStore):
    """Queue store on a Supabase (PostgREST) table.

    Transitions are conditional updates filtered on the current status,
    so a claim succeeds for exactly one worker and rows already in a
    terminal state are left alone.
    """

    def __init__(self, client, table: str = QUEUE_TABLE):
        self.client = client
        self.table_name = table

    def _table(self):
        return self.client.table(self.table_name)

    def _conditional_update(self, item_id: str, expected: QueueStatus, values: Dict[str, Any]) -> bool:
        values = {**values, "updated_at": utcnow().isoformat()}
        response = (
            self._table()
            .update(values)
            .eq("id", item_id)
            .eq("status", expected.value)
            .execute()
        )
        return bool(response.data)

    def fetch_pending(self, limit: int) -> List[QueueItem]:
        response = (
            self._table()
            .select("*")
            .eq("status", QueueStatus.PENDING.value)
            .order("created_at")
            .limit(limit)
            .execute()
        )
        return [QueueItem.from_row(row) for row in response.data or []]

    def mark_processing(self, item_id: str) -> bool:
        return self._conditional_update(
            item_id, QueueStatus.PENDING,
            {"status": QueueStatus.PROCESSING.value}
        )

    def mark_completed(self, item_id: str) -> bool:
        return self._conditional_update(
            item_id, QueueStatus.PROCESSING,
            {
                "status": QueueStatus.COMPLETED.value,
                "processed_at": utcnow().isoformat(),
                "error_message": None,
            }
        )

    def mark_failed_terminal(self, item_id: str, attempts: int, error: str) -> bool:
        return self._conditional_update(
            item_id, QueueStatus.PROCESSING,
            {
                "status": QueueStatus.FAILED.value,
                "attempts": attempts,
                "error_message": error,
            }
        )

    def mark_retry(self, item_id: str, attempts: int, error: str) -> bool:
        return self._conditional_update(
            item_id, QueueStatus.PROCESSING,
            {
                "status": QueueStatus.PENDING.value,
                "attempts": attempts,
                "error_message": error,
            }
        )

    def list_stale_processing(self, cutoff: datetime) -> List[QueueItem]:
        response = (
            self._table()
            .select("*")
            .eq("status", QueueStatus.PROCESSING.value)
            .lt("updated_at", cutoff.isoformat())
            .order("created_at")
            .execute()
        )
        return [QueueItem.from_row(row) for row in response.data or []]

    def _active_ids(self, entity_type: EntityType, entity_id: str) -> List[str]:
        """Ids of the entity's pending/processing items, oldest first."""
        response = (
            self._table()
            .select("id")
            .eq("entity_type", entity_type.value)
            .eq("entity_id", entity_id)
            .in_("status", [QueueStatus.PENDING.value, QueueStatus.PROCESSING.value])
            .order("created_at")
            .order("id")
            .execute()
        )
        return [row["id"] for row in response.data or []]

    def enqueue(self, entity_type: EntityType, entity_id: str) -> Optional[QueueItem]:
        """Insert a pending item unless the entity already has an active one.

        PostgREST has no conditional insert, so the check runs again after
        the insert: when two enqueuers race, the older row is kept and the
        newer one deletes itself.
        """
        if self._active_ids(entity_type, entity_id):
            return None

        response = (
            self._table()
            .insert({
                "entity_type": entity_type.value,
                "entity_id": entity_id,
                "status": QueueStatus.PENDING.value,
                "attempts": 0,
            })
            .execute()
        )
        item = QueueItem.from_row(response.data[0])

        active = self._active_ids(entity_type, entity_id)
        if active and active[0] != item.id:
            (
                self._table()
                .delete()
                .eq("id", item.id)
                .eq("status", QueueStatus.PENDING.value)
                .execute()
            )
            logger.info(f"Dropped duplicate enqueue of {entity_type.value} {entity_id}")
            return None
        return item

    def get_item(self, item_id: str) -> Optional[QueueItem]:
        response = self._table().select("*").eq("id", item_id).limit(1).execute()
        rows = response.data or []
        return QueueItem.from_row(rows[0]) if rows else None

    def get_stats(self) -> Dict[str, int]:
        stats = {}
        for status in QueueStatus:
            response = (
                self._table()
                .select("id", count="exact")
                .eq("status", status.value)
                .limit(1)
                .execute()
            )
            stats[status.value] = response.count or 0
        return stats

    def get_failed_items(self, limit: int = 50) -> List[QueueItem]:
        response = (
            self._table()
            .select("*")
            .eq("status", QueueStatus.FAILED.value)
            .order("updated_at", desc=True)
            .limit(limit)
            .execute()
        )
        return [QueueItem.from_row(row) for row in response.data or []]

    def reset_item(self, item_id: str) -> bool:
        item = self.get_item(item_id)
        if item is None or item.status is not QueueStatus.FAILED:
            return False
        if self._active_ids(item.entity_type, item.entity_id):
            logger.warning(
                f"Not resetting {item_id}: {item.entity_type.value} {item.entity_id} "
                f"already has an active item"
            )
            return False
        return self._conditional_update(
            item_id, QueueStatus.FAILED,
            {
                "status": QueueStatus.PENDING.value,
                "attempts": 0,
                "error_message": None,
                "processed_at": None,
            }
        )
