"""Queue item model and the per-item state machine."""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class EntityType(Enum):
    """Kind of source record a queue item refers to."""
    CANDIDATE = "candidate"
    JOB_POSTING = "job_posting"


class QueueStatus(Enum):
    """Queue item processing status."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (QueueStatus.COMPLETED, QueueStatus.FAILED)


STALE_PROCESSING_ERROR = "stale processing reclaimed"


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp from a row into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class QueueItem:
    """A unit of embedding work."""
    id: str
    entity_type: EntityType
    entity_id: str
    status: QueueStatus = QueueStatus.PENDING
    attempts: int = 0
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "QueueItem":
        """Build an item from a database row or stored JSON document."""
        return cls(
            id=str(row["id"]),
            entity_type=EntityType(row["entity_type"]),
            entity_id=str(row["entity_id"]),
            status=QueueStatus(row.get("status") or QueueStatus.PENDING.value),
            attempts=int(row.get("attempts") or 0),
            error_message=row.get("error_message"),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
            processed_at=parse_timestamp(row.get("processed_at")),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type.value,
            "entity_id": self.entity_id,
            "status": self.status.value,
            "attempts": self.attempts,
            "error_message": self.error_message,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "processed_at": format_timestamp(self.processed_at),
        }

    def copy(self, **changes) -> "QueueItem":
        return replace(self, **changes)


@dataclass(frozen=True)
class ProcessingOutcome:
    """Result of building and invoking for one item.

    ``permanent`` failures will not go away on retry (e.g. the source
    record is gone) and skip the remaining attempt budget.
    """
    success: bool
    error: Optional[str] = None
    permanent: bool = False

    @classmethod
    def ok(cls) -> "ProcessingOutcome":
        return cls(success=True)

    @classmethod
    def failure(cls, error: str, permanent: bool = False) -> "ProcessingOutcome":
        return cls(success=False, error=error, permanent=permanent)


@dataclass(frozen=True)
class Transition:
    """Target state for an item leaving ``processing``."""
    status: QueueStatus
    attempts: int
    error_message: Optional[str] = None


def decide_transition(item: QueueItem, outcome: ProcessingOutcome, max_attempts: int) -> Transition:
    """Decide where a processed item goes next.

    Success completes the item with its attempt count frozen. A failure
    consumes one attempt; the item is re-queued as pending until the
    attempt cap is reached (or the failure is permanent), then fails.
    """
    if outcome.success:
        return Transition(QueueStatus.COMPLETED, item.attempts, None)

    attempts = min(item.attempts + 1, max_attempts)
    error = outcome.error or "unknown error"

    if outcome.permanent or attempts >= max_attempts:
        return Transition(QueueStatus.FAILED, attempts, error)

    return Transition(QueueStatus.PENDING, attempts, error)
