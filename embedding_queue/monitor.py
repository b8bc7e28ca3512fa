"""Monitor embedding queue progress in real-time.

Usage:
    embedding-monitor                         # one-time check
    embedding-monitor --watch --interval 10   # refresh until Ctrl+C
"""

import argparse
import sys
import time
from datetime import datetime, timedelta
from typing import Dict, List

from .config import QUEUE_BACKEND, REDIS_URL, QUEUE_TABLE, STALE_PROCESSING_SECONDS
from .models import QueueStatus, utcnow
from .queue_store import QueueStore, create_queue_store
from .supabase_client import get_supabase_client

STATUS_NOTES = {
    QueueStatus.PENDING: "waiting for a worker",
    QueueStatus.PROCESSING: "claimed, embedding call in flight",
    QueueStatus.COMPLETED: "embedding stored",
    QueueStatus.FAILED: "attempt budget spent",
}


def clear_screen():
    """Clear the terminal screen."""
    print("\033[2J\033[H", end="")


def format_number(n):
    """Format large numbers with commas."""
    return f"{n:,}"


def format_age(age: timedelta) -> str:
    seconds = max(int(age.total_seconds()), 0)
    if seconds < 60:
        return f"{seconds}s"
    minutes, seconds = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m {seconds}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m"


def progress_percent(queue_stats: Dict[str, int]) -> float:
    """Share of items that reached a terminal state."""
    total = sum(queue_stats.values())
    done = queue_stats.get("completed", 0) + queue_stats.get("failed", 0)
    return (done / total * 100) if total > 0 else 0.0


def status_lines(queue_stats: Dict[str, int]) -> List[str]:
    """One line per queue status, then the terminal share."""
    lines = [
        f"  {status.value.capitalize() + ':':<12}{format_number(queue_stats[status.value]):>10}  {note}"
        for status, note in STATUS_NOTES.items()
    ]
    lines.append(f"  {'Done:':<12}{progress_percent(queue_stats):>9.1f}%  of {format_number(sum(queue_stats.values()))}")
    return lines


def health_lines(store: QueueStore, queue_stats: Dict[str, int],
                 stale_after_seconds: int = STALE_PROCESSING_SECONDS) -> List[str]:
    """Signs of a stuck queue: a long wait at the head, or abandoned claims."""
    now = utcnow()
    lines = []

    oldest = store.fetch_pending(1)
    if oldest:
        lines.append(f"  Oldest pending item has waited {format_age(now - oldest[0].created_at)}")

    if stale_after_seconds > 0 and queue_stats[QueueStatus.PROCESSING.value]:
        stale = store.list_stale_processing(now - timedelta(seconds=stale_after_seconds))
        if stale:
            lines.append(
                f"  {len(stale)} processing items are older than {stale_after_seconds}s "
                f"and will be reclaimed on the next worker cycle"
            )

    if not lines:
        lines.append("  Nothing waiting")
    return lines


def failed_lines(store: QueueStore, queue_stats: Dict[str, int], limit: int = 5) -> List[str]:
    failed_total = queue_stats[QueueStatus.FAILED.value]
    if not failed_total:
        return []

    lines = []
    for item in store.get_failed_items(limit=limit):
        lines.append(
            f"  {item.entity_type.value} {item.entity_id} "
            f"[{item.attempts} attempts, item {item.id}]: {item.error_message or 'unknown error'}"
        )
    if failed_total > limit:
        lines.append(f"  ... and {failed_total - limit} more")
    lines.append("  Re-queue with `embedding-retry-failed`")
    return lines


def print_stats(store: QueueStore, failed_limit: int = 5):
    """Print current statistics."""
    queue_stats = store.get_stats()

    sections = [
        ("Queue", status_lines(queue_stats)),
        ("Health", health_lines(store, queue_stats)),
        ("Failed items", failed_lines(store, queue_stats, failed_limit)),
    ]

    print(f"Embedding generation queue, {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    for title, lines in sections:
        if lines:
            print()
            print(title)
            print("\n".join(lines))


def main(argv=None):
    parser = argparse.ArgumentParser(description="Monitor embedding queue progress")
    parser.add_argument("--watch", action="store_true", help="Refresh every interval until Ctrl+C")
    parser.add_argument("--interval", type=int, default=5, help="Watch interval in seconds (default: 5)")
    parser.add_argument(
        "--backend",
        default=QUEUE_BACKEND,
        choices=["supabase", "redis"],
        help=f"Queue backend (default: {QUEUE_BACKEND})"
    )
    parser.add_argument("--redis-url", default=REDIS_URL, help=f"Redis URL (default: {REDIS_URL})")
    args = parser.parse_args(argv)

    try:
        client = get_supabase_client() if args.backend == "supabase" else None
        store = create_queue_store(
            args.backend, supabase_client=client,
            redis_url=args.redis_url, table=QUEUE_TABLE
        )
    except Exception as e:
        print(f"✗ Failed to connect to queue: {e}")
        sys.exit(1)

    if not args.watch:
        print_stats(store)
        return

    try:
        while True:
            clear_screen()
            print_stats(store)
            time.sleep(args.interval)
    except KeyboardInterrupt:
        print("\nMonitoring stopped")


if __name__ == "__main__":
    main()
