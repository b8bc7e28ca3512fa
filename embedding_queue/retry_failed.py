"""Re-queue failed embedding items.

Failed items are never picked up again on their own. This resets them
to pending with a fresh attempt budget.

Usage:
    embedding-retry-failed            # every failed item
    embedding-retry-failed <item-id>  # specific items
"""

import argparse
import sys

from .config import QUEUE_BACKEND, REDIS_URL, QUEUE_TABLE
from .queue_store import create_queue_store
from .supabase_client import get_supabase_client


def main(argv=None):
    parser = argparse.ArgumentParser(description="Retry failed embedding queue items")
    parser.add_argument(
        "item_ids",
        nargs="*",
        help="Queue item ids to reset (default: all failed items)"
    )
    parser.add_argument(
        "--backend",
        default=QUEUE_BACKEND,
        choices=["supabase", "redis"],
        help=f"Queue backend (default: {QUEUE_BACKEND})"
    )
    parser.add_argument(
        "--redis-url",
        default=REDIS_URL,
        help=f"Redis URL (default: {REDIS_URL})"
    )
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

    if not args.item_ids:
        count = store.retry_failed_items()
        print(f"✓ Re-queued {count} failed items")
        return

    missing = []
    for item_id in args.item_ids:
        if store.reset_item(item_id):
            print(f"✓ Re-queued {item_id}")
        else:
            missing.append(item_id)

    if missing:
        print(f"✗ Not in failed state: {', '.join(missing)}")
        sys.exit(1)


if __name__ == "__main__":
    main()
