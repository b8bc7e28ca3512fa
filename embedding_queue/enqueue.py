"""Command line tool to enqueue records for embedding generation.

Usage:
    embedding-enqueue --candidate <id> [--candidate <id> ...]
    embedding-enqueue --job <id>
    embedding-enqueue --backfill all

Examples:
    # Queue one candidate after a manual data fix
    embedding-enqueue --candidate 6f1c...

    # Queue every open job posting that has no embedding yet
    embedding-enqueue --backfill jobs
"""

import argparse
import sys

from .backfill import backfill, enqueue_entities
from .config import QUEUE_BACKEND, REDIS_URL, QUEUE_TABLE
from .models import EntityType
from .monitor import status_lines
from .queue_store import create_queue_store
from .supabase_client import get_supabase_client

BACKFILL_TARGETS = {
    "candidates": [EntityType.CANDIDATE],
    "jobs": [EntityType.JOB_POSTING],
    "all": [EntityType.CANDIDATE, EntityType.JOB_POSTING],
}


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Enqueue candidates and job postings for embedding generation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  embedding-enqueue --candidate 6f1c0d2e-...
  embedding-enqueue --job 0b7a9f4c-... --job 91de2a55-...
  embedding-enqueue --backfill all
        """
    )
    parser.add_argument(
        "--candidate",
        action="append",
        default=[],
        metavar="ID",
        help="Candidate profile id (repeatable)"
    )
    parser.add_argument(
        "--job",
        action="append",
        default=[],
        metavar="ID",
        help="Job posting id (repeatable)"
    )
    parser.add_argument(
        "--backfill",
        choices=sorted(BACKFILL_TARGETS),
        help="Queue every record of this kind that has no embedding"
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
        help=f"Redis URL for the redis backend (default: {REDIS_URL})"
    )

    args = parser.parse_args(argv)
    if not (args.candidate or args.job or args.backfill):
        parser.error("nothing to enqueue: pass --candidate, --job or --backfill")
    return args


def main(argv=None):
    args = parse_args(argv)

    print("=" * 60)
    print("Embedding Queue - Enqueuer")
    print("=" * 60)
    print(f"Backend: {args.backend}")
    print()

    # Initialize components
    try:
        client = get_supabase_client()
        store = create_queue_store(
            args.backend, supabase_client=client,
            redis_url=args.redis_url, table=QUEUE_TABLE
        )
        store.get_stats()
        print(f"✓ Connected to {args.backend} queue")
    except Exception as e:
        print(f"✗ Failed to connect: {e}")
        sys.exit(1)

    totals = {"added": 0, "skipped": 0}

    def merge(stats):
        for key in totals:
            totals[key] += stats[key]

    if args.candidate:
        merge(enqueue_entities(store, EntityType.CANDIDATE, args.candidate))
    if args.job:
        merge(enqueue_entities(store, EntityType.JOB_POSTING, args.job))

    if args.backfill:
        for entity_type in BACKFILL_TARGETS[args.backfill]:
            print(f"\n🔄 Backfilling {entity_type.value} records...")
            merge(backfill(store, client, entity_type, show_progress=True))

    print(f"\n✓ Enqueuing complete:")
    print(f"   Added:   {totals['added']}")
    print(f"   Skipped: {totals['skipped']} (already pending or processing)")

    print(f"\n📊 Queue Statistics:")
    print("\n".join(status_lines(store.get_stats())))

    print(f"\n💡 Next steps:")
    print(f"   1. Start worker:     embedding-worker")
    print(f"   2. Monitor progress: embedding-monitor --watch")
    print()


if __name__ == "__main__":
    main()
