"""
Tests for the worker loop
"""
import logging
from datetime import datetime, timedelta, timezone

import pytest

from embedding_queue.embedding_service import InvocationResult
from embedding_queue.errors import EntityNotFound
from embedding_queue.models import EntityType, QueueItem, QueueStatus
from embedding_queue.queue_store import InMemoryQueueStore
from embedding_queue.worker import EmbeddingWorker


class StubBuilder:
    def __init__(self, missing=(), broken=()):
        self.missing = set(missing)
        self.broken = set(broken)
        self.built = []

    def build(self, entity_type, entity_id):
        if entity_id in self.missing:
            raise EntityNotFound(entity_type.value, entity_id)
        if entity_id in self.broken:
            raise KeyError("id")
        self.built.append(entity_id)
        return {"id": entity_id}


class StubInvoker:
    def __init__(self, fail=(), on_invoke=None):
        self.fail = set(fail)
        self.on_invoke = on_invoke
        self.invoked = []

    def invoke(self, entity_type, payload):
        self.invoked.append(payload["id"])
        if self.on_invoke:
            self.on_invoke()
        if payload["id"] in self.fail:
            return InvocationResult(success=False, error="503 Service Unavailable")
        return InvocationResult(success=True)


def seed(store, count, attempts=0, entity_type=EntityType.CANDIDATE):
    base = datetime(2026, 1, 1, tzinfo=timezone.utc)
    return [
        store.add(QueueItem(
            id=f"item-{i}", entity_type=entity_type, entity_id=f"entity-{i}",
            attempts=attempts, created_at=base + timedelta(seconds=i)
        ))
        for i in range(count)
    ]


def make_worker(store, builder=None, invoker=None, **kwargs):
    kwargs.setdefault("stale_after_seconds", 0)
    kwargs.setdefault("poll_interval_ms", 0)
    return EmbeddingWorker(
        store=store,
        payload_builder=builder or StubBuilder(),
        invoker=invoker or StubInvoker(),
        **kwargs
    )


@pytest.fixture
def store():
    return InMemoryQueueStore()


def test_failed_invocation_is_retried(store):
    (item,) = seed(store, 1)
    worker = make_worker(store, invoker=StubInvoker(fail={"entity-0"}))

    worker.run_cycle()

    retried = store.get_item(item.id)
    assert retried.status is QueueStatus.PENDING
    assert retried.attempts == 1
    assert retried.error_message == "503 Service Unavailable"


def test_failure_at_last_attempt_gives_up(store):
    (item,) = seed(store, 1, attempts=2)
    worker = make_worker(store, invoker=StubInvoker(fail={"entity-0"}), max_attempts=3)

    worker.run_cycle()

    failed = store.get_item(item.id)
    assert failed.status is QueueStatus.FAILED
    assert failed.attempts == 3

    # Failed items are never picked up again
    assert worker.run_cycle() == 0
    assert store.get_item(item.id) == failed


def test_success_completes_item(store):
    (item,) = seed(store, 1, attempts=1)
    store._items[item.id] = item.copy(error_message="earlier timeout")
    worker = make_worker(store)

    worker.run_cycle()

    done = store.get_item(item.id)
    assert done.status is QueueStatus.COMPLETED
    assert done.processed_at is not None
    assert done.error_message is None
    assert done.attempts == 1


def test_empty_queue_changes_nothing(store):
    builder, invoker = StubBuilder(), StubInvoker()
    worker = make_worker(store, builder, invoker)

    assert worker.run_cycle() == 0
    assert builder.built == []
    assert invoker.invoked == []
    assert store.get_stats() == {"pending": 0, "processing": 0, "completed": 0, "failed": 0}


def test_batch_size_bounds_each_cycle(store):
    items = seed(store, 7)
    invoker = StubInvoker()
    worker = make_worker(store, invoker=invoker, batch_size=5)

    assert worker.run_cycle() == 5
    assert invoker.invoked == [f"entity-{i}" for i in range(5)]
    assert [store.get_item(i.id).status for i in items].count(QueueStatus.COMPLETED) == 5

    assert worker.run_cycle() == 2
    assert invoker.invoked[5:] == ["entity-5", "entity-6"]
    assert store.get_stats()["completed"] == 7


def test_item_exhausts_budget_over_cycles(store):
    (item,) = seed(store, 1)
    worker = make_worker(store, invoker=StubInvoker(fail={"entity-0"}), max_attempts=3)

    for _ in range(5):
        worker.run_cycle()

    failed = store.get_item(item.id)
    assert failed.status is QueueStatus.FAILED
    assert failed.attempts == 3


def test_missing_entity_fails_fast(store):
    (item,) = seed(store, 1)
    invoker = StubInvoker()
    worker = make_worker(store, StubBuilder(missing={"entity-0"}), invoker, fail_fast_on_missing=True)

    worker.run_cycle()

    failed = store.get_item(item.id)
    assert failed.status is QueueStatus.FAILED
    assert failed.attempts == 1
    assert failed.error_message == "candidate not found: entity-0"
    assert invoker.invoked == []


def test_missing_entity_can_consume_retry_budget(store):
    (item,) = seed(store, 1)
    worker = make_worker(store, StubBuilder(missing={"entity-0"}), fail_fast_on_missing=False)

    worker.run_cycle()

    assert store.get_item(item.id).status is QueueStatus.PENDING
    assert store.get_item(item.id).attempts == 1


def test_payload_errors_are_retried(store):
    (item,) = seed(store, 1)
    worker = make_worker(store, StubBuilder(broken={"entity-0"}))

    worker.run_cycle()

    retried = store.get_item(item.id)
    assert retried.status is QueueStatus.PENDING
    assert retried.error_message == "KeyError: 'id'"


def test_one_bad_item_does_not_block_batch(store):
    items = seed(store, 3)
    worker = make_worker(store, invoker=StubInvoker(fail={"entity-1"}))

    worker.run_cycle()

    statuses = [store.get_item(i.id).status for i in items]
    assert statuses == [QueueStatus.COMPLETED, QueueStatus.PENDING, QueueStatus.COMPLETED]


def test_item_claimed_elsewhere_is_skipped(store):
    items = seed(store, 2)
    invoker = StubInvoker()
    worker = make_worker(store, invoker=invoker)
    fetched = store.fetch_pending(5)
    store.mark_processing(items[0].id)  # another worker won the claim

    assert worker.process_item(fetched[0]) is None
    assert worker.process_item(fetched[1]) is not None
    assert invoker.invoked == ["entity-1"]


def test_stop_leaves_rest_of_batch_pending(store):
    items = seed(store, 3)
    worker = make_worker(store)
    worker.invoker = StubInvoker(on_invoke=worker.stop)

    assert worker.run_cycle() == 1

    statuses = [store.get_item(i.id).status for i in items]
    assert statuses == [QueueStatus.COMPLETED, QueueStatus.PENDING, QueueStatus.PENDING]


def test_cycle_reclaims_stale_processing(store):
    (item,) = seed(store, 1)
    store._items[item.id] = item.copy(
        status=QueueStatus.PROCESSING,
        updated_at=datetime.now(timezone.utc) - timedelta(hours=1),
    )
    worker = make_worker(store, stale_after_seconds=600)

    worker.run_cycle()

    # Reclaimed as a failed attempt, then processed in the same cycle
    done = store.get_item(item.id)
    assert done.status is QueueStatus.COMPLETED
    assert done.attempts == 1


class FlakyStore(InMemoryQueueStore):
    """Raises on the first poll, stops the worker after a few cycles."""

    def __init__(self, stop_after):
        super().__init__()
        self.polls = 0
        self.stop_after = stop_after
        self.worker = None

    def fetch_pending(self, limit):
        self.polls += 1
        if self.polls >= self.stop_after:
            self.worker.stop()
        if self.polls == 1:
            raise ConnectionError("backend unavailable")
        return super().fetch_pending(limit)


def test_run_survives_cycle_errors_and_logs_heartbeat(caplog):
    store = FlakyStore(stop_after=4)
    (item,) = seed(store, 1)
    worker = make_worker(store, heartbeat_every=2)
    store.worker = worker

    with caplog.at_level(logging.INFO, logger="embedding_queue.worker"):
        worker.run()

    assert store.polls == 4
    assert worker.iteration == 4
    assert store.get_item(item.id).status is QueueStatus.COMPLETED
    assert "Worker error: backend unavailable" in caplog.text
    assert caplog.text.count("heartbeat") == 2
    assert worker.running is False
