"""Shared fixtures: a ticking clock and an in-memory Supabase stand-in."""

import copy
import uuid
from datetime import datetime, timedelta, timezone

import fakeredis
import pytest

from embedding_queue import models, monitor, queue_store, redis_queue, supabase_queue
from embedding_queue.queue_store import InMemoryQueueStore
from embedding_queue.redis_queue import RedisQueueStore
from embedding_queue.supabase_queue import SupabaseQueueStore


class Clock:
    """Deterministic UTC clock; every reading moves forward 1 ms."""

    def __init__(self, start=None):
        self.current = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        self.current += timedelta(milliseconds=1)
        return self.current

    def advance(self, seconds):
        self.current += timedelta(seconds=seconds)


class FakeResponse:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


class FakeQuery:
    """Subset of the postgrest query builder used by this package."""

    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.operation = "select"
        self.columns = ["*"]
        self.count_mode = None
        self.values = None
        self.filters = []
        self.orders = []
        self.limit_value = None
        self.range_value = None

    def select(self, *columns, count=None):
        self.operation = "select"
        self.columns = list(columns) or ["*"]
        self.count_mode = count
        return self

    def insert(self, values):
        self.operation = "insert"
        self.values = values
        return self

    def update(self, values):
        self.operation = "update"
        self.values = values
        return self

    def delete(self):
        self.operation = "delete"
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column, values):
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def lt(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and row.get(column) < value)
        return self

    def order(self, column, desc=False):
        self.orders.append((column, desc))
        return self

    def limit(self, size):
        self.limit_value = size
        return self

    def range(self, start, end):
        self.range_value = (start, end)
        return self

    def execute(self):
        rows = self.db.tables.setdefault(self.table, [])

        if self.operation == "insert":
            values = self.values if isinstance(self.values, list) else [self.values]
            inserted = []
            for value in values:
                now = self.db.clock().isoformat()
                row = {"id": str(uuid.uuid4()), "created_at": now, "updated_at": now,
                       "error_message": None, "processed_at": None}
                row.update(value)
                rows.append(row)
                inserted.append(copy.deepcopy(row))
            return FakeResponse(inserted)

        matched = [row for row in rows if all(f(row) for f in self.filters)]

        if self.operation == "update":
            for row in matched:
                row.update(self.values)
            return FakeResponse(copy.deepcopy(matched))

        if self.operation == "delete":
            self.db.tables[self.table] = [row for row in rows if row not in matched]
            return FakeResponse(copy.deepcopy(matched))

        for column, desc in reversed(self.orders):
            matched.sort(key=lambda row: (row.get(column) is None, row.get(column) or ""), reverse=desc)
        total = len(matched)
        if self.range_value:
            start, end = self.range_value
            matched = matched[start:end + 1]
        if self.limit_value is not None:
            matched = matched[:self.limit_value]
        if self.columns != ["*"]:
            matched = [{c: row.get(c) for c in self.columns} for row in matched]
        return FakeResponse(copy.deepcopy(matched), count=total if self.count_mode else None)


class FakeFunctions:
    """Records edge function invocations and replays canned responses."""

    def __init__(self):
        self.calls = []
        self.responses = {}

    def invoke(self, function_name, invoke_options=None):
        self.calls.append((function_name, invoke_options))
        response = self.responses.get(function_name, b'{"success": true}')
        if isinstance(response, Exception):
            raise response
        return response


class FakeSupabase:
    def __init__(self, clock=None):
        self.tables = {}
        self.functions = FakeFunctions()
        self.clock = clock or Clock()

    def table(self, name):
        return FakeQuery(self, name)


@pytest.fixture
def clock(monkeypatch):
    """Patch every module's utcnow with a controllable clock."""
    fake = Clock()
    for module in (models, monitor, queue_store, redis_queue, supabase_queue):
        monkeypatch.setattr(module, "utcnow", fake)
    return fake


@pytest.fixture
def supabase(clock):
    return FakeSupabase(clock)


@pytest.fixture(params=["memory", "redis", "supabase"])
def store(request, clock):
    """Each queue backend behind the same contract."""
    if request.param == "memory":
        return InMemoryQueueStore()
    if request.param == "redis":
        return RedisQueueStore(client=fakeredis.FakeRedis(decode_responses=True))
    return SupabaseQueueStore(FakeSupabase(clock))
