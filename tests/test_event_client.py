"""
Tests for the concurrent fan-out event-store client.

Uses an in-memory store so failures and slow partitions can be injected.
"""

import threading
import time
from datetime import timedelta

import pytest

from tutor_analytics.core.event_client import EventQuery, EventStoreClient
from tutor_analytics.core.scope import AccessibleModuleSet
from tutor_analytics.storage.event_store import PartitionKey, ScanPage, TimeRange

from conftest import BASE_TIME, make_event

WINDOW = TimeRange(start=BASE_TIME - timedelta(days=1), end=BASE_TIME + timedelta(days=1))


class FakeEventStore:
    """In-memory RangeScan with offset cursors, newest first."""

    def __init__(self, partitions, failing=(), slow=(), delay=0.0, slow_seconds=1.0):
        self.partitions = partitions
        self.failing = set(failing)
        self.slow = set(slow)
        self.slow_seconds = slow_seconds
        self.delay = delay
        self.calls = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def range_scan(self, partition_key, start, end, limit, cursor=None):
        with self._lock:
            self.calls.append((partition_key, limit, cursor))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if partition_key in self.failing:
                raise ConnectionError("transient network error")
            if partition_key in self.slow:
                time.sleep(self.slow_seconds)
            elif self.delay:
                time.sleep(self.delay)

            records = sorted(
                (e for e in self.partitions.get(partition_key, []) if start <= e.timestamp < end),
                key=lambda e: (e.timestamp, e.message_id),
                reverse=True,
            )
            offset = int(cursor) if cursor else 0
            page = records[offset:offset + limit]
            more = offset + limit < len(records)
            return ScanPage(records=page, next_cursor=str(offset + limit) if more else None)
        finally:
            with self._lock:
                self.active -= 1


def _module_events(module_id, count, prefix=None):
    prefix = prefix or f"m{module_id}"
    return [
        make_event(f"{prefix}-{i}", module_id=module_id, timestamp=BASE_TIME + timedelta(minutes=i))
        for i in range(count)
    ]


def _query(module_ids, limit=100, scope=None):
    return EventQuery(
        partition_keys=tuple(PartitionKey.module(m) for m in module_ids),
        window=WINDOW,
        limit=limit,
        scope=scope or AccessibleModuleSet.of(module_ids),
    )


class TestFanOut:
    """Test concurrent partition scans and merging."""

    def test_merges_partitions_in_time_order(self):
        store = FakeEventStore({
            PartitionKey.module(5): _module_events(5, 3),
            PartitionKey.module(6): _module_events(6, 2),
        })

        result = EventStoreClient(store).query(_query([5, 6]))

        assert len(result.records) == 5
        ordering = [(e.timestamp, e.message_id) for e in result.records]
        assert ordering == sorted(ordering)
        assert result.degraded is False

    def test_out_of_scope_partitions_are_never_scanned(self):
        store = FakeEventStore({
            PartitionKey.module(5): _module_events(5, 1),
            PartitionKey.module(7): _module_events(7, 1),
        })

        result = EventStoreClient(store).query(_query([5, 7], scope=AccessibleModuleSet.of([5])))

        assert {e.module_id for e in result.records} == {5}
        assert all(key != PartitionKey.module(7) for key, _, _ in store.calls)

    def test_student_partition_is_filtered_to_scope(self):
        """Records from non-module partitions outside the scope are dropped."""
        events = [make_event("a", module_id=5, student_id=3), make_event("b", module_id=9, student_id=3)]
        store = FakeEventStore({PartitionKey.student(3): events})
        query = EventQuery(
            partition_keys=(PartitionKey.student(3),),
            window=WINDOW,
            limit=10,
            scope=AccessibleModuleSet.of([5]),
        )

        result = EventStoreClient(store).query(query)

        assert [e.message_id for e in result.records] == ["a"]

    def test_duplicate_records_are_merged(self):
        shared = make_event("shared", module_id=5, student_id=3)
        store = FakeEventStore({
            PartitionKey.module(5): [shared],
            PartitionKey.student(3): [shared],
        })
        query = EventQuery(
            partition_keys=(PartitionKey.module(5), PartitionKey.student(3)),
            window=WINDOW,
            limit=10,
            scope=AccessibleModuleSet.of([5]),
        )

        result = EventStoreClient(store).query(query)

        assert [e.message_id for e in result.records] == ["shared"]

    def test_fan_out_width_bounds_concurrency(self):
        partitions = {PartitionKey.module(m): _module_events(m, 1) for m in range(1, 7)}
        store = FakeEventStore(partitions, delay=0.05)

        result = EventStoreClient(store, fan_out_width=2).query(_query(range(1, 7)))

        assert len(result.records) == 6
        assert store.max_active <= 2

    def test_empty_partition_list(self):
        store = FakeEventStore({})
        result = EventStoreClient(store).query(_query([]))

        assert result.records == ()
        assert store.calls == []


class TestPartialFailure:
    """Test that failing partitions degrade, not abort, the query."""

    def test_one_failing_partition_degrades_response(self):
        """One scan throws, two succeed: data from the two is kept and flagged degraded."""
        store = FakeEventStore(
            {
                PartitionKey.module(5): _module_events(5, 2),
                PartitionKey.module(6): _module_events(6, 2),
                PartitionKey.module(7): _module_events(7, 3),
            },
            failing=[PartitionKey.module(6)],
        )

        result = EventStoreClient(store).query(_query([5, 6, 7]))

        assert result.degraded is True
        assert {e.module_id for e in result.records} == {5, 7}
        assert len(result.records) == 5
        assert len(result.failures) == 1
        assert result.failures[0].partition == "module:6"
        assert "ConnectionError" in result.failures[0].reason

    def test_deadline_keeps_completed_partitions(self):
        """A slow partition is cancelled at the deadline; others are kept."""
        store = FakeEventStore(
            {
                PartitionKey.module(5): _module_events(5, 2),
                PartitionKey.module(6): _module_events(6, 2),
            },
            slow=[PartitionKey.module(6)],
        )

        result = EventStoreClient(store).query(_query([5, 6]), timeout=0.2)

        assert result.deadline_exceeded is True
        assert result.degraded is True
        assert {e.module_id for e in result.records} == {5}
        assert [f.partition for f in result.failures] == ["module:6"]
        assert result.failures[0].reason == "deadline exceeded"

    def test_blocked_scan_does_not_hold_the_deadline(self):
        """The query returns at its deadline while a scan is still blocked in the store."""
        store = FakeEventStore(
            {
                PartitionKey.module(5): _module_events(5, 2),
                PartitionKey.module(6): _module_events(6, 2),
            },
            slow=[PartitionKey.module(6)],
            slow_seconds=3.0,
        )

        started = time.monotonic()
        result = EventStoreClient(store).query(_query([5, 6]), timeout=0.2)
        elapsed = time.monotonic() - started

        assert elapsed < 1.0
        assert result.deadline_exceeded is True
        assert {e.message_id for e in result.records} == {"m5-0", "m5-1"}

    def test_late_page_is_not_published(self):
        """A page that lands after the deadline stays out of the result."""
        store = FakeEventStore(
            {PartitionKey.module(6): _module_events(6, 2)},
            slow=[PartitionKey.module(6)],
            slow_seconds=0.3,
        )

        result = EventStoreClient(store).query(_query([6]), timeout=0.1)
        time.sleep(0.5)

        assert result.records == ()
        assert [f.reason for f in result.failures] == ["deadline exceeded"]


class TestTruncation:
    """Test per-partition limits."""

    def test_partition_over_limit_is_truncated(self):
        store = FakeEventStore({PartitionKey.module(5): _module_events(5, 5)})

        result = EventStoreClient(store, page_size=2).query(_query([5], limit=3))

        assert result.truncated is True
        # Newest records are kept
        assert [e.message_id for e in result.records] == ["m5-2", "m5-3", "m5-4"]

    def test_partition_exactly_at_limit_is_not_truncated(self):
        """Reaching the limit exactly is not truncation."""
        store = FakeEventStore({PartitionKey.module(5): _module_events(5, 5)})

        result = EventStoreClient(store, page_size=2).query(_query([5], limit=5))

        assert result.truncated is False
        assert len(result.records) == 5

    def test_pages_follow_cursor(self):
        store = FakeEventStore({PartitionKey.module(5): _module_events(5, 5)})

        EventStoreClient(store, page_size=2).query(_query([5]))

        assert [cursor for _, _, cursor in store.calls] == [None, "2", "4"]


class TestValidation:
    def test_query_limit_must_be_positive(self):
        with pytest.raises(ValueError):
            _query([5], limit=0)

    def test_client_rejects_invalid_width(self):
        with pytest.raises(ValueError):
            EventStoreClient(FakeEventStore({}), fan_out_width=0)
