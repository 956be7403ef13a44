"""
Bounded, concurrent event-store queries.

One logical query fans out into one range scan per partition key on a
request-scoped thread pool. Each worker owns its own result slot and
publishes pages into it under a shared lock. A failing partition is
recorded and never aborts its siblings. At the deadline the slots are
frozen, the query returns what was already collected, and scans still
blocked in the store are abandoned.
"""

import concurrent.futures
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from tutor_analytics.storage.event_store import EventStore, PartitionKey, PartitionKind, TimeRange
from tutor_analytics.storage.models import InteractionEvent

from .scope import AccessibleModuleSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventQuery:
    """A scoped event-store query.

    `scope` is mandatory: module partitions outside it are never scanned,
    and records from student/provider partitions are filtered to it.
    `limit` caps the records returned per partition.
    """
    partition_keys: Tuple[PartitionKey, ...]
    window: TimeRange
    limit: int
    scope: AccessibleModuleSet

    def __post_init__(self):
        if self.limit <= 0:
            raise ValueError("limit must be > 0")


@dataclass(frozen=True)
class PartitionFailure:
    """A partition scan that failed or did not finish before the deadline."""
    partition: str
    reason: str


@dataclass
class PartitionScan:
    """Per-worker result slot. Only the owning worker writes to it."""
    key: PartitionKey
    records: List[InteractionEvent] = field(default_factory=list)
    truncated: bool = False
    completed: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class QueryResult:
    """Merged outcome of a fan-out query, ordered by (timestamp, message_id)."""
    records: Tuple[InteractionEvent, ...]
    truncated: bool = False
    failures: Tuple[PartitionFailure, ...] = ()
    deadline_exceeded: bool = False

    @property
    def degraded(self) -> bool:
        return bool(self.failures) or self.deadline_exceeded


class EventStoreClient:
    """Fan-out client over an EventStore.

    Retries are the store transport's concern; this client never retries.
    """

    def __init__(self, store: EventStore, fan_out_width: int = 8, page_size: int = 500):
        """Initialize the client.

        Args:
            store: Event store implementing range_scan
            fan_out_width: Maximum concurrent partition scans
            page_size: Records requested per range-scan page
        """
        if fan_out_width < 1:
            raise ValueError("fan_out_width must be >= 1")
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self.store = store
        self.fan_out_width = fan_out_width
        self.page_size = page_size

    def query(self, request: EventQuery, timeout: Optional[float] = None) -> QueryResult:
        """Run one scan per partition key and merge the results.

        Returns at the deadline even while scans are still blocked in the
        store; those scans are abandoned and cannot publish into the result.

        Args:
            request: Scoped query to execute
            timeout: Seconds before outstanding scans are cancelled

        Returns:
            QueryResult with merged records and any partial-failure records
        """
        keys = _scoped_keys(request.partition_keys, request.scope)
        if not keys:
            return QueryResult(records=())

        slots = [PartitionScan(key=key) for key in keys]
        cancel = threading.Event()
        # Guards slot writes; once cancel is set under it, slots are frozen
        publish = threading.Lock()
        deadline_exceeded = False

        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=min(self.fan_out_width, len(slots)),
            thread_name_prefix="partition-scan",
        )
        try:
            futures = [executor.submit(self._scan, slot, request, cancel, publish) for slot in slots]
            _, not_done = concurrent.futures.wait(futures, timeout=timeout)
            if not_done:
                deadline_exceeded = True
                with publish:
                    cancel.set()
                logger.warning(
                    "Deadline of %.2fs exceeded with %d of %d partition scans outstanding",
                    timeout, len(not_done), len(futures),
                )
        finally:
            # Queued scans are dropped; scans still inside the store are not awaited
            executor.shutdown(wait=not deadline_exceeded, cancel_futures=True)

        return _merge(slots, request.scope, deadline_exceeded)

    def list_partitions(self, kind: PartitionKind, window: TimeRange) -> List[PartitionKey]:
        """Partitions of one kind with events in the window, as the store reports them."""
        return self.store.list_partitions(kind, window.start, window.end)

    def _scan(
        self,
        slot: PartitionScan,
        request: EventQuery,
        cancel: threading.Event,
        publish: threading.Lock,
    ) -> None:
        window = request.window
        cursor = None
        started = time.monotonic()
        try:
            while not cancel.is_set():
                remaining = request.limit - len(slot.records)
                # Ask for one record past the limit to detect truncation
                page = self.store.range_scan(
                    slot.key,
                    window.start,
                    window.end,
                    min(self.page_size, remaining + 1),
                    cursor,
                )
                with publish:
                    if cancel.is_set():
                        # Pages arriving after the deadline are discarded
                        return
                    slot.records.extend(page.records)
                    if len(slot.records) > request.limit:
                        del slot.records[request.limit:]
                        slot.truncated = True
                        slot.completed = True
                    elif page.next_cursor is None:
                        slot.completed = True
                logger.debug("Scanned %d records from %s", len(page.records), slot.key)
                if slot.completed:
                    return
                cursor = page.next_cursor
        except Exception as e:
            with publish:
                if cancel.is_set():
                    return
                slot.error = f"{type(e).__name__}: {e}"
            logger.warning("Partition scan failed for %s after %.2fs", slot.key,
                           time.monotonic() - started, exc_info=True)


def _scoped_keys(keys: Sequence[PartitionKey], scope: AccessibleModuleSet) -> List[PartitionKey]:
    scoped = []
    seen = set()
    for key in keys:
        if key in seen:
            continue
        seen.add(key)
        if key.kind == PartitionKind.MODULE and not scope.contains(key.value):
            logger.warning("Dropping out-of-scope partition %s", key)
            continue
        scoped.append(key)
    return scoped


def _merge(slots: List[PartitionScan], scope: AccessibleModuleSet, deadline_exceeded: bool) -> QueryResult:
    records: List[InteractionEvent] = []
    failures: List[PartitionFailure] = []
    truncated = False

    for slot in slots:
        if slot.error is not None:
            failures.append(PartitionFailure(partition=str(slot.key), reason=slot.error))
        elif not slot.completed:
            failures.append(PartitionFailure(partition=str(slot.key), reason="deadline exceeded"))
        truncated = truncated or slot.truncated
        if slot.key.kind == PartitionKind.MODULE:
            records.extend(slot.records)
        else:
            records.extend(r for r in slot.records if scope.contains(r.module_id))

    # Scans overlap when student and module partitions are combined
    unique = {r.message_id: r for r in records}
    ordered = sorted(unique.values(), key=lambda r: (r.timestamp, r.message_id))

    if truncated:
        logger.warning("Query truncated: at least one partition exceeded its limit")

    return QueryResult(
        records=tuple(ordered),
        truncated=truncated,
        failures=tuple(failures),
        deadline_exceeded=deadline_exceeded,
    )
