"""
Partitioned event store access.

Defines the RangeScan contract the engine consumes and a SQLite-backed
implementation with keyset pagination over (partition, timestamp).
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Protocol, Union

from ..core.token_counter import TokenUsage
from .db import DEFAULT_DB_PATH, get_connection
from .models import InteractionEvent


class PartitionKind(Enum):
    """Attributes the event store organizes records by."""
    MODULE = "module"
    STUDENT = "student"
    PROVIDER = "provider"


_PARTITION_COLUMNS = {
    PartitionKind.MODULE: "module_id",
    PartitionKind.STUDENT: "student_id",
    PartitionKind.PROVIDER: "provider",
}


@dataclass(frozen=True)
class PartitionKey:
    kind: PartitionKind
    value: Union[int, str]

    @classmethod
    def module(cls, module_id: int) -> "PartitionKey":
        return cls(PartitionKind.MODULE, module_id)

    @classmethod
    def student(cls, student_id: int) -> "PartitionKey":
        return cls(PartitionKind.STUDENT, student_id)

    @classmethod
    def provider(cls, provider: str) -> "PartitionKey":
        return cls(PartitionKind.PROVIDER, provider)

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.value}"


@dataclass(frozen=True)
class TimeRange:
    """Half-open UTC window [start, end)."""
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("TimeRange bounds must be timezone-aware")
        if self.start > self.end:
            raise ValueError("start must not be after end")

    @property
    def duration(self):
        return self.end - self.start

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end


@dataclass(frozen=True)
class ScanPage:
    """One page of a range scan; next_cursor is None on the last page."""
    records: List[InteractionEvent]
    next_cursor: Optional[str] = None


class EventStore(Protocol):
    """RangeScan contract of the partitioned event store."""

    def range_scan(
        self,
        partition_key: PartitionKey,
        start: datetime,
        end: datetime,
        limit: int,
        cursor: Optional[str] = None,
    ) -> ScanPage:
        ...

    def list_partitions(self, kind: PartitionKind, start: datetime, end: datetime) -> List[PartitionKey]:
        """Partition keys holding at least one event in [start, end)."""
        ...


def to_epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def from_epoch_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


class SqliteEventStore:
    """Event store backed by the local interaction_event table.

    Pages are returned newest first. The cursor encodes the last
    (timestamp, message_id) returned so that pagination is stable even
    when several events share a timestamp.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the store with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def range_scan(
        self,
        partition_key: PartitionKey,
        start: datetime,
        end: datetime,
        limit: int,
        cursor: Optional[str] = None,
    ) -> ScanPage:
        """Scan one partition for events in [start, end).

        Args:
            partition_key: Partition to scan
            start: Inclusive window start (timezone-aware)
            end: Exclusive window end (timezone-aware)
            limit: Maximum records in this page
            cursor: Cursor from the previous page, if any

        Returns:
            ScanPage with up to `limit` records and the next cursor

        Raises:
            ValueError: If limit is not positive or the cursor is malformed
        """
        if limit <= 0:
            raise ValueError("limit must be > 0")

        column = _PARTITION_COLUMNS[partition_key.kind]
        # Provider names are matched case-insensitively
        collation = " COLLATE NOCASE" if partition_key.kind == PartitionKind.PROVIDER else ""
        query = f"""
            SELECT message_id, conversation_id, timestamp_ms, student_id, module_id,
                   provider, model_name, input_tokens, output_tokens, token_count,
                   response_time_ms, has_attachment, question
            FROM interaction_event
            WHERE {column} = ?{collation} AND timestamp_ms >= ? AND timestamp_ms < ?
        """
        params: list = [partition_key.value, to_epoch_ms(start), to_epoch_ms(end)]

        if cursor:
            last_ts, last_id = _decode_cursor(cursor)
            query += " AND (timestamp_ms < ? OR (timestamp_ms = ? AND message_id < ?))"
            params.extend([last_ts, last_ts, last_id])

        # Fetch one extra row to know whether another page exists
        query += " ORDER BY timestamp_ms DESC, message_id DESC LIMIT ?"
        params.append(limit + 1)

        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()

        has_more = len(rows) > limit
        rows = rows[:limit]
        records = [_row_to_event(row) for row in rows]

        next_cursor = None
        if has_more and rows:
            next_cursor = _encode_cursor(rows[-1][2], rows[-1][0])
        return ScanPage(records=records, next_cursor=next_cursor)

    def list_partitions(self, kind: PartitionKind, start: datetime, end: datetime) -> List[PartitionKey]:
        """List the partitions of one kind that hold events in [start, end).

        Args:
            kind: Partition attribute to enumerate
            start: Inclusive window start (timezone-aware)
            end: Exclusive window end (timezone-aware)

        Returns:
            Partition keys in ascending value order
        """
        column = _PARTITION_COLUMNS[kind]
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                f"""
                SELECT DISTINCT {column} FROM interaction_event
                WHERE timestamp_ms >= ? AND timestamp_ms < ?
                ORDER BY {column}
                """,
                (to_epoch_ms(start), to_epoch_ms(end)),
            ).fetchall()
        finally:
            conn.close()

        return [PartitionKey(kind, row[0]) for row in rows]


def _encode_cursor(timestamp_ms: int, message_id: str) -> str:
    return f"{timestamp_ms}|{message_id}"


def _decode_cursor(cursor: str):
    ts, sep, message_id = cursor.partition("|")
    if not sep or not ts.isdigit():
        raise ValueError(f"Malformed cursor: {cursor!r}")
    return int(ts), message_id


def _row_to_event(row: tuple) -> InteractionEvent:
    input_tokens, output_tokens, token_count = row[7], row[8], row[9]
    if input_tokens is None or output_tokens is None:
        usage = TokenUsage.from_total(token_count or 0)
    else:
        usage = TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens)

    return InteractionEvent(
        message_id=row[0],
        conversation_id=row[1],
        timestamp=from_epoch_ms(row[2]),
        student_id=row[3],
        module_id=row[4],
        provider=row[5],
        model_name=row[6],
        input_tokens=usage.input_tokens,
        output_tokens=usage.output_tokens,
        response_time_ms=row[10],
        has_attachment=bool(row[11]),
        question=row[12],
    )
