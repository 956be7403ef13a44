"""
In-memory aggregation over scoped interaction events.

Time bucketing, nearest-rank percentiles, conversation grouping,
engagement scoring and stable top-N ranking. Every function is pure and
operates on records that were already restricted to the caller's scope.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Iterable, List, Sequence, Tuple, TypeVar

from tutor_analytics.storage.models import InteractionEvent

T = TypeVar("T")

# Engagement weights (message rate vs. inverse response time)
MESSAGE_RATE_WEIGHT = 0.6
RESPONSE_TIME_WEIGHT = 0.4

# Conversations with at least this many messages count as completed
COMPLETION_THRESHOLD = 3


class Granularity(Enum):
    """Bucket widths for time series."""
    DAY = "day"
    HOUR = "hour"


def truncate(moment: datetime, granularity: Granularity) -> datetime:
    """Truncate a timestamp to its UTC bucket boundary."""
    utc = moment.astimezone(timezone.utc)
    if granularity == Granularity.DAY:
        return utc.replace(hour=0, minute=0, second=0, microsecond=0)
    return utc.replace(minute=0, second=0, microsecond=0)


@dataclass(frozen=True)
class TimeBucket:
    start: datetime
    events: Tuple[InteractionEvent, ...]

    @property
    def count(self) -> int:
        return len(self.events)


def bucket_events(events: Iterable[InteractionEvent], granularity: Granularity) -> List[TimeBucket]:
    """Group events into UTC buckets ordered by bucket start.

    Each event lands in exactly one bucket, so bucket counts always sum
    to the number of input events.

    Args:
        events: Events to bucket
        granularity: Day or hour buckets

    Returns:
        Non-empty buckets in chronological order
    """
    grouped: Dict[datetime, List[InteractionEvent]] = {}
    for event in events:
        grouped.setdefault(truncate(event.timestamp, granularity), []).append(event)

    return [
        TimeBucket(start=start, events=tuple(sorted(grouped[start], key=_event_order)))
        for start in sorted(grouped)
    ]


def hour_of_day_groups(events: Iterable[InteractionEvent]) -> Dict[int, List[InteractionEvent]]:
    """Group events by UTC hour of day (0-23)."""
    grouped: Dict[int, List[InteractionEvent]] = {}
    for event in events:
        grouped.setdefault(event.timestamp.astimezone(timezone.utc).hour, []).append(event)
    return grouped


def _event_order(event: InteractionEvent):
    return (event.timestamp, event.message_id)


# ---------------------------------------------------------------------------
# Descriptive statistics
# ---------------------------------------------------------------------------

def nearest_rank(sorted_values: Sequence[float], percentile: float) -> float:
    """Nearest-rank percentile over an ascending sample.

    rank = ceil(p/100 * n), clamped to [1, n]; no interpolation.

    Args:
        sorted_values: Sample sorted ascending
        percentile: Percentile to compute (0-100)

    Returns:
        The sample value at the nearest rank, or 0 for an empty sample
    """
    if percentile < 0 or percentile > 100:
        raise ValueError("Percentile must be between 0 and 100")
    if not sorted_values:
        return 0
    n = len(sorted_values)
    rank = max(1, min(n, math.ceil(percentile / 100.0 * n)))
    return sorted_values[rank - 1]


@dataclass(frozen=True)
class Percentiles:
    p50: float = 0
    p95: float = 0
    p99: float = 0


def response_time_percentiles(values: Iterable[float]) -> Percentiles:
    """P50/P95/P99 of response times; all zero for an empty sample."""
    ordered = sorted(values)
    return Percentiles(
        p50=nearest_rank(ordered, 50),
        p95=nearest_rank(ordered, 95),
        p99=nearest_rank(ordered, 99),
    )


def mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def median(values: Sequence[float]) -> float:
    """Median with the two middle values averaged for even-sized samples."""
    if not values:
        return 0.0
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2.0
    return float(ordered[mid])


def response_times(events: Iterable[InteractionEvent]) -> List[int]:
    return [e.response_time_ms for e in events if e.response_time_ms is not None]


def average_response_time(events: Iterable[InteractionEvent]) -> float:
    return mean(response_times(events))


def distinct_count(events: Iterable[InteractionEvent], attribute: str) -> int:
    return len({getattr(e, attribute) for e in events})


def count_by(events: Iterable[InteractionEvent], attribute: str) -> Dict[str, int]:
    """Count events per attribute value, ordered by count desc then value."""
    counts: Dict[str, int] = {}
    for event in events:
        key = getattr(event, attribute)
        counts[key] = counts.get(key, 0) + 1
    return dict(sorted(counts.items(), key=lambda kv: (-kv[1], str(kv[0]))))


def growth_percentage(previous: float, current: float) -> float:
    """Percent change from previous to current; 0 when previous is 0."""
    if previous <= 0:
        return 0.0
    return (current - previous) / previous * 100


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------

class ConversationLength(Enum):
    SINGLE = "single"  # 1 message
    SHORT = "short"    # 2-5 messages
    MEDIUM = "medium"  # 6-15 messages
    LONG = "long"      # 16+ messages


def classify_conversation(message_count: int) -> ConversationLength:
    if message_count < 1:
        raise ValueError("message_count must be >= 1")
    if message_count == 1:
        return ConversationLength.SINGLE
    if message_count <= 5:
        return ConversationLength.SHORT
    if message_count <= 15:
        return ConversationLength.MEDIUM
    return ConversationLength.LONG


@dataclass(frozen=True)
class Conversation:
    conversation_id: str
    message_count: int
    first_at: datetime
    last_at: datetime

    @property
    def length(self) -> ConversationLength:
        return classify_conversation(self.message_count)

    @property
    def duration_seconds(self) -> float:
        return (self.last_at - self.first_at).total_seconds()


def group_conversations(events: Iterable[InteractionEvent]) -> List[Conversation]:
    """Group events by conversation, ordered by conversation id."""
    grouped: Dict[str, List[InteractionEvent]] = {}
    for event in events:
        grouped.setdefault(event.conversation_id, []).append(event)

    conversations = []
    for conversation_id in sorted(grouped):
        members = grouped[conversation_id]
        timestamps = [e.timestamp for e in members]
        conversations.append(Conversation(
            conversation_id=conversation_id,
            message_count=len(members),
            first_at=min(timestamps),
            last_at=max(timestamps),
        ))
    return conversations


@dataclass(frozen=True)
class ConversationBreakdown:
    total: int
    by_length: Dict[ConversationLength, int]
    completion_rate: float  # fraction in [0, 1]
    average_messages: float
    median_messages: float
    average_duration_seconds: float


def summarize_conversations(conversations: Sequence[Conversation]) -> ConversationBreakdown:
    """Classify conversations and compute the completion rate.

    Completion rate is the fraction of conversations with at least
    COMPLETION_THRESHOLD messages.
    """
    by_length = {length: 0 for length in ConversationLength}
    for conversation in conversations:
        by_length[conversation.length] += 1

    total = len(conversations)
    completed = sum(1 for c in conversations if c.message_count >= COMPLETION_THRESHOLD)
    lengths = [c.message_count for c in conversations]

    return ConversationBreakdown(
        total=total,
        by_length=by_length,
        completion_rate=completed / total if total else 0.0,
        average_messages=mean(lengths),
        median_messages=median(lengths),
        average_duration_seconds=mean([c.duration_seconds for c in conversations]),
    )


# ---------------------------------------------------------------------------
# Module activity and engagement
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ModuleActivity:
    module_id: int
    messages: int
    unique_students: int
    average_response_time: float
    total_tokens: int

    @property
    def messages_per_student(self) -> float:
        return self.messages / self.unique_students if self.unique_students else 0.0


def module_activity(events: Iterable[InteractionEvent]) -> Dict[int, ModuleActivity]:
    """Per-module message, student, latency and token totals."""
    grouped: Dict[int, List[InteractionEvent]] = {}
    for event in events:
        grouped.setdefault(event.module_id, []).append(event)

    return {
        module_id: ModuleActivity(
            module_id=module_id,
            messages=len(members),
            unique_students=distinct_count(members, "student_id"),
            average_response_time=average_response_time(members),
            total_tokens=sum(e.total_tokens for e in members),
        )
        for module_id, members in sorted(grouped.items())
    }


def engagement_scores(
    activities: Iterable[ModuleActivity],
    message_rate_weight: float = MESSAGE_RATE_WEIGHT,
    response_time_weight: float = RESPONSE_TIME_WEIGHT,
) -> Dict[int, float]:
    """Composite engagement score per module, in [0, 1].

    score = w_rate * rate / max_rate + w_rt * min_rt / rt

    where rate is messages per student and rt the average response time.
    Both terms are normalized against the best module in the comparison
    set. A module without response-time data gets no latency credit.

    Args:
        activities: Module activity records to compare
        message_rate_weight: Weight of the message-rate term
        response_time_weight: Weight of the inverse response-time term

    Returns:
        Mapping of module id to score, rounded to 4 places
    """
    activities = list(activities)
    max_rate = max((a.messages_per_student for a in activities), default=0.0)
    timed = [a.average_response_time for a in activities if a.average_response_time > 0]
    min_rt = min(timed, default=0.0)

    scores = {}
    for activity in activities:
        rate_term = activity.messages_per_student / max_rate if max_rate > 0 else 0.0
        rt_term = min_rt / activity.average_response_time if activity.average_response_time > 0 else 0.0
        scores[activity.module_id] = round(
            message_rate_weight * rate_term + response_time_weight * rt_term, 4
        )
    return scores


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------

def top_n(
    items: Iterable[T],
    metric: Callable[[T], float],
    identifier: Callable[[T], object],
    n: int,
) -> List[T]:
    """Rank items by metric descending, ties broken by identifier ascending.

    Args:
        items: Items to rank
        metric: Value to rank by (higher first)
        identifier: Stable tie-breaker (lower first)
        n: Number of items to keep

    Returns:
        At most n items in rank order
    """
    if n < 0:
        raise ValueError("n must be >= 0")
    ordered = sorted(items, key=identifier)
    ordered.sort(key=metric, reverse=True)
    return ordered[:n]


@dataclass(frozen=True)
class StudentActivity:
    student_id: int
    messages: int
    conversations: int
    modules: int
    first_message_at: datetime
    last_message_at: datetime

    @property
    def messages_per_conversation(self) -> float:
        return self.messages / self.conversations if self.conversations else 0.0


def student_activity(events: Iterable[InteractionEvent]) -> List[StudentActivity]:
    """Per-student activity, skipping anonymous (id <= 0) students."""
    grouped: Dict[int, List[InteractionEvent]] = {}
    for event in events:
        if event.student_id > 0:
            grouped.setdefault(event.student_id, []).append(event)

    return [
        StudentActivity(
            student_id=student_id,
            messages=len(members),
            conversations=distinct_count(members, "conversation_id"),
            modules=distinct_count(members, "module_id"),
            first_message_at=min(e.timestamp for e in members),
            last_message_at=max(e.timestamp for e in members),
        )
        for student_id, members in sorted(grouped.items())
    ]
