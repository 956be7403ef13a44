"""
Report value objects returned by the analytics orchestrator.

Every report is immutable, request-scoped and carries a ReportMeta that
states how complete it is. Monetary values are Decimal.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Tuple

from .aggregation import Granularity
from .event_client import PartitionFailure
from .faq import FaqCluster
from .insights import EngagementQuality, PerformanceStatus, TrendDirection
from .pricing import UnpricedUsage

ZERO = Decimal("0")


class RequestState(Enum):
    """Pipeline stages of one report request."""
    SCOPE_RESOLVED = "scope_resolved"
    EVENTS_FETCHED = "events_fetched"
    AGGREGATED = "aggregated"
    ENRICHED = "enriched"
    RETURNED = "returned"
    PARTIALLY_DEGRADED = "partially_degraded"


@dataclass(frozen=True)
class ReportMeta:
    """Completeness information attached to every report."""
    state: RequestState = RequestState.RETURNED
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    record_count: int = 0
    scope_empty: bool = False
    truncated: bool = False
    deadline_exceeded: bool = False
    partition_failures: Tuple[PartitionFailure, ...] = ()
    unpriced: UnpricedUsage = field(default_factory=UnpricedUsage)
    missing_catalog_ids: Tuple[str, ...] = ()

    @property
    def degraded(self) -> bool:
        return self.state == RequestState.PARTIALLY_DEGRADED


# ---------------------------------------------------------------------------
# Cost
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class UnitCost:
    """Cost rolled up to a module, course or institution."""
    unit_id: int
    name: str
    messages: int
    cost: Decimal


@dataclass(frozen=True)
class ProviderCost:
    provider: str
    messages: int
    tokens: int
    cost: Decimal


@dataclass(frozen=True)
class ModelCost:
    provider: str
    model: str
    messages: int
    tokens: int
    cost: Decimal
    priced: bool
    input_cost_per_million: Decimal = ZERO
    output_cost_per_million: Decimal = ZERO


@dataclass(frozen=True)
class CostBreakdown:
    total_messages: int = 0
    total_tokens: int = 0
    total_cost: Decimal = ZERO
    by_provider: Tuple[ProviderCost, ...] = ()
    by_model: Tuple[ModelCost, ...] = ()
    by_module: Tuple[UnitCost, ...] = ()
    by_course: Tuple[UnitCost, ...] = ()
    by_institution: Tuple[UnitCost, ...] = ()
    meta: ReportMeta = field(default_factory=ReportMeta)


@dataclass(frozen=True)
class CostComparison:
    """Today's cost against yesterday's."""
    absolute_change: Decimal
    percentage_change: float


@dataclass(frozen=True)
class TodayCost:
    """Cost of the current UTC day so far.

    `compared_to_yesterday` is None when yesterday cost nothing.
    """
    day: Optional[date] = None
    total_messages: int = 0
    total_tokens: int = 0
    total_cost: Decimal = ZERO
    cost_by_provider: Dict[str, Decimal] = field(default_factory=dict)
    projected_daily_cost: Decimal = ZERO
    compared_to_yesterday: Optional[CostComparison] = None
    meta: ReportMeta = field(default_factory=ReportMeta)


# ---------------------------------------------------------------------------
# Usage
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PeakHour:
    hour: int
    messages: int


@dataclass(frozen=True)
class UsageSnapshot:
    day: Optional[date] = None
    total_messages: int = 0
    unique_students: int = 0
    unique_conversations: int = 0
    active_modules: int = 0
    total_tokens: int = 0
    average_response_time: float = 0.0
    total_cost: Decimal = ZERO
    messages_by_provider: Dict[str, int] = field(default_factory=dict)
    messages_by_model: Dict[str, int] = field(default_factory=dict)
    peak_hour: Optional[PeakHour] = None
    meta: ReportMeta = field(default_factory=ReportMeta)


@dataclass(frozen=True)
class TrendPoint:
    bucket_start: datetime
    messages: int
    unique_students: int
    unique_conversations: int
    tokens: int
    cost: Decimal
    average_response_time: float


@dataclass(frozen=True)
class TrendSummary:
    total_messages: int = 0
    total_cost: Decimal = ZERO
    average_messages_per_bucket: float = 0.0
    average_cost_per_bucket: Decimal = ZERO
    growth_rate: float = 0.0
    direction: TrendDirection = TrendDirection.STABLE


@dataclass(frozen=True)
class TrendSeries:
    granularity: Granularity = Granularity.DAY
    points: Tuple[TrendPoint, ...] = ()
    summary: TrendSummary = field(default_factory=TrendSummary)
    meta: ReportMeta = field(default_factory=ReportMeta)


@dataclass(frozen=True)
class HourlyUsage:
    hour: int
    messages: int
    unique_students: int
    unique_conversations: int
    average_response_time: float


@dataclass(frozen=True)
class HourlyInsights:
    peak_hour: int = 0
    peak_hour_messages: int = 0
    quietest_hour: int = 0
    quietest_hour_messages: int = 0
    business_hours_total: int = 0
    after_hours_total: int = 0


@dataclass(frozen=True)
class HourlyProfile:
    day: Optional[date] = None
    hours: Tuple[HourlyUsage, ...] = ()
    insights: HourlyInsights = field(default_factory=HourlyInsights)
    meta: ReportMeta = field(default_factory=ReportMeta)


# ---------------------------------------------------------------------------
# Engagement and performance
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EngagementSummary:
    total_conversations: int = 0
    average_messages: float = 0.0
    median_messages: float = 0.0
    single_message: int = 0
    short: int = 0
    medium: int = 0
    long: int = 0
    completion_rate: float = 0.0
    average_duration_seconds: float = 0.0
    distribution: Dict[str, int] = field(default_factory=dict)
    quality: EngagementQuality = EngagementQuality.LOW
    dropoff_rate: float = 0.0
    recommendations: Tuple[str, ...] = ()
    meta: ReportMeta = field(default_factory=ReportMeta)


@dataclass(frozen=True)
class PerformanceProfile:
    average_response_time: float = 0.0
    p50_response_time: float = 0.0
    p95_response_time: float = 0.0
    p99_response_time: float = 0.0
    average_tokens_per_message: float = 0.0
    token_efficiency: float = 0.0
    fast_responses: int = 0
    slow_responses: int = 0
    distribution: Dict[str, int] = field(default_factory=dict)
    grade: str = "A"
    status: PerformanceStatus = PerformanceStatus.HEALTHY
    issues: Tuple[str, ...] = ()
    recommendations: Tuple[str, ...] = ()
    meta: ReportMeta = field(default_factory=ReportMeta)


# ---------------------------------------------------------------------------
# Modules, students, questions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ModuleComparisonEntry:
    module_id: int
    module_name: str
    total_messages: int
    unique_students: int
    messages_per_student: float
    average_response_time: float
    total_tokens: int
    cost: Decimal
    engagement_score: float

    @property
    def cost_per_message(self) -> Decimal:
        if not self.total_messages:
            return ZERO
        return self.cost / self.total_messages


@dataclass(frozen=True)
class TopPerformer:
    module_id: int
    module_name: str
    reason: str
    value: float = 0.0


@dataclass(frozen=True)
class ModuleComparison:
    modules: Tuple[ModuleComparisonEntry, ...] = ()
    most_active: Optional[TopPerformer] = None
    most_engaged: Optional[TopPerformer] = None
    most_efficient: Optional[TopPerformer] = None
    recommendations: Tuple[str, ...] = ()
    meta: ReportMeta = field(default_factory=ReportMeta)


@dataclass(frozen=True)
class FaqSummary:
    total_clusters: int = 0
    total_questions: int = 0
    questions_per_student: float = 0.0
    top_categories: Tuple[str, ...] = ()


@dataclass(frozen=True)
class FAQList:
    clusters: Tuple[FaqCluster, ...] = ()
    summary: FaqSummary = field(default_factory=FaqSummary)
    meta: ReportMeta = field(default_factory=ReportMeta)


@dataclass(frozen=True)
class RankedStudent:
    student_id: int
    messages: int
    conversations: int
    modules: int
    first_message_at: datetime
    last_message_at: datetime
    messages_per_conversation: float


@dataclass(frozen=True)
class TopStudents:
    students: Tuple[RankedStudent, ...] = ()
    total_students: int = 0
    average_messages: float = 0.0
    median_messages: float = 0.0
    meta: ReportMeta = field(default_factory=ReportMeta)


@dataclass(frozen=True)
class ModuleUsage:
    module_id: int
    name: str
    messages: int


@dataclass(frozen=True)
class StudentActivityReport:
    student_id: int
    messages: int = 0
    conversations: int = 0
    modules: Tuple[ModuleUsage, ...] = ()
    first_message_at: Optional[datetime] = None
    last_message_at: Optional[datetime] = None
    total_cost: Decimal = ZERO
    meta: ReportMeta = field(default_factory=ReportMeta)


@dataclass(frozen=True)
class ProviderUsageReport:
    """Traffic served by one AI provider, within the caller's scope."""
    provider: str
    messages: int = 0
    unique_students: int = 0
    total_tokens: int = 0
    total_cost: Decimal = ZERO
    average_response_time: float = 0.0
    by_model: Tuple[ModelCost, ...] = ()
    modules: Tuple[ModuleUsage, ...] = ()
    meta: ReportMeta = field(default_factory=ReportMeta)


@dataclass(frozen=True)
class DashboardSummary:
    period: str = "month"
    total_messages: int = 0
    total_cost: Decimal = ZERO
    unique_students: int = 0
    active_modules: int = 0
    active_courses: int = 0
    active_institutions: int = 0
    messages_growth: float = 0.0
    student_growth: float = 0.0
    cost_growth: float = 0.0
    most_active_module: Optional[TopPerformer] = None
    cost_by_provider: Dict[str, Decimal] = field(default_factory=dict)
    average_response_time: float = 0.0
    meta: ReportMeta = field(default_factory=ReportMeta)
