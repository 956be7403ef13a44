"""
Analytics orchestration.

Composes scope resolution, scoped event-store queries, aggregation,
costing and catalog enrichment into one fixed pipeline per report type:

    ScopeResolved -> EventsFetched -> Aggregated -> Enriched -> Returned

A request whose event fetch partially failed or hit its deadline ends in
PartiallyDegraded instead of Returned and still yields a report.

Dependencies are injected explicitly through the constructor; the CLI is
the only place that wires concrete implementations together.
"""

import logging
import time
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time as dt_time, timedelta, timezone
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from tutor_analytics.config.loader import EngineConfig
from tutor_analytics.storage.catalog import CatalogService
from tutor_analytics.storage.event_store import PartitionKey, PartitionKind, TimeRange
from tutor_analytics.storage.models import InteractionEvent, OrganizationalHierarchy

from . import aggregation as agg
from . import insights
from .errors import InvalidFilterCombination
from .enrichment import EnrichmentJoiner
from .event_client import EventQuery, EventStoreClient, PartitionFailure, QueryResult
from .faq import FaqClusterer, is_quiz_answer
from .pricing import CostTally, PricingTable, UnpricedUsage, event_cost, log_unpriced, quantize_money, rates_for
from .reports import (
    CostBreakdown,
    CostComparison,
    DashboardSummary,
    EngagementSummary,
    FAQList,
    FaqSummary,
    HourlyInsights,
    HourlyProfile,
    HourlyUsage,
    ModelCost,
    ModuleComparison,
    ModuleComparisonEntry,
    PeakHour,
    PerformanceProfile,
    ProviderCost,
    ProviderUsageReport,
    RankedStudent,
    ReportMeta,
    RequestState,
    StudentActivityReport,
    TodayCost,
    TopPerformer,
    TopStudents,
    TrendPoint,
    TrendSeries,
    TrendSummary,
    UsageSnapshot,
)
from .scope import AccessibleModuleSet, AnalyticsFilters, CallerContext, ScopeResolver

logger = logging.getLogger(__name__)

MAX_TOP_STUDENTS = 100
MAX_COMPARISON_MODULES = 20
MIN_PROJECTION_HOURS = 3

PERIODS = ("today", "week", "month", "quarter", "year")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _RequestTrace:
    """Tracks one request through the pipeline states."""

    def __init__(self, report: str, caller: CallerContext):
        self.report = report
        self.caller = caller
        self.states: List[RequestState] = []

    def advance(self, state: RequestState) -> None:
        self.states.append(state)
        logger.debug("%s for %s -> %s", self.report, self.caller.identity, state.value)

    def finish(self, degraded: bool) -> RequestState:
        final = RequestState.PARTIALLY_DEGRADED if degraded else RequestState.RETURNED
        self.advance(final)
        return final


@dataclass
class _RequestContext:
    """State shared by the stages of one request."""
    trace: _RequestTrace
    hierarchy: OrganizationalHierarchy
    scope: AccessibleModuleSet
    window: TimeRange
    pricing: PricingTable = field(default_factory=lambda: PricingTable({}))
    result: QueryResult = field(default_factory=lambda: QueryResult(records=()))
    joiner: EnrichmentJoiner = field(init=False)

    def __post_init__(self):
        self.joiner = EnrichmentJoiner(self.hierarchy)

    @property
    def events(self) -> Tuple[InteractionEvent, ...]:
        return self.result.records


class AnalyticsOrchestrator:
    """Facade exposing one method per analytics report.

    Every method takes the caller and optional filters, resolves scope
    before touching the event store and returns an immutable report.
    """

    def __init__(
        self,
        catalog: CatalogService,
        event_client: EventStoreClient,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """Initialize the orchestrator.

        Args:
            catalog: Catalog service (hierarchy, assignments, pricing)
            event_client: Fan-out client over the event store
            config: Engine configuration (defaults when omitted)
            clock: Source of the current UTC time
        """
        self.catalog = catalog
        self.event_client = event_client
        self.config = config or EngineConfig.default()
        self.clock = clock
        self.scope_resolver = ScopeResolver(catalog)
        self.faq_clusterer = FaqClusterer(self.config.faq.similarity_threshold)

    # ------------------------------------------------------------------
    # Cost
    # ------------------------------------------------------------------

    def cost_breakdown(self, caller: CallerContext, filters: Optional[AnalyticsFilters] = None) -> CostBreakdown:
        """Cost by provider, model, module, course and institution."""
        filters = _validated(filters)
        ctx = self._fetch("cost_breakdown", caller, filters, self._window(filters))
        events = ctx.events

        tally = CostTally(ctx.pricing).add_all(events)
        by_provider = _provider_costs(events, ctx.pricing)
        by_model = _model_costs(events, ctx.pricing)
        ctx.trace.advance(RequestState.AGGREGATED)

        joiner = ctx.joiner
        by_module, by_course, by_institution = joiner.cost_rollups(events, ctx.pricing)
        ctx.trace.advance(RequestState.ENRICHED)

        unpriced = tally.unpriced()
        report = CostBreakdown(
            total_messages=len(events),
            total_tokens=sum(e.total_tokens for e in events),
            total_cost=quantize_money(tally.total),
            by_provider=by_provider,
            by_model=by_model,
            by_module=by_module,
            by_course=by_course,
            by_institution=by_institution,
            meta=self._meta(ctx, unpriced=unpriced, missing=joiner.missing_ids()),
        )
        return self._returned(ctx, report)

    def today_cost(self, caller: CallerContext, filters: Optional[AnalyticsFilters] = None) -> TodayCost:
        """Cost of the current UTC day with a full-day projection.

        The projection extrapolates from the hours elapsed once at least
        MIN_PROJECTION_HOURS have passed; before that it is the cost so far.
        Today and yesterday are read with one query over both days.

        Raises:
            InvalidFilterCombination: If filters carry an explicit start/end
        """
        filters = _validated(filters)
        _reject_explicit_window(filters, "today cost")
        now = self.clock()
        today = _day_window(now.date())
        combined = TimeRange(start=today.start - timedelta(days=1), end=today.end)
        ctx = self._fetch("today_cost", caller, filters, combined)

        today_events = [e for e in ctx.events if today.contains(e.timestamp)]
        yesterday_events = [e for e in ctx.events if e.timestamp < today.start]
        tally = CostTally(ctx.pricing).add_all(today_events)
        yesterday_cost = CostTally(ctx.pricing).add_all(yesterday_events).total
        by_provider = {p.provider: p.cost for p in _provider_costs(today_events, ctx.pricing)}
        ctx.trace.advance(RequestState.AGGREGATED)
        ctx.trace.advance(RequestState.ENRICHED)

        report = TodayCost(
            day=now.date(),
            total_messages=len(today_events),
            total_tokens=sum(e.total_tokens for e in today_events),
            total_cost=quantize_money(tally.total),
            cost_by_provider=by_provider,
            projected_daily_cost=quantize_money(_projected_daily_cost(tally.total, now)),
            compared_to_yesterday=_cost_comparison(tally.total, yesterday_cost),
            meta=self._meta(ctx, unpriced=tally.unpriced(), window=today),
        )
        return self._returned(ctx, report)

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    def usage_snapshot(
        self,
        caller: CallerContext,
        filters: Optional[AnalyticsFilters] = None,
        day: Optional[date] = None,
    ) -> UsageSnapshot:
        """Usage statistics for one UTC day (today by default)."""
        filters = _validated(filters)
        _reject_explicit_window(filters, "usage snapshot")
        day = day or self.clock().date()
        ctx = self._fetch("usage_snapshot", caller, filters, _day_window(day))
        events = ctx.events

        tally = CostTally(ctx.pricing).add_all(events)
        hours = agg.hour_of_day_groups(events)
        peak = _peak_hour(hours)
        ctx.trace.advance(RequestState.AGGREGATED)
        ctx.trace.advance(RequestState.ENRICHED)

        report = UsageSnapshot(
            day=day,
            total_messages=len(events),
            unique_students=agg.distinct_count(events, "student_id"),
            unique_conversations=agg.distinct_count(events, "conversation_id"),
            active_modules=agg.distinct_count(events, "module_id"),
            total_tokens=sum(e.total_tokens for e in events),
            average_response_time=agg.average_response_time(events),
            total_cost=quantize_money(tally.total),
            messages_by_provider=agg.count_by(events, "provider"),
            messages_by_model=agg.count_by(events, "model_name"),
            peak_hour=PeakHour(hour=peak[0], messages=peak[1]) if peak else None,
            meta=self._meta(ctx, unpriced=tally.unpriced()),
        )
        return self._returned(ctx, report)

    def usage_trends(
        self,
        caller: CallerContext,
        filters: Optional[AnalyticsFilters] = None,
        granularity: agg.Granularity = agg.Granularity.DAY,
    ) -> TrendSeries:
        """Daily or hourly usage series with growth summary."""
        filters = _validated(filters)
        if not isinstance(granularity, agg.Granularity):
            raise InvalidFilterCombination(f"Unknown granularity: {granularity}", field="granularity")
        ctx = self._fetch("usage_trends", caller, filters, self._window(filters))

        tally = CostTally(ctx.pricing)
        points = []
        for bucket in agg.bucket_events(ctx.events, granularity):
            bucket_cost = sum((tally.add(e).amount for e in bucket.events), Decimal("0"))
            points.append(TrendPoint(
                bucket_start=bucket.start,
                messages=bucket.count,
                unique_students=agg.distinct_count(bucket.events, "student_id"),
                unique_conversations=agg.distinct_count(bucket.events, "conversation_id"),
                tokens=sum(e.total_tokens for e in bucket.events),
                cost=quantize_money(bucket_cost),
                average_response_time=agg.average_response_time(bucket.events),
            ))

        growth = insights.series_growth_rate([p.messages for p in points])
        summary = TrendSummary(
            total_messages=sum(p.messages for p in points),
            total_cost=quantize_money(tally.total),
            average_messages_per_bucket=agg.mean([p.messages for p in points]),
            average_cost_per_bucket=quantize_money(tally.total / len(points)) if points else Decimal("0"),
            growth_rate=growth,
            direction=insights.trend_direction(growth),
        )
        ctx.trace.advance(RequestState.AGGREGATED)
        ctx.trace.advance(RequestState.ENRICHED)

        report = TrendSeries(
            granularity=granularity,
            points=tuple(points),
            summary=summary,
            meta=self._meta(ctx, unpriced=tally.unpriced()),
        )
        return self._returned(ctx, report)

    def hourly_profile(
        self,
        caller: CallerContext,
        filters: Optional[AnalyticsFilters] = None,
        day: Optional[date] = None,
    ) -> HourlyProfile:
        """Hour-of-day usage for one UTC day with peak and quiet hours."""
        filters = _validated(filters)
        _reject_explicit_window(filters, "hourly profile")
        day = day or self.clock().date()
        ctx = self._fetch("hourly_profile", caller, filters, _day_window(day))

        groups = agg.hour_of_day_groups(ctx.events)
        hours = tuple(
            HourlyUsage(
                hour=hour,
                messages=len(members),
                unique_students=agg.distinct_count(members, "student_id"),
                unique_conversations=agg.distinct_count(members, "conversation_id"),
                average_response_time=agg.average_response_time(members),
            )
            for hour, members in sorted(groups.items())
        )

        peak = _peak_hour(groups)
        quiet = _quietest_hour(groups)
        business = sum(h.messages for h in hours if h.hour in insights.BUSINESS_HOURS)
        hourly_insights = HourlyInsights(
            peak_hour=peak[0] if peak else 0,
            peak_hour_messages=peak[1] if peak else 0,
            quietest_hour=quiet[0] if quiet else 0,
            quietest_hour_messages=quiet[1] if quiet else 0,
            business_hours_total=business,
            after_hours_total=sum(h.messages for h in hours) - business,
        )
        ctx.trace.advance(RequestState.AGGREGATED)
        ctx.trace.advance(RequestState.ENRICHED)

        report = HourlyProfile(day=day, hours=hours, insights=hourly_insights, meta=self._meta(ctx))
        return self._returned(ctx, report)

    # ------------------------------------------------------------------
    # Engagement and performance
    # ------------------------------------------------------------------

    def engagement_summary(self, caller: CallerContext, filters: Optional[AnalyticsFilters] = None) -> EngagementSummary:
        """Conversation length classes, completion rate and recommendations."""
        filters = _validated(filters)
        ctx = self._fetch("engagement_summary", caller, filters, self._window(filters))

        breakdown = agg.summarize_conversations(agg.group_conversations(ctx.events))
        counts = breakdown.by_length
        Length = agg.ConversationLength
        ctx.trace.advance(RequestState.AGGREGATED)
        ctx.trace.advance(RequestState.ENRICHED)

        report = EngagementSummary(
            total_conversations=breakdown.total,
            average_messages=breakdown.average_messages,
            median_messages=breakdown.median_messages,
            single_message=counts[Length.SINGLE],
            short=counts[Length.SHORT],
            medium=counts[Length.MEDIUM],
            long=counts[Length.LONG],
            completion_rate=breakdown.completion_rate,
            average_duration_seconds=breakdown.average_duration_seconds,
            distribution={
                "1 message": counts[Length.SINGLE],
                "2-5 messages": counts[Length.SHORT],
                "6-15 messages": counts[Length.MEDIUM],
                "16+ messages": counts[Length.LONG],
            },
            quality=insights.engagement_quality(breakdown.completion_rate),
            dropoff_rate=1.0 - breakdown.completion_rate if breakdown.total else 0.0,
            recommendations=tuple(insights.conversation_recommendations(
                counts[Length.SINGLE], breakdown.total, breakdown.completion_rate
            )) if breakdown.total else (),
            meta=self._meta(ctx),
        )
        return self._returned(ctx, report)

    def performance_profile(self, caller: CallerContext, filters: Optional[AnalyticsFilters] = None) -> PerformanceProfile:
        """Response-time percentiles, grade and token efficiency."""
        filters = _validated(filters)
        ctx = self._fetch("performance_profile", caller, filters, self._window(filters))
        events = ctx.events

        times = agg.response_times(events)
        percentiles = agg.response_time_percentiles(times)
        average = agg.mean(times)
        average_tokens = agg.mean([e.total_tokens for e in events])
        slow = sum(1 for t in times if t > insights.SLOW_RESPONSE_MS)
        grade = insights.performance_grade(average)
        ctx.trace.advance(RequestState.AGGREGATED)
        ctx.trace.advance(RequestState.ENRICHED)

        report = PerformanceProfile(
            average_response_time=average,
            p50_response_time=percentiles.p50,
            p95_response_time=percentiles.p95,
            p99_response_time=percentiles.p99,
            average_tokens_per_message=average_tokens,
            token_efficiency=average_tokens / average if average > 0 else 0.0,
            fast_responses=sum(1 for t in times if t < insights.FAST_RESPONSE_MS),
            slow_responses=slow,
            distribution=insights.response_time_distribution(times),
            grade=grade,
            status=insights.performance_status(grade),
            issues=tuple(insights.performance_issues(slow, len(times))),
            recommendations=tuple(insights.performance_recommendations(average, slow)),
            meta=self._meta(ctx),
        )
        return self._returned(ctx, report)

    # ------------------------------------------------------------------
    # Modules and students
    # ------------------------------------------------------------------

    def module_comparison(
        self,
        caller: CallerContext,
        module_ids: Sequence[int],
        filters: Optional[AnalyticsFilters] = None,
    ) -> ModuleComparison:
        """Side-by-side module statistics with engagement scores.

        Requested modules outside the caller's scope are left out.

        Raises:
            InvalidFilterCombination: If module_ids is empty or too long
        """
        filters = _validated(filters)
        if not module_ids:
            raise InvalidFilterCombination("module_ids cannot be empty", field="module_ids")
        if len(set(module_ids)) > MAX_COMPARISON_MODULES:
            raise InvalidFilterCombination(
                f"At most {MAX_COMPARISON_MODULES} modules can be compared", field="module_ids"
            )

        ctx = self._fetch("module_comparison", caller, filters, self._window(filters), narrow_to=module_ids)

        activity = agg.module_activity(ctx.events)
        compared = sorted(ctx.scope.module_ids)
        for module_id in compared:
            activity.setdefault(module_id, agg.ModuleActivity(module_id, 0, 0, 0.0, 0))
        engagement = self.config.engagement
        scores = agg.engagement_scores(
            (activity[m] for m in compared),
            message_rate_weight=engagement.message_rate_weight,
            response_time_weight=engagement.response_time_weight,
        )
        costs: Dict[int, Decimal] = {m: Decimal("0") for m in compared}
        tally = CostTally(ctx.pricing)
        for event in ctx.events:
            costs[event.module_id] += tally.add(event).amount
        ctx.trace.advance(RequestState.AGGREGATED)

        lookup = ctx.joiner.lookup
        entries = tuple(
            ModuleComparisonEntry(
                module_id=m,
                module_name=lookup.module_name(m),
                total_messages=activity[m].messages,
                unique_students=activity[m].unique_students,
                messages_per_student=activity[m].messages_per_student,
                average_response_time=activity[m].average_response_time,
                total_tokens=activity[m].total_tokens,
                cost=quantize_money(costs[m]),
                engagement_score=scores[m],
            )
            for m in compared
        )
        ctx.trace.advance(RequestState.ENRICHED)

        report = ModuleComparison(
            modules=entries,
            most_active=_top_performer(entries, lambda e: e.total_messages, "Highest message count"),
            most_engaged=_top_performer(entries, lambda e: e.engagement_score, "Highest engagement score"),
            most_efficient=_top_performer(
                [e for e in entries if e.total_messages > 0],
                lambda e: -e.cost_per_message,
                "Lowest cost per message",
                value=lambda e: e.cost_per_message,
            ),
            recommendations=tuple(insights.module_comparison_recommendations(entries)),
            meta=self._meta(ctx, unpriced=tally.unpriced(), missing=ctx.joiner.missing_ids()),
        )
        return self._returned(ctx, report)

    def top_students(
        self,
        caller: CallerContext,
        filters: Optional[AnalyticsFilters] = None,
        limit: int = 10,
    ) -> TopStudents:
        """Most active students by message count.

        Raises:
            InvalidFilterCombination: If limit is outside 1..MAX_TOP_STUDENTS
        """
        filters = _validated(filters)
        if not 1 <= limit <= MAX_TOP_STUDENTS:
            raise InvalidFilterCombination(f"limit must be between 1 and {MAX_TOP_STUDENTS}", field="limit")
        ctx = self._fetch("top_students", caller, filters, self._window(filters))

        everyone = agg.student_activity(ctx.events)
        ranked = agg.top_n(everyone, lambda s: s.messages, lambda s: s.student_id, limit)
        ctx.trace.advance(RequestState.AGGREGATED)
        ctx.trace.advance(RequestState.ENRICHED)

        report = TopStudents(
            students=tuple(
                RankedStudent(
                    student_id=s.student_id,
                    messages=s.messages,
                    conversations=s.conversations,
                    modules=s.modules,
                    first_message_at=s.first_message_at,
                    last_message_at=s.last_message_at,
                    messages_per_conversation=s.messages_per_conversation,
                )
                for s in ranked
            ),
            total_students=len(everyone),
            average_messages=agg.mean([s.messages for s in ranked]),
            median_messages=agg.median([s.messages for s in ranked]),
            meta=self._meta(ctx),
        )
        return self._returned(ctx, report)

    def student_activity(
        self,
        caller: CallerContext,
        student_id: int,
        filters: Optional[AnalyticsFilters] = None,
    ) -> StudentActivityReport:
        """One student's activity, restricted to the caller's scope."""
        filters = _validated(filters)
        ctx = self._fetch(
            "student_activity", caller, filters, self._window(filters),
            partition_keys=[PartitionKey.student(student_id)],
        )
        events = ctx.events

        tally = CostTally(ctx.pricing).add_all(events)
        per_module = Counter(e.module_id for e in events)
        ctx.trace.advance(RequestState.AGGREGATED)

        joiner = ctx.joiner
        modules = joiner.module_usage(dict(per_module))
        ctx.trace.advance(RequestState.ENRICHED)

        report = StudentActivityReport(
            student_id=student_id,
            messages=len(events),
            conversations=agg.distinct_count(events, "conversation_id"),
            modules=modules,
            first_message_at=events[0].timestamp if events else None,
            last_message_at=events[-1].timestamp if events else None,
            total_cost=quantize_money(tally.total),
            meta=self._meta(ctx, unpriced=tally.unpriced(), missing=joiner.missing_ids()),
        )
        return self._returned(ctx, report)

    def provider_usage(
        self,
        caller: CallerContext,
        provider: str,
        filters: Optional[AnalyticsFilters] = None,
    ) -> ProviderUsageReport:
        """Traffic served by one AI provider, restricted to the caller's scope.

        Raises:
            InvalidFilterCombination: If provider is blank
        """
        filters = _validated(filters)
        provider = (provider or "").strip().lower()
        if not provider:
            raise InvalidFilterCombination("provider is required", field="provider")
        ctx = self._fetch(
            "provider_usage", caller, filters, self._window(filters),
            partition_keys=[PartitionKey.provider(provider)],
        )
        events = ctx.events

        tally = CostTally(ctx.pricing).add_all(events)
        by_model = _model_costs(events, ctx.pricing)
        per_module = Counter(e.module_id for e in events)
        ctx.trace.advance(RequestState.AGGREGATED)

        joiner = ctx.joiner
        modules = joiner.module_usage(dict(per_module))
        ctx.trace.advance(RequestState.ENRICHED)

        report = ProviderUsageReport(
            provider=provider,
            messages=len(events),
            unique_students=agg.distinct_count(events, "student_id"),
            total_tokens=sum(e.total_tokens for e in events),
            total_cost=quantize_money(tally.total),
            average_response_time=agg.average_response_time(events),
            by_model=by_model,
            modules=modules,
            meta=self._meta(ctx, unpriced=tally.unpriced(), missing=joiner.missing_ids()),
        )
        return self._returned(ctx, report)

    # ------------------------------------------------------------------
    # Questions
    # ------------------------------------------------------------------

    def frequently_asked_questions(
        self,
        caller: CallerContext,
        filters: Optional[AnalyticsFilters] = None,
        min_occurrences: Optional[int] = None,
        max_results: Optional[int] = None,
    ) -> FAQList:
        """Clusters of similar student questions.

        Raises:
            InvalidFilterCombination: If min_occurrences or max_results is < 1
        """
        filters = _validated(filters)
        min_occurrences = self.config.faq.min_occurrences if min_occurrences is None else min_occurrences
        max_results = self.config.faq.max_results if max_results is None else max_results
        if min_occurrences < 1:
            raise InvalidFilterCombination("min_occurrences must be >= 1", field="min_occurrences")
        if max_results < 1:
            raise InvalidFilterCombination("max_results must be >= 1", field="max_results")

        ctx = self._fetch("frequently_asked_questions", caller, filters, self._window(filters))
        asked = [e for e in ctx.events if e.question and not is_quiz_answer(e.question)]

        clusters = self.faq_clusterer.cluster(
            [e.question for e in asked],
            min_occurrences=min_occurrences,
            max_results=max_results,
            asked_at=[e.timestamp for e in asked],
        )
        categories = Counter(c.category for c in clusters)
        top_categories = sorted(categories, key=lambda c: (-categories[c], c))[:5]
        students = agg.distinct_count(asked, "student_id")
        ctx.trace.advance(RequestState.AGGREGATED)
        ctx.trace.advance(RequestState.ENRICHED)

        report = FAQList(
            clusters=tuple(clusters),
            summary=FaqSummary(
                total_clusters=len(clusters),
                total_questions=len(asked),
                questions_per_student=len(asked) / students if students else 0.0,
                top_categories=tuple(top_categories),
            ),
            meta=self._meta(ctx),
        )
        return self._returned(ctx, report)

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------

    def dashboard_summary(
        self,
        caller: CallerContext,
        period: str = "month",
        filters: Optional[AnalyticsFilters] = None,
    ) -> DashboardSummary:
        """Overview for a named period with growth against the previous one.

        Both periods are read with one query over their combined window.

        Raises:
            InvalidFilterCombination: If period is unknown or filters carry
                an explicit start/end
        """
        filters = _validated(filters)
        _reject_explicit_window(filters, "dashboard summary")
        current = self._period_window(period)
        previous_start = current.start - current.duration
        combined = TimeRange(start=previous_start, end=current.end)
        ctx = self._fetch("dashboard_summary", caller, filters, combined)

        now_events = [e for e in ctx.events if current.contains(e.timestamp)]
        before_events = [e for e in ctx.events if e.timestamp < current.start]

        tally = CostTally(ctx.pricing).add_all(now_events)
        previous_cost = CostTally(ctx.pricing).add_all(before_events).total
        students_now = agg.distinct_count(now_events, "student_id")
        students_before = agg.distinct_count(before_events, "student_id")
        activity = agg.module_activity(now_events)
        top = agg.top_n(activity.values(), lambda a: a.messages, lambda a: a.module_id, 1)
        by_provider = {p.provider: p.cost for p in _provider_costs(now_events, ctx.pricing)}
        ctx.trace.advance(RequestState.AGGREGATED)

        joiner = ctx.joiner
        most_active = None
        if top:
            most_active = TopPerformer(
                module_id=top[0].module_id,
                module_name=joiner.lookup.module_name(top[0].module_id),
                reason="Highest message count",
                value=float(top[0].messages),
            )
        active_modules = list(activity)
        active_courses = joiner.active_courses(active_modules)
        active_institutions = joiner.active_institutions(active_modules)
        ctx.trace.advance(RequestState.ENRICHED)

        report = DashboardSummary(
            period=period,
            total_messages=len(now_events),
            total_cost=quantize_money(tally.total),
            unique_students=students_now,
            active_modules=len(active_modules),
            active_courses=active_courses,
            active_institutions=active_institutions,
            messages_growth=agg.growth_percentage(len(before_events), len(now_events)),
            student_growth=agg.growth_percentage(students_before, students_now),
            cost_growth=agg.growth_percentage(float(previous_cost), float(tally.total)),
            most_active_module=most_active,
            cost_by_provider=by_provider,
            average_response_time=agg.average_response_time(now_events),
            meta=self._meta(ctx, unpriced=tally.unpriced(), missing=joiner.missing_ids(), window=current),
        )
        return self._returned(ctx, report)

    # ------------------------------------------------------------------
    # Pipeline stages
    # ------------------------------------------------------------------

    def _fetch(
        self,
        report: str,
        caller: CallerContext,
        filters: AnalyticsFilters,
        window: TimeRange,
        partition_keys: Optional[List[PartitionKey]] = None,
        narrow_to: Optional[Iterable[int]] = None,
    ) -> _RequestContext:
        started = time.monotonic()
        trace = _RequestTrace(report, caller)

        # One bulk catalog read per request, shared by scope and enrichment
        hierarchy = self.catalog.get_organizational_hierarchy()
        scope = self.scope_resolver.resolve(caller, filters, hierarchy)
        if narrow_to is not None:
            scope = scope.intersect(narrow_to)
        trace.advance(RequestState.SCOPE_RESOLVED)

        ctx = _RequestContext(trace=trace, hierarchy=hierarchy, scope=scope, window=window)
        if scope.is_empty:
            logger.info("%s for %s: scope is empty", report, caller.identity)
            trace.advance(RequestState.EVENTS_FETCHED)
            return ctx

        listing_failure = None
        if partition_keys is None:
            partition_keys, listing_failure = self._module_partitions(hierarchy, scope, window)

        ctx.pricing = PricingTable.from_entries(self.catalog.get_active_pricing())
        query = EventQuery(
            partition_keys=tuple(partition_keys),
            window=window,
            limit=self.config.event_store.partition_limit,
            scope=scope,
        )
        deadline = filters.deadline_seconds or self.config.request.timeout_seconds
        remaining = max(deadline - (time.monotonic() - started), 0.001)
        ctx.result = self.event_client.query(query, timeout=remaining)
        if listing_failure is not None:
            ctx.result = replace(ctx.result, failures=ctx.result.failures + (listing_failure,))
        trace.advance(RequestState.EVENTS_FETCHED)
        return ctx

    def _module_partitions(
        self,
        hierarchy: OrganizationalHierarchy,
        scope: AccessibleModuleSet,
        window: TimeRange,
    ) -> Tuple[List[PartitionKey], Optional[PartitionFailure]]:
        """Module partitions to scan for a scope.

        An unrestricted scope also covers modules that hold events but are
        no longer in the catalog, so the store's own partition listing is
        merged with the catalog's modules.
        """
        if not scope.unrestricted:
            return [PartitionKey.module(m) for m in sorted(scope.module_ids)], None

        module_ids = set(hierarchy.module_ids())
        failure = None
        try:
            listed = self.event_client.list_partitions(PartitionKind.MODULE, window)
            module_ids.update(key.value for key in listed)
        except Exception as e:
            logger.warning("Listing module partitions failed; scanning catalog modules only", exc_info=True)
            failure = PartitionFailure(partition="module:*", reason=f"{type(e).__name__}: {e}")
        return [PartitionKey.module(m) for m in sorted(module_ids)], failure

    def _meta(
        self,
        ctx: _RequestContext,
        unpriced: Optional[UnpricedUsage] = None,
        missing: Tuple[str, ...] = (),
        window: Optional[TimeRange] = None,
    ) -> ReportMeta:
        result = ctx.result
        window = window or ctx.window
        if unpriced is not None:
            log_unpriced(unpriced)
        return ReportMeta(
            state=ctx.trace.finish(result.degraded),
            window_start=window.start,
            window_end=window.end,
            record_count=len(result.records),
            scope_empty=ctx.scope.is_empty,
            truncated=result.truncated,
            deadline_exceeded=result.deadline_exceeded,
            partition_failures=result.failures,
            unpriced=unpriced or UnpricedUsage(),
            missing_catalog_ids=missing,
        )

    def _returned(self, ctx: _RequestContext, report):
        meta = report.meta
        logger.info(
            "%s for %s: %d records, state=%s",
            ctx.trace.report, ctx.trace.caller.identity, meta.record_count, meta.state.value,
        )
        return report

    def _window(self, filters: AnalyticsFilters) -> TimeRange:
        now = self.clock()
        if filters.start is not None and filters.end is None:
            return TimeRange(start=filters.start, end=max(now, filters.start))
        end = filters.end or now
        start = filters.start or end - timedelta(days=self.config.request.default_window_days)
        return TimeRange(start=start, end=end)

    def _period_window(self, period: str) -> TimeRange:
        now = self.clock()
        period = period.lower() if isinstance(period, str) else period
        if period == "today":
            return _day_window(now.date())
        days = {"week": 7, "month": 30, "quarter": 91, "year": 365}.get(period)
        if days is None:
            raise InvalidFilterCombination(f"period must be one of: {list(PERIODS)}", field="period")
        return TimeRange(start=now - timedelta(days=days), end=now)


def _validated(filters: Optional[AnalyticsFilters]) -> AnalyticsFilters:
    filters = filters or AnalyticsFilters()
    filters.validate()
    return filters


def _reject_explicit_window(filters: AnalyticsFilters, report: str) -> None:
    if filters.start is not None or filters.end is not None:
        raise InvalidFilterCombination(f"The {report} takes a day or period, not start/end", field="start")


def _day_window(day: date) -> TimeRange:
    start = datetime.combine(day, dt_time.min, tzinfo=timezone.utc)
    return TimeRange(start=start, end=start + timedelta(days=1))


def _peak_hour(groups: Dict[int, List[InteractionEvent]]) -> Optional[Tuple[int, int]]:
    if not groups:
        return None
    hour = min(groups, key=lambda h: (-len(groups[h]), h))
    return hour, len(groups[hour])


def _quietest_hour(groups: Dict[int, List[InteractionEvent]]) -> Optional[Tuple[int, int]]:
    if not groups:
        return None
    hour = min(groups, key=lambda h: (len(groups[h]), h))
    return hour, len(groups[hour])


def _provider_costs(events: Sequence[InteractionEvent], table: PricingTable) -> Tuple[ProviderCost, ...]:
    totals: Dict[str, List] = {}
    for event in events:
        entry = totals.setdefault(event.provider.lower(), [0, 0, Decimal("0")])
        entry[0] += 1
        entry[1] += event.total_tokens
        entry[2] += event_cost(event, table).amount

    costs = [
        ProviderCost(provider=provider, messages=m, tokens=t, cost=quantize_money(c))
        for provider, (m, t, c) in totals.items()
    ]
    costs.sort(key=lambda p: (-p.cost, p.provider))
    return tuple(costs)


def _model_costs(events: Sequence[InteractionEvent], table: PricingTable) -> Tuple[ModelCost, ...]:
    totals: Dict[Tuple[str, str], List] = {}
    for event in events:
        entry = totals.setdefault((event.provider, event.model_name), [0, 0, Decimal("0"), True])
        result = event_cost(event, table)
        entry[0] += 1
        entry[1] += event.total_tokens
        entry[2] += result.amount
        entry[3] = entry[3] and result.known

    costs = []
    for (provider, model), (messages, tokens, cost, priced) in totals.items():
        input_rate, output_rate = rates_for(table, provider, model)
        costs.append(ModelCost(
            provider=provider,
            model=model,
            messages=messages,
            tokens=tokens,
            cost=quantize_money(cost),
            priced=priced,
            input_cost_per_million=input_rate,
            output_cost_per_million=output_rate,
        ))
    costs.sort(key=lambda m: (-m.cost, m.provider, m.model))
    return tuple(costs)


def _top_performer(entries, metric, reason: str, value=None) -> Optional[TopPerformer]:
    ranked = agg.top_n(entries, metric, lambda e: e.module_id, 1)
    if not ranked:
        return None
    best = ranked[0]
    shown = (value or metric)(best)
    return TopPerformer(module_id=best.module_id, module_name=best.module_name,
                        reason=reason, value=float(shown))


def _projected_daily_cost(cost_so_far: Decimal, now: datetime) -> Decimal:
    if now.hour < MIN_PROJECTION_HOURS:
        return cost_so_far
    return cost_so_far / now.hour * 24


def _cost_comparison(today: Decimal, yesterday: Decimal) -> Optional[CostComparison]:
    if yesterday <= 0:
        return None
    change = today - yesterday
    return CostComparison(
        absolute_change=quantize_money(change),
        percentage_change=float(change / yesterday * 100),
    )
