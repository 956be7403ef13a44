"""
End-to-end tests for the analytics orchestrator on temporary SQLite databases.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from tutor_analytics.config.loader import EngineConfig, EventStoreConfig, FaqConfig
from tutor_analytics.core.aggregation import Granularity
from tutor_analytics.core.errors import InvalidFilterCombination, ScopeViolation
from tutor_analytics.core.event_client import EventStoreClient
from tutor_analytics.core.insights import EngagementQuality, TrendDirection
from tutor_analytics.core.orchestrator import AnalyticsOrchestrator
from tutor_analytics.core.reports import RequestState
from tutor_analytics.core.scope import AnalyticsFilters, CallerContext, Role
from tutor_analytics.storage.catalog import SqliteCatalog
from tutor_analytics.storage.event_store import PartitionKind, SqliteEventStore
from tutor_analytics.storage.repository import insert_interaction_events

from conftest import BASE_TIME, INSTRUCTOR, NOW, make_event

PLATFORM = CallerContext(role=Role.PLATFORM_ADMIN, identity="admin")
NORTH_ADMIN = CallerContext(role=Role.INSTITUTION_ADMIN, identity="north-admin", institution_id=1)
SOUTH_ADMIN = CallerContext(role=Role.INSTITUTION_ADMIN, identity="south-admin", institution_id=2)
TEACHER = CallerContext(role=Role.INSTRUCTOR, identity=INSTRUCTOR)


class FlakyEventStore(SqliteEventStore):
    """SQLite store whose scans of selected modules always fail."""

    def __init__(self, db_path, failing_modules):
        super().__init__(db_path)
        self.failing_modules = set(failing_modules)

    def range_scan(self, partition_key, start, end, limit, cursor=None):
        if partition_key.kind == PartitionKind.MODULE and partition_key.value in self.failing_modules:
            raise ConnectionError("transient network error")
        return super().range_scan(partition_key, start, end, limit, cursor)


class UnlistableEventStore(SqliteEventStore):
    """SQLite store that cannot enumerate its partitions."""

    def list_partitions(self, kind, start, end):
        raise ConnectionError("partition listing unavailable")


def _orchestrator(db_path, store=None, config=None, catalog=None):
    client = EventStoreClient(store or SqliteEventStore(db_path))
    return AnalyticsOrchestrator(catalog or SqliteCatalog(db_path), client, config, clock=lambda: NOW)


@pytest.fixture
def orchestrator(catalog_db):
    return _orchestrator(catalog_db)


class TestCostBreakdown:
    """Test cost reports."""

    def test_single_event_cost(self, catalog_db, orchestrator):
        """1,000 input / 500 output tokens at $2.50/$10.00 per million cost $0.0075."""
        insert_interaction_events([make_event("m1")], catalog_db)

        report = orchestrator.cost_breakdown(PLATFORM)

        assert report.total_cost == Decimal("0.0075")
        assert report.total_messages == 1
        assert report.total_tokens == 1500
        assert report.by_model[0].priced is True
        assert report.by_model[0].input_cost_per_million == Decimal("2.50")
        assert [(u.name, u.cost) for u in report.by_module] == [("Cells", Decimal("0.0075"))]
        assert report.by_course[0].name == "Biology"
        assert report.by_institution[0].name == "North University"
        assert report.meta.state == RequestState.RETURNED
        assert report.meta.degraded is False

    def test_unpriced_usage_is_reported(self, catalog_db, orchestrator):
        insert_interaction_events([
            make_event("m1"),
            make_event("m2", model_name="mystery-model"),
        ], catalog_db)

        report = orchestrator.cost_breakdown(PLATFORM)

        assert report.total_cost == Decimal("0.0075")
        assert report.meta.unpriced.events == 1
        assert report.meta.unpriced.models == ("openai/mystery-model",)
        assert [m.priced for m in report.by_model] == [True, False]

    def test_by_provider(self, catalog_db, orchestrator):
        insert_interaction_events([
            make_event("m1", provider="OpenAI"),
            make_event("m2", provider="openai"),
        ], catalog_db)

        report = orchestrator.cost_breakdown(PLATFORM)

        assert [(p.provider, p.messages, p.cost) for p in report.by_provider] == [
            ("openai", 2, Decimal("0.015"))
        ]

    def test_catalog_read_once_per_request(self, catalog_db):
        catalog = MagicMock(wraps=SqliteCatalog(catalog_db))
        insert_interaction_events([make_event("m1")], catalog_db)

        _orchestrator(catalog_db, catalog=catalog).cost_breakdown(PLATFORM)

        assert catalog.get_organizational_hierarchy.call_count == 1
        assert catalog.get_active_pricing.call_count == 1

    def test_platform_totals_include_uncatalogued_modules(self, catalog_db, orchestrator):
        """Events of a module deleted from the catalog still count, under a placeholder name."""
        insert_interaction_events([
            make_event("a", module_id=5),
            make_event("b", module_id=99),
            make_event("c", module_id=99),
        ], catalog_db)

        everything = orchestrator.cost_breakdown(PLATFORM)
        deleted_only = orchestrator.cost_breakdown(PLATFORM, AnalyticsFilters(module_id=99))

        assert everything.total_messages == 3
        assert everything.total_messages >= deleted_only.total_messages
        assert everything.meta.missing_catalog_ids == ("module:99",)
        assert ("Module 99", 2) in [(u.name, u.messages) for u in everything.by_module]
        assert everything.meta.degraded is False


class TestTodayCost:
    """Test the current-day cost report."""

    def test_projection_and_yesterday_comparison(self, catalog_db):
        """$0.015 by 18:00 projects to $0.02 and doubles yesterday's $0.0075."""
        evening = datetime(2024, 3, 4, 18, 0, tzinfo=timezone.utc)
        insert_interaction_events([
            make_event("today-1"),
            make_event("today-2", timestamp=BASE_TIME + timedelta(hours=1)),
            make_event("yesterday", timestamp=BASE_TIME - timedelta(days=1)),
            make_event("older", timestamp=BASE_TIME - timedelta(days=2)),
        ], catalog_db)
        orchestrator = AnalyticsOrchestrator(
            SqliteCatalog(catalog_db), EventStoreClient(SqliteEventStore(catalog_db)), clock=lambda: evening
        )

        report = orchestrator.today_cost(PLATFORM)

        assert report.day == date(2024, 3, 4)
        assert report.total_messages == 2
        assert report.total_cost == Decimal("0.015")
        assert report.cost_by_provider == {"openai": Decimal("0.015")}
        assert report.projected_daily_cost == Decimal("0.02")
        assert report.compared_to_yesterday.absolute_change == Decimal("0.0075")
        assert report.compared_to_yesterday.percentage_change == 100.0

    def test_no_projection_early_in_the_day(self, catalog_db):
        early = datetime(2024, 3, 4, 2, 0, tzinfo=timezone.utc)
        insert_interaction_events([make_event("m1", timestamp=early - timedelta(hours=1))], catalog_db)
        orchestrator = AnalyticsOrchestrator(
            SqliteCatalog(catalog_db), EventStoreClient(SqliteEventStore(catalog_db)), clock=lambda: early
        )

        report = orchestrator.today_cost(PLATFORM)

        assert report.projected_daily_cost == report.total_cost == Decimal("0.0075")
        assert report.compared_to_yesterday is None

    def test_rejects_explicit_window(self, orchestrator):
        with pytest.raises(InvalidFilterCombination):
            orchestrator.today_cost(PLATFORM, AnalyticsFilters(end=NOW))


class TestScopeEnforcement:
    """Test tenant isolation through the orchestrator."""

    def test_out_of_scope_module_returns_empty_report(self, catalog_db, orchestrator):
        """Instructor of course 1 filtering module 7 gets an empty report, not an error."""
        insert_interaction_events([make_event("m1", module_id=7), make_event("m2", module_id=5)], catalog_db)

        report = orchestrator.cost_breakdown(TEACHER, AnalyticsFilters(module_id=7))

        assert report.meta.scope_empty is True
        assert report.total_messages == 0
        assert report.by_module == ()

    def test_instructor_sees_only_assigned_modules(self, catalog_db, orchestrator):
        insert_interaction_events([
            make_event("m1", module_id=5),
            make_event("m2", module_id=6),
            make_event("m3", module_id=9),
        ], catalog_db)

        report = orchestrator.cost_breakdown(TEACHER)

        assert [u.unit_id for u in report.by_module] == [5]

    def test_institution_admin_sees_own_institution(self, catalog_db, orchestrator):
        insert_interaction_events([make_event("m1", module_id=5), make_event("m2", module_id=9)], catalog_db)

        report = orchestrator.cost_breakdown(SOUTH_ADMIN)

        assert [u.unit_id for u in report.by_module] == [9]

    def test_require_exact_raises(self, orchestrator):
        with pytest.raises(ScopeViolation):
            orchestrator.cost_breakdown(TEACHER, AnalyticsFilters(module_id=7, require_exact=True))

    def test_invalid_filters_fail_before_io(self):
        catalog = MagicMock()
        orchestrator = AnalyticsOrchestrator(catalog, MagicMock(), clock=lambda: NOW)
        filters = AnalyticsFilters(start=NOW, end=NOW - timedelta(days=1))

        with pytest.raises(InvalidFilterCombination):
            orchestrator.cost_breakdown(PLATFORM, filters)
        catalog.get_organizational_hierarchy.assert_not_called()

    def test_student_activity_is_scoped(self, catalog_db, orchestrator):
        """A student's events in other institutions stay hidden."""
        insert_interaction_events([
            make_event("m1", module_id=5, student_id=3, conversation_id="a"),
            make_event("m2", module_id=5, student_id=3, conversation_id="b"),
            make_event("m3", module_id=9, student_id=3, conversation_id="c"),
        ], catalog_db)

        report = orchestrator.student_activity(TEACHER, 3)

        assert report.messages == 2
        assert report.conversations == 2
        assert [(m.module_id, m.name) for m in report.modules] == [(5, "Cells")]
        assert report.total_cost == Decimal("0.015")


class TestDegradedResponses:
    """Test partial failures surfaced on the report."""

    def test_failing_partition_degrades_response(self, catalog_db):
        """One module scan fails; the other modules' data is intact."""
        insert_interaction_events([
            make_event("m1", module_id=5),
            make_event("m2", module_id=6),
            make_event("m3", module_id=7),
        ], catalog_db)
        orchestrator = _orchestrator(catalog_db, store=FlakyEventStore(catalog_db, failing_modules=[6]))

        report = orchestrator.cost_breakdown(NORTH_ADMIN)

        assert report.meta.degraded is True
        assert report.meta.state == RequestState.PARTIALLY_DEGRADED
        assert report.total_messages == 2
        assert {u.unit_id for u in report.by_module} == {5, 7}
        assert [f.partition for f in report.meta.partition_failures] == ["module:6"]

    def test_truncation_is_flagged(self, catalog_db):
        insert_interaction_events(
            [make_event(f"m{i}", timestamp=BASE_TIME + timedelta(seconds=i)) for i in range(5)], catalog_db
        )
        config = EngineConfig(event_store=EventStoreConfig(partition_limit=3))

        report = _orchestrator(catalog_db, config=config).cost_breakdown(PLATFORM)

        assert report.meta.truncated is True
        assert report.total_messages == 3

    def test_partition_listing_failure_degrades_response(self, catalog_db):
        """Without a listing, catalogued modules are still scanned and the gap is flagged."""
        insert_interaction_events([make_event("m1", module_id=5)], catalog_db)
        orchestrator = _orchestrator(catalog_db, store=UnlistableEventStore(catalog_db))

        report = orchestrator.cost_breakdown(PLATFORM)

        assert report.total_messages == 1
        assert report.meta.degraded is True
        assert [f.partition for f in report.meta.partition_failures] == ["module:*"]
        assert "ConnectionError" in report.meta.partition_failures[0].reason

    def test_scoped_callers_do_not_list_partitions(self, catalog_db):
        insert_interaction_events([make_event("m1", module_id=5)], catalog_db)
        orchestrator = _orchestrator(catalog_db, store=UnlistableEventStore(catalog_db))

        report = orchestrator.cost_breakdown(NORTH_ADMIN)

        assert report.total_messages == 1
        assert report.meta.degraded is False


class TestUsageReports:
    """Test usage snapshot, trends and hourly profile."""

    def test_hourly_peak(self, catalog_db, orchestrator):
        """187 events at 14:00 and 2 at 04:00 make 14 the peak hour."""
        day = BASE_TIME.replace(hour=0)
        events = [make_event(f"p{i}", timestamp=day + timedelta(hours=14, seconds=i)) for i in range(187)]
        events += [make_event(f"q{i}", timestamp=day + timedelta(hours=4, seconds=i)) for i in range(2)]
        insert_interaction_events(events, catalog_db)

        report = orchestrator.hourly_profile(PLATFORM, day=date(2024, 3, 4))

        assert report.insights.peak_hour == 14
        assert report.insights.peak_hour_messages == 187
        assert report.insights.quietest_hour == 4
        assert report.insights.business_hours_total == 187
        assert report.insights.after_hours_total == 2
        assert [h.hour for h in report.hours] == [4, 14]

    def test_usage_snapshot(self, catalog_db, orchestrator):
        insert_interaction_events([
            make_event("m1", student_id=1, conversation_id="a"),
            make_event("m2", student_id=2, conversation_id="b", module_id=6),
            make_event("m3", timestamp=BASE_TIME + timedelta(days=1)),
        ], catalog_db)

        report = orchestrator.usage_snapshot(PLATFORM, day=date(2024, 3, 4))

        assert report.total_messages == 2
        assert report.unique_students == 2
        assert report.active_modules == 2
        assert report.total_cost == Decimal("0.015")
        assert report.peak_hour.hour == 12

    def test_day_reports_reject_start_end(self, orchestrator):
        with pytest.raises(InvalidFilterCombination):
            orchestrator.usage_snapshot(PLATFORM, AnalyticsFilters(start=BASE_TIME))

    def test_daily_trends(self, catalog_db, orchestrator):
        events = [make_event("d1-a"), make_event("d1-b", timestamp=BASE_TIME + timedelta(hours=1))]
        events += [make_event(f"d2-{i}", timestamp=BASE_TIME + timedelta(days=1, minutes=i)) for i in range(4)]
        insert_interaction_events(events, catalog_db)

        report = orchestrator.usage_trends(PLATFORM, granularity=Granularity.DAY)

        assert [p.messages for p in report.points] == [2, 4]
        assert report.summary.total_messages == 6
        assert report.summary.growth_rate == 100.0
        assert report.summary.direction == TrendDirection.INCREASING
        assert sum(p.cost for p in report.points) == report.summary.total_cost

    def test_explicit_window(self, catalog_db, orchestrator):
        insert_interaction_events([
            make_event("in", timestamp=BASE_TIME),
            make_event("out", timestamp=BASE_TIME - timedelta(days=3)),
        ], catalog_db)
        filters = AnalyticsFilters(start=BASE_TIME - timedelta(days=1), end=BASE_TIME + timedelta(days=1))

        report = orchestrator.usage_trends(PLATFORM, filters)

        assert report.summary.total_messages == 1
        assert report.meta.window_start == BASE_TIME - timedelta(days=1)


class TestEngagementAndPerformance:
    def test_conversation_classification(self, catalog_db, orchestrator):
        """Single-message conversations are excluded from completions."""
        events = [make_event("single", conversation_id="c-single")]
        events += [
            make_event(f"long-{i}", conversation_id="c-long", timestamp=BASE_TIME + timedelta(minutes=i))
            for i in range(16)
        ]
        events += [
            make_event(f"short-{i}", conversation_id="c-short", timestamp=BASE_TIME + timedelta(minutes=i))
            for i in range(3)
        ]
        insert_interaction_events(events, catalog_db)

        report = orchestrator.engagement_summary(PLATFORM)

        assert report.total_conversations == 3
        assert report.single_message == 1
        assert report.short == 1
        assert report.long == 1
        assert report.completion_rate == pytest.approx(2 / 3)
        assert report.quality == EngagementQuality.MEDIUM
        assert report.distribution["16+ messages"] == 1

    def test_performance_profile(self, catalog_db, orchestrator):
        insert_interaction_events([
            make_event("a", response_time_ms=1000),
            make_event("b", response_time_ms=2000),
            make_event("c", response_time_ms=3000),
        ], catalog_db)

        report = orchestrator.performance_profile(PLATFORM)

        assert report.average_response_time == 2000
        assert report.p50_response_time == 2000
        assert report.p99_response_time == 3000
        assert report.grade == "B"
        assert report.fast_responses == 1
        assert report.average_tokens_per_message == 1500


class TestModulesAndStudents:
    def test_module_comparison(self, catalog_db, orchestrator):
        insert_interaction_events([
            make_event("a", module_id=6, student_id=1, response_time_ms=1000),
            make_event("b", module_id=6, student_id=1, response_time_ms=1000),
            make_event("c", module_id=7, student_id=2, response_time_ms=2000),
        ], catalog_db)

        report = orchestrator.module_comparison(PLATFORM, [6, 7])

        assert [e.module_name for e in report.modules] == ["Bonds", "Reactions"]
        assert report.modules[0].engagement_score == 1.0
        assert report.most_active.module_id == 6
        assert report.most_engaged.module_id == 6

    def test_module_comparison_drops_out_of_scope(self, catalog_db, orchestrator):
        report = orchestrator.module_comparison(TEACHER, [5, 7])

        assert [e.module_id for e in report.modules] == [5]
        assert report.modules[0].total_messages == 0

    def test_module_comparison_requires_modules(self, orchestrator):
        with pytest.raises(InvalidFilterCombination):
            orchestrator.module_comparison(PLATFORM, [])

    def test_top_students(self, catalog_db, orchestrator):
        events = [make_event(f"s1-{i}", student_id=1) for i in range(3)]
        events += [make_event(f"s2-{i}", student_id=2) for i in range(3)]
        events += [make_event("s3-0", student_id=3)]
        insert_interaction_events(events, catalog_db)

        report = orchestrator.top_students(PLATFORM, limit=2)

        assert [s.student_id for s in report.students] == [1, 2]
        assert report.total_students == 3

    @pytest.mark.parametrize("limit", [0, 101])
    def test_top_students_limit_bounds(self, orchestrator, limit):
        with pytest.raises(InvalidFilterCombination):
            orchestrator.top_students(PLATFORM, limit=limit)


class TestProviderUsage:
    """Test reports read through the provider partition."""

    def test_out_of_scope_modules_are_excluded(self, catalog_db, orchestrator):
        insert_interaction_events([
            make_event("a", module_id=5, provider="openai", student_id=1),
            make_event("b", module_id=6, provider="OpenAI", student_id=2),
            make_event("c", module_id=9, provider="openai", student_id=3),
            make_event("d", module_id=5, provider="anthropic", model_name="claude-3-haiku"),
        ], catalog_db)

        report = orchestrator.provider_usage(NORTH_ADMIN, "OpenAI")

        assert report.provider == "openai"
        assert report.messages == 2
        assert report.unique_students == 2
        assert [(m.module_id, m.name) for m in report.modules] == [(5, "Cells"), (6, "Bonds")]
        assert report.total_cost == Decimal("0.015")
        assert report.meta.degraded is False

    def test_provider_is_required(self, orchestrator):
        with pytest.raises(InvalidFilterCombination):
            orchestrator.provider_usage(PLATFORM, "  ")


class TestQuestionsAndDashboard:
    def test_frequently_asked_questions(self, catalog_db):
        insert_interaction_events([
            make_event("a", question="How does mitosis work?", student_id=1),
            make_event("b", question="how does mitosis work", student_id=2),
            make_event("c", question="What is a cell?", student_id=2),
            make_event("d", question="B", student_id=3),
            make_event("e"),
        ], catalog_db)
        config = EngineConfig(faq=FaqConfig(min_occurrences=1, max_results=10))

        report = _orchestrator(catalog_db, config=config).frequently_asked_questions(PLATFORM)

        assert [(c.representative, c.count) for c in report.clusters] == [
            ("How does mitosis work?", 2),
            ("What is a cell?", 1),
        ]
        assert report.summary.total_questions == 3
        assert report.summary.questions_per_student == 1.5
        assert report.summary.top_categories == ("Definition", "How-To")

    def test_dashboard_growth(self, catalog_db, orchestrator):
        insert_interaction_events([
            make_event("now-1", student_id=1),
            make_event("now-2", student_id=2, timestamp=BASE_TIME + timedelta(hours=1)),
            make_event("before", student_id=1, timestamp=datetime(2024, 1, 20, tzinfo=timezone.utc)),
        ], catalog_db)

        report = orchestrator.dashboard_summary(PLATFORM, period="month")

        assert report.total_messages == 2
        assert report.messages_growth == 100.0
        assert report.student_growth == 100.0
        assert report.active_courses == 1
        assert report.active_institutions == 1
        assert report.most_active_module.module_name == "Cells"
        assert report.cost_by_provider == {"openai": Decimal("0.015")}

    def test_dashboard_unknown_period(self, orchestrator):
        with pytest.raises(InvalidFilterCombination):
            orchestrator.dashboard_summary(PLATFORM, period="decade")
