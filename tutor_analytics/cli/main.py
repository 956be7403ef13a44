"""
CLI interface for Tutor Analytics.

Composition root: builds the catalog, event-store client and orchestrator
from the command-line options and renders each report with Rich.
"""

import logging
import sqlite3
import sys
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from tutor_analytics.config.loader import EngineConfig, load_engine_config
from tutor_analytics.core.aggregation import Granularity
from tutor_analytics.core.errors import AnalyticsError
from tutor_analytics.core.event_client import EventStoreClient
from tutor_analytics.core.orchestrator import AnalyticsOrchestrator
from tutor_analytics.core.reports import ReportMeta
from tutor_analytics.core.scope import AnalyticsFilters, CallerContext
from tutor_analytics.demo.seed_demo_data import seed_demo_data
from tutor_analytics.storage.catalog import SqliteCatalog
from tutor_analytics.storage.db import DEFAULT_DB_PATH
from tutor_analytics.storage.event_store import SqliteEventStore
from tutor_analytics.storage.repository import initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1  # Caller errors and unusable data sources


@dataclass(frozen=True)
class CliSettings:
    db_path: str
    config_path: Optional[str]
    caller: CallerContext


# Report filter options shared by most commands
START_OPTION = typer.Option(None, "--start", help="Window start (ISO date or datetime, UTC if naive)")
END_OPTION = typer.Option(None, "--end", help="Window end (ISO date or datetime, UTC if naive)")
INSTITUTION_FILTER_OPTION = typer.Option(None, "--in-institution", help="Restrict to one institution")
COURSE_OPTION = typer.Option(None, "--course", help="Restrict to one course")
MODULE_OPTION = typer.Option(None, "--module", help="Restrict to one module")
EXACT_OPTION = typer.Option(False, "--exact", help="Fail instead of returning an empty report when out of scope")
DEADLINE_OPTION = typer.Option(None, "--deadline", help="Request deadline in seconds")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    db: str = typer.Option(DEFAULT_DB_PATH, "--db", help="Path to the SQLite database"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Engine configuration YAML"),
    role: str = typer.Option("platform-admin", "--role", help="platform-admin, institution-admin or instructor"),
    identity: str = typer.Option("cli", "--identity", help="Caller identity (instructor id for instructors)"),
    institution: Optional[int] = typer.Option(None, "--institution", help="Caller institution (institution-admin)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Tutor Analytics CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )
    try:
        caller = CallerContext(role=role, identity=identity, institution_id=institution)
    except ValueError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    ctx.obj = CliSettings(db_path=db, config_path=config, caller=caller)
    if ctx.invoked_subcommand is None:
        console.print("Tutor Analytics - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the analytics database."""
    try:
        initialize_schema(ctx.obj.db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except sqlite3.Error as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command("seed-demo")
def seed_demo(
    ctx: typer.Context,
    days: int = typer.Option(14, "--days", help="Days of history to generate"),
):
    """Fill the database with a reproducible demo data set."""
    try:
        count = seed_demo_data(ctx.obj.db_path, days=days)
        console.print(f"[green]✓[/] Inserted {count} demo interaction events")
        sys.exit(EXIT_CODE_PASS)
    except sqlite3.Error as e:
        console.print(f"[red]Error seeding demo data:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def cost(
    ctx: typer.Context,
    start: Optional[str] = START_OPTION,
    end: Optional[str] = END_OPTION,
    in_institution: Optional[int] = INSTITUTION_FILTER_OPTION,
    course: Optional[int] = COURSE_OPTION,
    module: Optional[int] = MODULE_OPTION,
    exact: bool = EXACT_OPTION,
    deadline: Optional[float] = DEADLINE_OPTION,
):
    """Cost breakdown by provider, model and organizational unit."""
    filters = _filters(start, end, in_institution, course, module, exact, deadline)

    def render(orchestrator: AnalyticsOrchestrator):
        report = orchestrator.cost_breakdown(ctx.obj.caller, filters)
        console.print(f"\n[bold]Cost Breakdown[/bold]  {_window(report.meta)}")
        console.print("-" * 40)
        console.print(f"Messages: {report.total_messages:,}  Tokens: {report.total_tokens:,}  "
                      f"Total cost: {_format_currency(report.total_cost)}")

        table = Table("Provider", "Model", "Messages", "Tokens", "Cost", "Rates (in/out per 1M)")
        for item in report.by_model:
            rates = (f"{_format_currency(item.input_cost_per_million)} / "
                     f"{_format_currency(item.output_cost_per_million)}") if item.priced else "[yellow]unpriced[/]"
            table.add_row(item.provider, item.model, f"{item.messages:,}", f"{item.tokens:,}",
                          _format_currency(item.cost), rates)
        console.print(table)

        for title, units in (("Module", report.by_module), ("Course", report.by_course),
                             ("Institution", report.by_institution)):
            if not units:
                continue
            table = Table(title, "Messages", "Cost")
            for unit in units:
                table.add_row(f"{unit.name} ({unit.unit_id})", f"{unit.messages:,}", _format_currency(unit.cost))
            console.print(table)
        return report.meta

    _run(ctx, render)


@app.command("today-cost")
def today_cost(
    ctx: typer.Context,
    in_institution: Optional[int] = INSTITUTION_FILTER_OPTION,
    course: Optional[int] = COURSE_OPTION,
    module: Optional[int] = MODULE_OPTION,
):
    """Cost so far today, projected to the full day and compared to yesterday."""
    filters = _filters(None, None, in_institution, course, module)

    def render(orchestrator: AnalyticsOrchestrator):
        report = orchestrator.today_cost(ctx.obj.caller, filters)
        console.print(f"\n[bold]Today's Cost[/bold]  {report.day}")
        console.print("-" * 40)
        console.print(f"Messages: {report.total_messages:,}  Tokens: {report.total_tokens:,}")
        console.print(f"Cost so far: {_format_currency(report.total_cost)}  "
                      f"Projected: {_format_currency(report.projected_daily_cost)}")
        comparison = report.compared_to_yesterday
        if comparison:
            console.print(f"vs. yesterday: {_format_currency(comparison.absolute_change)} "
                          f"({comparison.percentage_change:+.1f}%)")
        else:
            console.print("vs. yesterday: no cost recorded yesterday")

        if report.cost_by_provider:
            table = Table("Provider", "Cost")
            for provider, amount in report.cost_by_provider.items():
                table.add_row(provider, _format_currency(amount))
            console.print(table)
        return report.meta

    _run(ctx, render)


@app.command()
def usage(
    ctx: typer.Context,
    day: Optional[str] = typer.Option(None, "--day", help="UTC day (YYYY-MM-DD), defaults to today"),
    in_institution: Optional[int] = INSTITUTION_FILTER_OPTION,
    course: Optional[int] = COURSE_OPTION,
    module: Optional[int] = MODULE_OPTION,
):
    """Usage snapshot for one day."""
    filters = _filters(None, None, in_institution, course, module)
    snapshot_day = _parse_day(day)

    def render(orchestrator: AnalyticsOrchestrator):
        report = orchestrator.usage_snapshot(ctx.obj.caller, filters, day=snapshot_day)
        console.print(f"\n[bold]Usage Snapshot[/bold]  {report.day}")
        console.print("-" * 40)
        console.print(f"Messages: {report.total_messages:,}")
        console.print(f"Students: {report.unique_students:,}  Conversations: {report.unique_conversations:,}  "
                      f"Modules: {report.active_modules:,}")
        console.print(f"Tokens: {report.total_tokens:,}  Cost: {_format_currency(report.total_cost)}")
        console.print(f"Avg response time: {report.average_response_time:,.0f} ms")
        if report.peak_hour:
            console.print(f"Peak hour: {report.peak_hour.hour:02d}:00 ({report.peak_hour.messages} messages)")
        return report.meta

    _run(ctx, render)


@app.command()
def trends(
    ctx: typer.Context,
    granularity: str = typer.Option("day", "--granularity", "-g", help="day or hour"),
    start: Optional[str] = START_OPTION,
    end: Optional[str] = END_OPTION,
    in_institution: Optional[int] = INSTITUTION_FILTER_OPTION,
    course: Optional[int] = COURSE_OPTION,
    module: Optional[int] = MODULE_OPTION,
):
    """Usage trend series."""
    filters = _filters(start, end, in_institution, course, module)
    try:
        bucket = Granularity(granularity.lower())
    except ValueError:
        console.print(f"[red]Error:[/] granularity must be one of: {[g.value for g in Granularity]}")
        sys.exit(EXIT_CODE_FAIL)

    def render(orchestrator: AnalyticsOrchestrator):
        report = orchestrator.usage_trends(ctx.obj.caller, filters, granularity=bucket)
        console.print(f"\n[bold]Usage Trends[/bold] ({bucket.value})  {_window(report.meta)}")
        table = Table("Bucket", "Messages", "Students", "Conversations", "Tokens", "Cost")
        fmt = "%Y-%m-%d" if bucket == Granularity.DAY else "%Y-%m-%d %H:00"
        for point in report.points:
            table.add_row(point.bucket_start.strftime(fmt), f"{point.messages:,}", f"{point.unique_students:,}",
                          f"{point.unique_conversations:,}", f"{point.tokens:,}", _format_currency(point.cost))
        console.print(table)
        summary = report.summary
        console.print(f"Growth: {summary.growth_rate:+.1f}% ({summary.direction.value})  "
                      f"Avg messages/bucket: {summary.average_messages_per_bucket:,.1f}")
        return report.meta

    _run(ctx, render)


@app.command()
def hourly(
    ctx: typer.Context,
    day: Optional[str] = typer.Option(None, "--day", help="UTC day (YYYY-MM-DD), defaults to today"),
    in_institution: Optional[int] = INSTITUTION_FILTER_OPTION,
    course: Optional[int] = COURSE_OPTION,
    module: Optional[int] = MODULE_OPTION,
):
    """Hour-of-day usage profile."""
    filters = _filters(None, None, in_institution, course, module)
    profile_day = _parse_day(day)

    def render(orchestrator: AnalyticsOrchestrator):
        report = orchestrator.hourly_profile(ctx.obj.caller, filters, day=profile_day)
        console.print(f"\n[bold]Hourly Usage[/bold]  {report.day}")
        table = Table("Hour", "Messages", "Students", "Conversations", "Avg response (ms)")
        for hour in report.hours:
            table.add_row(f"{hour.hour:02d}:00", f"{hour.messages:,}", f"{hour.unique_students:,}",
                          f"{hour.unique_conversations:,}", f"{hour.average_response_time:,.0f}")
        console.print(table)
        insights = report.insights
        if report.hours:
            console.print(f"Peak: {insights.peak_hour:02d}:00 ({insights.peak_hour_messages})  "
                          f"Quietest: {insights.quietest_hour:02d}:00 ({insights.quietest_hour_messages})")
            console.print(f"Business hours: {insights.business_hours_total:,}  "
                          f"After hours: {insights.after_hours_total:,}")
        return report.meta

    _run(ctx, render)


@app.command()
def engagement(
    ctx: typer.Context,
    start: Optional[str] = START_OPTION,
    end: Optional[str] = END_OPTION,
    in_institution: Optional[int] = INSTITUTION_FILTER_OPTION,
    course: Optional[int] = COURSE_OPTION,
    module: Optional[int] = MODULE_OPTION,
):
    """Conversation engagement summary."""
    filters = _filters(start, end, in_institution, course, module)

    def render(orchestrator: AnalyticsOrchestrator):
        report = orchestrator.engagement_summary(ctx.obj.caller, filters)
        console.print(f"\n[bold]Engagement[/bold]  {_window(report.meta)}")
        console.print("-" * 40)
        console.print(f"Conversations: {report.total_conversations:,}  "
                      f"Avg length: {report.average_messages:.1f}  Median: {report.median_messages:.1f}")
        table = Table("Length", "Conversations")
        for label, count in report.distribution.items():
            table.add_row(label, f"{count:,}")
        console.print(table)
        console.print(f"Completion rate: {report.completion_rate:.1%} ({report.quality.value})")
        for recommendation in report.recommendations:
            console.print(f"  • {recommendation}")
        return report.meta

    _run(ctx, render)


@app.command()
def performance(
    ctx: typer.Context,
    start: Optional[str] = START_OPTION,
    end: Optional[str] = END_OPTION,
    in_institution: Optional[int] = INSTITUTION_FILTER_OPTION,
    course: Optional[int] = COURSE_OPTION,
    module: Optional[int] = MODULE_OPTION,
):
    """Response-time performance profile."""
    filters = _filters(start, end, in_institution, course, module)

    def render(orchestrator: AnalyticsOrchestrator):
        report = orchestrator.performance_profile(ctx.obj.caller, filters)
        console.print(f"\n[bold]Performance[/bold]  grade {report.grade} ({report.status.value})")
        console.print("-" * 40)
        console.print(f"Avg: {report.average_response_time:,.0f} ms  P50: {report.p50_response_time:,.0f}  "
                      f"P95: {report.p95_response_time:,.0f}  P99: {report.p99_response_time:,.0f}")
        table = Table("Band", "Responses")
        for band, count in report.distribution.items():
            table.add_row(band, f"{count:,}")
        console.print(table)
        for issue in report.issues:
            console.print(f"[yellow]![/] {issue}")
        for recommendation in report.recommendations:
            console.print(f"  • {recommendation}")
        return report.meta

    _run(ctx, render)


@app.command()
def compare(
    ctx: typer.Context,
    modules: str = typer.Argument(..., help="Comma-separated module ids"),
    start: Optional[str] = START_OPTION,
    end: Optional[str] = END_OPTION,
):
    """Compare modules side by side."""
    filters = _filters(start, end)
    try:
        module_ids = [int(part) for part in modules.split(",") if part.strip()]
    except ValueError:
        console.print("[red]Error:[/] modules must be a comma-separated list of integers")
        sys.exit(EXIT_CODE_FAIL)

    def render(orchestrator: AnalyticsOrchestrator):
        report = orchestrator.module_comparison(ctx.obj.caller, module_ids, filters)
        table = Table("Module", "Messages", "Students", "Msgs/student", "Avg response (ms)", "Cost", "Engagement")
        for entry in report.modules:
            table.add_row(f"{entry.module_name} ({entry.module_id})", f"{entry.total_messages:,}",
                          f"{entry.unique_students:,}", f"{entry.messages_per_student:.1f}",
                          f"{entry.average_response_time:,.0f}", _format_currency(entry.cost),
                          f"{entry.engagement_score:.4f}")
        console.print(table)
        for performer in (report.most_active, report.most_engaged, report.most_efficient):
            if performer:
                console.print(f"{performer.reason}: {performer.module_name}")
        for recommendation in report.recommendations:
            console.print(f"  • {recommendation}")
        return report.meta

    _run(ctx, render)


@app.command()
def faq(
    ctx: typer.Context,
    min_occurrences: Optional[int] = typer.Option(None, "--min-occurrences", help="Minimum cluster size"),
    max_results: Optional[int] = typer.Option(None, "--max-results", help="Maximum clusters to show"),
    start: Optional[str] = START_OPTION,
    end: Optional[str] = END_OPTION,
    in_institution: Optional[int] = INSTITUTION_FILTER_OPTION,
    course: Optional[int] = COURSE_OPTION,
    module: Optional[int] = MODULE_OPTION,
):
    """Frequently asked questions."""
    filters = _filters(start, end, in_institution, course, module)

    def render(orchestrator: AnalyticsOrchestrator):
        report = orchestrator.frequently_asked_questions(
            ctx.obj.caller, filters, min_occurrences=min_occurrences, max_results=max_results
        )
        table = Table("Question", "Count", "Category")
        for cluster in report.clusters:
            table.add_row(cluster.representative, f"{cluster.count:,}", cluster.category)
        console.print(table)
        console.print(f"{report.summary.total_questions:,} questions in {report.summary.total_clusters} clusters")
        return report.meta

    _run(ctx, render)


@app.command("top-students")
def top_students(
    ctx: typer.Context,
    limit: int = typer.Option(10, "--limit", "-n", help="Number of students (1-100)"),
    start: Optional[str] = START_OPTION,
    end: Optional[str] = END_OPTION,
    in_institution: Optional[int] = INSTITUTION_FILTER_OPTION,
    course: Optional[int] = COURSE_OPTION,
    module: Optional[int] = MODULE_OPTION,
):
    """Most active students."""
    filters = _filters(start, end, in_institution, course, module)

    def render(orchestrator: AnalyticsOrchestrator):
        report = orchestrator.top_students(ctx.obj.caller, filters, limit=limit)
        table = Table("Rank", "Student", "Messages", "Conversations", "Modules")
        for rank, student in enumerate(report.students, start=1):
            table.add_row(str(rank), str(student.student_id), f"{student.messages:,}",
                          f"{student.conversations:,}", f"{student.modules:,}")
        console.print(table)
        console.print(f"{report.total_students:,} active students")
        return report.meta

    _run(ctx, render)


@app.command()
def student(
    ctx: typer.Context,
    student_id: int = typer.Argument(..., help="Student id"),
    start: Optional[str] = START_OPTION,
    end: Optional[str] = END_OPTION,
):
    """Activity of one student."""
    filters = _filters(start, end)

    def render(orchestrator: AnalyticsOrchestrator):
        report = orchestrator.student_activity(ctx.obj.caller, student_id, filters)
        console.print(f"\n[bold]Student {report.student_id}[/bold]  {_window(report.meta)}")
        console.print(f"Messages: {report.messages:,}  Conversations: {report.conversations:,}  "
                      f"Cost: {_format_currency(report.total_cost)}")
        table = Table("Module", "Messages")
        for usage_row in report.modules:
            table.add_row(f"{usage_row.name} ({usage_row.module_id})", f"{usage_row.messages:,}")
        console.print(table)
        return report.meta

    _run(ctx, render)


@app.command()
def provider(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Provider name, e.g. openai"),
    start: Optional[str] = START_OPTION,
    end: Optional[str] = END_OPTION,
    in_institution: Optional[int] = INSTITUTION_FILTER_OPTION,
    course: Optional[int] = COURSE_OPTION,
):
    """Usage served by one AI provider."""
    filters = _filters(start, end, in_institution, course)

    def render(orchestrator: AnalyticsOrchestrator):
        report = orchestrator.provider_usage(ctx.obj.caller, name, filters)
        console.print(f"\n[bold]Provider {report.provider}[/bold]  {_window(report.meta)}")
        console.print("-" * 40)
        console.print(f"Messages: {report.messages:,}  Students: {report.unique_students:,}  "
                      f"Tokens: {report.total_tokens:,}  Cost: {_format_currency(report.total_cost)}")
        console.print(f"Avg response time: {report.average_response_time:,.0f} ms")

        table = Table("Model", "Messages", "Cost")
        for item in report.by_model:
            table.add_row(item.model, f"{item.messages:,}", _format_currency(item.cost))
        console.print(table)
        table = Table("Module", "Messages")
        for usage_row in report.modules:
            table.add_row(f"{usage_row.name} ({usage_row.module_id})", f"{usage_row.messages:,}")
        console.print(table)
        return report.meta

    _run(ctx, render)


@app.command()
def dashboard(
    ctx: typer.Context,
    period: str = typer.Option("month", "--period", "-p", help="today, week, month, quarter or year"),
    in_institution: Optional[int] = INSTITUTION_FILTER_OPTION,
):
    """Dashboard summary with growth against the previous period."""
    filters = _filters(None, None, in_institution)

    def render(orchestrator: AnalyticsOrchestrator):
        report = orchestrator.dashboard_summary(ctx.obj.caller, period=period, filters=filters)
        console.print(f"\n[bold]Dashboard[/bold] ({report.period})")
        console.print("-" * 40)
        console.print(f"Messages: {report.total_messages:,} ({report.messages_growth:+.1f}%)")
        console.print(f"Students: {report.unique_students:,} ({report.student_growth:+.1f}%)")
        console.print(f"Cost: {_format_currency(report.total_cost)} ({report.cost_growth:+.1f}%)")
        console.print(f"Active modules: {report.active_modules}  Courses: {report.active_courses}  "
                      f"Institutions: {report.active_institutions}")
        if report.most_active_module:
            console.print(f"Most active module: {report.most_active_module.module_name}")
        return report.meta

    _run(ctx, render)


def _build_orchestrator(settings: CliSettings) -> AnalyticsOrchestrator:
    """Wire concrete storage into the orchestrator."""
    config = load_engine_config(settings.config_path) if settings.config_path else EngineConfig.default()
    client = EventStoreClient(
        SqliteEventStore(settings.db_path),
        fan_out_width=config.event_store.fan_out_width,
        page_size=config.event_store.page_size,
    )
    return AnalyticsOrchestrator(SqliteCatalog(settings.db_path), client, config)


def _run(ctx: typer.Context, render: Callable[[AnalyticsOrchestrator], ReportMeta]) -> None:
    """Build the orchestrator, render one report and exit with its status."""
    try:
        orchestrator = _build_orchestrator(ctx.obj)
        meta = render(orchestrator)
        _display_meta(meta)
        sys.exit(EXIT_CODE_PASS)
    except (AnalyticsError, ValueError, FileNotFoundError, yaml.YAMLError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    except sqlite3.OperationalError as e:
        if "no such table" in str(e).lower():
            console.print("\n[bold yellow]Database is not initialized[/]")
            console.print("Run `tutor-analytics init` (or `seed-demo`) first.\n")
            sys.exit(EXIT_CODE_FAIL)
        raise


def _display_meta(meta: ReportMeta) -> None:
    if meta.scope_empty:
        console.print("\n[dim]No modules are visible to this caller for the requested filters.[/]")
    if meta.degraded:
        console.print("\n[bold yellow]Partial result[/]")
        if meta.deadline_exceeded:
            console.print("  Deadline exceeded before all partitions were read")
        for failure in meta.partition_failures:
            console.print(f"  {failure.partition}: {failure.reason}")
    if meta.truncated:
        console.print("[yellow]Result truncated at the per-partition limit[/]")
    if meta.unpriced.events:
        console.print(f"[yellow]{meta.unpriced.events} events without active pricing:[/] "
                      f"{', '.join(meta.unpriced.models)}")
    if meta.missing_catalog_ids:
        console.print(f"[dim]Missing from catalog: {', '.join(meta.missing_catalog_ids)}[/]")


def _filters(
    start: Optional[str] = None,
    end: Optional[str] = None,
    institution_id: Optional[int] = None,
    course_id: Optional[int] = None,
    module_id: Optional[int] = None,
    require_exact: bool = False,
    deadline_seconds: Optional[float] = None,
) -> AnalyticsFilters:
    return AnalyticsFilters(
        start=_parse_moment(start, "--start"),
        end=_parse_moment(end, "--end"),
        institution_id=institution_id,
        course_id=course_id,
        module_id=module_id,
        require_exact=require_exact,
        deadline_seconds=deadline_seconds,
    )


def _parse_moment(value: Optional[str], option: str) -> Optional[datetime]:
    """Parse an ISO date or datetime; naive values are taken as UTC."""
    if value is None:
        return None
    try:
        moment = datetime.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"{value!r} is not an ISO date or datetime", param_hint=option)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def _parse_day(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"{value!r} is not a YYYY-MM-DD date", param_hint="--day")


def _window(meta: ReportMeta) -> str:
    if meta.window_start is None or meta.window_end is None:
        return ""
    return f"{meta.window_start:%Y-%m-%d %H:%M} → {meta.window_end:%Y-%m-%d %H:%M} UTC"


def _format_currency(amount: Decimal) -> str:
    """Format currency with symbol and up to six decimals."""
    if amount and abs(amount) < Decimal("0.01"):
        return f"${amount:,.6f}"
    return f"${amount:,.2f}"


if __name__ == "__main__":
    app()
