"""
Rule-based insights for analytics reports.

Turns aggregated numbers into grades, statuses and recommendations.
All rules use fixed thresholds so results are reproducible.
"""

from decimal import Decimal
from enum import Enum
from typing import List, Sequence


class TrendDirection(Enum):
    INCREASING = "increasing"
    STABLE = "stable"
    DECREASING = "decreasing"


class EngagementQuality(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PerformanceStatus(Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


# Trend: growth beyond +/-10% is a direction change
TREND_THRESHOLD_PERCENT = 10.0

# Response-time thresholds (milliseconds)
FAST_RESPONSE_MS = 2000
SLOW_RESPONSE_MS = 10000
GRADE_BOUNDS_MS = [(2000, "A"), (3000, "B"), (5000, "C"), (10000, "D")]

# Business hours, UTC, inclusive
BUSINESS_HOURS = range(8, 19)

RESPONSE_TIME_BANDS = [
    ("< 1s", 0, 1000),
    ("1-2s", 1000, 2000),
    ("2-5s", 2000, 5000),
    ("5-10s", 5000, 10000),
    ("10s+", 10000, None),
]


def trend_direction(growth_rate: float) -> TrendDirection:
    if growth_rate > TREND_THRESHOLD_PERCENT:
        return TrendDirection.INCREASING
    if growth_rate < -TREND_THRESHOLD_PERCENT:
        return TrendDirection.DECREASING
    return TrendDirection.STABLE


def series_growth_rate(values: Sequence[float]) -> float:
    """Percent change from the first to the last value of a series."""
    if len(values) < 2 or values[0] <= 0:
        return 0.0
    return (values[-1] - values[0]) / values[0] * 100


def engagement_quality(completion_rate: float) -> EngagementQuality:
    if completion_rate >= 0.8:
        return EngagementQuality.HIGH
    if completion_rate >= 0.5:
        return EngagementQuality.MEDIUM
    return EngagementQuality.LOW


def conversation_recommendations(single_message: int, total: int, completion_rate: float) -> List[str]:
    """Recommend actions from conversation-length statistics.

    Rules:
    - Single-message conversations above 30% of all conversations
    - Completion rate below 50%
    """
    recommendations = []
    single_rate = single_message / total if total else 0.0

    if single_rate > 0.3:
        recommendations.append("Focus on reducing single-message conversations")

    if completion_rate < 0.5:
        recommendations.append("Improve engagement to increase conversation completion rate")
    else:
        recommendations.append("Average conversation length is healthy")

    return recommendations


def performance_grade(average_response_ms: float) -> str:
    for bound, grade in GRADE_BOUNDS_MS:
        if average_response_ms < bound:
            return grade
    return "F"


def performance_status(grade: str) -> PerformanceStatus:
    if grade in ("A", "B"):
        return PerformanceStatus.HEALTHY
    if grade == "C":
        return PerformanceStatus.WARNING
    return PerformanceStatus.CRITICAL


def response_time_distribution(values: Sequence[int]) -> dict:
    distribution = {}
    for label, low, high in RESPONSE_TIME_BANDS:
        distribution[label] = sum(1 for v in values if v >= low and (high is None or v < high))
    return distribution


def performance_issues(slow_responses: int, total: int) -> List[str]:
    issues = []
    slow_rate = slow_responses / total * 100 if total else 0.0
    if slow_rate > 2:
        issues.append(f"{slow_rate:.1f}% of responses exceed 10 seconds")
    return issues


def performance_recommendations(average_response_ms: float, slow_responses: int) -> List[str]:
    recommendations = []
    if average_response_ms > 5000:
        recommendations.append("Consider caching for common questions")
        recommendations.append("Review prompt optimization for faster responses")
    if slow_responses > 10:
        recommendations.append("Investigate slow response patterns")
    return recommendations


# More than one cent per message is considered expensive
COST_PER_MESSAGE_ALERT = Decimal("0.01")


def module_comparison_recommendations(entries) -> List[str]:
    """Recommendations for a module comparison.

    Rules:
    - Top engagement score more than twice the lowest one
    - Highest cost per message above COST_PER_MESSAGE_ALERT

    Args:
        entries: ModuleComparisonEntry values, already in display order
    """
    recommendations = []
    if not entries:
        return recommendations

    most_engaged = max(entries, key=lambda e: (e.engagement_score, -e.module_id))
    least_engaged = min(entries, key=lambda e: (e.engagement_score, e.module_id))
    if most_engaged.engagement_score > least_engaged.engagement_score * 2:
        recommendations.append(
            f"{most_engaged.module_name} shows high engagement - analyze best practices"
        )

    active = [e for e in entries if e.total_messages > 0]
    if active:
        costliest = max(active, key=lambda e: (e.cost_per_message, -e.module_id))
        if costliest.cost_per_message > COST_PER_MESSAGE_ALERT:
            recommendations.append(
                f"{costliest.module_name} has higher costs - review prompt optimization"
            )

    return recommendations
