"""
Typed errors surfaced to callers of the analytics engine.

Only caller mistakes are raised. Storage-side problems (failed partition
scans, unpriced models, missing catalog entries, deadlines) are reported
as data on the returned report.
"""


class AnalyticsError(Exception):
    """Base class for errors raised by the analytics engine."""


class InvalidFilterCombination(AnalyticsError, ValueError):
    """Raised before any I/O when request filters are inconsistent."""

    def __init__(self, message: str, field: str = ""):
        super().__init__(message)
        self.field = field


class ScopeViolation(AnalyticsError):
    """Raised when an exact-match request names a unit outside the caller's scope."""

    def __init__(self, message: str, unit: str, unit_id: int):
        super().__init__(message)
        self.unit = unit
        self.unit_id = unit_id
