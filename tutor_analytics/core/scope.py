"""
Caller scope resolution.

Turns an authenticated caller and optional unit filters into the set of
modules the caller may query. This is the single enforcement point for
tenant isolation: every event-store query is built from its result.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import FrozenSet, Iterable, Optional

from tutor_analytics.storage.catalog import CatalogService
from tutor_analytics.storage.models import OrganizationalHierarchy

from .errors import InvalidFilterCombination, ScopeViolation

logger = logging.getLogger(__name__)


class Role(Enum):
    """Caller roles established by the auth layer."""
    PLATFORM_ADMIN = "platform-admin"
    INSTITUTION_ADMIN = "institution-admin"
    INSTRUCTOR = "instructor"


@dataclass(frozen=True)
class CallerContext:
    """Authenticated caller, built once per request by the transport layer."""
    role: Role
    identity: str
    institution_id: Optional[int] = None

    def __post_init__(self):
        """Validate the role and institution pairing."""
        if not isinstance(self.role, Role):
            try:
                object.__setattr__(self, "role", Role(str(self.role).lower()))
            except ValueError:
                valid_roles = [role.value for role in Role]
                raise ValueError(f"role must be one of: {valid_roles}")
        if self.role == Role.INSTITUTION_ADMIN and self.institution_id is None:
            raise ValueError("institution-admin callers require institution_id")
        if not self.identity:
            raise ValueError("identity is required and cannot be empty")


@dataclass(frozen=True)
class AnalyticsFilters:
    """Caller-supplied request filters shared by every report type.

    `require_exact` turns an out-of-scope unit request into a ScopeViolation
    instead of an empty report. `deadline_seconds` overrides the configured
    request timeout.
    """
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    institution_id: Optional[int] = None
    course_id: Optional[int] = None
    module_id: Optional[int] = None
    require_exact: bool = False
    deadline_seconds: Optional[float] = None

    def has_unit_filter(self) -> bool:
        return any(v is not None for v in (self.institution_id, self.course_id, self.module_id))

    def validate(self) -> None:
        """Reject inconsistent filters before any I/O.

        Raises:
            InvalidFilterCombination: If the filters cannot describe a valid request
        """
        for name in ("start", "end"):
            value = getattr(self, name)
            if value is not None and value.tzinfo is None:
                raise InvalidFilterCombination(f"'{name}' must be timezone-aware", field=name)
        if self.start is not None and self.end is not None and self.start > self.end:
            raise InvalidFilterCombination("'start' must not be after 'end'", field="start")
        if self.deadline_seconds is not None and self.deadline_seconds <= 0:
            raise InvalidFilterCombination("'deadline_seconds' must be > 0", field="deadline_seconds")
        if self.require_exact and not self.has_unit_filter():
            raise InvalidFilterCombination(
                "'require_exact' needs an institution, course or module filter",
                field="require_exact",
            )


@dataclass(frozen=True)
class AccessibleModuleSet:
    """Request-scoped set of modules a caller may see.

    `unrestricted` is the platform-wide marker; it is never expanded into
    an enumeration of every module.
    """
    module_ids: FrozenSet[int] = frozenset()
    unrestricted: bool = False

    @classmethod
    def everything(cls) -> "AccessibleModuleSet":
        return cls(unrestricted=True)

    @classmethod
    def of(cls, module_ids: Iterable[int]) -> "AccessibleModuleSet":
        return cls(module_ids=frozenset(module_ids))

    @property
    def is_empty(self) -> bool:
        return not self.unrestricted and not self.module_ids

    def contains(self, module_id: int) -> bool:
        return self.unrestricted or module_id in self.module_ids

    def intersect(self, module_ids: Iterable[int]) -> "AccessibleModuleSet":
        requested = frozenset(module_ids)
        if self.unrestricted:
            return AccessibleModuleSet(module_ids=requested)
        return AccessibleModuleSet(module_ids=self.module_ids & requested)


class ScopeResolver:
    """Computes AccessibleModuleSet values from caller context and filters."""

    def __init__(self, catalog: CatalogService):
        self.catalog = catalog

    def resolve(
        self,
        caller: CallerContext,
        filters: Optional[AnalyticsFilters] = None,
        hierarchy: Optional[OrganizationalHierarchy] = None,
    ) -> AccessibleModuleSet:
        """Resolve the caller's scope, intersected with any requested units.

        A requested unit outside the caller's scope yields an empty set,
        never an error and never unrestricted data, unless the filters
        ask for an exact match.

        Args:
            caller: Authenticated caller
            filters: Optional institution/course/module filters
            hierarchy: Catalog snapshot for this request (fetched if omitted)

        Returns:
            AccessibleModuleSet for this request

        Raises:
            ScopeViolation: If filters.require_exact is set and the requested
                unit lies outside the caller's scope
        """
        if hierarchy is None:
            hierarchy = self.catalog.get_organizational_hierarchy()

        base = self._base_scope(caller, hierarchy)
        if filters is None or not filters.has_unit_filter():
            logger.debug("Scope for %s (%s): unrestricted=%s modules=%d",
                         caller.identity, caller.role.value, base.unrestricted, len(base.module_ids))
            return base

        requested = _requested_modules(filters, hierarchy)
        scope = base.intersect(requested)

        if scope.is_empty and filters.require_exact and (requested or not base.unrestricted):
            unit, unit_id = _named_unit(filters)
            raise ScopeViolation(
                f"{unit} {unit_id} is outside the scope of {caller.role.value} {caller.identity}",
                unit=unit,
                unit_id=unit_id,
            )

        logger.debug("Scope for %s (%s) narrowed to %d modules",
                     caller.identity, caller.role.value, len(scope.module_ids))
        return scope

    def _base_scope(self, caller: CallerContext, hierarchy: OrganizationalHierarchy) -> AccessibleModuleSet:
        if caller.role == Role.PLATFORM_ADMIN:
            return AccessibleModuleSet.everything()

        if caller.role == Role.INSTITUTION_ADMIN:
            return AccessibleModuleSet.of(hierarchy.modules_in_institution(caller.institution_id))

        # Instructors see exactly the modules of their assigned courses
        course_ids = frozenset(self.catalog.get_assigned_courses(caller.identity))
        return AccessibleModuleSet.of(hierarchy.modules_in_courses(course_ids))


def _requested_modules(filters: AnalyticsFilters, hierarchy: OrganizationalHierarchy) -> FrozenSet[int]:
    requested: Optional[FrozenSet[int]] = None

    if filters.institution_id is not None:
        requested = hierarchy.modules_in_institution(filters.institution_id)

    if filters.course_id is not None:
        course_modules = hierarchy.modules_in_courses(frozenset([filters.course_id]))
        requested = course_modules if requested is None else requested & course_modules

    if filters.module_id is not None:
        # Kept even when absent from the catalog: its events may outlive it
        module = frozenset([filters.module_id])
        requested = module if requested is None else requested & module

    return requested or frozenset()


def _named_unit(filters: AnalyticsFilters):
    if filters.module_id is not None:
        return "module", filters.module_id
    if filters.course_id is not None:
        return "course", filters.course_id
    return "institution", filters.institution_id
