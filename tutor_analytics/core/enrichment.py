"""
Catalog enrichment for aggregated results.

Attaches display names and hierarchy rollups to numeric aggregates using
one catalog snapshot per request. Units deleted from the catalog after
their events were recorded get a placeholder label instead of failing
the report.
"""

import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set, Tuple

from tutor_analytics.storage.models import InteractionEvent, OrganizationalHierarchy

from .pricing import PricingTable, event_cost, quantize_money
from .reports import ModuleUsage, UnitCost

logger = logging.getLogger(__name__)


class CatalogLookup:
    """In-memory id -> name lookups over a hierarchy snapshot.

    Records every id it could not resolve so the report can surface them.
    """

    def __init__(self, hierarchy: OrganizationalHierarchy):
        self.hierarchy = hierarchy
        self._missing: Set[Tuple[str, int]] = set()

    def module_name(self, module_id: int) -> str:
        module = self.hierarchy.modules.get(module_id)
        if module is None:
            self._missing.add(("module", module_id))
            return f"Module {module_id}"
        return module.name

    def course_name(self, course_id: int) -> str:
        course = self.hierarchy.courses.get(course_id)
        if course is None:
            self._missing.add(("course", course_id))
            return f"Course {course_id}"
        return course.name

    def institution_name(self, institution_id: int) -> str:
        institution = self.hierarchy.institutions.get(institution_id)
        if institution is None:
            self._missing.add(("institution", institution_id))
            return f"Institution {institution_id}"
        return institution.name

    def course_of(self, module_id: int) -> Optional[int]:
        course_id = self.hierarchy.course_of(module_id)
        if course_id is None:
            self._missing.add(("module", module_id))
        return course_id

    def institution_of(self, module_id: int) -> Optional[int]:
        course_id = self.course_of(module_id)
        if course_id is None:
            return None
        institution_id = self.hierarchy.institution_of(module_id)
        if institution_id is None:
            self._missing.add(("course", course_id))
        return institution_id

    def missing_ids(self) -> Tuple[str, ...]:
        return tuple(f"{kind}:{unit_id}" for kind, unit_id in sorted(self._missing))


class EnrichmentJoiner:
    """Joins aggregated numbers with catalog metadata."""

    def __init__(self, hierarchy: OrganizationalHierarchy):
        self.lookup = CatalogLookup(hierarchy)

    def cost_rollups(
        self,
        events: Iterable[InteractionEvent],
        table: PricingTable,
    ) -> Tuple[Tuple[UnitCost, ...], Tuple[UnitCost, ...], Tuple[UnitCost, ...]]:
        """Known cost per module, course and institution.

        Modules missing from the catalog still appear under their
        placeholder name but cannot be rolled up further.

        Args:
            events: Scoped events
            table: Pricing snapshot

        Returns:
            (by_module, by_course, by_institution), each ordered by cost
            desc then id
        """
        modules: Dict[int, List] = {}
        for event in events:
            entry = modules.setdefault(event.module_id, [0, Decimal("0")])
            entry[0] += 1
            entry[1] += event_cost(event, table).amount

        courses: Dict[int, List] = {}
        institutions: Dict[int, List] = {}
        for module_id, (messages, cost) in modules.items():
            course_id = self.lookup.course_of(module_id)
            if course_id is not None:
                _accumulate(courses, course_id, messages, cost)
            institution_id = self.lookup.institution_of(module_id)
            if institution_id is not None:
                _accumulate(institutions, institution_id, messages, cost)

        by_module = self._units(modules, self.lookup.module_name)
        by_course = self._units(courses, self.lookup.course_name)
        by_institution = self._units(institutions, self.lookup.institution_name)
        return by_module, by_course, by_institution

    def module_usage(self, counts: Dict[int, int]) -> Tuple[ModuleUsage, ...]:
        ordered = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
        return tuple(
            ModuleUsage(module_id=module_id, name=self.lookup.module_name(module_id), messages=messages)
            for module_id, messages in ordered
        )

    def active_courses(self, module_ids: Iterable[int]) -> int:
        return len({c for c in (self.lookup.course_of(m) for m in module_ids) if c is not None})

    def active_institutions(self, module_ids: Iterable[int]) -> int:
        return len({i for i in (self.lookup.institution_of(m) for m in module_ids) if i is not None})

    def missing_ids(self) -> Tuple[str, ...]:
        missing = self.lookup.missing_ids()
        if missing:
            logger.warning("Catalog entries missing, placeholders used: %s", ", ".join(missing))
        return missing

    @staticmethod
    def _units(totals: Dict[int, List], name_of) -> Tuple[UnitCost, ...]:
        units = [
            UnitCost(unit_id=unit_id, name=name_of(unit_id), messages=messages, cost=quantize_money(cost))
            for unit_id, (messages, cost) in totals.items()
        ]
        units.sort(key=lambda u: (-u.cost, u.unit_id))
        return tuple(units)


def _accumulate(totals: Dict[int, List], unit_id: int, messages: int, cost: Decimal) -> None:
    entry = totals.setdefault(unit_id, [0, Decimal("0")])
    entry[0] += messages
    entry[1] += cost
