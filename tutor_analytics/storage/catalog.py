"""
Organizational catalog access.

Read-only view over institutions, courses, modules, instructor
assignments and pricing, as consumed by the analytics engine.
"""

import logging
from decimal import Decimal
from typing import List, Protocol

from .db import DEFAULT_DB_PATH, get_connection
from .models import Course, Institution, Module, OrganizationalHierarchy, PricingEntry

logger = logging.getLogger(__name__)

# Reasonable cap on instructor course assignments
MAX_COURSE_ASSIGNMENTS = 1000


class CatalogService(Protocol):
    """Catalog operations the engine depends on."""

    def get_organizational_hierarchy(self) -> OrganizationalHierarchy:
        ...

    def get_assigned_courses(self, instructor_id: str) -> List[int]:
        ...

    def get_active_pricing(self) -> List[PricingEntry]:
        ...


class SqliteCatalog:
    """Catalog backed by the local SQLite tables.

    Each method is a single bulk read; callers snapshot the result once
    per request instead of issuing per-entity lookups.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def get_organizational_hierarchy(self) -> OrganizationalHierarchy:
        conn = get_connection(self.db_path)
        try:
            institutions = [
                Institution(id=row[0], name=row[1])
                for row in conn.execute("SELECT id, name FROM institution")
            ]
            courses = [
                Course(id=row[0], institution_id=row[1], name=row[2])
                for row in conn.execute("SELECT id, institution_id, name FROM course")
            ]
            modules = [
                Module(id=row[0], course_id=row[1], name=row[2])
                for row in conn.execute("SELECT id, course_id, name FROM module")
            ]
        finally:
            conn.close()
        return OrganizationalHierarchy.from_entities(institutions, courses, modules)

    def get_assigned_courses(self, instructor_id: str) -> List[int]:
        """Get course IDs assigned to an instructor (at most MAX_COURSE_ASSIGNMENTS).

        Args:
            instructor_id: Opaque instructor identity

        Returns:
            Course IDs in ascending order; empty when nothing is assigned
        """
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                """
                SELECT course_id FROM instructor_course
                WHERE instructor_id = ?
                ORDER BY course_id
                LIMIT ?
                """,
                (instructor_id, MAX_COURSE_ASSIGNMENTS),
            ).fetchall()
        finally:
            conn.close()

        course_ids = [row[0] for row in rows]
        if len(course_ids) == MAX_COURSE_ASSIGNMENTS:
            logger.warning(
                "Instructor %s reached the course assignment limit of %d; "
                "this may indicate a data issue",
                instructor_id,
                MAX_COURSE_ASSIGNMENTS,
            )
        return course_ids

    def get_active_pricing(self) -> List[PricingEntry]:
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute("""
                SELECT provider, model_name, input_cost_per_million, output_cost_per_million
                FROM pricing
                WHERE is_active = 1
                ORDER BY provider, model_name
            """).fetchall()
        finally:
            conn.close()

        return [
            PricingEntry(
                provider=row[0],
                model_name=row[1],
                input_cost_per_million=Decimal(row[2]),
                output_cost_per_million=Decimal(row[3]),
                is_active=True,
            )
            for row in rows
        ]
