"""
Shared fixtures: catalog data, temporary SQLite databases and event factory.
"""

import os
import tempfile
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from tutor_analytics.storage.models import (
    Course,
    Institution,
    InteractionEvent,
    Module,
    OrganizationalHierarchy,
    PricingEntry,
)
from tutor_analytics.storage.repository import (
    assign_courses,
    initialize_schema,
    save_catalog,
    save_pricing,
)

BASE_TIME = datetime(2024, 3, 4, 12, 0, 0, tzinfo=timezone.utc)
NOW = datetime(2024, 3, 10, 0, 0, 0, tzinfo=timezone.utc)

INSTRUCTOR = "inst-1"

INSTITUTIONS = [Institution(id=1, name="North University"), Institution(id=2, name="South College")]
COURSES = [
    Course(id=1, institution_id=1, name="Biology"),
    Course(id=2, institution_id=1, name="Chemistry"),
    Course(id=3, institution_id=2, name="Calculus"),
]
MODULES = [
    Module(id=5, course_id=1, name="Cells"),
    Module(id=6, course_id=2, name="Bonds"),
    Module(id=7, course_id=2, name="Reactions"),
    Module(id=9, course_id=3, name="Limits"),
]
PRICING = [
    PricingEntry("openai", "gpt-4o", Decimal("2.50"), Decimal("10.00")),
    PricingEntry("openai", "gpt-3.5-turbo", Decimal("0.50"), Decimal("1.50"), is_active=False),
]


def make_event(
    message_id: str,
    module_id: int = 5,
    student_id: int = 1,
    conversation_id: str = "conv-1",
    timestamp: datetime = BASE_TIME,
    provider: str = "openai",
    model_name: str = "gpt-4o",
    input_tokens: int = 1000,
    output_tokens: int = 500,
    response_time_ms=1500,
    question=None,
) -> InteractionEvent:
    """Build an interaction event with sensible defaults."""
    return InteractionEvent(
        conversation_id=conversation_id,
        timestamp=timestamp,
        message_id=message_id,
        student_id=student_id,
        module_id=module_id,
        provider=provider,
        model_name=model_name,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        response_time_ms=response_time_ms,
        question=question,
    )


@pytest.fixture
def hierarchy() -> OrganizationalHierarchy:
    return OrganizationalHierarchy.from_entities(INSTITUTIONS, COURSES, MODULES)


@pytest.fixture
def db_path():
    """Path to an initialized, empty SQLite database."""
    with tempfile.TemporaryDirectory() as temp_dir:
        path = os.path.join(temp_dir, "test.db")
        initialize_schema(path)
        yield path


@pytest.fixture
def catalog_db(db_path):
    """Database with the test catalog, one instructor assignment and pricing."""
    save_catalog(INSTITUTIONS, COURSES, MODULES, db_path=db_path)
    assign_courses(INSTRUCTOR, [1], db_path=db_path)
    save_pricing(PRICING, db_path=db_path)
    return db_path
