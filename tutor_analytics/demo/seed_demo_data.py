# tutor_analytics/demo/seed_demo_data.py

import random
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional

from tutor_analytics.storage.db import DEFAULT_DB_PATH
from tutor_analytics.storage.models import Course, Institution, InteractionEvent, Module, PricingEntry
from tutor_analytics.storage.repository import (
    assign_courses,
    initialize_schema,
    insert_interaction_events,
    save_catalog,
    save_pricing,
)

DEMO_INSTRUCTOR = "instructor-1"

INSTITUTIONS = [
    Institution(id=1, name="Northfield University"),
    Institution(id=2, name="Lakeside College"),
]

COURSES = [
    Course(id=10, institution_id=1, name="Introduction to Biology"),
    Course(id=11, institution_id=1, name="Organic Chemistry"),
    Course(id=20, institution_id=2, name="Calculus I"),
]

MODULES = [
    Module(id=100, course_id=10, name="Cell Structure"),
    Module(id=101, course_id=10, name="Genetics"),
    Module(id=110, course_id=11, name="Reaction Mechanisms"),
    Module(id=200, course_id=20, name="Limits"),
    Module(id=201, course_id=20, name="Derivatives"),
]

PRICING = [
    PricingEntry("openai", "gpt-4o-mini", Decimal("0.15"), Decimal("0.60")),
    PricingEntry("anthropic", "claude-3-haiku", Decimal("0.25"), Decimal("1.25")),
    PricingEntry("openai", "gpt-3.5-turbo", Decimal("0.50"), Decimal("1.50"), is_active=False),
]

# (provider, model); the last one has no active price on purpose
MODELS = [
    ("openai", "gpt-4o-mini"),
    ("openai", "gpt-4o-mini"),
    ("anthropic", "claude-3-haiku"),
    ("openai", "gpt-3.5-turbo"),
]

QUESTIONS = [
    "How does mitosis work?",
    "how does mitosis work",
    "How does mitosis actually work?",
    "What is a derivative?",
    "what is a derivative",
    "Why do enzymes need a specific temperature?",
    "Can you give an example of a limit?",
    "When is the exam?",
    "B",
    "LETRA C",
]


def seed_demo_data(
    db_path: str = DEFAULT_DB_PATH,
    days: int = 14,
    now: Optional[datetime] = None,
    seed: int = 42,
) -> int:
    """Create the schema and fill it with a reproducible demo data set.

    Args:
        db_path: Path to SQLite database file
        days: Number of days of history to generate
        now: End of the generated history (defaults to current UTC time)
        seed: Random seed; the same seed yields the same events

    Returns:
        Number of interaction events generated
    """
    now = now or datetime.now(timezone.utc)
    rng = random.Random(seed)

    initialize_schema(db_path)
    save_catalog(INSTITUTIONS, COURSES, MODULES, db_path=db_path)
    assign_courses(DEMO_INSTRUCTOR, [10], db_path=db_path)
    save_pricing(PRICING, db_path=db_path)

    events: List[InteractionEvent] = []
    for day in range(days):
        day_start = (now - timedelta(days=day)).replace(hour=0, minute=0, second=0, microsecond=0)
        for number in range(rng.randint(3, 8)):
            conversation_id = f"demo-{day}-{number}"
            module = rng.choice(MODULES)
            student_id = rng.randint(1, 25)
            started = day_start + timedelta(hours=rng.choice([9, 10, 11, 14, 14, 15, 20]), minutes=rng.randint(0, 50))
            provider, model = rng.choice(MODELS)
            for turn in range(rng.choice([1, 2, 3, 4, 7, 16])):
                timestamp = started + timedelta(seconds=45 * turn)
                if timestamp > now:
                    break
                events.append(InteractionEvent(
                    conversation_id=conversation_id,
                    timestamp=timestamp,
                    message_id=f"{conversation_id}-{turn}",
                    student_id=student_id,
                    module_id=module.id,
                    provider=provider,
                    model_name=model,
                    input_tokens=rng.randint(200, 1500),
                    output_tokens=rng.randint(100, 800),
                    response_time_ms=rng.randint(600, 12000),
                    question=rng.choice(QUESTIONS) if turn == 0 else None,
                ))

    insert_interaction_events(events, db_path=db_path)
    return len(events)
