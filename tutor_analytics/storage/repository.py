"""
Schema management and write helpers.

The engine itself only reads; these writers exist for the local SQLite
deployment, demo seeding and tests.
"""

from typing import Iterable, List

from .db import DEFAULT_DB_PATH, get_connection
from .models import Course, Institution, InteractionEvent, Module, PricingEntry

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS institution (
        id INTEGER PRIMARY KEY,
        name TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS course (
        id INTEGER PRIMARY KEY,
        institution_id INTEGER NOT NULL REFERENCES institution(id),
        name TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS module (
        id INTEGER PRIMARY KEY,
        course_id INTEGER NOT NULL REFERENCES course(id),
        name TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS instructor_course (
        instructor_id TEXT NOT NULL,
        course_id INTEGER NOT NULL REFERENCES course(id),
        PRIMARY KEY (instructor_id, course_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS pricing (
        provider TEXT NOT NULL,
        model_name TEXT NOT NULL,
        input_cost_per_million TEXT NOT NULL,
        output_cost_per_million TEXT NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 1,
        PRIMARY KEY (provider, model_name)
    )
    """,
    # Append-only event ledger; input/output tokens may be NULL for legacy
    # rows that only carry a combined token_count.
    """
    CREATE TABLE IF NOT EXISTS interaction_event (
        message_id TEXT PRIMARY KEY,
        conversation_id TEXT NOT NULL,
        timestamp_ms INTEGER NOT NULL,
        student_id INTEGER NOT NULL,
        module_id INTEGER NOT NULL,
        provider TEXT NOT NULL,
        model_name TEXT NOT NULL,
        input_tokens INTEGER,
        output_tokens INTEGER,
        token_count INTEGER,
        response_time_ms INTEGER,
        has_attachment INTEGER NOT NULL DEFAULT 0,
        question TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_event_module ON interaction_event (module_id, timestamp_ms)",
    "CREATE INDEX IF NOT EXISTS idx_event_student ON interaction_event (student_id, timestamp_ms)",
    "CREATE INDEX IF NOT EXISTS idx_event_provider ON interaction_event (provider, timestamp_ms)",
]


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create catalog and event tables if they don't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        for statement in _SCHEMA:
            conn.execute(statement)
        conn.commit()
    finally:
        conn.close()


def _event_row(event: InteractionEvent) -> tuple:
    return (
        event.message_id,
        event.conversation_id,
        int(event.timestamp.timestamp() * 1000),
        event.student_id,
        event.module_id,
        event.provider,
        event.model_name,
        event.input_tokens,
        event.output_tokens,
        event.total_tokens,
        event.response_time_ms,
        1 if event.has_attachment else 0,
        event.question,
    )


def insert_interaction_events(events: List[InteractionEvent], db_path: str = DEFAULT_DB_PATH) -> None:
    """Insert multiple interaction events atomically into the append-only ledger.

    All events are inserted in a single transaction. Events whose
    message_id is already stored are skipped, so replays are harmless.

    Args:
        events: List of events to record
        db_path: Path to SQLite database file
    """
    if not events:
        return

    conn = get_connection(db_path)
    try:
        conn.execute("BEGIN TRANSACTION")
        conn.executemany("""
            INSERT OR IGNORE INTO interaction_event
            (message_id, conversation_id, timestamp_ms, student_id, module_id,
             provider, model_name, input_tokens, output_tokens, token_count,
             response_time_ms, has_attachment, question)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, [_event_row(e) for e in events])
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def insert_legacy_event(
    message_id: str,
    conversation_id: str,
    timestamp_ms: int,
    student_id: int,
    module_id: int,
    provider: str,
    model_name: str,
    token_count: int,
    db_path: str = DEFAULT_DB_PATH,
) -> None:
    """Insert an event that only carries a combined token count."""
    conn = get_connection(db_path)
    try:
        conn.execute("""
            INSERT INTO interaction_event
            (message_id, conversation_id, timestamp_ms, student_id, module_id,
             provider, model_name, token_count)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (message_id, conversation_id, timestamp_ms, student_id, module_id,
              provider, model_name, token_count))
        conn.commit()
    finally:
        conn.close()


def save_catalog(
    institutions: Iterable[Institution] = (),
    courses: Iterable[Course] = (),
    modules: Iterable[Module] = (),
    db_path: str = DEFAULT_DB_PATH,
) -> None:
    """Insert or replace catalog entities in one transaction.

    Args:
        institutions: Institutions to store
        courses: Courses to store (their institution must exist)
        modules: Modules to store (their course must exist)
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("BEGIN TRANSACTION")
        conn.executemany(
            "INSERT OR REPLACE INTO institution (id, name) VALUES (?, ?)",
            [(i.id, i.name) for i in institutions],
        )
        conn.executemany(
            "INSERT OR REPLACE INTO course (id, institution_id, name) VALUES (?, ?, ?)",
            [(c.id, c.institution_id, c.name) for c in courses],
        )
        conn.executemany(
            "INSERT OR REPLACE INTO module (id, course_id, name) VALUES (?, ?, ?)",
            [(m.id, m.course_id, m.name) for m in modules],
        )
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def assign_courses(instructor_id: str, course_ids: Iterable[int], db_path: str = DEFAULT_DB_PATH) -> None:
    """Assign courses to an instructor."""
    conn = get_connection(db_path)
    try:
        conn.executemany(
            "INSERT OR IGNORE INTO instructor_course (instructor_id, course_id) VALUES (?, ?)",
            [(instructor_id, course_id) for course_id in course_ids],
        )
        conn.commit()
    finally:
        conn.close()


def save_pricing(entries: Iterable[PricingEntry], db_path: str = DEFAULT_DB_PATH) -> None:
    """Insert or replace pricing entries.

    Costs are stored as TEXT so Decimal values round-trip exactly.
    """
    conn = get_connection(db_path)
    try:
        conn.executemany("""
            INSERT OR REPLACE INTO pricing
            (provider, model_name, input_cost_per_million, output_cost_per_million, is_active)
            VALUES (?, ?, ?, ?, ?)
        """, [
            (e.provider, e.model_name, str(e.input_cost_per_million),
             str(e.output_cost_per_million), 1 if e.is_active else 0)
            for e in entries
        ])
        conn.commit()
    finally:
        conn.close()
