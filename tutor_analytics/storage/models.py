"""
Data models for storage layer.

Defines the interaction events read from the event store and the
organizational catalog entities (institutions, courses, modules, pricing).
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, FrozenSet, List, Optional


@dataclass(frozen=True)
class InteractionEvent:
    """Immutable record of one tutoring chat turn.

    Written by the ingestion path and read-only here. Once written,
    these records must never be modified.
    """
    conversation_id: str
    timestamp: datetime  # timezone-aware, UTC
    message_id: str
    student_id: int
    module_id: int
    provider: str
    model_name: str
    input_tokens: int
    output_tokens: int
    response_time_ms: Optional[int] = None
    has_attachment: bool = False
    question: Optional[str] = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class Institution:
    id: int
    name: str


@dataclass(frozen=True)
class Course:
    id: int
    institution_id: int
    name: str


@dataclass(frozen=True)
class Module:
    id: int
    course_id: int
    name: str


@dataclass(frozen=True)
class PricingEntry:
    """Unit economics for one (provider, model) pair."""
    provider: str
    model_name: str
    input_cost_per_million: Decimal  # USD per 1M input tokens
    output_cost_per_million: Decimal  # USD per 1M output tokens
    is_active: bool = True


@dataclass(frozen=True)
class OrganizationalHierarchy:
    """Read-only snapshot of Institution -> Course -> Module.

    Fetched once per request; every lookup is an in-memory dict access.
    """
    institutions: Dict[int, Institution] = field(default_factory=dict)
    courses: Dict[int, Course] = field(default_factory=dict)
    modules: Dict[int, Module] = field(default_factory=dict)

    @classmethod
    def from_entities(
        cls,
        institutions: List[Institution],
        courses: List[Course],
        modules: List[Module],
    ) -> "OrganizationalHierarchy":
        return cls(
            institutions={i.id: i for i in institutions},
            courses={c.id: c for c in courses},
            modules={m.id: m for m in modules},
        )

    def module_ids(self) -> FrozenSet[int]:
        return frozenset(self.modules)

    def modules_in_courses(self, course_ids: FrozenSet[int]) -> FrozenSet[int]:
        return frozenset(m.id for m in self.modules.values() if m.course_id in course_ids)

    def courses_in_institution(self, institution_id: int) -> FrozenSet[int]:
        return frozenset(c.id for c in self.courses.values() if c.institution_id == institution_id)

    def modules_in_institution(self, institution_id: int) -> FrozenSet[int]:
        return self.modules_in_courses(self.courses_in_institution(institution_id))

    def course_of(self, module_id: int) -> Optional[int]:
        module = self.modules.get(module_id)
        return module.course_id if module else None

    def institution_of(self, module_id: int) -> Optional[int]:
        course_id = self.course_of(module_id)
        if course_id is None or course_id not in self.courses:
            return None
        return self.courses[course_id].institution_id
