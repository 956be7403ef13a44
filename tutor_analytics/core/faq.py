"""
Frequently-asked-question clustering.

Groups student questions whose normalized token sets overlap (Jaccard
similarity) into clusters represented by their most frequent literal
phrasing. Output is deterministic for a given input.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional, Sequence

DEFAULT_SIMILARITY_THRESHOLD = 0.6
MAX_VARIATIONS = 5

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")
_QUIZ_ANSWER = re.compile(r"^(LETRA\s)?[A-E][\)\.]*$")

# Whole-word keyword rules, first match wins (English, Portuguese, Spanish)
_CATEGORY_RULES = [
    ("How-To", ("how", "como")),
    ("Definition", ("what", "que é", "qué es")),
    ("Explanation", ("why", "por que", "por qué")),
    ("Timing", ("when", "quando", "cuándo")),
    ("Example", ("example", "exemplo", "ejemplo")),
]


def normalize_question(text: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""
    lowered = _PUNCTUATION.sub(" ", text.lower()).replace("_", " ")
    return _WHITESPACE.sub(" ", lowered).strip()


def is_quiz_answer(text: str) -> bool:
    """True for bare multiple-choice answers such as 'A', 'b.', 'C)' or 'LETRA D'."""
    if not text or not text.strip():
        return False
    trimmed = text.strip().upper()
    if len(trimmed) == 1 and trimmed.isalpha():
        return True
    if len(trimmed) == 2 and trimmed[0].isalpha() and trimmed[1] == ".":
        return True
    return bool(_QUIZ_ANSWER.match(trimmed))


def jaccard(a: FrozenSet[str], b: FrozenSet[str]) -> float:
    if not a and not b:
        return 0.0
    return len(a & b) / len(a | b)


def categorize_question(text: str) -> str:
    padded = f" {normalize_question(text)} "
    for category, keywords in _CATEGORY_RULES:
        if any(f" {keyword} " in padded for keyword in keywords):
            return category
    return "General"


@dataclass(frozen=True)
class FaqCluster:
    """A group of similar questions."""
    representative: str
    count: int
    variations: tuple
    category: str
    first_asked_at: Optional[datetime] = None
    last_asked_at: Optional[datetime] = None


class _Phrasing:
    """All occurrences sharing one normalized form."""

    def __init__(self, normalized: str):
        self.normalized = normalized
        self.tokens = frozenset(normalized.split())
        self.literals: Dict[str, int] = {}
        self.first: Optional[datetime] = None
        self.last: Optional[datetime] = None

    @property
    def count(self) -> int:
        return sum(self.literals.values())

    def add(self, literal: str, asked_at: Optional[datetime]) -> None:
        self.literals[literal] = self.literals.get(literal, 0) + 1
        if asked_at is not None:
            self.first = asked_at if self.first is None else min(self.first, asked_at)
            self.last = asked_at if self.last is None else max(self.last, asked_at)


class FaqClusterer:
    """Jaccard-based question clusterer."""

    def __init__(self, similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD):
        if not 0 < similarity_threshold <= 1:
            raise ValueError("similarity_threshold must be in (0, 1]")
        self.similarity_threshold = similarity_threshold

    def cluster(
        self,
        questions: Sequence[str],
        min_occurrences: int = 1,
        max_results: int = 10,
        asked_at: Optional[Sequence[datetime]] = None,
    ) -> List[FaqCluster]:
        """Cluster questions and return the most frequent groups.

        Two questions join the same cluster when the Jaccard similarity of
        their token sets exceeds the threshold; membership is
        transitive. Blank questions and quiz answers are ignored.

        Args:
            questions: Raw question texts
            min_occurrences: Minimum cluster size to keep
            max_results: Maximum clusters to return
            asked_at: Optional timestamps parallel to questions

        Returns:
            Clusters ordered by count desc, then representative text

        Raises:
            ValueError: If limits are invalid or asked_at length differs
        """
        if min_occurrences < 1:
            raise ValueError("min_occurrences must be >= 1")
        if max_results < 1:
            raise ValueError("max_results must be >= 1")
        if asked_at is not None and len(asked_at) != len(questions):
            raise ValueError("asked_at must be parallel to questions")

        phrasings: Dict[str, _Phrasing] = {}
        for index, question in enumerate(questions):
            if not question or is_quiz_answer(question):
                continue
            normalized = normalize_question(question)
            if not normalized:
                continue
            phrasing = phrasings.setdefault(normalized, _Phrasing(normalized))
            phrasing.add(question.strip(), asked_at[index] if asked_at is not None else None)

        # Stable order before clustering keeps assignments reproducible
        ordered = [phrasings[key] for key in sorted(phrasings)]
        roots = self._link(ordered)

        members: Dict[int, List[_Phrasing]] = {}
        for index, phrasing in enumerate(ordered):
            members.setdefault(roots[index], []).append(phrasing)

        clusters = [_build_cluster(group) for _, group in sorted(members.items())]
        clusters = [c for c in clusters if c.count >= min_occurrences]
        clusters.sort(key=lambda c: (-c.count, c.representative))
        return clusters[:max_results]

    def _link(self, ordered: List[_Phrasing]) -> List[int]:
        parent = list(range(len(ordered)))

        def find(i: int) -> int:
            while parent[i] != i:
                parent[i] = parent[parent[i]]
                i = parent[i]
            return i

        # Only phrasings sharing a token can be similar
        by_token: Dict[str, List[int]] = {}
        for index, phrasing in enumerate(ordered):
            for token in phrasing.tokens:
                by_token.setdefault(token, []).append(index)

        for i, phrasing in enumerate(ordered):
            candidates = sorted({j for token in phrasing.tokens for j in by_token[token] if j > i})
            for j in candidates:
                if jaccard(phrasing.tokens, ordered[j].tokens) > self.similarity_threshold:
                    root_i, root_j = find(i), find(j)
                    if root_i != root_j:
                        parent[max(root_i, root_j)] = min(root_i, root_j)

        return [find(i) for i in range(len(ordered))]


def _build_cluster(group: List[_Phrasing]) -> FaqCluster:
    literals: Dict[str, int] = {}
    for phrasing in group:
        for literal, count in phrasing.literals.items():
            literals[literal] = literals.get(literal, 0) + count

    ranked = sorted(literals.items(), key=lambda kv: (-kv[1], kv[0]))
    representative = ranked[0][0]
    firsts = [p.first for p in group if p.first is not None]
    lasts = [p.last for p in group if p.last is not None]

    return FaqCluster(
        representative=representative,
        count=sum(literals.values()),
        variations=tuple(literal for literal, _ in ranked[:MAX_VARIATIONS]),
        category=categorize_question(representative),
        first_asked_at=min(firsts) if firsts else None,
        last_asked_at=max(lasts) if lasts else None,
    )
