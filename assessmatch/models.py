"""
Data shapes shared by the catalog, vector store, reranker and engine.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional


_DURATION_MINUTES = re.compile(r"(\d+)")
_TEST_TYPE_SPLIT = re.compile(r"[,;/|]")


class ProviderState(str, Enum):
    COLD = "cold"
    WARM = "warm"
    FAILED = "failed"


class EngineState(str, Enum):
    COLD = "cold"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class AssessmentRecord:
    """One catalog entry. Immutable once loaded."""
    id: str
    name: str
    duration: str
    test_type: str
    adaptive_irt: bool
    remote_testing: bool
    url: str
    description: str

    @property
    def duration_minutes(self) -> Optional[int]:
        match = _DURATION_MINUTES.search(self.duration or "")
        return int(match.group(1)) if match else None

    @property
    def test_type_codes(self) -> FrozenSet[str]:
        parts = [p.strip().lower() for p in _TEST_TYPE_SPLIT.split(self.test_type or "")]
        return frozenset(p for p in parts if p)

    def embedding_text(self) -> str:
        """Text used to embed this record."""
        return f"{self.name}. {self.test_type}. {self.description}"


@dataclass
class SearchResult:
    """A similarity hit. `record` is a reference into the store."""
    id: str
    score: float
    record: AssessmentRecord


@dataclass
class RankedRecommendation:
    """A search result with its optional reranker confidence and final rank."""
    result: SearchResult
    rerank_score: Optional[float] = None
    rank: int = 0

    @property
    def id(self) -> str:
        return self.result.id

    @property
    def record(self) -> AssessmentRecord:
        return self.result.record

    @property
    def similarity_score(self) -> float:
        return self.result.score

    @property
    def relevance(self) -> float:
        if self.rerank_score is not None:
            return self.rerank_score
        return min(max(self.result.score, 0.0), 1.0)

    def to_dict(self, precision: int = 4) -> Dict[str, Any]:
        record = self.record
        return {
            "id": record.id,
            "rank": self.rank,
            "Assessment Name": record.name,
            "Duration": record.duration,
            "Test Type": record.test_type,
            "Adaptive/IRT": "Yes" if record.adaptive_irt else "No",
            "Remote Testing": "Yes" if record.remote_testing else "No",
            "URL": record.url,
            "score": round(self.relevance, precision),
            "similarity": round(self.similarity_score, precision),
            "rerankScore": None if self.rerank_score is None else round(self.rerank_score, precision),
        }


def _whole_minutes(value: Any) -> int:
    """Parse a duration limit, refusing fractional minutes rather than rounding them."""
    if isinstance(value, bool):
        raise ValueError(f"maxDuration must be a whole number of minutes, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"maxDuration must be a whole number of minutes, got {value!r}")
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ValueError(f"maxDuration must be a whole number of minutes, got {value!r}")


@dataclass
class RecommendationFilters:
    """Predicate over record attributes, applied during the similarity scan."""
    test_types: List[str] = field(default_factory=list)
    remote_only: bool = False
    adaptive_only: bool = False
    max_duration_minutes: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RecommendationFilters":
        data = data or {}
        test_types = data.get("test_types", data.get("testTypes", []))
        if isinstance(test_types, str):
            test_types = [test_types]
        max_duration = data.get("max_duration_minutes", data.get("maxDuration"))
        return cls(
            test_types=[str(t) for t in test_types],
            remote_only=bool(data.get("remote_only", data.get("remoteOnly", False))),
            adaptive_only=bool(data.get("adaptive_only", data.get("adaptiveOnly", False))),
            max_duration_minutes=_whole_minutes(max_duration) if max_duration is not None else None,
        )

    @property
    def is_empty(self) -> bool:
        return not (self.test_types or self.remote_only or self.adaptive_only
                    or self.max_duration_minutes is not None)

    def matches(self, record: AssessmentRecord) -> bool:
        if self.remote_only and not record.remote_testing:
            return False
        if self.adaptive_only and not record.adaptive_irt:
            return False
        if self.max_duration_minutes is not None:
            minutes = record.duration_minutes
            if minutes is None or minutes > self.max_duration_minutes:
                return False
        if self.test_types:
            wanted = {t.strip().lower() for t in self.test_types if t.strip()}
            codes = record.test_type_codes
            if not (wanted & codes) and record.test_type.strip().lower() not in wanted:
                return False
        return True


@dataclass
class RecommendationOptions:
    max_results: Optional[int] = None
    filters: Optional[RecommendationFilters] = None
    rerank: Optional[bool] = None
    timeout: Optional[float] = None


@dataclass
class RecommendationResponse:
    recommendations: List[RankedRecommendation]
    was_cold_start: bool = False
    reranked: bool = False
    elapsed_ms: float = 0.0
    precision: int = 4

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recommendations": [r.to_dict(self.precision) for r in self.recommendations],
            "wasFirstLoad": self.was_cold_start,
            "reranked": self.reranked,
            "elapsedMs": round(self.elapsed_ms, 1),
        }
