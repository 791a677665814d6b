"""
In-memory vector store for the assessment catalog.

Records are added during catalog load, then the store is frozen into one
contiguous matrix. Searches are a full linear cosine scan over that matrix;
the catalog holds a few hundred rows, so no approximate index is needed.
A frozen store is never mutated, so concurrent searches need no locking.
"""

from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from .models import AssessmentRecord, SearchResult


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """dot(a, b) / (|a| * |b|), defined as 0 when either vector has zero norm."""
    a = np.asarray(a, dtype=np.float64).reshape(-1)
    b = np.asarray(b, dtype=np.float64).reshape(-1)
    if a.shape != b.shape:
        raise ValueError(f"Dimension mismatch: {a.shape[0]} vs {b.shape[0]}")
    denom = np.linalg.norm(a) * np.linalg.norm(b)
    if denom == 0:
        return 0.0
    return float(np.clip(np.dot(a, b) / denom, -1.0, 1.0))


class VectorStore:
    """Owns one vector and one AssessmentRecord per catalog entry."""

    def __init__(self):
        self._ids: List[str] = []
        self._index: Dict[str, int] = {}
        self._records: List[AssessmentRecord] = []
        self._vectors: List[np.ndarray] = []
        self._matrix: Optional[np.ndarray] = None
        self._norms: Optional[np.ndarray] = None
        self._dimension: Optional[int] = None

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    @property
    def frozen(self) -> bool:
        return self._matrix is not None

    def add(self, id: str, vector: np.ndarray, record: AssessmentRecord) -> None:
        if self.frozen:
            raise RuntimeError("Vector store is frozen; rebuild it to change the catalog")
        if id in self._index:
            raise ValueError(f"Duplicate assessment id: {id}")

        vector = np.array(vector, dtype=np.float32).reshape(-1)
        if vector.size == 0:
            raise ValueError(f"Empty vector for assessment {id}")
        if self._dimension is None:
            self._dimension = int(vector.size)
        elif vector.size != self._dimension:
            raise ValueError(
                f"Vector for {id} has dimension {vector.size}, store expects {self._dimension}"
            )
        vector.flags.writeable = False

        self._index[id] = len(self._ids)
        self._ids.append(id)
        self._records.append(record)
        self._vectors.append(vector)

    def freeze(self) -> "VectorStore":
        """Build the search matrix. No further adds are accepted."""
        if self.frozen:
            return self
        if self._vectors:
            matrix = np.vstack(self._vectors).astype(np.float64)
        else:
            matrix = np.zeros((0, self._dimension or 0), dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1)
        matrix.flags.writeable = False
        norms.flags.writeable = False
        self._norms = norms
        self._matrix = matrix
        return self

    def search_similar(self,
                       query_vector: np.ndarray,
                       top_k: int,
                       predicate: Optional[Callable[[AssessmentRecord], bool]] = None) -> List[SearchResult]:
        """
        Rank stored records by cosine similarity to the query.

        Returns at most top_k results in non-increasing score order; equal
        scores keep catalog insertion order. Zero-norm vectors score 0.
        """
        if isinstance(top_k, bool) or not isinstance(top_k, (int, np.integer)) or top_k <= 0:
            raise ValueError(f"top_k must be a positive integer, got {top_k!r}")
        if not self.frozen:
            raise RuntimeError("Vector store must be frozen before searching")
        if not self._ids:
            return []

        query = np.asarray(query_vector, dtype=np.float64).reshape(-1)
        if query.size != self._dimension:
            raise ValueError(
                f"Query has dimension {query.size}, store expects {self._dimension}"
            )

        query_norm = np.linalg.norm(query)
        denom = self._norms * query_norm
        dots = self._matrix @ query
        scores = np.zeros(len(self._ids), dtype=np.float64)
        np.divide(dots, denom, out=scores, where=denom > 0)
        np.clip(scores, -1.0, 1.0, out=scores)

        candidates = np.arange(len(self._ids))
        if predicate is not None:
            mask = np.fromiter((predicate(r) for r in self._records), dtype=bool, count=len(self._records))
            candidates = candidates[mask]
            if candidates.size == 0:
                return []

        # Stable sort on negated scores: ties stay in insertion order.
        order = candidates[np.argsort(-scores[candidates], kind="stable")]
        return [
            SearchResult(id=self._ids[i], score=float(scores[i]), record=self._records[i])
            for i in order[:int(top_k)]
        ]

    def get(self, id: str) -> Optional[AssessmentRecord]:
        position = self._index.get(id)
        return None if position is None else self._records[position]

    def get_vector(self, id: str) -> Optional[np.ndarray]:
        position = self._index.get(id)
        return None if position is None else self._vectors[position]

    def ids(self) -> Tuple[str, ...]:
        return tuple(self._ids)

    def records(self) -> Tuple[AssessmentRecord, ...]:
        return tuple(self._records)

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, id: str) -> bool:
        return id in self._index
