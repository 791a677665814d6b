"""
Error types raised by the AssessMatch matching engine.

Only InvalidInput, EmbeddingUnavailable and RecommendationTimeout end a
recommendation request. RerankUnavailable is recovered inside the engine.
"""

from typing import Optional


class AssessMatchError(Exception):
    """Base class for all AssessMatch errors."""


class InvalidInput(AssessMatchError, ValueError):
    """Job description text is empty, too long, or otherwise unusable."""


class MalformedCatalog(AssessMatchError):
    """The assessment catalog cannot be parsed into complete records."""

    def __init__(self, message: str, row: Optional[int] = None, field: Optional[str] = None):
        self.row = row
        self.field = field
        location = []
        if row is not None:
            location.append(f"row {row}")
        if field is not None:
            location.append(f"field '{field}'")
        if location:
            message = f"{message} ({', '.join(location)})"
        super().__init__(message)


class EmbeddingUnavailable(AssessMatchError):
    """The embedding backend failed (model load, network, quota)."""


class RerankUnavailable(AssessMatchError):
    """The reranking backend failed or returned an unusable judgment."""


class RecommendationTimeout(AssessMatchError, TimeoutError):
    """The whole-request deadline elapsed before a result was produced."""


class ServiceNotReady(AssessMatchError):
    """The catalog is still loading and the caller chose not to wait."""
