"""Convenience exports for API schemas.

Re-exports the pydantic models used across the backend so consumers can import from one module.
"""

from .embedding import (
    ChatContext,
    GenerateEmbeddingRequest,
    GenerateEmbeddingResponse,
    LengthCategory,
    MessageCreatedAccepted,
    MessageCreatedEvent,
    SearchableMetadata,
)
from .retry import RetrySweepResponse
from .search import (
    SearchErrorDetail,
    SearchResult,
    SemanticSearchRequest,
    SemanticSearchResponse,
)

__all__ = [
    "ChatContext",
    "GenerateEmbeddingRequest",
    "GenerateEmbeddingResponse",
    "LengthCategory",
    "MessageCreatedAccepted",
    "MessageCreatedEvent",
    "SearchableMetadata",
    "RetrySweepResponse",
    "SearchErrorDetail",
    "SearchResult",
    "SemanticSearchRequest",
    "SemanticSearchResponse",
]
