"""Service layer exports.

Expose the embedding, search, and retry queue services for easy importing.
"""

from .embeddings import EmbeddingGenerator
from .openai_client import OpenAIService
from .pipeline import EmbeddingPipeline, make_embedding_retry_handler
from .retry_queue import FailedRequestStore, RetryQueueProcessor
from .search import SemanticSearchService
from .vector_store import SqlVectorStore, VectorStore

__all__ = [
    "EmbeddingGenerator",
    "OpenAIService",
    "EmbeddingPipeline",
    "make_embedding_retry_handler",
    "FailedRequestStore",
    "RetryQueueProcessor",
    "SemanticSearchService",
    "SqlVectorStore",
    "VectorStore",
]
