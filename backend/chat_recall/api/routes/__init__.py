"""Route exports for the API layer.

Re-exports each router so callers can include all endpoints with a single import.
"""

from .embeddings import router as embeddings_router
from .retry_queue import router as retry_queue_router
from .search import router as search_router

__all__ = ["embeddings_router", "retry_queue_router", "search_router"]
