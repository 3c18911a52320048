"""API router composition for the backend.

The module assembles individual route groups into a single `api_router` that can be mounted on the app.
"""

from fastapi import APIRouter

from chat_recall.api.routes import embeddings_router, retry_queue_router, search_router

api_router = APIRouter()
api_router.include_router(search_router)
api_router.include_router(embeddings_router)
api_router.include_router(retry_queue_router)

__all__ = ["api_router"]
