"""Convenience exports for ORM models.

Surface frequently used SQLModel classes so calling code can import them from a single module.
"""

from .embedding_record import EmbeddingRecord
from .failed_request import FailedAIRequest, RetryResolution
from .message import ChatMember, ChatMessage

__all__ = [
    "EmbeddingRecord",
    "FailedAIRequest",
    "RetryResolution",
    "ChatMember",
    "ChatMessage",
]
