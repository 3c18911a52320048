"""Error taxonomy and classification for AI provider and vector store failures.

Every failure raised by the embedding provider, the vector store, or the search
path is reduced to an ``ErrorClassification``. The classification decides
whether a failed operation goes to the retry queue and how long to wait first.

Classes:
    AIErrorType: Error kinds shared by the pipeline, search, and retry queue.
    AIFeature: Pipeline that produced a failure; keys the retry dispatch table.
    ErrorClassification: Immutable verdict returned by the classifier.
    RecallError: Base class for errors raised by this service.
    ProviderError: Failure of an external dependency, carrying status/system codes.
    EmbeddingProviderError: Embedding provider failure.
    VectorStoreError: Vector store transport or quota failure.
    AIServiceError: Caller-visible error with a machine-readable reason.
    MessageNotFoundError: Unknown message id.

Functions:
    classify_error(message, status_code, error_code): Apply the classification rules.
    classify_exception(exc): Classify an arbitrary exception.
    classification_for_type(error_type, status_code): Rebuild a classification from a stored type.
    should_retry(classification, attempt): Retry eligibility at a given attempt count.
    calculate_retry_delay(base, attempt): Capped exponential backoff.
    user_message_for(error_type): User-facing message for an error kind.
"""

from __future__ import annotations

import errno
import socket
from dataclasses import dataclass
from enum import Enum
from typing import Optional

MAX_RETRY_ATTEMPTS = 4
MAX_RETRY_DELAY_SECONDS = 8.0


class AIErrorType(str, Enum):
    TIMEOUT = "timeout"
    RATE_LIMIT = "rateLimit"
    SERVICE_UNAVAILABLE = "serviceUnavailable"
    NETWORK_FAILURE = "networkFailure"
    INVALID_REQUEST = "invalidRequest"
    QUOTA_EXCEEDED = "quotaExceeded"
    UNKNOWN = "unknown"


class AIFeature(str, Enum):
    EMBEDDING_GENERATION = "embeddingGeneration"
    SEMANTIC_SEARCH = "semanticSearch"


_RETRY_POLICY: dict[AIErrorType, tuple[bool, float]] = {
    AIErrorType.TIMEOUT: (True, 1.0),
    AIErrorType.RATE_LIMIT: (False, 30.0),
    AIErrorType.SERVICE_UNAVAILABLE: (True, 2.0),
    AIErrorType.NETWORK_FAILURE: (True, 1.0),
    AIErrorType.INVALID_REQUEST: (False, 0.0),
    AIErrorType.QUOTA_EXCEEDED: (False, 0.0),
    AIErrorType.UNKNOWN: (False, 0.0),
}

_USER_MESSAGES: dict[AIErrorType, str] = {
    AIErrorType.TIMEOUT: "I'm having trouble right now. Want to try again?",
    AIErrorType.RATE_LIMIT: "I need a moment to catch up. Try again in 30 seconds?",
    AIErrorType.SERVICE_UNAVAILABLE: "Taking longer than expected. Want to try again in a moment?",
    AIErrorType.NETWORK_FAILURE: "I can't reach my AI assistant right now. Check your connection?",
    AIErrorType.INVALID_REQUEST: "Something doesn't look quite right. Let me know if this keeps happening.",
    AIErrorType.QUOTA_EXCEEDED: "AI features are temporarily limited. I'll be back soon!",
    AIErrorType.UNKNOWN: "Something unexpected happened. Want to try again?",
}

_TIMEOUT_MARKERS = ("timeout", "timed out", "etimedout", "deadline exceeded", "deadline_exceeded")
_NETWORK_CODES = {
    "ECONNREFUSED",
    "ECONNRESET",
    "ECONNABORTED",
    "ENOTFOUND",
    "EAI_AGAIN",
    "EHOSTUNREACH",
    "ENETUNREACH",
    "ENETDOWN",
    "EPIPE",
}
_NETWORK_MARKERS = (
    "connection refused",
    "connection reset",
    "connection aborted",
    "connection error",
    "connectionerror",
    "name or service not known",
    "nodename nor servname",
    "temporary failure in name resolution",
    "network is unreachable",
    "getaddrinfo",
    "socket hang up",
)
_UNAVAILABLE_MARKERS = ("service unavailable", "service_unavailable", "temporarily unavailable")


@dataclass(frozen=True, slots=True)
class ErrorClassification:
    type: AIErrorType
    retryable: bool
    retry_delay_seconds: float
    status_code: Optional[int] = None
    message: str = ""


class RecallError(Exception):
    """Base class for errors raised by the recall service."""


class ProviderError(RecallError):
    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code


class EmbeddingProviderError(ProviderError):
    """Raised when the embedding provider call fails or returns an unusable response."""


class VectorStoreError(ProviderError):
    """Raised when the vector store cannot complete an upsert or query."""


class AIServiceError(RecallError):
    """Caller-visible failure carrying a machine-readable reason string."""

    def __init__(
        self,
        reason: str,
        message: str,
        *,
        classification: Optional[ErrorClassification] = None,
    ) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.classification = classification

    @classmethod
    def invalid_argument(cls, message: str) -> "AIServiceError":
        return cls("invalid-argument", message)

    @classmethod
    def permission_denied(cls, message: str) -> "AIServiceError":
        return cls("permission-denied", message)

    @classmethod
    def not_found(cls, message: str) -> "AIServiceError":
        return cls("not-found", message)

    @classmethod
    def unauthenticated(cls, message: str = "User must be authenticated") -> "AIServiceError":
        return cls("unauthenticated", message)

    @classmethod
    def unavailable(cls, classification: ErrorClassification) -> "AIServiceError":
        return cls("unavailable", user_message_for(classification.type), classification=classification)


class MessageNotFoundError(RecallError):
    def __init__(self, message_id: str) -> None:
        super().__init__(f"Message {message_id} not found")
        self.message_id = message_id


def _make(error_type: AIErrorType, status_code: Optional[int], message: str) -> ErrorClassification:
    retryable, delay = _RETRY_POLICY[error_type]
    return ErrorClassification(
        type=error_type,
        retryable=retryable,
        retry_delay_seconds=delay,
        status_code=status_code,
        message=message,
    )


def _is_timeout(code: str, text: str, status_code: Optional[int]) -> bool:
    if any(marker in code for marker in _TIMEOUT_MARKERS):
        return True
    return status_code is None and any(marker in text for marker in _TIMEOUT_MARKERS)


def _is_network_failure(code: str, text: str) -> bool:
    if code.upper() in _NETWORK_CODES or "connection" in code:
        return True
    return any(marker in text for marker in _NETWORK_MARKERS)


def classify_error(
    message: str = "",
    status_code: Optional[int] = None,
    error_code: Optional[str] = None,
) -> ErrorClassification:
    """Classify a failure from its message, HTTP status, and system error code or name.

    Rules are evaluated in priority order and the first match wins.
    """

    text = (message or "").lower()
    code = (error_code or "").lower()

    if _is_timeout(code, text, status_code):
        return _make(AIErrorType.TIMEOUT, status_code, message)
    if status_code == 429:
        return _make(AIErrorType.RATE_LIMIT, status_code, message)
    if status_code in (500, 503) or any(marker in text for marker in _UNAVAILABLE_MARKERS):
        return _make(AIErrorType.SERVICE_UNAVAILABLE, status_code, message)
    if _is_network_failure(code, text):
        return _make(AIErrorType.NETWORK_FAILURE, status_code, message)
    if status_code == 400:
        return _make(AIErrorType.INVALID_REQUEST, status_code, message)
    if status_code == 402:
        return _make(AIErrorType.QUOTA_EXCEEDED, status_code, message)
    return _make(AIErrorType.UNKNOWN, status_code, message)


def classify_exception(exc: BaseException) -> ErrorClassification:
    """Classify an exception raised by a provider client, the vector store, or the runtime."""

    message = str(exc) or type(exc).__name__
    if isinstance(exc, ProviderError):
        return classify_error(exc.message, exc.status_code, exc.error_code)
    if isinstance(exc, TimeoutError):
        return classify_error(message, None, "TimeoutError")
    if isinstance(exc, socket.gaierror):
        return classify_error(message, None, "ENOTFOUND")
    if isinstance(exc, OSError) and exc.errno is not None:
        return classify_error(message, None, errno.errorcode.get(exc.errno, type(exc).__name__))
    if isinstance(exc, ConnectionError):
        return classify_error(message, None, "ConnectionError")
    status_code = getattr(exc, "status_code", None)
    return classify_error(message, status_code if isinstance(status_code, int) else None, type(exc).__name__)


def classification_for_type(
    error_type: AIErrorType | str,
    status_code: Optional[int] = None,
    message: str = "",
) -> ErrorClassification:
    try:
        kind = AIErrorType(error_type)
    except ValueError:
        kind = AIErrorType.UNKNOWN
    return _make(kind, status_code, message)


def should_retry(classification: ErrorClassification, attempt: int) -> bool:
    return classification.retryable and attempt < MAX_RETRY_ATTEMPTS


def calculate_retry_delay(base: float, attempt: int, cap: float = MAX_RETRY_DELAY_SECONDS) -> float:
    """Exponential backoff ``base * 2**attempt`` capped at ``cap`` seconds."""

    return min(base * (2 ** attempt), cap)


def user_message_for(error_type: AIErrorType | str) -> str:
    try:
        kind = AIErrorType(error_type)
    except ValueError:
        kind = AIErrorType.UNKNOWN
    return _USER_MESSAGES[kind]
