"""Message embedding generation and searchable metadata derivation.

Classes:
    EmbeddingProvider: Protocol implemented by ``OpenAIService`` and test doubles.
    EmbeddingGenerator: Turns message text into a provider vector and derives lightweight metadata.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from typing import Iterable, Optional, Protocol

from sklearn.feature_extraction.text import ENGLISH_STOP_WORDS

from chat_recall.core.config import Settings, get_settings
from chat_recall.schemas import ChatContext, LengthCategory, SearchableMetadata
from chat_recall.services.errors import EmbeddingProviderError
from chat_recall.services.openai_client import EmbeddingBatch
from chat_recall.utils.text import tokenize

_LOGGER = logging.getLogger(__name__)

METADATA_VERSION = "1.1"
MAX_KEYWORDS = 8

_EXTRA_STOP_WORDS = frozenset({"just", "ok", "okay", "yeah", "yes", "hey", "hi", "thanks", "thank", "pls", "plz"})
_DECISION_PATTERNS = (
    r"\bwe (?:decided|agreed|will go with|are going with)\b",
    r"\b(?:decided|decision|agreed|approved|final answer|let'?s go with|signed off)\b",
    r"\b(?:should we|can we decide|need a decision|your call)\b",
)
_ACTION_PATTERNS = (
    r"\b(?:please|pls|plz)\s+\w+",
    r"\b(?:can|could|would) you\b",
    r"\b(?:todo|to-do|action item|follow up|follow-up)\b",
    r"\b(?:by|before|due)\s+(?:eod|end of day|tomorrow|today|monday|tuesday|wednesday|thursday|friday|next week)\b",
    r"\b(?:need to|needs to|make sure|remember to|don'?t forget)\b",
)
_URGENCY_TERMS = ("urgent", "asap", "immediately", "emergency", "critical", "important", "right away", "deadline")


class EmbeddingProvider(Protocol):
    async def embed_texts(self, texts: Iterable[str], **kwargs) -> EmbeddingBatch:
        ...


class EmbeddingGenerator:
    def __init__(
        self,
        provider: EmbeddingProvider,
        *,
        dimensions: Optional[int] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._provider = provider
        self._settings = settings or get_settings()
        self._dimensions = dimensions if dimensions is not None else self._settings.embedding_dimensions

    @property
    def dimensions(self) -> int:
        return self._dimensions

    async def embed(self, text: str) -> list[float]:
        """Return the provider vector for ``text``.

        No normalisation happens here; the vector store decides how to scale vectors
        for its similarity metric.

        Raises:
            EmbeddingProviderError: the provider failed or returned an unusable vector.
        """

        batch = await self._provider.embed_texts([text])
        if not batch.vectors:
            raise EmbeddingProviderError("No embedding data returned from provider")
        vector = [float(value) for value in batch.vectors[0]]
        if self._dimensions and len(vector) != self._dimensions:
            raise EmbeddingProviderError(
                f"Invalid embedding dimensions: expected {self._dimensions}, got {len(vector)}"
            )
        return vector

    def derive_metadata(self, text: str, chat_context: Optional[ChatContext] = None) -> SearchableMetadata:
        """Best-effort metadata; returns an empty ``SearchableMetadata`` instead of raising."""

        try:
            return self._derive(text, chat_context)
        except Exception:  # metadata is optional enrichment
            _LOGGER.warning("Metadata derivation failed; using defaults", exc_info=True)
            return SearchableMetadata(extraction_version=METADATA_VERSION)

    def _derive(self, text: str, chat_context: Optional[ChatContext]) -> SearchableMetadata:
        lowered = (text or "").casefold()

        participants: list[str] = []
        if chat_context is not None:
            candidates = [*chat_context.member_ids]
            if chat_context.sender_id:
                candidates.append(chat_context.sender_id)
            participants = sorted({member for member in candidates if member})

        urgency = [term for term in _URGENCY_TERMS if re.search(rf"\b{re.escape(term)}\b", lowered)]

        return SearchableMetadata(
            keywords=extract_keywords(lowered),
            participants=participants,
            decision_made=_matches_any(_DECISION_PATTERNS, lowered),
            has_action_item=_matches_any(_ACTION_PATTERNS, lowered),
            urgency_indicators=urgency,
            contains_questions="?" in lowered,
            length_category=_length_category(text or ""),
            extraction_version=METADATA_VERSION,
        )


def extract_keywords(text: str, limit: int = MAX_KEYWORDS) -> list[str]:
    """Most frequent non-stop-word terms, ties broken by first appearance."""

    tokens = [
        token
        for token in tokenize(text)
        if len(token) > 2
        and token[0].isalpha()
        and token not in ENGLISH_STOP_WORDS
        and token not in _EXTRA_STOP_WORDS
    ]
    counts = Counter(tokens)
    first_seen = {token: index for index, token in reversed(list(enumerate(tokens)))}
    ranked = sorted(counts, key=lambda token: (-counts[token], first_seen[token]))
    return ranked[:limit]


def _matches_any(patterns: tuple[str, ...], text: str) -> bool:
    return any(re.search(pattern, text) for pattern in patterns)


def _length_category(text: str) -> LengthCategory:
    length = len(text)
    if length < 50:
        return LengthCategory.SHORT
    if length <= 200:
        return LengthCategory.MEDIUM
    return LengthCategory.LONG
