"""Text normalisation, tokenisation, and privacy hashing helpers."""

from __future__ import annotations

import hashlib
import re
import unicodedata

_WHITESPACE_RE = re.compile(r"\s+", re.UNICODE)
_TOKEN_RE = re.compile(r"[a-z0-9][a-z0-9'_-]*", re.UNICODE)

PRIVACY_HASH_LENGTH = 16
PREVIEW_LENGTH = 100


def collapse_whitespace(text: str) -> str:
    """Collapse consecutive whitespace characters into single spaces."""

    if not text:
        return ""
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalise_query(text: str) -> str:
    """Return the NFKC-normalised, whitespace-collapsed form of a search query."""

    return unicodedata.normalize("NFKC", collapse_whitespace(text))


def tokenize(text: str) -> list[str]:
    """Lower-case word tokens with surrounding punctuation stripped."""

    folded = unicodedata.normalize("NFKC", text or "").casefold()
    return [token.strip("'-_") for token in _TOKEN_RE.findall(folded) if token.strip("'-_")]


def preview(text: str, length: int = PREVIEW_LENGTH) -> str:
    return (text or "")[:length]


def hash_for_privacy(value: str) -> str:
    """Deterministic, fixed-length SHA-256 prefix used wherever user data is logged or stored."""

    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()
    return digest[:PRIVACY_HASH_LENGTH]
