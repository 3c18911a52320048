"""Schemas for the retry queue trigger."""

from __future__ import annotations

from pydantic import BaseModel


class RetrySweepResponse(BaseModel):
    processed: int
    succeeded: int
    failed: int
    skipped: int
