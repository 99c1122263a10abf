"""Audit ledger schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from app.db.base import as_utc


class LedgerEntryOut(BaseModel):
    """
    A ledger entry as stored.

    ``timestamp`` and ``payload`` are null when the stored value cannot be
    decoded; ``payload_json`` always carries the raw stored text.
    """

    index: int
    timestamp: datetime | None
    event_type: str
    payload: Any | None
    payload_json: str
    previous_hash: str
    entry_hash: str

    model_config = {"from_attributes": True}

    @field_validator("timestamp")
    @classmethod
    def _timestamp_utc(cls, v: datetime | None) -> datetime | None:
        return None if v is None else as_utc(v)


class LedgerListResponse(BaseModel):
    items: list[LedgerEntryOut]
    total: int


class ChainVerificationOut(BaseModel):
    valid: bool
    total_entries: int
    broken_at_index: int | None = Field(
        default=None, description="Index of the first entry whose hash or link fails"
    )
    reason: str | None = None
    message: str
