"""Document registry and verification Pydantic schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, field_validator

from app.db.base import as_utc
from app.db.models.document import DocumentStatus
from app.services.integrity.verifier import VerificationOutcome


class DocumentSubmitResponse(BaseModel):
    document_id: str
    filename: str
    fingerprint: str
    algorithm: str
    registered_at: datetime

    model_config = {"from_attributes": True}


class DocumentOut(BaseModel):
    document_id: str
    filename: str
    storage_location: str
    fingerprint: str
    algorithm: str
    registered_at: datetime
    last_verified: datetime | None
    status: DocumentStatus

    model_config = {"from_attributes": True}

    @field_validator("registered_at", "last_verified")
    @classmethod
    def _times_utc(cls, v: datetime | None) -> datetime | None:
        return None if v is None else as_utc(v)


class DocumentListResponse(BaseModel):
    items: list[DocumentOut]
    total: int


class VerificationResultOut(BaseModel):
    document_id: str
    result: VerificationOutcome
    algorithm: str
    expected_fingerprint: str
    actual_fingerprint: str | None
    verified_at: datetime
    ledger_index: int
    reason: str | None = None

    model_config = {"from_attributes": True}


class VerificationSweepResponse(BaseModel):
    items: list[VerificationResultOut]
    total: int
    matched: int
    mismatched: int
    missing: int


class DiscrepancyOut(BaseModel):
    document_id: str
    recorded_status: DocumentStatus
    ledger_status: DocumentStatus
    ledger_index: int
    repaired: bool

    model_config = {"from_attributes": True}


class ReconcileResponse(BaseModel):
    items: list[DiscrepancyOut]
    total: int
    repaired: bool
