"""Clearance decision schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from app.services.clearance.evaluator import ClearanceVerdict


class AccessDecisionOut(BaseModel):
    user_identity: str
    verdict: ClearanceVerdict
    granted_level: str | None
    decided_at: datetime
    ledger_index: int

    model_config = {"from_attributes": True}
