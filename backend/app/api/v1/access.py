"""Clearance endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from app.api.deps import Custody
from app.schemas.access import AccessDecisionOut

router = APIRouter(prefix="/access", tags=["access"])


@router.post(
    "/{user_identity}",
    response_model=AccessDecisionOut,
    summary="Evaluate and record clearance for a user",
)
async def request_clearance(user_identity: str, custody: Custody) -> AccessDecisionOut:
    """
    Ask the clearance authority for a verdict and record it in the ledger.

    Granted and denied verdicts both return 200. When the authority cannot
    be reached an INDETERMINATE decision is recorded and 503 is returned.
    """
    decision = await custody.request_clearance(user_identity)
    return AccessDecisionOut.model_validate(decision)
