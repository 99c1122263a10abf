"""Audit ledger endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Query

from app.api.deps import Custody
from app.schemas.ledger import ChainVerificationOut, LedgerEntryOut, LedgerListResponse

router = APIRouter(prefix="/ledger", tags=["ledger"])


@router.get(
    "",
    response_model=LedgerListResponse,
    summary="List ledger entries",
)
async def list_ledger_entries(custody: Custody) -> LedgerListResponse:
    """Return the whole ledger in index order, including rows that no longer decode."""
    entries = await custody.fetch_ledger()
    return LedgerListResponse(
        items=[LedgerEntryOut.model_validate(e) for e in entries],
        total=len(entries),
    )


@router.get(
    "/verify",
    response_model=ChainVerificationOut,
    summary="Verify ledger hash chain integrity",
)
async def verify_ledger(
    custody: Custody,
    strict: bool = Query(default=False, description="Answer a broken chain with 409"),
) -> ChainVerificationOut:
    """
    Cryptographically verify the ledger hash chain.

    Returns whether the chain is intact and, if not, the index of the
    first broken entry. A broken chain is reported, never repaired.
    """
    verification = await custody.verify_ledger(strict=strict)
    return ChainVerificationOut(
        valid=verification.valid,
        total_entries=verification.total_entries,
        broken_at_index=verification.broken_at_index,
        reason=verification.reason,
        message=(
            "Chain is intact."
            if verification.valid
            else f"Chain broken at index {verification.broken_at_index}."
        ),
    )
