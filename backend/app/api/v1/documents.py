"""Document registry and integrity verification endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, File, Query, UploadFile

from app.api.deps import Custody
from app.core.errors import ValidationError
from app.schemas.document import (
    DiscrepancyOut,
    DocumentListResponse,
    DocumentOut,
    DocumentSubmitResponse,
    ReconcileResponse,
    VerificationResultOut,
    VerificationSweepResponse,
)
from app.services.integrity.verifier import VerificationOutcome

router = APIRouter(prefix="/documents", tags=["documents"])


@router.post(
    "",
    response_model=DocumentSubmitResponse,
    status_code=201,
    summary="Upload and register a document",
)
async def submit_document(
    file: Annotated[UploadFile, File(description="Document to take into custody")],
    custody: Custody,
) -> DocumentSubmitResponse:
    """
    Store the uploaded bytes, fingerprint them and register the document.

    The original filename is recorded as supplied but never used as a path.
    """
    if not file.filename:
        raise ValidationError("Uploaded file must have a filename")

    receipt = await custody.submit_document(file.filename, file.file)
    return DocumentSubmitResponse.model_validate(receipt)


@router.get(
    "",
    response_model=DocumentListResponse,
    summary="List the fingerprint registry",
)
async def list_documents(custody: Custody) -> DocumentListResponse:
    """Return every registered document in registration order."""
    records = await custody.fetch_registry()
    items = [DocumentOut.model_validate(r) for r in records]
    return DocumentListResponse(items=items, total=len(items))


@router.post(
    "/verify",
    response_model=VerificationSweepResponse,
    summary="Verify every registered document",
)
async def verify_all_documents(custody: Custody) -> VerificationSweepResponse:
    results = [VerificationResultOut.model_validate(r) for r in await custody.verify_all()]
    return VerificationSweepResponse(
        items=results,
        total=len(results),
        matched=sum(r.result == VerificationOutcome.MATCH for r in results),
        mismatched=sum(r.result == VerificationOutcome.MISMATCH for r in results),
        missing=sum(r.result == VerificationOutcome.MISSING for r in results),
    )


@router.post(
    "/reconcile",
    response_model=ReconcileResponse,
    summary="Compare registry statuses against the audit ledger",
)
async def reconcile_registry(
    custody: Custody,
    repair: bool = Query(default=False, description="Apply the ledger verdict to stale records"),
) -> ReconcileResponse:
    discrepancies = await custody.reconcile(repair=repair)
    return ReconcileResponse(
        items=[DiscrepancyOut.model_validate(d) for d in discrepancies],
        total=len(discrepancies),
        repaired=repair,
    )


@router.get(
    "/{document_id}",
    response_model=DocumentOut,
    summary="Get a registered document",
)
async def get_document(document_id: str, custody: Custody) -> DocumentOut:
    return DocumentOut.model_validate(await custody.fetch_document(document_id))


@router.post(
    "/{document_id}/verify",
    response_model=VerificationResultOut,
    summary="Verify one document's integrity",
)
async def verify_document(document_id: str, custody: Custody) -> VerificationResultOut:
    """
    Recompute the document's fingerprint and compare with the registry.

    MATCH and MISMATCH are both successful verifications; unreadable
    content is answered with a MissingContent error after being recorded.
    """
    result = await custody.request_verification(document_id)
    return VerificationResultOut.model_validate(result)
