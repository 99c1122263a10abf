"""API v1 router aggregator."""

from fastapi import APIRouter

from app.api.v1 import access, documents, ledger

router = APIRouter(prefix="/api/v1")
router.include_router(documents.router)
router.include_router(ledger.router)
router.include_router(access.router)
