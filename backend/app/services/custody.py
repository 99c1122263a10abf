"""
Custody service: the boundary the HTTP layer calls into.

Wires the content store, fingerprint generator, registry, ledger,
verifier and clearance evaluator together and exposes the operations
consumers see (submit, verify, clear, fetch).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import BinaryIO

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config.settings import Settings
from app.db.base import as_utc
from app.db.models.document import DocumentRecord
from app.services.audit.ledger import AuditLedger, ChainVerification, StoredEntry
from app.services.clearance.authority import (
    CircuitBreaker,
    ClearanceAuthority,
    HttpClearanceAuthority,
    StaticClearanceAuthority,
)
from app.services.clearance.evaluator import AccessDecision, ClearanceEvaluator
from app.services.fingerprint.generator import fingerprint_file_async
from app.services.integrity.verifier import Discrepancy, IntegrityVerifier, VerificationResult
from app.services.registry.store import FingerprintRegistry
from app.services.storage.content_store import ContentStore

_log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SubmissionReceipt:
    document_id: str
    filename: str
    fingerprint: str
    algorithm: str
    registered_at: datetime


def build_authority(settings: Settings) -> ClearanceAuthority:
    """Pick the clearance authority client the settings describe."""
    if settings.clearance_authority_url is None:
        return StaticClearanceAuthority(settings.clearance_table)
    return HttpClearanceAuthority(
        base_url=str(settings.clearance_authority_url),
        timeout_seconds=settings.clearance_timeout_seconds,
        max_retries=settings.clearance_max_retries,
        backoff_seconds=settings.clearance_retry_backoff_seconds,
        circuit=CircuitBreaker(
            threshold=settings.clearance_circuit_breaker_threshold,
            timeout_seconds=settings.clearance_circuit_breaker_timeout_seconds,
        ),
    )


class CustodyService:
    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        authority: ClearanceAuthority | None = None,
    ) -> None:
        self._settings = settings
        self.content = ContentStore(settings.storage_dir, settings.max_upload_size_bytes)
        self.registry = FingerprintRegistry(session_factory, settings.fingerprint_algorithm)
        self.ledger = AuditLedger(session_factory)
        self.verifier = IntegrityVerifier(
            self.registry,
            self.ledger,
            self.content,
            chunk_size=settings.fingerprint_chunk_size,
            read_timeout=settings.content_read_timeout_seconds,
        )
        self.clearance = ClearanceEvaluator(authority or build_authority(settings), self.ledger)

    async def submit_document(self, filename: str, stream: BinaryIO) -> SubmissionReceipt:
        """Store, fingerprint and register an uploaded document."""
        stored = await self.content.save(filename, stream)
        try:
            fingerprint = await fingerprint_file_async(
                self.content.resolve(stored.location),
                algorithm=self.registry.algorithm,
                chunk_size=self._settings.fingerprint_chunk_size,
                timeout=self._settings.content_read_timeout_seconds,
            )
            document_id = await self.registry.register(
                filename=filename,
                storage_location=stored.location,
                fingerprint=fingerprint,
                algorithm=self.registry.algorithm,
            )
        except Exception:
            await self.content.discard(stored.location)
            raise

        record = await self.registry.get(document_id)
        _log.info(
            "document_submitted",
            document_id=document_id,
            size_bytes=stored.size_bytes,
        )
        return SubmissionReceipt(
            document_id=record.document_id,
            filename=record.filename,
            fingerprint=record.fingerprint,
            algorithm=record.algorithm,
            registered_at=as_utc(record.registered_at),
        )

    async def request_verification(self, document_id: str) -> VerificationResult:
        return await self.verifier.verify(document_id)

    async def verify_all(self) -> list[VerificationResult]:
        return await self.verifier.verify_all()

    async def reconcile(self, repair: bool = False) -> list[Discrepancy]:
        return await self.verifier.reconcile(repair=repair)

    async def request_clearance(self, user_identity: str) -> AccessDecision:
        return await self.clearance.evaluate(user_identity)

    async def fetch_ledger(self) -> list[StoredEntry]:
        return await self.ledger.read_stored()

    async def verify_ledger(self, strict: bool = False) -> ChainVerification:
        if strict:
            return await self.ledger.ensure_intact()
        return await self.ledger.verify_chain()

    async def fetch_registry(self) -> list[DocumentRecord]:
        return await self.registry.list_all()

    async def fetch_document(self, document_id: str) -> DocumentRecord:
        return await self.registry.get(document_id)
