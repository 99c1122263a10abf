"""
Integrity verification.

Recomputes the fingerprint of a registered document's stored bytes and
compares it with the fingerprint recorded at registration. Every call
appends exactly one INTEGRITY_CHECK entry to the audit ledger before the
registry status is updated, so the ledger is always the authoritative
record; ``reconcile`` re-applies it to the registry when the two drift
apart after a crash between the two writes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

import structlog

from app.core.errors import ContentMissingError, ContentReadError, MissingContentError
from app.core.metrics import VERIFICATIONS
from app.db.base import as_utc
from app.db.models.document import DocumentRecord, DocumentStatus
from app.db.models.ledger import LedgerEntry, LedgerEventType
from app.services.audit.ledger import AuditLedger
from app.services.fingerprint.generator import DEFAULT_CHUNK_SIZE, fingerprint_file_async
from app.services.registry.store import FingerprintRegistry
from app.services.storage.content_store import ContentStore

_log = structlog.get_logger(__name__)


class VerificationOutcome(StrEnum):
    MATCH = "MATCH"
    MISMATCH = "MISMATCH"
    MISSING = "MISSING"


_STATUS_FOR_OUTCOME = {
    VerificationOutcome.MATCH: DocumentStatus.VERIFIED,
    VerificationOutcome.MISMATCH: DocumentStatus.MISMATCH,
    VerificationOutcome.MISSING: DocumentStatus.MISSING,
}


@dataclass(frozen=True)
class VerificationResult:
    document_id: str
    result: VerificationOutcome
    algorithm: str
    expected_fingerprint: str
    actual_fingerprint: str | None
    verified_at: datetime
    ledger_index: int
    reason: str | None = None


@dataclass(frozen=True)
class Discrepancy:
    """A registry record that disagrees with its latest ledger verdict."""

    document_id: str
    recorded_status: DocumentStatus
    ledger_status: DocumentStatus
    ledger_index: int
    repaired: bool


class IntegrityVerifier:
    def __init__(
        self,
        registry: FingerprintRegistry,
        ledger: AuditLedger,
        content_store: ContentStore,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        read_timeout: float | None = None,
    ) -> None:
        self._registry = registry
        self._ledger = ledger
        self._content = content_store
        self._chunk_size = chunk_size
        self._read_timeout = read_timeout

    async def verify(self, document_id: str) -> VerificationResult:
        """
        Verify one document.

        Raises:
            NotFoundError: Unknown document_id; nothing is recorded.
            MissingContentError: Stored bytes could not be read. The
                MISSING outcome has already been recorded when this is raised.
        """
        record = await self._registry.get(document_id)
        result = await self._verify_record(record)
        if result.result == VerificationOutcome.MISSING:
            raise MissingContentError(document_id, result.ledger_index, result.reason or "")
        return result

    async def verify_all(self) -> list[VerificationResult]:
        """Sweep every registered document in registration order."""
        results: list[VerificationResult] = []
        for record in await self._registry.list_all():
            results.append(await self._verify_record(record))
        _log.info(
            "verification_sweep_completed",
            documents=len(results),
            mismatches=sum(r.result == VerificationOutcome.MISMATCH for r in results),
            missing=sum(r.result == VerificationOutcome.MISSING for r in results),
        )
        return results

    async def reconcile(self, repair: bool = False) -> list[Discrepancy]:
        """
        Compare each record with the latest INTEGRITY_CHECK entry for it.

        With ``repair`` the record is brought in line with the ledger via
        mark_verified. The ledger itself is never touched.

        Raises:
            ChainCorruptionError: The ledger fails verification; nothing is
                compared or repaired.
        """
        await self._ledger.ensure_intact()

        latest: dict[str, LedgerEntry] = {}
        for entry in await self._ledger.read_all():
            if entry.event_type == LedgerEventType.INTEGRITY_CHECK:
                latest[entry.payload["document_id"]] = entry

        discrepancies: list[Discrepancy] = []
        for record in await self._registry.list_all():
            entry = latest.get(record.document_id)
            if entry is None:
                continue
            ledger_status = _STATUS_FOR_OUTCOME[VerificationOutcome(entry.payload["result"])]
            in_sync = record.status == ledger_status and (
                record.last_verified is not None
                and as_utc(record.last_verified) == as_utc(entry.timestamp)
            )
            if in_sync:
                continue

            if repair:
                await self._registry.mark_verified(
                    record.document_id, ledger_status, as_utc(entry.timestamp)
                )
            discrepancies.append(
                Discrepancy(
                    document_id=record.document_id,
                    recorded_status=record.status,
                    ledger_status=ledger_status,
                    ledger_index=entry.index,
                    repaired=repair,
                )
            )

        _log.info("reconcile_completed", discrepancies=len(discrepancies), repair=repair)
        return discrepancies

    async def _verify_record(self, record: DocumentRecord) -> VerificationResult:
        try:
            actual = await self._recompute(record)
        except ContentReadError as exc:
            reason = "not_found" if isinstance(exc, ContentMissingError) else "unreadable"
            _log.warning(
                "document_content_unreadable",
                document_id=record.document_id,
                reason=reason,
                error=exc.message,
            )
            return await self._record(record, VerificationOutcome.MISSING, None, reason)

        outcome = (
            VerificationOutcome.MATCH
            if actual == record.fingerprint
            else VerificationOutcome.MISMATCH
        )
        return await self._record(record, outcome, actual, None)

    async def _recompute(self, record: DocumentRecord) -> str:
        path = self._content.resolve(record.storage_location)
        return await fingerprint_file_async(
            path,
            algorithm=record.algorithm,
            chunk_size=self._chunk_size,
            timeout=self._read_timeout,
        )

    async def _record(
        self,
        record: DocumentRecord,
        outcome: VerificationOutcome,
        actual: str | None,
        reason: str | None,
    ) -> VerificationResult:
        payload: dict[str, object] = {
            "document_id": record.document_id,
            "algorithm": record.algorithm,
            "expected_fingerprint": record.fingerprint,
            "actual_fingerprint": actual,
            "result": outcome.value,
        }
        if reason is not None:
            payload["reason"] = reason

        entry = await self._ledger.append(LedgerEventType.INTEGRITY_CHECK, payload)
        await self._registry.mark_verified(
            record.document_id, _STATUS_FOR_OUTCOME[outcome], entry.timestamp
        )
        VERIFICATIONS.labels(result=outcome.value).inc()

        log = _log.warning if outcome != VerificationOutcome.MATCH else _log.info
        log(
            "document_verified",
            document_id=record.document_id,
            result=outcome.value,
            ledger_index=entry.index,
        )
        return self._result_from_entry(entry)

    @staticmethod
    def _result_from_entry(entry: LedgerEntry) -> VerificationResult:
        payload = entry.payload
        return VerificationResult(
            document_id=payload["document_id"],
            result=VerificationOutcome(payload["result"]),
            algorithm=payload["algorithm"],
            expected_fingerprint=payload["expected_fingerprint"],
            actual_fingerprint=payload["actual_fingerprint"],
            verified_at=as_utc(entry.timestamp),
            ledger_index=entry.index,
            reason=payload.get("reason"),
        )
