"""
Fingerprint registry.

Catalog of every registered document and the fingerprint recorded for it
at upload time. Writes are serialised by an asyncio lock and each runs in
its own transaction, so an allocation is never interleaved with another
in this process and a failed write leaves no partial record behind.
Workers in other processes are kept apart by the unique sequence_no and
document_id columns: a losing insert is retried with fresh values.
"""

from __future__ import annotations

import asyncio
import itertools
import secrets
import time
from datetime import datetime

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import (
    ErrorCode,
    NotFoundError,
    StorageUnavailableError,
    ValidationError,
)
from app.core.metrics import DOCUMENTS_REGISTERED
from app.db.base import utcnow
from app.db.models.document import DocumentRecord, DocumentStatus

_log = structlog.get_logger(__name__)

_ID_COUNTER = itertools.count()

# Attempts at claiming the next sequence number when another process takes it first
_MAX_REGISTER_ATTEMPTS = 3


def new_document_id() -> str:
    """
    Allocate a document identifier.

    Millisecond timestamp, a per-process counter and a random suffix: the
    counter separates calls within one millisecond, the suffix separates
    worker processes sharing a database.
    """
    return f"DOC-{int(time.time() * 1000)}-{next(_ID_COUNTER):06d}-{secrets.token_hex(3)}"


class FingerprintRegistry:
    """Registry of DocumentRecords bound to a single fingerprint algorithm."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], algorithm: str) -> None:
        self._session_factory = session_factory
        self._algorithm = algorithm
        self._lock = asyncio.Lock()

    @property
    def algorithm(self) -> str:
        return self._algorithm

    async def register(
        self,
        filename: str,
        storage_location: str,
        fingerprint: str,
        algorithm: str,
    ) -> str:
        """Create a REGISTERED record and return its new document_id."""
        if algorithm != self._algorithm:
            raise ValidationError(
                f"Registry records {self._algorithm} fingerprints, got {algorithm}",
                detail={"expected": self._algorithm, "received": algorithm},
                code=ErrorCode.DOC_ALGORITHM_MISMATCH,
            )

        async with self._lock:
            for attempt in range(1, _MAX_REGISTER_ATTEMPTS + 1):
                try:
                    record = await self._insert(filename, storage_location, fingerprint, algorithm)
                    break
                except IntegrityError as exc:
                    if attempt == _MAX_REGISTER_ATTEMPTS:
                        _log.error(
                            "registry_write_failed",
                            operation="register",
                            attempts=attempt,
                            error=str(exc),
                        )
                        raise StorageUnavailableError("register") from exc
                    _log.warning("registry_sequence_taken", attempt=attempt)
                except SQLAlchemyError as exc:
                    _log.error("registry_write_failed", operation="register", error=str(exc))
                    raise StorageUnavailableError("register") from exc

        DOCUMENTS_REGISTERED.inc()
        _log.info(
            "document_registered",
            document_id=record.document_id,
            sequence_no=record.sequence_no,
            fingerprint=fingerprint,
        )
        return record.document_id

    async def _insert(
        self,
        filename: str,
        storage_location: str,
        fingerprint: str,
        algorithm: str,
    ) -> DocumentRecord:
        async with self._session_factory() as db:
            record = DocumentRecord(
                document_id=new_document_id(),
                sequence_no=await self._next_sequence_no(db),
                filename=filename,
                storage_location=storage_location,
                fingerprint=fingerprint,
                algorithm=algorithm,
                registered_at=utcnow(),
                last_verified=None,
                status=DocumentStatus.REGISTERED,
            )
            db.add(record)
            await db.commit()
        return record

    @staticmethod
    async def _next_sequence_no(db: AsyncSession) -> int:
        last_seq = await db.scalar(
            select(func.coalesce(func.max(DocumentRecord.sequence_no), -1))
        )
        return last_seq + 1

    async def get(self, document_id: str) -> DocumentRecord:
        async with self._session_factory() as db:
            record = await db.get(DocumentRecord, document_id)
        if record is None:
            raise NotFoundError("Document", document_id, code=ErrorCode.DOC_NOT_FOUND)
        return record

    async def list_all(self) -> list[DocumentRecord]:
        """Every record, in registration order."""
        async with self._session_factory() as db:
            result = await db.execute(select(DocumentRecord).order_by(DocumentRecord.sequence_no))
            return list(result.scalars().all())

    async def mark_verified(
        self,
        document_id: str,
        status: DocumentStatus,
        verified_at: datetime,
    ) -> DocumentRecord:
        """
        Record the outcome of a verification.

        Only ``status`` and ``last_verified`` change; the model rejects any
        other modification at flush time.
        """
        async with self._lock:
            try:
                async with self._session_factory() as db:
                    record = await db.get(DocumentRecord, document_id)
                    if record is None:
                        raise NotFoundError("Document", document_id, code=ErrorCode.DOC_NOT_FOUND)
                    record.status = status
                    record.last_verified = verified_at
                    await db.commit()
            except SQLAlchemyError as exc:
                _log.error(
                    "registry_write_failed",
                    operation="mark_verified",
                    document_id=document_id,
                    error=str(exc),
                )
                raise StorageUnavailableError("mark_verified") from exc

        _log.info("document_status_updated", document_id=document_id, status=status.value)
        return record
