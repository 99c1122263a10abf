"""
Fingerprint registry model.

A DocumentRecord is created once per upload and never deleted. Only the
integrity verifier may change it, and only its ``status`` and
``last_verified`` columns; everything else is fixed at registration.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from sqlalchemy import DateTime, Integer, String, event, inspect
from sqlalchemy import (
    Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.core.errors import ErrorCode, ImmutableFieldError
from app.db.base import Base, utcnow


class DocumentStatus(StrEnum):
    REGISTERED = "REGISTERED"
    VERIFIED = "VERIFIED"
    MISMATCH = "MISMATCH"
    MISSING = "MISSING"


class DocumentRecord(Base):
    """Registered document and its recorded fingerprint."""

    __tablename__ = "document_records"

    document_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    sequence_no: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    filename: Mapped[str] = mapped_column(String(500), nullable=False)
    storage_location: Mapped[str] = mapped_column(String(500), nullable=False)
    fingerprint: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    algorithm: Mapped[str] = mapped_column(String(32), nullable=False)
    registered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    last_verified: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )
    status: Mapped[DocumentStatus] = mapped_column(
        SAEnum(DocumentStatus, name="document_status", native_enum=False),
        default=DocumentStatus.REGISTERED,
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<DocumentRecord {self.document_id} {self.filename} [{self.status}]>"


IMMUTABLE_COLUMNS = (
    "document_id",
    "sequence_no",
    "filename",
    "storage_location",
    "fingerprint",
    "algorithm",
    "registered_at",
)


@event.listens_for(DocumentRecord, "before_update")
def _reject_immutable_changes(_mapper, _connection, target: DocumentRecord) -> None:
    state = inspect(target)
    changed = [
        name for name in IMMUTABLE_COLUMNS if state.attrs[name].history.has_changes()
    ]
    if changed:
        raise ImmutableFieldError(ErrorCode.DOC_FIELD_IMMUTABLE, "DocumentRecord", changed)


@event.listens_for(DocumentRecord, "before_delete")
def _reject_delete(_mapper, _connection, target: DocumentRecord) -> None:
    raise ImmutableFieldError(
        ErrorCode.DOC_FIELD_IMMUTABLE, "DocumentRecord", ["<delete>"]
    )
