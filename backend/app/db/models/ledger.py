"""
Audit ledger entry model.

Entries form a hash chain: each entry stores the entry_hash of the entry
before it (or the genesis value at index 0) and a hash over its own
fields. The index is the primary key, so two writers can never persist
the same position in the chain.

The chain can be verified via AuditLedger.verify_chain().
"""

from __future__ import annotations

import json
from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint, event
from sqlalchemy import (
    Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.core.errors import ErrorCode, ImmutableFieldError
from app.db.base import Base


class LedgerEventType(StrEnum):
    INTEGRITY_CHECK = "INTEGRITY_CHECK"
    ACCESS_DECISION = "ACCESS_DECISION"


class LedgerEntry(Base):
    """Single immutable ledger entry."""

    __tablename__ = "ledger_entries"
    __table_args__ = (UniqueConstraint("entry_hash", name="uq_ledger_entry_hash"),)

    index: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    event_type: Mapped[LedgerEventType] = mapped_column(
        SAEnum(LedgerEventType, name="ledger_event_type", native_enum=False),
        nullable=False,
        index=True,
    )
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)

    # Hash of the previous entry; the genesis value for index 0
    previous_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    # Hash of this entry (covers every field except entry_hash itself)
    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    @property
    def payload(self) -> dict[str, Any]:
        return json.loads(self.payload_json)

    def __repr__(self) -> str:
        return f"<LedgerEntry #{self.index} {self.event_type}>"


@event.listens_for(LedgerEntry, "before_update")
def _reject_update(_mapper, _connection, target: LedgerEntry) -> None:
    raise ImmutableFieldError(ErrorCode.LEDGER_ENTRY_IMMUTABLE, "LedgerEntry", ["<update>"])


@event.listens_for(LedgerEntry, "before_delete")
def _reject_delete(_mapper, _connection, target: LedgerEntry) -> None:
    raise ImmutableFieldError(ErrorCode.LEDGER_ENTRY_IMMUTABLE, "LedgerEntry", ["<delete>"])
