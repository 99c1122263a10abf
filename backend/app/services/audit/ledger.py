"""
Hash-chained audit ledger.

Every entry is SHA-256 hashed over its index, timestamp, event type,
payload and the hash of the immediately preceding entry. This forms a
cryptographic hash chain that makes tampering with historical records
detectable.

The chain is linear (single sequence). Appends are serialised by an
asyncio lock so that reading the tail and writing the next entry happen
as one unit; the primary key on index settles races between processes.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import String, cast, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import ChainCorruptionError, StorageUnavailableError
from app.core.metrics import LEDGER_APPENDS
from app.db.base import as_utc, utcnow
from app.db.models.ledger import LedgerEntry, LedgerEventType

_log = structlog.get_logger(__name__)

# previous_hash of the entry at index 0
GENESIS_HASH: str = "0" * 64

# Attempts at claiming the next index when another writer takes it first
_MAX_APPEND_ATTEMPTS = 3


def canonical_payload(payload: dict[str, Any]) -> str:
    """Serialise a payload deterministically; non-JSON values become strings."""
    return json.dumps(payload, sort_keys=True, ensure_ascii=True, default=str)


def compute_entry_hash(
    index: int,
    timestamp: datetime,
    event_type: LedgerEventType | str,
    payload: dict[str, Any],
    previous_hash: str,
) -> str:
    """Compute the SHA-256 hash for a ledger entry."""
    components = {
        "index": index,
        "timestamp": as_utc(timestamp).isoformat(timespec="microseconds"),
        "event_type": str(event_type),
        "payload": payload,
        "previous_hash": previous_hash,
    }
    canonical = json.dumps(components, sort_keys=True, ensure_ascii=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode()).hexdigest()


@dataclass(frozen=True)
class ChainVerification:
    valid: bool
    total_entries: int
    broken_at_index: int | None = None
    reason: str | None = None


@dataclass(frozen=True)
class StoredEntry:
    """
    A ledger row exactly as persisted.

    Columns are read as text and decoded leniently, so a row edited behind
    the ledger's back still loads: an unparseable timestamp becomes None
    and an unparseable payload leaves ``payload`` as None next to the raw
    ``payload_json``.
    """

    index: int
    timestamp: datetime | None
    event_type: str
    payload_json: str
    previous_hash: str
    entry_hash: str

    @property
    def payload(self) -> Any | None:
        try:
            return json.loads(self.payload_json)
        except (TypeError, ValueError):
            return None


def _parse_timestamp(text: str | None) -> datetime | None:
    if not text:
        return None
    try:
        return as_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


class AuditLedger:
    """
    Append-only ledger of integrity checks and access decisions.

    Usage:
        ledger = AuditLedger(session_factory)
        entry = await ledger.append(
            LedgerEventType.INTEGRITY_CHECK,
            {"document_id": doc_id, "result": "MATCH"},
        )
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._lock = asyncio.Lock()

    async def append(self, event_type: LedgerEventType, payload: dict[str, Any]) -> LedgerEntry:
        """
        Write a single entry at the tail of the chain.

        The lock ensures the tail is read and the new entry written
        atomically within this process. A writer in another process that
        claims the same index first makes the insert fail on the primary
        key; the tail is then re-read and the append retried. Either the
        whole entry is committed or nothing is.
        """
        payload_json = canonical_payload(payload)
        async with self._lock:
            for attempt in range(1, _MAX_APPEND_ATTEMPTS + 1):
                try:
                    entry = await self._write_next(event_type, payload_json)
                    break
                except IntegrityError as exc:
                    if attempt == _MAX_APPEND_ATTEMPTS:
                        _log.error(
                            "ledger_append_failed",
                            event_type=event_type.value,
                            attempts=attempt,
                            error=str(exc),
                        )
                        raise StorageUnavailableError("ledger append") from exc
                    _log.warning("ledger_index_taken", event_type=event_type.value, attempt=attempt)
                except SQLAlchemyError as exc:
                    _log.error("ledger_append_failed", event_type=event_type.value, error=str(exc))
                    raise StorageUnavailableError("ledger append") from exc

        LEDGER_APPENDS.labels(event_type=event_type.value).inc()
        _log.debug(
            "ledger_entry_written",
            index=entry.index,
            event_type=event_type.value,
            entry_hash=entry.entry_hash,
        )
        return entry

    async def _write_next(self, event_type: LedgerEventType, payload_json: str) -> LedgerEntry:
        async with self._session_factory() as db:
            tail = await self._get_tail(db)
            index = 0 if tail is None else tail.index + 1
            previous_hash = GENESIS_HASH if tail is None else tail.entry_hash
            timestamp = utcnow()

            entry = LedgerEntry(
                index=index,
                timestamp=timestamp,
                event_type=event_type,
                payload_json=payload_json,
                previous_hash=previous_hash,
                entry_hash=compute_entry_hash(
                    index=index,
                    timestamp=timestamp,
                    event_type=event_type,
                    payload=json.loads(payload_json),
                    previous_hash=previous_hash,
                ),
            )
            db.add(entry)
            await db.commit()
        return entry

    @staticmethod
    async def _get_tail(db: AsyncSession) -> LedgerEntry | None:
        result = await db.execute(select(LedgerEntry).order_by(LedgerEntry.index.desc()).limit(1))
        return result.scalar_one_or_none()

    async def tail(self) -> LedgerEntry | None:
        """The most recently appended entry, or None for an empty ledger."""
        async with self._session_factory() as db:
            return await self._get_tail(db)

    async def read_all(self) -> list[LedgerEntry]:
        async with self._session_factory() as db:
            result = await db.execute(select(LedgerEntry).order_by(LedgerEntry.index.asc()))
            return list(result.scalars().all())

    async def read_stored(self) -> list[StoredEntry]:
        """Every row in index order, readable even when rows were tampered with."""
        table = LedgerEntry.__table__
        stmt = select(
            table.c["index"],
            cast(table.c["timestamp"], String).label("timestamp"),
            cast(table.c["event_type"], String).label("event_type"),
            table.c["payload_json"],
            table.c["previous_hash"],
            table.c["entry_hash"],
        ).order_by(table.c["index"].asc())

        async with self._session_factory() as db:
            rows = (await db.execute(stmt)).all()

        return [
            StoredEntry(
                index=index,
                timestamp=_parse_timestamp(timestamp),
                event_type=event_type,
                payload_json=payload_json,
                previous_hash=previous_hash,
                entry_hash=entry_hash,
            )
            for index, timestamp, event_type, payload_json, previous_hash, entry_hash in rows
        ]

    async def verify_chain(self) -> ChainVerification:
        """
        Recompute every entry hash and check every link, in index order.

        Returns the first index whose position, previous_hash, stored
        fields or entry_hash do not check out. Nothing is repaired.
        """
        entries = await self.read_stored()
        event_types = {e.value for e in LedgerEventType}
        expected_previous = GENESIS_HASH

        for position, entry in enumerate(entries):
            payload = entry.payload
            failure: str | None = None
            if entry.index != position:
                failure = f"expected index {position}, found {entry.index}"
            elif entry.previous_hash != expected_previous:
                failure = "previous_hash does not match the prior entry_hash"
            elif entry.timestamp is None:
                failure = "timestamp is not a valid datetime"
            elif entry.event_type not in event_types:
                failure = f"unknown event_type {entry.event_type!r}"
            elif not isinstance(payload, dict):
                failure = "payload is not a JSON object"
            else:
                recomputed = compute_entry_hash(
                    index=entry.index,
                    timestamp=entry.timestamp,
                    event_type=entry.event_type,
                    payload=payload,
                    previous_hash=entry.previous_hash,
                )
                if recomputed != entry.entry_hash:
                    failure = "entry_hash does not match recomputed hash"

            if failure is not None:
                _log.error(
                    "ledger_chain_broken",
                    broken_at_index=position,
                    reason=failure,
                )
                return ChainVerification(
                    valid=False,
                    total_entries=len(entries),
                    broken_at_index=position,
                    reason=failure,
                )

            expected_previous = entry.entry_hash

        return ChainVerification(valid=True, total_entries=len(entries))

    async def ensure_intact(self) -> ChainVerification:
        """Like verify_chain, but a broken chain raises ChainCorruptionError."""
        verification = await self.verify_chain()
        if not verification.valid:
            raise ChainCorruptionError(
                verification.broken_at_index or 0, verification.reason or "unknown"
            )
        return verification
