"""Unit tests for app.services.audit.ledger (hash chain integrity)."""
import asyncio
import json

import pytest
from sqlalchemy import delete, text, update

from app.core.errors import ChainCorruptionError, ErrorKind, ImmutableFieldError
from app.db.models.ledger import LedgerEntry, LedgerEventType
from app.services.audit.ledger import GENESIS_HASH, compute_entry_hash

pytestmark = pytest.mark.asyncio


async def _append(ledger, n: int) -> list[LedgerEntry]:
    return [
        await ledger.append(LedgerEventType.INTEGRITY_CHECK, {"document_id": f"DOC-{i}", "i": i})
        for i in range(n)
    ]


async def _tamper(db_engine, index: int, **values) -> None:
    """Edit a persisted entry behind the ledger's back."""
    async with db_engine.begin() as conn:
        await conn.execute(
            update(LedgerEntry.__table__).where(LedgerEntry.__table__.c["index"] == index).values(**values)
        )


async def _tamper_raw(db_engine, index: int, column: str, value: str) -> None:
    """Write a value no ORM type would accept, straight into the column."""
    async with db_engine.begin() as conn:
        await conn.execute(
            text(f'UPDATE ledger_entries SET "{column}" = :value WHERE "index" = :index'),
            {"value": value, "index": index},
        )


# ─── append ───────────────────────────────────────────────────────────────────

async def test_first_entry_is_genesis_linked(ledger):
    entry = await ledger.append(LedgerEventType.ACCESS_DECISION, {"user_identity": "alice"})
    assert entry.index == 0
    assert entry.previous_hash == GENESIS_HASH
    assert len(entry.entry_hash) == 64


async def test_entries_link_to_predecessor(ledger):
    entries = await _append(ledger, 3)
    assert [e.index for e in entries] == [0, 1, 2]
    assert entries[1].previous_hash == entries[0].entry_hash
    assert entries[2].previous_hash == entries[1].entry_hash


async def test_entry_hash_covers_all_fields(ledger):
    entry = await ledger.append(LedgerEventType.INTEGRITY_CHECK, {"document_id": "DOC-1"})
    expected = compute_entry_hash(
        index=entry.index,
        timestamp=entry.timestamp,
        event_type=entry.event_type,
        payload={"document_id": "DOC-1"},
        previous_hash=entry.previous_hash,
    )
    assert entry.entry_hash == expected


async def test_payload_stored_as_canonical_json(ledger):
    entry = await ledger.append(LedgerEventType.INTEGRITY_CHECK, {"b": 1, "a": None})
    assert entry.payload_json == json.dumps({"a": None, "b": 1}, sort_keys=True)
    assert entry.payload == {"a": None, "b": 1}


async def test_tail_tracks_last_entry(ledger):
    assert await ledger.tail() is None
    entries = await _append(ledger, 2)
    tail = await ledger.tail()
    assert tail.index == 1
    assert tail.entry_hash == entries[1].entry_hash


async def test_concurrent_appends_form_one_chain(ledger):
    n = 30
    await asyncio.gather(
        *(ledger.append(LedgerEventType.ACCESS_DECISION, {"n": i}) for i in range(n))
    )
    entries = await ledger.read_all()
    assert [e.index for e in entries] == list(range(n))
    assert len({e.previous_hash for e in entries}) == n
    assert (await ledger.verify_chain()).valid is True


# ─── verify_chain ─────────────────────────────────────────────────────────────

async def test_empty_chain_is_valid(ledger):
    result = await ledger.verify_chain()
    assert result.valid is True
    assert result.total_entries == 0
    assert result.broken_at_index is None


async def test_intact_chain_is_valid_after_reload(ledger):
    await _append(ledger, 5)
    result = await ledger.verify_chain()
    assert result.valid is True
    assert result.total_entries == 5


@pytest.mark.parametrize("target", [0, 2, 4])
async def test_tampered_payload_breaks_chain_at_that_index(ledger, db_engine, target):
    await _append(ledger, 5)
    await _tamper(db_engine, target, payload_json=json.dumps({"document_id": "forged"}))

    result = await ledger.verify_chain()
    assert result.valid is False
    assert result.broken_at_index == target


async def test_tampered_entry_hash_detected(ledger, db_engine):
    await _append(ledger, 3)
    await _tamper(db_engine, 1, entry_hash="deadbeef" * 8)
    result = await ledger.verify_chain()
    assert result.valid is False
    assert result.broken_at_index == 1


async def test_rewritten_link_detected(ledger, db_engine):
    await _append(ledger, 3)
    await _tamper(db_engine, 2, previous_hash="0" * 64)
    result = await ledger.verify_chain()
    assert result.valid is False
    assert result.broken_at_index == 2


async def test_deleted_entry_detected(ledger, db_engine):
    await _append(ledger, 4)
    async with db_engine.begin() as conn:
        await conn.execute(
            delete(LedgerEntry.__table__).where(LedgerEntry.__table__.c["index"] == 1)
        )
    result = await ledger.verify_chain()
    assert result.valid is False
    assert result.broken_at_index == 1


async def test_ensure_intact_raises_chain_corruption(ledger, db_engine):
    await _append(ledger, 3)
    await _tamper(db_engine, 1, payload_json="{}")
    with pytest.raises(ChainCorruptionError) as exc_info:
        await ledger.ensure_intact()
    assert exc_info.value.broken_at_index == 1
    assert exc_info.value.kind == ErrorKind.CHAIN_CORRUPTION


async def test_corruption_is_not_repaired(ledger, db_engine):
    await _append(ledger, 2)
    await _tamper(db_engine, 0, payload_json="{}")
    await ledger.verify_chain()
    assert (await ledger.read_all())[0].payload == {}
    assert (await ledger.verify_chain()).valid is False


@pytest.mark.parametrize(
    ("column", "value"),
    [
        ("event_type", "FORGED"),
        ("timestamp", "garbage"),
        ("payload_json", "not json"),
        ("payload_json", "[1, 2]"),
    ],
)
async def test_undecodable_column_breaks_chain_at_that_index(ledger, db_engine, column, value):
    await _append(ledger, 3)
    await _tamper_raw(db_engine, 1, column, value)

    result = await ledger.verify_chain()
    assert result.valid is False
    assert result.broken_at_index == 1
    assert result.total_entries == 3


async def test_valid_but_different_event_type_breaks_chain(ledger, db_engine):
    await _append(ledger, 2)
    await _tamper_raw(db_engine, 0, "event_type", LedgerEventType.ACCESS_DECISION.value)
    result = await ledger.verify_chain()
    assert result.valid is False
    assert result.broken_at_index == 0
    assert result.reason == "entry_hash does not match recomputed hash"


async def test_read_stored_survives_undecodable_rows(ledger, db_engine):
    await _append(ledger, 3)
    await _tamper_raw(db_engine, 0, "payload_json", "not json")
    await _tamper_raw(db_engine, 1, "timestamp", "garbage")
    await _tamper_raw(db_engine, 2, "event_type", "FORGED")

    stored = await ledger.read_stored()
    assert [e.index for e in stored] == [0, 1, 2]
    assert stored[0].payload is None
    assert stored[0].payload_json == "not json"
    assert stored[1].timestamp is None
    assert stored[2].event_type == "FORGED"
    assert stored[2].payload == {"document_id": "DOC-2", "i": 2}


async def test_read_stored_matches_written_entries(ledger):
    written = await _append(ledger, 2)
    stored = await ledger.read_stored()
    assert [e.entry_hash for e in stored] == [e.entry_hash for e in written]
    assert stored[1].timestamp == written[1].timestamp
    assert stored[1].event_type == "INTEGRITY_CHECK"


async def test_append_retries_when_index_is_taken(ledger, monkeypatch):
    await _append(ledger, 1)
    real_get_tail = ledger._get_tail
    calls = 0

    async def stale_tail(db):
        # First read misses the entry another writer just committed
        nonlocal calls
        calls += 1
        return None if calls == 1 else await real_get_tail(db)

    monkeypatch.setattr(ledger, "_get_tail", stale_tail)
    entry = await ledger.append(LedgerEventType.ACCESS_DECISION, {"user_identity": "bob"})

    assert calls == 2
    assert entry.index == 1
    assert (await ledger.verify_chain()).valid is True


# ─── Immutability ─────────────────────────────────────────────────────────────

async def test_orm_update_rejected(ledger, session_factory):
    await _append(ledger, 1)
    async with session_factory() as db:
        entry = await db.get(LedgerEntry, 0)
        entry.payload_json = "{}"
        with pytest.raises(ImmutableFieldError):
            await db.commit()
    assert (await ledger.verify_chain()).valid is True
