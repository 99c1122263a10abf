"""Integration tests: document submission and integrity verification endpoints."""
import hashlib

import pytest

pytestmark = pytest.mark.asyncio


async def _upload(client, filename: str = "report.pdf", content: bytes = b"ABC"):
    return await client.post(
        "/api/v1/documents",
        files={"file": (filename, content, "application/octet-stream")},
    )


def _stored_path(app, body: dict):
    return app.state.custody.content.resolve(body["storage_location"])


# ─── POST /documents ──────────────────────────────────────────────────────────

async def test_upload_registers_document(client):
    resp = await _upload(client)
    assert resp.status_code == 201
    body = resp.json()
    assert body["document_id"].startswith("DOC-")
    assert body["filename"] == "report.pdf"
    assert body["algorithm"] == "sha256"
    assert body["fingerprint"] == hashlib.sha256(b"ABC").hexdigest()


async def test_upload_does_not_write_ledger(client):
    await _upload(client)
    resp = await client.get("/api/v1/ledger")
    assert resp.json()["total"] == 0


async def test_upload_filename_is_not_a_path(client, app):
    resp = await _upload(client, filename="Quarterly Report (final).PDF")
    assert resp.status_code == 201
    doc = (await client.get(f"/api/v1/documents/{resp.json()['document_id']}")).json()
    assert doc["filename"] == "Quarterly Report (final).PDF"
    assert doc["storage_location"] != doc["filename"]
    assert doc["storage_location"].endswith(".pdf")
    assert _stored_path(app, doc).parent == app.state.custody.content.root


async def test_upload_too_large_returns_413(client, app):
    resp = await _upload(client, content=b"x" * (1024 * 1024 + 1))
    assert resp.status_code == 413
    assert (await client.get("/api/v1/documents")).json()["total"] == 0
    assert list(app.state.custody.content.root.iterdir()) == []


async def test_upload_without_file_returns_422(client):
    resp = await client.post("/api/v1/documents")
    assert resp.status_code == 422


# ─── GET /documents ───────────────────────────────────────────────────────────

async def test_list_documents_in_registration_order(client):
    ids = [(await _upload(client, f"f{i}.txt", bytes([i]))).json()["document_id"] for i in range(3)]
    resp = await client.get("/api/v1/documents")
    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] == 3
    assert [d["document_id"] for d in body["items"]] == ids
    assert all(d["status"] == "REGISTERED" for d in body["items"])
    assert all(d["last_verified"] is None for d in body["items"])


async def test_get_unknown_document_returns_404(client):
    resp = await client.get("/api/v1/documents/DOC-unknown")
    assert resp.status_code == 404
    error = resp.json()["error"]
    assert error["kind"] == "NotFound"
    assert error["code"] == "DOC_001"


# ─── POST /documents/{id}/verify ──────────────────────────────────────────────

async def test_verify_unchanged_document_matches(client):
    doc_id = (await _upload(client)).json()["document_id"]
    resp = await client.post(f"/api/v1/documents/{doc_id}/verify")
    assert resp.status_code == 200
    body = resp.json()
    assert body["result"] == "MATCH"
    assert body["ledger_index"] == 0

    doc = (await client.get(f"/api/v1/documents/{doc_id}")).json()
    assert doc["status"] == "VERIFIED"
    assert doc["last_verified"] is not None


async def test_verify_tampered_document_mismatches(client, app):
    doc_id = (await _upload(client, content=b"ABC")).json()["document_id"]
    await client.post(f"/api/v1/documents/{doc_id}/verify")

    doc = (await client.get(f"/api/v1/documents/{doc_id}")).json()
    _stored_path(app, doc).write_bytes(b"ABD")

    resp = await client.post(f"/api/v1/documents/{doc_id}/verify")
    assert resp.status_code == 200
    body = resp.json()
    assert body["result"] == "MISMATCH"
    assert body["actual_fingerprint"] == hashlib.sha256(b"ABD").hexdigest()
    assert body["ledger_index"] == 1

    ledger = (await client.get("/api/v1/ledger")).json()["items"]
    assert ledger[1]["previous_hash"] == ledger[0]["entry_hash"]


async def test_verify_missing_content_returns_410_and_records(client, app):
    doc_id = (await _upload(client)).json()["document_id"]
    doc = (await client.get(f"/api/v1/documents/{doc_id}")).json()
    _stored_path(app, doc).unlink()

    resp = await client.post(f"/api/v1/documents/{doc_id}/verify")
    assert resp.status_code == 410
    assert resp.json()["error"]["kind"] == "MissingContent"

    ledger = (await client.get("/api/v1/ledger")).json()
    assert ledger["total"] == 1
    assert ledger["items"][0]["payload"]["result"] == "MISSING"
    assert (await client.get(f"/api/v1/documents/{doc_id}")).json()["status"] == "MISSING"


async def test_verify_unknown_document_returns_404(client):
    resp = await client.post("/api/v1/documents/DOC-unknown/verify")
    assert resp.status_code == 404
    assert (await client.get("/api/v1/ledger")).json()["total"] == 0


# ─── POST /documents/verify ───────────────────────────────────────────────────

async def test_verify_all_counts_outcomes(client, app):
    ids = [(await _upload(client, f"f{i}.txt", bytes([65 + i]))).json()["document_id"] for i in range(3)]
    docs = {d["document_id"]: d for d in (await client.get("/api/v1/documents")).json()["items"]}
    _stored_path(app, docs[ids[1]]).write_bytes(b"changed")
    _stored_path(app, docs[ids[2]]).unlink()

    resp = await client.post("/api/v1/documents/verify")
    assert resp.status_code == 200
    body = resp.json()
    assert (body["total"], body["matched"], body["mismatched"], body["missing"]) == (3, 1, 1, 1)
    assert [r["document_id"] for r in body["items"]] == ids


# ─── POST /documents/reconcile ────────────────────────────────────────────────

async def test_reconcile_in_sync_registry(client):
    doc_id = (await _upload(client)).json()["document_id"]
    await client.post(f"/api/v1/documents/{doc_id}/verify")

    resp = await client.post("/api/v1/documents/reconcile", params={"repair": True})
    assert resp.status_code == 200
    assert resp.json() == {"items": [], "total": 0, "repaired": True}
