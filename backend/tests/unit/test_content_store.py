"""Unit tests for app.services.storage.content_store."""
import io

import pytest

from app.core.errors import UploadTooLargeError, ValidationError
from app.services.storage.content_store import ContentStore

pytestmark = pytest.mark.asyncio


async def test_save_uses_server_side_name(content_store):
    stored = await content_store.save("../../etc/report.PDF", io.BytesIO(b"ABC"))
    assert stored.size_bytes == 3
    assert stored.location.endswith(".pdf")
    assert "report" not in stored.location
    assert content_store.resolve(stored.location).read_bytes() == b"ABC"


async def test_two_saves_never_share_a_location(content_store):
    a = await content_store.save("same.txt", io.BytesIO(b"1"))
    b = await content_store.save("same.txt", io.BytesIO(b"2"))
    assert a.location != b.location


async def test_oversize_upload_rejected_and_removed(tmp_path):
    store = ContentStore(tmp_path / "small", max_size_bytes=10)
    with pytest.raises(UploadTooLargeError) as exc_info:
        await store.save("big.bin", io.BytesIO(b"x" * 11))
    assert exc_info.value.http_status == 413
    assert list((tmp_path / "small").iterdir()) == []


async def test_upload_at_limit_accepted(tmp_path):
    store = ContentStore(tmp_path / "small", max_size_bytes=10)
    stored = await store.save("ok.bin", io.BytesIO(b"x" * 10))
    assert stored.size_bytes == 10


@pytest.mark.parametrize("location", ["", ".", "..", "../escape", "a/b", "/etc/passwd"])
async def test_resolve_rejects_paths_outside_root(content_store, location):
    with pytest.raises(ValidationError):
        content_store.resolve(location)


async def test_discard_removes_content(content_store):
    stored = await content_store.save("gone.txt", io.BytesIO(b"bye"))
    await content_store.discard(stored.location)
    assert not content_store.resolve(stored.location).exists()


async def test_discard_of_absent_content_is_quiet(content_store):
    await content_store.discard("0123456789abcdef.txt")
