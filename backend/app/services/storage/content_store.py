"""
Local-disk content store.

Uploaded bytes are written under a random server-side name; the
uploader's filename is never used as a path. The returned location is
an opaque token that the rest of the system only hands back to this
store.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

import structlog

from app.core.errors import UploadTooLargeError, ValidationError

_log = structlog.get_logger(__name__)

_COPY_CHUNK = 1024 * 1024


@dataclass(frozen=True)
class StoredContent:
    location: str
    size_bytes: int


class ContentStore:
    """Byte-addressable store keyed by opaque storage locations."""

    def __init__(self, root: Path, max_size_bytes: int) -> None:
        self._root = root
        self._max_size_bytes = max_size_bytes
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, location: str) -> Path:
        """Map a storage location to its path, refusing anything outside the root."""
        candidate = Path(location)
        if (
            not location
            or candidate.is_absolute()
            or candidate.name != location
            or location in (".", "..")
        ):
            raise ValidationError("Invalid storage location", detail={"location": location})
        return self._root / location

    async def save(self, original_filename: str, stream: BinaryIO) -> StoredContent:
        """Copy ``stream`` into the store and return its new location."""
        suffix = Path(original_filename or "upload").suffix.lower()[:16]
        location = f"{uuid.uuid4().hex}{suffix}"
        dest = self.resolve(location)
        size = await asyncio.to_thread(self._copy_bounded, stream, dest)
        _log.debug("content_stored", location=location, size_bytes=size)
        return StoredContent(location=location, size_bytes=size)

    def _copy_bounded(self, stream: BinaryIO, dest: Path) -> int:
        written = 0
        try:
            with dest.open("xb") as out:
                while chunk := stream.read(_COPY_CHUNK):
                    written += len(chunk)
                    if written > self._max_size_bytes:
                        raise UploadTooLargeError(self._max_size_bytes)
                    out.write(chunk)
        except BaseException:
            dest.unlink(missing_ok=True)
            raise
        return written

    async def discard(self, location: str) -> None:
        """Remove stored bytes whose registration did not complete."""
        path = self.resolve(location)
        try:
            await asyncio.to_thread(path.unlink, True)
        except OSError as exc:
            _log.warning("content_discard_failed", location=location, error=str(exc))

