"""
Content fingerprinting.

A fingerprint is the hex digest of a document's bytes under a hashlib
algorithm. Content is always streamed through the digest in fixed-size
chunks so memory use does not grow with the document.
"""

from __future__ import annotations

import asyncio
import hashlib
from pathlib import Path
from typing import BinaryIO

import structlog

from app.core.errors import ContentMissingError, ContentReadError, ValidationError

_log = structlog.get_logger(__name__)

DEFAULT_ALGORITHM = "sha256"
DEFAULT_CHUNK_SIZE = 1024 * 1024


def _new_digest(algorithm: str) -> hashlib._Hash:
    try:
        digest = hashlib.new(algorithm)
    except ValueError as exc:
        raise ValidationError(
            f"Unsupported fingerprint algorithm: {algorithm}",
            detail={"algorithm": algorithm},
        ) from exc
    if digest.digest_size == 0:
        raise ValidationError(
            "Variable-length digests cannot be used as fingerprints",
            detail={"algorithm": algorithm},
        )
    return digest


def fingerprint_bytes(data: bytes, algorithm: str = DEFAULT_ALGORITHM) -> str:
    """Return the hex fingerprint of an in-memory byte string."""
    digest = _new_digest(algorithm)
    digest.update(data)
    return digest.hexdigest()


def fingerprint_stream(
    stream: BinaryIO,
    algorithm: str = DEFAULT_ALGORITHM,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> str:
    """
    Digest a binary stream from its current position to EOF.

    Raises:
        ContentReadError: If the stream fails part-way through.
    """
    digest = _new_digest(algorithm)
    try:
        while chunk := stream.read(chunk_size):
            digest.update(chunk)
    except OSError as exc:
        raise ContentReadError(f"Content stream could not be fully read: {exc}") from exc
    return digest.hexdigest()


def fingerprint_file(
    path: Path,
    algorithm: str = DEFAULT_ALGORITHM,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> str:
    """
    Digest the file at ``path``.

    Raises:
        ContentMissingError: If the file does not exist.
        ContentReadError: If it exists but cannot be read.
    """
    try:
        with path.open("rb") as fh:
            return fingerprint_stream(fh, algorithm, chunk_size)
    except FileNotFoundError as exc:
        raise ContentMissingError(
            f"Content not found: {path.name}", detail={"location": path.name}
        ) from exc
    except IsADirectoryError as exc:
        raise ContentReadError(
            f"Content location is not a file: {path.name}", detail={"location": path.name}
        ) from exc
    except OSError as exc:
        raise ContentReadError(
            f"Content unreadable: {path.name}: {exc.strerror or exc}",
            detail={"location": path.name},
        ) from exc


async def fingerprint_file_async(
    path: Path,
    algorithm: str = DEFAULT_ALGORITHM,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    timeout: float | None = None,
) -> str:
    """
    Digest a file in a worker thread so the event loop is never blocked.

    Raises:
        ContentReadError: On read failure or when ``timeout`` elapses.
    """
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(fingerprint_file, path, algorithm, chunk_size),
            timeout=timeout,
        )
    except TimeoutError as exc:
        _log.warning("fingerprint_timeout", location=path.name, timeout=timeout)
        raise ContentReadError(
            f"Reading content timed out after {timeout}s",
            detail={"location": path.name, "timeout_seconds": timeout},
        ) from exc
