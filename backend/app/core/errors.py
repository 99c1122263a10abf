"""
Structured error taxonomy for the custody ledger.

Every application error has:
  - A stable error code (prefixed by domain)
  - A failure kind shared with API consumers (NotFound, MissingContent, ...)
  - An HTTP status code
  - A human-readable message
  - An optional detail dict for machine consumers

No internal state (stack traces, DB internals) is ever surfaced to clients.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    """Stable, versioned error codes. Never reuse a retired code."""

    # Documents
    DOC_NOT_FOUND = "DOC_001"
    DOC_TOO_LARGE = "DOC_002"
    DOC_CONTENT_UNREADABLE = "DOC_003"
    DOC_CONTENT_MISSING = "DOC_004"
    DOC_FIELD_IMMUTABLE = "DOC_005"
    DOC_ALGORITHM_MISMATCH = "DOC_006"

    # Ledger
    LEDGER_CHAIN_BROKEN = "LED_001"
    LEDGER_ENTRY_IMMUTABLE = "LED_002"

    # Clearance
    CLEARANCE_AUTHORITY_UNAVAILABLE = "CLR_001"
    CLEARANCE_CIRCUIT_OPEN = "CLR_002"

    # Generic
    VALIDATION_ERROR = "GEN_001"
    INTERNAL_ERROR = "GEN_002"
    NOT_FOUND = "GEN_003"
    RATE_LIMITED = "GEN_004"
    STORAGE_UNAVAILABLE = "GEN_005"


class ErrorKind(StrEnum):
    """Coarse failure categories callers branch on."""

    NOT_FOUND = "NotFound"
    IO_ERROR = "IOError"
    MISSING_CONTENT = "MissingContent"
    AUTHORITY_UNAVAILABLE = "AuthorityUnavailable"
    CHAIN_CORRUPTION = "ChainCorruption"
    VALIDATION = "Validation"
    CONFLICT = "Conflict"
    STORAGE_UNAVAILABLE = "StorageUnavailable"
    INTERNAL = "Internal"


class AppError(Exception):
    """Base class for all application errors."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        http_status: int = 500,
        detail: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status
        self.detail = detail or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": {
                "code": self.code.value,
                "kind": self.kind.value,
                "message": self.message,
                "detail": self.detail,
            }
        }


# ── Typed convenience subclasses ──────────────────────────────────────── #


class NotFoundError(AppError):
    kind = ErrorKind.NOT_FOUND

    def __init__(
        self, entity: str, entity_id: str | None = None, code: ErrorCode = ErrorCode.NOT_FOUND
    ) -> None:
        detail = {"entity": entity}
        if entity_id:
            detail["id"] = entity_id
        super().__init__(
            code=code,
            message=f"{entity} not found",
            http_status=404,
            detail=detail,
        )


class ValidationError(AppError):
    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        detail: dict[str, Any] | None = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ) -> None:
        super().__init__(
            code=code,
            message=message,
            http_status=422,
            detail=detail,
        )


class ConflictError(AppError):
    kind = ErrorKind.CONFLICT

    def __init__(
        self, code: ErrorCode, message: str, detail: dict[str, Any] | None = None
    ) -> None:
        super().__init__(code=code, message=message, http_status=409, detail=detail)


class ServiceUnavailableError(AppError):
    kind = ErrorKind.STORAGE_UNAVAILABLE

    def __init__(
        self, code: ErrorCode, message: str, detail: dict[str, Any] | None = None
    ) -> None:
        super().__init__(code=code, message=message, http_status=503, detail=detail)


# ── Domain errors ─────────────────────────────────────────────────────── #


class UploadTooLargeError(AppError):
    kind = ErrorKind.VALIDATION

    def __init__(self, limit_bytes: int) -> None:
        super().__init__(
            code=ErrorCode.DOC_TOO_LARGE,
            message=f"File exceeds maximum allowed size of {limit_bytes} bytes",
            http_status=413,
            detail={"limit_bytes": limit_bytes},
        )


class ContentReadError(AppError):
    """Stored bytes could not be fully read (the IOError kind)."""

    kind = ErrorKind.IO_ERROR

    def __init__(self, message: str, detail: dict[str, Any] | None = None) -> None:
        super().__init__(
            code=ErrorCode.DOC_CONTENT_UNREADABLE,
            message=message,
            http_status=500,
            detail=detail,
        )


class ContentMissingError(ContentReadError):
    """The byte source does not exist at all."""


class MissingContentError(AppError):
    """A registered document's bytes were absent at verification time."""

    kind = ErrorKind.MISSING_CONTENT

    def __init__(self, document_id: str, ledger_index: int, reason: str) -> None:
        super().__init__(
            code=ErrorCode.DOC_CONTENT_MISSING,
            message=f"Content for document {document_id} could not be read",
            http_status=410,
            detail={"document_id": document_id, "ledger_index": ledger_index, "reason": reason},
        )
        self.document_id = document_id
        self.ledger_index = ledger_index
        self.reason = reason


class ImmutableFieldError(ConflictError):
    def __init__(self, code: ErrorCode, entity: str, fields: list[str]) -> None:
        super().__init__(
            code=code,
            message=f"{entity} fields are immutable once recorded: {', '.join(fields)}",
            detail={"entity": entity, "fields": fields},
        )


class ChainCorruptionError(AppError):
    kind = ErrorKind.CHAIN_CORRUPTION

    def __init__(self, broken_at_index: int, reason: str) -> None:
        super().__init__(
            code=ErrorCode.LEDGER_CHAIN_BROKEN,
            message=f"Audit ledger hash chain is broken at index {broken_at_index}",
            http_status=409,
            detail={"broken_at_index": broken_at_index, "reason": reason},
        )
        self.broken_at_index = broken_at_index


class AuthorityUnavailableError(ServiceUnavailableError):
    kind = ErrorKind.AUTHORITY_UNAVAILABLE

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.CLEARANCE_AUTHORITY_UNAVAILABLE,
        detail: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(code=code, message=message, detail=detail)


class StorageUnavailableError(ServiceUnavailableError):
    def __init__(self, operation: str) -> None:
        super().__init__(
            code=ErrorCode.STORAGE_UNAVAILABLE,
            message=f"Persistence layer unavailable during {operation}",
            detail={"operation": operation},
        )
