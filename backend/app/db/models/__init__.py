"""Database model registry. Import all models here so Alembic can discover them."""

from app.db.models.document import DocumentRecord, DocumentStatus
from app.db.models.ledger import LedgerEntry, LedgerEventType

__all__ = [
    "DocumentRecord",
    "DocumentStatus",
    "LedgerEntry",
    "LedgerEventType",
]
