"""Fingerprint registry and audit ledger tables.

Revision ID: 0001_custody_ledger
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision: str = "0001_custody_ledger"
down_revision: str | None = None
branch_labels: str | None = None
depends_on: str | None = None


def upgrade() -> None:
    op.create_table(
        "document_records",
        sa.Column("document_id", sa.String(64), primary_key=True),
        sa.Column("sequence_no", sa.Integer, nullable=False),
        sa.Column("filename", sa.String(500), nullable=False),
        sa.Column("storage_location", sa.String(500), nullable=False),
        sa.Column("fingerprint", sa.String(128), nullable=False),
        sa.Column("algorithm", sa.String(32), nullable=False),
        sa.Column("registered_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_verified", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(10), nullable=False),
        sa.UniqueConstraint("sequence_no", name="uq_document_records_sequence_no"),
    )
    op.create_index("ix_document_records_fingerprint", "document_records", ["fingerprint"])
    op.create_index("ix_document_records_status", "document_records", ["status"])

    op.create_table(
        "ledger_entries",
        sa.Column("index", sa.Integer, primary_key=True, autoincrement=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("event_type", sa.String(15), nullable=False),
        sa.Column("payload_json", sa.Text, nullable=False),
        sa.Column("previous_hash", sa.String(64), nullable=False),
        sa.Column("entry_hash", sa.String(64), nullable=False),
        sa.UniqueConstraint("entry_hash", name="uq_ledger_entry_hash"),
    )
    op.create_index("ix_ledger_entries_event_type", "ledger_entries", ["event_type"])


def downgrade() -> None:
    op.drop_index("ix_ledger_entries_event_type", table_name="ledger_entries")
    op.drop_table("ledger_entries")
    op.drop_index("ix_document_records_status", table_name="document_records")
    op.drop_index("ix_document_records_fingerprint", table_name="document_records")
    op.drop_table("document_records")
