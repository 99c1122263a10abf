"""Prometheus counters for custody events, exposed at /metrics."""

from __future__ import annotations

from prometheus_client import Counter

LEDGER_APPENDS = Counter(
    "custody_ledger_appends_total",
    "Entries appended to the audit ledger",
    ["event_type"],
)

VERIFICATIONS = Counter(
    "custody_verifications_total",
    "Integrity verifications by outcome",
    ["result"],
)

ACCESS_DECISIONS = Counter(
    "custody_access_decisions_total",
    "Clearance decisions by verdict",
    ["verdict"],
)

DOCUMENTS_REGISTERED = Counter(
    "custody_documents_registered_total",
    "Documents added to the fingerprint registry",
)
