"""
Clearance evaluation.

Obtains a verdict from the clearance authority and records it in the
audit ledger. Every attempted check produces exactly one ACCESS_DECISION
entry, including checks the authority could not answer.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

import structlog

from app.core.errors import AuthorityUnavailableError, ValidationError
from app.core.metrics import ACCESS_DECISIONS
from app.db.base import as_utc
from app.db.models.ledger import LedgerEventType
from app.services.audit.ledger import AuditLedger
from app.services.clearance.authority import ClearanceAuthority

_log = structlog.get_logger(__name__)

MAX_IDENTITY_LENGTH = 256


class ClearanceVerdict(StrEnum):
    GRANTED = "GRANTED"
    DENIED = "DENIED"
    INDETERMINATE = "INDETERMINATE"


@dataclass(frozen=True)
class AccessDecision:
    user_identity: str
    verdict: ClearanceVerdict
    granted_level: str | None
    decided_at: datetime
    ledger_index: int


class ClearanceEvaluator:
    def __init__(self, authority: ClearanceAuthority, ledger: AuditLedger) -> None:
        self._authority = authority
        self._ledger = ledger

    async def evaluate(self, user_identity: str) -> AccessDecision:
        """
        Evaluate and record clearance for ``user_identity``.

        Raises:
            ValidationError: Empty or oversized identity; nothing is recorded.
            AuthorityUnavailableError: The authority could not answer. An
                INDETERMINATE decision has been recorded before this is raised.
        """
        if not user_identity or not user_identity.strip():
            raise ValidationError("User identity must not be empty")
        if len(user_identity) > MAX_IDENTITY_LENGTH:
            raise ValidationError(
                f"User identity exceeds {MAX_IDENTITY_LENGTH} characters",
                detail={"length": len(user_identity)},
            )

        try:
            verdict = await self._authority.lookup(user_identity)
        except AuthorityUnavailableError as exc:
            await self._record(
                user_identity, ClearanceVerdict.INDETERMINATE, None, reason=exc.message
            )
            raise

        decision = ClearanceVerdict.GRANTED if verdict.granted else ClearanceVerdict.DENIED
        return await self._record(
            user_identity, decision, verdict.level if verdict.granted else None
        )

    async def _record(
        self,
        user_identity: str,
        verdict: ClearanceVerdict,
        granted_level: str | None,
        reason: str | None = None,
    ) -> AccessDecision:
        payload: dict[str, object] = {
            "user_identity": user_identity,
            "granted_level": granted_level,
            "verdict": verdict.value,
        }
        if reason is not None:
            payload["reason"] = reason

        entry = await self._ledger.append(LedgerEventType.ACCESS_DECISION, payload)
        ACCESS_DECISIONS.labels(verdict=verdict.value).inc()
        _log.info(
            "access_decision_recorded",
            verdict=verdict.value,
            granted_level=granted_level,
            ledger_index=entry.index,
        )
        return AccessDecision(
            user_identity=user_identity,
            verdict=verdict,
            granted_level=granted_level,
            decided_at=as_utc(entry.timestamp),
            ledger_index=entry.index,
        )
