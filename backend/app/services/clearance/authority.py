"""
Clearance authority clients.

The authority that maps a user identity to an access level lives outside
this service. Two clients implement its call contract:

  - HttpClearanceAuthority: remote authority over HTTP, with timeout,
    retry and circuit breaker.
  - StaticClearanceAuthority: operator-supplied identity -> level table.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol
from urllib.parse import quote

import httpx
import structlog

from app.core.errors import AuthorityUnavailableError, ErrorCode

_log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AuthorityVerdict:
    granted: bool
    level: str | None


class ClearanceAuthority(Protocol):
    async def lookup(self, user_identity: str) -> AuthorityVerdict: ...


# ── Circuit Breaker ───────────────────────────────────────────────────── #


class CircuitState(StrEnum):
    CLOSED = "closed"       # Normal operation
    OPEN = "open"           # Failing; reject calls immediately
    HALF_OPEN = "half_open" # Probe state; allow one call


@dataclass
class CircuitBreaker:
    """
    Simple time-based circuit breaker.

    States:
      CLOSED   → normal; failures increment counter.
      OPEN     → rejects all calls; transitions to HALF_OPEN after timeout.
      HALF_OPEN→ allows one test call; success → CLOSED, failure → OPEN.
    """

    threshold: int
    timeout_seconds: float
    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _last_failure_time: float = field(default=0.0, init=False)

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN:
            if time.monotonic() - self._last_failure_time >= self.timeout_seconds:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()
        if self._failure_count >= self.threshold or self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            _log.warning(
                "circuit_opened",
                failures=self._failure_count,
                threshold=self.threshold,
            )

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)


# ── Clients ───────────────────────────────────────────────────────────── #


class _MalformedResponse(Exception):
    pass


class HttpClearanceAuthority:
    """
    Async client for a remote clearance authority.

    Contract: ``GET {base_url}/clearance/{identity}``
      - 200 ``{"granted": bool, "level": str | null}`` → verdict
      - 404 → identity unknown to the authority, denied
      - anything else, timeouts and transport errors → retried, then
        AuthorityUnavailableError
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 5.0,
        max_retries: int = 2,
        backoff_seconds: float = 0.5,
        circuit: CircuitBreaker | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._max_retries = max_retries
        self._backoff = backoff_seconds
        self._circuit = circuit or CircuitBreaker(threshold=5, timeout_seconds=60)
        self._transport = transport

    @property
    def circuit(self) -> CircuitBreaker:
        return self._circuit

    async def lookup(self, user_identity: str) -> AuthorityVerdict:
        """
        Ask the authority for a verdict.

        Raises:
            AuthorityUnavailableError: If circuit is open or all retries fail.
        """
        if not self._circuit.allow_request():
            raise AuthorityUnavailableError(
                "Clearance authority circuit breaker is open. Please wait before retrying.",
                code=ErrorCode.CLEARANCE_CIRCUIT_OPEN,
            )

        url = f"{self._base_url}/clearance/{quote(user_identity, safe='')}"

        for attempt in range(1, self._max_retries + 2):
            try:
                async with httpx.AsyncClient(
                    timeout=self._timeout, transport=self._transport
                ) as client:
                    resp = await client.get(url)
                verdict = self._parse(resp)
                self._circuit.record_success()
                return verdict
            except (httpx.HTTPError, _MalformedResponse) as exc:
                self._circuit.record_failure()
                _log.warning(
                    "clearance_lookup_failed",
                    attempt=attempt,
                    max_retries=self._max_retries,
                    error=str(exc) or type(exc).__name__,
                )
                if attempt > self._max_retries or not self._circuit.allow_request():
                    raise AuthorityUnavailableError(
                        f"Clearance authority unreachable after {attempt} attempt(s): "
                        f"{str(exc) or type(exc).__name__}",
                        detail={"attempts": attempt},
                    ) from exc
                # Exponential back-off: base, 2×base, 4×base
                await asyncio.sleep(self._backoff * 2 ** (attempt - 1))

        raise AuthorityUnavailableError("Exhausted retries")  # unreachable, satisfies type checker

    @staticmethod
    def _parse(resp: httpx.Response) -> AuthorityVerdict:
        if resp.status_code == 404:
            return AuthorityVerdict(granted=False, level=None)
        resp.raise_for_status()
        try:
            body = resp.json()
        except ValueError as exc:
            raise _MalformedResponse("authority returned non-JSON body") from exc
        if not isinstance(body, dict) or not isinstance(body.get("granted"), bool):
            raise _MalformedResponse("authority response lacks boolean 'granted'")
        level = body.get("level")
        if level is not None and not isinstance(level, str):
            raise _MalformedResponse("authority 'level' must be a string or null")
        return AuthorityVerdict(granted=body["granted"], level=level)


class StaticClearanceAuthority:
    """Table-driven authority; identities absent from the table are denied."""

    def __init__(self, table: dict[str, str]) -> None:
        self._table = dict(table)

    async def lookup(self, user_identity: str) -> AuthorityVerdict:
        level = self._table.get(user_identity)
        return AuthorityVerdict(granted=level is not None, level=level)
