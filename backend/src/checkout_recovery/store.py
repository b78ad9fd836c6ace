from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Protocol

from .engine import CustomerSegment, RecoverySession, coerce_utc, is_due

RECENT_SESSIONS_DEFAULT_LIMIT = 10


@dataclass(frozen=True)
class CreateSessionInput:
    checkout_token: str
    shop_domain: str
    failed_at: datetime
    email: str | None = None
    phone: str | None = None
    amount_subtotal: float | None = None
    country_code: str | None = None
    customer_segment: CustomerSegment | None = None


@dataclass(frozen=True)
class RecoverySummary:
    detected: int
    recovered: int
    expired: int
    active: int
    recovered_revenue: float
    pending_revenue: float


class RecoveryStore(Protocol):
    def reset(self) -> None: ...

    def upsert_failed_session(self, payload: CreateSessionInput) -> RecoverySession: ...

    def get_by_checkout_token(self, checkout_token: str) -> RecoverySession | None: ...

    def mark_recovered(self, checkout_token: str, order_id: str) -> RecoverySession | None: ...

    def mark_unsubscribed(self, checkout_token: str) -> RecoverySession | None: ...

    def list_due(self, now: datetime) -> list[RecoverySession]: ...

    def list_recent(self, limit: int = RECENT_SESSIONS_DEFAULT_LIMIT) -> list[RecoverySession]: ...

    def update(self, session: RecoverySession) -> RecoverySession: ...

    def summary(self) -> RecoverySummary: ...


def new_session(payload: CreateSessionInput) -> RecoverySession:
    failed_at = coerce_utc(payload.failed_at)
    return RecoverySession(
        id=str(uuid.uuid4()),
        checkout_token=payload.checkout_token,
        shop_domain=payload.shop_domain,
        email=payload.email,
        phone=payload.phone,
        amount_subtotal=payload.amount_subtotal,
        country_code=payload.country_code,
        customer_segment=payload.customer_segment,
        state="LIKELY_FAILED_PAYMENT",
        attempt_count=0,
        failed_at=failed_at,
        next_attempt_at=failed_at,
    )


def summarize(sessions: list[RecoverySession]) -> RecoverySummary:
    recovered_revenue = 0.0
    pending_revenue = 0.0
    recovered = 0
    expired = 0
    active = 0
    for session in sessions:
        if session.state == "RECOVERED":
            recovered += 1
            recovered_revenue += session.amount_subtotal or 0.0
        elif session.state == "EXPIRED":
            expired += 1
        elif session.state == "LIKELY_FAILED_PAYMENT":
            active += 1
            pending_revenue += session.amount_subtotal or 0.0
    return RecoverySummary(
        detected=len(sessions),
        recovered=recovered,
        expired=expired,
        active=active,
        recovered_revenue=round(recovered_revenue, 2),
        pending_revenue=round(pending_revenue, 2),
    )


def _recent_sort_key(session: RecoverySession) -> datetime:
    return session.failed_at or datetime.min.replace(tzinfo=timezone.utc)


class InMemoryRecoveryStore:
    """Recovery sessions keyed by checkout token, guarded by a single lock."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._sessions: dict[str, RecoverySession] = {}

    def reset(self) -> None:
        with self._lock:
            self._sessions.clear()

    def upsert_failed_session(self, payload: CreateSessionInput) -> RecoverySession:
        with self._lock:
            existing = self._sessions.get(payload.checkout_token)
            if existing is not None:
                return existing
            session = new_session(payload)
            self._sessions[payload.checkout_token] = session
            return session

    def get_by_checkout_token(self, checkout_token: str) -> RecoverySession | None:
        with self._lock:
            return self._sessions.get(checkout_token)

    def mark_recovered(self, checkout_token: str, order_id: str) -> RecoverySession | None:
        with self._lock:
            session = self._sessions.get(checkout_token)
            if session is None:
                return None
            updated = RecoverySession(
                **{
                    **session.__dict__,
                    "state": "RECOVERED",
                    "recovered_order_id": order_id,
                    "next_attempt_at": None,
                }
            )
            self._sessions[checkout_token] = updated
            return updated

    def mark_unsubscribed(self, checkout_token: str) -> RecoverySession | None:
        with self._lock:
            session = self._sessions.get(checkout_token)
            if session is None:
                return None
            updated = RecoverySession(
                **{
                    **session.__dict__,
                    "state": "UNSUBSCRIBED",
                    "next_attempt_at": None,
                }
            )
            self._sessions[checkout_token] = updated
            return updated

    def list_due(self, now: datetime) -> list[RecoverySession]:
        with self._lock:
            return [session for session in self._sessions.values() if is_due(session, now)]

    def list_recent(self, limit: int = RECENT_SESSIONS_DEFAULT_LIMIT) -> list[RecoverySession]:
        with self._lock:
            ordered = sorted(self._sessions.values(), key=_recent_sort_key, reverse=True)
            return ordered[: max(limit, 0)]

    def update(self, session: RecoverySession) -> RecoverySession:
        with self._lock:
            self._sessions[session.checkout_token] = session
            return session

    def summary(self) -> RecoverySummary:
        with self._lock:
            return summarize(list(self._sessions.values()))
