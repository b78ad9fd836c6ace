from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Literal

RecoveryState = Literal[
    "PENDING",
    "LIKELY_FAILED_PAYMENT",
    "RECOVERED",
    "EXPIRED",
    "UNSUBSCRIBED",
]
CustomerSegment = Literal["all", "new", "returning", "vip"]

FAILURE_WINDOW = timedelta(minutes=15)


@dataclass(frozen=True)
class CheckoutSignal:
    checkout_token: str
    shop_domain: str
    email: str | None = None
    phone: str | None = None
    amount_subtotal: float | None = None
    country_code: str | None = None
    customer_segment: CustomerSegment | None = None
    payment_info_submitted_at: datetime | str | None = None
    checkout_completed_at: datetime | str | None = None


@dataclass(frozen=True)
class RecoverySession:
    id: str
    checkout_token: str
    shop_domain: str
    state: RecoveryState
    attempt_count: int
    failed_at: datetime
    email: str | None = None
    phone: str | None = None
    amount_subtotal: float | None = None
    country_code: str | None = None
    customer_segment: CustomerSegment | None = None
    last_attempt_at: datetime | None = None
    next_attempt_at: datetime | None = None
    recovered_order_id: str | None = None


def coerce_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: datetime | str | None) -> datetime | None:
    """Best-effort conversion to an aware UTC datetime; ``None`` when unusable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return coerce_utc(value)
    if not isinstance(value, str):
        return None
    raw = value.strip()
    if not raw:
        return None
    if raw.endswith(("Z", "z")):
        raw = f"{raw[:-1]}+00:00"
    try:
        return coerce_utc(datetime.fromisoformat(raw))
    except ValueError:
        return None


def infer_likely_failed_payment(signal: CheckoutSignal, now: datetime | str) -> bool:
    """Classify a checkout as a likely failed payment.

    True only when payment details were submitted, the checkout never
    completed, and at least ``FAILURE_WINDOW`` has elapsed since the
    submission. Any timestamp that cannot be read yields False.
    """
    if signal.checkout_completed_at is not None and str(signal.checkout_completed_at).strip():
        return False

    submitted_at = parse_timestamp(signal.payment_info_submitted_at)
    reference_now = parse_timestamp(now)
    if submitted_at is None or reference_now is None:
        return False

    return reference_now - submitted_at >= FAILURE_WINDOW


def is_due(session: RecoverySession, now: datetime) -> bool:
    if session.state != "LIKELY_FAILED_PAYMENT":
        return False
    if session.next_attempt_at is None:
        return False
    return session.next_attempt_at <= coerce_utc(now)
