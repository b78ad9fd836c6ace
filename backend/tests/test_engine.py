from __future__ import annotations

from datetime import datetime, timedelta, timezone

from checkout_recovery.engine import (
    CheckoutSignal,
    RecoverySession,
    infer_likely_failed_payment,
    is_due,
    parse_timestamp,
)

SUBMITTED_AT = datetime(2026, 2, 24, 12, 0, tzinfo=timezone.utc)


def _signal(**overrides) -> CheckoutSignal:
    values = {
        "checkout_token": "chk_1",
        "shop_domain": "example.myshopify.com",
        "payment_info_submitted_at": SUBMITTED_AT,
    }
    values.update(overrides)
    return CheckoutSignal(**values)


def test_classification_boundary_at_fifteen_minutes() -> None:
    signal = _signal()

    assert infer_likely_failed_payment(signal, SUBMITTED_AT + timedelta(minutes=14, seconds=59)) is False
    assert infer_likely_failed_payment(signal, SUBMITTED_AT + timedelta(minutes=15)) is True


def test_completed_checkout_is_never_failed() -> None:
    signal = _signal(checkout_completed_at=SUBMITTED_AT + timedelta(minutes=1))

    assert infer_likely_failed_payment(signal, SUBMITTED_AT + timedelta(hours=2)) is False


def test_missing_or_unreadable_submission_fails_closed() -> None:
    now = SUBMITTED_AT + timedelta(hours=1)

    assert infer_likely_failed_payment(_signal(payment_info_submitted_at=None), now) is False
    assert infer_likely_failed_payment(_signal(payment_info_submitted_at="not-a-date"), now) is False
    assert infer_likely_failed_payment(_signal(), "garbage") is False


def test_iso_strings_with_z_suffix_are_accepted() -> None:
    signal = _signal(payment_info_submitted_at="2026-02-24T12:00:00.000Z")

    assert infer_likely_failed_payment(signal, "2026-02-24T12:30:00Z") is True
    assert parse_timestamp("2026-02-24T12:00:00Z") == SUBMITTED_AT


def test_naive_datetimes_are_treated_as_utc() -> None:
    assert parse_timestamp(datetime(2026, 2, 24, 12, 0)) == SUBMITTED_AT


def test_is_due_only_for_active_sessions_with_past_schedule() -> None:
    session = RecoverySession(
        id="s-1",
        checkout_token="chk_1",
        shop_domain="example.myshopify.com",
        state="LIKELY_FAILED_PAYMENT",
        attempt_count=0,
        failed_at=SUBMITTED_AT,
        next_attempt_at=SUBMITTED_AT,
    )

    assert is_due(session, SUBMITTED_AT) is True
    assert is_due(session, SUBMITTED_AT - timedelta(seconds=1)) is False
    assert is_due(RecoverySession(**{**session.__dict__, "next_attempt_at": None}), SUBMITTED_AT) is False
    assert is_due(RecoverySession(**{**session.__dict__, "state": "RECOVERED"}), SUBMITTED_AT) is False
