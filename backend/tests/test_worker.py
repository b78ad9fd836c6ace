from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from checkout_recovery.engine import RecoverySession
from checkout_recovery.notifier import NotifierError
from checkout_recovery.retry_policy import RetryPolicy
from checkout_recovery.worker import process_recovery_attempt

NOW = datetime(2026, 2, 24, 13, 0, tzinfo=timezone.utc)
POLICY = RetryPolicy(max_attempts=3, minutes_after_failure=(15, 360, 1440))


class RecordingSender:
    def __init__(self, *, fail_on: str | None = None) -> None:
        self.calls: list[str] = []
        self._fail_on = fail_on

    def send_email(self, session: RecoverySession) -> None:
        self.calls.append("email")
        if self._fail_on == "email":
            raise NotifierError("provider_down", "email provider unavailable")

    def send_sms(self, session: RecoverySession) -> None:
        self.calls.append("sms")
        if self._fail_on == "sms":
            raise NotifierError("provider_down", "sms provider unavailable")


def _session(**overrides) -> RecoverySession:
    values = {
        "id": "s-1",
        "checkout_token": "chk_1",
        "shop_domain": "example.myshopify.com",
        "state": "LIKELY_FAILED_PAYMENT",
        "attempt_count": 0,
        "failed_at": NOW - timedelta(minutes=30),
        "next_attempt_at": NOW - timedelta(minutes=30),
    }
    values.update(overrides)
    return RecoverySession(**values)


def test_first_attempt_schedules_next_from_now() -> None:
    sender = RecordingSender()

    updated = process_recovery_attempt(_session(), NOW, sender, POLICY)

    assert sender.calls == ["email", "sms"]
    assert updated.attempt_count == 1
    assert updated.last_attempt_at == NOW
    assert updated.next_attempt_at == NOW + timedelta(minutes=360)
    assert updated.state == "LIKELY_FAILED_PAYMENT"


def test_final_attempt_expires_session() -> None:
    updated = process_recovery_attempt(_session(attempt_count=2), NOW, RecordingSender(), POLICY)

    assert updated.attempt_count == 3
    assert updated.state == "EXPIRED"
    assert updated.next_attempt_at is None


def test_inactive_session_is_returned_unchanged() -> None:
    sender = RecordingSender()
    session = _session(state="RECOVERED", next_attempt_at=None)

    assert process_recovery_attempt(session, NOW, sender, POLICY) is session
    assert sender.calls == []


def test_email_failure_skips_sms_and_propagates() -> None:
    sender = RecordingSender(fail_on="email")

    with pytest.raises(NotifierError):
        process_recovery_attempt(_session(), NOW, sender, POLICY)

    assert sender.calls == ["email"]


def test_sms_failure_after_email_propagates() -> None:
    sender = RecordingSender(fail_on="sms")
    session = _session()

    with pytest.raises(NotifierError) as exc_info:
        process_recovery_attempt(session, NOW, sender, POLICY)

    assert exc_info.value.error_code == "provider_down"
    assert sender.calls == ["email", "sms"]
    assert session.attempt_count == 0
