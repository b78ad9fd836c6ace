from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from checkout_recovery.retry_policy import (
    DEFAULT_RETRY_POLICY,
    RetryPolicy,
    next_attempt_at,
    retry_policy_from_minutes,
)

BASE = datetime(2026, 2, 24, 12, 0, tzinfo=timezone.utc)


def test_next_attempt_follows_minutes_table() -> None:
    policy = RetryPolicy(max_attempts=3, minutes_after_failure=(15, 360, 1440))

    assert next_attempt_at(BASE, 0, policy) == BASE + timedelta(minutes=15)
    assert next_attempt_at(BASE, 1, policy) == BASE + timedelta(minutes=360)
    assert next_attempt_at(BASE, 2, policy) == BASE + timedelta(minutes=1440)
    assert next_attempt_at(BASE, 3, policy) is None


def test_max_attempts_caps_a_longer_table() -> None:
    policy = RetryPolicy(max_attempts=1, minutes_after_failure=(15, 360))

    assert next_attempt_at(BASE, 1, policy) is None


def test_table_shorter_than_max_attempts_is_exhausted() -> None:
    policy = RetryPolicy(max_attempts=5, minutes_after_failure=(15,))

    assert next_attempt_at(BASE, 1, policy) is None


def test_negative_attempt_number_is_exhausted() -> None:
    assert next_attempt_at(BASE, -1) is None


def test_policy_rejects_zero_max_attempts() -> None:
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0, minutes_after_failure=(15,))


def test_policy_from_minutes() -> None:
    policy = retry_policy_from_minutes([5, 10])

    assert policy.max_attempts == 2
    assert policy.minutes_after_failure == (5, 10)
    assert retry_policy_from_minutes([]) == DEFAULT_RETRY_POLICY
