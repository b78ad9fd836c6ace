from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from .engine import coerce_utc

DEFAULT_RETRY_MINUTES: tuple[int, ...] = (15, 360, 1440)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int
    minutes_after_failure: tuple[int, ...]

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")


DEFAULT_RETRY_POLICY = RetryPolicy(max_attempts=3, minutes_after_failure=DEFAULT_RETRY_MINUTES)


def retry_policy_from_minutes(minutes: Iterable[int]) -> RetryPolicy:
    values = tuple(int(value) for value in minutes)
    if not values:
        return DEFAULT_RETRY_POLICY
    return RetryPolicy(max_attempts=len(values), minutes_after_failure=values)


def next_attempt_at(
    base_time: datetime,
    attempt_number: int,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
) -> datetime | None:
    """Return when attempt ``attempt_number`` should run, or None when exhausted.

    ``base_time`` is the detection time for the first schedule and the sweep
    time afterwards, so delays count from the previous attempt.
    """
    if attempt_number < 0 or attempt_number >= policy.max_attempts:
        return None
    if attempt_number >= len(policy.minutes_after_failure):
        return None
    minutes = policy.minutes_after_failure[attempt_number]
    return coerce_utc(base_time) + timedelta(minutes=minutes)
