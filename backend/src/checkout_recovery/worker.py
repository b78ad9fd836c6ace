from __future__ import annotations

from datetime import datetime

from .engine import RecoverySession, coerce_utc
from .notifier import MessageSender
from .retry_policy import DEFAULT_RETRY_POLICY, RetryPolicy, next_attempt_at


def process_recovery_attempt(
    session: RecoverySession,
    now: datetime,
    sender: MessageSender,
    retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
) -> RecoverySession:
    """Run one outreach attempt and return the advanced session.

    Sessions outside LIKELY_FAILED_PAYMENT come back unchanged. Send errors
    propagate, leaving the caller's copy of the session un-advanced so the
    next sweep retries the same attempt.
    """
    if session.state != "LIKELY_FAILED_PAYMENT":
        return session

    attempted_at = coerce_utc(now)
    sender.send_email(session)
    sender.send_sms(session)

    attempt_count = session.attempt_count + 1
    scheduled = next_attempt_at(attempted_at, attempt_count, retry_policy)
    return RecoverySession(
        **{
            **session.__dict__,
            "attempt_count": attempt_count,
            "last_attempt_at": attempted_at,
            "next_attempt_at": scheduled,
            "state": "LIKELY_FAILED_PAYMENT" if scheduled is not None else "EXPIRED",
        }
    )
