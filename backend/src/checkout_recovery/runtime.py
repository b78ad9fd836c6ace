from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from threading import Lock
from typing import Iterator

from .campaigns import evaluate_campaign_rules
from .config_store import ConfigProvider
from .engine import CheckoutSignal, RecoverySession, coerce_utc, infer_likely_failed_payment, is_due
from .notifier import MessageSender
from .store import RECENT_SESSIONS_DEFAULT_LIMIT, CreateSessionInput, RecoveryStore, RecoverySummary
from .worker import process_recovery_attempt

logger = logging.getLogger(__name__)


class CheckoutLocks:
    """One lock per checkout token, dropped once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._guard = Lock()
        self._locks: dict[str, Lock] = {}
        self._users: dict[str, int] = {}

    def tracked_tokens(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, checkout_token: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(checkout_token, Lock())
            self._users[checkout_token] = self._users.get(checkout_token, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                remaining = self._users[checkout_token] - 1
                if remaining:
                    self._users[checkout_token] = remaining
                else:
                    del self._users[checkout_token]
                    del self._locks[checkout_token]


@dataclass(frozen=True)
class SweepReport:
    considered: int
    advanced: int
    expired: int
    failed: int
    skipped: int


class RecoveryRuntime:
    def __init__(
        self,
        *,
        store: RecoveryStore,
        sender: MessageSender,
        config: ConfigProvider,
        locks: CheckoutLocks | None = None,
    ) -> None:
        self._store = store
        self._sender = sender
        self._config = config
        self._locks = locks if locks is not None else CheckoutLocks()

    def ingest_signal(self, signal: CheckoutSignal, now: datetime) -> RecoverySession | None:
        if not infer_likely_failed_payment(signal, now):
            logger.debug("checkout signal not classified as failed payment: checkout=%s", signal.checkout_token)
            return None

        campaign = self._config.active_campaign()
        decision = evaluate_campaign_rules(signal, campaign.rules if campaign else None)
        if not decision.accepted:
            logger.debug(
                "checkout signal rejected by campaign rules: checkout=%s campaign=%s reason=%s",
                signal.checkout_token,
                campaign.name if campaign else None,
                decision.reason,
            )
            return None

        with self._locks.hold(signal.checkout_token):
            session = self._store.upsert_failed_session(
                CreateSessionInput(
                    checkout_token=signal.checkout_token,
                    shop_domain=signal.shop_domain,
                    email=signal.email,
                    phone=signal.phone,
                    amount_subtotal=signal.amount_subtotal,
                    country_code=signal.country_code,
                    customer_segment=signal.customer_segment,
                    failed_at=coerce_utc(now),
                )
            )
        logger.info("recovery session tracked: checkout=%s shop=%s", session.checkout_token, session.shop_domain)
        return session

    def mark_checkout_recovered(self, checkout_token: str, order_id: str) -> RecoverySession | None:
        with self._locks.hold(checkout_token):
            session = self._store.mark_recovered(checkout_token, order_id)
        if session is None:
            logger.info("checkout completed without recovery session: checkout=%s", checkout_token)
        else:
            logger.info("recovery session recovered: checkout=%s order=%s", checkout_token, order_id)
        return session

    def unsubscribe(self, checkout_token: str) -> RecoverySession | None:
        with self._locks.hold(checkout_token):
            session = self._store.mark_unsubscribed(checkout_token)
        if session is not None:
            logger.info("recovery session unsubscribed: checkout=%s", checkout_token)
        return session

    def run_due(self, now: datetime) -> int:
        return self.run_due_report(now).considered

    def run_due_report(self, now: datetime) -> SweepReport:
        reference_now = coerce_utc(now)
        due = self._store.list_due(reference_now)
        advanced = 0
        expired = 0
        failed = 0
        skipped = 0

        for candidate in due:
            with self._locks.hold(candidate.checkout_token):
                # Re-read under the lock: a recover/unsubscribe or another sweep may have won the race.
                session = self._store.get_by_checkout_token(candidate.checkout_token)
                if session is None or not is_due(session, reference_now):
                    skipped += 1
                    continue
                try:
                    updated = process_recovery_attempt(
                        session,
                        reference_now,
                        self._sender,
                        self._config.retry_policy(),
                    )
                except Exception:  # noqa: BLE001
                    failed += 1
                    logger.exception(
                        "recovery attempt failed: checkout=%s attempt=%d",
                        session.checkout_token,
                        session.attempt_count,
                    )
                    continue
                self._store.update(updated)

            if updated.state == "EXPIRED":
                expired += 1
            else:
                advanced += 1

        report = SweepReport(
            considered=len(due),
            advanced=advanced,
            expired=expired,
            failed=failed,
            skipped=skipped,
        )
        if due:
            logger.info(
                "recovery sweep finished: considered=%d advanced=%d expired=%d failed=%d skipped=%d",
                report.considered,
                report.advanced,
                report.expired,
                report.failed,
                report.skipped,
            )
        return report

    def metrics(self) -> RecoverySummary:
        return self._store.summary()

    def recent(self, limit: int = RECENT_SESSIONS_DEFAULT_LIMIT) -> list[RecoverySession]:
        return self._store.list_recent(limit)
