from __future__ import annotations

from datetime import datetime
from typing import Iterable

from sqlalchemy import DateTime, Float, Integer, String, create_engine, delete, select
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from .engine import RecoverySession, coerce_utc
from .store import (
    RECENT_SESSIONS_DEFAULT_LIMIT,
    CreateSessionInput,
    InMemoryRecoveryStore,
    RecoveryStore,
    RecoverySummary,
    new_session,
    summarize,
)


class RecoveryStoreBase(DeclarativeBase):
    pass


class _RecoverySessionRow(RecoveryStoreBase):
    __tablename__ = "recovery_sessions"

    checkout_token: Mapped[str] = mapped_column(String(255), primary_key=True)
    id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    shop_domain: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    amount_subtotal: Mapped[float | None] = mapped_column(Float, nullable=True)
    country_code: Mapped[str | None] = mapped_column(String(8), nullable=True)
    customer_segment: Mapped[str | None] = mapped_column(String(16), nullable=True)
    state: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    recovered_order_id: Mapped[str | None] = mapped_column(String(255), nullable=True)


def _optional_utc(value: datetime | None) -> datetime | None:
    return coerce_utc(value) if value is not None else None


def _row_to_session(row: _RecoverySessionRow) -> RecoverySession:
    return RecoverySession(
        id=row.id,
        checkout_token=row.checkout_token,
        shop_domain=row.shop_domain,
        email=row.email,
        phone=row.phone,
        amount_subtotal=row.amount_subtotal,
        country_code=row.country_code,
        customer_segment=row.customer_segment,  # type: ignore[arg-type]
        state=row.state,  # type: ignore[arg-type]
        attempt_count=row.attempt_count,
        failed_at=coerce_utc(row.failed_at),
        last_attempt_at=_optional_utc(row.last_attempt_at),
        next_attempt_at=_optional_utc(row.next_attempt_at),
        recovered_order_id=row.recovered_order_id,
    )


def _apply_session(row: _RecoverySessionRow, session: RecoverySession) -> None:
    row.id = session.id
    row.shop_domain = session.shop_domain
    row.email = session.email
    row.phone = session.phone
    row.amount_subtotal = session.amount_subtotal
    row.country_code = session.country_code
    row.customer_segment = session.customer_segment
    row.state = session.state
    row.attempt_count = session.attempt_count
    row.failed_at = coerce_utc(session.failed_at)
    row.last_attempt_at = _optional_utc(session.last_attempt_at)
    row.next_attempt_at = _optional_utc(session.next_attempt_at)
    row.recovered_order_id = session.recovered_order_id


class SqlAlchemyRecoveryStore:
    """Recovery sessions persisted one row per checkout token."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise RuntimeError("DATABASE_URL is required for RECOVERY_STORE_BACKEND=postgres")
        self._engine = create_engine(database_url, future=True, pool_pre_ping=True)
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False, future=True)
        if database_url.startswith("sqlite"):
            RecoveryStoreBase.metadata.create_all(self._engine)

    def _session(self):
        return self._session_factory()

    def reset(self) -> None:
        with self._session() as session:
            with session.begin():
                session.execute(delete(_RecoverySessionRow))

    def upsert_failed_session(self, payload: CreateSessionInput) -> RecoverySession:
        with self._session() as session:
            with session.begin():
                row = session.get(_RecoverySessionRow, payload.checkout_token)
                if row is not None:
                    return _row_to_session(row)
                created = new_session(payload)
                row = _RecoverySessionRow(checkout_token=created.checkout_token)
                _apply_session(row, created)
                session.add(row)
                return created

    def get_by_checkout_token(self, checkout_token: str) -> RecoverySession | None:
        with self._session() as session:
            row = session.get(_RecoverySessionRow, checkout_token)
            if row is None:
                return None
            return _row_to_session(row)

    def mark_recovered(self, checkout_token: str, order_id: str) -> RecoverySession | None:
        with self._session() as session:
            with session.begin():
                row = session.get(_RecoverySessionRow, checkout_token)
                if row is None:
                    return None
                row.state = "RECOVERED"
                row.recovered_order_id = order_id
                row.next_attempt_at = None
                return _row_to_session(row)

    def mark_unsubscribed(self, checkout_token: str) -> RecoverySession | None:
        with self._session() as session:
            with session.begin():
                row = session.get(_RecoverySessionRow, checkout_token)
                if row is None:
                    return None
                row.state = "UNSUBSCRIBED"
                row.next_attempt_at = None
                return _row_to_session(row)

    def list_due(self, now: datetime) -> list[RecoverySession]:
        with self._session() as session:
            rows = session.execute(
                select(_RecoverySessionRow)
                .where(_RecoverySessionRow.state == "LIKELY_FAILED_PAYMENT")
                .where(_RecoverySessionRow.next_attempt_at.is_not(None))
                .where(_RecoverySessionRow.next_attempt_at <= coerce_utc(now))
                .order_by(_RecoverySessionRow.next_attempt_at.asc())
            ).scalars()
            return [_row_to_session(row) for row in rows]

    def list_recent(self, limit: int = RECENT_SESSIONS_DEFAULT_LIMIT) -> list[RecoverySession]:
        with self._session() as session:
            rows = session.execute(
                select(_RecoverySessionRow)
                .order_by(_RecoverySessionRow.failed_at.desc())
                .limit(max(limit, 0))
            ).scalars()
            return [_row_to_session(row) for row in rows]

    def update(self, recovery_session: RecoverySession) -> RecoverySession:
        with self._session() as session:
            with session.begin():
                row = session.get(_RecoverySessionRow, recovery_session.checkout_token)
                if row is None:
                    row = _RecoverySessionRow(checkout_token=recovery_session.checkout_token)
                    session.add(row)
                _apply_session(row, recovery_session)
        return recovery_session

    def summary(self) -> RecoverySummary:
        with self._session() as session:
            rows: Iterable[_RecoverySessionRow] = session.execute(select(_RecoverySessionRow)).scalars()
            return summarize([_row_to_session(row) for row in rows])


def create_recovery_store(*, backend: str, database_url: str) -> RecoveryStore:
    normalized = backend.strip().lower()
    if normalized == "postgres":
        return SqlAlchemyRecoveryStore(database_url)
    if normalized == "inmemory":
        return InMemoryRecoveryStore()
    raise RuntimeError(f"unsupported RECOVERY_STORE_BACKEND: {backend}")
