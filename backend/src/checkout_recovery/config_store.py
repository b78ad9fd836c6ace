from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Mapping, Protocol

from sqlalchemy import DateTime, Integer, String, Text, create_engine, delete, select
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from .campaigns import (
    CampaignStatus,
    RecoveryCampaign,
    campaign_from_payload,
    campaign_to_payload,
    default_campaigns,
)
from .retry_policy import DEFAULT_RETRY_MINUTES, RetryPolicy, retry_policy_from_minutes

_SETTINGS_KEY = "default"
_SETTINGS_FIELDS = ("brand_name", "support_email", "accent_color", "send_email", "send_sms", "retry_minutes")


@dataclass(frozen=True)
class RecoverySettings:
    brand_name: str = "Retryly"
    support_email: str = "support@example.com"
    accent_color: str = "#0f766e"
    send_email: bool = True
    send_sms: bool = False
    retry_minutes: tuple[int, ...] = DEFAULT_RETRY_MINUTES


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def merge_settings(current: RecoverySettings, changes: Mapping[str, Any]) -> RecoverySettings:
    values = asdict(current)
    for key, value in changes.items():
        if key not in _SETTINGS_FIELDS or value is None:
            continue
        values[key] = value
    values["retry_minutes"] = tuple(int(value) for value in values["retry_minutes"])
    return RecoverySettings(**values)


def _settings_to_payload(settings: RecoverySettings) -> dict[str, Any]:
    payload = asdict(settings)
    payload["retry_minutes"] = list(settings.retry_minutes)
    return payload


def _ordered(campaigns: list[RecoveryCampaign]) -> list[RecoveryCampaign]:
    return sorted(campaigns, key=lambda value: (value.priority, value.name))


def _activate(campaigns: list[RecoveryCampaign], active_id: str) -> list[RecoveryCampaign]:
    """Pause every ACTIVE campaign other than ``active_id``."""
    result: list[RecoveryCampaign] = []
    for campaign in campaigns:
        if campaign.id != active_id and campaign.status == "ACTIVE":
            campaign = RecoveryCampaign(**{**campaign.__dict__, "status": "PAUSED"})
        result.append(campaign)
    return result


def pick_active_campaign(campaigns: list[RecoveryCampaign]) -> RecoveryCampaign | None:
    ordered = _ordered(campaigns)
    for campaign in ordered:
        if campaign.status == "ACTIVE":
            return campaign
    return ordered[0] if ordered else None


class ConfigStore(Protocol):
    def reset(self) -> None: ...

    def read_settings(self) -> RecoverySettings: ...

    def write_settings(self, changes: Mapping[str, Any]) -> RecoverySettings: ...

    def list_campaigns(self) -> list[RecoveryCampaign]: ...

    def get_active_campaign(self) -> RecoveryCampaign | None: ...

    def save_campaign(self, campaign: RecoveryCampaign) -> RecoveryCampaign: ...

    def set_campaign_status(self, campaign_id: str, status: CampaignStatus) -> RecoveryCampaign | None: ...


class ConfigProvider(Protocol):
    def settings(self) -> RecoverySettings: ...

    def retry_policy(self) -> RetryPolicy: ...

    def active_campaign(self) -> RecoveryCampaign | None: ...


class InMemoryConfigStore:
    def __init__(self) -> None:
        self._lock = Lock()
        self._settings = RecoverySettings()
        self._campaigns: dict[str, RecoveryCampaign] = {value.id: value for value in default_campaigns()}

    def reset(self) -> None:
        with self._lock:
            self._settings = RecoverySettings()
            self._campaigns = {value.id: value for value in default_campaigns()}

    def read_settings(self) -> RecoverySettings:
        with self._lock:
            return self._settings

    def write_settings(self, changes: Mapping[str, Any]) -> RecoverySettings:
        with self._lock:
            self._settings = merge_settings(self._settings, changes)
            return self._settings

    def list_campaigns(self) -> list[RecoveryCampaign]:
        with self._lock:
            return _ordered(list(self._campaigns.values()))

    def get_active_campaign(self) -> RecoveryCampaign | None:
        with self._lock:
            return pick_active_campaign(list(self._campaigns.values()))

    def save_campaign(self, campaign: RecoveryCampaign) -> RecoveryCampaign:
        with self._lock:
            self._campaigns[campaign.id] = campaign
            if campaign.status == "ACTIVE":
                self._campaigns = {value.id: value for value in _activate(list(self._campaigns.values()), campaign.id)}
            return campaign

    def set_campaign_status(self, campaign_id: str, status: CampaignStatus) -> RecoveryCampaign | None:
        with self._lock:
            target = self._campaigns.get(campaign_id)
            if target is None:
                return None
            target = RecoveryCampaign(**{**target.__dict__, "status": status})
            self._campaigns[campaign_id] = target
            if status == "ACTIVE":
                self._campaigns = {value.id: value for value in _activate(list(self._campaigns.values()), campaign_id)}
            return target


class ConfigStoreBase(DeclarativeBase):
    pass


class _SettingsRow(ConfigStoreBase):
    __tablename__ = "recovery_settings"

    settings_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class _CampaignRow(ConfigStoreBase):
    __tablename__ = "recovery_campaigns"

    campaign_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


def _dump(payload: dict[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


class SqlAlchemyConfigStore:
    """Settings and campaigns stored as JSON payload rows; seeds defaults on first use."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise RuntimeError("DATABASE_URL is required for CONFIG_STORE_BACKEND=postgres")
        self._engine = create_engine(database_url, future=True, pool_pre_ping=True)
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False, future=True)
        if database_url.startswith("sqlite"):
            ConfigStoreBase.metadata.create_all(self._engine)
        self._seed_campaigns()

    def _session(self):
        return self._session_factory()

    def _seed_campaigns(self) -> None:
        with self._session() as session:
            with session.begin():
                existing = session.execute(select(_CampaignRow.campaign_id).limit(1)).first()
                if existing is not None:
                    return
                for campaign in default_campaigns():
                    session.add(self._campaign_row(campaign))

    def _campaign_row(self, campaign: RecoveryCampaign) -> _CampaignRow:
        return _CampaignRow(
            campaign_id=campaign.id,
            status=campaign.status,
            priority=campaign.priority,
            payload_json=_dump(campaign_to_payload(campaign)),
            updated_at=_now_utc(),
        )

    def _write_campaign(self, session, campaign: RecoveryCampaign) -> None:
        row = session.get(_CampaignRow, campaign.id)
        if row is None:
            session.add(self._campaign_row(campaign))
            return
        row.status = campaign.status
        row.priority = campaign.priority
        row.payload_json = _dump(campaign_to_payload(campaign))
        row.updated_at = _now_utc()

    def _load_campaigns(self, session) -> list[RecoveryCampaign]:
        rows = session.execute(select(_CampaignRow)).scalars()
        return [campaign_from_payload(json.loads(row.payload_json)) for row in rows]

    def reset(self) -> None:
        with self._session() as session:
            with session.begin():
                session.execute(delete(_SettingsRow))
                session.execute(delete(_CampaignRow))
        self._seed_campaigns()

    def read_settings(self) -> RecoverySettings:
        with self._session() as session:
            row = session.get(_SettingsRow, _SETTINGS_KEY)
            if row is None:
                return RecoverySettings()
            return merge_settings(RecoverySettings(), json.loads(row.payload_json))

    def write_settings(self, changes: Mapping[str, Any]) -> RecoverySettings:
        with self._session() as session:
            with session.begin():
                row = session.get(_SettingsRow, _SETTINGS_KEY)
                current = RecoverySettings()
                if row is not None:
                    current = merge_settings(current, json.loads(row.payload_json))
                merged = merge_settings(current, changes)
                payload_json = _dump(_settings_to_payload(merged))
                if row is None:
                    session.add(_SettingsRow(settings_key=_SETTINGS_KEY, payload_json=payload_json, updated_at=_now_utc()))
                else:
                    row.payload_json = payload_json
                    row.updated_at = _now_utc()
                return merged

    def list_campaigns(self) -> list[RecoveryCampaign]:
        with self._session() as session:
            return _ordered(self._load_campaigns(session))

    def get_active_campaign(self) -> RecoveryCampaign | None:
        with self._session() as session:
            return pick_active_campaign(self._load_campaigns(session))

    def save_campaign(self, campaign: RecoveryCampaign) -> RecoveryCampaign:
        with self._session() as session:
            with session.begin():
                self._write_campaign(session, campaign)
                if campaign.status == "ACTIVE":
                    session.flush()
                    for other in _activate(self._load_campaigns(session), campaign.id):
                        self._write_campaign(session, other)
        return campaign

    def set_campaign_status(self, campaign_id: str, status: CampaignStatus) -> RecoveryCampaign | None:
        with self._session() as session:
            with session.begin():
                row = session.get(_CampaignRow, campaign_id)
                if row is None:
                    return None
                target = campaign_from_payload(json.loads(row.payload_json))
                target = RecoveryCampaign(**{**target.__dict__, "status": status})
                self._write_campaign(session, target)
                if status == "ACTIVE":
                    session.flush()
                    for other in _activate(self._load_campaigns(session), campaign_id):
                        self._write_campaign(session, other)
                return target


class StoreConfigProvider:
    """Reads settings and the active campaign fresh on every call."""

    def __init__(self, store: ConfigStore, *, campaign_targeting_enabled: bool = True) -> None:
        self._store = store
        self._campaign_targeting_enabled = campaign_targeting_enabled

    def settings(self) -> RecoverySettings:
        return self._store.read_settings()

    def retry_policy(self) -> RetryPolicy:
        return retry_policy_from_minutes(self._store.read_settings().retry_minutes)

    def active_campaign(self) -> RecoveryCampaign | None:
        if not self._campaign_targeting_enabled:
            return None
        return self._store.get_active_campaign()


def create_config_store(*, backend: str, database_url: str) -> ConfigStore:
    normalized = backend.strip().lower()
    if normalized == "postgres":
        return SqlAlchemyConfigStore(database_url)
    if normalized == "inmemory":
        return InMemoryConfigStore()
    raise RuntimeError(f"unsupported CONFIG_STORE_BACKEND: {backend}")
