from __future__ import annotations

import os
from dataclasses import dataclass


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _as_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def _normalize_mode(value: str | None, *, default: str, allowed: set[str]) -> str:
    if value is None:
        return default
    normalized = value.strip().lower()
    return normalized if normalized in allowed else default


def _is_placeholder(value: str, *, defaults: set[str]) -> bool:
    normalized = value.strip()
    if not normalized:
        return True
    if normalized in defaults:
        return True
    lower = normalized.lower()
    return lower in {"change-me", "replace-me", "placeholder", "changeme"}


@dataclass(frozen=True)
class Settings:
    app_name: str = "Checkout Recovery"
    api_prefix: str = "/api/v1"
    app_base_url: str = "http://localhost:8080"
    recovery_store_backend: str = "inmemory"
    config_store_backend: str = "inmemory"
    database_url: str = ""
    notifier_sender_type: str = "stub"
    notifier_api_base_url: str = ""
    notifier_api_key: str = ""
    notifier_timeout_seconds: int = 10
    recovery_link_secret: str = "dev-recovery-link-secret"
    recovery_link_ttl_minutes: int = 4320
    campaign_targeting_enabled: bool = True
    sweep_allow_now_override: bool = False
    runtime_secret_guard_mode: str = "warn"


def get_settings() -> Settings:
    return Settings(
        app_name=os.getenv("RECOVERY_APP_NAME", "Checkout Recovery"),
        api_prefix=os.getenv("RECOVERY_API_PREFIX", "/api/v1"),
        app_base_url=os.getenv("APP_BASE_URL", "http://localhost:8080"),
        recovery_store_backend=os.getenv("RECOVERY_STORE_BACKEND", "inmemory"),
        config_store_backend=os.getenv("CONFIG_STORE_BACKEND", "inmemory"),
        database_url=os.getenv("DATABASE_URL", ""),
        notifier_sender_type=_normalize_mode(
            os.getenv("NOTIFIER_SENDER_TYPE"),
            default="stub",
            allowed={"stub", "http"},
        ),
        notifier_api_base_url=os.getenv("NOTIFIER_API_BASE_URL", ""),
        notifier_api_key=os.getenv("NOTIFIER_API_KEY", ""),
        notifier_timeout_seconds=_as_int(os.getenv("NOTIFIER_TIMEOUT_SECONDS"), 10),
        recovery_link_secret=os.getenv("RECOVERY_LINK_SECRET", "dev-recovery-link-secret"),
        recovery_link_ttl_minutes=_as_int(os.getenv("RECOVERY_LINK_TTL_MINUTES"), 4320),
        campaign_targeting_enabled=_as_bool(os.getenv("CAMPAIGN_TARGETING_ENABLED"), True),
        sweep_allow_now_override=_as_bool(os.getenv("SWEEP_ALLOW_NOW_OVERRIDE"), False),
        runtime_secret_guard_mode=_normalize_mode(
            os.getenv("RUNTIME_SECRET_GUARD_MODE"),
            default="warn",
            allowed={"off", "warn", "enforce"},
        ),
    )


def runtime_secret_issues(settings: Settings) -> tuple[str, ...]:
    issues: list[str] = []
    if _is_placeholder(
        settings.recovery_link_secret,
        defaults={"dev-recovery-link-secret", "change-me-in-production"},
    ):
        issues.append("RECOVERY_LINK_SECRET is empty or uses a development placeholder")
    if settings.notifier_sender_type == "http":
        if not settings.notifier_api_base_url.strip():
            issues.append("NOTIFIER_API_BASE_URL is required when NOTIFIER_SENDER_TYPE=http")
        if not settings.notifier_api_key.strip():
            issues.append("NOTIFIER_API_KEY is required when NOTIFIER_SENDER_TYPE=http")
    if "postgres" in {
        settings.recovery_store_backend.strip().lower(),
        settings.config_store_backend.strip().lower(),
    } and not settings.database_url.strip():
        issues.append("DATABASE_URL is required when a store backend is postgres")
    return tuple(issues)
