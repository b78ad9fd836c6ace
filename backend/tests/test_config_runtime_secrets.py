from __future__ import annotations

import os

from checkout_recovery.config import Settings, get_settings, runtime_secret_issues


def _set_env(name: str, value: str | None) -> str | None:
    previous = os.environ.get(name)
    if value is None:
        os.environ.pop(name, None)
    else:
        os.environ[name] = value
    return previous


def _restore_env(name: str, previous: str | None) -> None:
    if previous is None:
        os.environ.pop(name, None)
    else:
        os.environ[name] = previous


def test_get_settings_defaults() -> None:
    previous = {
        "NOTIFIER_SENDER_TYPE": _set_env("NOTIFIER_SENDER_TYPE", None),
        "RECOVERY_STORE_BACKEND": _set_env("RECOVERY_STORE_BACKEND", None),
        "SWEEP_ALLOW_NOW_OVERRIDE": _set_env("SWEEP_ALLOW_NOW_OVERRIDE", None),
    }
    try:
        settings = get_settings()
        assert settings.notifier_sender_type == "stub"
        assert settings.recovery_store_backend == "inmemory"
        assert settings.sweep_allow_now_override is False
        assert settings.campaign_targeting_enabled is True
    finally:
        for key, value in previous.items():
            _restore_env(key, value)


def test_get_settings_falls_back_on_unknown_modes() -> None:
    previous = {
        "NOTIFIER_SENDER_TYPE": _set_env("NOTIFIER_SENDER_TYPE", "carrier-pigeon"),
        "RUNTIME_SECRET_GUARD_MODE": _set_env("RUNTIME_SECRET_GUARD_MODE", "strict"),
        "NOTIFIER_TIMEOUT_SECONDS": _set_env("NOTIFIER_TIMEOUT_SECONDS", "soon"),
    }
    try:
        settings = get_settings()
        assert settings.notifier_sender_type == "stub"
        assert settings.runtime_secret_guard_mode == "warn"
        assert settings.notifier_timeout_seconds == 10
    finally:
        for key, value in previous.items():
            _restore_env(key, value)


def test_placeholder_link_secret_is_reported() -> None:
    issues = runtime_secret_issues(Settings())

    assert any("RECOVERY_LINK_SECRET" in issue for issue in issues)


def test_http_notifier_requires_url_and_key() -> None:
    issues = runtime_secret_issues(
        Settings(recovery_link_secret="prod-link-secret-001", notifier_sender_type="http")
    )

    assert "NOTIFIER_API_BASE_URL is required when NOTIFIER_SENDER_TYPE=http" in issues
    assert "NOTIFIER_API_KEY is required when NOTIFIER_SENDER_TYPE=http" in issues


def test_postgres_backend_requires_database_url() -> None:
    issues = runtime_secret_issues(
        Settings(recovery_link_secret="prod-link-secret-001", recovery_store_backend="postgres")
    )

    assert any("DATABASE_URL" in issue for issue in issues)


def test_complete_production_settings_have_no_issues() -> None:
    settings = Settings(
        recovery_link_secret="prod-link-secret-001",
        notifier_sender_type="http",
        notifier_api_base_url="https://api.messages.test",
        notifier_api_key="key-001",
        recovery_store_backend="postgres",
        database_url="postgresql+psycopg://localhost/recovery",
    )

    assert runtime_secret_issues(settings) == ()
