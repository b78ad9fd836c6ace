from __future__ import annotations

import os

import pytest

from fastapi.testclient import TestClient

from checkout_recovery.main import _cors_origin, create_app


def _set_env(overrides: dict[str, str | None]) -> dict[str, str | None]:
    previous: dict[str, str | None] = {}
    for key, value in overrides.items():
        previous[key] = os.environ.get(key)
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value
    return previous


def _restore_env(previous: dict[str, str | None]) -> None:
    for key, value in previous.items():
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value


def test_create_app_starts_with_production_secrets() -> None:
    previous = _set_env(
        {
            "RUNTIME_SECRET_GUARD_MODE": "enforce",
            "RECOVERY_LINK_SECRET": "prod-link-secret-001",
            "NOTIFIER_SENDER_TYPE": "stub",
            "RECOVERY_STORE_BACKEND": None,
            "CONFIG_STORE_BACKEND": None,
        }
    )
    try:
        app = create_app()
        assert app.title == "Checkout Recovery"
    finally:
        _restore_env(previous)


def test_create_app_blocks_placeholder_secret_when_enforced() -> None:
    previous = _set_env(
        {
            "RUNTIME_SECRET_GUARD_MODE": "enforce",
            "RECOVERY_LINK_SECRET": None,
        }
    )
    try:
        with pytest.raises(RuntimeError) as exc_info:
            create_app()
        message = str(exc_info.value)
        assert "RECOVERY_LINK_SECRET" in message
        assert "NOTIFIER_SENDER_TYPE=stub" in message
    finally:
        _restore_env(previous)


def test_create_app_only_warns_in_warn_mode(caplog: pytest.LogCaptureFixture) -> None:
    previous = _set_env(
        {
            "RUNTIME_SECRET_GUARD_MODE": "warn",
            "RECOVERY_LINK_SECRET": None,
        }
    )
    try:
        with caplog.at_level("WARNING", logger="checkout_recovery.main"):
            create_app()
        assert any("RECOVERY_LINK_SECRET" in record.getMessage() for record in caplog.records)
    finally:
        _restore_env(previous)


@pytest.mark.parametrize(
    ("base_url", "expected"),
    [
        ("https://admin.example.com/app/", "https://admin.example.com"),
        ("http://localhost:8080", "http://localhost:8080"),
        ("  https://shop.example.com:8443/settings?tab=1 ", "https://shop.example.com:8443"),
        ("admin.example.com/", "admin.example.com"),
    ],
)
def test_cors_origin_keeps_scheme_and_host(base_url: str, expected: str) -> None:
    assert _cors_origin(base_url) == expected


def test_create_app_allows_only_the_app_origin() -> None:
    previous = _set_env(
        {
            "RUNTIME_SECRET_GUARD_MODE": "off",
            "APP_BASE_URL": "https://admin.example.com/app/",
            "RECOVERY_STORE_BACKEND": None,
            "CONFIG_STORE_BACKEND": None,
        }
    )
    try:
        client = TestClient(create_app())
        allowed = client.get("/health", headers={"Origin": "https://admin.example.com"})
        assert allowed.headers.get("access-control-allow-origin") == "https://admin.example.com"
        other = client.get("/health", headers={"Origin": "https://evil.example.com"})
        assert "access-control-allow-origin" not in other.headers
    finally:
        _restore_env(previous)
