from __future__ import annotations

import base64
import hashlib
import hmac
import json
from datetime import datetime, timedelta, timezone

import pytest

from checkout_recovery.recovery_links import (
    RecoveryLinkError,
    create_recovery_link,
    decode_recovery_link,
    encode_recovery_link,
    recovery_url,
)

NOW = datetime(2026, 2, 24, 12, 0, tzinfo=timezone.utc)


def _token(*, secret: str = "secret-123", ttl_minutes: int = 60) -> str:
    payload = create_recovery_link(
        checkout_token="chk_1",
        shop_domain="example.myshopify.com",
        ttl_minutes=ttl_minutes,
        now=NOW,
    )
    return encode_recovery_link(payload, secret=secret)


def test_recovery_link_decodes_with_same_secret() -> None:
    decoded = decode_recovery_link(_token(), secret="secret-123", now=NOW + timedelta(minutes=30))

    assert decoded.checkout_token == "chk_1"
    assert decoded.shop_domain == "example.myshopify.com"
    assert decoded.expires_at == NOW + timedelta(minutes=60)


def test_recovery_link_expired() -> None:
    with pytest.raises(RecoveryLinkError, match="expired"):
        decode_recovery_link(_token(), secret="secret-123", now=NOW + timedelta(minutes=61))


def test_recovery_link_wrong_secret() -> None:
    with pytest.raises(RecoveryLinkError, match="signature"):
        decode_recovery_link(_token(), secret="other-secret", now=NOW)


def test_recovery_link_tampered_body() -> None:
    body, signature = _token().split(".", 1)

    with pytest.raises(RecoveryLinkError):
        decode_recovery_link(f"{body}x.{signature}", secret="secret-123", now=NOW)


def test_recovery_link_malformed_token() -> None:
    with pytest.raises(RecoveryLinkError, match="format"):
        decode_recovery_link("no-dot-here", secret="secret-123", now=NOW)


def test_recovery_link_requires_secret() -> None:
    with pytest.raises(RecoveryLinkError):
        _token(secret="")


def test_recovery_url_joins_base_and_prefix() -> None:
    url = recovery_url("https://recover.example.com/", "abc.def", api_prefix="/api/v1")

    assert url == "https://recover.example.com/api/v1/recovery/recover/abc.def"


def _signed_token(payload: dict, *, secret: str = "secret-123") -> str:
    body = base64.urlsafe_b64encode(json.dumps(payload).encode("utf-8")).decode("ascii").rstrip("=")
    signature = hmac.new(secret.encode("utf-8"), body.encode("ascii"), hashlib.sha256).hexdigest()
    return f"{body}.{signature}"


@pytest.mark.parametrize("exp", [10**20, -(10**20)])
def test_recovery_link_out_of_range_expiry_is_rejected(exp: int) -> None:
    token = _signed_token({"checkout_token": "chk_1", "shop_domain": "example.myshopify.com", "exp": exp})

    with pytest.raises(RecoveryLinkError, match="decoding failed"):
        decode_recovery_link(token, secret="secret-123", now=NOW)
