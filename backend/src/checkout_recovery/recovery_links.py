from __future__ import annotations

import base64
import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone


class RecoveryLinkError(ValueError):
    """Raised when a recovery link token is invalid or expired."""


@dataclass(frozen=True)
class RecoveryLinkPayload:
    checkout_token: str
    shop_domain: str
    expires_at: datetime


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(f"{data}{padding}".encode("ascii"))


def _sign(body: str, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body.encode("ascii"), hashlib.sha256).hexdigest()


def create_recovery_link(
    *,
    checkout_token: str,
    shop_domain: str,
    ttl_minutes: int,
    now: datetime | None = None,
) -> RecoveryLinkPayload:
    issued_at = now or datetime.now(timezone.utc)
    return RecoveryLinkPayload(
        checkout_token=checkout_token,
        shop_domain=shop_domain,
        expires_at=issued_at + timedelta(minutes=ttl_minutes),
    )


def encode_recovery_link(payload: RecoveryLinkPayload, *, secret: str) -> str:
    if not secret:
        raise RecoveryLinkError("recovery link secret is empty")

    body = _b64url_encode(
        json.dumps(
            {
                "checkout_token": payload.checkout_token,
                "shop_domain": payload.shop_domain,
                "exp": int(payload.expires_at.timestamp()),
            },
            separators=(",", ":"),
            sort_keys=True,
        ).encode("utf-8")
    )
    return f"{body}.{_sign(body, secret)}"


def decode_recovery_link(token: str, *, secret: str, now: datetime | None = None) -> RecoveryLinkPayload:
    if not token or "." not in token:
        raise RecoveryLinkError("invalid link format")
    if not secret:
        raise RecoveryLinkError("recovery link secret is empty")

    body, signature = token.rsplit(".", 1)
    try:
        expected = _sign(body, secret)
    except UnicodeEncodeError as exc:
        raise RecoveryLinkError("invalid link format") from exc
    if not hmac.compare_digest(signature, expected):
        raise RecoveryLinkError("link signature mismatch")

    try:
        payload_obj = json.loads(_b64url_decode(body).decode("utf-8"))
        checkout_token = str(payload_obj["checkout_token"]).strip()
        shop_domain = str(payload_obj["shop_domain"]).strip()
        expires_at = datetime.fromtimestamp(int(payload_obj["exp"]), tz=timezone.utc)
    except Exception as exc:  # noqa: BLE001
        raise RecoveryLinkError("link payload decoding failed") from exc
    if not checkout_token or not shop_domain:
        raise RecoveryLinkError("link payload incomplete")

    if expires_at <= (now or datetime.now(timezone.utc)):
        raise RecoveryLinkError("link expired")

    return RecoveryLinkPayload(checkout_token=checkout_token, shop_domain=shop_domain, expires_at=expires_at)


def recovery_url(base_url: str, token: str, *, api_prefix: str) -> str:
    return f"{base_url.rstrip('/')}{api_prefix}/recovery/recover/{token}"
