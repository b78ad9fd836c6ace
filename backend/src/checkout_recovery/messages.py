from __future__ import annotations

import html
from dataclasses import dataclass

from .campaigns import CampaignTone

_TONE_ACCENTS: dict[str, str] = {
    "urgent": "Act now",
    "concierge": "We saved your order",
    "rescue": "Finish securely",
}
_DEFAULT_ACCENT = "Complete your purchase"
_DEFAULT_BODY = (
    "Your payment did not go through. You can complete checkout securely using the link below."
)
RETRY_URL_PLACEHOLDER = "{{retryUrl}}"


@dataclass(frozen=True)
class MessageInput:
    shop_name: str
    retry_url: str
    headline: str | None = None
    body: str | None = None
    sms_body: str | None = None
    tone: CampaignTone | None = None


def tone_accent(tone: CampaignTone | None) -> str:
    return _TONE_ACCENTS.get(tone or "", _DEFAULT_ACCENT)


def email_subject(payload: MessageInput) -> str:
    return f"{tone_accent(payload.tone)} at {payload.shop_name}"


def email_html(payload: MessageInput) -> str:
    headline = payload.headline or f"{tone_accent(payload.tone)} at {payload.shop_name}"
    body = payload.body or _DEFAULT_BODY
    retry_url = html.escape(payload.retry_url, quote=True)
    return "\n".join(
        [
            f"<h2>{html.escape(headline)}</h2>",
            f"<p>{html.escape(body)}</p>",
            f'<p><a href="{retry_url}">Complete your purchase</a></p>',
        ]
    )


def sms_text(payload: MessageInput) -> str:
    if payload.sms_body:
        return payload.sms_body.replace(RETRY_URL_PLACEHOLDER, payload.retry_url)
    return f"Complete your purchase at {payload.shop_name}: {payload.retry_url}"
