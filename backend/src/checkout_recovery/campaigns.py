from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass
from typing import Any, Literal

from .engine import CheckoutSignal, CustomerSegment

CampaignStatus = Literal["ACTIVE", "DRAFT", "PAUSED"]
RecoveryChannel = Literal["email", "sms"]
CampaignTone = Literal["steady", "urgent", "concierge", "rescue"]


class CampaignNotFoundError(KeyError):
    """Raised when an operation references a campaign id that does not exist."""


@dataclass(frozen=True)
class CampaignRuleSet:
    minimum_order_value: float = 0.0
    customer_segment: CustomerSegment = "all"
    include_countries: tuple[str, ...] = ()
    quiet_hours_start: int = 22
    quiet_hours_end: int = 8


@dataclass(frozen=True)
class CampaignStep:
    id: str
    delay_minutes: int
    channel: RecoveryChannel
    tone: CampaignTone
    stop_if_purchased: bool = True


@dataclass(frozen=True)
class CampaignTheme:
    headline: str
    body: str
    sms: str


@dataclass(frozen=True)
class RecoveryCampaign:
    id: str
    name: str
    status: CampaignStatus
    priority: int
    is_default: bool
    rules: CampaignRuleSet
    steps: tuple[CampaignStep, ...]
    theme: CampaignTheme


@dataclass(frozen=True)
class CampaignDecision:
    accepted: bool
    reason: str


def _new_id() -> str:
    return str(uuid.uuid4())


def default_campaigns() -> list[RecoveryCampaign]:
    return [
        RecoveryCampaign(
            id=_new_id(),
            name="Core Recovery",
            status="ACTIVE",
            priority=1,
            is_default=True,
            rules=CampaignRuleSet(),
            steps=(
                CampaignStep(id=_new_id(), delay_minutes=15, channel="email", tone="steady"),
                CampaignStep(id=_new_id(), delay_minutes=360, channel="email", tone="urgent"),
                CampaignStep(id=_new_id(), delay_minutes=1440, channel="sms", tone="rescue"),
            ),
            theme=CampaignTheme(
                headline="Complete your purchase before your cart expires.",
                body=(
                    "Your payment did not go through. Use the secure link below to resume "
                    "checkout and finish your order."
                ),
                sms="Your payment did not go through. Resume checkout here: {{retryUrl}}",
            ),
        ),
        RecoveryCampaign(
            id=_new_id(),
            name="VIP Rescue",
            status="DRAFT",
            priority=2,
            is_default=False,
            rules=CampaignRuleSet(
                minimum_order_value=250.0,
                customer_segment="vip",
                include_countries=("US", "CA", "GB"),
                quiet_hours_start=21,
                quiet_hours_end=9,
            ),
            steps=(
                CampaignStep(id=_new_id(), delay_minutes=10, channel="email", tone="concierge"),
                CampaignStep(id=_new_id(), delay_minutes=180, channel="sms", tone="concierge"),
            ),
            theme=CampaignTheme(
                headline="We saved your order so you can finish in one click.",
                body=(
                    "A quick payment issue interrupted checkout. Use your secure link and we "
                    "will restore your order immediately."
                ),
                sms="We saved your order. Resume securely: {{retryUrl}}",
            ),
        ),
    ]


def evaluate_campaign_rules(signal: CheckoutSignal, rules: CampaignRuleSet | None) -> CampaignDecision:
    if rules is None:
        return CampaignDecision(accepted=True, reason="no_campaign")

    amount = signal.amount_subtotal or 0.0
    if amount < rules.minimum_order_value:
        return CampaignDecision(accepted=False, reason="below_minimum_order_value")

    # Missing signal data never excludes: only a known, different value rejects.
    if rules.include_countries and signal.country_code:
        allowed = {country.strip().upper() for country in rules.include_countries}
        if signal.country_code.strip().upper() not in allowed:
            return CampaignDecision(accepted=False, reason="country_not_included")

    if rules.customer_segment != "all" and signal.customer_segment:
        if signal.customer_segment != rules.customer_segment:
            return CampaignDecision(accepted=False, reason="segment_mismatch")

    return CampaignDecision(accepted=True, reason="rules_matched")


def step_for_attempt(campaign: RecoveryCampaign | None, attempt_index: int) -> CampaignStep | None:
    if campaign is None or not campaign.steps:
        return None
    index = min(max(attempt_index, 0), len(campaign.steps) - 1)
    return campaign.steps[index]


def campaign_to_payload(campaign: RecoveryCampaign) -> dict[str, Any]:
    payload = asdict(campaign)
    payload["rules"]["include_countries"] = list(campaign.rules.include_countries)
    payload["steps"] = [asdict(step) for step in campaign.steps]
    return payload


def campaign_from_payload(payload: dict[str, Any]) -> RecoveryCampaign:
    rules_raw = dict(payload.get("rules") or {})
    theme_raw = dict(payload.get("theme") or {})
    return RecoveryCampaign(
        id=str(payload["id"]),
        name=str(payload.get("name") or ""),
        status=payload.get("status", "DRAFT"),
        priority=int(payload.get("priority", 0)),
        is_default=bool(payload.get("is_default", False)),
        rules=CampaignRuleSet(
            minimum_order_value=float(rules_raw.get("minimum_order_value", 0.0)),
            customer_segment=rules_raw.get("customer_segment", "all"),
            include_countries=tuple(str(value) for value in rules_raw.get("include_countries") or ()),
            quiet_hours_start=int(rules_raw.get("quiet_hours_start", 22)),
            quiet_hours_end=int(rules_raw.get("quiet_hours_end", 8)),
        ),
        steps=tuple(
            CampaignStep(
                id=str(step.get("id") or _new_id()),
                delay_minutes=int(step.get("delay_minutes", 0)),
                channel=step.get("channel", "email"),
                tone=step.get("tone", "steady"),
                stop_if_purchased=bool(step.get("stop_if_purchased", True)),
            )
            for step in payload.get("steps") or ()
        ),
        theme=CampaignTheme(
            headline=str(theme_raw.get("headline") or ""),
            body=str(theme_raw.get("body") or ""),
            sms=str(theme_raw.get("sms") or ""),
        ),
    )
