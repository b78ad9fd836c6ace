from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from .campaigns import CampaignStatus, CampaignTone, RecoveryChannel
from .engine import CustomerSegment, RecoveryState


def _strip_optional(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = str(value).strip()
    return normalized or None


class CheckoutSignalRequest(BaseModel):
    checkout_token: str = Field(min_length=1, max_length=255)
    shop_domain: str = Field(min_length=1, max_length=255)
    email: str | None = Field(default=None, max_length=320)
    phone: str | None = Field(default=None, max_length=64)
    amount_subtotal: float | None = Field(default=None, ge=0)
    country_code: str | None = Field(default=None, min_length=2, max_length=8)
    customer_segment: CustomerSegment | None = None
    payment_info_submitted_at: datetime
    checkout_completed_at: datetime | None = None

    @field_validator("checkout_token", "shop_domain")
    @classmethod
    def _normalize_required(cls, value: str) -> str:
        normalized = str(value).strip()
        if not normalized:
            raise ValueError("field cannot be blank")
        return normalized

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str | None) -> str | None:
        normalized = _strip_optional(value)
        if normalized is not None and ("@" not in normalized or normalized.startswith("@")):
            raise ValueError("email must be a valid address")
        return normalized

    @field_validator("phone")
    @classmethod
    def _normalize_phone(cls, value: str | None) -> str | None:
        return _strip_optional(value)

    @field_validator("country_code")
    @classmethod
    def _normalize_country(cls, value: str | None) -> str | None:
        normalized = _strip_optional(value)
        return normalized.upper() if normalized else None


class CheckoutCompletedRequest(BaseModel):
    checkout_token: str = Field(min_length=1, max_length=255)
    order_id: str = Field(min_length=1, max_length=255)


class UnsubscribeRequest(BaseModel):
    checkout_token: str = Field(min_length=1, max_length=255)


class AcceptedResponse(BaseModel):
    ok: bool = True


class HealthResponse(BaseModel):
    ok: bool = True
    service: str = "failed-payment-recovery"


class RunDueRequest(BaseModel):
    now_override: datetime | None = None


class RunDueResponse(BaseModel):
    ok: bool = True
    run_at: datetime
    processed: int
    advanced: int
    expired: int
    failed: int
    skipped: int


class MetricsResponse(BaseModel):
    detected: int
    recovered: int
    expired: int
    active: int
    recovered_revenue: float
    pending_revenue: float


class DashboardMetrics(MetricsResponse):
    recovery_rate: float


class RecoverySessionView(BaseModel):
    id: str
    checkout_token: str
    shop_domain: str
    email_masked: str | None = None
    phone_masked: str | None = None
    amount_subtotal: float | None = None
    country_code: str | None = None
    customer_segment: CustomerSegment | None = None
    state: RecoveryState
    attempt_count: int
    failed_at: datetime
    last_attempt_at: datetime | None = None
    next_attempt_at: datetime | None = None
    recovered_order_id: str | None = None


class RecoverySessionListResponse(BaseModel):
    sessions: list[RecoverySessionView]


class SettingsResponse(BaseModel):
    brand_name: str
    support_email: str
    accent_color: str
    send_email: bool
    send_sms: bool
    retry_minutes: list[int]


class SettingsUpdateRequest(BaseModel):
    brand_name: str | None = Field(default=None, min_length=1, max_length=128)
    support_email: str | None = Field(default=None, min_length=3, max_length=320)
    accent_color: str | None = Field(default=None, min_length=4, max_length=32)
    send_email: bool | None = None
    send_sms: bool | None = None
    retry_minutes: list[int] | None = Field(default=None, min_length=1, max_length=32)

    @field_validator("support_email")
    @classmethod
    def _validate_support_email(cls, value: str | None) -> str | None:
        normalized = _strip_optional(value)
        if normalized is not None and "@" not in normalized:
            raise ValueError("support_email must be a valid address")
        return normalized

    @field_validator("retry_minutes")
    @classmethod
    def _validate_retry_minutes(cls, value: list[int] | None) -> list[int] | None:
        if value is None:
            return None
        if any(item <= 0 for item in value):
            raise ValueError("retry_minutes entries must be positive")
        return value


class DashboardResponse(BaseModel):
    metrics: DashboardMetrics
    settings: SettingsResponse
    sessions: list[RecoverySessionView]


class CampaignRulesModel(BaseModel):
    minimum_order_value: float = Field(default=0.0, ge=0)
    customer_segment: CustomerSegment = "all"
    include_countries: list[str] = Field(default_factory=list)
    quiet_hours_start: int = Field(default=22, ge=0, le=23)
    quiet_hours_end: int = Field(default=8, ge=0, le=23)

    @field_validator("include_countries")
    @classmethod
    def _normalize_countries(cls, value: list[str]) -> list[str]:
        normalized: list[str] = []
        for raw in value:
            country = str(raw).strip().upper()
            if not country:
                raise ValueError("include_countries entries cannot be blank")
            if country not in normalized:
                normalized.append(country)
        return normalized


class CampaignStepModel(BaseModel):
    id: str | None = Field(default=None, max_length=64)
    delay_minutes: int = Field(ge=0)
    channel: RecoveryChannel
    tone: CampaignTone = "steady"
    stop_if_purchased: bool = True


class CampaignThemeModel(BaseModel):
    headline: str = Field(default="", max_length=512)
    body: str = Field(default="", max_length=4096)
    sms: str = Field(default="", max_length=640)


class CampaignModel(BaseModel):
    id: str = Field(default="", max_length=64)
    name: str = Field(min_length=1, max_length=128)
    status: CampaignStatus = "DRAFT"
    priority: int = 0
    is_default: bool = False
    rules: CampaignRulesModel = Field(default_factory=CampaignRulesModel)
    steps: list[CampaignStepModel] = Field(default_factory=list, max_length=16)
    theme: CampaignThemeModel = Field(default_factory=CampaignThemeModel)


class CampaignListResponse(BaseModel):
    campaigns: list[CampaignModel]


class CampaignStatusRequest(BaseModel):
    status: CampaignStatus
