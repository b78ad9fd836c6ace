from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, status
from fastapi.responses import RedirectResponse

from .campaigns import CampaignNotFoundError, campaign_from_payload, campaign_to_payload
from .config import Settings, get_settings
from .config_store import ConfigStore, RecoverySettings, StoreConfigProvider, create_config_store
from .engine import CheckoutSignal, RecoverySession, coerce_utc
from .models import (
    AcceptedResponse,
    CampaignListResponse,
    CampaignModel,
    CampaignStatusRequest,
    CheckoutCompletedRequest,
    CheckoutSignalRequest,
    DashboardMetrics,
    DashboardResponse,
    HealthResponse,
    MetricsResponse,
    RecoverySessionListResponse,
    RecoverySessionView,
    RunDueRequest,
    RunDueResponse,
    SettingsResponse,
    SettingsUpdateRequest,
    UnsubscribeRequest,
)
from .notifier import HttpNotifier, LoggingNotifier, MessageSender, RecoveryLinkSettings, mask_contact_target
from .recovery_links import RecoveryLinkError, decode_recovery_link
from .runtime import RecoveryRuntime
from .store import RecoveryStore, RecoverySummary
from .store_backends import create_recovery_store

logger = logging.getLogger(__name__)

DASHBOARD_RECENT_SESSIONS = 8

_settings = get_settings()
router = APIRouter(prefix=f"{_settings.api_prefix}/recovery", tags=["recovery"])


def _create_notifier(settings: Settings, provider: StoreConfigProvider) -> MessageSender:
    if settings.notifier_sender_type == "http":
        return HttpNotifier(
            provider=provider,
            base_url=settings.notifier_api_base_url,
            api_key=settings.notifier_api_key,
            links=RecoveryLinkSettings(
                secret=settings.recovery_link_secret,
                app_base_url=settings.app_base_url,
                api_prefix=settings.api_prefix,
                ttl_minutes=settings.recovery_link_ttl_minutes,
            ),
            timeout_seconds=settings.notifier_timeout_seconds,
        )
    return LoggingNotifier(provider)


recovery_store: RecoveryStore = create_recovery_store(
    backend=_settings.recovery_store_backend,
    database_url=_settings.database_url,
)
config_store: ConfigStore = create_config_store(
    backend=_settings.config_store_backend,
    database_url=_settings.database_url,
)
config_provider = StoreConfigProvider(
    config_store,
    campaign_targeting_enabled=_settings.campaign_targeting_enabled,
)
notifier: MessageSender = _create_notifier(_settings, config_provider)
runtime = RecoveryRuntime(store=recovery_store, sender=notifier, config=config_provider)


def reset_runtime_state_for_tests() -> None:
    recovery_store.reset()
    config_store.reset()
    if isinstance(notifier, LoggingNotifier):
        notifier.reset()


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _session_view(session: RecoverySession) -> RecoverySessionView:
    return RecoverySessionView(
        id=session.id,
        checkout_token=session.checkout_token,
        shop_domain=session.shop_domain,
        email_masked=mask_contact_target(session.email, "email") if session.email else None,
        phone_masked=mask_contact_target(session.phone, "sms") if session.phone else None,
        amount_subtotal=session.amount_subtotal,
        country_code=session.country_code,
        customer_segment=session.customer_segment,
        state=session.state,
        attempt_count=session.attempt_count,
        failed_at=session.failed_at,
        last_attempt_at=session.last_attempt_at,
        next_attempt_at=session.next_attempt_at,
        recovered_order_id=session.recovered_order_id,
    )


def _metrics_response(summary: RecoverySummary) -> MetricsResponse:
    return MetricsResponse(**summary.__dict__)


def _settings_response(settings: RecoverySettings) -> SettingsResponse:
    return SettingsResponse(
        brand_name=settings.brand_name,
        support_email=settings.support_email,
        accent_color=settings.accent_color,
        send_email=settings.send_email,
        send_sms=settings.send_sms,
        retry_minutes=list(settings.retry_minutes),
    )


def _recovery_rate(summary: RecoverySummary) -> float:
    if summary.detected == 0:
        return 0.0
    return round(summary.recovered / summary.detected * 100, 1)


def _ingest_in_background(signal: CheckoutSignal) -> None:
    runtime.ingest_signal(signal, _now_utc())


@router.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse()


@router.post(
    "/events/payment-info-submitted",
    response_model=AcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def payment_info_submitted(payload: CheckoutSignalRequest, background_tasks: BackgroundTasks) -> AcceptedResponse:
    signal = CheckoutSignal(
        checkout_token=payload.checkout_token,
        shop_domain=payload.shop_domain,
        email=payload.email,
        phone=payload.phone,
        amount_subtotal=payload.amount_subtotal,
        country_code=payload.country_code,
        customer_segment=payload.customer_segment,
        payment_info_submitted_at=payload.payment_info_submitted_at,
        checkout_completed_at=payload.checkout_completed_at,
    )
    background_tasks.add_task(_ingest_in_background, signal)
    return AcceptedResponse()


@router.post(
    "/events/checkout-completed",
    response_model=AcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def checkout_completed(payload: CheckoutCompletedRequest, background_tasks: BackgroundTasks) -> AcceptedResponse:
    background_tasks.add_task(runtime.mark_checkout_recovered, payload.checkout_token, payload.order_id)
    return AcceptedResponse()


@router.post("/unsubscribe", response_model=AcceptedResponse, status_code=status.HTTP_202_ACCEPTED)
def unsubscribe(payload: UnsubscribeRequest, background_tasks: BackgroundTasks) -> AcceptedResponse:
    background_tasks.add_task(runtime.unsubscribe, payload.checkout_token)
    return AcceptedResponse()


@router.post("/jobs/run-due", response_model=RunDueResponse)
def run_due(payload: RunDueRequest | None = None) -> RunDueResponse:
    now_override = payload.now_override if payload else None
    if now_override is not None and not _settings.sweep_allow_now_override:
        raise HTTPException(status_code=400, detail="now_override is disabled")
    run_at = coerce_utc(now_override) if now_override is not None else _now_utc()
    report = runtime.run_due_report(run_at)
    return RunDueResponse(
        run_at=run_at,
        processed=report.considered,
        advanced=report.advanced,
        expired=report.expired,
        failed=report.failed,
        skipped=report.skipped,
    )


@router.get("/metrics", response_model=MetricsResponse)
def metrics() -> MetricsResponse:
    return _metrics_response(runtime.metrics())


@router.get("/sessions", response_model=RecoverySessionListResponse)
def list_sessions(limit: int = Query(default=10, ge=1, le=100)) -> RecoverySessionListResponse:
    return RecoverySessionListResponse(sessions=[_session_view(value) for value in runtime.recent(limit)])


@router.get("/dashboard", response_model=DashboardResponse)
def dashboard() -> DashboardResponse:
    summary = runtime.metrics()
    return DashboardResponse(
        metrics=DashboardMetrics(**summary.__dict__, recovery_rate=_recovery_rate(summary)),
        settings=_settings_response(config_store.read_settings()),
        sessions=[_session_view(value) for value in runtime.recent(DASHBOARD_RECENT_SESSIONS)],
    )


@router.get("/settings", response_model=SettingsResponse)
def read_settings() -> SettingsResponse:
    return _settings_response(config_store.read_settings())


@router.post("/settings", response_model=SettingsResponse)
def update_settings(payload: SettingsUpdateRequest) -> SettingsResponse:
    updated = config_store.write_settings(payload.model_dump(exclude_none=True))
    logger.info("recovery settings updated: fields=%s", ",".join(sorted(payload.model_fields_set)))
    return _settings_response(updated)


@router.get("/campaigns", response_model=CampaignListResponse)
def list_campaigns() -> CampaignListResponse:
    return CampaignListResponse(
        campaigns=[CampaignModel(**campaign_to_payload(value)) for value in config_store.list_campaigns()]
    )


@router.put("/campaigns/{campaign_id}", response_model=CampaignModel)
def save_campaign(campaign_id: str, payload: CampaignModel) -> CampaignModel:
    campaign = campaign_from_payload({**payload.model_dump(), "id": campaign_id})
    saved = config_store.save_campaign(campaign)
    logger.info("recovery campaign saved: campaign=%s status=%s", saved.id, saved.status)
    return CampaignModel(**campaign_to_payload(saved))


@router.post("/campaigns/{campaign_id}/status", response_model=CampaignModel)
def set_campaign_status(campaign_id: str, payload: CampaignStatusRequest) -> CampaignModel:
    try:
        updated = config_store.set_campaign_status(campaign_id, payload.status)
        if updated is None:
            raise CampaignNotFoundError(campaign_id)
    except CampaignNotFoundError as exc:
        raise HTTPException(status_code=404, detail="campaign not found") from exc
    logger.info("recovery campaign status changed: campaign=%s status=%s", updated.id, updated.status)
    return CampaignModel(**campaign_to_payload(updated))


@router.get("/recover/{token}")
def follow_recovery_link(token: str) -> RedirectResponse:
    try:
        link = decode_recovery_link(token, secret=_settings.recovery_link_secret)
    except RecoveryLinkError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    return RedirectResponse(
        url=f"https://{link.shop_domain}/cart",
        status_code=status.HTTP_307_TEMPORARY_REDIRECT,
    )
