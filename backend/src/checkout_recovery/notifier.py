from __future__ import annotations

import json
import logging
import socket
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Literal, Protocol

from .campaigns import step_for_attempt
from .config_store import ConfigProvider
from .engine import RecoverySession
from .messages import MessageInput, email_html, email_subject, sms_text
from .recovery_links import create_recovery_link, encode_recovery_link, recovery_url

logger = logging.getLogger(__name__)

NotifierChannel = Literal["email", "sms"]


class NotifierError(Exception):
    """Raised when a provider rejects or fails to deliver a recovery message."""

    def __init__(self, error_code: str, message: str) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.message = message


class MessageSender(Protocol):
    def send_email(self, session: RecoverySession) -> None: ...

    def send_sms(self, session: RecoverySession) -> None: ...


@dataclass(frozen=True)
class RecoveryLinkSettings:
    secret: str
    app_base_url: str
    api_prefix: str
    ttl_minutes: int = 4320


@dataclass(frozen=True)
class OutboundMessage:
    channel: NotifierChannel
    recipient: str
    subject: str | None
    body: str
    idempotency_key: str


def _channel_target(session: RecoverySession, channel: NotifierChannel) -> str:
    value = session.email if channel == "email" else session.phone
    return (value or "").strip()


def _channel_enabled(provider: ConfigProvider, channel: NotifierChannel) -> bool:
    settings = provider.settings()
    return settings.send_email if channel == "email" else settings.send_sms


def delivery_idempotency_key(session: RecoverySession, channel: NotifierChannel) -> str:
    return f"recovery-{session.checkout_token}-{session.attempt_count}-{channel}"


class LoggingNotifier:
    """Local notifier: logs deliveries and keeps them in memory."""

    def __init__(self, provider: ConfigProvider) -> None:
        self._provider = provider
        self.deliveries: list[tuple[NotifierChannel, str, int]] = []

    def send_email(self, session: RecoverySession) -> None:
        self._deliver(session, "email")

    def send_sms(self, session: RecoverySession) -> None:
        self._deliver(session, "sms")

    def reset(self) -> None:
        self.deliveries.clear()

    def _deliver(self, session: RecoverySession, channel: NotifierChannel) -> None:
        target = _channel_target(session, channel)
        if not target or not _channel_enabled(self._provider, channel):
            return
        if "fail" in target.lower():
            raise NotifierError("stub_delivery_failed", "Stub notifier forced failure for contact target")
        logger.info(
            "[%s] checkout=%s shop=%s recipient=%s attempt=%d",
            channel,
            session.checkout_token,
            session.shop_domain,
            mask_contact_target(target, channel),
            session.attempt_count,
        )
        self.deliveries.append((channel, session.checkout_token, session.attempt_count))


class HttpNotifier:
    """Delivers recovery messages through the messaging provider HTTP API."""

    def __init__(
        self,
        *,
        provider: ConfigProvider,
        base_url: str,
        api_key: str,
        links: RecoveryLinkSettings,
        timeout_seconds: int = 10,
    ) -> None:
        stripped_url = base_url.strip().rstrip("/")
        stripped_key = api_key.strip()
        if not stripped_url:
            raise ValueError("base_url must not be empty")
        if not stripped_key:
            raise ValueError("api_key must not be empty")
        self._provider = provider
        self._base_url = stripped_url
        self._api_key = stripped_key
        self._links = links
        self._timeout_seconds = timeout_seconds

    def send_email(self, session: RecoverySession) -> None:
        self._deliver(session, "email")

    def send_sms(self, session: RecoverySession) -> None:
        self._deliver(session, "sms")

    def build_message(self, session: RecoverySession, channel: NotifierChannel) -> OutboundMessage:
        settings = self._provider.settings()
        campaign = self._provider.active_campaign()
        step = step_for_attempt(campaign, session.attempt_count)
        link = create_recovery_link(
            checkout_token=session.checkout_token,
            shop_domain=session.shop_domain,
            ttl_minutes=self._links.ttl_minutes,
        )
        token = encode_recovery_link(link, secret=self._links.secret)
        message_input = MessageInput(
            shop_name=settings.brand_name or session.shop_domain,
            retry_url=recovery_url(self._links.app_base_url, token, api_prefix=self._links.api_prefix),
            headline=campaign.theme.headline if campaign else None,
            body=campaign.theme.body if campaign else None,
            sms_body=campaign.theme.sms if campaign else None,
            tone=step.tone if step else None,
        )
        if channel == "email":
            subject: str | None = email_subject(message_input)
            body = email_html(message_input)
        else:
            subject = None
            body = sms_text(message_input)
        return OutboundMessage(
            channel=channel,
            recipient=_channel_target(session, channel),
            subject=subject,
            body=body,
            idempotency_key=delivery_idempotency_key(session, channel),
        )

    def _deliver(self, session: RecoverySession, channel: NotifierChannel) -> None:
        if not _channel_target(session, channel) or not _channel_enabled(self._provider, channel):
            return
        message = self.build_message(session, channel)
        request_payload: dict[str, str] = {
            "channel": message.channel,
            "recipient": message.recipient,
            "message": message.body,
            "idempotency_key": message.idempotency_key,
        }
        if message.subject is not None:
            request_payload["subject"] = message.subject
        try:
            response_data = self._post(request_payload)
        except NotifierError as exc:
            masked = mask_contact_target(message.recipient, channel)
            raise NotifierError(exc.error_code, f"{exc.message} (recipient: {masked})") from exc
        logger.info(
            "recovery %s sent checkout=%s message_id=%s",
            channel,
            session.checkout_token,
            response_data.get("message_id"),
        )

    def _post(self, body: dict[str, str]) -> dict[str, str]:
        url = f"{self._base_url}/v1/messages/send"
        data = json.dumps(body).encode("utf-8")
        request = urllib.request.Request(
            url,
            data=data,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self._timeout_seconds) as response:
                return json.loads(response.read().decode("utf-8"))  # type: ignore[no-any-return]
        except urllib.error.HTTPError as exc:
            raise NotifierError(
                error_code=f"http_{exc.code}",
                message=f"HTTP {exc.code}: {exc.reason}",
            ) from exc
        except urllib.error.URLError as exc:
            raise NotifierError(
                error_code="connection_error",
                message=f"Connection error: {exc.reason}",
            ) from exc
        except (socket.timeout, TimeoutError) as exc:
            raise NotifierError(
                error_code="timeout",
                message=f"Request timed out: {exc}",
            ) from exc


def mask_contact_target(contact_target: str, channel: NotifierChannel) -> str:
    normalized = contact_target.strip()
    if not normalized:
        return "***"

    if channel == "email" and "@" in normalized:
        local, domain = normalized.split("@", 1)
        if len(local) <= 1:
            return f"*@{domain}"
        return f"{local[0]}***@{domain}"

    if channel == "sms":
        digits = "".join(ch for ch in normalized if ch.isdigit())
        if len(digits) >= 4:
            return f"***{digits[-4:]}"

    if len(normalized) <= 4:
        return "*" * len(normalized)

    return f"{normalized[:2]}***{normalized[-2:]}"
