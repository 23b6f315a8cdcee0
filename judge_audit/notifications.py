"""Notification sinks for CRITICAL alerts.

A notifier delivers one plain-text message. Failures surface as
``AlertDeliveryFailed``; retrying is the alerter's next cycle, not ours.
"""

from __future__ import annotations

import smtplib
from email.mime.text import MIMEText
from typing import Protocol

import httpx
import structlog

from judge_audit.config import AlertsConfig, Settings
from judge_audit.errors import AlertDeliveryFailed

logger = structlog.get_logger(__name__)

WEBHOOK_TIMEOUT_SECONDS = 10


class Notifier(Protocol):
    def send(self, subject: str, body: str) -> None: ...


class EmailNotifier:
    """Send alerts over SMTP with STARTTLS."""

    def __init__(
        self,
        host: str,
        recipient: str,
        sender: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
    ) -> None:
        self.host = host
        self.port = port
        self.recipient = recipient
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls

    def _build_message(self, subject: str, body: str) -> MIMEText:
        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = self.recipient
        return msg

    def send(self, subject: str, body: str) -> None:
        msg = self._build_message(subject, body)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=30) as server:
                if self.use_tls:
                    server.starttls()
                if self.username:
                    server.login(self.username, self.password)
                server.sendmail(self.sender, [self.recipient], msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            raise AlertDeliveryFailed(f"smtp delivery to {self.recipient} failed: {exc}") from exc
        logger.info("alert_email_sent", recipient=self.recipient)


class WebhookNotifier:
    """POST alerts as JSON to a chat-style incoming webhook."""

    def __init__(self, url: str, timeout: float = WEBHOOK_TIMEOUT_SECONDS, client: httpx.Client | None = None) -> None:
        self.url = url
        self.timeout = timeout
        self._client = client

    def _payload(self, subject: str, body: str) -> dict:
        return {"text": f"*{subject}*\n{body}", "subject": subject, "body": body}

    def send(self, subject: str, body: str) -> None:
        try:
            if self._client is not None:
                response = self._client.post(self.url, json=self._payload(subject, body))
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(self.url, json=self._payload(subject, body))
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise AlertDeliveryFailed(f"webhook delivery failed: {exc}") from exc
        logger.info("alert_webhook_sent", status_code=response.status_code)


class LogNotifier:
    """Fallback sink: writes the alert to the structured log."""

    def send(self, subject: str, body: str) -> None:
        logger.warning("alert_raised", subject=subject, body=body)


def build_notifier(settings: Settings, alerts: AlertsConfig) -> Notifier:
    """Pick the sink from environment settings: webhook > SMTP > log."""
    if settings.alert_webhook_url:
        return WebhookNotifier(settings.alert_webhook_url)
    if settings.smtp_host:
        return EmailNotifier(
            host=settings.smtp_host,
            port=settings.smtp_port,
            recipient=alerts.recipient,
            sender=settings.smtp_sender,
            username=settings.smtp_user,
            password=settings.smtp_password,
        )
    logger.info("alert_sink_unconfigured", fallback="log")
    return LogNotifier()
