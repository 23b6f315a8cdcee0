"""Tests for alert notification sinks."""

from __future__ import annotations

import json
import smtplib
from unittest.mock import MagicMock, patch

import httpx
import pytest

from judge_audit.config import AlertsConfig, Settings
from judge_audit.errors import AlertDeliveryFailed
from judge_audit.notifications import (
    EmailNotifier,
    LogNotifier,
    WebhookNotifier,
    build_notifier,
)


# ---------------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------------


class TestWebhookNotifier:
    def test_posts_json(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        client = httpx.Client(transport=httpx.MockTransport(handler))
        WebhookNotifier("https://hooks.example.com/alert", client=client).send("Subject", "Body")

        (request,) = seen
        assert request.method == "POST"
        assert str(request.url) == "https://hooks.example.com/alert"
        payload = json.loads(request.content)
        assert payload["subject"] == "Subject"
        assert "Body" in payload["text"]

    def test_http_error_raises_delivery_failed(self):
        client = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        with pytest.raises(AlertDeliveryFailed):
            WebhookNotifier("https://hooks.example.com/alert", client=client).send("s", "b")

    def test_connection_error_raises_delivery_failed(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        with pytest.raises(AlertDeliveryFailed):
            WebhookNotifier("https://hooks.example.com/alert", client=client).send("s", "b")


# ---------------------------------------------------------------------------
# Email
# ---------------------------------------------------------------------------


class TestEmailNotifier:
    def _notifier(self, **kwargs) -> EmailNotifier:
        defaults = dict(
            host="smtp.example.com",
            recipient="security@example.com",
            sender="audit@example.com",
            username="audit",
            password="secret",
        )
        defaults.update(kwargs)
        return EmailNotifier(**defaults)

    def test_sends_with_starttls_and_login(self):
        with patch("judge_audit.notifications.smtplib.SMTP") as smtp_cls:
            server = smtp_cls.return_value.__enter__.return_value
            self._notifier().send("CRITICAL", "Please review")

        smtp_cls.assert_called_once_with("smtp.example.com", 587, timeout=30)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("audit", "secret")
        sender, recipients, message = server.sendmail.call_args.args
        assert sender == "audit@example.com"
        assert recipients == ["security@example.com"]
        assert "Subject: CRITICAL" in message

    def test_skips_login_without_username(self):
        with patch("judge_audit.notifications.smtplib.SMTP") as smtp_cls:
            server = smtp_cls.return_value.__enter__.return_value
            self._notifier(username="").send("s", "b")
        server.login.assert_not_called()

    def test_smtp_error_raises_delivery_failed(self):
        with patch("judge_audit.notifications.smtplib.SMTP") as smtp_cls:
            server = smtp_cls.return_value.__enter__.return_value
            server.sendmail.side_effect = smtplib.SMTPRecipientsRefused({})
            with pytest.raises(AlertDeliveryFailed, match="security@example.com"):
                self._notifier().send("s", "b")

    def test_connection_refused_raises_delivery_failed(self):
        with patch("judge_audit.notifications.smtplib.SMTP", side_effect=ConnectionRefusedError()):
            with pytest.raises(AlertDeliveryFailed):
                self._notifier().send("s", "b")


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


class TestBuildNotifier:
    def _settings(self, **kwargs) -> Settings:
        defaults = dict(openrouter_api_key="k", alert_webhook_url="", smtp_host="")
        defaults.update(kwargs)
        return Settings(**defaults)

    def test_webhook_preferred(self):
        n = build_notifier(
            self._settings(alert_webhook_url="https://hooks.example.com/x", smtp_host="smtp"),
            AlertsConfig(),
        )
        assert isinstance(n, WebhookNotifier)

    def test_email_when_smtp_configured(self):
        n = build_notifier(self._settings(smtp_host="smtp.example.com"), AlertsConfig(recipient="a@b.c"))
        assert isinstance(n, EmailNotifier)
        assert n.recipient == "a@b.c"

    def test_log_fallback(self):
        n = build_notifier(self._settings(), AlertsConfig())
        assert isinstance(n, LogNotifier)
        n.send("subject", "body")  # never raises
