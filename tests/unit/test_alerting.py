"""
Unit Tests for Alert Transports.

Tests webhook formatting and delivery using an httpx mock transport.
"""

import json

import httpx
from pydantic import ValidationError
import pytest

from pipeline_guard.config.settings import ObservabilitySettings
from pipeline_guard.observability.alerting import (
    AlertChannel,
    AlertSeverity,
    LoggingAlertTransport,
    WebhookAlertTransport,
    WebhookConfig,
    build_alert_transport,
    format_payload,
)

PAYLOAD = {
    "severity": "critical",
    "pipeline_id": "2026-01-22",
    "video_cost": 1.12,
    "breakdown": {"gemini": 0.6, "tts": 0.52},
    "threshold": 1.0,
    "budget_remaining": 285.5,
    "timestamp": "2026-01-22T12:00:00+00:00",
}


class TestFormatting:
    """Test cases for channel payload formatting."""

    def test_slack_format(self) -> None:
        body = format_payload(
            AlertSeverity.CRITICAL,
            PAYLOAD,
            WebhookConfig(AlertChannel.SLACK, "https://hooks.slack.test/x", slack_channel="#alerts"),
        )

        attachment = body["attachments"][0]
        assert body["channel"] == "#alerts"
        assert attachment["color"] == "#ff0000"
        assert "2026-01-22" in attachment["title"]
        assert {"title": "breakdown", "value": "gemini=0.6, tts=0.52", "short": True} in attachment["fields"]

    def test_discord_format(self) -> None:
        body = format_payload(
            AlertSeverity.WARNING,
            PAYLOAD,
            WebhookConfig(AlertChannel.DISCORD, "https://discord.test/x"),
        )

        embed = body["embeds"][0]
        assert body["username"] == "Pipeline Alerts"
        assert embed["color"] == 0xFFCC00
        assert embed["title"].startswith("[WARNING]")

    def test_generic_webhook_format(self) -> None:
        body = format_payload(
            AlertSeverity.WARNING,
            {"video_cost": 0.8},
            WebhookConfig(AlertChannel.WEBHOOK, "https://example.test/hook"),
        )

        assert body == {"severity": "warning", "video_cost": 0.8}


class TestWebhookAlertTransport:
    """Test cases for WebhookAlertTransport."""

    @pytest.mark.asyncio
    async def test_critical_posts_to_critical_webhook(self) -> None:
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200)

        transport = WebhookAlertTransport(
            warning_webhook=WebhookConfig(AlertChannel.DISCORD, "https://discord.test/warn"),
            critical_webhook=WebhookConfig(AlertChannel.SLACK, "https://slack.test/crit"),
            http_transport=httpx.MockTransport(handler),
        )

        await transport.send_critical_alert(PAYLOAD)

        assert len(requests) == 1
        assert str(requests[0].url) == "https://slack.test/crit"
        assert "attachments" in json.loads(requests[0].content)

    @pytest.mark.asyncio
    async def test_http_error_raises(self) -> None:
        """Test that delivery failures surface to the caller."""
        transport = WebhookAlertTransport(
            warning_webhook=WebhookConfig(AlertChannel.DISCORD, "https://discord.test/warn"),
            http_transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )

        with pytest.raises(httpx.HTTPStatusError):
            await transport.send_warning_alert(PAYLOAD)

    @pytest.mark.asyncio
    async def test_unconfigured_severity_is_logged(self) -> None:
        """Test that a severity without a webhook does not post anything."""
        requests = []
        transport = WebhookAlertTransport(
            http_transport=httpx.MockTransport(lambda r: requests.append(r) or httpx.Response(200)),
        )

        await transport.send_warning_alert(PAYLOAD)

        assert requests == []


class TestBuildAlertTransport:
    """Test cases for build_alert_transport."""

    def test_disabled_alerting_logs(self) -> None:
        settings = ObservabilitySettings(alerting_enabled=False)

        assert isinstance(build_alert_transport(settings), LoggingAlertTransport)

    def test_enabled_alerting_uses_webhooks(self) -> None:
        settings = ObservabilitySettings(
            alerting_enabled=True,
            warning_webhook_url="https://discord.test/warn",
            critical_webhook_url="https://slack.test/crit",
        )

        transport = build_alert_transport(settings)

        assert isinstance(transport, WebhookAlertTransport)

    @pytest.mark.asyncio
    async def test_webhook_channels_from_settings(self) -> None:
        """Test that each webhook posts in its configured channel format."""
        bodies = {}

        def handler(request: httpx.Request) -> httpx.Response:
            bodies[str(request.url)] = json.loads(request.content)
            return httpx.Response(200)

        settings = ObservabilitySettings(
            alerting_enabled=True,
            warning_webhook_url="https://slack.test/warn",
            warning_webhook_channel="slack",
            critical_webhook_url="https://example.test/crit",
            critical_webhook_channel="webhook",
        )
        transport = build_alert_transport(settings, http_transport=httpx.MockTransport(handler))

        await transport.send_warning_alert(PAYLOAD)
        await transport.send_critical_alert(PAYLOAD)

        assert "attachments" in bodies["https://slack.test/warn"]
        assert bodies["https://example.test/crit"]["severity"] == "critical"
        assert bodies["https://example.test/crit"]["video_cost"] == 1.12

    def test_default_channels(self) -> None:
        settings = ObservabilitySettings()

        assert settings.warning_webhook_channel == "discord"
        assert settings.critical_webhook_channel == "slack"

    def test_unknown_channel_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ObservabilitySettings(warning_webhook_channel="pager")
