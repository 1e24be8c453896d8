"""Admin alert message and delivery channels."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from prometheus_client import CollectorRegistry, Counter

from otel_init import get_tracer

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AlertMessage:
    """Rendered alert ready to be pushed to the operator."""

    error_type: str
    text: str
    aggregated: bool = False
    count: int = 1
    created_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())


class AlertChannel:
    """Channel interface."""

    async def send(self, message: AlertMessage) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class WhatsAppChannel(AlertChannel):
    """Delivers alert text to the admin WhatsApp number via Evolution API."""

    def __init__(
        self,
        *,
        client: Any,
        instance: str,
        api_key: str | None,
        recipient: str,
    ):
        self.client = client
        self.instance = instance
        self.api_key = api_key
        self.recipient = recipient

    async def send(self, message: AlertMessage) -> None:
        if not self.api_key:
            logger.warning(
                "ADMIN_INSTANCE_APIKEY not configured, cannot send notification"
            )
            return
        await self.client.send_text(
            self.instance, self.api_key, self.recipient, message.text
        )
        logger.info("Admin notified successfully")


class OtelChannel(AlertChannel):
    """OpenTelemetry span-based alert channel."""

    def __init__(self, tracer_name: str = "core.alerting.manager"):
        self.tracer = get_tracer(tracer_name)

    async def send(self, message: AlertMessage) -> None:
        with self.tracer.start_as_current_span("notifier.alert.dispatch") as span:
            span.set_attribute("alert.error_type", message.error_type)
            span.set_attribute("alert.aggregated", message.aggregated)
            span.set_attribute("alert.count", message.count)


class GrafanaChannel(AlertChannel):
    """Prometheus metric counter channel for Grafana alerting."""

    def __init__(self, registry: CollectorRegistry | None = None):
        kwargs = {"registry": registry} if registry is not None else {}
        self.counter = Counter(
            "notifier_alerts_sent_total",
            "Total admin alerts dispatched by the notifier",
            ["error_type", "aggregated"],
            **kwargs,
        )

    async def send(self, message: AlertMessage) -> None:
        self.counter.labels(
            error_type=message.error_type,
            aggregated=str(message.aggregated).lower(),
        ).inc()


class AlertManager:
    """Dispatches alerts to all configured channels."""

    def __init__(self, channels: list[AlertChannel]):
        self.channels = channels

    async def dispatch(self, message: AlertMessage) -> None:
        for channel in self.channels:
            await channel.send(message)
