"""Tests for notifier API handlers."""

import pytest
from prometheus_client import CollectorRegistry

import main
import otel_init
from core.config import NotifierConfig
from core.whatsapp.client import EvolutionClient


class FakeAggregator:
    running = True

    def active_windows(self):
        return [{"key": "dberror:boom:global", "count": 3}]


class FakeNotifier:
    def __init__(self):
        self.aggregator = FakeAggregator()
        self.calls = []

    async def notify(self, error_type, details):
        self.calls.append((error_type, details))


@pytest.mark.asyncio
async def test_notify_endpoint_forwards_to_notifier():
    notifier = FakeNotifier()
    main.app.state.notifier = notifier

    result = await main.notify(
        main.NotifyRequest(error_type="DBError", details={"error": "boom"})
    )

    assert result == {"accepted": True}
    assert notifier.calls == [("DBError", {"error": "boom"})]


@pytest.mark.asyncio
async def test_windows_endpoint_reports_open_windows():
    main.app.state.notifier = FakeNotifier()

    result = await main.aggregation_windows()

    assert result["count"] == 1
    assert result["windows"][0]["count"] == 3


@pytest.mark.asyncio
async def test_readiness_reflects_aggregator_state():
    main.app.state.notifier = None
    assert (await main.readiness())["status"] == "starting"

    main.app.state.notifier = FakeNotifier()
    assert (await main.readiness())["status"] == "ok"


@pytest.mark.asyncio
async def test_build_notifier_wires_configured_window():
    config = NotifierConfig(window_seconds=42, sweep_interval_seconds=84)
    client = EvolutionClient(base_url="https://evolution.test")

    notifier = main.build_notifier(config, client, registry=CollectorRegistry())

    assert notifier.aggregator.window_seconds == 42
    assert notifier.aggregator.sweep_interval_seconds == 84
    assert len(notifier.alert_manager.channels) == 3
    await client.close()


@pytest.mark.asyncio
async def test_telemetry_health_without_otlp_endpoint(monkeypatch):
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)

    result = await main.telemetry_health()

    assert result["tracing"] == {"enabled": False, "status": "not_configured"}
    assert result["logs"]["status"] == "not_configured"
    assert "http_instrumentation" in result


@pytest.mark.asyncio
async def test_telemetry_health_reports_failed_exporter(monkeypatch):
    monkeypatch.setenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://collector:4317")
    monkeypatch.setitem(
        otel_init._initialization_state,  # noqa: SLF001
        "tracing",
        {"success": False, "error": "exporter unreachable"},
    )

    result = await main.telemetry_health()

    assert result["healthy"] is False
    assert result["tracing"]["status"] == "failed"
    assert result["tracing"]["error"] == "exporter unreachable"
