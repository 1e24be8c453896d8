"""
Admin Notifier - deduplicated operator alerts for webhook relay failures
"""

import logging
from typing import Any

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from pydantic import BaseModel, Field

from apps.notifier.service import AdminNotifier
from core.alerting.aggregator import ErrorAggregator
from core.alerting.manager import (
    AlertManager,
    GrafanaChannel,
    OtelChannel,
    WhatsAppChannel,
)
from core.config import NotifierConfig
from core.whatsapp.client import EvolutionClient
from otel_init import (
    attach_logging_handler,
    check_otlp_health,
    instrument_fastapi_app,
    setup_telemetry,
)

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Admin Notifier",
    description="Deduplicated operator alerts for backend failures",
    version="1.0.0",
)
app.state.notifier = None
app.state.evolution_client = None


class NotifyRequest(BaseModel):
    error_type: str = ""
    details: dict[str, Any] = Field(default_factory=dict)


def build_notifier(
    config: NotifierConfig,
    client: EvolutionClient,
    registry: CollectorRegistry | None = None,
) -> AdminNotifier:
    alert_manager = AlertManager(
        [
            WhatsAppChannel(
                client=client,
                instance=config.admin_instance,
                api_key=config.admin_instance_apikey,
                recipient=config.admin_whatsapp,
            ),
            OtelChannel(),
            GrafanaChannel(registry=registry),
        ]
    )
    aggregator = ErrorAggregator(
        window_seconds=config.window_seconds,
        sweep_interval_seconds=config.sweep_interval_seconds,
    )
    return AdminNotifier(aggregator, alert_manager)


@app.on_event("startup")
async def startup_event():
    """Run on startup."""
    setup_telemetry(service_name="admin-notifier")
    instrument_fastapi_app(app)
    attach_logging_handler()

    config = NotifierConfig.from_env()
    app.state.evolution_client = EvolutionClient(
        base_url=config.evolution_api_url,
        timeout=config.evolution_timeout_seconds,
    )
    app.state.notifier = build_notifier(config, app.state.evolution_client)
    app.state.notifier.start()

    logger.info("Admin notifier service started")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the aggregator and release the HTTP client."""
    if app.state.notifier is not None:
        await app.state.notifier.stop()
    if app.state.evolution_client is not None:
        await app.state.evolution_client.close()


@app.get("/health/liveness")
async def liveness():
    """Liveness probe."""
    return {"status": "ok"}


@app.get("/health/readiness")
async def readiness():
    """Readiness probe."""
    notifier = app.state.notifier
    if notifier is None or not notifier.aggregator.running:
        return {"status": "starting"}
    return {"status": "ok"}


@app.get("/health/telemetry")
async def telemetry_health():
    """OpenTelemetry export status."""
    return check_otlp_health()


@app.get("/")
async def root():
    """Root endpoint."""
    return {"service": "admin-notifier", "version": "1.0.0", "status": "operational"}


@app.post("/internal/notify", status_code=202)
async def notify(request: NotifyRequest):
    """Report a backend failure to the operator."""
    await app.state.notifier.notify(request.error_type, dict(request.details))
    return {"accepted": True}


@app.get("/internal/aggregation/windows")
async def aggregation_windows():
    """Open deduplication windows."""
    windows = app.state.notifier.aggregator.active_windows()
    return {"count": len(windows), "windows": windows}


@app.get("/metrics")
async def prometheus_metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)  # nosec
