"""
OpenTelemetry initialization for the admin notifier.

Traces, metrics and logs are exported over OTLP gRPC when
OTEL_EXPORTER_OTLP_ENDPOINT is set. Without an endpoint the module only
provides no-op tracers and meters, so importing it is always safe.

Usage:
1. Call `setup_telemetry()` once at startup (or rely on auto-setup on import)
2. FastAPI/Uvicorn: call `attach_logging_handler()` in the startup hook,
   since uvicorn loggers do not propagate to the root logger
3. Use `get_tracer(__name__)` / `get_meter(__name__)` in modules
"""

import logging
import os

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import (
    OTELResourceDetector,
    ProcessResourceDetector,
    Resource,
)
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

DEFAULT_SERVICE_NAME = "admin-notifier"

_global_logger_provider = None
_otlp_logging_handler = None

logger = logging.getLogger(__name__)

_initialization_state = {
    "tracing": {"success": False, "error": None},
    "metrics": {"success": False, "error": None},
    "logs": {"success": False, "error": None},
    "http_instrumentation": {"success": False, "error": None},
}


def _env_flag(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def parse_otlp_headers(headers_env: str, signal_type: str) -> dict[str, str] | None:
    """
    Parse OTLP headers of the form "key1=value1,key2=value2".

    Returns None when the variable is empty.
    """
    if not headers_env or not headers_env.strip():
        return None

    headers = {}
    for pair in headers_env.split(","):
        if "=" not in pair:
            continue
        key, value = pair.split("=", 1)
        if key.strip():
            headers[key.strip()] = value.strip()

    if not headers:
        logger.warning(
            f"OTEL_EXPORTER_OTLP_HEADERS has no valid key=value pairs for {signal_type}"
        )
    return headers


def _build_resource() -> Resource:
    manual_resource = Resource.create(
        {
            "deployment.environment": os.getenv("ENVIRONMENT", "production"),
            "service.instance.id": os.getenv("HOSTNAME", ""),
        }
    )

    detected = Resource.empty()
    for detector in (ProcessResourceDetector(), OTELResourceDetector()):
        try:
            detected = detected.merge(detector.detect())
        except Exception as e:
            logger.warning(f"Resource detection failed for {detector}: {e}")

    # OTEL_RESOURCE_ATTRIBUTES wins over manual and detected attributes
    custom = {}
    for attr in os.getenv("OTEL_RESOURCE_ATTRIBUTES", "").split(","):
        if "=" not in attr:
            continue
        key, value = (part.strip() for part in attr.split("=", 1))
        if key and value:
            custom[key] = value

    return Resource.create(custom).merge(manual_resource).merge(detected)


def _record(component: str, error: Exception | None, fail_fast: bool) -> None:
    if error is None:
        _initialization_state[component]["success"] = True
        return
    _initialization_state[component]["error"] = str(error)
    logger.error(
        f"Failed to set up OpenTelemetry {component}: {error}",
        exc_info=True,
        extra={"component": component},
    )
    if fail_fast:
        raise error


def setup_telemetry(
    service_name: str = DEFAULT_SERVICE_NAME,
    service_version: str | None = None,
    otlp_endpoint: str | None = None,
    enable_metrics: bool = True,
    enable_traces: bool = True,
    enable_logs: bool = True,
) -> None:
    """
    Set up OpenTelemetry providers and exporters.

    Args:
        service_name: Name of the service
        service_version: Version of the service
        otlp_endpoint: OTLP endpoint URL (defaults to OTEL_EXPORTER_OTLP_ENDPOINT)
        enable_metrics: Whether to enable metrics
        enable_traces: Whether to enable traces
        enable_logs: Whether to enable logs
    """
    global _global_logger_provider

    if not _env_flag("ENABLE_OTEL"):
        return

    service_version = service_version or os.getenv("OTEL_SERVICE_VERSION", "1.0.0")
    otlp_endpoint = otlp_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    enable_metrics = enable_metrics and _env_flag("ENABLE_METRICS")
    enable_traces = enable_traces and _env_flag("ENABLE_TRACES")
    enable_logs = enable_logs and _env_flag("ENABLE_LOGS")
    fail_fast = _env_flag("OTEL_FAIL_FAST", "false")
    headers_env = os.getenv("OTEL_EXPORTER_OTLP_HEADERS", "")

    resource = _build_resource()

    if enable_traces and otlp_endpoint:
        try:
            tracer_provider = TracerProvider(resource=resource)
            tracer_provider.add_span_processor(
                BatchSpanProcessor(
                    OTLPSpanExporter(
                        endpoint=otlp_endpoint,
                        headers=parse_otlp_headers(headers_env, "tracing"),
                    )
                )
            )
            trace.set_tracer_provider(tracer_provider)
            _record("tracing", None, fail_fast)
            logger.info(f"OpenTelemetry tracing enabled for {service_name}")
        except Exception as e:
            _record("tracing", e, fail_fast)

    if enable_metrics and otlp_endpoint:
        try:
            metric_reader = PeriodicExportingMetricReader(
                OTLPMetricExporter(
                    endpoint=otlp_endpoint,
                    headers=parse_otlp_headers(headers_env, "metrics"),
                ),
                export_interval_millis=int(
                    os.getenv("OTEL_METRIC_EXPORT_INTERVAL", "60000")
                ),
            )
            metrics.set_meter_provider(
                MeterProvider(resource=resource, metric_readers=[metric_reader])
            )
            _record("metrics", None, fail_fast)
            logger.info(f"OpenTelemetry metrics enabled for {service_name}")
        except Exception as e:
            _record("metrics", e, fail_fast)

    if enable_logs and otlp_endpoint:
        try:
            LoggingInstrumentor().instrument(set_logging_format=False)
            logger_provider = LoggerProvider(resource=resource)
            logger_provider.add_log_record_processor(
                BatchLogRecordProcessor(
                    OTLPLogExporter(
                        endpoint=otlp_endpoint,
                        headers=parse_otlp_headers(headers_env, "logs"),
                    )
                )
            )
            _global_logger_provider = logger_provider
            _record("logs", None, fail_fast)
            logger.info(f"OpenTelemetry logging export configured for {service_name}")
        except Exception as e:
            _record("logs", e, fail_fast)

    try:
        HTTPXClientInstrumentor().instrument()
        _record("http_instrumentation", None, fail_fast)
    except Exception as e:
        _record("http_instrumentation", e, fail_fast)

    failed = [k for k, v in _initialization_state.items() if v["error"] is not None]
    if failed:
        logger.warning(
            f"OpenTelemetry setup for {service_name} v{service_version} "
            f"finished with failed component(s): {', '.join(failed)}"
        )
    else:
        logger.info(
            f"OpenTelemetry setup completed for {service_name} v{service_version}"
        )


def instrument_fastapi_app(app, fail_fast: bool | None = None):
    """Instrument a FastAPI application after it has been created."""
    if fail_fast is None:
        fail_fast = _env_flag("OTEL_FAIL_FAST", "false")

    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        FastAPIInstrumentor.instrument_app(app)
        logger.info("FastAPI application instrumented")
    except Exception as e:
        logger.error(f"Failed to instrument FastAPI application: {e}", exc_info=True)
        if fail_fast:
            raise


def attach_logging_handler() -> bool:
    """
    Attach the OTLP logging handler to the root and uvicorn loggers.

    Must run after uvicorn has configured logging (i.e. in the startup hook).
    """
    global _otlp_logging_handler

    if _global_logger_provider is None:
        logger.warning("Logger provider not configured - logging export not available")
        return False

    root_logger = logging.getLogger()
    if _otlp_logging_handler is not None and _otlp_logging_handler in root_logger.handlers:
        return True

    try:
        handler = LoggingHandler(
            level=logging.NOTSET,
            logger_provider=_global_logger_provider,
        )
        for name in (None, "uvicorn", "uvicorn.access", "uvicorn.error"):
            logging.getLogger(name).addHandler(handler)
        _otlp_logging_handler = handler
        logger.info("OTLP logging handler attached to root and uvicorn loggers")
        return True
    except Exception as e:
        logger.error(f"Failed to attach logging handler: {e}", exc_info=True)
        return False


def get_tracer(name: str = None) -> trace.Tracer:
    return trace.get_tracer(name or DEFAULT_SERVICE_NAME)


def get_meter(name: str = None) -> metrics.Meter:
    return metrics.get_meter(name or DEFAULT_SERVICE_NAME)


def check_otlp_health() -> dict:
    """
    Report per-component telemetry status.

    Each component is "ok", "failed", "unknown" or "not_configured".
    """
    otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    enabled = {
        "tracing": _env_flag("ENABLE_TRACES") and otlp_endpoint is not None,
        "metrics": _env_flag("ENABLE_METRICS") and otlp_endpoint is not None,
        "logs": _env_flag("ENABLE_LOGS") and otlp_endpoint is not None,
        "http_instrumentation": True,
    }

    health = {"healthy": True}
    for component, is_enabled in enabled.items():
        state = _initialization_state[component]
        entry = {"enabled": is_enabled, "status": "not_configured"}
        if is_enabled:
            if state["success"]:
                entry["status"] = "ok"
            elif state["error"]:
                entry["status"] = "failed"
                entry["error"] = state["error"]
                health["healthy"] = False
            else:
                entry["status"] = "unknown"
                health["healthy"] = False
        health[component] = entry

    return health


# Auto-setup unless disabled
if _env_flag("ENABLE_OTEL") and not os.getenv("OTEL_NO_AUTO_INIT"):
    if _env_flag("OTEL_AUTO_SETUP"):
        setup_telemetry()
