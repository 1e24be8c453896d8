"""
Evolution API client used to push operator alerts to WhatsApp.
Delivery is single-shot: HTTP errors are raised to the caller, never retried.
"""

import logging
import time
from typing import Any, Optional

import httpx

from otel_init import get_meter, get_tracer

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)
meter = get_meter(__name__)

# Metrics
evolution_requests = meter.create_counter(
    "evolution_requests_total",
    description="Total number of Evolution API requests",
    unit="1",
)
evolution_latency = meter.create_histogram(
    "evolution_latency_ms",
    description="Evolution API request latency in milliseconds",
    unit="ms",
)


class EvolutionClient:
    """
    Minimal async client for an Evolution API instance.
    Only the text message endpoint is needed for admin notifications.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "User-Agent": "Admin-Notifier/1.0",
                "Content-Type": "application/json",
            },
        )
        logger.info(f"EvolutionClient initialized with base_url: {self.base_url}")

    async def close(self):
        """Close the underlying HTTP client."""
        await self.client.aclose()
        logger.info("EvolutionClient closed")

    async def _post(
        self, endpoint: str, payload: dict[str, Any], api_key: str
    ) -> Any:
        """Internal POST helper with error handling and instrumentation."""
        evolution_requests.add(1, {"endpoint": endpoint})
        start_time = time.time()

        with tracer.start_as_current_span("evolution_api_post"):
            try:
                response = await self.client.post(
                    endpoint, json=payload, headers={"apikey": api_key}
                )
                response.raise_for_status()

                latency = (time.time() - start_time) * 1000
                evolution_latency.record(
                    latency, {"endpoint": endpoint, "status": "success"}
                )

                if not response.content:
                    return None
                return response.json()
            except httpx.HTTPStatusError as e:
                latency = (time.time() - start_time) * 1000
                evolution_latency.record(
                    latency, {"endpoint": endpoint, "status": "error"}
                )
                logger.error(
                    f"Evolution API error: {e.response.status_code} - {e.response.text}"
                )
                raise
            except Exception as e:
                latency = (time.time() - start_time) * 1000
                evolution_latency.record(
                    latency, {"endpoint": endpoint, "status": "exception"}
                )
                logger.error(f"Evolution API request failed: {e}")
                raise

    async def send_text(
        self, instance: str, api_key: str, number: str, text: str
    ) -> Any:
        """Send a plain text message from ``instance`` to ``number``."""
        return await self._post(
            f"/message/sendText/{instance}",
            {"number": number, "text": text},
            api_key,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
