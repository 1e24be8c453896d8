"""Admin error notification entry point used by webhook handlers."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from core.alerting.aggregator import AggregationRecord, ErrorAggregator, ErrorReport
from core.alerting.formatter import format_aggregated_error, format_single_error
from core.alerting.manager import AlertManager, AlertMessage

logger = logging.getLogger(__name__)


class AdminNotifier:
    """Feeds error reports through the aggregator and renders deliveries."""

    def __init__(self, aggregator: ErrorAggregator, alert_manager: AlertManager):
        self.aggregator = aggregator
        self.alert_manager = alert_manager

    async def deliver(
        self,
        error_type: str,
        payload: ErrorReport | AggregationRecord,
        aggregated: bool,
    ) -> None:
        if aggregated:
            text = format_aggregated_error(error_type, payload)
            count = payload.count
        else:
            text = format_single_error(error_type, payload)
            count = 1
        await self.alert_manager.dispatch(
            AlertMessage(
                error_type=error_type,
                text=text,
                aggregated=aggregated,
                count=count,
            )
        )

    async def notify(self, error_type: str, details: dict[str, Any]) -> None:
        """Report a failure. Never raises to the caller."""
        try:
            if details is None:
                details = {}
            if not details.get("timestamp"):
                details["timestamp"] = datetime.now(UTC).isoformat()
            report = ErrorReport.from_details(error_type, details)
            await self.aggregator.process(report, self.deliver)
        except Exception:
            logger.exception("Error in notify for %s", error_type)

    def start(self) -> None:
        self.aggregator.start(self.deliver)

    async def stop(self) -> None:
        await self.aggregator.stop()
