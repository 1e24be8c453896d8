"""Windowed deduplication of operator error alerts.

The first occurrence of an error is delivered immediately and opens a window.
Repeats of the same error inside that window are accumulated silently and
emitted as a single summary when the window closes.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable

from otel_init import get_meter

logger = logging.getLogger(__name__)
meter = get_meter(__name__)

immediate_sends = meter.create_counter(
    "notifier_immediate_sends_total",
    description="First-occurrence alerts sent without batching",
    unit="1",
)
suppressed_reports = meter.create_counter(
    "notifier_suppressed_total",
    description="Repeat occurrences accumulated into an open window",
    unit="1",
)
aggregated_sends = meter.create_counter(
    "notifier_aggregated_sends_total",
    description="Summary alerts emitted when a window closes",
    unit="1",
)
delivery_failures = meter.create_counter(
    "notifier_delivery_failures_total",
    description="Delivery callback failures caught by the aggregator",
    unit="1",
)
swept_windows = meter.create_counter(
    "notifier_swept_windows_total",
    description="Stale windows reclaimed by the sweeper",
    unit="1",
)

DEFAULT_WINDOW_SECONDS = 300
DEFAULT_SWEEP_INTERVAL_SECONDS = 600
GLOBAL_CLIENT = "global"

_WHITESPACE = re.compile(r"\s+")

SendCallback = Callable[[str, Any, bool], Awaitable[None]]


def _escape(value: str) -> str:
    return str(value).replace("\\", "\\\\").replace(":", "\\:")


def derive_key(
    error_type: str | None, message: str | None, client_id: str | None
) -> str:
    """Normalized identity of an error for suppression purposes."""
    fields = (error_type or "", message or "", client_id or GLOBAL_CLIENT)
    raw = ":".join(_escape(value) for value in fields)
    return _WHITESPACE.sub("_", raw.lower())


@dataclass(slots=True)
class ErrorReport:
    """One occurrence of a backend failure."""

    error_type: str
    message: str
    client_id: str | None = None
    context: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    @classmethod
    def from_details(cls, error_type: str, details: dict[str, Any]) -> ErrorReport:
        client_id = details.get("location_id") or details.get("instance_name")
        report = cls(
            error_type=error_type or "",
            message=str(details.get("error") or ""),
            client_id=str(client_id) if client_id else None,
            context=details,
        )
        if details.get("timestamp"):
            report.timestamp = str(details["timestamp"])
        return report

    @property
    def key(self) -> str:
        return derive_key(self.error_type, self.message, self.client_id)


@dataclass(slots=True)
class AggregationRecord:
    """In-flight window for a single aggregation key."""

    key: str
    error_type: str
    first_seen_at: float
    last_seen_at: float
    count: int = 1
    occurrences: list[ErrorReport] = field(default_factory=list)
    window_task: asyncio.Task | None = None

    def add(self, report: ErrorReport, now: float) -> None:
        self.count += 1
        self.occurrences.append(report)
        self.last_seen_at = now

    @property
    def latest(self) -> ErrorReport:
        return self.occurrences[-1]

    def client_counts(self) -> dict[str, int]:
        counts = Counter(report.client_id or "N/A" for report in self.occurrences)
        return dict(counts)

    def cancel_timer(self) -> None:
        """Cancel the pending window flush; safe on fired or cancelled timers."""
        task = self.window_task
        self.window_task = None
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()


class AggregationStore:
    """Owns the active windows keyed by aggregation key."""

    def __init__(self) -> None:
        self._records: dict[str, AggregationRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def get(self, key: str) -> AggregationRecord | None:
        return self._records.get(key)

    def open(self, key: str, report: ErrorReport, now: float) -> AggregationRecord:
        record = AggregationRecord(
            key=key,
            error_type=report.error_type,
            first_seen_at=now,
            last_seen_at=now,
            occurrences=[report],
        )
        self._records[key] = record
        return record

    def discard(
        self, key: str, record: AggregationRecord | None = None
    ) -> AggregationRecord | None:
        """Remove a window and cancel its timer.

        When ``record`` is given, the key is only removed if it still maps to
        that exact record, so a late timer never closes a newer window.
        """
        current = self._records.get(key)
        if current is None or (record is not None and current is not record):
            return None
        del self._records[key]
        current.cancel_timer()
        return current

    def stale(self, cutoff: float) -> list[str]:
        return [
            key
            for key, record in self._records.items()
            if record.last_seen_at < cutoff
        ]

    def clear(self) -> list[asyncio.Task]:
        """Cancel every window timer and return the cancelled tasks."""
        pending = [
            record.window_task
            for record in self._records.values()
            if record.window_task is not None and not record.window_task.done()
        ]
        for record in self._records.values():
            record.cancel_timer()
        self._records.clear()
        return pending

    def snapshot(self) -> list[dict[str, Any]]:
        return [
            {
                "key": key,
                "error_type": record.error_type,
                "count": record.count,
                "first_seen_at": record.first_seen_at,
                "last_seen_at": record.last_seen_at,
                "clients": record.client_counts(),
            }
            for key, record in self._records.items()
        ]


class ErrorAggregator:
    """Decides between immediate delivery and silent accumulation."""

    def __init__(
        self,
        *,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
        store: AggregationStore | None = None,
    ):
        self.window_seconds = window_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self.clock = clock
        self.store = store if store is not None else AggregationStore()
        self._send: SendCallback | None = None
        self._sweeper_task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._sweeper_task is not None and not self._sweeper_task.done()

    async def process(self, report: ErrorReport, send: SendCallback) -> bool:
        """Handle one occurrence. Returns True when an immediate send was made."""
        key = report.key
        now = float(self.clock())

        existing = self.store.get(key)
        if existing is not None:
            existing.add(report, now)
            suppressed_reports.add(1, {"error_type": report.error_type})
            logger.info(
                "Error added to open window",
                extra={"key": key, "count": existing.count},
            )
            return False

        record = self.store.open(key, report, now)
        immediate_sends.add(1, {"error_type": report.error_type})
        try:
            await send(report.error_type, report, False)
        except Exception:
            delivery_failures.add(1, {"aggregated": "false"})
            logger.exception("Immediate alert delivery failed for %s", key)
        finally:
            # armed even if the caller is cancelled mid-send
            if self.store.get(key) is record:
                self._arm(key, record, send)
        return True

    def _arm(self, key: str, record: AggregationRecord, send: SendCallback) -> None:
        elapsed = float(self.clock()) - record.first_seen_at
        delay = max(self.window_seconds - elapsed, 0.0)
        record.cancel_timer()
        record.window_task = asyncio.create_task(
            self._expire(key, record, send, delay), name=f"alert-window:{key}"
        )

    async def _expire(
        self,
        key: str,
        record: AggregationRecord,
        send: SendCallback,
        delay: float,
    ) -> None:
        await asyncio.sleep(delay)
        await self.flush(key, record, send)

    async def flush(
        self,
        key: str,
        record: AggregationRecord | None = None,
        send: SendCallback | None = None,
    ) -> bool:
        """Close a window. Returns True when a summary was sent."""
        closed = self.store.discard(key, record)
        if closed is None:
            return False
        if closed.count <= 1:
            logger.debug("Window closed without repeats for %s", key)
            return False

        callback = send or self._send
        if callback is None:
            logger.warning("No delivery callback for aggregated alert %s", key)
            return False

        aggregated_sends.add(1, {"error_type": closed.error_type})
        try:
            await callback(closed.error_type, closed, True)
        except Exception:
            delivery_failures.add(1, {"aggregated": "true"})
            logger.exception("Aggregated alert delivery failed for %s", key)
        return True

    def sweep(self) -> list[str]:
        """Drop windows whose timer never fired. No summary is sent for them."""
        cutoff = float(self.clock()) - self.window_seconds
        evicted: list[str] = []
        for key in self.store.stale(cutoff):
            record = self.store.discard(key)
            if record is None:
                continue
            evicted.append(key)
            logger.warning(
                "Swept stale alert window %s with %s unsent occurrence(s)",
                key,
                record.count - 1,
            )
        if evicted:
            swept_windows.add(len(evicted))
        return evicted

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                self.sweep()
            except Exception:
                logger.exception("Alert window sweep failed")

    def start(self, send: SendCallback | None = None) -> None:
        if send is not None:
            self._send = send
        if self.running:
            return
        self._sweeper_task = asyncio.create_task(
            self._sweep_forever(), name="alert-window-sweeper"
        )
        logger.info(
            "Error aggregator started (window=%ss, sweep=%ss)",
            self.window_seconds,
            self.sweep_interval_seconds,
        )

    async def stop(self) -> None:
        """Cancel the sweeper and every open window. Unsent summaries are lost."""
        task = self._sweeper_task
        self._sweeper_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        abandoned = len(self.store)
        pending = self.store.clear()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Error aggregator stopped, %s open window(s) abandoned", abandoned)

    def active_windows(self) -> list[dict[str, Any]]:
        return self.store.snapshot()
