"""Human-readable WhatsApp text for single and aggregated error alerts."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from core.alerting.aggregator import AggregationRecord, ErrorReport

STACK_LINES = 5
CONTEXT_FIELDS = (
    ("contactId", "Contact ID"),
    ("messageId", "Message ID"),
    ("remoteJid", "Remote"),
    ("phone", "Phone"),
)


def format_timestamp(value: Any = None) -> str:
    """Render epoch seconds, ISO strings or datetimes as dd/mm/YYYY HH:MM:SS."""
    if value is None:
        moment = datetime.now()
    elif isinstance(value, datetime):
        moment = value
    elif isinstance(value, (int, float)):
        moment = datetime.fromtimestamp(value)
    else:
        try:
            moment = datetime.fromisoformat(str(value))
        except ValueError:
            return str(value)
    if moment.tzinfo is not None:
        moment = moment.astimezone()
    return moment.strftime("%d/%m/%Y %H:%M:%S")


def format_stack(stack: str | None) -> str:
    if not stack:
        return "N/A"
    lines = str(stack).split("\n")[:STACK_LINES]
    return "\n".join(line.strip() for line in lines)


def _client_label(report: ErrorReport) -> str:
    return report.client_id or "N/A"


def format_single_error(error_type: str, report: ErrorReport) -> str:
    details = report.context
    endpoint = details.get("endpoint") or details.get("webhook") or "N/A"

    parts = [
        "🚨 *Server Error* 🚨",
        "",
        f"*Type:* {error_type}",
        f"*Client:* {_client_label(report)}",
        f"*Endpoint:* {endpoint}",
        f"*Error:* {report.message}",
        "",
    ]

    context_lines = [
        f"• {label}: {details[name]}"
        for name, label in CONTEXT_FIELDS
        if details.get(name)
    ]
    if context_lines:
        parts.append("*Context:*")
        parts.extend(context_lines)
        parts.append("")

    if details.get("stack"):
        parts.append(f"*Stack:*\n```\n{format_stack(details['stack'])}\n```")
        parts.append("")

    parts.append(f"*Timestamp:* {format_timestamp(report.timestamp)}")
    return "\n".join(parts)


def format_aggregated_error(error_type: str, record: AggregationRecord) -> str:
    clients = record.client_counts()
    first_message = record.occurrences[0].message if record.occurrences else ""

    parts = [
        f"🚨 *Grouped Error* (x{record.count}) 🚨",
        "",
        f"*Type:* {error_type}",
        f"*Message:* {first_message}",
        "",
        "*Statistics:*",
        f"• Occurrences: {record.count}",
        f"• First: {format_timestamp(record.first_seen_at)}",
        f"• Last: {format_timestamp(record.last_seen_at)}",
        f"• Affected clients: {len(clients)}",
        "",
        "*Per client:*",
    ]
    parts.extend(f"- {client} ({count}x)" for client, count in clients.items())

    if record.occurrences:
        stack = record.latest.context.get("stack")
        if stack:
            parts.append("")
            parts.append(f"*Latest stack:*\n```\n{format_stack(stack)}\n```")

    return "\n".join(parts)
