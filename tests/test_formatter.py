"""Tests for WhatsApp alert text rendering."""

from datetime import datetime

from core.alerting.aggregator import AggregationRecord, ErrorReport
from core.alerting.formatter import (
    format_aggregated_error,
    format_single_error,
    format_stack,
    format_timestamp,
)


def test_format_timestamp_accepts_datetime_and_iso_strings():
    moment = datetime(2026, 3, 4, 5, 6, 7)

    assert format_timestamp(moment) == "04/03/2026 05:06:07"
    assert format_timestamp("2026-03-04T05:06:07") == "04/03/2026 05:06:07"
    assert format_timestamp("not a date") == "not a date"


def test_format_stack_keeps_first_five_trimmed_lines():
    stack = "\n".join(f"   at frame{i}  " for i in range(8))

    assert format_stack(stack).split("\n") == [f"at frame{i}" for i in range(5)]
    assert format_stack(None) == "N/A"


def test_single_error_includes_client_endpoint_and_context():
    report = ErrorReport.from_details(
        "GHL Webhook Error",
        {
            "error": "Invalid payload",
            "location_id": "loc-9",
            "webhook": "/webhooks/ghl",
            "contactId": "c-1",
            "phone": "+5491100000000",
            "stack": "Error: Invalid payload\n    at handler",
            "timestamp": "2026-03-04T05:06:07",
        },
    )

    text = format_single_error("GHL Webhook Error", report)

    assert "*Type:* GHL Webhook Error" in text
    assert "*Client:* loc-9" in text
    assert "*Endpoint:* /webhooks/ghl" in text
    assert "*Error:* Invalid payload" in text
    assert "• Contact ID: c-1" in text
    assert "• Phone: +5491100000000" in text
    assert "Message ID" not in text
    assert "at handler" in text
    assert "*Timestamp:* 04/03/2026 05:06:07" in text


def test_single_error_without_optional_fields():
    report = ErrorReport.from_details("DBError", {})

    text = format_single_error("DBError", report)

    assert "*Client:* N/A" in text
    assert "*Endpoint:* N/A" in text
    assert "*Context:*" not in text
    assert "*Stack:*" not in text


def test_aggregated_error_breaks_down_clients_and_uses_latest_stack():
    occurrences = [
        ErrorReport.from_details(
            "DBError", {"error": "conn refused", "location_id": "L1", "stack": "old"}
        ),
        ErrorReport.from_details(
            "DBError", {"error": "conn refused", "location_id": "L1"}
        ),
        ErrorReport.from_details(
            "DBError", {"error": "conn refused", "location_id": "L2", "stack": "new"}
        ),
    ]
    record = AggregationRecord(
        key="dberror:conn_refused:l1",
        error_type="DBError",
        first_seen_at=datetime(2026, 3, 4, 5, 0, 0).timestamp(),
        last_seen_at=datetime(2026, 3, 4, 5, 4, 0).timestamp(),
        count=3,
        occurrences=occurrences,
    )

    text = format_aggregated_error("DBError", record)

    assert "(x3)" in text
    assert "*Message:* conn refused" in text
    assert "• Occurrences: 3" in text
    assert "• First: 04/03/2026 05:00:00" in text
    assert "• Last: 04/03/2026 05:04:00" in text
    assert "• Affected clients: 2" in text
    assert "- L1 (2x)" in text
    assert "- L2 (1x)" in text
    assert "new" in text
    assert "old" not in text
