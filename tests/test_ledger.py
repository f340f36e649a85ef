"""
Tests for the ledger state machine and webhook status mapping.
"""

import pytest

from app.services.ledger_service import parse_gateway_timestamp, sources_for
from app.services.reconciliation_service import extract_webhook_event, generate_order_id, map_webhook_status


@pytest.mark.parametrize("target", ["paid", "failed", "cancelled", "webhook_received", "ready"])
def test_paid_is_sticky(target):
    assert "paid" not in sources_for(target)


def test_failure_can_be_superseded_by_payment():
    assert "failed" in sources_for("paid")
    assert "cancelled" in sources_for("paid")
    assert "cancelled" not in sources_for("failed")
    assert "failed" not in sources_for("webhook_received")


def test_sources_for_paid():
    assert sources_for("paid") == ["cancelled", "failed", "ready", "webhook_received"]


@pytest.mark.parametrize(
    "event_type, raw_status, expected",
    [
        ("PAYMENT_STATUS_CHANGED", "DONE", "paid"),
        ("", "paid", "paid"),
        ("PAYMENT.DONE", "", "paid"),
        ("PAYMENT_STATUS_CHANGED", "CANCELED", "cancelled"),
        ("PAYMENT_STATUS_CHANGED", "CANCELLED", "cancelled"),
        ("payment.canceled", "", "cancelled"),
        ("PAYMENT_STATUS_CHANGED", "ABORTED", "failed"),
        ("PAYMENT_FAILED", "", "failed"),
        ("PAYMENT_STATUS_CHANGED", "WAITING_FOR_DEPOSIT", "webhook_received"),
        ("DEPOSIT_CALLBACK", "", "webhook_received"),
    ],
)
def test_map_webhook_status(event_type, raw_status, expected):
    assert map_webhook_status(event_type, raw_status) == expected


def test_extract_webhook_event_reads_data_object():
    event = extract_webhook_event(
        {"eventType": "PAYMENT_STATUS_CHANGED", "data": {"orderId": " cls_1 ", "status": "done", "totalAmount": "500"}}
    )
    assert event["order_id"] == "cls_1"
    assert event["raw_status"] == "DONE"
    assert event["total_amount"] == 500
    assert event["payment_key"] is None


def test_extract_webhook_event_falls_back_to_top_level():
    event = extract_webhook_event({"type": "X", "orderId": "cls_2", "status": "CANCELED", "amount": 300})
    assert event["event_type"] == "X"
    assert event["order_id"] == "cls_2"
    assert event["total_amount"] == 300


def test_extract_webhook_event_bad_amount_is_zero():
    assert extract_webhook_event({"data": {"orderId": "o", "totalAmount": "abc"}})["total_amount"] == 0


def test_parse_gateway_timestamp():
    parsed = parse_gateway_timestamp("2026-10-19T10:00:00+09:00")
    assert parsed.utcoffset().total_seconds() == 9 * 3600
    assert parse_gateway_timestamp("2026-10-19T01:00:00Z").tzinfo is not None
    assert parse_gateway_timestamp("garbage") is None
    assert parse_gateway_timestamp(None) is None


def test_order_ids_are_unique():
    ids = {generate_order_id(7) for _ in range(50)}
    assert len(ids) == 50
    assert all(order_id.startswith("cls_7_") and len(order_id) <= 64 for order_id in ids)
