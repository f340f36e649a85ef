"""
Tests for gateway webhooks: trust channels, status mapping and convergence
with the confirm path.
"""

import base64
import hashlib
import hmac
import json
import os

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from app.models.notification import Notification
from app.models.payment_log import PaymentLog
from app.models.reservation import ClassReservation

WEBHOOK_URL = "/api/v1/payments/toss/webhook"
SECRET = os.environ["TOSS_WEBHOOK_SECRET"]


def sign_hex(raw: bytes) -> str:
    return hmac.new(SECRET.encode(), raw, hashlib.sha256).hexdigest()


def sign_base64(raw: bytes) -> str:
    return base64.b64encode(hmac.new(SECRET.encode(), raw, hashlib.sha256).digest()).decode()


def event(order_id: str, status: str = "DONE", **data) -> dict:
    body = {"orderId": order_id, "paymentKey": "pk_webhook", "status": status, "totalAmount": 50000, "method": "CARD"}
    body.update(data)
    return {"eventType": "PAYMENT_STATUS_CHANGED", "data": body}


async def post_signed(client: AsyncClient, payload: dict, header: str = "x-toss-signature", encode=sign_hex):
    raw = json.dumps(payload).encode()
    return await client.post(WEBHOOK_URL, content=raw, headers={header: encode(raw), "content-type": "application/json"})


async def _log(db_session, order_id: str) -> PaymentLog:
    result = await db_session.execute(
        select(PaymentLog).where(PaymentLog.order_id == order_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def _notification_count(db_session) -> int:
    return len((await db_session.execute(select(Notification))).scalars().all())


@pytest.mark.asyncio
async def test_webhook_done_marks_paid(client: AsyncClient, prepared_order, db_session):
    response = await post_signed(client, event(prepared_order["orderId"]))
    assert response.status_code == 200
    assert response.json() == {"ok": True}

    log = await _log(db_session, prepared_order["orderId"])
    assert log.status == "paid"
    assert log.payment_key == "pk_webhook"

    reservation = await db_session.get(ClassReservation, log.reservation_id, populate_existing=True)
    assert reservation.status == "confirmed"
    assert reservation.payment_status == "paid"


@pytest.mark.asyncio
async def test_webhook_base64_signature_accepted(client: AsyncClient, prepared_order):
    response = await post_signed(
        client, event(prepared_order["orderId"]), header="tosspayments-webhook-signature", encode=sign_base64
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_webhook_prefixed_signature_accepted(client: AsyncClient, prepared_order):
    response = await post_signed(
        client,
        event(prepared_order["orderId"]),
        header="tosspayments-signature",
        encode=lambda raw: f"sha256={sign_hex(raw)}",
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_webhook_shared_secret_header_accepted(client: AsyncClient, prepared_order):
    response = await client.post(
        WEBHOOK_URL, json=event(prepared_order["orderId"]), headers={"x-webhook-secret": SECRET}
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_webhook_payload_secret_accepted_and_not_stored(client: AsyncClient, prepared_order, db_session):
    payload = event(prepared_order["orderId"], status="WAITING_FOR_DEPOSIT")
    payload["secret"] = SECRET
    response = await client.post(WEBHOOK_URL, json=payload)
    assert response.status_code == 200

    log = await _log(db_session, prepared_order["orderId"])
    assert log.status == "webhook_received"
    assert "secret" not in log.gateway_metadata


@pytest.mark.asyncio
async def test_webhook_invalid_signature_rejected(client: AsyncClient, prepared_order, db_session):
    response = await client.post(
        WEBHOOK_URL,
        json=event(prepared_order["orderId"]),
        headers={"x-toss-signature": "0" * 64, "x-webhook-secret": "wrong"},
    )
    assert response.status_code == 401
    assert response.json() == {"error": "Invalid webhook signature", "reason": "signature-mismatch"}

    log = await _log(db_session, prepared_order["orderId"])
    assert log.status == "ready"


@pytest.mark.asyncio
async def test_webhook_signature_over_different_body_rejected(client: AsyncClient, prepared_order):
    raw = json.dumps(event(prepared_order["orderId"])).encode()
    tampered = raw.replace(b"50000", b"50001")
    response = await client.post(WEBHOOK_URL, content=tampered, headers={"x-toss-signature": sign_hex(raw)})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_webhook_without_credentials_rejected(client: AsyncClient, prepared_order):
    response = await client.post(WEBHOOK_URL, json=event(prepared_order["orderId"]))
    assert response.status_code == 401
    assert response.json()["reason"] == "missing-signature-header"


@pytest.mark.asyncio
async def test_webhook_invalid_json(client: AsyncClient):
    response = await client.post(WEBHOOK_URL, content=b"{not json")
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid JSON payload"}


@pytest.mark.asyncio
async def test_webhook_unknown_order_ignored(client: AsyncClient):
    response = await post_signed(client, event("cls_404_0_ffffffff"))
    assert response.status_code == 200
    assert response.json() == {"ok": True, "ignored": True, "reason": "payment-log-not-found"}


@pytest.mark.asyncio
async def test_webhook_without_order_id_ignored(client: AsyncClient):
    response = await post_signed(client, {"eventType": "PAYMENT_STATUS_CHANGED", "data": {"status": "DONE"}})
    assert response.status_code == 200
    assert response.json()["ignored"] is True


@pytest.mark.asyncio
async def test_webhook_canceled(client: AsyncClient, prepared_order, db_session):
    response = await post_signed(client, event(prepared_order["orderId"], status="CANCELED"))
    assert response.status_code == 200

    log = await _log(db_session, prepared_order["orderId"])
    assert log.status == "cancelled"
    assert log.failure_code == "WEBHOOK_STATUS"
    assert log.failure_message == "PAYMENT_STATUS_CHANGED:CANCELED"

    reservation = await db_session.get(ClassReservation, log.reservation_id, populate_existing=True)
    assert reservation.payment_status == "cancelled"
    assert reservation.status == "requested"


@pytest.mark.asyncio
async def test_failed_confirm_keeps_cancelled_reservation(
    client: AsyncClient, auth_headers, prepared_order, gateway, db_session
):
    """A gateway rejection after a CANCELED webhook leaves both rows cancelled."""
    await post_signed(client, event(prepared_order["orderId"], status="CANCELED"))
    gateway.reject(400, "ALREADY_CANCELED_PAYMENT", "Payment was cancelled")

    response = await client.post(
        "/api/v1/payments/toss/confirm",
        json={"paymentKey": "pk_1", "orderId": prepared_order["orderId"], "amount": 50000},
        headers=auth_headers,
    )
    assert response.status_code == 400

    log = await _log(db_session, prepared_order["orderId"])
    assert log.status == "cancelled"
    assert log.failure_code == "WEBHOOK_STATUS"
    reservation = await db_session.get(ClassReservation, log.reservation_id, populate_existing=True)
    assert reservation.payment_status == "cancelled"


@pytest.mark.asyncio
async def test_webhook_aborted(client: AsyncClient, prepared_order, db_session):
    await post_signed(client, event(prepared_order["orderId"], status="ABORTED"))

    log = await _log(db_session, prepared_order["orderId"])
    assert log.status == "failed"
    reservation = await db_session.get(ClassReservation, log.reservation_id, populate_existing=True)
    assert reservation.payment_status == "failed"


@pytest.mark.asyncio
async def test_webhook_amount_mismatch_does_not_confirm(client: AsyncClient, prepared_order, db_session):
    response = await post_signed(client, event(prepared_order["orderId"], totalAmount=1))
    assert response.status_code == 200
    assert response.json()["reason"] == "amount-mismatch"

    log = await _log(db_session, prepared_order["orderId"])
    assert log.status == "failed"
    assert log.failure_code == "AMOUNT_MISMATCH"
    reservation = await db_session.get(ClassReservation, log.reservation_id, populate_existing=True)
    assert reservation.status != "confirmed"


@pytest.mark.asyncio
async def test_webhook_after_confirm_is_noop(client: AsyncClient, auth_headers, prepared_order, db_session):
    """A delayed DONE webhook after a successful confirm changes nothing."""
    confirm = await client.post(
        "/api/v1/payments/toss/confirm",
        json={"paymentKey": "pk_1", "orderId": prepared_order["orderId"], "amount": 50000},
        headers=auth_headers,
    )
    assert confirm.status_code == 200
    count_before = await _notification_count(db_session)

    response = await post_signed(client, event(prepared_order["orderId"]))
    assert response.status_code == 200
    assert response.json()["alreadyConfirmed"] is True

    log = await _log(db_session, prepared_order["orderId"])
    assert log.status == "paid"
    assert log.payment_key == "pk_1"
    assert await _notification_count(db_session) == count_before


@pytest.mark.asyncio
async def test_confirm_after_webhook_is_already_confirmed(
    client: AsyncClient, auth_headers, prepared_order, gateway, db_session
):
    """Webhook wins the race; the later confirm neither re-calls the gateway nor re-notifies."""
    assert (await post_signed(client, event(prepared_order["orderId"]))).status_code == 200
    count_before = await _notification_count(db_session)

    response = await client.post(
        "/api/v1/payments/toss/confirm",
        json={"paymentKey": "pk_webhook", "orderId": prepared_order["orderId"], "amount": 50000},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json()["alreadyConfirmed"] is True
    assert gateway.calls == []
    assert await _notification_count(db_session) == count_before


@pytest.mark.asyncio
async def test_late_failure_signals_do_not_downgrade_paid(client: AsyncClient, auth_headers, prepared_order, db_session):
    """paid is sticky against cancel webhooks and client fail reports."""
    await client.post(
        "/api/v1/payments/toss/confirm",
        json={"paymentKey": "pk_1", "orderId": prepared_order["orderId"], "amount": 50000},
        headers=auth_headers,
    )
    await post_signed(client, event(prepared_order["orderId"], status="CANCELED"))
    await client.post(
        "/api/v1/payments/toss/fail",
        json={"orderId": prepared_order["orderId"], "code": "USER_CANCEL", "message": "closed"},
        headers=auth_headers,
    )

    log = await _log(db_session, prepared_order["orderId"])
    assert log.status == "paid"
    assert log.payment_key == "pk_1"
    reservation = await db_session.get(ClassReservation, log.reservation_id, populate_existing=True)
    assert reservation.status == "confirmed"
    assert reservation.payment_status == "paid"


@pytest.mark.asyncio
async def test_done_webhook_supersedes_reported_failure(client: AsyncClient, auth_headers, prepared_order, db_session):
    await client.post(
        "/api/v1/payments/toss/fail",
        json={"orderId": prepared_order["orderId"], "code": "PAY_PROCESS_CANCELED"},
        headers=auth_headers,
    )
    response = await post_signed(client, event(prepared_order["orderId"]))
    assert response.status_code == 200

    log = await _log(db_session, prepared_order["orderId"])
    assert log.status == "paid"
    assert log.failure_code is None
