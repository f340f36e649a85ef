"""
Tests for client-reported payment failures.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from app.models.payment_log import PaymentLog
from app.models.reservation import ClassReservation

FAIL_URL = "/api/v1/payments/toss/fail"


async def _log(db_session, order_id: str) -> PaymentLog:
    result = await db_session.execute(
        select(PaymentLog).where(PaymentLog.order_id == order_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


@pytest.mark.asyncio
async def test_fail_records_diagnostics(client: AsyncClient, auth_headers, prepared_order, db_session):
    response = await client.post(
        FAIL_URL,
        json={"orderId": prepared_order["orderId"], "code": "PAY_PROCESS_CANCELED", "message": "User closed the window"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json() == {"ok": True}

    log = await _log(db_session, prepared_order["orderId"])
    assert log.status == "failed"
    assert log.failure_code == "PAY_PROCESS_CANCELED"
    assert log.failure_message == "User closed the window"

    reservation = await db_session.get(ClassReservation, log.reservation_id, populate_existing=True)
    assert reservation.payment_status == "failed"


@pytest.mark.asyncio
async def test_fail_defaults_and_truncation(client: AsyncClient, auth_headers, prepared_order, db_session):
    response = await client.post(
        FAIL_URL,
        json={"orderId": prepared_order["orderId"], "message": "x" * 800},
        headers=auth_headers,
    )
    assert response.status_code == 200

    log = await _log(db_session, prepared_order["orderId"])
    assert log.failure_code == "PAYMENT_FAILED"
    assert len(log.failure_message) == 500

    await client.post(FAIL_URL, json={"orderId": prepared_order["orderId"], "code": "C" * 300}, headers=auth_headers)
    log = await _log(db_session, prepared_order["orderId"])
    assert len(log.failure_code) == 120
    assert log.failure_message == "Payment failed"


@pytest.mark.asyncio
async def test_fail_is_idempotent(client: AsyncClient, auth_headers, prepared_order, db_session):
    body = {"orderId": prepared_order["orderId"], "code": "REJECT_CARD_PAYMENT", "message": "Declined"}
    first = await client.post(FAIL_URL, json=body, headers=auth_headers)
    second = await client.post(FAIL_URL, json=body, headers=auth_headers)
    assert first.status_code == 200
    assert second.status_code == 200

    log = await _log(db_session, prepared_order["orderId"])
    assert log.status == "failed"
    assert log.failure_code == "REJECT_CARD_PAYMENT"


@pytest.mark.asyncio
async def test_fail_for_stale_order_leaves_new_attempt_alone(
    client: AsyncClient, auth_headers, paid_class, prepared_order, db_session
):
    """A failure for an older order id does not touch the reservation's newer attempt."""
    retry = await client.post(f"/api/v1/payments/classes/{paid_class.id}/prepare", headers=auth_headers)
    new_order_id = retry.json()["checkout"]["orderId"]

    await client.post(FAIL_URL, json={"orderId": prepared_order["orderId"]}, headers=auth_headers)

    reservation = await db_session.get(ClassReservation, retry.json()["reservationId"], populate_existing=True)
    assert reservation.payment_order_id == new_order_id
    assert reservation.payment_status == "pending"


@pytest.mark.asyncio
async def test_fail_requires_order_id(client: AsyncClient, auth_headers):
    response = await client.post(FAIL_URL, json={"orderId": "   "}, headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["error"] == "orderId is required"


@pytest.mark.asyncio
async def test_fail_other_users_order(client: AsyncClient, coach_headers, prepared_order):
    response = await client.post(FAIL_URL, json={"orderId": prepared_order["orderId"]}, headers=coach_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_fail_unknown_order(client: AsyncClient, auth_headers):
    response = await client.post(FAIL_URL, json={"orderId": "cls_0_0_00000000"}, headers=auth_headers)
    assert response.status_code == 404
