"""
Payment reconciliation for priced class reservations.

FLOW
====

  prepare  -> reservation pending, ledger row 'ready', checkout payload
  confirm  -> client-driven, after the gateway redirects back
  webhook  -> gateway-pushed, signature verified by the route
  fail     -> client reports a gateway-side abort

Confirm, webhook and fail arrive at-least-once and in any order; any subset
may never arrive. Convergence comes from three things, not from locks:

  1. Ledger transitions are conditional UPDATEs (see ledger_service) and
     'paid' is sticky.
  2. Reservation transitions are guarded on their current status.
  3. Only the signal that wins the ledger's paid transition notifies, and
     its pushes carry dedupe keys scoped to {orderId, recipient}.

Payment state is committed before notifications run, and a notification
failure is logged without failing the payment. Failure diagnostics are
committed before the error response is raised.
"""

import time
import uuid
from typing import Awaitable, Optional

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.metrics import record_checkout, record_payment_signal
from app.db.base import utcnow
from app.infrastructure.toss_client import TossPaymentsClient
from app.models.payment_log import PaymentLog
from app.models.user import User
from app.schemas.payment import (
    CheckoutPayload,
    ConfirmResponse,
    OkResponse,
    PrepareResponse,
    WebhookResponse,
)
from app.services import ledger_service, notification_service, reservation_service
from app.services.platform_settings import PlatformSettings, calculate_platform_fee, clamp_fee_rate

logger = get_logger(__name__)

SUCCESS_PATH = "/payments/toss/success"
FAIL_PATH = "/payments/toss/fail"
CONFIRMED_REDIRECT_PATH = "/activity"
DEFAULT_CUSTOMER_NAME = "Fencer"
DEFAULT_FAILURE_CODE = "PAYMENT_FAILED"
DEFAULT_FAILURE_MESSAGE = "Payment failed"
AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
WEBHOOK_STATUS = "WEBHOOK_STATUS"


def generate_order_id(class_id: int) -> str:
    return f"cls_{class_id}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


def resolve_base_url(origin: Optional[str]) -> str:
    base = get_settings().APP_BASE_URL.strip() or (origin or "").strip()
    return base.rstrip("/")


async def _notify_after_commit(db: AsyncSession, step: Awaitable, **context) -> None:
    """Run a notification step after payment state is committed; log its failure."""
    try:
        await step
    except Exception as e:
        await db.rollback()
        logger.error("notification_step_failed", error_type=type(e).__name__, error=str(e), **context)


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------

async def initiate_checkout(
    db: AsyncSession,
    class_id: int,
    user_id: int,
    platform_settings: PlatformSettings,
    origin: Optional[str] = None,
) -> PrepareResponse:
    """
    Start (or short-circuit) payment for a class reservation.

    Free classes are confirmed immediately. Priced classes get a fresh order
    id on every call; the managing party is only told about the request the
    first time the reservation is created.
    """
    settings = get_settings()
    snapshot = await reservation_service.get_class_snapshot(db, class_id)
    if not snapshot.is_open:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Class is not available",
        )

    amount = snapshot.amount
    client_key = settings.TOSS_CLIENT_KEY.strip()
    if amount > 0 and not client_key:
        logger.error("checkout_gateway_not_configured", class_id=class_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Payment is not configured",
        )

    reservation, created = await reservation_service.get_or_create_reservation(db, class_id, user_id, amount)
    reservation_id = reservation.id

    if reservation.status == "confirmed" and reservation.payment_status == "paid":
        record_checkout("already_confirmed")
        logger.info("checkout_already_confirmed", reservation_id=reservation_id, user_id=user_id)
        return PrepareResponse(already_confirmed=True, reservation_id=reservation_id)

    if amount == 0:
        await reservation_service.confirm_paid(db, reservation_id, utcnow(), amount=0)
        await db.commit()
        record_checkout("free")
        logger.info("checkout_free_confirmed", reservation_id=reservation_id, class_id=class_id, user_id=user_id)

        if snapshot.manager_id:
            await _notify_after_commit(
                db,
                notification_service.notify(
                    db,
                    snapshot.manager_id,
                    "reservation",
                    "A free class reservation was confirmed",
                    actor_id=user_id,
                    body=snapshot.title,
                    link=CONFIRMED_REDIRECT_PATH,
                    dedupe_key=f"free-class-confirmed:{reservation_id}",
                ),
                reservation_id=reservation_id,
            )
        return PrepareResponse(free=True, reservation_id=reservation_id)

    order_id = generate_order_id(class_id)
    fee_rate = clamp_fee_rate(platform_settings.class_fee_rate)
    await reservation_service.start_payment_attempt(db, reservation, order_id, amount)
    await ledger_service.create_ready(
        db,
        order_id=order_id,
        reservation_id=reservation_id,
        class_id=class_id,
        user_id=user_id,
        amount=amount,
        currency=settings.PAYMENT_CURRENCY,
        fee_rate=fee_rate,
        platform_fee=calculate_platform_fee(amount, fee_rate),
        metadata={"classTitle": snapshot.title},
    )
    user = await db.get(User, user_id)
    customer_name = (user.username if user else None) or DEFAULT_CUSTOMER_NAME
    customer_email = user.email if user else None
    await db.commit()

    record_checkout("pending")
    logger.info(
        "checkout_prepared",
        reservation_id=reservation_id,
        class_id=class_id,
        user_id=user_id,
        order_id=order_id,
        amount=amount,
    )

    if created and snapshot.manager_id:
        await _notify_after_commit(
            db,
            notification_service.notify(
                db,
                snapshot.manager_id,
                "reservation",
                "New class reservation request",
                actor_id=user_id,
                body=snapshot.title,
                link=CONFIRMED_REDIRECT_PATH,
                dedupe_key=f"class-reservation-request:{reservation_id}",
            ),
            reservation_id=reservation_id,
        )

    base_url = resolve_base_url(origin)
    return PrepareResponse(
        reservation_id=reservation_id,
        checkout=CheckoutPayload(
            amount=amount,
            order_id=order_id,
            order_name=f"{snapshot.title} class reservation",
            customer_name=customer_name,
            customer_email=customer_email,
            success_url=f"{base_url}{SUCCESS_PATH}",
            fail_url=f"{base_url}{FAIL_PATH}",
            gateway_client_key=client_key,
        ),
    )


# ---------------------------------------------------------------------------
# Settlement shared by confirm and webhook
# ---------------------------------------------------------------------------

async def _settle_paid(
    db: AsyncSession,
    log: PaymentLog,
    *,
    payment_key: Optional[str],
    method: Optional[str],
    approved_at,
    metadata: Optional[dict],
    source: str,
) -> bool:
    """
    Mark the ledger paid, confirm the reservation, commit, then notify.
    Returns False when another signal already settled this order.
    """
    paid_at = ledger_service.parse_gateway_timestamp(approved_at) or utcnow()
    won = await ledger_service.mark_paid(
        db, log, payment_key=payment_key, method=method, paid_at=paid_at, metadata=metadata
    )
    if not won:
        return False

    order_id = log.order_id
    payer_id = log.user_id
    class_id = log.class_id
    if log.reservation_id:
        await reservation_service.confirm_paid(db, log.reservation_id, paid_at)
    await db.commit()

    logger.info("payment_confirmed", order_id=order_id, source=source, amount=log.amount)
    await _notify_after_commit(db, _notify_payment_confirmed(db, order_id, payer_id, class_id), order_id=order_id)
    return True


async def _notify_payment_confirmed(db: AsyncSession, order_id: str, payer_id: int, class_id: Optional[int]) -> None:
    snapshot = await reservation_service.load_class_snapshot(db, class_id)
    if snapshot is None:
        return

    manager_id = snapshot.manager_id
    if manager_id and manager_id != payer_id:
        await notification_service.notify(
            db,
            manager_id,
            "reservation",
            "A class reservation was paid",
            actor_id=payer_id,
            body=snapshot.title,
            link=CONFIRMED_REDIRECT_PATH,
            dedupe_key=f"class-payment-confirmed:{order_id}:{manager_id}",
        )

    await notification_service.notify(
        db,
        payer_id,
        "reservation",
        "Your class reservation is confirmed",
        actor_id=manager_id,
        body=snapshot.title,
        link=CONFIRMED_REDIRECT_PATH,
        dedupe_key=f"class-payment-user-confirmed:{order_id}:{payer_id}",
        notify_self=True,
    )


# ---------------------------------------------------------------------------
# Confirm
# ---------------------------------------------------------------------------

async def _get_owned_log(db: AsyncSession, order_id: str, user_id: int) -> PaymentLog:
    log = await ledger_service.get_by_order_id(db, order_id)
    if log is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Payment not found",
        )
    if log.user_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden",
        )
    return log


async def confirm_payment(
    db: AsyncSession,
    gateway: TossPaymentsClient,
    user_id: int,
    payment_key: str,
    order_id: str,
    amount: int,
) -> ConfirmResponse:
    payment_key = (payment_key or "").strip()
    order_id = (order_id or "").strip()
    if not payment_key or not order_id or amount is None or amount <= 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid payload",
        )

    log = await _get_owned_log(db, order_id, user_id)

    if log.is_settled:
        record_payment_signal("confirm", "already_confirmed")
        return ConfirmResponse(
            already_confirmed=True, order_id=order_id, redirect_path=CONFIRMED_REDIRECT_PATH
        )

    if log.amount != amount:
        await ledger_service.mark_failed(
            db,
            log,
            code=AMOUNT_MISMATCH,
            message=f"Expected {log.amount}, got {amount}",
        )
        await db.commit()
        record_payment_signal("confirm", "amount_mismatch")
        logger.warning("payment_amount_mismatch", order_id=order_id, expected=log.amount, claimed=amount)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Amount mismatch",
        )

    result = await gateway.confirm_payment(payment_key, order_id, amount)

    if not result.ok:
        recorded = await ledger_service.mark_failed(
            db,
            log,
            code=result.error_code or DEFAULT_FAILURE_CODE,
            message=result.error_message or DEFAULT_FAILURE_MESSAGE,
            metadata=result.error_payload or None,
        )
        if not recorded and log.status == "paid":
            # A webhook settled the order while the gateway call was in flight
            await db.commit()
            record_payment_signal("confirm", "already_confirmed")
            return ConfirmResponse(
                already_confirmed=True, order_id=order_id, redirect_path=CONFIRMED_REDIRECT_PATH
            )
        if recorded and log.reservation_id:
            await reservation_service.mark_payment_outcome(db, log.reservation_id, order_id, "failed")
        await db.commit()

        record_payment_signal("confirm", "gateway_failed")
        logger.warning(
            "payment_confirm_failed",
            order_id=order_id,
            code=result.error_code,
            status_code=result.status_code,
        )
        raise HTTPException(
            status_code=(
                status.HTTP_500_INTERNAL_SERVER_ERROR
                if result.is_configuration_error
                else status.HTTP_400_BAD_REQUEST
            ),
            detail=result.error_message or "Failed to confirm payment",
        )

    data = result.data
    won = await _settle_paid(
        db,
        log,
        payment_key=data.get("paymentKey") or payment_key,
        method=data.get("method"),
        approved_at=data.get("approvedAt"),
        metadata=data,
        source="confirm",
    )
    if not won:
        record_payment_signal("confirm", "already_confirmed")
        return ConfirmResponse(
            already_confirmed=True, order_id=order_id, redirect_path=CONFIRMED_REDIRECT_PATH
        )

    record_payment_signal("confirm", "paid")
    return ConfirmResponse(order_id=order_id, redirect_path=CONFIRMED_REDIRECT_PATH)


# ---------------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------------

def _as_text(value) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _as_amount(value) -> int:
    if isinstance(value, bool):
        return 0
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0


def extract_webhook_event(payload: dict) -> dict:
    """Pull the fields reconciliation needs out of a gateway webhook body."""
    event_type = str(payload.get("eventType") or payload.get("type") or "").strip()
    data = payload.get("data")
    if not isinstance(data, dict):
        data = payload

    raw_status = data.get("status")
    return {
        "event_type": event_type,
        "order_id": (_as_text(data.get("orderId")) or "").strip(),
        "payment_key": _as_text(data.get("paymentKey")),
        "raw_status": raw_status.upper() if isinstance(raw_status, str) else "",
        "total_amount": _as_amount(data.get("totalAmount", data.get("amount", 0))),
        "method": _as_text(data.get("method")),
        "approved_at": _as_text(data.get("approvedAt")),
    }


def map_webhook_status(event_type: str, raw_status: str) -> str:
    event = (event_type or "").upper()
    raw = (raw_status or "").upper()
    if raw in ("DONE", "PAID") or "DONE" in event:
        return "paid"
    if raw in ("CANCELED", "CANCELLED") or "CANCELED" in event or "CANCELLED" in event:
        return "cancelled"
    if raw in ("ABORTED", "FAILED") or "FAIL" in event:
        return "failed"
    return "webhook_received"


def _stored_payload(payload: dict) -> dict:
    return {key: value for key, value in payload.items() if key != "secret"}


async def apply_webhook(db: AsyncSession, payload: dict) -> WebhookResponse:
    """Apply a verified webhook payload to the ledger and reservation."""
    event = extract_webhook_event(payload)
    order_id = event["order_id"]
    if not order_id:
        record_payment_signal("webhook", "ignored")
        return WebhookResponse(ignored=True, reason="missing-order-id")

    log = await ledger_service.get_by_order_id(db, order_id)
    if log is None:
        record_payment_signal("webhook", "ignored")
        logger.info("webhook_unknown_order", order_id=order_id)
        return WebhookResponse(ignored=True, reason="payment-log-not-found")

    mapped = map_webhook_status(event["event_type"], event["raw_status"])
    metadata = _stored_payload(payload)
    logger.info(
        "webhook_received",
        order_id=order_id,
        event_type=event["event_type"],
        raw_status=event["raw_status"],
        mapped=mapped,
        ledger_status=log.status,
    )

    if log.is_settled:
        record_payment_signal("webhook", "already_confirmed")
        return WebhookResponse(already_confirmed=True)

    if mapped == "paid":
        total_amount = event["total_amount"]
        if total_amount > 0 and total_amount != log.amount:
            await ledger_service.mark_failed(
                db,
                log,
                code=AMOUNT_MISMATCH,
                message=f"Expected {log.amount}, got {total_amount}",
                metadata=metadata,
            )
            await db.commit()
            record_payment_signal("webhook", "amount_mismatch")
            logger.warning(
                "payment_amount_mismatch", order_id=order_id, expected=log.amount, claimed=total_amount
            )
            return WebhookResponse(ignored=True, reason="amount-mismatch")

        won = await _settle_paid(
            db,
            log,
            payment_key=event["payment_key"],
            method=event["method"],
            approved_at=event["approved_at"],
            metadata=metadata,
            source="webhook",
        )
        record_payment_signal("webhook", "paid" if won else "already_confirmed")
        return WebhookResponse() if won else WebhookResponse(already_confirmed=True)

    if mapped in ("failed", "cancelled"):
        changed = await ledger_service.mark_failed(
            db,
            log,
            code=WEBHOOK_STATUS,
            message=f"{event['event_type'] or 'UNKNOWN_EVENT'}:{event['raw_status'] or 'UNKNOWN_STATUS'}",
            status=mapped,
            metadata=metadata,
        )
        if changed and log.reservation_id:
            await reservation_service.mark_payment_outcome(db, log.reservation_id, order_id, mapped)
        await db.commit()
        record_payment_signal("webhook", mapped if changed else "ignored")
        return WebhookResponse()

    await ledger_service.record_webhook_received(
        db,
        log,
        payment_key=event["payment_key"],
        method=event["method"],
        metadata=metadata,
    )
    await db.commit()
    record_payment_signal("webhook", "received")
    return WebhookResponse()


# ---------------------------------------------------------------------------
# Fail
# ---------------------------------------------------------------------------

async def report_failure(
    db: AsyncSession,
    user_id: int,
    order_id: str,
    code: Optional[str] = None,
    message: Optional[str] = None,
) -> OkResponse:
    """Record a client-reported gateway failure. Safe to call repeatedly."""
    order_id = (order_id or "").strip()
    if not order_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="orderId is required",
        )

    failure_code = (code or "").strip()[: ledger_service.FAILURE_CODE_MAX] or DEFAULT_FAILURE_CODE
    failure_message = (message or "").strip()[: ledger_service.FAILURE_MESSAGE_MAX] or DEFAULT_FAILURE_MESSAGE

    log = await _get_owned_log(db, order_id, user_id)
    changed = await ledger_service.mark_failed(db, log, code=failure_code, message=failure_message)
    if changed and log.reservation_id:
        await reservation_service.mark_payment_outcome(db, log.reservation_id, order_id, "failed")
    await db.commit()

    record_payment_signal("fail", "failed" if changed else "ignored")
    logger.info("payment_failure_reported", order_id=order_id, code=failure_code, applied=changed)
    return OkResponse()
