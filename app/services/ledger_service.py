"""
Payment ledger: one PaymentLog row per gateway order id.

CONCURRENCY STRATEGY: Conditional UPDATE per transition
=======================================================

Confirm, webhook and fail signals race on the same row with no ordering
guarantees. Every mutator is a single statement of the form

  UPDATE payment_logs SET status = :new, ...
  WHERE id = :id AND status IN (<states allowed to move to :new>)

and the rowcount tells the caller whether it won the transition. Nothing is
locked; the loser simply observes that the work was already done.

`paid` is sticky. The only write allowed on a paid row is filling in a
missing payment key. Failed and cancelled rows may still be superseded by an
authoritative gateway success (confirm response or DONE webhook), never by a
client report or a neutral webhook marker.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.base import utcnow
from app.models.payment_log import PaymentLog
from app.core.logging import get_logger

logger = get_logger(__name__)

FAILURE_CODE_MAX = 120
FAILURE_MESSAGE_MAX = 500

LEDGER_TRANSITIONS: dict[str, set[str]] = {
    "ready": {"webhook_received", "paid", "failed", "cancelled"},
    "webhook_received": {"webhook_received", "paid", "failed", "cancelled"},
    "failed": {"failed", "paid", "cancelled"},
    "cancelled": {"paid"},
    "paid": set(),
}


def sources_for(new: str) -> list[str]:
    return sorted(state for state, targets in LEDGER_TRANSITIONS.items() if new in targets)


def parse_gateway_timestamp(value) -> Optional[datetime]:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


async def get_by_order_id(db: AsyncSession, order_id: str) -> Optional[PaymentLog]:
    result = await db.execute(
        select(PaymentLog)
        .where(PaymentLog.order_id == order_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def create_ready(
    db: AsyncSession,
    *,
    order_id: str,
    reservation_id: int,
    class_id: int,
    user_id: int,
    amount: int,
    currency: str,
    fee_rate: float,
    platform_fee: int,
    metadata: Optional[dict] = None,
) -> PaymentLog:
    now = utcnow()
    log = PaymentLog(
        provider="toss",
        order_id=order_id,
        reservation_id=reservation_id,
        class_id=class_id,
        user_id=user_id,
        status="ready",
        amount=amount,
        currency=currency,
        fee_rate=fee_rate,
        platform_fee=platform_fee,
        gateway_metadata=metadata or {},
        created_at=now,
        updated_at=now,
    )
    db.add(log)
    await db.flush()
    logger.info("ledger_row_created", order_id=order_id, amount=amount, reservation_id=reservation_id)
    return log


async def _conditional_update(db: AsyncSession, log: PaymentLog, condition, values: dict) -> bool:
    values = {**values, "updated_at": utcnow()}
    result = await db.execute(
        update(PaymentLog)
        .where(PaymentLog.id == log.id, condition)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await db.refresh(log)
    return result.rowcount == 1


async def mark_paid(
    db: AsyncSession,
    log: PaymentLog,
    *,
    payment_key: Optional[str],
    method: Optional[str],
    paid_at: datetime,
    metadata: Optional[dict] = None,
) -> bool:
    """Move the row to paid. False when another signal already settled it."""
    condition = or_(
        PaymentLog.status.in_(sources_for("paid")),
        and_(PaymentLog.status == "paid", PaymentLog.payment_key.is_(None)),
    )
    values = {
        "status": "paid",
        "paid_at": paid_at,
        "failure_code": None,
        "failure_message": None,
    }
    if payment_key:
        values["payment_key"] = payment_key
    if method:
        values["method"] = method
    if metadata is not None:
        values["gateway_metadata"] = metadata

    won = await _conditional_update(db, log, condition, values)
    logger.info("ledger_marked_paid" if won else "ledger_paid_already", order_id=log.order_id)
    return won


async def mark_failed(
    db: AsyncSession,
    log: PaymentLog,
    *,
    code: str,
    message: str,
    status: str = "failed",
    metadata: Optional[dict] = None,
) -> bool:
    """Record a failed or cancelled outcome unless the row is already settled."""
    values = {
        "status": status,
        "failure_code": (code or "")[:FAILURE_CODE_MAX],
        "failure_message": (message or "")[:FAILURE_MESSAGE_MAX],
    }
    if metadata is not None:
        values["gateway_metadata"] = metadata

    changed = await _conditional_update(db, log, PaymentLog.status.in_(sources_for(status)), values)
    if changed:
        logger.info("ledger_marked_failed", order_id=log.order_id, status=status, code=values["failure_code"])
    else:
        logger.info("ledger_failure_ignored", order_id=log.order_id, status=log.status, attempted=status)
    return changed


async def record_webhook_received(
    db: AsyncSession,
    log: PaymentLog,
    *,
    payment_key: Optional[str],
    method: Optional[str],
    metadata: dict,
) -> bool:
    """
    Neutral webhook marker: refresh metadata and move ready rows to
    webhook_received. Terminal rows keep their status; paid rows are untouched.
    """
    values = {"gateway_metadata": metadata}
    if payment_key:
        values["payment_key"] = payment_key
    if method:
        values["method"] = method

    if await _conditional_update(
        db, log, PaymentLog.status.in_(sources_for("webhook_received")), {**values, "status": "webhook_received"}
    ):
        return True

    return await _conditional_update(
        db, log, PaymentLog.status.in_(["failed", "cancelled"]), {"gateway_metadata": metadata}
    )
