"""
Class reservations and the class snapshot the payment flows work from.

Every transition is a conditional UPDATE so that concurrent confirm, webhook
and fail signals can be applied in any order:

  - paid/confirmed:  WHERE NOT (status = 'confirmed' AND payment_status = 'paid')
  - failed/cancelled: WHERE payment_order_id = :order_id AND payment_status != 'paid'

The second guard keeps a stale attempt (an older order id) from touching a
reservation that has since started a new checkout.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import and_, not_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import HTTPException, status

from app.db.base import utcnow
from app.models.fencing_class import FencingClass
from app.models.reservation import ClassReservation
from app.services import notification_service
from app.core.logging import get_logger

logger = get_logger(__name__)

RESERVATION_STATUSES = ("requested", "confirmed", "cancelled")
ACTIVITY_PATH = "/activity"


@dataclass(frozen=True)
class ClassSnapshot:
    """Flat view of a class as seen by checkout and notifications."""

    id: int
    title: str
    price: int
    status: str
    manager_id: Optional[int]

    @property
    def is_open(self) -> bool:
        return self.status == "open"

    @property
    def amount(self) -> int:
        return max(0, self.price or 0)


def to_snapshot(fencing_class: FencingClass) -> ClassSnapshot:
    owner_id = fencing_class.club.owner_id if fencing_class.club is not None else None
    return ClassSnapshot(
        id=fencing_class.id,
        title=fencing_class.title,
        price=fencing_class.price or 0,
        status=fencing_class.status,
        manager_id=fencing_class.coach_id or owner_id,
    )


async def load_class_snapshot(db: AsyncSession, class_id: Optional[int]) -> Optional[ClassSnapshot]:
    if class_id is None:
        return None
    result = await db.execute(select(FencingClass).where(FencingClass.id == class_id))
    fencing_class = result.scalar_one_or_none()
    return to_snapshot(fencing_class) if fencing_class else None


async def get_class_snapshot(db: AsyncSession, class_id: int) -> ClassSnapshot:
    snapshot = await load_class_snapshot(db, class_id)
    if snapshot is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Class not found",
        )
    return snapshot


async def find_reservation(db: AsyncSession, class_id: int, user_id: int) -> Optional[ClassReservation]:
    result = await db.execute(
        select(ClassReservation)
        .where(
            ClassReservation.class_id == class_id,
            ClassReservation.user_id == user_id,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_or_create_reservation(
    db: AsyncSession,
    class_id: int,
    user_id: int,
    amount: int,
) -> tuple[ClassReservation, bool]:
    """
    Return the (class, user) reservation, creating it if needed.
    The boolean is True only for the request that inserted the row.
    """
    existing = await find_reservation(db, class_id, user_id)
    if existing:
        return existing, False

    now = utcnow()
    reservation = ClassReservation(
        class_id=class_id,
        user_id=user_id,
        status="requested",
        payment_status="pending",
        payment_amount=amount,
        created_at=now,
        updated_at=now,
    )
    db.add(reservation)
    try:
        await db.flush()
    except IntegrityError:
        # Concurrent checkout for the same (class, user) inserted first
        await db.rollback()
        logger.info("reservation_insert_race", class_id=class_id, user_id=user_id)
        existing = await find_reservation(db, class_id, user_id)
        if existing is None:
            raise
        return existing, False

    logger.info("reservation_created", reservation_id=reservation.id, class_id=class_id, user_id=user_id)
    return reservation, True


async def _guarded_update(db: AsyncSession, reservation_id: int, condition, values: dict) -> bool:
    result = await db.execute(
        update(ClassReservation)
        .where(ClassReservation.id == reservation_id, condition)
        .values(**values, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def start_payment_attempt(
    db: AsyncSession,
    reservation: ClassReservation,
    order_id: str,
    amount: int,
) -> None:
    """Point the reservation at a fresh order id and reset it to pending."""
    await _guarded_update(
        db,
        reservation.id,
        not_(and_(ClassReservation.status == "confirmed", ClassReservation.payment_status == "paid")),
        {
            "status": "requested",
            "payment_status": "pending",
            "payment_amount": amount,
            "payment_order_id": order_id,
            "payment_confirmed_at": None,
        },
    )
    await db.refresh(reservation)


async def confirm_paid(
    db: AsyncSession,
    reservation_id: int,
    confirmed_at: datetime,
    amount: Optional[int] = None,
) -> bool:
    """Mark a reservation confirmed and paid. False if it already was."""
    values = {"status": "confirmed", "payment_status": "paid", "payment_confirmed_at": confirmed_at}
    if amount is not None:
        values["payment_amount"] = amount
    changed = await _guarded_update(
        db,
        reservation_id,
        not_(and_(ClassReservation.status == "confirmed", ClassReservation.payment_status == "paid")),
        values,
    )
    if changed:
        logger.info("reservation_confirmed", reservation_id=reservation_id)
    return changed


async def mark_payment_outcome(
    db: AsyncSession,
    reservation_id: int,
    order_id: str,
    payment_status: str,
) -> bool:
    """
    Record a failed or cancelled payment on the reservation, only while the
    reservation still belongs to this order and is not paid.
    """
    changed = await _guarded_update(
        db,
        reservation_id,
        and_(
            ClassReservation.payment_order_id == order_id,
            ClassReservation.payment_status != "paid",
        ),
        {"payment_status": payment_status},
    )
    logger.info(
        "reservation_payment_outcome",
        reservation_id=reservation_id,
        order_id=order_id,
        payment_status=payment_status,
        applied=changed,
    )
    return changed


STATUS_TITLES = {
    "requested": "Your class reservation is pending",
    "confirmed": "Your class reservation was confirmed",
    "cancelled": "Your class reservation was cancelled",
}


async def update_status_by_manager(
    db: AsyncSession,
    reservation_id: int,
    manager_id: int,
    new_status: str,
) -> ClassReservation:
    """
    Manager-side status change. A priced reservation can only be confirmed
    once paid, and a paid one can only be confirmed or cancelled, so the
    paid iff confirmed rule holds for priced classes.
    """
    if new_status not in RESERVATION_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid status",
        )

    reservation = await db.get(ClassReservation, reservation_id, populate_existing=True)
    if reservation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Reservation not found",
        )

    snapshot = await load_class_snapshot(db, reservation.class_id)
    if snapshot is None or snapshot.manager_id != manager_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden",
        )

    priced = (reservation.payment_amount or 0) > 0
    if new_status == "confirmed" and priced and reservation.payment_status != "paid":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Reservation is not paid",
        )
    if new_status == "requested" and reservation.payment_status == "paid":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Paid reservation cannot be reopened",
        )

    if reservation.status == new_status:
        return reservation

    values = {"status": new_status}
    if new_status == "cancelled":
        values["payment_status"] = "cancelled"
    elif new_status == "confirmed" and not priced:
        values["payment_status"] = "paid"
        values["payment_confirmed_at"] = reservation.payment_confirmed_at or utcnow()

    changed = await _guarded_update(db, reservation.id, ClassReservation.status == reservation.status, values)
    if not changed:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Reservation was modified concurrently. Please try again.",
        )
    await db.refresh(reservation)
    await db.commit()

    owner_id = reservation.user_id
    logger.info(
        "reservation_status_changed",
        reservation_id=reservation_id,
        status=reservation.status,
        manager_id=manager_id,
    )

    await notification_service.notify(
        db,
        owner_id,
        "reservation",
        STATUS_TITLES[new_status],
        actor_id=manager_id,
        body=snapshot.title,
        link=ACTIVITY_PATH,
        dedupe_key=f"class-reservation-status:{reservation_id}:{new_status}",
    )
    await db.refresh(reservation)
    return reservation
