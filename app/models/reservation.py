"""
ClassReservation model: a user's attempt to book a priced class.

Key design decisions:
- Unique constraint on (class_id, user_id): re-checkout reuses the same row
- `payment_order_id` holds the order id of the latest checkout attempt and is
  globally unique; older order ids stay on their ledger rows
- Cancellation is a status transition, rows are never deleted
- For priced reservations payment_status='paid' iff status='confirmed'
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint, CheckConstraint

from app.db.base import Base, TimestampMixin


class ClassReservation(Base, TimestampMixin):
    __tablename__ = "class_reservations"

    id = Column(Integer, primary_key=True, index=True)
    class_id = Column(Integer, ForeignKey("fencing_classes.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="requested")  # requested, confirmed, cancelled
    payment_status = Column(String(20), nullable=False, default="pending")  # pending, paid, failed, cancelled
    payment_amount = Column(Integer, nullable=False, default=0)
    payment_order_id = Column(String(64), nullable=True, unique=True)
    payment_confirmed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("class_id", "user_id", name="uq_class_user_reservation"),
        CheckConstraint("payment_amount >= 0", name="check_reservation_amount_non_negative"),
        CheckConstraint("status IN ('requested', 'confirmed', 'cancelled')", name="check_reservation_status"),
        CheckConstraint(
            "payment_status IN ('pending', 'paid', 'failed', 'cancelled')",
            name="check_reservation_payment_status",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<ClassReservation(id={self.id}, class={self.class_id}, user={self.user_id}, "
            f"status={self.status}, payment={self.payment_status})>"
        )
