"""
PaymentLog model: the reconciliation ledger, one row per gateway order id.

Key design decisions:
- `order_id` is unique and doubles as the idempotency key against the gateway
- `amount` is written once at checkout and never updated
- status='paid' with a payment_key is terminal; every writer guards on it
- Rows are never deleted (audit trail)
"""

from sqlalchemy import Column, Integer, String, DateTime, Float, ForeignKey, JSON, CheckConstraint

from app.db.base import Base, TimestampMixin


class PaymentLog(Base, TimestampMixin):
    __tablename__ = "payment_logs"

    id = Column(Integer, primary_key=True, index=True)
    provider = Column(String(20), nullable=False, default="toss")
    order_id = Column(String(64), nullable=False, unique=True, index=True)
    reservation_id = Column(Integer, ForeignKey("class_reservations.id"), nullable=True, index=True)
    class_id = Column(Integer, ForeignKey("fencing_classes.id"), nullable=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="ready")
    amount = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="KRW")
    fee_rate = Column(Float, nullable=False, default=0.0)
    platform_fee = Column(Integer, nullable=False, default=0)
    payment_key = Column(String(200), nullable=True)
    method = Column(String(50), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    failure_code = Column(String(120), nullable=True)
    failure_message = Column(String(500), nullable=True)
    gateway_metadata = Column("metadata", JSON, nullable=False, default=dict)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="check_payment_amount_non_negative"),
        CheckConstraint(
            "status IN ('ready', 'paid', 'failed', 'cancelled', 'webhook_received')",
            name="check_payment_status",
        ),
    )

    @property
    def is_settled(self) -> bool:
        return self.status == "paid" and bool(self.payment_key)

    def __repr__(self) -> str:
        return f"<PaymentLog(order_id={self.order_id}, status={self.status}, amount={self.amount})>"
