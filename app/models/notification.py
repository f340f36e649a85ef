"""
In-app notification rows. These are the durable record of a domain event;
push delivery is a best-effort amplification on top of them.
"""

from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, Index, CheckConstraint

from app.db.base import Base, TimestampMixin

NOTIFICATION_KINDS = ("chat", "comment", "reservation", "order", "review", "system")


class Notification(Base, TimestampMixin):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    actor_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    type = Column(String(20), nullable=False)
    title = Column(String(255), nullable=False)
    body = Column(String(1000), nullable=True)
    link = Column(String(500), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        # Inbox query: a user's notifications newest first
        Index("ix_notifications_user_created", "user_id", "created_at"),
        CheckConstraint(
            "type IN ('chat', 'comment', 'reservation', 'order', 'review', 'system')",
            name="check_notification_type",
        ),
    )

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, user={self.user_id}, type={self.type})>"
