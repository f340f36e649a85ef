"""
Push device registry and delivery log.

Key design decisions:
- `device_token` is the natural key: re-registering a token moves it to the
  caller and reactivates it instead of inserting a duplicate
- Devices are deactivated, never deleted
- `push_logs.dedupe_key` has a partial unique index (only non-null keys), so
  the same domain event reported twice produces one delivery row
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, JSON, Index, text
from sqlalchemy.orm import relationship

from app.db.base import Base, TimestampMixin

PUSH_PROVIDERS = ("fcm", "apns", "webpush")
PUSH_PLATFORMS = ("ios", "android", "web")


class PushDevice(Base, TimestampMixin):
    __tablename__ = "push_devices"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    device_token = Column(String(512), nullable=False, unique=True)
    provider = Column(String(20), nullable=False)  # fcm, apns, webpush
    platform = Column(String(20), nullable=False)  # ios, android, web
    is_active = Column(Boolean, nullable=False, default=True)

    user = relationship("User", back_populates="devices", lazy="raise")

    __table_args__ = (
        Index("ix_push_devices_user_active", "user_id", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<PushDevice(id={self.id}, user={self.user_id}, provider={self.provider}, active={self.is_active})>"


class PushLog(Base, TimestampMixin):
    __tablename__ = "push_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    provider = Column(String(20), nullable=False)
    platform = Column(String(20), nullable=False)
    device_token = Column(String(512), nullable=False)
    title = Column(String(255), nullable=False)
    body = Column(String(1000), nullable=False, default="")
    path = Column(String(500), nullable=False, default="/")
    dedupe_key = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False)  # queued, sent, failed, skipped
    error_message = Column(String(1000), nullable=True)
    payload = Column(JSON, nullable=False, default=dict)
    sent_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index(
            "uq_push_logs_dedupe_key",
            "dedupe_key",
            unique=True,
            postgresql_where=text("dedupe_key IS NOT NULL"),
            sqlite_where=text("dedupe_key IS NOT NULL"),
        ),
    )

    def __repr__(self) -> str:
        return f"<PushLog(id={self.id}, user={self.user_id}, status={self.status}, dedupe={self.dedupe_key})>"
