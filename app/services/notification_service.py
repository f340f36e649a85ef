"""
Notification fan-out: one durable in-app row per domain event, followed by
best-effort push delivery to the recipient's devices.

The row is always written; the dedupe key only gates push, so a repeated
event is still visible in the inbox while the device is pushed at most once.
The row is committed before push is attempted, so a push failure never
removes it. If the insert itself fails the failure is logged and returned;
the domain operation that asked for the notification still succeeds.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import HTTPException, status

from app.models.notification import Notification, NOTIFICATION_KINDS
from app.services import push_service
from app.core.logging import get_logger
from app.core.metrics import record_notification

logger = get_logger(__name__)

DEFAULT_NOTIFICATION_PATH = "/notifications"


@dataclass
class NotifyResult:
    ok: bool
    skipped: bool = False
    notification_id: Optional[int] = None
    error: Optional[str] = None
    push: Optional[push_service.PushResult] = None


async def notify(
    db: AsyncSession,
    recipient_id: int,
    kind: str,
    title: str,
    *,
    actor_id: Optional[int] = None,
    body: Optional[str] = None,
    link: Optional[str] = None,
    dedupe_key: Optional[str] = None,
    notify_self: bool = False,
) -> NotifyResult:
    """
    Persist a notification and push it to the recipient.

    Callers must have committed their own state first: a failed insert rolls
    back the session's pending work.
    """
    if not notify_self and actor_id is not None and actor_id == recipient_id:
        record_notification("skipped")
        return NotifyResult(ok=True, skipped=True)

    if kind not in NOTIFICATION_KINDS:
        record_notification("failed")
        logger.error("notification_invalid_kind", kind=kind, recipient_id=recipient_id)
        return NotifyResult(ok=False, error="invalid-kind")

    notification = Notification(
        user_id=recipient_id,
        actor_id=actor_id,
        type=kind,
        title=title,
        body=body,
        link=link,
        is_read=False,
    )
    try:
        db.add(notification)
        await db.flush()
        notification_id = notification.id
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        record_notification("failed")
        logger.error(
            "notification_failed",
            recipient_id=recipient_id,
            kind=kind,
            dedupe_key=dedupe_key,
            error=str(e),
        )
        return NotifyResult(ok=False, error="insert-failed")

    record_notification("created")
    logger.info(
        "notification_created",
        notification_id=notification_id,
        recipient_id=recipient_id,
        kind=kind,
        dedupe_key=dedupe_key,
    )

    try:
        push_result = await push_service.send_push(
            db,
            recipient_id,
            title,
            body or "",
            link or DEFAULT_NOTIFICATION_PATH,
            dedupe_key=dedupe_key,
            notification_id=notification_id,
            notification_type=kind,
        )
    except Exception as e:
        await db.rollback()
        logger.error("notification_push_failed", notification_id=notification_id, error=str(e))
        push_result = push_service.PushResult(ok=False, skipped=False, reason="push-error")

    return NotifyResult(ok=True, notification_id=notification_id, push=push_result)


async def list_notifications(
    db: AsyncSession,
    user_id: int,
    limit: int = 50,
    unread_only: bool = False,
) -> list[Notification]:
    query = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        query = query.where(Notification.is_read.is_(False))
    result = await db.execute(
        query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
    )
    return list(result.scalars().all())


async def mark_read(db: AsyncSession, user_id: int, notification_id: int) -> None:
    """Mark one of the caller's notifications read."""
    result = await db.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.user_id == user_id)
        .values(is_read=True)
    )
    if result.rowcount == 0:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found",
        )


async def mark_all_read(db: AsyncSession, user_id: int) -> int:
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True)
    )
    logger.info("notifications_marked_read", user_id=user_id, count=result.rowcount)
    return result.rowcount
