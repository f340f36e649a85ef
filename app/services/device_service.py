"""
Device registry: push-capable endpoints bound to users.

The device token is the natural key. Registering a known token rebinds it to
the caller and reactivates it. Unregistering, account deletion and provider
reports of dead tokens only flip `is_active`; rows are kept for audit.
"""

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import HTTPException, status

from app.db.base import utcnow
from app.models.push import PushDevice, PUSH_PLATFORMS, PUSH_PROVIDERS
from app.core.logging import get_logger
from app.core.metrics import push_tokens_deactivated

logger = get_logger(__name__)

MIN_TOKEN_LENGTH = 16


async def register_device(
    db: AsyncSession,
    user_id: int,
    token: str,
    provider: str,
    platform: str,
) -> PushDevice:
    """Upsert a device by token for the calling user."""
    token = (token or "").strip()
    if len(token) < MIN_TOKEN_LENGTH or provider not in PUSH_PROVIDERS or platform not in PUSH_PLATFORMS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid payload",
        )

    now = utcnow()
    result = await db.execute(select(PushDevice).where(PushDevice.device_token == token))
    device = result.scalar_one_or_none()

    if device is None:
        device = PushDevice(
            user_id=user_id,
            device_token=token,
            provider=provider,
            platform=platform,
            is_active=True,
            updated_at=now,
        )
        db.add(device)
    else:
        if device.user_id != user_id:
            logger.info("push_device_rebound", device_id=device.id, from_user=device.user_id, to_user=user_id)
        device.user_id = user_id
        device.provider = provider
        device.platform = platform
        device.is_active = True
        device.updated_at = now

    await db.flush()
    logger.info("push_device_registered", user_id=user_id, provider=provider, platform=platform)
    return device


async def unregister_device(db: AsyncSession, user_id: int, token: str) -> int:
    """Deactivate one of the caller's devices. Returns rows affected."""
    token = (token or "").strip()
    if not token:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid payload",
        )

    result = await db.execute(
        update(PushDevice)
        .where(PushDevice.user_id == user_id, PushDevice.device_token == token)
        .values(is_active=False, updated_at=utcnow())
    )
    logger.info("push_device_unregistered", user_id=user_id, rows=result.rowcount)
    return result.rowcount


async def deactivate_user_devices(db: AsyncSession, user_id: int) -> int:
    """Deactivate every device of a user (sign-out everywhere, account deletion)."""
    result = await db.execute(
        update(PushDevice)
        .where(PushDevice.user_id == user_id, PushDevice.is_active.is_(True))
        .values(is_active=False, updated_at=utcnow())
    )
    logger.info("push_devices_deactivated_for_user", user_id=user_id, rows=result.rowcount)
    return result.rowcount


async def deactivate_tokens(db: AsyncSession, tokens: list[str]) -> int:
    """Deactivate tokens the push provider reported as permanently invalid."""
    if not tokens:
        return 0

    result = await db.execute(
        update(PushDevice)
        .where(PushDevice.device_token.in_(tokens))
        .values(is_active=False, updated_at=utcnow())
    )
    push_tokens_deactivated.inc(result.rowcount)
    logger.info("push_tokens_deactivated", count=result.rowcount)
    return result.rowcount


async def get_active_devices(db: AsyncSession, user_id: int) -> list[PushDevice]:
    result = await db.execute(
        select(PushDevice)
        .where(PushDevice.user_id == user_id, PushDevice.is_active.is_(True))
        .order_by(PushDevice.id.asc())
    )
    return list(result.scalars().all())
