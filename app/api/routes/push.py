"""
Device registration endpoints for push delivery.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.schemas.push import DeactivatedResponse, DeviceRegister, DeviceResponse, DeviceUnregister
from app.services import device_service
from app.core.security import get_current_user_id

router = APIRouter(prefix="/push", tags=["Push"])


@router.post("/register", response_model=DeviceResponse)
async def register_device(
    payload: DeviceRegister,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Register (or rebind and reactivate) a device token for the caller."""
    return await device_service.register_device(
        db, user_id, payload.token, payload.provider, payload.platform
    )


@router.delete("/register", response_model=DeactivatedResponse)
async def unregister_device(
    payload: DeviceUnregister,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    deactivated = await device_service.unregister_device(db, user_id, payload.token)
    return DeactivatedResponse(deactivated=deactivated)


@router.delete("/devices", response_model=DeactivatedResponse)
async def deactivate_all_devices(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Deactivate every device of the caller (sign-out everywhere)."""
    deactivated = await device_service.deactivate_user_devices(db, user_id)
    return DeactivatedResponse(deactivated=deactivated)
