"""
Pydantic schemas for device registration.
"""

from typing import Literal
from pydantic import Field

from app.schemas.base import CamelModel


class DeviceRegister(CamelModel):
    token: str = Field(..., min_length=16, max_length=4096)
    provider: Literal["fcm", "apns", "webpush"] = "fcm"
    platform: Literal["web", "android", "ios"] = "web"


class DeviceUnregister(CamelModel):
    token: str = Field(..., min_length=1, max_length=4096)


class DeviceResponse(CamelModel):
    id: int
    provider: str
    platform: str
    is_active: bool


class DeactivatedResponse(CamelModel):
    ok: bool = True
    deactivated: int
