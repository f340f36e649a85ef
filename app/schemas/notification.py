"""
Pydantic schemas for the notification inbox.
"""

from datetime import datetime
from typing import Optional
from pydantic import Field

from app.schemas.base import CamelModel


class NotificationResponse(CamelModel):
    id: int
    actor_id: Optional[int] = Field(None, serialization_alias="actorUserId")
    kind: str = Field(validation_alias="type")
    title: str
    body: Optional[str] = None
    link: Optional[str] = Field(None, serialization_alias="deepLink")
    is_read: bool
    created_at: datetime


class MarkAllReadResponse(CamelModel):
    ok: bool = True
    updated: int
