"""
Pydantic schemas for reservation lifecycle updates.
"""

from datetime import datetime
from typing import Literal, Optional

from app.schemas.base import CamelModel


class ReservationStatusUpdate(CamelModel):
    status: Literal["requested", "confirmed", "cancelled"]


class ReservationResponse(CamelModel):
    id: int
    class_id: int
    user_id: int
    status: str
    payment_status: str
    payment_amount: int
    payment_order_id: Optional[str] = None
    payment_confirmed_at: Optional[datetime] = None
