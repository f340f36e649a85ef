"""
Reservation lifecycle endpoints for the class's managing party.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.schemas.reservation import ReservationResponse, ReservationStatusUpdate
from app.services import reservation_service
from app.core.security import get_current_user_id

router = APIRouter(prefix="/reservations", tags=["Reservations"])


@router.patch("/{reservation_id}", response_model=ReservationResponse)
async def update_reservation_status(
    reservation_id: int,
    payload: ReservationStatusUpdate,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Set a reservation to requested, confirmed or cancelled.
    Only the class's coach (or the club owner when there is none) may do this.
    """
    return await reservation_service.update_status_by_manager(db, reservation_id, user_id, payload.status)
