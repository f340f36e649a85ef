"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from app.api.routes import payments, reservations, notifications, push

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(payments.router)
api_router.include_router(reservations.router)
api_router.include_router(notifications.router)
api_router.include_router(push.router)
