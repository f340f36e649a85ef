"""
Checkout and payment reconciliation endpoints.
"""

import json

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.schemas.payment import (
    ConfirmRequest,
    ConfirmResponse,
    FailRequest,
    OkResponse,
    PrepareResponse,
    WebhookResponse,
)
from app.services import reconciliation_service
from app.services.interfaces.webhook_verifier import WebhookRequest, verify_webhook
from app.services.platform_settings import get_active_platform_settings
from app.services.strategy_factory import get_gateway_client, get_webhook_verifiers
from app.infrastructure.toss_client import TossPaymentsClient
from app.core.security import get_current_user_id
from app.core.metrics import record_webhook_verification
from app.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/payments", tags=["Payments"])


def _request_origin(request: Request) -> str:
    return request.headers.get("origin") or str(request.base_url).rstrip("/")


@router.post(
    "/classes/{class_id}/prepare",
    response_model=PrepareResponse,
    response_model_exclude_none=True,
)
async def prepare_class_checkout(
    class_id: int,
    request: Request,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Start payment for a class reservation.

    Returns `free` for zero-priced classes, `alreadyConfirmed` when the
    reservation is already paid, otherwise a checkout payload for the
    gateway widget.
    """
    platform_settings = await get_active_platform_settings(db)
    return await reconciliation_service.initiate_checkout(
        db, class_id, user_id, platform_settings, origin=_request_origin(request)
    )


@router.post("/toss/confirm", response_model=ConfirmResponse, response_model_exclude_none=True)
async def confirm_toss_payment(
    payload: ConfirmRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateway: TossPaymentsClient = Depends(get_gateway_client),
):
    """Confirm a payment after the gateway redirected back to the client."""
    return await reconciliation_service.confirm_payment(
        db, gateway, user_id, payload.payment_key, payload.order_id, payload.amount
    )


@router.post("/toss/fail", response_model=OkResponse)
async def report_toss_failure(
    payload: FailRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Record a payment the gateway reported as failed or aborted."""
    return await reconciliation_service.report_failure(
        db, user_id, payload.order_id, payload.code, payload.message
    )


@router.post("/toss/webhook", response_model=WebhookResponse, response_model_exclude_none=True)
async def toss_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Gateway webhook. Trusted when a shared secret (header or payload field)
    matches or an HMAC signature over the raw body verifies.
    Unknown orders are acknowledged and ignored.
    """
    raw_body = await request.body()
    try:
        payload = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError):
        payload = None
    if not isinstance(payload, dict):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid JSON payload"},
        )

    verification = verify_webhook(
        get_webhook_verifiers(),
        WebhookRequest(raw_body=raw_body, headers=request.headers, payload=payload),
    )
    record_webhook_verification(verification.ok)
    if not verification.ok:
        logger.warning("webhook_rejected", verifier=verification.verifier, reason=verification.reason)
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": "Invalid webhook signature", "reason": verification.reason},
        )

    return await reconciliation_service.apply_webhook(db, payload)
