"""
Pydantic schemas for checkout and payment reconciliation endpoints.
"""

from typing import Optional
from pydantic import Field

from app.schemas.base import CamelModel


class CheckoutPayload(CamelModel):
    amount: int
    order_id: str
    order_name: str
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    success_url: str
    fail_url: str
    gateway_client_key: str


class PrepareResponse(CamelModel):
    ok: bool = True
    free: Optional[bool] = None
    already_confirmed: Optional[bool] = None
    reservation_id: Optional[int] = None
    checkout: Optional[CheckoutPayload] = None


class ConfirmRequest(CamelModel):
    payment_key: str = Field(..., min_length=1, max_length=200)
    order_id: str = Field(..., min_length=1, max_length=64)
    amount: int = Field(..., gt=0)


class ConfirmResponse(CamelModel):
    ok: bool = True
    already_confirmed: Optional[bool] = None
    order_id: str
    redirect_path: Optional[str] = None


class FailRequest(CamelModel):
    order_id: str = Field(..., max_length=64)
    code: Optional[str] = None
    message: Optional[str] = None


class OkResponse(CamelModel):
    ok: bool = True


class WebhookResponse(CamelModel):
    ok: bool = True
    ignored: Optional[bool] = None
    already_confirmed: Optional[bool] = None
    reason: Optional[str] = None
