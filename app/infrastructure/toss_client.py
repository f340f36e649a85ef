"""
HTTP client for the payment gateway's confirm endpoint.

The client never raises for gateway or network failures: every outcome is a
GatewayConfirmResult so the reconciliation flow can record the failure code
on the ledger row before answering the caller.

Timeouts are bounded by GATEWAY_TIMEOUT_SECONDS and there is no automatic
retry. A retried confirm after a timeout is the user's next checkout attempt.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from app.core.logging import get_logger
from app.core.metrics import gateway_confirm_latency

logger = get_logger(__name__)

CONFIRM_PATH = "/v1/payments/confirm"

MISSING_SECRET_KEY = "MISSING_TOSS_SECRET_KEY"
GATEWAY_UNREACHABLE = "GATEWAY_UNREACHABLE"
CONFIRM_FAILED = "TOSS_CONFIRM_FAILED"


@dataclass
class GatewayConfirmResult:
    ok: bool
    status_code: int
    data: dict[str, Any] = field(default_factory=dict)
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    error_payload: dict[str, Any] = field(default_factory=dict)

    @property
    def is_configuration_error(self) -> bool:
        return self.error_code == MISSING_SECRET_KEY


class TossPaymentsClient:
    """Thin async wrapper around POST /v1/payments/confirm."""

    def __init__(
        self,
        secret_key: str,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secret_key = secret_key.strip()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def confirm_payment(self, payment_key: str, order_id: str, amount: int) -> GatewayConfirmResult:
        if not self.secret_key:
            return GatewayConfirmResult(
                ok=False,
                status_code=500,
                error_code=MISSING_SECRET_KEY,
                error_message="TOSS_SECRET_KEY is not configured",
            )

        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                auth=httpx.BasicAuth(self.secret_key, ""),
                transport=self.transport,
            ) as client:
                response = await client.post(
                    CONFIRM_PATH,
                    json={"paymentKey": payment_key, "orderId": order_id, "amount": amount},
                )
        except httpx.HTTPError as e:
            logger.error("gateway_confirm_unreachable", order_id=order_id, error=str(e))
            return GatewayConfirmResult(
                ok=False,
                status_code=502,
                error_code=GATEWAY_UNREACHABLE,
                error_message="Payment gateway is unreachable",
            )
        finally:
            gateway_confirm_latency.observe(time.perf_counter() - started)

        try:
            body = response.json()
        except ValueError:
            body = None

        if not response.is_success or not isinstance(body, dict):
            error = body if isinstance(body, dict) else {}
            logger.warning(
                "gateway_confirm_rejected",
                order_id=order_id,
                status_code=response.status_code,
                code=error.get("code"),
            )
            return GatewayConfirmResult(
                ok=False,
                status_code=response.status_code,
                error_code=error.get("code") or CONFIRM_FAILED,
                error_message=error.get("message") or "Failed to confirm payment",
                error_payload=error,
            )

        return GatewayConfirmResult(ok=True, status_code=response.status_code, data=body)
