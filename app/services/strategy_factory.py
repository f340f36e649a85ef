"""
Strategy factory.
Configures which gateway client, push provider and webhook verifiers the
payment and notification services use.
"""

from typing import Optional

from app.core.config import Settings, get_settings
from app.infrastructure.fcm_provider import FcmPushProvider
from app.infrastructure.toss_client import TossPaymentsClient
from app.services.interfaces.push_provider import PushProvider
from app.services.interfaces.webhook_verifier import (
    HmacSignatureVerifier,
    PayloadSecretVerifier,
    SharedSecretHeaderVerifier,
    WebhookVerifier,
)

WEBHOOK_SECRET_HEADER = "x-webhook-secret"
WEBHOOK_SIGNATURE_HEADERS = (
    "x-toss-signature",
    "tosspayments-webhook-signature",
    "tosspayments-signature",
)


def get_webhook_verifiers(settings: Optional[Settings] = None) -> list[WebhookVerifier]:
    """
    Ordered trust strategies for gateway webhooks.

    Shared secret (header), shared secret (payload field), then HMAC over the
    raw body. Any one passing is enough.
    """
    settings = settings or get_settings()
    secret = settings.TOSS_WEBHOOK_SECRET.strip()
    return [
        SharedSecretHeaderVerifier(secret, header=WEBHOOK_SECRET_HEADER),
        PayloadSecretVerifier(secret, field_name="secret"),
        HmacSignatureVerifier(secret, headers=WEBHOOK_SIGNATURE_HEADERS),
    ]


def get_gateway_client() -> TossPaymentsClient:
    """FastAPI dependency: gateway client built from current settings."""
    settings = get_settings()
    return TossPaymentsClient(
        secret_key=settings.TOSS_SECRET_KEY,
        base_url=settings.TOSS_API_BASE_URL,
        timeout=settings.GATEWAY_TIMEOUT_SECONDS,
    )


# Singleton instance
_push_provider: Optional[PushProvider] = None


def get_push_provider() -> PushProvider:
    """Get push provider singleton."""
    global _push_provider
    if _push_provider is None:
        _push_provider = FcmPushProvider(get_settings())
    return _push_provider


def set_push_provider(provider: Optional[PushProvider]) -> None:
    """Replace the push provider; None restores the default on next use."""
    global _push_provider
    _push_provider = provider
