"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .push_provider import (
    AndroidHint,
    ApnsHint,
    DeliveryHint,
    MulticastRequest,
    MulticastResult,
    PushProvider,
    TokenResult,
    WebLinkHint,
)
from .webhook_verifier import (
    HmacSignatureVerifier,
    PayloadSecretVerifier,
    SharedSecretHeaderVerifier,
    VerificationResult,
    WebhookRequest,
    WebhookVerifier,
    verify_webhook,
)

__all__ = [
    'AndroidHint', 'ApnsHint', 'DeliveryHint', 'MulticastRequest', 'MulticastResult',
    'PushProvider', 'TokenResult', 'WebLinkHint',
    'HmacSignatureVerifier', 'PayloadSecretVerifier', 'SharedSecretHeaderVerifier',
    'VerificationResult', 'WebhookRequest', 'WebhookVerifier', 'verify_webhook',
]
