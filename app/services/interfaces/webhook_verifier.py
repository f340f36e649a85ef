"""
Webhook trust strategies.

Each verifier checks one independent credential channel and returns a
pass/fail result. A webhook is trusted when any configured verifier passes.
"""

import base64
import hashlib
import hmac
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence


@dataclass(frozen=True)
class WebhookRequest:
    raw_body: bytes
    headers: Mapping[str, str]
    payload: dict = field(default_factory=dict)


@dataclass(frozen=True)
class VerificationResult:
    ok: bool
    verifier: str
    reason: Optional[str] = None


def secrets_match(expected: str, received: str) -> bool:
    """Constant-time comparison of two text secrets."""
    return hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))


class WebhookVerifier(ABC):
    name: str = ""

    @abstractmethod
    def verify(self, request: WebhookRequest) -> VerificationResult:
        pass

    def _pass(self) -> VerificationResult:
        return VerificationResult(ok=True, verifier=self.name)

    def _fail(self, reason: str) -> VerificationResult:
        return VerificationResult(ok=False, verifier=self.name, reason=reason)


class SharedSecretHeaderVerifier(WebhookVerifier):
    """Operator-shared secret sent verbatim in a custom header."""

    name = "shared-secret-header"

    def __init__(self, secret: str, header: str = "x-webhook-secret"):
        self.secret = secret
        self.header = header

    def verify(self, request: WebhookRequest) -> VerificationResult:
        if not self.secret:
            return self._fail("missing-webhook-secret")
        received = request.headers.get(self.header)
        if not received:
            return self._fail("missing-secret-header")
        if not secrets_match(self.secret, received):
            return self._fail("secret-mismatch")
        return self._pass()


class PayloadSecretVerifier(WebhookVerifier):
    """Operator-shared secret embedded as a top-level payload field."""

    name = "payload-secret"

    def __init__(self, secret: str, field_name: str = "secret"):
        self.secret = secret
        self.field_name = field_name

    def verify(self, request: WebhookRequest) -> VerificationResult:
        if not self.secret:
            return self._fail("missing-webhook-secret")
        received = request.payload.get(self.field_name)
        if not isinstance(received, str) or not received:
            return self._fail("missing-payload-secret")
        if not secrets_match(self.secret, received):
            return self._fail("secret-mismatch")
        return self._pass()


class HmacSignatureVerifier(WebhookVerifier):
    """
    HMAC-SHA256 over the exact raw body.

    The signature header may carry a `sha256=` prefix and either the hex or
    the base64 digest; both encodings are accepted.
    """

    name = "hmac-signature"

    def __init__(self, secret: str, headers: Sequence[str]):
        self.secret = secret
        self.headers = tuple(headers)

    def _signature(self, request: WebhookRequest) -> Optional[str]:
        for header in self.headers:
            value = request.headers.get(header)
            if value:
                return value
        return None

    def verify(self, request: WebhookRequest) -> VerificationResult:
        if not self.secret:
            return self._fail("missing-webhook-secret")

        signature = self._signature(request)
        if not signature:
            return self._fail("missing-signature-header")

        cleaned = signature.strip()
        if cleaned.lower().startswith("sha256="):
            cleaned = cleaned[len("sha256="):].strip()

        digest = hmac.new(self.secret.encode("utf-8"), request.raw_body, hashlib.sha256).digest()
        candidates = (digest.hex(), base64.b64encode(digest).decode("ascii"))

        if any(secrets_match(candidate, cleaned) for candidate in candidates):
            return self._pass()
        return self._fail("signature-mismatch")


def verify_webhook(verifiers: Sequence[WebhookVerifier], request: WebhookRequest) -> VerificationResult:
    """Accept when any verifier passes; otherwise report the last failure."""
    result = VerificationResult(ok=False, verifier="none", reason="no-verifiers")
    for verifier in verifiers:
        result = verifier.verify(request)
        if result.ok:
            return result
    return result
