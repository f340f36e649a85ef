"""
Unit tests for the webhook trust strategies.
"""

import base64
import hashlib
import hmac

from app.core.config import Settings
from app.services.interfaces.webhook_verifier import (
    HmacSignatureVerifier,
    PayloadSecretVerifier,
    SharedSecretHeaderVerifier,
    WebhookRequest,
    verify_webhook,
)
from app.services.strategy_factory import get_webhook_verifiers

SECRET = "whsec_unit"
BODY = b'{"eventType":"PAYMENT_STATUS_CHANGED","data":{"orderId":"cls_1_1_abc","status":"DONE"}}'


def _digest(body: bytes = BODY) -> bytes:
    return hmac.new(SECRET.encode(), body, hashlib.sha256).digest()


def _request(headers=None, payload=None, body: bytes = BODY) -> WebhookRequest:
    return WebhookRequest(raw_body=body, headers=headers or {}, payload=payload or {})


def test_hmac_hex_and_base64_accepted():
    verifier = HmacSignatureVerifier(SECRET, headers=("x-toss-signature",))
    assert verifier.verify(_request({"x-toss-signature": _digest().hex()})).ok
    assert verifier.verify(_request({"x-toss-signature": base64.b64encode(_digest()).decode()})).ok
    assert verifier.verify(_request({"x-toss-signature": "sha256=" + _digest().hex()})).ok


def test_hmac_checks_headers_in_order():
    verifier = HmacSignatureVerifier(SECRET, headers=("x-toss-signature", "tosspayments-signature"))
    assert verifier.verify(_request({"tosspayments-signature": _digest().hex()})).ok


def test_hmac_rejects_other_body():
    verifier = HmacSignatureVerifier(SECRET, headers=("x-toss-signature",))
    result = verifier.verify(_request({"x-toss-signature": _digest().hex()}, body=BODY + b" "))
    assert not result.ok
    assert result.reason == "signature-mismatch"


def test_hmac_without_secret_fails_closed():
    verifier = HmacSignatureVerifier("", headers=("x-toss-signature",))
    result = verifier.verify(_request({"x-toss-signature": _digest().hex()}))
    assert not result.ok
    assert result.reason == "missing-webhook-secret"


def test_shared_secret_header():
    verifier = SharedSecretHeaderVerifier(SECRET, header="x-webhook-secret")
    assert verifier.verify(_request({"x-webhook-secret": SECRET})).ok
    assert verifier.verify(_request({"x-webhook-secret": "nope"})).reason == "secret-mismatch"
    assert verifier.verify(_request()).reason == "missing-secret-header"


def test_payload_secret():
    verifier = PayloadSecretVerifier(SECRET)
    assert verifier.verify(_request(payload={"secret": SECRET})).ok
    assert verifier.verify(_request(payload={"secret": 42})).reason == "missing-payload-secret"


def test_any_passing_verifier_is_enough():
    verifiers = get_webhook_verifiers(Settings(TOSS_WEBHOOK_SECRET=SECRET))
    result = verify_webhook(verifiers, _request(payload={"secret": SECRET}))
    assert result.ok
    assert result.verifier == "payload-secret"


def test_all_failing_reports_last_reason():
    verifiers = get_webhook_verifiers(Settings(TOSS_WEBHOOK_SECRET=SECRET))
    result = verify_webhook(verifiers, _request({"x-toss-signature": "deadbeef"}))
    assert not result.ok
    assert result.verifier == "hmac-signature"
    assert result.reason == "signature-mismatch"


def test_no_verifiers_rejects():
    assert not verify_webhook([], _request()).ok
