"""
Firebase Cloud Messaging implementation of the push provider interface.

Credentials come from FIREBASE_SERVICE_ACCOUNT_JSON, or from the
project id / client email / private key trio. The firebase_admin SDK is
synchronous, so the multicast call runs in a worker thread bounded by
PUSH_TIMEOUT_SECONDS.
"""

import asyncio
import json
from typing import Optional

import firebase_admin
from firebase_admin import credentials, messaging
from firebase_admin.exceptions import FirebaseError

from app.core.config import Settings
from app.core.logging import get_logger
from app.services.interfaces.push_provider import (
    AndroidHint,
    ApnsHint,
    MulticastRequest,
    MulticastResult,
    PushProvider,
    TokenResult,
    WebLinkHint,
)

logger = get_logger(__name__)

APP_NAME = "push-delivery"

TOKEN_NOT_REGISTERED = "messaging/registration-token-not-registered"
INVALID_REGISTRATION_TOKEN = "messaging/invalid-registration-token"


def load_service_account(settings: Settings) -> Optional[dict]:
    if settings.FIREBASE_SERVICE_ACCOUNT_JSON:
        try:
            return json.loads(settings.FIREBASE_SERVICE_ACCOUNT_JSON)
        except ValueError as e:
            logger.error("firebase_service_account_invalid", error=str(e))
            return None

    private_key = settings.FIREBASE_PRIVATE_KEY.replace("\\n", "\n")
    if not (settings.FIREBASE_PROJECT_ID and settings.FIREBASE_CLIENT_EMAIL and private_key):
        return None

    return {
        "type": "service_account",
        "project_id": settings.FIREBASE_PROJECT_ID,
        "client_email": settings.FIREBASE_CLIENT_EMAIL,
        "private_key": private_key,
        "token_uri": "https://oauth2.googleapis.com/token",
    }


def classify_error(exc: Optional[Exception]) -> str:
    """Map an SDK exception to a stable error code string."""
    if exc is None:
        return "unknown-error"
    if isinstance(exc, messaging.UnregisteredError):
        return TOKEN_NOT_REGISTERED
    if isinstance(exc, FirebaseError):
        if exc.code == "INVALID_ARGUMENT" and "registration token" in str(exc).lower():
            return INVALID_REGISTRATION_TOKEN
        return f"messaging/{str(exc.code).lower().replace('_', '-')}"
    return "unknown-error"


def android_config(hint: AndroidHint) -> messaging.AndroidConfig:
    return messaging.AndroidConfig(
        priority=hint.priority,
        notification=messaging.AndroidNotification(channel_id=hint.channel_id, sound=hint.sound),
    )


def apns_config(hint: ApnsHint) -> messaging.APNSConfig:
    return messaging.APNSConfig(payload=messaging.APNSPayload(aps=messaging.Aps(sound=hint.sound)))


def webpush_config(hint: WebLinkHint) -> Optional[messaging.WebpushConfig]:
    if not hint.link:
        return None
    return messaging.WebpushConfig(fcm_options=messaging.WebpushFCMOptions(link=hint.link))


# hint platform -> (MulticastMessage field, config builder)
CONFIG_BUILDERS = {
    "android": ("android", android_config),
    "ios": ("apns", apns_config),
    "web": ("webpush", webpush_config),
}


class FcmPushProvider(PushProvider):
    name = "fcm"
    permanent_error_codes = frozenset({TOKEN_NOT_REGISTERED, INVALID_REGISTRATION_TOKEN})

    def __init__(self, settings: Settings):
        self.settings = settings
        self._app: Optional[firebase_admin.App] = None

    def _ensure_app(self) -> Optional[firebase_admin.App]:
        if self._app is not None:
            return self._app

        service_account = load_service_account(self.settings)
        if not service_account:
            return None

        try:
            self._app = firebase_admin.get_app(APP_NAME)
        except ValueError:
            try:
                self._app = firebase_admin.initialize_app(
                    credentials.Certificate(service_account), name=APP_NAME
                )
            except ValueError as e:
                logger.error("firebase_init_failed", error=str(e))
                return None
        return self._app

    def is_configured(self) -> bool:
        return self._ensure_app() is not None

    def _build_message(self, request: MulticastRequest) -> messaging.MulticastMessage:
        configs = {}
        for hint in request.hints.values():
            builder = CONFIG_BUILDERS.get(hint.platform)
            if builder is None:
                logger.debug("push_hint_unsupported", platform=hint.platform)
                continue
            message_field, build = builder
            config = build(hint)
            if config is not None:
                configs[message_field] = config

        return messaging.MulticastMessage(
            tokens=list(request.tokens),
            notification=messaging.Notification(title=request.title, body=request.body),
            data=dict(request.data),
            **configs,
        )

    async def send_multicast(self, request: MulticastRequest) -> MulticastResult:
        app = self._ensure_app()
        if app is None:
            raise RuntimeError("Firebase credentials are not configured")

        message = self._build_message(request)
        batch = await asyncio.wait_for(
            asyncio.to_thread(messaging.send_each_for_multicast, message, False, app),
            timeout=self.settings.PUSH_TIMEOUT_SECONDS,
        )

        results = []
        for token, response in zip(request.tokens, batch.responses):
            if response.success:
                results.append(TokenResult(token=token, success=True))
            else:
                results.append(
                    TokenResult(token=token, success=False, error_code=classify_error(response.exception))
                )
        return MulticastResult(responses=results)
