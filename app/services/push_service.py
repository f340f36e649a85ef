"""
Push delivery engine.

DELIVERY FLOW
=============

  1. Validate arguments (user id and a non-empty title)
  2. Dedupe: a delivery-log row with the same dedupe key means this event
     was already pushed -> skipped/duplicate, no provider call, no new row
  3. Load the user's active devices and keep the ones registered under the
     current provider; the rest are reported in the log payload
  4. One multicast call with a normalized data payload and per-platform
     delivery hints
  5. Tokens the provider reports as permanently invalid are deactivated;
     other failures are treated as transient
  6. Exactly one delivery-log row per attempt (or per skip reason)

Push is best-effort: every outcome is returned as a PushResult and nothing
here raises into the domain operation that triggered the send.
"""

from dataclasses import dataclass
from typing import Optional
from urllib.parse import urljoin, urlparse

from sqlalchemy import insert, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.metrics import record_push_delivery
from app.db.base import utcnow
from app.models.push import PushDevice, PushLog
from app.services import device_service
from app.services.interfaces.push_provider import (
    AndroidHint,
    ApnsHint,
    DeliveryHint,
    MulticastRequest,
    PushProvider,
    WebLinkHint,
)
from app.services.strategy_factory import get_push_provider

logger = get_logger(__name__)

NO_TOKEN_PLACEHOLDER = "none"


@dataclass
class PushResult:
    ok: bool
    skipped: bool
    sent_count: int = 0
    failed_count: int = 0
    reason: Optional[str] = None


def normalize_path(value: Optional[str]) -> str:
    """Coerce a deep link into an absolute app path; empty means '/'."""
    if not value:
        return "/"
    trimmed = value.strip()
    if not trimmed:
        return "/"
    return trimmed if trimmed.startswith("/") else f"/{trimmed}"


def build_web_link(path: str, base_url: str) -> Optional[str]:
    base = (base_url or "").strip()
    if not base:
        return None
    parsed = urlparse(base)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    return urljoin(base, path)


HINT_BUILDERS = {
    "android": lambda path, base_url: AndroidHint(),
    "ios": lambda path, base_url: ApnsHint(),
    "web": lambda path, base_url: WebLinkHint(link=build_web_link(path, base_url)),
}


def build_delivery_hints(platforms, path: str, base_url: str) -> dict[str, DeliveryHint]:
    return {
        platform: HINT_BUILDERS[platform](path, base_url)
        for platform in sorted(set(platforms))
        if platform in HINT_BUILDERS
    }


def build_data_payload(
    path: str,
    notification_id=None,
    notification_type: Optional[str] = None,
    extra_data: Optional[dict] = None,
) -> dict[str, str]:
    data = {"path": path}
    if notification_id is not None:
        data["notificationId"] = str(notification_id)
    if notification_type:
        data["type"] = notification_type
    for key, value in (extra_data or {}).items():
        if isinstance(value, str) and value:
            data[key] = value
    return data


async def write_push_log(
    db: AsyncSession,
    *,
    user_id: int,
    provider: str,
    platform: str,
    device_token: str,
    title: str,
    body: str,
    path: str,
    status: str,
    dedupe_key: Optional[str] = None,
    error_message: Optional[str] = None,
    payload: Optional[dict] = None,
) -> bool:
    """
    Insert one delivery-log row. A concurrent writer holding the same dedupe
    key wins; the loser's insert is a no-op. Returns False in that case.
    """
    values = dict(
        user_id=user_id,
        provider=provider,
        platform=platform,
        device_token=device_token,
        title=title,
        body=body,
        path=path,
        dedupe_key=dedupe_key or None,
        status=status,
        error_message=error_message,
        payload=payload or {},
        sent_at=utcnow() if status == "sent" else None,
    )

    dialect = db.bind.dialect.name if db.bind is not None else ""
    if dialect == "postgresql":
        stmt = postgresql.insert(PushLog).values(**values).on_conflict_do_nothing()
    elif dialect == "sqlite":
        stmt = sqlite.insert(PushLog).values(**values).on_conflict_do_nothing()
    else:
        stmt = insert(PushLog).values(**values)

    result = await db.execute(stmt)
    written = result.rowcount != 0
    if written:
        record_push_delivery(status)
    else:
        record_push_delivery("duplicate")
        logger.info("push_log_duplicate_ignored", user_id=user_id, dedupe_key=dedupe_key)
    return written


async def has_delivery(db: AsyncSession, dedupe_key: str) -> bool:
    result = await db.execute(select(PushLog.id).where(PushLog.dedupe_key == dedupe_key).limit(1))
    return result.scalar_one_or_none() is not None


async def send_push(
    db: AsyncSession,
    user_id: int,
    title: str,
    body: str,
    path: Optional[str],
    *,
    dedupe_key: Optional[str] = None,
    notification_id=None,
    notification_type: Optional[str] = None,
    extra_data: Optional[dict] = None,
    provider: Optional[PushProvider] = None,
) -> PushResult:
    """Deliver a title/body/deep link to every active device of a user."""
    normalized_path = normalize_path(path)
    body = body or ""

    if not user_id or not (title or "").strip():
        return PushResult(ok=False, skipped=True, reason="invalid-arguments")

    if dedupe_key and await has_delivery(db, dedupe_key):
        logger.info("push_skipped_duplicate", user_id=user_id, dedupe_key=dedupe_key)
        record_push_delivery("duplicate")
        return PushResult(ok=True, skipped=True, reason="duplicate")

    provider = provider or get_push_provider()
    devices = await device_service.get_active_devices(db, user_id)
    dispatchable = [d for d in devices if d.provider == provider.name and d.device_token]
    unsupported = [d for d in devices if d not in dispatchable]

    skipped_devices = [
        {"provider": d.provider, "platform": d.platform, "reason": f"provider-not-supported:{d.provider}"}
        for d in unsupported
    ]
    if skipped_devices:
        logger.info("push_devices_skipped", user_id=user_id, count=len(skipped_devices))

    log_fields = dict(user_id=user_id, title=title, body=body, path=normalized_path, dedupe_key=dedupe_key)

    if not dispatchable:
        first: Optional[PushDevice] = devices[0] if devices else None
        await write_push_log(
            db,
            provider=first.provider if first else "webpush",
            platform=first.platform if first else "web",
            device_token=first.device_token if first else NO_TOKEN_PLACEHOLDER,
            status="skipped",
            error_message=f"No active {provider.name} tokens",
            payload={"skippedDevices": skipped_devices},
            **log_fields,
        )
        await db.commit()
        return PushResult(ok=True, skipped=True, reason="no-active-token")

    tokens = [d.device_token for d in dispatchable]
    platform = dispatchable[0].platform

    if not provider.is_configured():
        await write_push_log(
            db,
            provider=provider.name,
            platform=platform,
            device_token=tokens[0],
            status="failed",
            error_message=f"{provider.name} credentials are not configured",
            **log_fields,
        )
        await db.commit()
        logger.warning("push_provider_not_configured", provider=provider.name)
        return PushResult(
            ok=False, skipped=False, failed_count=len(tokens), reason="provider-not-configured"
        )

    settings = get_settings()
    request = MulticastRequest(
        tokens=tokens,
        title=title,
        body=body,
        data=build_data_payload(normalized_path, notification_id, notification_type, extra_data),
        hints=build_delivery_hints((d.platform for d in dispatchable), normalized_path, settings.APP_BASE_URL),
    )

    try:
        response = await provider.send_multicast(request)
    except Exception as e:
        logger.error("push_multicast_failed", user_id=user_id, provider=provider.name, error=str(e))
        await write_push_log(
            db,
            provider=provider.name,
            platform=platform,
            device_token=tokens[0],
            status="failed",
            error_message=str(e)[:1000] or type(e).__name__,
            payload={"tokenCount": len(tokens), "skippedDevices": skipped_devices},
            **log_fields,
        )
        await db.commit()
        return PushResult(ok=False, skipped=False, failed_count=len(tokens), reason="provider-error")

    failed_codes = [r.error_code or "unknown-error" for r in response.responses if not r.success]
    invalid_tokens = [
        r.token for r in response.responses if not r.success and provider.is_permanent_failure(r.error_code)
    ]
    if invalid_tokens:
        await device_service.deactivate_tokens(db, invalid_tokens)

    success_count = response.success_count
    failure_count = response.failure_count
    status = "failed" if failure_count > 0 and success_count == 0 else "sent"

    await write_push_log(
        db,
        provider=provider.name,
        platform=platform,
        device_token=tokens[0],
        status=status,
        error_message=", ".join(failed_codes) if failed_codes else None,
        payload={
            "tokenCount": len(tokens),
            "successCount": success_count,
            "failureCount": failure_count,
            "failedCodes": failed_codes,
            "invalidTokenCount": len(invalid_tokens),
            "skippedDevices": skipped_devices,
        },
        **log_fields,
    )
    await db.commit()

    logger.info(
        "push_sent",
        user_id=user_id,
        status=status,
        sent=success_count,
        failed=failure_count,
        deactivated=len(invalid_tokens),
    )
    return PushResult(
        ok=failure_count == 0,
        skipped=False,
        sent_count=success_count,
        failed_count=failure_count,
        reason="partial-failure" if failure_count > 0 else None,
    )
