"""
Platform fee settings, read once per operation as an immutable snapshot.

Callers fetch a PlatformSettings value at the start of an operation and pass
it down; nothing reads fee configuration mid-algorithm.
"""

import math
from dataclasses import asdict, dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.platform_setting import PlatformSetting
from app.services.cache_service import get_cached_platform_settings, set_cached_platform_settings
from app.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SETTINGS_CODE = "default"
MAX_FEE_RATE = 0.9


@dataclass(frozen=True)
class PlatformSettings:
    class_fee_rate: float = 0.1
    lesson_fee_rate: float = 0.1
    market_fee_rate: float = 0.05


DEFAULT_PLATFORM_SETTINGS = PlatformSettings()


def clamp_fee_rate(value) -> float:
    try:
        rate = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(rate):
        return 0.0
    return max(0.0, min(MAX_FEE_RATE, rate))


def calculate_platform_fee(amount: int, fee_rate: float) -> int:
    if amount is None or amount <= 0:
        return 0
    return math.floor(amount * clamp_fee_rate(fee_rate))


def _snapshot(class_fee_rate, lesson_fee_rate, market_fee_rate) -> PlatformSettings:
    return PlatformSettings(
        class_fee_rate=clamp_fee_rate(class_fee_rate),
        lesson_fee_rate=clamp_fee_rate(lesson_fee_rate),
        market_fee_rate=clamp_fee_rate(market_fee_rate),
    )


async def get_active_platform_settings(db: AsyncSession) -> PlatformSettings:
    """Return the active fee snapshot; defaults when the row is missing."""
    cached = await get_cached_platform_settings(DEFAULT_SETTINGS_CODE)
    if cached:
        return _snapshot(
            cached.get("class_fee_rate"),
            cached.get("lesson_fee_rate"),
            cached.get("market_fee_rate"),
        )

    result = await db.execute(
        select(PlatformSetting).where(PlatformSetting.code == DEFAULT_SETTINGS_CODE)
    )
    row = result.scalar_one_or_none()
    if row is None:
        return DEFAULT_PLATFORM_SETTINGS

    snapshot = _snapshot(row.class_fee_rate, row.lesson_fee_rate, row.market_fee_rate)
    await set_cached_platform_settings(DEFAULT_SETTINGS_CODE, asdict(snapshot))
    return snapshot
