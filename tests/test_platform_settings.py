"""
Tests for the platform fee snapshot.
"""

import math

import pytest

from app.models.platform_setting import PlatformSetting
from app.services.platform_settings import (
    DEFAULT_PLATFORM_SETTINGS,
    calculate_platform_fee,
    clamp_fee_rate,
    get_active_platform_settings,
)


@pytest.mark.parametrize(
    "value, expected",
    [(0.1, 0.1), (-0.5, 0.0), (1.5, 0.9), ("0.2", 0.2), ("abc", 0.0), (None, 0.0), (math.inf, 0.0)],
)
def test_clamp_fee_rate(value, expected):
    assert clamp_fee_rate(value) == pytest.approx(expected)


def test_calculate_platform_fee_floors():
    assert calculate_platform_fee(50000, 0.1) == 5000
    assert calculate_platform_fee(999, 0.1) == 99
    assert calculate_platform_fee(0, 0.1) == 0
    assert calculate_platform_fee(-10, 0.1) == 0
    assert calculate_platform_fee(1000, 2.0) == 900


@pytest.mark.asyncio
async def test_defaults_without_row(db_session):
    snapshot = await get_active_platform_settings(db_session)
    assert snapshot == DEFAULT_PLATFORM_SETTINGS
    assert snapshot.class_fee_rate == pytest.approx(0.1)
    assert snapshot.market_fee_rate == pytest.approx(0.05)


@pytest.mark.asyncio
async def test_row_values_are_clamped(db_session):
    db_session.add(PlatformSetting(code="default", class_fee_rate=3.0, lesson_fee_rate=-1.0, market_fee_rate=0.07))
    await db_session.commit()

    snapshot = await get_active_platform_settings(db_session)
    assert snapshot.class_fee_rate == pytest.approx(0.9)
    assert snapshot.lesson_fee_rate == 0.0
    assert snapshot.market_fee_rate == pytest.approx(0.07)


def test_snapshot_is_immutable():
    with pytest.raises(Exception):
        DEFAULT_PLATFORM_SETTINGS.class_fee_rate = 0.5
