# tests/test_calories.py
from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from gym_floor.models import EquipmentCategory
from gym_floor.services.calories import (
    DEFAULT_CALORIES_PER_MINUTE,
    calorie_rate,
    calories_burned,
    elapsed_seconds,
    round_half_up,
)


@pytest.mark.parametrize(
    ("category", "rate"),
    [
        (EquipmentCategory.CARDIO, 12),
        (EquipmentCategory.FUNCTIONAL, 8),
        (EquipmentCategory.FREE_WEIGHTS, 7),
        (EquipmentCategory.STRENGTH, 6),
        (EquipmentCategory.SPECIALIZED, 5),
        (EquipmentCategory.STRETCHING, 3),
        (EquipmentCategory.RECOVERY, 2),
        ("CARDIO", 12),
        ("unknown", DEFAULT_CALORIES_PER_MINUTE),
        (None, DEFAULT_CALORIES_PER_MINUTE),
    ],
)
def test_calorie_rate(category, rate) -> None:
    assert calorie_rate(category) == rate


def test_cardio_half_hour() -> None:
    assert calories_burned(30 * 60, EquipmentCategory.CARDIO) == 360


def test_zero_seconds_earn_nothing() -> None:
    assert calories_burned(0, EquipmentCategory.CARDIO) == 0


def test_short_session_earns_at_least_one() -> None:
    # 2 kcal/min for one second is 0.03 kcal.
    assert calories_burned(1, EquipmentCategory.RECOVERY) == 1


def test_rounds_half_up() -> None:
    # 3 kcal/min: 50s -> 2.5, 45s -> 2.25
    assert calories_burned(50, EquipmentCategory.STRETCHING) == 3
    assert calories_burned(45, EquipmentCategory.STRETCHING) == 2
    assert round_half_up(125.5) == 126
    assert round_half_up(125.49) == 125


def test_elapsed_seconds_truncates_and_never_goes_negative() -> None:
    start = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)
    assert elapsed_seconds(start, start + timedelta(seconds=90, milliseconds=900)) == 90
    assert elapsed_seconds(start, start - timedelta(seconds=5)) == 0


def test_elapsed_seconds_accepts_naive_utc() -> None:
    start = datetime(2026, 1, 5, 9, 0)
    end = datetime(2026, 1, 5, 9, 1, tzinfo=UTC)
    assert elapsed_seconds(start, end) == 60
