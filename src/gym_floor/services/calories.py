# src/gym_floor/services/calories.py
"""Energy-expenditure estimates for closed usage sessions."""

from __future__ import annotations

import math
from datetime import datetime

from gym_floor.db.time import as_utc
from gym_floor.models.equipment import EquipmentCategory

# kcal per minute by equipment category.
CALORIES_PER_MINUTE: dict[EquipmentCategory, int] = {
    EquipmentCategory.CARDIO: 12,
    EquipmentCategory.FUNCTIONAL: 8,
    EquipmentCategory.FREE_WEIGHTS: 7,
    EquipmentCategory.STRENGTH: 6,
    EquipmentCategory.SPECIALIZED: 5,
    EquipmentCategory.STRETCHING: 3,
    EquipmentCategory.RECOVERY: 2,
}
DEFAULT_CALORIES_PER_MINUTE = 6


def calorie_rate(category: EquipmentCategory | str | None) -> int:
    """Return the kcal/minute rate for ``category``."""
    if category is None:
        return DEFAULT_CALORIES_PER_MINUTE
    try:
        key = EquipmentCategory(category)
    except ValueError:
        return DEFAULT_CALORIES_PER_MINUTE
    return CALORIES_PER_MINUTE.get(key, DEFAULT_CALORIES_PER_MINUTE)


def elapsed_seconds(started_at: datetime, ended_at: datetime) -> int:
    """Whole seconds between two instants, never negative."""
    delta = (as_utc(ended_at) - as_utc(started_at)).total_seconds()
    return max(0, math.floor(delta))


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def calories_burned(seconds: int, category: EquipmentCategory | str | None) -> int:
    """Estimate calories for ``seconds`` of use.

    Any positive duration earns at least one calorie; zero earns none.
    """
    if seconds <= 0:
        return 0
    exact = seconds * calorie_rate(category) / 60
    return max(1, round_half_up(exact))
