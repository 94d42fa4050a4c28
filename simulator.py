# simulator.py
"""Synthetic biometrics for users without a linked wearable.

Readings follow a circadian curve driven by the hour of day. Sleep is seeded by
the day of month so it stays stable for the whole day.
"""
import math
import random
from dataclasses import dataclass
from typing import Any, Collection, Dict, Optional

MAX_STEPS = 15000
STEP_JITTER = 50
HR_JITTER = 5

BASE_CALORIES = 1200
CALORIES_PER_STEP = 0.04
CALORIES_PER_HOUR = 20

BASE_HR = 65
EXERCISE_HR = 110  # 17:00-19:00
WORK_HR = 72       # 09:00-17:00


@dataclass(frozen=True)
class SimulatedBiometric:
    steps: int
    calories: int
    heart_rate: int
    sleep_hours: float
    exercise_score: float


def projected_steps(hour: int) -> int:
    if hour < 6:
        return 0
    if hour < 12:
        return 500 + (hour - 6) * 800    # morning ramp
    if hour < 18:
        return 5300 + (hour - 12) * 500  # afternoon plateau
    return 8300 + (hour - 18) * 200      # evening taper


def base_heart_rate(hour: int) -> int:
    if 17 <= hour <= 19:
        return EXERCISE_HR
    if 9 <= hour <= 17:
        return WORK_HR
    return BASE_HR


def sleep_for_day(day_seed: int) -> float:
    """Stable per-day sleep in [6, 9)."""
    value = 6 + random.Random(day_seed).random() * 3
    # truncate so the 2-decimal value never rounds up to 9.0
    return math.floor(value * 100) / 100


def simulate(hour: int, day_seed: int, rng: Optional[random.Random] = None) -> SimulatedBiometric:
    if not 0 <= hour <= 23:
        raise ValueError(f"hour must be within 0-23, got {hour}")
    rng = rng or random.Random()

    steps = min(MAX_STEPS, projected_steps(hour) + rng.randrange(STEP_JITTER))
    calories = math.floor(BASE_CALORIES + steps * CALORIES_PER_STEP + hour * CALORIES_PER_HOUR)
    heart_rate = base_heart_rate(hour) + rng.randint(-HR_JITTER, HR_JITTER)

    return SimulatedBiometric(
        steps=steps,
        calories=calories,
        heart_rate=heart_rate,
        sleep_hours=sleep_for_day(day_seed),
        exercise_score=round(steps / 1000, 2),
    )


def simulated_changes(
    sim: SimulatedBiometric,
    current_sleep: float,
    pinned: Collection[str] = (),
) -> Dict[str, Any]:
    """Document fields to fold in; recorded sleep and user-pinned fields are left alone."""
    changes = {
        "steps": sim.steps,
        "calories": sim.calories,
        "heartRate": sim.heart_rate,
        "exercise": sim.exercise_score,
    }
    if not current_sleep:
        changes["sleep"] = sim.sleep_hours
    return {k: v for k, v in changes.items() if k not in pinned}
