"""Activity estimates and rounding shared by analytics and goal generation."""
import math

STEPS_PER_CALORIE = 20
STEPS_PER_ACTIVE_MINUTE = 100
STEP_LENGTH_M = 0.762
KM_PER_STEP = 0.000762


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positives, unlike Python's banker's round()."""
    return int(math.floor(value + 0.5))


def round_to(value: float, places: int) -> float:
    factor = 10 ** places
    return round_half_up(value * factor) / factor


def steps_to_calories(steps: float) -> float:
    return steps / STEPS_PER_CALORIE


def steps_to_active_minutes(steps: float) -> int:
    return round_half_up(steps / STEPS_PER_ACTIVE_MINUTE)


def steps_to_km(steps: float) -> float:
    return steps * KM_PER_STEP
