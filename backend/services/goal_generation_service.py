from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any

from sqlalchemy.orm import Session

from config import settings
from db.models import FitnessGoal
from services.analytics_service import UserAnalytics, load_user_analytics, summarize_analytics
from services.errors import GoalGenerationError
from services.goal_tracking_service import expire_goals
from services.profile_service import get_profile, is_weight_loss
from utils.datetime_utils import (
    end_of_month,
    end_of_week,
    remaining_days_in_month,
    start_of_month,
    start_of_week,
    utcnow_naive,
)
from utils.units import STEP_LENGTH_M, round_half_up, round_to

logger = logging.getLogger(__name__)

TIME_FRAMES = ("daily", "weekly", "monthly")

DEFAULT_DAILY_STEP_GOAL = 8000
MAX_DAILY_STEP_GOAL = 15000
STEP_GROWTH = 1.05
COMPLETED_STEP_GROWTH = 1.1
WEEKLY_STEP_BUFFER = 0.9
MONTHLY_DEFAULT_BUFFER = 0.9
DEFAULT_DAILY_ACTIVE_MINUTES = 30
DEFAULT_WEEKLY_ACTIVE_MINUTES = 150
WEIGHT_LOSS_DAILY_MINUTES_FACTOR = 1.5
WEIGHT_LOSS_WEEKLY_MINUTES_FACTOR = 1.3
DEFAULT_CALORIE_INTAKE = 2000
MIN_CALORIE_INTAKE = 1200
CALORIE_DEFICIT_FOR_WEIGHT_LOSS = 500
WEIGHT_LOSS_KG_PER_DAY = 0.1
MAX_MONTHLY_WEIGHT_LOSS_KG = 2.0

_GOAL_ID_NAMESPACE = uuid.UUID("6f1c1f4e-3b7a-4c55-9a43-2f0d7e1b8c90")


@dataclass(frozen=True)
class GoalPeriod:
    time_frame: str
    start: date
    end: date


@dataclass(frozen=True)
class GoalDraft:
    id: str
    user_id: str
    goal_type: str
    time_frame: str
    target: float
    start_date: date
    end_date: date
    description: str
    current: float = 0.0
    status: str = "pending"
    streak: int = 0
    previous_target: float | None = None

    def as_columns(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "goal_type": self.goal_type,
            "time_frame": self.time_frame,
            "target": self.target,
            "current": self.current,
            "status": self.status,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "description": self.description,
            "streak": self.streak,
            "previous_target": self.previous_target,
        }


def period_for(time_frame: str, today: date) -> GoalPeriod:
    """Current goal period; end dates are inclusive."""
    if time_frame == "daily":
        return GoalPeriod(time_frame, today, today)
    if time_frame == "weekly":
        return GoalPeriod(time_frame, today, end_of_week(today))
    if time_frame == "monthly":
        return GoalPeriod(time_frame, today, end_of_month(today))
    raise ValueError(f"Unsupported time frame: {time_frame}")


def previous_period_bounds(time_frame: str, today: date) -> tuple[date, date]:
    """[start, end) of the period immediately before the current one."""
    if time_frame == "daily":
        return today - timedelta(days=1), today
    if time_frame == "weekly":
        current_start = start_of_week(today)
        return current_start - timedelta(days=7), current_start
    if time_frame == "monthly":
        current_start = start_of_month(today)
        return start_of_month(current_start - timedelta(days=1)), current_start
    raise ValueError(f"Unsupported time frame: {time_frame}")


def goal_id_for(user_id: str, goal_type: str, time_frame: str, end_date: date) -> str:
    """Stable id per user/type/period so regeneration overwrites."""
    key = f"{user_id}:{goal_type}:{time_frame}:{end_date.isoformat()}"
    return str(uuid.uuid5(_GOAL_ID_NAMESPACE, key))


def _carried_streak(prior: Any | None) -> int:
    if prior is None or getattr(prior, "status", None) != "completed":
        return 0
    return int(getattr(prior, "streak", 0) or 0)


def _draft(
    user_id: str,
    goal_type: str,
    period: GoalPeriod,
    target: float,
    description: str,
    prior: Any | None,
) -> GoalDraft:
    return GoalDraft(
        id=goal_id_for(user_id, goal_type, period.time_frame, period.end),
        user_id=user_id,
        goal_type=goal_type,
        time_frame=period.time_frame,
        target=target,
        start_date=period.start,
        end_date=period.end,
        description=description,
        streak=_carried_streak(prior),
        previous_target=getattr(prior, "target", None) if prior is not None else None,
    )


def daily_step_target(avg_steps: float, prior: Any | None) -> int:
    target = DEFAULT_DAILY_STEP_GOAL
    if avg_steps > 0:
        target = round_half_up(avg_steps * STEP_GROWTH)
    # Completion bonus replaces the average-based growth.
    if prior is not None and getattr(prior, "status", None) == "completed":
        target = round_half_up(float(prior.target) * COMPLETED_STEP_GROWTH)
    return min(target, MAX_DAILY_STEP_GOAL)


def daily_calorie_target(profile: Any, avg_calories_burned: float) -> float:
    target = getattr(profile, "daily_calorie_goal", None) or DEFAULT_CALORIE_INTAKE
    # Burn history only counts once it exceeds the deficit itself. A typical
    # 6000 steps a day (300 kcal) keeps the profile goal, while a larger burn
    # switches to the deficit and can land on the 1200 floor.
    if is_weight_loss(profile) and avg_calories_burned > CALORIE_DEFICIT_FOR_WEIGHT_LOSS:
        target = max(MIN_CALORIE_INTAKE, avg_calories_burned - CALORIE_DEFICIT_FOR_WEIGHT_LOSS)
    return target


def monthly_step_target(avg_steps: float, remaining_days: int) -> int:
    if avg_steps > 0:
        return round_half_up(avg_steps * remaining_days * STEP_GROWTH)
    return round_half_up(DEFAULT_DAILY_STEP_GOAL * remaining_days * MONTHLY_DEFAULT_BUFFER)


def monthly_weight_target(current_weight: float, remaining_days: int) -> float:
    loss = min(remaining_days * WEIGHT_LOSS_KG_PER_DAY, MAX_MONTHLY_WEIGHT_LOSS_KG)
    return round_to(current_weight - loss, 2)


def _build_daily_goals(user_id, averages, profile, prior_goals, today) -> tuple[list[GoalDraft], int]:
    period = period_for("daily", today)
    goals: list[GoalDraft] = []

    prior_steps = prior_goals.get(("step_count", "daily"))
    step_target = daily_step_target(averages.avg_steps, prior_steps)
    goals.append(_draft(
        user_id, "step_count", period, step_target,
        f"Take {step_target:,} steps today", prior_steps,
    ))

    calorie_target = daily_calorie_target(profile, averages.avg_calories_burned)
    goals.append(_draft(
        user_id, "calorie_intake", period, calorie_target,
        f"Consume no more than {round_half_up(calorie_target):,} calories today",
        prior_goals.get(("calorie_intake", "daily")),
    ))

    minutes = DEFAULT_DAILY_ACTIVE_MINUTES
    if is_weight_loss(profile):
        minutes = DEFAULT_DAILY_ACTIVE_MINUTES * WEIGHT_LOSS_DAILY_MINUTES_FACTOR
    minutes = round_half_up(minutes)
    goals.append(_draft(
        user_id, "active_minutes", period, minutes,
        f"Be active for {minutes} minutes today",
        prior_goals.get(("active_minutes", "daily")),
    ))
    return goals, step_target


def _build_weekly_goals(user_id, daily_step_goal, profile, prior_goals, today) -> list[GoalDraft]:
    period = period_for("weekly", today)
    step_target = round_half_up(daily_step_goal * 7 * WEEKLY_STEP_BUFFER)
    minutes = DEFAULT_WEEKLY_ACTIVE_MINUTES
    if is_weight_loss(profile):
        minutes = DEFAULT_WEEKLY_ACTIVE_MINUTES * WEIGHT_LOSS_WEEKLY_MINUTES_FACTOR
    minutes = round_half_up(minutes)
    return [
        _draft(
            user_id, "step_count", period, step_target,
            f"Take {step_target:,} steps this week",
            prior_goals.get(("step_count", "weekly")),
        ),
        _draft(
            user_id, "active_minutes", period, minutes,
            f"Be active for {minutes} minutes this week",
            prior_goals.get(("active_minutes", "weekly")),
        ),
    ]


def _build_monthly_goals(user_id, averages, profile, prior_goals, today) -> list[GoalDraft]:
    period = period_for("monthly", today)
    remaining = remaining_days_in_month(today)

    step_target = monthly_step_target(averages.avg_steps, remaining)
    distance_target = round_to(step_target * STEP_LENGTH_M / 1000, 2)
    goals = [
        _draft(
            user_id, "step_count", period, step_target,
            f"Take {step_target:,} steps by the end of the month",
            prior_goals.get(("step_count", "monthly")),
        ),
        _draft(
            user_id, "distance", period, distance_target,
            f"Walk {distance_target:.1f} kilometers by the end of the month",
            prior_goals.get(("distance", "monthly")),
        ),
    ]

    weight = getattr(profile, "weight_kg", None)
    if is_weight_loss(profile) and weight:
        weight_target = monthly_weight_target(float(weight), remaining)
        goals.append(_draft(
            user_id, "weight", period, weight_target,
            f"Reach a weight of {weight_target:.1f} kg by the end of the month",
            prior_goals.get(("weight", "monthly")),
        ))
    return goals


def build_goals(
    user_id: str,
    analytics: list[UserAnalytics],
    profile: Any,
    prior_goals: dict[tuple[str, str], Any],
    today: date,
) -> list[GoalDraft]:
    """Daily, weekly and monthly goals from analytics and the superseded goals.

    `prior_goals` maps (goal_type, time_frame) to the goal of the previous
    period, whose streak and target are carried forward.
    """
    averages = summarize_analytics(analytics)
    daily, daily_steps = _build_daily_goals(user_id, averages, profile, prior_goals, today)
    weekly = _build_weekly_goals(user_id, daily_steps, profile, prior_goals, today)
    monthly = _build_monthly_goals(user_id, averages, profile, prior_goals, today)
    return daily + weekly + monthly


def find_superseded_goals(db: Session, user_id: str, today: date) -> dict[tuple[str, str], FitnessGoal]:
    superseded: dict[tuple[str, str], FitnessGoal] = {}
    for time_frame in TIME_FRAMES:
        start, end = previous_period_bounds(time_frame, today)
        rows = (
            db.query(FitnessGoal)
            .filter(
                FitnessGoal.user_id == user_id,
                FitnessGoal.time_frame == time_frame,
                FitnessGoal.end_date >= start,
                FitnessGoal.end_date < end,
            )
            .order_by(FitnessGoal.end_date.desc(), FitnessGoal.updated_at.desc())
            .all()
        )
        for row in rows:
            superseded.setdefault((row.goal_type, time_frame), row)
    return superseded


def _persist_goals(db: Session, drafts: list[GoalDraft]) -> list[FitnessGoal]:
    now = utcnow_naive()
    saved = []
    for draft in drafts:
        row = FitnessGoal(**draft.as_columns())
        row.updated_at = now
        saved.append(db.merge(row))
    db.commit()
    return saved


def generate_goals_for_user(db: Session, user_id: str, today: date) -> list[FitnessGoal]:
    """Generate and persist a complete goal set, or raise GoalGenerationError."""
    try:
        profile = get_profile(db, user_id)
        analytics = load_user_analytics(db, user_id, settings.GOAL_HISTORY_DAYS, today)
        expire_goals(db, user_id, today)
        prior = find_superseded_goals(db, user_id, today)
        drafts = build_goals(user_id, analytics, profile, prior, today)
        saved = _persist_goals(db, drafts)
    except Exception as exc:
        db.rollback()
        logger.warning(f"Goal generation aborted for {user_id}: {exc}")
        raise GoalGenerationError(user_id, exc) from exc

    logger.info("Generated %d goals for %s", len(saved), user_id)
    return saved


def goal_to_dict(goal: FitnessGoal) -> dict:
    progress_pct = None
    if goal.target:
        progress_pct = round(max(0.0, min(100.0, (goal.current or 0.0) / goal.target * 100.0)), 1)
    return {
        "id": goal.id,
        "user_id": goal.user_id,
        "type": goal.goal_type,
        "time_frame": goal.time_frame,
        "target": goal.target,
        "current": goal.current,
        "status": goal.status,
        "start_date": goal.start_date.isoformat() if goal.start_date else None,
        "end_date": goal.end_date.isoformat() if goal.end_date else None,
        "description": goal.description,
        "streak": goal.streak,
        "previous_target": goal.previous_target,
        "progress_pct": progress_pct,
        "created_at": goal.created_at.isoformat() if goal.created_at else None,
        "updated_at": goal.updated_at.isoformat() if goal.updated_at else None,
    }
