from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date

from sqlalchemy.orm import Session

from db.models import Achievement, FitnessGoal
from services.analytics_service import calories_between, steps_between
from services.errors import NotFoundError
from utils.datetime_utils import utcnow_naive
from utils.units import steps_to_active_minutes, steps_to_calories, steps_to_km

logger = logging.getLogger(__name__)

OPEN_STATUSES = ("pending", "active")
# Lower is better for these; every other goal type completes at current >= target.
CEILING_GOAL_TYPES = {"weight"}


@dataclass(frozen=True)
class AchievementSpec:
    key: str
    title: str
    description: str
    icon: str
    requirement: str


FIRST_STEP_GOAL = AchievementSpec(
    "first-step-goal", "First Steps!", "Completed your first step goal",
    "first-steps", "Complete your first step goal",
)
STEP_MASTER = AchievementSpec(
    "step-master", "Step Master", "Completed 5 step goals",
    "step-master", "Complete 5 step goals",
)
TEN_K_STEPS = AchievementSpec(
    "10k-steps", "10K Club", "Took 10,000 steps in a single day",
    "10k-steps", "Take 10,000 steps in a single day",
)
ACTIVE_WEEK = AchievementSpec(
    "active-week", "Active Lifestyle", "Achieved 150+ active minutes in a week",
    "active-lifestyle", "Achieve 150+ active minutes in a week",
)
CALORIE_STREAK = AchievementSpec(
    "calorie-streak", "Nutrition Master", "Met your calorie goal for 7 days in a row",
    "nutrition", "Meet your calorie goal for 7 days in a row",
)


def _streak_achievement(streak: int) -> AchievementSpec:
    return AchievementSpec(
        f"streak-{streak}",
        f"{streak} Day Streak!",
        f"Completed the same goal for {streak} days in a row",
        "streak",
        f"Complete a goal for {streak} days in a row",
    )


def get_active_goals(
    db: Session,
    user_id: str,
    today: date,
    time_frame: str | None = None,
) -> list[FitnessGoal]:
    query = db.query(FitnessGoal).filter(
        FitnessGoal.user_id == user_id,
        FitnessGoal.end_date >= today,
        FitnessGoal.status.in_(OPEN_STATUSES),
    )
    if time_frame:
        query = query.filter(FitnessGoal.time_frame == time_frame)
    return query.order_by(FitnessGoal.end_date.asc(), FitnessGoal.goal_type.asc()).all()


def get_completed_goals(db: Session, user_id: str, limit: int = 10) -> list[FitnessGoal]:
    return (
        db.query(FitnessGoal)
        .filter(FitnessGoal.user_id == user_id, FitnessGoal.status == "completed")
        .order_by(FitnessGoal.end_date.desc())
        .limit(limit)
        .all()
    )


def is_target_reached(goal: FitnessGoal, current: float) -> bool:
    if goal.goal_type in CEILING_GOAL_TYPES:
        return 0 < current <= goal.target
    return current >= goal.target


def next_status(goal: FitnessGoal, current: float) -> str:
    if goal.status in {"completed", "failed"}:
        return goal.status
    if is_target_reached(goal, current):
        return "completed"
    if goal.status == "pending" and current <= 0:
        return "pending"
    return "active"


def update_goal_progress(
    db: Session,
    user_id: str,
    goal_id: str,
    progress: float,
) -> FitnessGoal:
    if progress is None or progress < 0:
        raise ValueError("progress must be >= 0")
    goal = db.query(FitnessGoal).filter(FitnessGoal.id == goal_id).first()
    if not goal or goal.user_id != user_id:
        raise NotFoundError(f"Goal not found: {goal_id}")

    was_completed = goal.status == "completed"
    goal.current = float(progress)
    goal.status = next_status(goal, goal.current)
    goal.updated_at = utcnow_naive()

    if goal.status == "completed" and not was_completed:
        goal.streak = int(goal.streak or 0) + 1
        check_achievements(db, goal)
    db.commit()
    db.refresh(goal)
    return goal


def expire_goals(db: Session, user_id: str, today: date) -> int:
    """Fail open goals whose period ended without reaching the target."""
    stale = (
        db.query(FitnessGoal)
        .filter(
            FitnessGoal.user_id == user_id,
            FitnessGoal.end_date < today,
            FitnessGoal.status.in_(OPEN_STATUSES),
        )
        .all()
    )
    now = utcnow_naive()
    for goal in stale:
        goal.status = "failed"
        goal.streak = 0
        goal.updated_at = now
    if stale:
        db.commit()
    return len(stale)


def progress_for_goal(db: Session, goal: FitnessGoal, today: date) -> float | None:
    """Progress derived from activity records, or None for goal types not derived from them."""
    end = min(goal.end_date, today)
    if goal.goal_type == "calorie_intake":
        return calories_between(db, goal.user_id, goal.start_date, end)
    if goal.goal_type not in {"step_count", "active_minutes", "distance", "calories_burned"}:
        return None

    steps = steps_between(db, goal.user_id, goal.start_date, end)
    if goal.goal_type == "active_minutes":
        return float(steps_to_active_minutes(steps))
    if goal.goal_type == "distance":
        return steps_to_km(steps)
    if goal.goal_type == "calories_burned":
        return steps_to_calories(steps)
    return float(steps)


def sync_goal_progress(db: Session, user_id: str, today: date) -> int:
    """Expire stale goals, then refresh `current` for each active goal."""
    expire_goals(db, user_id, today)
    updated = 0
    for goal in get_active_goals(db, user_id, today):
        progress = progress_for_goal(db, goal, today)
        if progress is None:
            continue
        try:
            update_goal_progress(db, user_id, goal.id, progress)
            updated += 1
        except NotFoundError as exc:
            logger.warning(f"Skipping goal progress sync for {goal.id}: {exc}")
    return updated


def _unlock(db: Session, user_id: str, badge: AchievementSpec) -> Achievement:
    row = (
        db.query(Achievement)
        .filter(Achievement.user_id == user_id, Achievement.achievement_key == badge.key)
        .first()
    )
    now = utcnow_naive()
    if not row:
        row = Achievement(
            user_id=user_id,
            achievement_key=badge.key,
            title=badge.title,
            description=badge.description,
            icon=badge.icon,
            requirement=badge.requirement,
            progress=100,
            unlocked_at=now,
        )
        db.add(row)
        db.flush()
        return row
    if not row.unlocked_at:
        row.progress = 100
        row.unlocked_at = now
    return row


def _completed_count(db: Session, user_id: str, goal_type: str, time_frame: str | None = None) -> int:
    query = db.query(FitnessGoal).filter(
        FitnessGoal.user_id == user_id,
        FitnessGoal.goal_type == goal_type,
        FitnessGoal.status == "completed",
    )
    if time_frame:
        query = query.filter(FitnessGoal.time_frame == time_frame)
    return query.count()


def check_achievements(db: Session, goal: FitnessGoal) -> list[Achievement]:
    """Unlock achievements earned by `goal` having just completed."""
    db.flush()
    unlocked: list[Achievement] = []
    user_id = goal.user_id

    if goal.goal_type == "step_count":
        completed = _completed_count(db, user_id, "step_count")
        if completed == 1:
            unlocked.append(_unlock(db, user_id, FIRST_STEP_GOAL))
        if completed == 5:
            unlocked.append(_unlock(db, user_id, STEP_MASTER))
        if goal.time_frame == "daily" and goal.current >= 10000:
            unlocked.append(_unlock(db, user_id, TEN_K_STEPS))
    elif goal.goal_type == "active_minutes":
        if goal.time_frame == "weekly" and goal.current >= 150:
            unlocked.append(_unlock(db, user_id, ACTIVE_WEEK))
    elif goal.goal_type == "calorie_intake" and goal.time_frame == "daily":
        if _completed_count(db, user_id, "calorie_intake", "daily") >= 7:
            unlocked.append(_unlock(db, user_id, CALORIE_STREAK))

    if goal.streak and goal.streak >= 3:
        unlocked.append(_unlock(db, user_id, _streak_achievement(goal.streak)))
    return unlocked


def get_achievements(db: Session, user_id: str) -> list[Achievement]:
    return (
        db.query(Achievement)
        .filter(Achievement.user_id == user_id)
        .order_by(Achievement.unlocked_at.desc(), Achievement.id.asc())
        .all()
    )


def achievement_to_dict(row: Achievement) -> dict:
    return {
        "id": row.achievement_key,
        "title": row.title,
        "description": row.description,
        "icon": row.icon,
        "progress": row.progress,
        "requirement": row.requirement,
        "unlocked_at": row.unlocked_at.isoformat() if row.unlocked_at else None,
    }
