from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from db.models import UserProfile
from services.errors import NotFoundError
from utils.datetime_utils import resolve_tz

FITNESS_GOALS = {"weightLoss", "maintenance", "muscleGain"}
WEIGHT_LOSS = "weightLoss"


def get_profile(db: Session, user_id: str) -> UserProfile:
    profile = db.query(UserProfile).filter(UserProfile.user_id == user_id).first()
    if not profile:
        raise NotFoundError(f"User profile not found: {user_id}")
    return profile


def is_weight_loss(profile: Any) -> bool:
    return getattr(profile, "fitness_goal", None) == WEIGHT_LOSS


def upsert_profile(db: Session, user_id: str, fields: dict[str, Any]) -> UserProfile:
    goal = fields.get("fitness_goal")
    if goal is not None and goal not in FITNESS_GOALS:
        raise ValueError(f"fitness_goal must be one of {sorted(FITNESS_GOALS)}")
    for key in ("weight_kg", "daily_calorie_goal"):
        value = fields.get(key)
        if value is not None and value <= 0:
            raise ValueError(f"{key} must be positive")
    tz_name = fields.get("timezone")
    if tz_name and resolve_tz(tz_name, fallback="").key != tz_name:
        raise ValueError(f"Unknown timezone: {tz_name}")

    profile = db.query(UserProfile).filter(UserProfile.user_id == user_id).first()
    if not profile:
        profile = UserProfile(user_id=user_id, fitness_goal="maintenance")
        db.add(profile)
    for key, value in fields.items():
        if value is not None:
            setattr(profile, key, value)
    db.commit()
    db.refresh(profile)
    return profile


def profile_to_dict(profile: UserProfile) -> dict:
    return {
        "user_id": profile.user_id,
        "display_name": profile.display_name,
        "fitness_goal": profile.fitness_goal,
        "weight_kg": profile.weight_kg,
        "daily_calorie_goal": profile.daily_calorie_goal,
        "timezone": profile.timezone,
        "created_at": profile.created_at.isoformat() if profile.created_at else None,
        "updated_at": profile.updated_at.isoformat() if profile.updated_at else None,
    }
