from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta
from statistics import mean
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from db.models import DailyActivityRecord
from utils.units import steps_to_active_minutes, steps_to_calories, steps_to_km


@dataclass(frozen=True)
class UserAnalytics:
    user_id: str
    date: date
    step_count: int
    calories_burned: float
    calories_consumed: float
    calorie_difference: float
    active_minutes: int
    distance: float  # km

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "date": self.date.isoformat(),
            "step_count": self.step_count,
            "calories_burned": self.calories_burned,
            "calories_consumed": self.calories_consumed,
            "calorie_difference": self.calorie_difference,
            "active_minutes": self.active_minutes,
            "distance": self.distance,
        }


@dataclass(frozen=True)
class AnalyticsSummary:
    days: int
    total_steps: int
    total_calories_burned: float
    total_calories_consumed: float
    total_active_minutes: int
    total_distance: float
    avg_steps: float
    avg_calories_burned: float
    avg_calories_consumed: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "days": self.days,
            "total_steps": self.total_steps,
            "total_calories_burned": self.total_calories_burned,
            "total_calories_consumed": self.total_calories_consumed,
            "total_active_minutes": self.total_active_minutes,
            "total_distance": self.total_distance,
            "avg_steps": self.avg_steps,
            "avg_calories_burned": self.avg_calories_burned,
            "avg_calories_consumed": self.avg_calories_consumed,
        }


def build_analytics(user_id: str, day: date, steps: int, calories_consumed: float) -> UserAnalytics:
    burned = steps_to_calories(steps)
    return UserAnalytics(
        user_id=user_id,
        date=day,
        step_count=steps,
        calories_burned=burned,
        calories_consumed=calories_consumed,
        calorie_difference=burned - calories_consumed,
        active_minutes=steps_to_active_minutes(steps),
        distance=steps_to_km(steps),
    )


def aggregate_daily_analytics(user_id: str, records: Iterable[Any]) -> list[UserAnalytics]:
    """Collapse raw day records into one UserAnalytics per date present.

    Same-day records are additive. Dates with no record are omitted rather
    than zero-filled. Output is chronological.
    """
    steps_by_day: dict[date, int] = {}
    calories_by_day: dict[date, float] = {}
    for record in records:
        day = record.date
        steps_by_day[day] = steps_by_day.get(day, 0) + int(record.steps or 0)
        calories_by_day[day] = calories_by_day.get(day, 0.0) + float(record.calories_consumed or 0.0)

    return [
        build_analytics(user_id, day, steps_by_day[day], calories_by_day[day])
        for day in sorted(steps_by_day)
    ]


def summarize_analytics(analytics: list[UserAnalytics]) -> AnalyticsSummary:
    if not analytics:
        return AnalyticsSummary(0, 0, 0.0, 0.0, 0, 0.0, 0.0, 0.0, 0.0)
    return AnalyticsSummary(
        days=len(analytics),
        total_steps=sum(a.step_count for a in analytics),
        total_calories_burned=sum(a.calories_burned for a in analytics),
        total_calories_consumed=sum(a.calories_consumed for a in analytics),
        total_active_minutes=sum(a.active_minutes for a in analytics),
        total_distance=sum(a.distance for a in analytics),
        avg_steps=mean(a.step_count for a in analytics),
        avg_calories_burned=mean(a.calories_burned for a in analytics),
        avg_calories_consumed=mean(a.calories_consumed for a in analytics),
    )


def load_user_analytics(db: Session, user_id: str, days: int, today: date) -> list[UserAnalytics]:
    """Analytics for the `days` calendar days ending on `today`, inclusive."""
    if days <= 0:
        return []
    since = today - timedelta(days=days - 1)
    records = (
        db.query(DailyActivityRecord)
        .filter(
            DailyActivityRecord.user_id == user_id,
            DailyActivityRecord.date >= since,
            DailyActivityRecord.date <= today,
        )
        .order_by(DailyActivityRecord.date.asc())
        .all()
    )
    return aggregate_daily_analytics(user_id, records)


def record_activity(
    db: Session,
    user_id: str,
    day: date,
    steps: int = 0,
    calories_consumed: float = 0.0,
) -> DailyActivityRecord:
    """Add logged steps/calories to the user's row for `day`."""
    if steps is None or steps < 0:
        raise ValueError("steps must be >= 0")
    if calories_consumed is None or calories_consumed < 0:
        raise ValueError("calories_consumed must be >= 0")

    record = (
        db.query(DailyActivityRecord)
        .filter(DailyActivityRecord.user_id == user_id, DailyActivityRecord.date == day)
        .first()
    )
    if not record:
        record = DailyActivityRecord(user_id=user_id, date=day, steps=0, calories_consumed=0.0)
        db.add(record)
    record.steps = int(record.steps or 0) + int(steps)
    record.calories_consumed = float(record.calories_consumed or 0.0) + float(calories_consumed)
    db.commit()
    db.refresh(record)
    return record


def steps_between(db: Session, user_id: str, start: date, end: date) -> int:
    total = (
        db.query(func.coalesce(func.sum(DailyActivityRecord.steps), 0))
        .filter(
            DailyActivityRecord.user_id == user_id,
            DailyActivityRecord.date >= start,
            DailyActivityRecord.date <= end,
        )
        .scalar()
    )
    return int(total or 0)


def calories_between(db: Session, user_id: str, start: date, end: date) -> float:
    total = (
        db.query(func.coalesce(func.sum(DailyActivityRecord.calories_consumed), 0.0))
        .filter(
            DailyActivityRecord.user_id == user_id,
            DailyActivityRecord.date >= start,
            DailyActivityRecord.date <= end,
        )
        .scalar()
    )
    return float(total or 0.0)
