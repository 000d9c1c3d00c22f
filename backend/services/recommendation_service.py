from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, fields
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy import case, or_
from sqlalchemy.orm import Session

from config import settings
from db.models import FitnessRecommendation
from services.analytics_service import UserAnalytics, load_user_analytics
from services.errors import NotFoundError
from services.goal_tracking_service import get_active_goals
from services.profile_service import get_profile, is_weight_loss
from services.weather_service import WeatherContext
from utils.datetime_utils import local_now, to_naive_utc, utcnow, utcnow_naive

logger = logging.getLogger(__name__)

PRIORITY_RANK = {"high": 0, "medium": 1, "low": 2}

# Local-hour windows, inclusive on both ends.
MORNING_HOURS = (6, 10)
AFTERNOON_HOURS = (12, 17)
EVENING_HOURS = (18, 21)


@dataclass(frozen=True)
class RecommendationDraft:
    id: str
    user_id: str
    title: str
    description: str
    rec_type: str
    priority: str
    created_at: datetime
    completed: bool = False
    weather_dependent: bool | None = None
    ideal_weather_condition: str | None = None
    time_of_day_dependent: bool | None = None
    ideal_time_of_day: str | None = None
    expires_at: datetime | None = None

    def as_document(self) -> dict[str, Any]:
        """Column values with unused optional fields left out rather than null."""
        doc = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is not None:
                doc[f.name] = value
        return doc


def _fmt(value: float) -> str:
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,.1f}"


def _find_goal(goals, goal_type: str, time_frame: str = "daily"):
    for goal in goals:
        if goal.goal_type == goal_type and goal.time_frame == time_frame:
            return goal
    return None


class _Builder:
    def __init__(self, user_id: str, now: datetime, local: datetime):
        self.user_id = user_id
        self.created_at = to_naive_utc(now)
        self.local = local
        self.drafts: list[RecommendationDraft] = []

    def add(self, title: str, description: str, rec_type: str, priority: str, **optional) -> None:
        self.drafts.append(RecommendationDraft(
            id=str(uuid.uuid4()),
            user_id=self.user_id,
            title=title,
            description=description,
            rec_type=rec_type,
            priority=priority,
            created_at=self.created_at,
            **optional,
        ))

    def window_end(self, last_hour: int) -> datetime:
        end = self.local.replace(hour=last_hour, minute=0, second=0, microsecond=0) + timedelta(hours=1)
        return to_naive_utc(end)


def _step_rules(b: _Builder, goals, analytics: list[UserAnalytics], weather: WeatherContext) -> None:
    goal = _find_goal(goals, "step_count")
    if goal:
        current, target = goal.current or 0.0, goal.target
        if current < target * 0.5 and b.local.hour >= 12:
            b.add(
                "You're behind on steps today",
                f"You've taken {_fmt(current)} steps out of your goal of {_fmt(target)}. "
                "Take a 15-minute walk to catch up!",
                "exercise", "high",
                weather_dependent=True,
                ideal_weather_condition=weather.condition,
            )
        if target * 0.8 <= current < target:
            b.add(
                "Almost there!",
                f"Only {_fmt(target - current)} more steps to reach your daily goal. "
                "A quick 5-minute walk should do it!",
                "exercise", "medium",
            )

    if len(analytics) >= 3:
        oldest, middle, newest = (a.step_count for a in analytics[-3:])
        if newest < middle < oldest:
            b.add(
                "Step count decreasing",
                "Your daily steps have been decreasing. Try to incorporate more walking into your routine.",
                "exercise", "medium",
            )


def _nutrition_rules(b: _Builder, goals, analytics: list[UserAnalytics], profile) -> None:
    goal = _find_goal(goals, "calorie_intake")
    if goal:
        current, target = goal.current or 0.0, goal.target
        if current > target:
            b.add(
                "Calorie alert",
                f"You've consumed {_fmt(current)} calories, which is above your daily target of "
                f"{_fmt(target)}. Try to have a lighter dinner.",
                "nutrition", "high",
            )
        if current < target * 0.5 and b.local.hour >= 17:
            b.add(
                "Nutrition check",
                f"You've only consumed {_fmt(current)} calories today. "
                "Make sure you're eating enough to fuel your activities.",
                "nutrition", "medium",
            )

    if is_weight_loss(profile) and len(analytics) >= 5:
        deficit_days = sum(1 for a in analytics if a.calorie_difference > 0)
        if deficit_days >= 5:
            b.add(
                "Great work!",
                "You've maintained a calorie deficit for 5 days. Keep up the good work!",
                "nutrition", "low",
            )


def _activity_rules(b: _Builder, weather: WeatherContext) -> None:
    condition, temp = weather.condition, weather.temperature
    outdoor = {"weather_dependent": True, "ideal_weather_condition": condition}

    if weather.is_outdoor_friendly:
        if condition == "sunny" and temp > 20:
            b.add(
                "Perfect weather for activity!",
                f"It's a beautiful {temp}°C outside with {condition} conditions. "
                "Take advantage with a walk or outdoor activity.",
                "exercise", "high", **outdoor,
            )
        elif condition == "cloudy" and temp > 15:
            b.add(
                "Good conditions for exercise",
                f"It's {temp}°C with cloudy skies, perfect weather for a run without overheating.",
                "exercise", "medium", **outdoor,
            )
    elif condition == "rainy":
        b.add(
            "Rainy day workout",
            f"It's rainy outside ({temp}°C). Try an indoor workout like yoga or strength training.",
            "exercise", "medium", **outdoor,
        )
    elif temp < 5:
        b.add(
            "Cold weather alert",
            f"It's very cold outside ({temp}°C). Consider an indoor workout or dress in layers if going out.",
            "exercise", "high", **outdoor,
        )
    elif temp > 32:
        b.add(
            "Heat alert",
            f"It's very hot outside ({temp}°C). Stay hydrated and consider exercising "
            "in the early morning or evening.",
            "exercise", "high", **outdoor,
        )

    hour = b.local.hour
    if MORNING_HOURS[0] <= hour <= MORNING_HOURS[1]:
        timed = {"time_of_day_dependent": True, "ideal_time_of_day": "morning",
                 "expires_at": b.window_end(MORNING_HOURS[1])}
        if weather.is_outdoor_friendly:
            b.add(
                "Morning boost",
                f"It's a {condition} morning at {temp}°C! Start your day with a brisk "
                "10-minute walk to boost your energy.",
                "exercise", "medium", **outdoor, **timed,
            )
        else:
            b.add(
                "Indoor morning routine",
                f"Weather conditions ({condition}, {temp}°C) aren't ideal. "
                "Start your day with a 5-minute indoor stretching routine.",
                "exercise", "medium", **timed,
            )

    if AFTERNOON_HOURS[0] <= hour <= AFTERNOON_HOURS[1]:
        timed = {"time_of_day_dependent": True, "ideal_time_of_day": "afternoon",
                 "expires_at": b.window_end(AFTERNOON_HOURS[1])}
        if weather.is_outdoor_friendly and temp < 28:
            b.add(
                "Afternoon break",
                f"Take a break from your activities with a 15-minute walk outside "
                f"({temp}°C, {condition}) to refresh your mind.",
                "exercise", "medium", **outdoor, **timed,
            )
        else:
            b.add(
                "Desk stretches",
                "Take a 5-minute break to do some simple desk stretches and reduce stiffness.",
                "exercise", "low", **timed,
            )

    if EVENING_HOURS[0] <= hour <= EVENING_HOURS[1]:
        timed = {"time_of_day_dependent": True, "ideal_time_of_day": "evening",
                 "expires_at": b.window_end(EVENING_HOURS[1])}
        if weather.is_outdoor_friendly:
            b.add(
                "Evening stroll",
                f"Enjoy the {condition} evening ({temp}°C) with a relaxing 20-minute walk "
                "to wind down your day.",
                "exercise", "medium", **outdoor, **timed,
            )
        else:
            b.add(
                "Evening relaxation",
                "Try a 10-minute gentle yoga routine to relax your body before bed.",
                "recovery", "low", **timed,
            )


def _recovery_rules(b: _Builder, analytics: list[UserAnalytics], weather: WeatherContext) -> None:
    if len(analytics) >= 3:
        recent = [a.step_count for a in analytics[-3:]]
        if sum(recent) / len(recent) > 10000:
            b.add(
                "Recovery day",
                "You've been very active lately. Consider taking a recovery day with gentle "
                "stretching and adequate hydration.",
                "recovery", "medium",
            )

    if weather.temperature > 25:
        b.add(
            "Hydration reminder",
            f"It's {weather.temperature}°C today. Remember to stay well-hydrated, "
            "especially if you're exercising.",
            "recovery", "high" if weather.temperature > 30 else "medium",
            weather_dependent=True,
            ideal_weather_condition=weather.condition,
        )

    # Monday is 0.
    if b.local.weekday() in (5, 6):
        b.add(
            "Weekend recovery",
            "Take some time this weekend for recovery activities like gentle stretching "
            "and quality sleep.",
            "recovery", "low",
        )


def _local_time(profile, now: datetime) -> datetime:
    return local_now(now, getattr(profile, "timezone", None), settings.DEFAULT_TIMEZONE)


def build_recommendations(
    user_id: str,
    goals: list[Any],
    analytics: list[UserAnalytics],
    profile: Any,
    weather: WeatherContext,
    now: datetime,
) -> list[RecommendationDraft]:
    """Evaluate every rule once against the user's current context.

    `analytics` is chronological (oldest first). Rules run in a stable
    order: steps, nutrition, activity and weather, recovery.
    """
    b = _Builder(user_id, now, _local_time(profile, now))
    _step_rules(b, goals, analytics, weather)
    _nutrition_rules(b, goals, analytics, profile)
    _activity_rules(b, weather)
    _recovery_rules(b, analytics, weather)
    return b.drafts


def build_activity_recommendations(
    user_id: str,
    profile: Any,
    weather: WeatherContext,
    now: datetime,
) -> list[RecommendationDraft]:
    b = _Builder(user_id, now, _local_time(profile, now))
    _activity_rules(b, weather)
    return b.drafts


def purge_stale_recommendations(db: Session, user_id: str, now: datetime) -> int:
    cutoff = to_naive_utc(now) - timedelta(days=settings.RECOMMENDATION_RETENTION_DAYS)
    deleted = (
        db.query(FitnessRecommendation)
        .filter(
            FitnessRecommendation.user_id == user_id,
            FitnessRecommendation.completed.is_(False),
            FitnessRecommendation.created_at < cutoff,
        )
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted


def save_recommendations(db: Session, drafts: list[RecommendationDraft]) -> list[FitnessRecommendation]:
    rows = [FitnessRecommendation(**draft.as_document()) for draft in drafts]
    db.add_all(rows)
    db.commit()
    return rows


def generate_recommendations(
    db: Session,
    user_id: str,
    weather: WeatherContext,
    now: datetime,
) -> list[FitnessRecommendation]:
    """Purge stale suggestions, then build and store a fresh batch."""
    purged = purge_stale_recommendations(db, user_id, now)
    if purged:
        logger.info("Purged %d stale recommendations for %s", purged, user_id)

    profile = get_profile(db, user_id)
    local_today = _local_time(profile, now).date()
    goals = get_active_goals(db, user_id, local_today)
    analytics = load_user_analytics(db, user_id, settings.RECOMMENDATION_HISTORY_DAYS, local_today)

    drafts = build_recommendations(user_id, goals, analytics, profile, weather, now)
    rows = save_recommendations(db, drafts)
    logger.info("Generated %d recommendations for %s", len(rows), user_id)
    return rows


def get_active_recommendations(
    db: Session,
    user_id: str,
    now: datetime,
    limit: int | None = None,
) -> list[FitnessRecommendation]:
    priority_order = case(PRIORITY_RANK, value=FitnessRecommendation.priority, else_=len(PRIORITY_RANK))
    return (
        db.query(FitnessRecommendation)
        .filter(
            FitnessRecommendation.user_id == user_id,
            FitnessRecommendation.completed.is_(False),
            or_(
                FitnessRecommendation.expires_at.is_(None),
                FitnessRecommendation.expires_at > to_naive_utc(now),
            ),
        )
        .order_by(priority_order.asc(), FitnessRecommendation.created_at.desc())
        .limit(limit or settings.ACTIVE_RECOMMENDATION_LIMIT)
        .all()
    )


def complete_recommendation(db: Session, user_id: str, rec_id: str) -> FitnessRecommendation:
    row = db.query(FitnessRecommendation).filter(FitnessRecommendation.id == rec_id).first()
    if not row or row.user_id != user_id:
        raise NotFoundError(f"Recommendation not found: {rec_id}")
    if not row.completed:
        row.completed = True
        row.updated_at = utcnow_naive()
        db.commit()
        db.refresh(row)
    return row


def apply_weather_change(
    db: Session,
    user_id: str,
    weather: WeatherContext,
    previous: WeatherContext | None,
    now: datetime,
) -> dict[str, int]:
    """Rewrite or retire weather-dependent suggestions after a weather refresh."""
    rows = (
        db.query(FitnessRecommendation)
        .filter(
            FitnessRecommendation.user_id == user_id,
            FitnessRecommendation.completed.is_(False),
            FitnessRecommendation.weather_dependent.is_(True),
        )
        .all()
    )
    rewritten = retired = 0
    stamp = utcnow_naive()
    for row in rows:
        ideal = row.ideal_weather_condition
        if ideal == weather.condition:
            continue
        if row.rec_type == "exercise" and ideal == "sunny" and not weather.is_outdoor_friendly:
            row.description = (
                f"Weather has changed to {weather.condition} ({weather.temperature}°C). "
                "Consider an indoor workout instead."
            )
            row.updated_at = stamp
            rewritten += 1
        elif {ideal, weather.condition} == {"sunny", "rainy"}:
            row.completed = True
            row.updated_at = stamp
            retired += 1
    db.commit()

    created = 0
    if previous is not None and previous.is_outdoor_friendly != weather.is_outdoor_friendly:
        try:
            profile = get_profile(db, user_id)
        except NotFoundError:
            profile = None
        drafts = build_activity_recommendations(user_id, profile, weather, now)
        if drafts:
            created = len(save_recommendations(db, drafts))

    if rewritten or retired or created:
        logger.info(
            f"Weather change for {user_id}: {rewritten} rewritten, {retired} retired, {created} created"
        )
    return {"rewritten": rewritten, "retired": retired, "created": created}


def users_with_open_recommendations(db: Session) -> list[str]:
    rows = (
        db.query(FitnessRecommendation.user_id)
        .filter(FitnessRecommendation.completed.is_(False))
        .distinct()
        .order_by(FitnessRecommendation.user_id)
        .all()
    )
    return [row[0] for row in rows]


def apply_weather_change_to_all(
    db: Session,
    weather: WeatherContext,
    previous: WeatherContext | None,
    now: datetime,
) -> dict[str, dict[str, int]]:
    """The weather cache is shared, so one refresh updates every user with open suggestions."""
    return {
        user_id: apply_weather_change(db, user_id, weather, previous, now)
        for user_id in users_with_open_recommendations(db)
    }


def weather_change_listener(session_factory: Callable[[], Session]):
    """Refresh listener for WeatherService that runs in its own session."""

    def on_refresh(weather: WeatherContext, previous: WeatherContext | None) -> None:
        db = session_factory()
        try:
            apply_weather_change_to_all(db, weather, previous, utcnow())
        finally:
            db.close()

    return on_refresh
