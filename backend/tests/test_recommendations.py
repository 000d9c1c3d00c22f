"""Recommendation rules, retention, retrieval order and weather invalidation."""
from __future__ import annotations

import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from db.database import Base  # noqa: E402
from db.models import FitnessRecommendation, UserProfile  # noqa: E402
from services.analytics_service import build_analytics  # noqa: E402
from services.errors import NotFoundError  # noqa: E402
from services.recommendation_service import (  # noqa: E402
    apply_weather_change,
    build_recommendations,
    complete_recommendation,
    generate_recommendations,
    get_active_recommendations,
    users_with_open_recommendations,
    weather_change_listener,
)
from services.weather_service import WeatherContext  # noqa: E402

SUNNY = WeatherContext("sunny", 22, 60, 5, True)
MILD_CLOUDS = WeatherContext("cloudy", 12, 70, 3, True)
RAIN = WeatherContext("rainy", 12, 90, 4, False)


def _new_db():
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)()


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def _profile(goal="maintenance", tz="UTC"):
    return SimpleNamespace(fitness_goal=goal, timezone=tz)


def _goal(goal_type, current, target):
    return SimpleNamespace(goal_type=goal_type, time_frame="daily", current=current, target=target)


def _analytics(steps_per_day, calories=0.0):
    start = date(2024, 3, 1)
    return [
        build_analytics("u1", start + timedelta(days=i), steps, calories)
        for i, steps in enumerate(steps_per_day)
    ]


def _titles(drafts):
    return [d.title for d in drafts]


def test_behind_on_steps_only_from_noon():
    goals = [_goal("step_count", 2000, 8000)]
    # Wednesday 3 a.m. and 1 p.m. UTC
    early = build_recommendations("u1", goals, [], _profile(), MILD_CLOUDS, _utc(2024, 3, 6, 3))
    late = build_recommendations("u1", goals, [], _profile(), MILD_CLOUDS, _utc(2024, 3, 6, 13))

    assert "You're behind on steps today" not in _titles(early)
    behind = next(d for d in late if d.title == "You're behind on steps today")
    assert behind.priority == "high"
    assert behind.weather_dependent is True
    assert behind.ideal_weather_condition == "cloudy"


def test_near_step_goal_encouragement():
    drafts = build_recommendations(
        "u1", [_goal("step_count", 7000, 8000)], [], _profile(), MILD_CLOUDS, _utc(2024, 3, 6, 3),
    )
    near = next(d for d in drafts if d.title == "Almost there!")
    assert near.priority == "medium"
    assert "1,000" in near.description


def test_declining_steps_detected_on_three_most_recent_days():
    now = _utc(2024, 3, 6, 3)
    declining = build_recommendations("u1", [], _analytics([12000, 9000, 8000, 7000]), _profile(), MILD_CLOUDS, now)
    rising = build_recommendations("u1", [], _analytics([7000, 8000, 9000]), _profile(), MILD_CLOUDS, now)
    assert "Step count decreasing" in _titles(declining)
    assert "Step count decreasing" not in _titles(rising)


def test_nutrition_rules():
    now = _utc(2024, 3, 6, 18)
    over = build_recommendations("u1", [_goal("calorie_intake", 2500, 2000)], [], _profile(), MILD_CLOUDS, now)
    under = build_recommendations("u1", [_goal("calorie_intake", 600, 2000)], [], _profile(), MILD_CLOUDS, now)
    assert next(d for d in over if d.title == "Calorie alert").priority == "high"
    assert "Nutrition check" in _titles(under)


def test_sustained_deficit_needs_weight_loss_profile():
    now = _utc(2024, 3, 6, 3)
    analytics = _analytics([8000] * 5, calories=100.0)
    assert "Great work!" in _titles(build_recommendations("u1", [], analytics, _profile("weightLoss"), MILD_CLOUDS, now))
    assert "Great work!" not in _titles(build_recommendations("u1", [], analytics, _profile(), MILD_CLOUDS, now))


@pytest.mark.parametrize(
    ("weather", "title", "priority"),
    [
        (WeatherContext("sunny", 25, 50, 3, True), "Perfect weather for activity!", "high"),
        (WeatherContext("cloudy", 18, 50, 3, True), "Good conditions for exercise", "medium"),
        (RAIN, "Rainy day workout", "medium"),
        (WeatherContext("snowy", 2, 80, 3, False), "Cold weather alert", "high"),
        (WeatherContext("sunny", 36, 20, 3, False), "Heat alert", "high"),
    ],
)
def test_weather_rules(weather, title, priority):
    drafts = build_recommendations("u1", [], [], _profile(), weather, _utc(2024, 3, 6, 3))
    match = next(d for d in drafts if d.title == title)
    assert match.priority == priority
    assert match.weather_dependent is True


def test_morning_window_expires_at_end_of_window():
    drafts = build_recommendations("u1", [], [], _profile(), SUNNY, _utc(2024, 3, 6, 7, 30))
    morning = next(d for d in drafts if d.title == "Morning boost")
    assert morning.ideal_time_of_day == "morning"
    assert morning.expires_at == datetime(2024, 3, 6, 11, 0)


def test_afternoon_indoor_alternative_when_not_outdoor_friendly():
    drafts = build_recommendations("u1", [], [], _profile(), RAIN, _utc(2024, 3, 6, 15))
    stretches = next(d for d in drafts if d.title == "Desk stretches")
    assert stretches.priority == "low"
    assert "ideal_weather_condition" not in stretches.as_document()


def test_local_time_follows_profile_timezone():
    # 02:00 UTC is 21:00 the previous evening in New York (EST).
    drafts = build_recommendations("u1", [], [], _profile(tz="America/New_York"), SUNNY, _utc(2024, 3, 6, 2))
    assert "Evening stroll" in _titles(drafts)


def test_recovery_rules():
    hot = WeatherContext("sunny", 31, 40, 2, True)
    drafts = build_recommendations(
        "u1", [], _analytics([11000, 12000, 13000]), _profile(), hot, _utc(2024, 3, 9, 3),
    )
    titles = _titles(drafts)
    assert "Recovery day" in titles
    assert next(d for d in drafts if d.title == "Hydration reminder").priority == "high"
    # 2024-03-09 is a Saturday.
    assert titles[-1] == "Weekend recovery"


def test_as_document_omits_unused_optional_fields():
    drafts = build_recommendations(
        "u1", [_goal("step_count", 7000, 8000)], [], _profile(), MILD_CLOUDS, _utc(2024, 3, 6, 3),
    )
    doc = next(d for d in drafts if d.title == "Almost there!").as_document()
    for key in ("weather_dependent", "ideal_weather_condition", "ideal_time_of_day", "expires_at"):
        assert key not in doc
    assert doc["completed"] is False


def _stored(db, title, created_at, completed=False, priority="medium", **extra):
    row = FitnessRecommendation(
        id=f"rec-{title}",
        user_id=extra.pop("user_id", "u1"),
        title=title,
        description=title,
        rec_type=extra.pop("rec_type", "exercise"),
        priority=priority,
        completed=completed,
        created_at=created_at,
        **extra,
    )
    db.add(row)
    db.commit()
    return row


def test_generation_purges_only_stale_incomplete_recommendations():
    db = _new_db()
    now = _utc(2024, 3, 6, 3)
    db.add(UserProfile(user_id="u1", fitness_goal="maintenance", timezone="UTC"))
    db.commit()
    _stored(db, "three-days", datetime(2024, 3, 3, 3))
    _stored(db, "one-day", datetime(2024, 3, 5, 3))
    _stored(db, "done", datetime(2024, 3, 1, 3), completed=True)

    generate_recommendations(db, "u1", MILD_CLOUDS, now)

    ids = {r.id for r in db.query(FitnessRecommendation).all()}
    assert "rec-three-days" not in ids
    assert {"rec-one-day", "rec-done"} <= ids


def test_purge_runs_even_when_profile_is_missing():
    db = _new_db()
    _stored(db, "stale", datetime(2024, 3, 1, 3))
    with pytest.raises(NotFoundError):
        generate_recommendations(db, "u1", SUNNY, _utc(2024, 3, 6, 3))
    assert db.query(FitnessRecommendation).count() == 0


def test_active_recommendations_ordered_by_priority_then_recency():
    db = _new_db()
    now = _utc(2024, 3, 6, 12)
    _stored(db, "low", datetime(2024, 3, 6, 11), priority="low")
    _stored(db, "high-old", datetime(2024, 3, 6, 9), priority="high")
    _stored(db, "high-new", datetime(2024, 3, 6, 10), priority="high")
    _stored(db, "medium", datetime(2024, 3, 6, 8), priority="medium")
    _stored(db, "expired", datetime(2024, 3, 6, 7), priority="high", expires_at=datetime(2024, 3, 6, 11))
    _stored(db, "done", datetime(2024, 3, 6, 7), priority="high", completed=True)

    titles = [r.title for r in get_active_recommendations(db, "u1", now)]
    assert titles == ["high-new", "high-old", "medium", "low"]


def test_complete_is_one_way_and_owner_scoped():
    db = _new_db()
    row = _stored(db, "walk", datetime(2024, 3, 6, 8))
    assert complete_recommendation(db, "u1", row.id).completed is True
    assert complete_recommendation(db, "u1", row.id).completed is True
    with pytest.raises(NotFoundError):
        complete_recommendation(db, "someone-else", row.id)


def test_weather_turning_bad_rewrites_and_retires():
    db = _new_db()
    now = _utc(2024, 3, 6, 3)
    walk = _stored(db, "walk", datetime(2024, 3, 6, 2), weather_dependent=True, ideal_weather_condition="sunny")
    hydrate = _stored(db, "hydrate", datetime(2024, 3, 6, 2), rec_type="recovery",
                      weather_dependent=True, ideal_weather_condition="sunny")
    steady = _stored(db, "steady", datetime(2024, 3, 6, 2), weather_dependent=True, ideal_weather_condition="rainy")

    result = apply_weather_change(db, "u1", RAIN, SUNNY, now)

    assert result == {"rewritten": 1, "retired": 1, "created": 1}
    db.refresh(walk)
    db.refresh(hydrate)
    db.refresh(steady)
    assert walk.description.startswith("Weather has changed to rainy")
    assert walk.completed is False
    assert hydrate.completed is True
    assert steady.description == "steady"
    titles = {r.title for r in db.query(FitnessRecommendation).all()}
    assert "Rainy day workout" in titles


def test_weather_change_without_previous_context_creates_nothing():
    db = _new_db()
    _stored(db, "rainy-yoga", datetime(2024, 3, 6, 2), weather_dependent=True, ideal_weather_condition="rainy")
    result = apply_weather_change(db, "u1", SUNNY, None, _utc(2024, 3, 6, 3))
    assert result == {"rewritten": 0, "retired": 1, "created": 0}


def test_weather_listener_updates_every_user_with_open_suggestions():
    db = _new_db()
    factory = sessionmaker(autocommit=False, autoflush=False, bind=db.get_bind())
    created = datetime(2024, 3, 6, 2)
    outdoor = {"weather_dependent": True, "ideal_weather_condition": "sunny"}
    alice = _stored(db, "alice-walk", created, user_id="alice", **outdoor)
    bob = _stored(db, "bob-walk", created, user_id="bob", **outdoor)
    carol = _stored(db, "carol-walk", created, completed=True, user_id="carol", **outdoor)

    weather_change_listener(factory)(RAIN, None)

    for row in (alice, bob):
        db.refresh(row)
        assert row.description.startswith("Weather has changed to rainy")
    db.refresh(carol)
    assert carol.description == "carol-walk"
    assert users_with_open_recommendations(db) == ["alice", "bob"]
