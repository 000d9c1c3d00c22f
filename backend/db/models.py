from sqlalchemy import (
    Column, Integer, Text, Float, Boolean, Date, Index,
    DateTime, UniqueConstraint,
)
from db.database import Base
from utils.datetime_utils import utcnow_naive


class UserProfile(Base):
    __tablename__ = "user_profiles"

    user_id = Column(Text, primary_key=True)
    display_name = Column(Text)
    fitness_goal = Column(Text, nullable=False, default="maintenance")  # weightLoss | maintenance | muscleGain
    weight_kg = Column(Float)
    daily_calorie_goal = Column(Float)
    timezone = Column(Text)
    created_at = Column(DateTime, default=utcnow_naive)
    updated_at = Column(DateTime, default=utcnow_naive, onupdate=utcnow_naive)


class DailyActivityRecord(Base):
    __tablename__ = "activity_records"
    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_activity_records_user_date"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Text, nullable=False, index=True)
    date = Column(Date, nullable=False)
    steps = Column(Integer, nullable=False, default=0)
    calories_consumed = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime, default=utcnow_naive)
    updated_at = Column(DateTime, default=utcnow_naive, onupdate=utcnow_naive)


class FitnessGoal(Base):
    __tablename__ = "fitness_goals"
    __table_args__ = (
        Index("ix_fitness_goals_user_type_frame_end", "user_id", "goal_type", "time_frame", "end_date"),
    )

    id = Column(Text, primary_key=True)
    user_id = Column(Text, nullable=False)
    goal_type = Column(Text, nullable=False)  # step_count | active_minutes | calorie_intake | distance | weight | calories_burned
    time_frame = Column(Text, nullable=False)  # daily | weekly | monthly
    target = Column(Float, nullable=False)
    current = Column(Float, nullable=False, default=0.0)
    status = Column(Text, nullable=False, default="pending")  # pending | active | completed | failed
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    description = Column(Text)
    streak = Column(Integer, nullable=False, default=0)
    previous_target = Column(Float, nullable=True)
    created_at = Column(DateTime, default=utcnow_naive)
    updated_at = Column(DateTime, default=utcnow_naive, onupdate=utcnow_naive)


class FitnessRecommendation(Base):
    __tablename__ = "fitness_recommendations"
    __table_args__ = (
        Index("ix_fitness_recommendations_user_completed", "user_id", "completed"),
    )

    id = Column(Text, primary_key=True)
    user_id = Column(Text, nullable=False)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    rec_type = Column(Text, nullable=False)  # exercise | nutrition | recovery | general
    priority = Column(Text, nullable=False, default="medium")  # low | medium | high
    completed = Column(Boolean, nullable=False, default=False)
    weather_dependent = Column(Boolean, nullable=False, default=False)
    ideal_weather_condition = Column(Text)
    time_of_day_dependent = Column(Boolean, nullable=False, default=False)
    ideal_time_of_day = Column(Text)
    expires_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow_naive)
    updated_at = Column(DateTime, default=utcnow_naive, onupdate=utcnow_naive)


class Achievement(Base):
    __tablename__ = "achievements"
    __table_args__ = (
        UniqueConstraint("user_id", "achievement_key", name="uq_achievements_user_key"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Text, nullable=False)
    achievement_key = Column(Text, nullable=False)
    title = Column(Text, nullable=False)
    description = Column(Text)
    icon = Column(Text)
    progress = Column(Integer, nullable=False, default=0)
    requirement = Column(Text)
    unlocked_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow_naive)
    updated_at = Column(DateTime, default=utcnow_naive, onupdate=utcnow_naive)
