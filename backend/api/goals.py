from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.deps import http_error, user_today
from db.database import get_db
from services.errors import GoalGenerationError, NotFoundError
from services.goal_generation_service import TIME_FRAMES, generate_goals_for_user, goal_to_dict
from services.goal_tracking_service import (
    achievement_to_dict,
    get_achievements,
    get_active_goals,
    get_completed_goals,
    sync_goal_progress,
    update_goal_progress,
)

router = APIRouter(prefix="/users/{user_id}", tags=["goals"])


class GoalProgressRequest(BaseModel):
    progress: float = Field(ge=0)


@router.post("/goals/generate", status_code=201)
def generate_goals(user_id: str, db: Session = Depends(get_db)):
    try:
        goals = generate_goals_for_user(db, user_id, user_today(db, user_id))
    except GoalGenerationError as exc:
        raise http_error(exc) from exc
    return [goal_to_dict(g) for g in goals]


@router.get("/goals")
def list_goals(
    user_id: str,
    time_frame: Optional[str] = None,
    db: Session = Depends(get_db),
):
    if time_frame and time_frame not in TIME_FRAMES:
        raise HTTPException(status_code=422, detail=f"time_frame must be one of {list(TIME_FRAMES)}")
    goals = get_active_goals(db, user_id, user_today(db, user_id), time_frame=time_frame)
    return [goal_to_dict(g) for g in goals]


@router.get("/goals/completed")
def list_completed_goals(
    user_id: str,
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    return [goal_to_dict(g) for g in get_completed_goals(db, user_id, limit=limit)]


@router.put("/goals/{goal_id}/progress")
def set_goal_progress(
    user_id: str,
    goal_id: str,
    req: GoalProgressRequest,
    db: Session = Depends(get_db),
):
    try:
        goal = update_goal_progress(db, user_id, goal_id, req.progress)
    except (NotFoundError, ValueError) as exc:
        raise http_error(exc) from exc
    return goal_to_dict(goal)


@router.post("/goals/sync")
def sync_goals(user_id: str, db: Session = Depends(get_db)):
    today = user_today(db, user_id)
    updated = sync_goal_progress(db, user_id, today)
    return {
        "updated": updated,
        "goals": [goal_to_dict(g) for g in get_active_goals(db, user_id, today)],
    }


@router.get("/achievements")
def list_achievements(user_id: str, db: Session = Depends(get_db)):
    return [achievement_to_dict(a) for a in get_achievements(db, user_id)]
