from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.deps import http_error, user_today
from db.database import get_db
from services.analytics_service import load_user_analytics, record_activity, summarize_analytics

router = APIRouter(prefix="/users/{user_id}", tags=["activity"])


class ActivityLogRequest(BaseModel):
    day: Optional[date] = Field(default=None, alias="date")
    steps: int = Field(default=0, ge=0)
    calories_consumed: float = Field(default=0.0, ge=0)


@router.post("/activity", status_code=201)
def log_activity(user_id: str, req: ActivityLogRequest, db: Session = Depends(get_db)):
    day = req.day or user_today(db, user_id)
    try:
        record = record_activity(db, user_id, day, steps=req.steps, calories_consumed=req.calories_consumed)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {
        "user_id": record.user_id,
        "date": record.date.isoformat(),
        "steps": record.steps,
        "calories_consumed": record.calories_consumed,
    }


@router.get("/analytics")
def read_analytics(
    user_id: str,
    days: int = Query(default=7, ge=0, le=365),
    db: Session = Depends(get_db),
):
    analytics = load_user_analytics(db, user_id, days, user_today(db, user_id))
    return {
        "days": [row.to_dict() for row in analytics],
        "summary": summarize_analytics(analytics).to_dict(),
    }
