from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.deps import http_error
from db.database import get_db
from services.errors import NotFoundError
from services.profile_service import get_profile, profile_to_dict, upsert_profile

router = APIRouter(prefix="/users/{user_id}", tags=["profiles"])


class ProfileUpdateRequest(BaseModel):
    display_name: Optional[str] = Field(default=None, max_length=200)
    fitness_goal: Optional[str] = None
    weight_kg: Optional[float] = None
    daily_calorie_goal: Optional[float] = None
    timezone: Optional[str] = None


@router.get("/profile")
def read_profile(user_id: str, db: Session = Depends(get_db)):
    try:
        return profile_to_dict(get_profile(db, user_id))
    except NotFoundError as exc:
        raise http_error(exc) from exc


@router.put("/profile")
def write_profile(user_id: str, req: ProfileUpdateRequest, db: Session = Depends(get_db)):
    try:
        profile = upsert_profile(db, user_id, req.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise http_error(exc) from exc
    return profile_to_dict(profile)
