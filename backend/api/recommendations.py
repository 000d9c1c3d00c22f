from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from api.deps import get_weather_service, http_error
from db.database import get_db
from db.models import FitnessRecommendation
from services.errors import NotFoundError
from services.recommendation_service import (
    complete_recommendation,
    generate_recommendations,
    get_active_recommendations,
)
from services.weather_service import WeatherService
from utils.datetime_utils import utcnow

router = APIRouter(prefix="/users/{user_id}/recommendations", tags=["recommendations"])

_OPTIONAL_FIELDS = ("ideal_weather_condition", "ideal_time_of_day", "expires_at")


def recommendation_to_dict(row: FitnessRecommendation) -> dict:
    out = {
        "id": row.id,
        "user_id": row.user_id,
        "title": row.title,
        "description": row.description,
        "type": row.rec_type,
        "priority": row.priority,
        "completed": row.completed,
        "weather_dependent": row.weather_dependent,
        "time_of_day_dependent": row.time_of_day_dependent,
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }
    # Unused optional fields are absent, not null.
    for name in _OPTIONAL_FIELDS:
        value = getattr(row, name)
        if value is not None:
            out[name] = value.isoformat() if hasattr(value, "isoformat") else value
    return out


@router.post("/generate", status_code=201)
async def generate(
    user_id: str,
    db: Session = Depends(get_db),
    weather_service: WeatherService = Depends(get_weather_service),
):
    weather = await weather_service.get_current_weather()
    try:
        rows = generate_recommendations(db, user_id, weather, utcnow())
    except NotFoundError as exc:
        raise http_error(exc) from exc
    return [recommendation_to_dict(r) for r in rows]


@router.get("")
def list_active(user_id: str, db: Session = Depends(get_db)):
    return [recommendation_to_dict(r) for r in get_active_recommendations(db, user_id, utcnow())]


@router.post("/{rec_id}/complete")
def complete(user_id: str, rec_id: str, db: Session = Depends(get_db)):
    try:
        row = complete_recommendation(db, user_id, rec_id)
    except NotFoundError as exc:
        raise http_error(exc) from exc
    return recommendation_to_dict(row)
