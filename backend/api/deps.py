from datetime import date

from fastapi import HTTPException, Request
from sqlalchemy.orm import Session

from config import settings
from db.models import UserProfile
from services.errors import (
    FitnessEngineError,
    GoalGenerationError,
    MalformedDataError,
    NotFoundError,
    PermissionDeniedError,
    UpstreamUnavailableError,
)
from services.food_search_service import FoodSearchService
from services.weather_service import WeatherService
from utils.datetime_utils import today_for_tz

_STATUS_BY_ERROR = (
    (NotFoundError, 404),
    (PermissionDeniedError, 403),
    (UpstreamUnavailableError, 503),
    (MalformedDataError, 500),
)


def get_weather_service(request: Request) -> WeatherService:
    return request.app.state.weather_service


def get_food_search_service(request: Request) -> FoodSearchService:
    return request.app.state.food_search_service


def user_today(db: Session, user_id: str) -> date:
    profile = db.query(UserProfile).filter(UserProfile.user_id == user_id).first()
    return today_for_tz((profile.timezone if profile else None) or settings.DEFAULT_TIMEZONE)


def http_error(exc: Exception) -> HTTPException:
    """Translate a service failure into the HTTP error the routers raise."""
    if isinstance(exc, GoalGenerationError):
        return HTTPException(
            status_code=404 if exc.cause_tag == NotFoundError.tag else 500,
            detail={"error": exc.tag, "cause": exc.cause_tag, "message": exc.message},
        )
    if isinstance(exc, FitnessEngineError):
        for cls, status_code in _STATUS_BY_ERROR:
            if isinstance(exc, cls):
                return HTTPException(status_code=status_code, detail={"error": exc.tag, "message": exc.message})
        return HTTPException(status_code=500, detail={"error": exc.tag, "message": exc.message})
    if isinstance(exc, ValueError):
        return HTTPException(status_code=422, detail=str(exc))
    return HTTPException(status_code=500, detail="Internal error")
