import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import settings
from db.database import SessionLocal, engine, Base
import db.models  # noqa: F401  registers tables on Base.metadata
from api.activity import router as activity_router
from api.food import router as food_router
from api.goals import router as goals_router
from api.profiles import router as profiles_router
from api.recommendations import router as recommendations_router
from api.weather import router as weather_router
from services.food_search_service import build_food_search_service
from services.recommendation_service import weather_change_listener
from services.weather_service import build_weather_service

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
settings.validate_runtime_configuration()

# Create all tables
Base.metadata.create_all(bind=engine)

app = FastAPI(title=settings.APP_NAME, version="1.0.0")

# One weather cache and one food index per process.
app.state.weather_service = build_weather_service()
app.state.weather_service.add_refresh_listener(weather_change_listener(SessionLocal))
app.state.food_search_service = build_food_search_service()

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(profiles_router, prefix="/api")
app.include_router(activity_router, prefix="/api")
app.include_router(goals_router, prefix="/api")
app.include_router(recommendations_router, prefix="/api")
app.include_router(weather_router, prefix="/api")
app.include_router(food_router, prefix="/api")


@app.get("/api/health")
def health_check():
    return {
        "status": "ok",
        "app": settings.APP_NAME,
        "food_search_ready": app.state.food_search_service.is_initialized,
    }
