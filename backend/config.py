from pydantic_settings import BaseSettings
from pathlib import Path


BACKEND_DIR = Path(__file__).resolve().parent


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"  # development | test | staging | production
    APP_NAME: str = "Fitness Coach"
    LOG_LEVEL: str = "INFO"
    DATABASE_URL: str = "sqlite:///data/fitness.db"
    DATA_DIR: Path = Path("data")
    CORS_ORIGINS: list[str] = [
        "http://localhost:8081",
        "http://localhost:19006",
        "http://127.0.0.1:8081",
    ]
    DEFAULT_TIMEZONE: str = "UTC"

    GOAL_HISTORY_DAYS: int = 30

    RECOMMENDATION_HISTORY_DAYS: int = 7
    RECOMMENDATION_RETENTION_DAYS: int = 2
    ACTIVE_RECOMMENDATION_LIMIT: int = 10

    OPENWEATHER_API_KEY: str | None = None
    OPENWEATHER_BASE_URL: str = "https://api.openweathermap.org"
    WEATHER_CACHE_TTL_SECONDS: int = 30 * 60
    WEATHER_TIMEOUT_SECONDS: int = 8
    WEATHER_FETCH_MAX_ATTEMPTS: int = 2
    WEATHER_RETRY_INTERVAL_SECONDS: float = 1.0
    DEFAULT_LATITUDE: float | None = None
    DEFAULT_LONGITUDE: float | None = None

    FOOD_CORPUS_DIR: Path = BACKEND_DIR / "data" / "food"
    FOOD_CACHE_DIR: Path = Path("data/cache/food")
    FOOD_SEARCH_INIT_RETRY_SECONDS: float = 5.0
    FOOD_SEARCH_DEFAULT_LIMIT: int = 15
    FOOD_SEARCH_MIN_SIMILARITY: float = 0.1

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def is_production_like(self) -> bool:
        return (self.ENVIRONMENT or "").strip().lower() in {"production", "prod", "staging"}

    def validate_runtime_configuration(self) -> None:
        errors: list[str] = []
        if self.WEATHER_CACHE_TTL_SECONDS <= 0:
            errors.append("WEATHER_CACHE_TTL_SECONDS must be positive")
        if self.WEATHER_FETCH_MAX_ATTEMPTS < 1:
            errors.append("WEATHER_FETCH_MAX_ATTEMPTS must be at least 1")
        if self.WEATHER_RETRY_INTERVAL_SECONDS < 0:
            errors.append("WEATHER_RETRY_INTERVAL_SECONDS must not be negative")
        if (self.DEFAULT_LATITUDE is None) != (self.DEFAULT_LONGITUDE is None):
            errors.append("DEFAULT_LATITUDE and DEFAULT_LONGITUDE must be set together")
        if self.FOOD_SEARCH_DEFAULT_LIMIT < 1:
            errors.append("FOOD_SEARCH_DEFAULT_LIMIT must be at least 1")
        if self.RECOMMENDATION_RETENTION_DAYS < 0:
            errors.append("RECOMMENDATION_RETENTION_DAYS must not be negative")
        if self.is_production_like and not self.OPENWEATHER_API_KEY:
            errors.append("OPENWEATHER_API_KEY is required in production-like environments")
        if errors:
            joined = "; ".join(errors)
            raise RuntimeError(f"Invalid configuration: {joined}")


settings = Settings()
settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
