from fastapi import APIRouter, Depends

from api.deps import get_weather_service
from services.weather_service import WeatherContext, WeatherService

router = APIRouter(prefix="/users/{user_id}", tags=["weather"])


@router.get("/weather")
async def current_weather(
    user_id: str,
    weather_service: WeatherService = Depends(get_weather_service),
):
    # Recommendations are updated by the listener installed in main.
    refreshed = {"value": False}

    def on_refresh(weather: WeatherContext, previous: WeatherContext | None) -> None:
        refreshed["value"] = True

    weather = await weather_service.get_current_weather(on_refresh=on_refresh)
    return {**weather.to_dict(), "refreshed": refreshed["value"]}
