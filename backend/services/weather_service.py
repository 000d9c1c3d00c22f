"""Current-weather context with a 30 minute cache and a fixed fallback.

`WeatherService.get_current_weather` never raises: location denial,
network failures and malformed payloads all resolve to DEFAULT_WEATHER.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

import httpx

from config import settings
from services.errors import MalformedDataError, PermissionDeniedError, UpstreamUnavailableError

logger = logging.getLogger(__name__)

WEATHER_CONDITIONS = ("sunny", "cloudy", "rainy", "snowy")
UNFRIENDLY_CONDITIONS = {"rain", "drizzle", "thunderstorm", "snow"}
MIN_OUTDOOR_TEMP_C = 5
MAX_OUTDOOR_TEMP_C = 35
MAX_OUTDOOR_WIND_MS = 10

_CONDITION_MAP = {
    "clear": "sunny",
    "clouds": "cloudy",
    "rain": "rainy",
    "drizzle": "rainy",
    "thunderstorm": "rainy",
    "snow": "snowy",
}


@dataclass(frozen=True)
class WeatherContext:
    condition: str
    temperature: int  # degC, rounded
    humidity: float
    wind_speed: float  # m/s
    is_outdoor_friendly: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "condition": self.condition,
            "temperature": self.temperature,
            "humidity": self.humidity,
            "wind_speed": self.wind_speed,
            "is_outdoor_friendly": self.is_outdoor_friendly,
        }


DEFAULT_WEATHER = WeatherContext(
    condition="sunny",
    temperature=22,
    humidity=60,
    wind_speed=5,
    is_outdoor_friendly=True,
)


@dataclass(frozen=True)
class RawWeather:
    """Provider reading before mapping; `condition` uses the provider's vocabulary."""

    condition: str
    temperature: float
    humidity: float
    wind_speed: float


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 2
    interval_seconds: float = 1.0


class LocationProvider(Protocol):
    async def get_coordinates(self) -> tuple[float, float]: ...


class WeatherClient(Protocol):
    async def fetch_current(self, latitude: float, longitude: float) -> RawWeather: ...


RefreshListener = Callable[[WeatherContext, "WeatherContext | None"], Any]


def map_weather_condition(raw: str) -> str:
    return _CONDITION_MAP.get((raw or "").strip().lower(), "cloudy")


def is_outdoor_friendly(raw_condition: str, temperature: float, wind_speed: float) -> bool:
    return (
        (raw_condition or "").strip().lower() not in UNFRIENDLY_CONDITIONS
        and MIN_OUTDOOR_TEMP_C <= temperature <= MAX_OUTDOOR_TEMP_C
        and wind_speed <= MAX_OUTDOOR_WIND_MS
    )


def to_weather_context(raw: RawWeather) -> WeatherContext:
    return WeatherContext(
        condition=map_weather_condition(raw.condition),
        temperature=int(round(raw.temperature)),
        humidity=raw.humidity,
        wind_speed=raw.wind_speed,
        is_outdoor_friendly=is_outdoor_friendly(raw.condition, raw.temperature, raw.wind_speed),
    )


class ConfiguredLocationProvider:
    """Coordinates the user shared through settings; unset means not shared."""

    def __init__(self, latitude: float | None = None, longitude: float | None = None):
        self.latitude = latitude
        self.longitude = longitude

    async def get_coordinates(self) -> tuple[float, float]:
        if self.latitude is None or self.longitude is None:
            raise PermissionDeniedError("Location permission not granted")
        return float(self.latitude), float(self.longitude)


class OpenWeatherClient:
    """OpenWeatherMap current-conditions endpoint, metric units."""

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://api.openweathermap.org",
        timeout: float = 8.0,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def fetch_current(self, latitude: float, longitude: float) -> RawWeather:
        if not self.api_key:
            raise UpstreamUnavailableError("OpenWeather API key is not configured")
        params = {
            "lat": latitude,
            "lon": longitude,
            "units": "metric",
            "appid": self.api_key,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.get(f"{self.base_url}/data/2.5/weather", params=params)
        except httpx.HTTPError as exc:
            raise UpstreamUnavailableError(f"Weather API request failed: {exc}") from exc
        if resp.status_code != 200:
            raise UpstreamUnavailableError(f"Weather API error: HTTP {resp.status_code}")
        try:
            return self.parse_payload(resp.json())
        except ValueError as exc:
            raise MalformedDataError(f"Weather API returned invalid JSON: {exc}") from exc

    @staticmethod
    def parse_payload(data: Any) -> RawWeather:
        try:
            return RawWeather(
                condition=str(data["weather"][0]["main"]),
                temperature=float(data["main"]["temp"]),
                humidity=float(data["main"]["humidity"]),
                wind_speed=float(data["wind"]["speed"]),
            )
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise MalformedDataError(f"Unexpected weather payload: {exc}") from exc


class WeatherService:
    def __init__(
        self,
        location_provider: LocationProvider,
        weather_client: WeatherClient,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        ttl_seconds: float = 1800,
        retry_policy: RetryPolicy | None = None,
    ):
        self.location_provider = location_provider
        self.weather_client = weather_client
        self.clock = clock
        self.sleep = sleep
        self.ttl_seconds = ttl_seconds
        self.retry_policy = retry_policy or RetryPolicy()
        self._cached: WeatherContext | None = None
        self._fetched_at: float | None = None
        self._listeners: list[RefreshListener] = []

    @property
    def cached(self) -> WeatherContext | None:
        return self._cached

    def is_fresh(self) -> bool:
        if self._cached is None or self._fetched_at is None:
            return False
        return self.clock() - self._fetched_at < self.ttl_seconds

    def add_refresh_listener(self, listener: RefreshListener) -> None:
        """Call `listener(new, previous)` after every successful real fetch."""
        self._listeners.append(listener)

    def invalidate(self) -> None:
        self._cached = None
        self._fetched_at = None

    async def _fetch_with_retry(self, latitude: float, longitude: float) -> RawWeather:
        attempts = max(1, self.retry_policy.max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                return await self.weather_client.fetch_current(latitude, longitude)
            except PermissionDeniedError:
                raise
            except Exception as exc:
                if attempt >= attempts:
                    raise
                logger.warning(f"Weather fetch attempt {attempt}/{attempts} failed: {exc}")
                await self.sleep(self.retry_policy.interval_seconds)
        raise UpstreamUnavailableError("Weather fetch exhausted retries")

    async def refresh(self) -> WeatherContext:
        """Fetch unconditionally and update the cache. Raises on failure."""
        latitude, longitude = await self.location_provider.get_coordinates()
        raw = await self._fetch_with_retry(latitude, longitude)
        context = to_weather_context(raw)
        self._cached = context
        self._fetched_at = self.clock()
        return context

    async def get_current_weather(self, on_refresh: RefreshListener | None = None) -> WeatherContext:
        if self.is_fresh():
            return self._cached

        previous = self._cached
        try:
            context = await self.refresh()
        except Exception as exc:
            tag = getattr(exc, "tag", type(exc).__name__)
            logger.warning(f"Using default weather ({tag}): {exc}")
            return DEFAULT_WEATHER

        listeners = list(self._listeners)
        if on_refresh is not None:
            listeners.append(on_refresh)
        await self._notify(listeners, context, previous)
        return context

    async def _notify(
        self,
        listeners: list[RefreshListener],
        context: WeatherContext,
        previous: WeatherContext | None,
    ) -> None:
        # A failing listener never hides the real weather from the caller.
        for listener in listeners:
            try:
                result = listener(context, previous)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                logger.warning(f"Weather refresh listener failed: {exc}")


def build_weather_service() -> WeatherService:
    return WeatherService(
        location_provider=ConfiguredLocationProvider(settings.DEFAULT_LATITUDE, settings.DEFAULT_LONGITUDE),
        weather_client=OpenWeatherClient(
            settings.OPENWEATHER_API_KEY,
            base_url=settings.OPENWEATHER_BASE_URL,
            timeout=settings.WEATHER_TIMEOUT_SECONDS,
        ),
        ttl_seconds=settings.WEATHER_CACHE_TTL_SECONDS,
        retry_policy=RetryPolicy(
            max_attempts=settings.WEATHER_FETCH_MAX_ATTEMPTS,
            interval_seconds=settings.WEATHER_RETRY_INTERVAL_SECONDS,
        ),
    )
