import threading
import typing

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from skogsnet.exceptions import (
    NoResultsError,
    WeatherDecodeError,
    WeatherNetworkError,
    WeatherStatusError,
)
from skogsnet.models import WeatherSample

logger = structlog.get_logger("Weather")

GEOCODING_URL = "https://geocoding-api.open-meteo.com/v1/search"
FORECAST_URL = "https://api.open-meteo.com/v1/forecast"

CURRENT_FIELDS = [
    "temperature_2m",
    "weather_code",
    "relative_humidity_2m",
    "wind_speed_10m",
    "wind_direction_10m",
    "cloud_cover",
]

# https://open-meteo.com/en/docs#weather_variable_documentation
WEATHER_CODES: dict[int, str] = {
    0: "Clear sky",
    1: "Mainly clear",
    2: "Partly cloudy",
    3: "Overcast",
    45: "Fog",
    48: "Depositing rime fog",
    51: "Light drizzle",
    53: "Moderate drizzle",
    55: "Dense drizzle",
    56: "Light freezing drizzle",
    57: "Dense freezing drizzle",
    61: "Slight rain",
    63: "Moderate rain",
    65: "Heavy rain",
    66: "Light freezing rain",
    67: "Heavy freezing rain",
    71: "Slight snow fall",
    73: "Moderate snow fall",
    75: "Heavy snow fall",
    77: "Snow grains",
    80: "Slight rain showers",
    81: "Moderate rain showers",
    82: "Violent rain showers",
    85: "Slight snow showers",
    86: "Heavy snow showers",
    95: "Thunderstorm",
    96: "Thunderstorm with slight hail",
    99: "Thunderstorm with heavy hail",
}

COMPASS_POINTS = ["N", "NE", "E", "SE", "S", "SW", "W", "NW"]


def weather_code_to_sentence(code: int) -> str:
    return WEATHER_CODES.get(code, "Unknown weather code")


def wind_direction_to_compass(deg: int) -> str:
    """8-point compass direction, each point centred on a 45 degree sector."""
    if deg < 0 or deg > 359:
        return ""
    return COMPASS_POINTS[int((deg + 22.5) / 45.0) % 8]


class GeoResult(BaseModel):
    name: str
    latitude: float
    longitude: float


class CurrentWeather(BaseModel):
    temperature_2m: float = 0.0
    weather_code: int = 0
    relative_humidity_2m: int = 0
    wind_speed_10m: float = 0.0
    wind_direction_10m: int = 0
    cloud_cover: int = 0


class WeatherProvider(typing.Protocol):
    def fetch(self, city: str) -> WeatherSample:
        """Current weather for ``city``. Raises WeatherFetchError."""
        ...


class OpenMeteoProvider:
    """Weather from Open-Meteo: geocode the city, then read current conditions."""

    def __init__(self, client: httpx.Client | None = None, timeout: float = 10.0) -> None:
        self.client = client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        self.client.close()

    def _get_json(self, url: str, params: dict[str, typing.Any]) -> typing.Any:
        try:
            response = self.client.get(url, params=params)
        except httpx.HTTPError as e:
            raise WeatherNetworkError(f"request to {url} failed: {e}") from e

        if response.status_code != httpx.codes.OK:
            raise WeatherStatusError(url, response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise WeatherDecodeError(f"failed to decode response from {url}: {e}") from e

    def geocode(self, city: str) -> GeoResult:
        data = self._get_json(GEOCODING_URL, {"name": city, "count": 1})
        results = data.get("results") if isinstance(data, dict) else None
        if not results:
            raise NoResultsError(city)
        try:
            return GeoResult.model_validate(results[0])
        except ValidationError as e:
            raise WeatherDecodeError(f"failed to decode geocoding result: {e}") from e

    def fetch(self, city: str) -> WeatherSample:
        geo = self.geocode(city)
        data = self._get_json(
            FORECAST_URL,
            {
                "latitude": f"{geo.latitude:.4f}",
                "longitude": f"{geo.longitude:.4f}",
                "current": ",".join(CURRENT_FIELDS),
                "wind_speed_unit": "ms",
                "temperature_unit": "celsius",
            },
        )
        try:
            current = CurrentWeather.model_validate(data["current"])
            return WeatherSample(
                city=geo.name,
                temp=current.temperature_2m,
                humidity=current.relative_humidity_2m,
                wind_speed=current.wind_speed_10m,
                wind_deg=current.wind_direction_10m,
                clouds=current.cloud_cover,
                weather_code=current.weather_code,
                description=weather_code_to_sentence(current.weather_code),
            )
        except (KeyError, TypeError, ValidationError) as e:
            raise WeatherDecodeError(f"failed to decode weather data: {e}") from e


class LatestWeather:
    """Single-writer, many-reader holder of the most recent weather sample.

    The refresher swaps in new samples; readers get whichever sample was
    current when they asked. Samples are never mutated after publication.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sample: WeatherSample | None = None

    def publish(self, sample: WeatherSample) -> None:
        with self._lock:
            self._sample = sample

    def get(self) -> WeatherSample | None:
        with self._lock:
            return self._sample
