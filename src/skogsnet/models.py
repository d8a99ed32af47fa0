from pydantic import BaseModel, ConfigDict, Field


class Reading(BaseModel):
    """A decoded device reading, stamped by the core at decode time."""

    timestamp: int = Field(ge=0, description="Epoch milliseconds")
    temperature: float
    humidity: float


class WeatherSample(BaseModel):
    """
    One ambient-weather snapshot for a city.
    Stored once per fetch, never updated.
    """

    timestamp: int = Field(default=0, ge=0, description="Epoch milliseconds, set at fetch time")
    city: str
    temp: float = 0.0
    humidity: int = Field(default=0, ge=0, le=100)
    wind_speed: float = Field(default=0.0, ge=0)
    wind_deg: int = 0
    clouds: int = Field(default=0, ge=0, le=100)
    weather_code: int = 0
    description: str = ""


class SeriesRow(BaseModel):
    """A measurement (or bucket of measurements) joined to its weather.

    Serialised with the keys the frontend expects.
    """

    model_config = ConfigDict(populate_by_name=True)

    aggregated_timestamp: int = Field(alias="AggregatedTimestamp")
    avg_temperature: float = Field(alias="AvgTemperature")
    avg_humidity: float = Field(alias="AvgHumidity")
    city: str = Field(default="", alias="City")
    avg_weather_temp: float = Field(default=0.0, alias="AvgWeatherTemp")
    avg_weather_humidity: float = Field(default=0.0, alias="AvgWeatherHumidity")
    avg_wind_speed: float = Field(default=0.0, alias="AvgWindSpeed")
    avg_wind_deg: float = Field(default=0.0, alias="AvgWindDeg")
    avg_clouds: float = Field(default=0.0, alias="AvgClouds")
    avg_weather_code: float = Field(default=0.0, alias="AvgWeatherCode")
    description: str = Field(default="", alias="Description")


class LatestResponse(BaseModel):
    latest: SeriesRow
    trajectory: float | None = None
