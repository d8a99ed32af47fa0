from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Skogsnet runtime configuration.
    Reads SKOGSNET_* environment variables and an optional .env file.
    """

    # Storage
    db_path: str = Field(default="measurements.db", description="SQLite database file")
    export_csv: str = Field(default="", description="Export measurements to this CSV file and exit")

    # Device
    serial_port: str = Field(default="/dev/ttyACM0", description="Serial port name")
    baud_rate: int = Field(default=9600, gt=0, description="Serial baud rate")
    serial_timeout: float = Field(default=1.0, gt=0, description="Serial read timeout in seconds")
    read_retry_delay: float = Field(default=0.5, gt=0, description="Delay after an empty read")

    # Weather
    weather_city: str = Field(default="", description="City for weather data (empty disables)")
    weather_interval: float = Field(default=60.0, gt=0, description="Seconds between fetches")
    weather_retry_delay: float = Field(default=0.5, gt=0, description="Startup retry delay")
    weather_timeout: float = Field(default=10.0, gt=0, description="HTTP timeout per request")

    # Dashboard
    dashboard_enabled: bool = Field(default=True, description="Serve the dashboard API")
    dashboard_host: str = Field(default="0.0.0.0", description="Host to bind the API to")
    dashboard_port: int = Field(default=8080, ge=1, le=65535, description="Port to bind the API to")
    shutdown_grace: float = Field(default=5.0, ge=0, description="Drain window on shutdown")

    # Logging
    log_level: str = "INFO"
    log_file: str = ""
    throttle_interval: float = Field(default=5.0, ge=0, description="Repeat-log suppression window")

    model_config = SettingsConfigDict(
        env_prefix="SKOGSNET_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


# Global settings instance
settings = Settings()
