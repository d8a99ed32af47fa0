import structlog

from skogsnet.database import Store
from skogsnet.models import Reading, WeatherSample

logger = structlog.get_logger("Correlation")

# Nearest weather sample must be strictly closer than this to be linked
WEATHER_MATCH_WINDOW_MS = 600_000


class CorrelationWriter:
    """Writes both streams, linking each measurement to its nearest weather sample.

    The link is chosen once, when the measurement is inserted. A closer sample
    that arrives later does not update existing rows, and the lookup and the
    insert are not atomic with respect to a concurrent weather write.
    """

    def __init__(self, store: Store, window_ms: int = WEATHER_MATCH_WINDOW_MS) -> None:
        self.store = store
        self.window_ms = window_ms

    def write_measurement(self, reading: Reading) -> int:
        """Insert a reading. Raises StoreWriteError."""
        weather_id = self.store.nearest_weather_id(reading.timestamp, self.window_ms)
        measurement_id = self.store.append_measurement(
            reading.timestamp, reading.temperature, reading.humidity, weather_id
        )
        logger.debug(
            "Measurement stored",
            id=measurement_id,
            timestamp=reading.timestamp,
            weather_id=weather_id,
        )
        return measurement_id

    def write_weather(self, sample: WeatherSample) -> int:
        """Insert a weather sample as a new row. Raises StoreWriteError."""
        weather_id = self.store.append_weather(sample.timestamp, sample)
        logger.info(f"Stored weather data for {sample.city} at {sample.timestamp}", id=weather_id)
        return weather_id
