import math
import sys

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from skogsnet.config import Settings
from skogsnet.database import Store
from skogsnet.exceptions import ExportError, StoreOpenError

logger = structlog.get_logger("Export")

CSV_FIELDS = [
    "timestamp",
    "temperature",
    "humidity",
    "city",
    "weather_temp",
    "weather_humidity",
    "wind_speed",
    "wind_deg",
    "clouds",
    "weather_code",
    "weather_description",
]

EXPORT_QUERY = text(
    """
    SELECT m.timestamp, m.temperature, m.humidity,
        w.city, w.temp, w.humidity, w.wind_speed, w.wind_deg, w.clouds, w.weather_code, w.description
    FROM measurements m
    LEFT JOIN weather w ON m.weather_id = w.id
    ORDER BY m.timestamp ASC
    """
)


def _truncate_one_decimal(value: float | None) -> float:
    if value is None:
        return 0.0
    return math.trunc(value * 10) / 10


def _int_or_zero(value: int | None) -> int:
    return 0 if value is None else int(value)


def format_row(row: tuple) -> str:
    """Render one joined row. Weather floats are truncated, measurement floats rounded."""
    ts, temp, hum, city, w_temp, w_hum, wind_speed, wind_deg, clouds, code, description = row
    return "%d,%.1f,%.1f,%s,%.1f,%d,%.1f,%d,%d,%d,%s\n" % (
        ts,
        temp,
        hum,
        city or "",
        _truncate_one_decimal(w_temp),
        _int_or_zero(w_hum),
        _truncate_one_decimal(wind_speed),
        _int_or_zero(wind_deg),
        _int_or_zero(clouds),
        _int_or_zero(code),
        description or "",
    )


def export_csv(store: Store, path: str) -> int:
    """Write every measurement, oldest first, to ``path``. Returns the row count.

    Any failure raises ExportError; a partially written file is left in place.
    """
    count = 0
    try:
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(",".join(CSV_FIELDS) + "\n")
            with store.connect() as conn:
                for row in conn.execute(EXPORT_QUERY):
                    f.write(format_row(tuple(row)))
                    count += 1
    except (OSError, SQLAlchemyError) as e:
        raise ExportError(f"Export to CSV failed: {e}") from e
    return count


def export_and_exit(settings: Settings) -> None:
    """Export to ``settings.export_csv`` and terminate the process."""
    try:
        store = Store.open(settings.db_path)
    except StoreOpenError as e:
        logger.error(f"Failed to open database: {e}")
        sys.exit(1)

    try:
        count = export_csv(store, settings.export_csv)
    except ExportError as e:
        logger.error(str(e))
        sys.exit(1)
    finally:
        store.close()

    logger.info(f"Exported measurements to {settings.export_csv}", rows=count)
    sys.exit(0)
