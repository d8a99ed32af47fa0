"""Dashboard queries: latest reading with trend, and time-bucketed series.

Every series query groups measurements into buckets with a single
``BucketStrategy``. A bucket starts at ``floor(ts_ms / 1000 / width) * width * 1000``,
so identical data always yields identical buckets no matter when "now" was
captured within the query window.
"""

import enum
import typing
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from skogsnet.core.clock import Clock, SystemClock
from skogsnet.database import Store
from skogsnet.exceptions import QueryError
from skogsnet.models import SeriesRow

logger = structlog.get_logger("Aggregation")

SECONDS_PER_DAY = 86400
DEFAULT_LATEST_COUNT = 10


class Alignment(str, enum.Enum):
    FIXED = "fixed"
    CALENDAR = "calendar"


@dataclass(frozen=True)
class BucketStrategy:
    """Fixed-width time buckets.

    ``CALENDAR`` buckets must tile a UTC day exactly so that every bucket
    boundary falls on a calendar boundary.
    """

    width_seconds: int
    alignment: Alignment = Alignment.FIXED

    def __post_init__(self) -> None:
        if self.width_seconds <= 0:
            raise ValueError("bucket width must be positive")
        if self.alignment is Alignment.CALENDAR and SECONDS_PER_DAY % self.width_seconds:
            raise ValueError(
                f"calendar buckets must divide a day, got {self.width_seconds}s"
            )

    def bucket_start(self, timestamp_ms: int) -> int:
        width = self.width_seconds
        return (timestamp_ms // 1000 // width) * width * 1000

    def sql_expression(self, column: str) -> str:
        # Integer columns and literals, so SQLite divides with truncation
        return f"({column} / 1000 / :width) * :width * 1000"


MINUTE_BUCKETS = BucketStrategy(60)
HOUR_BUCKETS = BucketStrategy(3600)
DAY_BUCKETS = BucketStrategy(SECONDS_PER_DAY, Alignment.CALENDAR)

ROLLING_WINDOWS: dict[str, timedelta] = {
    "1h": timedelta(hours=1),
    "6h": timedelta(hours=6),
    "12h": timedelta(hours=12),
    "24h": timedelta(hours=24),
    "week": timedelta(days=7),
}

RANGE_BUCKETS: dict[str, BucketStrategy] = {
    "1h": MINUTE_BUCKETS,
    "6h": MINUTE_BUCKETS,
    "12h": MINUTE_BUCKETS,
    "24h": MINUTE_BUCKETS,
    "today": MINUTE_BUCKETS,
    "week": HOUR_BUCKETS,
    "month": DAY_BUCKETS,
    "year": DAY_BUCKETS,
}

_ROW_COLUMNS = """
    COALESCE({city}, '') AS city,
    COALESCE({agg}(w.temp), 0) AS avg_weather_temp,
    COALESCE({agg}(w.humidity), 0) AS avg_weather_humidity,
    COALESCE({agg}(w.wind_speed), 0) AS avg_wind_speed,
    COALESCE({agg}(w.wind_deg), 0) AS avg_wind_deg,
    COALESCE({agg}(w.clouds), 0) AS avg_clouds,
    COALESCE({agg}(w.weather_code), 0) AS avg_weather_code,
    COALESCE({description}, '') AS description
"""


def _add_months(moment: datetime, months: int) -> datetime:
    """Shift by calendar months, rolling overflowing days into the next month."""
    total = moment.year * 12 + (moment.month - 1) + months
    year, month_index = divmod(total, 12)
    first = moment.replace(year=year, month=month_index + 1, day=1)
    return first + timedelta(days=moment.day - 1)


def _local_midnight(now: datetime) -> datetime:
    """Start of the current day on the local wall clock.

    A fixed UTC offset, as returned by ``datetime.astimezone()``, is only valid
    for the instant it was taken from, so midnight is resolved against the
    system zone instead. Real zones resolve their own offset.
    """
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0, tzinfo=None)
    if now.tzinfo is None or isinstance(now.tzinfo, timezone):
        return midnight.astimezone()
    return midnight.replace(tzinfo=now.tzinfo)


def _to_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def range_since(range_name: str, now: datetime) -> int:
    """Lower bound (epoch ms) of a dashboard range. Unknown ranges mean all time."""
    if range_name in ROLLING_WINDOWS:
        return _to_ms(now - ROLLING_WINDOWS[range_name])
    if range_name == "today":
        return _to_ms(_local_midnight(now))
    if range_name == "month":
        return _to_ms(_add_months(now, -1))
    if range_name == "year":
        return _to_ms(_add_months(now, -12))
    return 0


def bucket_strategy_for(range_name: str) -> BucketStrategy:
    return RANGE_BUCKETS.get(range_name, DAY_BUCKETS)


class QueryEngine:
    """Read-only queries behind the dashboard API."""

    def __init__(self, store: Store, clock: Clock | None = None) -> None:
        self.store = store
        self.clock = clock or SystemClock()

    def latest_with_trajectory(
        self, count: int = DEFAULT_LATEST_COUNT
    ) -> tuple[SeriesRow, float | None]:
        """Newest measurement plus the temperature delta over the last ``count`` rows.

        The trajectory is ``newest - oldest`` and is None with fewer than two rows.
        Raises QueryError if the table is empty or the scan fails.
        """
        columns = _ROW_COLUMNS.format(
            city="w.city", description="w.description", agg=""
        )
        query = text(
            f"""
            SELECT
                m.timestamp AS aggregated_timestamp,
                m.temperature AS avg_temperature,
                m.humidity AS avg_humidity,
                {columns}
            FROM measurements m
            LEFT JOIN weather w ON m.weather_id = w.id
            ORDER BY m.timestamp DESC, m.id DESC
            LIMIT :count
            """
        )
        rows = self._fetch(query, {"count": count})
        if not rows:
            raise QueryError("no measurements stored")

        trajectory: float | None = None
        if len(rows) >= 2:
            trajectory = rows[0].avg_temperature - rows[-1].avg_temperature
        return rows[0], trajectory

    def ranged_series(self, range_name: str = "") -> list[SeriesRow]:
        """Bucketed averages for a dashboard range, oldest bucket first.

        Only buckets holding at least one measurement are returned.
        """
        now = self.clock.now()
        since = range_since(range_name, now)
        end = _to_ms(now)
        strategy = bucket_strategy_for(range_name)

        columns = _ROW_COLUMNS.format(
            city="MAX(w.city)", description="MAX(w.description)", agg="AVG"
        )
        query = text(
            f"""
            SELECT
                {strategy.sql_expression("m.timestamp")} AS aggregated_timestamp,
                AVG(m.temperature) AS avg_temperature,
                AVG(m.humidity) AS avg_humidity,
                {columns}
            FROM measurements m
            LEFT JOIN weather w ON m.weather_id = w.id
            WHERE m.timestamp >= :since AND m.timestamp <= :end
            GROUP BY aggregated_timestamp
            HAVING COUNT(m.temperature) > 0
            ORDER BY aggregated_timestamp ASC
            """
        )
        return self._fetch(
            query, {"since": since, "end": end, "width": strategy.width_seconds}
        )

    def _fetch(self, query: typing.Any, params: dict[str, typing.Any]) -> list[SeriesRow]:
        try:
            with self.store.connect() as conn:
                result = conn.execute(query, params)
                return [SeriesRow(**row._mapping) for row in result]
        except SQLAlchemyError as e:
            raise QueryError(f"DB query error: {e}") from e
