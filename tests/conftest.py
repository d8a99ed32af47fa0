from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from skogsnet.correlation import CorrelationWriter
from skogsnet.database import Store
from skogsnet.models import WeatherSample


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime) -> None:
        self.moment = start

    def now(self) -> datetime:
        return self.moment

    def now_ms(self) -> int:
        return int(self.moment.timestamp() * 1000)

    def advance(self, seconds: float) -> None:
        self.moment += timedelta(seconds=seconds)


def make_sample(**overrides) -> WeatherSample:
    values = dict(
        timestamp=1000,
        city="Helsinki",
        temp=24.5,
        humidity=60,
        wind_speed=3.27,
        wind_deg=180,
        clouds=75,
        weather_code=3,
        description="Overcast",
    )
    values.update(overrides)
    return WeatherSample(**values)


@pytest.fixture
def clock():
    """Clock frozen at 2024-06-15 12:00:30 UTC."""
    return FakeClock(datetime(2024, 6, 15, 12, 0, 30, tzinfo=ZoneInfo("UTC")))


@pytest.fixture
def store(tmp_path):
    """Fresh on-disk store per test."""
    s = Store.open(str(tmp_path / "measurements.db"))
    yield s
    s.close()


@pytest.fixture
def writer(store):
    return CorrelationWriter(store)
