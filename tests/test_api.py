from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from skogsnet.aggregation import QueryEngine
from skogsnet.api import create_app
from skogsnet.exceptions import QueryError

from conftest import make_sample


@pytest.fixture
def client(store, clock):
    return TestClient(create_app(QueryEngine(store, clock)))


def test_latest_empty_store_is_500(client):
    response = client.get("/api/measurements/latest")
    assert response.status_code == 500
    assert response.text == "DB query error"


def test_latest_payload(client, store, clock):
    """The latest row uses the dashboard's key names."""
    weather_id = store.append_weather(clock.now_ms() - 1000, make_sample())
    store.append_measurement(clock.now_ms() - 2000, 20.0, 40.0, weather_id)
    store.append_measurement(clock.now_ms(), 29.0, 45.0, weather_id)

    response = client.get("/api/measurements/latest")

    assert response.status_code == 200
    body = response.json()
    assert body["trajectory"] == pytest.approx(9.0)
    latest = body["latest"]
    assert latest["AggregatedTimestamp"] == clock.now_ms()
    assert latest["AvgTemperature"] == 29.0
    assert latest["City"] == "Helsinki"
    assert latest["Description"] == "Overcast"


def test_latest_single_row_trajectory_null(client, store, clock):
    store.append_measurement(clock.now_ms(), 29.0, 45.0)
    assert client.get("/api/measurements/latest").json()["trajectory"] is None


def test_series_range(client, store, clock):
    store.append_measurement(clock.now_ms() - 30_000, 20.0, 40.0)
    store.append_measurement(clock.now_ms() - 120_000, 21.0, 41.0)

    response = client.get("/api/measurements", params={"range": "1h"})

    assert response.status_code == 200
    rows = response.json()
    assert len(rows) == 2
    assert rows[0]["AggregatedTimestamp"] < rows[1]["AggregatedTimestamp"]
    assert set(rows[0]) == {
        "AggregatedTimestamp",
        "AvgTemperature",
        "AvgHumidity",
        "City",
        "AvgWeatherTemp",
        "AvgWeatherHumidity",
        "AvgWindSpeed",
        "AvgWindDeg",
        "AvgClouds",
        "AvgWeatherCode",
        "Description",
    }


def test_series_without_range_is_all_time(client, store):
    store.append_measurement(1000, 20.0, 40.0)
    rows = client.get("/api/measurements").json()
    assert [r["AggregatedTimestamp"] for r in rows] == [0]


def test_series_empty_is_empty_list(client):
    response = client.get("/api/measurements", params={"range": "today"})
    assert response.status_code == 200
    assert response.json() == []


def test_series_query_failure_is_500():
    engine = MagicMock(spec=QueryEngine)
    engine.ranged_series.side_effect = QueryError("disk I/O error")
    client = TestClient(create_app(engine))

    response = client.get("/api/measurements", params={"range": "week"})

    assert response.status_code == 500
    assert response.text == "DB query error"


def test_cors_allows_any_origin(client):
    response = client.get(
        "/api/measurements", headers={"Origin": "http://dashboard.local"}
    )
    assert response.headers["access-control-allow-origin"] == "*"
