import structlog
from fastapi import FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from skogsnet.aggregation import QueryEngine
from skogsnet.exceptions import QueryError
from skogsnet.models import LatestResponse, SeriesRow

logger = structlog.get_logger("Dashboard")


def create_app(engine: QueryEngine) -> FastAPI:
    """Build the dashboard API around a query engine."""
    app = FastAPI(title="Skogsnet Dashboard")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.exception_handler(QueryError)
    async def query_error_handler(request, exc: QueryError) -> PlainTextResponse:
        logger.error(f"DB query error: {exc}", path=request.url.path)
        return PlainTextResponse("DB query error", status_code=500)

    @app.get("/api/measurements/latest", response_model=LatestResponse)
    def latest_measurement() -> LatestResponse:
        """Most recent measurement and the temperature trend over the last readings."""
        latest, trajectory = engine.latest_with_trajectory()
        return LatestResponse(latest=latest, trajectory=trajectory)

    @app.get("/api/measurements", response_model=list[SeriesRow])
    def measurements(range_name: str = Query(default="", alias="range")) -> list[SeriesRow]:
        """Bucketed measurement series for the requested range."""
        return engine.ranged_series(range_name)

    return app
