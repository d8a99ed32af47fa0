import signal
import sys

import structlog

from skogsnet.aggregation import QueryEngine
from skogsnet.api import create_app
from skogsnet.config import Settings, settings
from skogsnet.core.clock import SystemClock
from skogsnet.core.logging import ThrottledLogger, setup_logging
from skogsnet.correlation import CorrelationWriter
from skogsnet.database import Store
from skogsnet.device import SerialLineSource
from skogsnet.exceptions import StoreOpenError, TransportError
from skogsnet.export import export_and_exit
from skogsnet.orchestrator import (
    CancellationToken,
    DashboardListener,
    IngestionProducer,
    Orchestrator,
    WeatherRefresher,
)
from skogsnet.weather import LatestWeather, OpenMeteoProvider

logger = structlog.get_logger("Main")

# Extra time allowed on top of the dashboard drain window
SHUTDOWN_MARGIN = 2.0


def install_signal_handlers(token: CancellationToken) -> None:
    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}, shutting down...")
        token.cancel()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


def run(config: Settings) -> int:
    """Run the service until a shutdown signal arrives. Returns the exit code."""
    try:
        store = Store.open(config.db_path)
    except StoreOpenError as e:
        logger.error(f"Failed to open database: {e}")
        return 1

    try:
        source = SerialLineSource(
            config.serial_port, config.baud_rate, config.serial_timeout
        ).open()
    except TransportError as e:
        logger.error(f"Failed to initialize serial connection: {e}")
        store.close()
        return 1

    token = CancellationToken()
    install_signal_handlers(token)

    clock = SystemClock()
    throttle = ThrottledLogger(logger, config.throttle_interval, clock)
    writer = CorrelationWriter(store)
    latest_weather = LatestWeather()
    orchestrator = Orchestrator(store, token)

    orchestrator.add(
        "ingestion",
        IngestionProducer(
            source,
            writer,
            token,
            throttle,
            clock=clock,
            latest_weather=latest_weather,
            retry_delay=config.read_retry_delay,
        ).run,
    )

    provider = None
    if config.weather_city:
        provider = OpenMeteoProvider(timeout=config.weather_timeout)
        orchestrator.add(
            "weather",
            WeatherRefresher(
                provider,
                writer,
                config.weather_city,
                token,
                throttle,
                latest_weather,
                clock=clock,
                interval=config.weather_interval,
                retry_delay=config.weather_retry_delay,
            ).run,
        )
    else:
        logger.error("No city specified for weather data, weather refresher disabled")

    if config.dashboard_enabled:
        app = create_app(QueryEngine(store, clock))
        orchestrator.add(
            "dashboard",
            DashboardListener(
                app,
                token,
                host=config.dashboard_host,
                port=config.dashboard_port,
                grace=config.shutdown_grace,
            ).run,
        )

    try:
        stragglers = orchestrator.run(shutdown_timeout=config.shutdown_grace + SHUTDOWN_MARGIN)
    finally:
        source.close()
        if provider is not None:
            provider.close()

    logger.info("Skogsnet stopped")
    return 1 if stragglers else 0


def main() -> None:
    setup_logging(settings.log_level, settings.log_file)

    if settings.export_csv:
        export_and_exit(settings)

    logger.info("Skogsnet starting up...")
    sys.exit(run(settings))


if __name__ == "__main__":
    main()
