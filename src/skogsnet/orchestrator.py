"""Runs the ingestion loop, the weather refresher and the dashboard side by side.

Each producer owns one thread and watches a shared ``CancellationToken``.
Shutdown is cooperative: cancel the token, then wait on the
``CompletionTracker`` until every producer has returned before the store is
closed.
"""

import threading
import time
import typing

import schedule
import structlog
import uvicorn
from tenacity import RetryCallState, Retrying, retry_if_exception_type, wait_fixed

from skogsnet.console import print_measurement
from skogsnet.core.clock import Clock, SystemClock
from skogsnet.core.logging import ThrottledLogger
from skogsnet.correlation import CorrelationWriter
from skogsnet.database import Store
from skogsnet.device import LineSource, decode_reading
from skogsnet.exceptions import DecodeError, StoreWriteError, TransportError, WeatherFetchError
from skogsnet.models import Reading, WeatherSample
from skogsnet.weather import LatestWeather, WeatherProvider

logger = structlog.get_logger("Orchestrator")

READ_RETRY_DELAY = 0.5
WEATHER_RETRY_DELAY = 0.5
WEATHER_INTERVAL = 60.0
SCHEDULER_TICK = 1.0


class CancellationToken:
    """One shared shutdown signal."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Sleep up to ``timeout`` seconds, waking early on cancellation."""
        return self._event.wait(timeout)


class CompletionTracker:
    """Keeps track of producer threads so shutdown can wait for all of them."""

    def __init__(self) -> None:
        self._threads: list[threading.Thread] = []
        self._lock = threading.Lock()

    def spawn(self, name: str, target: typing.Callable[[], None]) -> threading.Thread:
        thread = threading.Thread(target=_guarded, args=(name, target), name=name, daemon=True)
        with self._lock:
            self._threads.append(thread)
        thread.start()
        return thread

    def wait(self, timeout: float | None = None) -> list[str]:
        """Join every producer. Returns the names of any still running after ``timeout``."""
        with self._lock:
            threads = list(self._threads)
        deadline = None if timeout is None else time.monotonic() + timeout
        for thread in threads:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            thread.join(remaining)
        return [t.name for t in threads if t.is_alive()]


def _guarded(name: str, target: typing.Callable[[], None]) -> None:
    try:
        target()
    except Exception:
        logger.exception(f"Producer {name} crashed")


class IngestionProducer:
    """Blocking read, decode, correlate, write. Never stops on a bad reading."""

    def __init__(
        self,
        source: LineSource,
        writer: CorrelationWriter,
        token: CancellationToken,
        throttle: ThrottledLogger,
        clock: Clock | None = None,
        latest_weather: LatestWeather | None = None,
        retry_delay: float = READ_RETRY_DELAY,
        printer: typing.Callable[[Reading, WeatherSample | None], None] = print_measurement,
    ) -> None:
        self.source = source
        self.writer = writer
        self.token = token
        self.throttle = throttle
        self.clock = clock or SystemClock()
        self.latest_weather = latest_weather
        self.retry_delay = retry_delay
        self.printer = printer

    def run(self) -> None:
        logger.info("Ingestion loop started")
        while not self.token.cancelled:
            self.step()
        logger.info("Graceful shutdown requested. Ingestion loop stopped.")

    def step(self) -> bool:
        """One loop iteration. True if a measurement was stored."""
        try:
            line = self.source.read_line()
        except TransportError as e:
            self.throttle.warning("read_timeout", "Serial read timeout. Retrying...", error=str(e))
            self.token.wait(self.retry_delay)
            return False

        if not line:
            self.throttle.warning("read_empty", "No data read from serial port. Retrying...")
            self.token.wait(self.retry_delay)
            return False

        try:
            reading = decode_reading(line, self.clock.now_ms())
        except DecodeError as e:
            self.throttle.error("decode", f"Failed to deserialize data: {e}")
            return False

        try:
            self.writer.write_measurement(reading)
        except StoreWriteError as e:
            self.throttle.error("insert", f"Failed to insert measurement into database: {e}")
            return False

        weather = self.latest_weather.get() if self.latest_weather else None
        self.printer(reading, weather)
        return True


class _StartupCancelled(Exception):
    pass


class WeatherRefresher:
    """Keeps the weather stream and the ``LatestWeather`` cell fresh.

    Startup retries the first fetch until it succeeds or the token is
    cancelled, logging every failure. Afterwards a scheduler fetches every
    ``interval`` seconds; failures there are throttled and the cached sample
    stays in place.
    """

    def __init__(
        self,
        provider: WeatherProvider,
        writer: CorrelationWriter,
        city: str,
        token: CancellationToken,
        throttle: ThrottledLogger,
        latest_weather: LatestWeather,
        clock: Clock | None = None,
        interval: float = WEATHER_INTERVAL,
        retry_delay: float = WEATHER_RETRY_DELAY,
    ) -> None:
        if not city:
            raise ValueError("No city specified for weather data")
        self.provider = provider
        self.writer = writer
        self.city = city
        self.token = token
        self.throttle = throttle
        self.latest_weather = latest_weather
        self.clock = clock or SystemClock()
        self.interval = interval
        self.retry_delay = retry_delay

    def refresh(self) -> WeatherSample:
        """Fetch, publish and store one sample. Raises WeatherFetchError."""
        sample = self.provider.fetch(self.city).model_copy(
            update={"timestamp": self.clock.now_ms()}
        )
        self.latest_weather.publish(sample)
        try:
            self.writer.write_weather(sample)
        except StoreWriteError as e:
            self.throttle.error("weather_insert", f"Failed to insert weather data: {e}")
        return sample

    def _startup_attempt(self) -> WeatherSample:
        if self.token.cancelled:
            raise _StartupCancelled()
        return self.refresh()

    def _log_startup_failure(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.error(
            f"Initial weather fetch failed, retrying in {self.retry_delay}s: {exc}",
            attempt=retry_state.attempt_number,
        )

    def warm_up(self) -> bool:
        """Block until the first sample is stored. False if cancelled first."""
        retrying = Retrying(
            retry=retry_if_exception_type(WeatherFetchError),
            wait=wait_fixed(self.retry_delay),
            stop=lambda retry_state: self.token.cancelled,
            sleep=self.token.wait,
            before_sleep=self._log_startup_failure,
            reraise=True,
        )
        try:
            sample = retrying(self._startup_attempt)
        except (_StartupCancelled, WeatherFetchError):
            return False
        logger.info(f"Initial weather for {sample.city}: {sample.description}")
        return True

    def refresh_periodic(self) -> None:
        try:
            self.refresh()
        except WeatherFetchError as e:
            self.throttle.error(
                "weather_fetch", f"Failed to get weather data for city {self.city}: {e}"
            )

    def run(self) -> None:
        if not self.warm_up():
            logger.info("Weather fetching loop stopped")
            return

        scheduler = schedule.Scheduler()
        scheduler.every(self.interval).seconds.do(self.refresh_periodic)
        tick = min(SCHEDULER_TICK, self.interval)

        while not self.token.cancelled:
            scheduler.run_pending()
            self.token.wait(tick)

        scheduler.clear()
        logger.info("Weather update loop stopped")


class DashboardListener:
    """Serves the dashboard API until cancelled, then drains gracefully."""

    def __init__(
        self,
        app: typing.Any,
        token: CancellationToken,
        host: str = "0.0.0.0",
        port: int = 8080,
        grace: float = 5.0,
    ) -> None:
        self.token = token
        config = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_config=None,
            timeout_graceful_shutdown=int(grace),
        )
        self.server = uvicorn.Server(config)

    def _stop_on_cancel(self) -> None:
        self.token.wait()
        logger.info("Shutting down dashboard server...")
        self.server.should_exit = True

    def run(self) -> None:
        watcher = threading.Thread(target=self._stop_on_cancel, name="dashboard-stop", daemon=True)
        watcher.start()
        host, port = self.server.config.host, self.server.config.port
        logger.info(f"Web dashboard served at http://{host}:{port}")
        try:
            self.server.run()
        except SystemExit as e:
            # uvicorn exits when it cannot bind
            logger.error(f"Dashboard server failed to start (exit code {e.code})")
            return
        if not self.token.cancelled:
            logger.error("Dashboard server stopped unexpectedly")


class Orchestrator:
    """Starts registered producers and owns the shutdown sequence."""

    def __init__(
        self,
        store: Store,
        token: CancellationToken,
        tracker: CompletionTracker | None = None,
    ) -> None:
        self.store = store
        self.token = token
        self.tracker = tracker or CompletionTracker()
        self._producers: list[tuple[str, typing.Callable[[], None]]] = []

    def add(self, name: str, target: typing.Callable[[], None]) -> None:
        self._producers.append((name, target))

    def start(self) -> None:
        for name, target in self._producers:
            logger.info(f"Starting producer {name}")
            self.tracker.spawn(name, target)

    def shutdown(self, timeout: float | None = None) -> list[str]:
        """Cancel, wait for every producer, then close the store.

        Producers still running after ``timeout`` are reported and waited for;
        the store is never closed under a live producer.
        """
        self.token.cancel()
        stragglers = self.tracker.wait(timeout)
        if stragglers:
            logger.warning("Producers still running after drain window", producers=stragglers)
            self.tracker.wait()
        self.store.close()
        return stragglers

    def run(self, shutdown_timeout: float | None = None) -> list[str]:
        """Block until the token is cancelled, then shut down."""
        self.start()
        self.token.wait()
        logger.info("Graceful shutdown requested. Waiting for producers...")
        return self.shutdown(shutdown_timeout)
