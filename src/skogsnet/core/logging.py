import logging
import logging.handlers
import os
import sys
import threading
import typing

import structlog

from skogsnet.core.clock import Clock, SystemClock

# Setup structlog
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)


def setup_logging(level: str = "INFO", log_file: str = "") -> None:
    """Configure stdout (and optional file) logging for the service."""
    # JSON Formatter for stdlib handlers
    pre_chain: list[typing.Any] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
    ]
    formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(),
        foreign_pre_chain=pre_chain,
    )

    handlers: list[logging.Handler] = []

    # Stdout
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    handlers.append(stream_handler)

    # File
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.handlers.TimedRotatingFileHandler(
            log_file, when="midnight", interval=1, backupCount=30, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


class ThrottledLogger:
    """Suppresses repeats of the same failure class within a fixed interval.

    A message for ``key`` is emitted iff ``now - last_emitted(key) > interval``.
    Keys that never fired count as infinitely old.
    """

    def __init__(
        self,
        logger: typing.Any,
        interval: float = 5.0,
        clock: Clock | None = None,
    ) -> None:
        self.logger = logger
        self.interval_ms = int(interval * 1000)
        self.clock = clock or SystemClock()
        self._last: dict[str, int] = {}
        self._lock = threading.Lock()

    def _should_emit(self, key: str) -> bool:
        now = self.clock.now_ms()
        with self._lock:
            last = self._last.get(key)
            if last is not None and now - last <= self.interval_ms:
                return False
            self._last[key] = now
            return True

    def warning(self, key: str, event: str, **kw: typing.Any) -> bool:
        if self._should_emit(key):
            self.logger.warning(event, **kw)
            return True
        return False

    def error(self, key: str, event: str, **kw: typing.Any) -> bool:
        if self._should_emit(key):
            self.logger.error(event, **kw)
            return True
        return False
