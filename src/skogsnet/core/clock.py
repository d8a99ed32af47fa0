import typing
from datetime import datetime


class Clock(typing.Protocol):
    """Source of wall-clock time. Injected wherever "now" matters."""

    def now(self) -> datetime:
        """Current local time, timezone aware."""
        ...

    def now_ms(self) -> int:
        """Current time in epoch milliseconds."""
        ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now().astimezone()

    def now_ms(self) -> int:
        return int(self.now().timestamp() * 1000)
