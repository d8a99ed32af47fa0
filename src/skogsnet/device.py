import json
import numbers
import typing

import serial
import structlog
from serial.tools import list_ports

from skogsnet.exceptions import DecodeError, TransportError
from skogsnet.models import Reading

logger = structlog.get_logger("Device")

# The firmware spells it this way; "temperature" is accepted as well.
TEMPERATURE_KEYS = ("temperature_celcius", "temperature")
HUMIDITY_KEY = "humidity"


class LineSource(typing.Protocol):
    """Anything that yields device lines."""

    def read_line(self) -> str:
        """Next line without its terminator, "" when nothing arrived.

        Raises TransportError when the read times out or fails.
        """
        ...

    def close(self) -> None: ...


class SerialLineSource:
    """Reads newline-terminated JSON lines from a serial port."""

    def __init__(self, port: str, baud_rate: int = 9600, timeout: float = 1.0) -> None:
        self.port = port
        self.baud_rate = baud_rate
        self.timeout = timeout
        self._serial: serial.Serial | None = None
        self._partial = b""

    def open(self) -> "SerialLineSource":
        logger.info("Initializing serial connection...")
        ports = [p.device for p in list_ports.comports()]
        if not ports:
            raise TransportError("no serial ports found")

        logger.info("Available ports:", ports=ports)
        if self.port not in ports:
            raise TransportError(f"specified port {self.port} not found in available ports")

        try:
            self._serial = serial.Serial(
                port=self.port, baudrate=self.baud_rate, timeout=self.timeout
            )
        except serial.SerialException as e:
            raise TransportError(f"Failed to open serial port {self.port}: {e}") from e

        logger.info(f"Using port: {self.port}", baud=self.baud_rate)
        return self

    def read_line(self) -> str:
        if self._serial is None:
            raise TransportError("serial port is not open")
        try:
            raw = self._serial.readline()
        except serial.SerialException as e:
            raise TransportError(f"error reading from serial: {e}") from e

        if not raw:
            return ""
        if not raw.endswith(b"\n"):
            # readline() returns a partial line when the port timeout expires
            self._partial += raw
            raise TransportError("timeout")

        raw, self._partial = self._partial + raw, b""
        return raw.decode("utf-8", errors="replace").strip()

    def close(self) -> None:
        if self._serial is not None:
            self._serial.close()
            self._serial = None


def _numeric(payload: dict[str, typing.Any], keys: tuple[str, ...]) -> float:
    for key in keys:
        if key in payload:
            value = payload[key]
            if value is None:
                return 0.0
            if isinstance(value, bool) or not isinstance(value, numbers.Real):
                raise DecodeError(f"field {key!r} is not numeric: {value!r}")
            return float(value)
    return 0.0


def decode_reading(line: str, timestamp_ms: int) -> Reading:
    """Decode one device line. Missing or null fields become 0, extras are ignored."""
    try:
        payload = json.loads(line)
    except json.JSONDecodeError as e:
        raise DecodeError(f"failed to deserialize data: {e}") from e

    if not isinstance(payload, dict):
        raise DecodeError(f"failed to deserialize data: expected an object, got {line!r}")

    return Reading(
        timestamp=timestamp_ms,
        temperature=_numeric(payload, TEMPERATURE_KEYS),
        humidity=_numeric(payload, (HUMIDITY_KEY,)),
    )
