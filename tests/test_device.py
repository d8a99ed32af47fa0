from unittest.mock import MagicMock, patch

import pytest
import serial

from skogsnet.device import SerialLineSource, decode_reading
from skogsnet.exceptions import DecodeError, TransportError


def test_decode_reading():
    reading = decode_reading('{"temperature_celcius": 21.5, "humidity": 40.2}', 1234)
    assert reading.timestamp == 1234
    assert reading.temperature == 21.5
    assert reading.humidity == 40.2


def test_decode_accepts_plain_temperature_key():
    reading = decode_reading('{"temperature": 19, "humidity": 50}', 1)
    assert reading.temperature == 19.0


def test_decode_missing_fields_default_to_zero():
    reading = decode_reading('{"battery": 3.3}', 1)
    assert reading.temperature == 0.0
    assert reading.humidity == 0.0


@pytest.mark.parametrize(
    "line",
    [
        "not json",
        '{"temperature_celcius": 21.5',
        "[1, 2, 3]",
        '{"temperature_celcius": "warm"}',
        '{"humidity": true}',
    ],
)
def test_decode_rejects_malformed_lines(line):
    with pytest.raises(DecodeError):
        decode_reading(line, 1)


def _port(name):
    port = MagicMock()
    port.device = name
    return port


@patch("skogsnet.device.list_ports")
def test_open_without_ports_fails(mock_list_ports):
    mock_list_ports.comports.return_value = []
    with pytest.raises(TransportError):
        SerialLineSource("/dev/ttyACM0").open()


@patch("skogsnet.device.list_ports")
def test_open_unknown_port_fails(mock_list_ports):
    mock_list_ports.comports.return_value = [_port("/dev/ttyUSB0")]
    with pytest.raises(TransportError):
        SerialLineSource("/dev/ttyACM0").open()


@patch("skogsnet.device.serial.Serial")
@patch("skogsnet.device.list_ports")
def test_open_uses_configured_port(mock_list_ports, mock_serial):
    mock_list_ports.comports.return_value = [_port("/dev/ttyACM0")]

    SerialLineSource("/dev/ttyACM0", baud_rate=9600, timeout=1.0).open()

    mock_serial.assert_called_once_with(port="/dev/ttyACM0", baudrate=9600, timeout=1.0)


@patch("skogsnet.device.serial.Serial")
@patch("skogsnet.device.list_ports")
def test_read_line_joins_partial_reads(mock_list_ports, mock_serial):
    """A line split by a read timeout is delivered whole on the next read."""
    mock_list_ports.comports.return_value = [_port("/dev/ttyACM0")]
    mock_serial.return_value.readline.side_effect = [
        b'{"temperature_celcius": 2',
        b'1.5}\r\n',
        b"",
    ]
    source = SerialLineSource("/dev/ttyACM0").open()

    with pytest.raises(TransportError):
        source.read_line()
    assert source.read_line() == '{"temperature_celcius": 21.5}'
    assert source.read_line() == ""


@patch("skogsnet.device.serial.Serial")
@patch("skogsnet.device.list_ports")
def test_read_line_wraps_serial_errors(mock_list_ports, mock_serial):
    mock_list_ports.comports.return_value = [_port("/dev/ttyACM0")]
    mock_serial.return_value.readline.side_effect = serial.SerialException("unplugged")
    source = SerialLineSource("/dev/ttyACM0").open()

    with pytest.raises(TransportError):
        source.read_line()


def test_read_line_requires_open_port():
    with pytest.raises(TransportError):
        SerialLineSource("/dev/ttyACM0").read_line()


def test_decode_null_fields_become_zero():
    """Firmware reports a failed sensor read as null."""
    reading = decode_reading('{"temperature_celcius": null, "humidity": 40}', 1)
    assert reading.temperature == 0.0
    assert reading.humidity == 40.0
