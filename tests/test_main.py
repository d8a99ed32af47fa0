from unittest.mock import patch

from skogsnet.config import Settings
from skogsnet.exceptions import TransportError
from skogsnet.main import run


def test_run_fails_without_database():
    assert run(Settings(_env_file=None, db_path="")) == 1


@patch("skogsnet.main.SerialLineSource")
def test_run_fails_without_serial_port(mock_source, tmp_path):
    mock_source.return_value.open.side_effect = TransportError("no serial ports found")
    config = Settings(_env_file=None, db_path=str(tmp_path / "measurements.db"))

    assert run(config) == 1
