import io

from skogsnet.console import print_measurement
from skogsnet.models import Reading

from conftest import make_sample


def test_print_measurement_only():
    out = io.StringIO()
    print_measurement(Reading(timestamp=1500, temperature=22.5, humidity=55.1), out=out)

    text = out.getvalue()
    assert "22.50 °C" in text
    assert "55.10 %" in text
    assert "Weather in" not in text


def test_print_measurement_with_weather():
    out = io.StringIO()
    print_measurement(
        Reading(timestamp=1500, temperature=22.5, humidity=55.1),
        make_sample(),
        out=out,
    )

    text = out.getvalue()
    assert "Weather in Helsinki" in text
    assert "24.50 °C" in text
    assert "3.3 m/s S" in text
    assert "Overcast" in text
