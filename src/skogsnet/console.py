import sys
import typing
from datetime import datetime

from skogsnet.models import Reading, WeatherSample
from skogsnet.weather import wind_direction_to_compass

# ANSI color codes
GREEN = "\033[32m"
CYAN = "\033[36m"
YELLOW = "\033[33m"
RESET = "\033[0m"


def print_measurement(
    reading: Reading,
    weather: WeatherSample | None = None,
    out: typing.TextIO | None = None,
) -> None:
    """Pretty-print a stored reading, with the cached weather if there is one."""
    out = out or sys.stdout
    moment = datetime.fromtimestamp(reading.timestamp / 1000)

    lines = [
        f"{CYAN}Measurement at {moment:%Y-%m-%d %H:%M:%S}{RESET}",
        f"    {GREEN}Temperature:{RESET} {reading.temperature:.2f} °C",
        f"    {GREEN}Humidity:   {RESET} {reading.humidity:.2f} %",
    ]
    if weather is not None:
        compass = wind_direction_to_compass(weather.wind_deg)
        lines += [
            f"{YELLOW}Weather in {weather.city}{RESET}",
            f"    {GREEN}Temperature:{RESET} {weather.temp:.2f} °C",
            f"    {GREEN}Humidity:   {RESET} {weather.humidity} %",
            f"    {GREEN}Wind:       {RESET} {weather.wind_speed:.1f} m/s {compass}".rstrip(),
            f"    {GREEN}Conditions: {RESET} {weather.description}",
        ]

    out.write("\n".join(lines) + "\n")
    out.flush()
