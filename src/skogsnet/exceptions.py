class SkogsnetError(Exception):
    """Base class for all service errors."""


class TransportError(SkogsnetError):
    """Device read failed or timed out. Retried indefinitely."""


class DecodeError(SkogsnetError):
    """A device line could not be decoded into a reading."""


class StoreOpenError(SkogsnetError):
    """The database could not be opened. Fatal."""


class StoreWriteError(SkogsnetError):
    """A single insert failed."""


class QueryError(SkogsnetError):
    """A dashboard query failed or returned nothing."""


class ExportError(SkogsnetError):
    """CSV export aborted."""


class WeatherFetchError(SkogsnetError):
    """Weather provider did not deliver a sample."""


class WeatherNetworkError(WeatherFetchError):
    pass


class WeatherStatusError(WeatherFetchError):
    def __init__(self, url: str, status_code: int) -> None:
        super().__init__(f"{url} returned HTTP {status_code}")
        self.url = url
        self.status_code = status_code


class WeatherDecodeError(WeatherFetchError):
    pass


class NoResultsError(WeatherFetchError):
    def __init__(self, city: str) -> None:
        super().__init__(f"no results found for city: {city}")
        self.city = city
