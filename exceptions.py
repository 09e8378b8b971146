"""Custom exceptions for the Birth Chart API."""


class BirthChartAPIException(Exception):
    """Base exception for all API errors."""
    status_code = 500


class InvalidInputError(BirthChartAPIException):
    """Raised when birth data is rejected before any calculation."""
    status_code = 422


class InvalidDateTimeError(InvalidInputError):
    """Raised when the birth date or time cannot be parsed."""
    pass


class InvalidCoordinatesError(InvalidInputError):
    """Raised when coordinates are out of range."""
    pass


class InvalidTimezoneError(InvalidInputError):
    """Raised when timezone is invalid."""
    pass


class ProviderUnavailableError(BirthChartAPIException):
    """Raised when the ephemeris provider fails or times out. Retryable."""
    status_code = 503


class ChartNotFoundError(BirthChartAPIException):
    """Raised when no stored chart matches the requested id."""
    status_code = 404


class ChartCalculationError(BirthChartAPIException):
    """Raised when chart calculation fails."""
    pass
