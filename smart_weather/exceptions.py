"""Custom exception hierarchy for smart-weather-router.

Only the API selector and the downstream weather client raise these to
callers. The rule parser and confidence merger never raise, and AI
parsing failures are absorbed inside the router.

Exception Hierarchy:
    SmartWeatherError (base)
    ├── ConfigurationError
    ├── QueryError
    │   ├── QueryParsingError
    │   └── LocationNotSpecifiedError
    ├── RoutingError
    │   └── NoSuitableAPIError
    ├── AIParsingError
    │   └── AIParsingTimeoutError
    └── WeatherAPIError
        ├── WeatherClientError
        │   └── LocationNotSupportedError
        └── WeatherServiceError
            ├── WeatherUnavailableError
            ├── WeatherTimeoutError
            ├── RateLimitExceededError
            └── NetworkError
"""
from __future__ import annotations

from typing import Optional, Dict, Any


class SmartWeatherError(Exception):
    """Base exception for all smart-weather-router errors.

    Attributes:
        message: Human-readable error message (internal, never shown verbatim)
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(SmartWeatherError):
    """Raised when settings are inconsistent (e.g. cache limits)."""
    pass


# Query Errors
class QueryError(SmartWeatherError):
    """Base class for query-understanding errors."""
    pass


class QueryParsingError(QueryError):
    """Raised when confidence stays below the acceptance floor.

    Attributes:
        confidence: Final parsing confidence
        threshold: The floor that was not met
    """

    def __init__(
        self,
        message: str,
        confidence: Optional[float] = None,
        threshold: Optional[float] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.confidence = confidence
        self.threshold = threshold
        details = details or {}
        if confidence is not None:
            details["confidence"] = confidence
        if threshold is not None:
            details["threshold"] = threshold
        super().__init__(message, code, details)


class LocationNotSpecifiedError(QueryError):
    """Raised when neither the query nor its context names a location."""
    pass


# Routing Errors
class RoutingError(SmartWeatherError):
    """Base class for API selection errors."""
    pass


class NoSuitableAPIError(RoutingError):
    """Raised when no non-unavailable API supports the classified intent."""

    def __init__(
        self,
        message: str,
        intent: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.intent = intent
        details = details or {}
        if intent:
            details["intent"] = intent
        super().__init__(message, code, details)


# AI parsing capability
class AIParsingError(SmartWeatherError):
    """Raised by an AI parser adapter. Always absorbed by the router."""
    pass


class AIParsingTimeoutError(AIParsingError):
    """Raised when the AI parser exceeds its stage timeout."""
    pass


# Downstream weather/geocoding client errors
class WeatherAPIError(SmartWeatherError):
    """Base class for weather client failures.

    Attributes:
        api_id: API descriptor id that failed
        status_code: Upstream HTTP status when known
    """

    def __init__(
        self,
        message: str,
        api_id: Optional[str] = None,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.api_id = api_id
        self.status_code = status_code
        details = details or {}
        if api_id:
            details["api_id"] = api_id
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, code, details)


class WeatherClientError(WeatherAPIError):
    """Client-side failure: the request itself was bad (4xx class)."""
    pass


class LocationNotSupportedError(WeatherClientError):
    """The location could not be geocoded or is outside API coverage."""
    pass


class WeatherServiceError(WeatherAPIError):
    """Service-side failure: the upstream could not serve a valid request."""
    pass


class WeatherUnavailableError(WeatherServiceError):
    """Upstream returned 5xx or reported itself unavailable."""
    pass


class WeatherTimeoutError(WeatherServiceError):
    """Upstream call exceeded its stage timeout."""
    pass


class RateLimitExceededError(WeatherServiceError):
    """Raised when the sliding-window limiter or upstream rejects a call.

    Attributes:
        retry_after: Seconds to wait before retrying
    """

    def __init__(
        self,
        message: str,
        api_id: Optional[str] = None,
        retry_after: Optional[float] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.retry_after = retry_after
        details = details or {}
        if retry_after:
            details["retry_after"] = round(retry_after, 1)
        super().__init__(message, api_id=api_id, status_code=429, code=code, details=details)


class NetworkError(WeatherServiceError):
    """Upstream host could not be reached."""
    pass


def is_retryable_error(error: Exception) -> bool:
    """Check if an error is temporary and the call can be retried.

    Client-side errors and routing/parsing errors need a changed request
    or operator action, so they are not retryable.
    """
    if isinstance(error, WeatherClientError):
        return False
    retryable_types = (
        WeatherServiceError,
        AIParsingTimeoutError,
        TimeoutError,
        ConnectionError,
    )
    return isinstance(error, retryable_types)


def get_error_response(error: Exception) -> Dict[str, Any]:
    """Convert any exception to an internal diagnostic dictionary."""
    if isinstance(error, SmartWeatherError):
        return error.to_dict()

    return {
        "error": "InternalError",
        "message": error.__class__.__name__,
        "details": {},
    }
