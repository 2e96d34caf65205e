"""
Weather / Geocoding Client

The router depends only on the WeatherAPIClient protocol:

    await client.geocode(name, language) -> GeoLocation
    await client.fetch(request) -> dict

GoogleWeatherClient is the httpx implementation against the Google Weather
and Geocoding APIs. Upstream failures are mapped onto the typed
WeatherAPIError hierarchy so the router can tell client-side errors (bad
location) from service-side ones (unavailable, timeout, rate limited).
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol, runtime_checkable

import httpx
from pydantic import BaseModel

from ..exceptions import (
    LocationNotSupportedError,
    NetworkError,
    RateLimitExceededError,
    WeatherClientError,
    WeatherTimeoutError,
    WeatherUnavailableError,
)
from ..utils.redaction import Redactor

logger = logging.getLogger(__name__)


class GeoLocation(BaseModel):
    name: str
    latitude: float
    longitude: float
    formatted_address: Optional[str] = None
    country: Optional[str] = None


class WeatherRequest(BaseModel):
    """Everything a backend API call needs, already resolved."""
    api_id: str
    latitude: float
    longitude: float
    location_name: Optional[str] = None
    units: str = "metric"
    language: str = "en"
    granularity: Optional[str] = None
    date: Optional[str] = None
    days: int = 7
    hours: int = 24


@runtime_checkable
class WeatherAPIClient(Protocol):
    async def geocode(self, name: str, language: str = "en") -> GeoLocation:
        ...

    async def fetch(self, request: WeatherRequest) -> Dict[str, Any]:
        ...


def raise_for_weather_status(response: httpx.Response, api_id: str) -> None:
    """Map an upstream HTTP error status to a typed exception."""
    status = response.status_code
    if status < 400:
        return
    if status == 404:
        raise LocationNotSupportedError("Location not found or not covered", api_id=api_id, status_code=status)
    if status == 429:
        retry_after = response.headers.get("Retry-After")
        raise RateLimitExceededError(
            "Upstream rate limit exceeded",
            api_id=api_id,
            retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
        )
    if status >= 500:
        raise WeatherUnavailableError("Upstream weather service error", api_id=api_id, status_code=status)
    raise WeatherClientError("Upstream rejected the request", api_id=api_id, status_code=status)


class GoogleWeatherClient:
    """Google Weather API + Geocoding API over httpx."""

    WEATHER_BASE_URL = "https://weather.googleapis.com/v1"
    GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"

    ENDPOINTS: Dict[str, str] = {
        "google_current_conditions": "/currentConditions:lookup",
        "google_daily_forecast": "/forecast/days:lookup",
        "google_hourly_forecast": "/forecast/hours:lookup",
        "google_hourly_history": "/history/hours:lookup",
    }

    MAX_FORECAST_DAYS = 10
    MAX_FORECAST_HOURS = 120

    def __init__(
        self,
        api_key: str,
        timeout: float = 0.8,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if not api_key:
            raise ValueError("Weather API key is required")
        self.api_key = api_key
        self.timeout = timeout
        self._client = http_client

    async def _get(self, url: str, params: Dict[str, Any], api_id: str) -> httpx.Response:
        params = {**params, "key": self.api_key}
        logger.debug("%s GET %s %s", api_id, url, Redactor.sanitize_params(params))
        try:
            if self._client is not None:
                return await self._client.get(url, params=params, timeout=self.timeout)
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                return await client.get(url, params=params)
        except httpx.TimeoutException as exc:
            raise WeatherTimeoutError(f"{api_id} timed out", api_id=api_id) from exc
        except httpx.TransportError as exc:
            # httpx error text can include the full URL with the key
            raise NetworkError(f"{api_id} unreachable ({type(exc).__name__})", api_id=api_id) from exc

    async def geocode(self, name: str, language: str = "en") -> GeoLocation:
        response = await self._get(
            self.GEOCODE_URL, {"address": name, "language": language}, "google_geocoding"
        )
        raise_for_weather_status(response, "google_geocoding")

        data = response.json()
        status = data.get("status", "OK")
        if status == "ZERO_RESULTS" or not data.get("results"):
            raise LocationNotSupportedError(f"No geocoding result for '{name}'", api_id="google_geocoding")
        if status == "OVER_QUERY_LIMIT":
            raise RateLimitExceededError("Geocoding quota exceeded", api_id="google_geocoding")
        if status != "OK":
            raise WeatherClientError(f"Geocoding failed with status {status}", api_id="google_geocoding")

        result = data["results"][0]
        coords = result["geometry"]["location"]
        country = next(
            (c.get("long_name") for c in result.get("address_components", []) if "country" in c.get("types", [])),
            None,
        )
        return GeoLocation(
            name=name,
            latitude=coords["lat"],
            longitude=coords["lng"],
            formatted_address=result.get("formatted_address"),
            country=country,
        )

    def _params(self, request: WeatherRequest) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "location.latitude": request.latitude,
            "location.longitude": request.longitude,
            "unitsSystem": "IMPERIAL" if request.units == "imperial" else "METRIC",
            "languageCode": request.language,
        }
        if request.api_id == "google_daily_forecast":
            params["days"] = min(request.days, self.MAX_FORECAST_DAYS)
        elif request.api_id in ("google_hourly_forecast", "google_hourly_history"):
            params["hours"] = min(request.hours, self.MAX_FORECAST_HOURS)
        return params

    async def fetch(self, request: WeatherRequest) -> Dict[str, Any]:
        endpoint = self.ENDPOINTS.get(request.api_id)
        if endpoint is None:
            raise WeatherClientError(f"Unknown API '{request.api_id}'", api_id=request.api_id)

        response = await self._get(self.WEATHER_BASE_URL + endpoint, self._params(request), request.api_id)
        raise_for_weather_status(response, request.api_id)
        logger.debug("%s returned %d", request.api_id, response.status_code)
        return response.json()
