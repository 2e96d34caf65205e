from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from smart_weather.exceptions import LocationNotSupportedError
from smart_weather.models import ParsedQuery
from smart_weather.services.weather_client import GeoLocation, WeatherRequest


def run(coro):
    """Helper to run async functions in synchronous tests."""
    return asyncio.run(coro)


class FakeClock:
    """Manually advanced clock (seconds)."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def fixed_datetime(iso: str):
    """Clock for TimeService frozen at an ISO-8601 UTC instant."""
    moment = datetime.fromisoformat(iso).replace(tzinfo=timezone.utc)
    return lambda: moment


class FakeLLMProvider:
    def __init__(self, payload: Any):
        self.payload = payload
        self.calls = 0

    async def generate(self, *args, **kwargs):
        self.calls += 1
        content = self.payload if isinstance(self.payload, str) else json.dumps(self.payload)
        return {"choices": [{"message": {"content": content}}]}


class FakeAIParser:
    """AI parser returning a canned ParsedQuery, or raising / stalling."""

    def __init__(
        self,
        result: Optional[ParsedQuery] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.result = result
        self.error = error
        self.delay = delay
        self.calls: List[Dict[str, str]] = []

    async def parse(self, text: str, context: str) -> ParsedQuery:
        self.calls.append({"text": text, "context": context})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


class FakeWeatherClient:
    """Weather client with per-API canned failures and an optional slow geocoder."""

    def __init__(
        self,
        failures: Optional[Dict[str, Exception]] = None,
        places: Optional[Dict[str, GeoLocation]] = None,
        geocode_delay: float = 0.0,
    ):
        self.failures = failures or {}
        self.places = places or {}
        self.geocode_delay = geocode_delay
        self.fetches: List[WeatherRequest] = []
        self.geocodes: List[str] = []

    async def geocode(self, name: str, language: str = "en") -> GeoLocation:
        self.geocodes.append(name)
        if self.geocode_delay:
            await asyncio.sleep(self.geocode_delay)
        if name not in self.places:
            raise LocationNotSupportedError(f"unknown place {name}", api_id="google_geocoding")
        return self.places[name]

    async def fetch(self, request: WeatherRequest) -> Dict[str, Any]:
        self.fetches.append(request)
        if request.api_id in self.failures:
            raise self.failures[request.api_id]
        return {"api": request.api_id, "temperature": 21.5, "units": request.units}
