"""
Shared pytest fixtures for smart_weather tests.

No test reaches the network: AI parsing and the weather client are
replaced by the fakes in tests/utils.py.
"""
from __future__ import annotations

import os

import pytest

from smart_weather.config import get_settings

_CONFIG_VARS = (
    "LLM_API_KEY",
    "WEATHER_API_KEY",
    "DISABLE_AI_PARSING",
    "MIN_CONFIDENCE",
    "AI_THRESHOLD",
    "RULES_ONLY_FLOOR",
    "CACHE_MAX_SIZE",
    "CACHE_CLEANUP_THRESHOLD",
    "DEFAULT_TIMEZONE",
)


@pytest.fixture(autouse=True)
def test_environment():
    """Run every test with a clean configuration environment."""
    old_env = os.environ.copy()
    for name in _CONFIG_VARS:
        os.environ.pop(name, None)
    os.environ["APP_ENV"] = "test"
    get_settings.cache_clear()
    yield
    os.environ.clear()
    os.environ.update(old_env)
    get_settings.cache_clear()
