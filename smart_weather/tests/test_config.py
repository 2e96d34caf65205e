"""Tests for settings loading and logging setup."""

import logging
import os

import pytest
from pydantic import ValidationError

from smart_weather.config import Settings, get_settings
from smart_weather.routing.query_router import create_query_router
from smart_weather.utils.logging import configure_logging


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.min_confidence == 0.5
        assert settings.rules_only_floor == 0.3
        assert settings.ai_enabled is False
        assert settings.ttl_table["current_weather"] == 300

    def test_environment_variables(self):
        os.environ["LLM_API_KEY"] = "sk-test"
        os.environ["MIN_CONFIDENCE"] = "0.6"
        settings = get_settings()
        assert settings.ai_enabled is True
        assert settings.min_confidence == 0.6

    def test_empty_env_value_is_ignored(self):
        os.environ["LLM_API_KEY"] = ""
        assert get_settings().ai_enabled is False

    def test_thresholds_are_clamped(self):
        assert Settings(ai_threshold=1.7).ai_threshold == 1.0
        assert Settings(min_confidence=-0.2).min_confidence == 0.0

    def test_cleanup_threshold_must_be_below_max(self):
        with pytest.raises(ValidationError):
            Settings(cache_max_size=100, cache_cleanup_threshold=100)

    def test_unknown_timezone_rejected(self):
        with pytest.raises(ValidationError):
            Settings(default_timezone="Atlantis/Capital")

    def test_missing_credentials_degrade(self):
        router = create_query_router(Settings())
        assert router.ai_parser is None
        assert router.weather_client is None

    def test_cache_built_from_settings(self):
        router = create_query_router(Settings(cache_max_size=50, cache_cleanup_threshold=40))
        assert router.get_cache_metrics().max_size == 50


class TestLogging:
    def test_single_handler(self):
        configure_logging("debug")
        configure_logging("warning")

        package_logger = logging.getLogger("smart_weather")
        handlers = [h for h in package_logger.handlers if getattr(h, "_smart_weather", False)]
        assert len(handlers) == 1
        assert package_logger.level == logging.WARNING
