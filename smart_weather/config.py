from functools import lru_cache
from typing import Dict
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    environment: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # AI parsing capability. Absence of a key means "unavailable", never an error.
    disable_ai_parsing: bool = Field(
        default=False,
        alias="DISABLE_AI_PARSING",
        description="Force rules-only parsing and the lowered acceptance floor"
    )
    llm_api_key: str | None = Field(default=None, alias="LLM_API_KEY")
    llm_base_url: str = Field(default="https://openrouter.ai/api/v1", alias="LLM_BASE_URL")
    llm_model: str = Field(default="google/gemini-2.5-flash-lite", alias="LLM_MODEL")
    ai_parse_timeout: float = Field(default=1.2, gt=0, alias="AI_PARSE_TIMEOUT")

    # Weather/geocoding client
    weather_api_key: str | None = Field(default=None, alias="WEATHER_API_KEY")
    weather_api_timeout: float = Field(default=0.8, gt=0, alias="WEATHER_API_TIMEOUT")

    # Confidence policy
    min_confidence: float = Field(default=0.50, alias="MIN_CONFIDENCE")
    ai_threshold: float = Field(default=0.50, alias="AI_THRESHOLD")
    rules_only_floor: float = Field(default=0.30, alias="RULES_ONLY_FLOOR")

    # Response cache (seconds)
    ttl_current_weather: int = Field(default=300, gt=0, alias="CACHE_TTL_CURRENT_WEATHER")
    ttl_forecast: int = Field(default=1800, gt=0, alias="CACHE_TTL_FORECAST")
    ttl_historical: int = Field(default=86400, gt=0, alias="CACHE_TTL_HISTORICAL")
    ttl_location: int = Field(default=604800, gt=0, alias="CACHE_TTL_LOCATION")
    cache_max_size: int = Field(default=10000, gt=1, alias="CACHE_MAX_SIZE")
    cache_cleanup_threshold: int = Field(default=8000, gt=0, alias="CACHE_CLEANUP_THRESHOLD")
    cache_sweep_interval: int = Field(default=60, gt=0, alias="CACHE_SWEEP_INTERVAL")
    coordinate_precision: int = Field(default=4, ge=0, le=8, alias="CACHE_COORDINATE_PRECISION")

    max_requests_per_minute: int = Field(default=60, gt=0, alias="MAX_REQUESTS_PER_MINUTE")

    default_timezone: str = Field(default="Asia/Taipei", alias="DEFAULT_TIMEZONE")
    default_language: str = Field(default="en", alias="DEFAULT_LANGUAGE")
    default_units: str = Field(default="metric", alias="DEFAULT_UNITS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,  # Treat empty strings as not set
        populate_by_name=True,
    )

    @field_validator("min_confidence", "ai_threshold", "rules_only_floor")
    @classmethod
    def clamp_threshold(cls, v: float) -> float:
        """Thresholds are confidence values and live in [0, 1]."""
        return max(0.0, min(1.0, float(v)))

    @field_validator("default_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone '{v}'") from exc
        return v

    @field_validator("default_units")
    @classmethod
    def validate_units(cls, v: str) -> str:
        v = v.lower()
        if v not in {"metric", "imperial"}:
            raise ValueError("DEFAULT_UNITS must be 'metric' or 'imperial'")
        return v

    @model_validator(mode="after")
    def validate_cache_limits(self):
        """Eviction drains down to the cleanup threshold, so it must sit below the cap."""
        if self.cache_cleanup_threshold >= self.cache_max_size:
            raise ValueError(
                "CACHE_CLEANUP_THRESHOLD must be lower than CACHE_MAX_SIZE "
                f"({self.cache_cleanup_threshold} >= {self.cache_max_size})"
            )
        return self

    @property
    def ai_enabled(self) -> bool:
        """AI parsing is usable only when not disabled and a key was loaded."""
        return not self.disable_ai_parsing and bool(self.llm_api_key)

    @property
    def ttl_table(self) -> Dict[str, int]:
        return {
            "current_weather": self.ttl_current_weather,
            "forecast": self.ttl_forecast,
            "historical": self.ttl_historical,
            "location": self.ttl_location,
        }


@lru_cache
def get_settings() -> Settings:
    return Settings()
