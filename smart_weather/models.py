"""
Core data models for query understanding and routing.

Field names are snake_case in Python and serialise to camelCase
(``model_dump(by_alias=True)``) for the transport layer.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class Intent(str, Enum):
    """Closed set of query intents"""
    CURRENT_CONDITIONS = "current_conditions"
    FORECAST = "forecast"
    HISTORICAL = "historical"
    WEATHER_ADVICE = "weather_advice"


class ParsingSource(str, Enum):
    """Which parser produced the final ParsedQuery"""
    RULES_ONLY = "rules_only"
    RULES_WITH_AI_FALLBACK = "rules_with_ai_fallback"
    RULES_FALLBACK = "rules_fallback"


class TimeframeType(str, Enum):
    CURRENT = "current"
    FORECAST = "forecast"
    HISTORICAL = "historical"


class Metric(str, Enum):
    """Requested data dimensions"""
    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"
    WIND = "wind"
    PRECIPITATION = "precipitation"
    AIR_QUALITY = "air_quality"
    UV_INDEX = "uv_index"
    MARINE = "marine"
    CONDITIONS = "conditions"


class Granularity(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"


class CacheTypeTag(str, Enum):
    """Volatility class of cached data; each has a fixed TTL"""
    CURRENT_WEATHER = "current_weather"
    FORECAST = "forecast"
    HISTORICAL = "historical"
    LOCATION = "location"


class RouteState(str, Enum):
    """Per-request routing state: NotRouted -> Routed -> Degraded -> Failed"""
    NOT_ROUTED = "not_routed"
    ROUTED = "routed"
    DEGRADED = "degraded"
    FAILED = "failed"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class _Model(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


class RawQuery(_Model):
    """Unmodified caller input"""
    text: str = ""
    context: Optional[str] = Field(default=None, alias="freeformContext")


class TimeContext(_Model):
    current_time: datetime
    timezone: str
    relative_expression_found: bool = False
    resolved_absolute_time: Optional[datetime] = None
    relative_description: Optional[str] = None
    day_offset: Optional[int] = None

    def to_prompt_context(self) -> str:
        """Render as the enriched context string passed to the AI parser."""
        parts = [
            f"current_time={self.current_time.isoformat()}",
            f"timezone={self.timezone}",
        ]
        if self.relative_expression_found and self.resolved_absolute_time:
            parts.append(f"resolved_date={self.resolved_absolute_time.date().isoformat()}")
            parts.append(f"relative={self.relative_description}")
        return "; ".join(parts)


class LocationInfo(_Model):
    name: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @property
    def resolved(self) -> bool:
        return bool(self.name)


class IntentInfo(_Model):
    primary: Intent = Intent.CURRENT_CONDITIONS
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class Timeframe(_Model):
    type: TimeframeType = TimeframeType.CURRENT
    period: Optional[str] = None


class ParsedQuery(_Model):
    """Structured, intent-classified form of a RawQuery"""
    original_query: str = ""
    location: LocationInfo = Field(default_factory=LocationInfo)
    intent: IntentInfo = Field(default_factory=IntentInfo)
    timeframe: Timeframe = Field(default_factory=Timeframe)
    metrics: Set[Metric] = Field(default_factory=set)
    language: str = "en"
    units: str = "metric"
    detail_level: str = "basic"
    granularity: Optional[Granularity] = None
    activities: List[str] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    parsing_source: Optional[ParsingSource] = None
    time_context: Optional[TimeContext] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> float:
        return _clamp(v)


class RoutingCandidate(_Model):
    """Capability descriptor of one backend API"""
    api_id: str
    supported_intents: List[Intent]
    required_params: List[str] = Field(default_factory=list)
    priority: int = 100
    granularities: List[Granularity] = Field(default_factory=list)
    baseline_latency_ms: float = 500.0

    def supports_granularity(self, granularity: Optional[Granularity]) -> bool:
        return granularity is None or granularity in self.granularities


class RoutingContext(_Model):
    """Caller-observed state of the backend APIs"""
    api_health: Dict[str, HealthStatus] = Field(default_factory=dict)
    response_time_history: Dict[str, List[float]] = Field(default_factory=dict)
    current_usage: Dict[str, int] = Field(default_factory=dict)

    def health_of(self, api_id: str) -> HealthStatus:
        return self.api_health.get(api_id, HealthStatus.HEALTHY)


class RoutingDecision(_Model):
    selected_api: RoutingCandidate
    confidence: float = Field(ge=0.0, le=1.0)
    api_parameters: Dict[str, Any] = Field(default_factory=dict)
    fallback_chain: List[RoutingCandidate] = Field(default_factory=list)
    reasoning: str = ""
    estimated_response_time: float = 0.0
    state: RouteState = RouteState.ROUTED
    fallback_step: int = 0


class CacheMetrics(_Model):
    size: int = 0
    max_size: int = 0
    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0
    evictions: int = 0
    expirations: int = 0
    errors: int = 0
    memory_usage_percent: float = 0.0


class ErrorRecord(_Model):
    """User-facing, stable description of a failure"""
    code: str
    severity: Severity
    retryable: bool
    suggestions: List[str] = Field(min_length=1)
    user_message: str
    counts_toward_failure_rate: bool = True
    retry_after: Optional[float] = None


class RoutingMetadata(_Model):
    processing_time_ms: float = 0.0
    parsing_confidence: float = 0.0
    parsing_source: Optional[ParsingSource] = None
    cache_status: Optional[str] = None  # hit, miss, bypass
    state: RouteState = RouteState.NOT_ROUTED
    fallback_used: bool = False
    original_api: Optional[str] = None


class RoutingResult(_Model):
    success: bool
    parsed_query: Optional[ParsedQuery] = None
    decision: Optional[RoutingDecision] = None
    data: Optional[Any] = None
    error: Optional[ErrorRecord] = None
    metadata: RoutingMetadata = Field(default_factory=RoutingMetadata)
