"""
AI Fallback Adapter

Wraps an AI parsing capability behind one narrow call:

    await parser.parse(text, context) -> ParsedQuery

The router only invokes it when rule confidence is below the active
threshold, enforces its timeout, and absorbs every failure. Adapters
raise AIParsingError for anything unusable; they never return a
half-understood result.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field, ValidationError

from ..exceptions import AIParsingError
from ..models import (
    Intent,
    IntentInfo,
    LocationInfo,
    Metric,
    ParsedQuery,
    Timeframe,
    TimeframeType,
)
from .json_parser import JSONParseError, parse_json_object
from .llm import BaseLLMProvider, extract_content

logger = logging.getLogger(__name__)


@runtime_checkable
class AIQueryParser(Protocol):
    """Anything that can turn query text plus enriched context into a ParsedQuery."""

    async def parse(self, text: str, context: str) -> ParsedQuery:
        ...


class AIParseOutput(BaseModel):
    """Shape the model is asked to return."""
    location: Optional[str] = None
    intent: Intent
    confidence: float = Field(ge=0.0, le=1.0)
    language: Optional[str] = None
    metrics: List[str] = Field(default_factory=list)
    time_scope: Optional[str] = Field(default=None, alias="timeScope")
    period: Optional[str] = None

    model_config = {"populate_by_name": True}


SYSTEM_PROMPT = """You extract structured weather queries.
Return a JSON object with:
  location: the place name exactly as written in the query (null if none)
  intent: one of current_conditions, forecast, historical, weather_advice
  confidence: 0.0-1.0, how sure you are of location and intent
  language: en, zh-TW, zh-CN or ja (the query's language)
  metrics: any of temperature, humidity, wind, precipitation, air_quality, uv_index, marine, conditions
  timeScope: current, forecast or historical
  period: the relative time the user asked about (e.g. "tomorrow"), or null
Queries asking whether weather suits an activity are weather_advice."""


def output_to_parsed_query(output: AIParseOutput, text: str) -> ParsedQuery:
    """Build a ParsedQuery containing only the fields the AI supplied."""
    fields: Dict[str, Any] = {
        "original_query": text,
        "intent": IntentInfo(primary=output.intent, confidence=output.confidence),
        "confidence": output.confidence,
    }
    if output.location:
        fields["location"] = LocationInfo(name=output.location.strip(), confidence=output.confidence)
    if output.language:
        fields["language"] = output.language

    metrics = set()
    for value in output.metrics:
        try:
            metrics.add(Metric(value))
        except ValueError:
            logger.debug("Ignoring unknown metric from AI: %r", value)
    if metrics:
        fields["metrics"] = metrics

    if output.time_scope:
        try:
            fields["timeframe"] = Timeframe(type=TimeframeType(output.time_scope), period=output.period)
        except ValueError:
            logger.debug("Ignoring unknown time scope from AI: %r", output.time_scope)

    return ParsedQuery(**fields)


class LLMQueryParser:
    """AI parser backed by a chat-completion LLM provider."""

    def __init__(self, provider: BaseLLMProvider, max_tokens: int = 300):
        self.provider = provider
        self.max_tokens = max_tokens

    async def parse(self, text: str, context: str) -> ParsedQuery:
        prompt = f"Query: {text}\nContext: {context}"
        result = await self.provider.generate(
            prompt=prompt,
            system_prompt=SYSTEM_PROMPT,
            temperature=0.0,
            max_tokens=self.max_tokens,
            response_format={"type": "json_object"},
        )

        content = extract_content(result)
        try:
            raw = parse_json_object(content)
            output = AIParseOutput.model_validate(raw)
        except (JSONParseError, ValidationError) as exc:
            raise AIParsingError("AI returned an unusable parse", details={"reason": type(exc).__name__}) from exc

        parsed = output_to_parsed_query(output, text)
        logger.debug(
            "AI parse: location=%s intent=%s confidence=%.2f",
            parsed.location.name, parsed.intent.primary.value, parsed.confidence,
        )
        return parsed
