"""
Rule Parser - Deterministic Query Understanding

Turns a RawQuery into a ParsedQuery using keyword tables and location
patterns only. It never raises and never performs I/O; any input,
including empty text, yields a ParsedQuery with a confidence in [0, 1].

Confidence scoring:
- BASE_CONFIDENCE for any non-empty query
- location confidence weighted by LOCATION_WEIGHT
- INTENT_CUE_BONUS when an explicit temporal/advice cue is present
- WEATHER_WORD_BONUS when the query names weather explicitly
- METRIC_BONUS per requested metric, capped at METRIC_BONUS_CAP
- COMPLEXITY_PENALTY for advice/activity or multi-metric queries,
  which the rules can classify but not fully understand
- capped at UNRESOLVED_CAP when no location could be found
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from ..models import (
    Intent,
    IntentInfo,
    ParsedQuery,
    ParsingSource,
    RawQuery,
    TimeContext,
    Timeframe,
    TimeframeType,
)
from .keyword_matcher import KeywordMatcher
from .location_resolver import LocationResolver

logger = logging.getLogger(__name__)


BASE_CONFIDENCE = 0.15
EMPTY_CONFIDENCE = 0.05
LOCATION_WEIGHT = 0.45
INTENT_CUE_BONUS = 0.15
WEATHER_WORD_BONUS = 0.05
METRIC_BONUS = 0.05
METRIC_BONUS_CAP = 0.10
COMPLEXITY_PENALTY = 0.40
COMPLEX_METRIC_COUNT = 3
UNRESOLVED_CAP = 0.25

LANGUAGE_NAMES = {
    "english": "en",
    "繁體中文": "zh-TW",
    "繁体中文": "zh-TW",
    "traditional chinese": "zh-TW",
    "简体中文": "zh-CN",
    "簡體中文": "zh-CN",
    "simplified chinese": "zh-CN",
    "日本語": "ja",
    "japanese": "ja",
}


@dataclass
class ContextHints:
    """Preferences extracted from the free-form caller context."""
    location: Optional[str] = None
    timeframe: Optional[str] = None
    timezone: Optional[str] = None
    units: Optional[str] = None
    language: Optional[str] = None


_CONTEXT_FIELDS = {
    "location": re.compile(r"(?:location|地點|地点|場所)\s*[:：]\s*([^;,，；\n]+)", re.IGNORECASE),
    "timeframe": re.compile(r"(?:timeframe|時間|时间)\s*[:：]\s*([^;,，；\n]+)", re.IGNORECASE),
    "timezone": re.compile(r"(?:timezone|tz|時區|时区)\s*[:：]\s*([A-Za-z_]+/[A-Za-z_]+(?:/[A-Za-z_]+)?)", re.IGNORECASE),
}


def parse_context(context: Optional[str]) -> ContextHints:
    """Extract location/timeframe/timezone/units/language hints from context text."""
    hints = ContextHints()
    if not context:
        return hints

    for name, pattern in _CONTEXT_FIELDS.items():
        match = pattern.search(context)
        if match:
            setattr(hints, name, match.group(1).strip())

    hints.units = KeywordMatcher.detect_units(context)

    lowered = context.lower()
    for label, code in LANGUAGE_NAMES.items():
        if label in lowered:
            hints.language = code
            break

    return hints


class RuleParser:
    """Pure, deterministic parser; safe to share across concurrent requests."""

    def __init__(self, default_language: str = "en", default_units: str = "metric"):
        self.default_language = default_language
        self.default_units = default_units

    def parse(self, raw: RawQuery, time_context: Optional[TimeContext] = None) -> ParsedQuery:
        text = (raw.text or "").strip()
        hints = parse_context(raw.context)

        if not text:
            return self._empty(raw, hints, time_context)

        metric_match = KeywordMatcher.detect_metrics(text)
        intent_match = KeywordMatcher.detect_intent(text, has_activity=bool(metric_match.activities))
        location_match = LocationResolver.resolve(text, context_location=hints.location)

        # Relative time expressions refine intent when no explicit cue was found
        intent = intent_match.intent
        has_cue = intent_match.matched_keyword is not None or intent_match.temporal_cue is not None
        if (
            not has_cue
            and intent == Intent.CURRENT_CONDITIONS
            and time_context is not None
            and time_context.day_offset is not None
        ):
            if time_context.day_offset > 0:
                intent = Intent.FORECAST
            elif time_context.day_offset < 0:
                intent = Intent.HISTORICAL
            has_cue = True

        timeframe = self._timeframe(intent, intent_match.temporal_cue, hints, time_context)

        language = KeywordMatcher.detect_language(text, default="")
        if not language:
            language = hints.language or self.default_language

        units = KeywordMatcher.detect_units(text) or hints.units or self.default_units
        metrics = set(metric_match.metrics)

        confidence = BASE_CONFIDENCE
        confidence += location_match.location.confidence * LOCATION_WEIGHT
        if has_cue or intent_match.intent == Intent.WEATHER_ADVICE:
            confidence += INTENT_CUE_BONUS
        if KeywordMatcher.mentions_weather(text):
            confidence += WEATHER_WORD_BONUS
        confidence += min(METRIC_BONUS * len(metrics), METRIC_BONUS_CAP)

        complex_query = (
            intent == Intent.WEATHER_ADVICE
            or bool(metric_match.activities)
            or len(metrics) >= COMPLEX_METRIC_COUNT
        )
        if complex_query:
            confidence -= COMPLEXITY_PENALTY
        if not location_match.location.resolved:
            confidence = min(confidence, UNRESOLVED_CAP)

        confidence = max(0.0, min(1.0, round(confidence, 4)))

        logger.debug(
            "Rule parse: location=%s intent=%s metrics=%s confidence=%.2f",
            location_match.location.name, intent.value, sorted(m.value for m in metrics), confidence,
        )

        return ParsedQuery(
            original_query=raw.text,
            location=location_match.location,
            intent=IntentInfo(primary=intent, confidence=intent_match.confidence),
            timeframe=timeframe,
            metrics=metrics,
            language=language,
            units=units,
            detail_level=KeywordMatcher.detect_detail_level(text, len(metrics)),
            granularity=KeywordMatcher.detect_granularity(text),
            activities=metric_match.activities,
            confidence=confidence,
            parsing_source=ParsingSource.RULES_ONLY,
            time_context=time_context,
        )

    def _timeframe(
        self,
        intent: Intent,
        temporal_cue: Optional[str],
        hints: ContextHints,
        time_context: Optional[TimeContext],
    ) -> Timeframe:
        if intent == Intent.HISTORICAL:
            kind = TimeframeType.HISTORICAL
        elif intent == Intent.FORECAST:
            kind = TimeframeType.FORECAST
        elif intent == Intent.WEATHER_ADVICE:
            # Advice is about what is coming unless the query anchors it in time
            cue_types = {"historical": TimeframeType.HISTORICAL, "current": TimeframeType.CURRENT}
            kind = cue_types.get(temporal_cue or "", TimeframeType.FORECAST)
            if time_context is not None and time_context.day_offset == 0 and temporal_cue is None:
                kind = TimeframeType.CURRENT
        else:
            kind = TimeframeType.CURRENT

        period = None
        if time_context is not None and time_context.relative_expression_found:
            period = time_context.relative_description
        elif hints.timeframe:
            period = hints.timeframe
        return Timeframe(type=kind, period=period)

    def _empty(
        self,
        raw: RawQuery,
        hints: ContextHints,
        time_context: Optional[TimeContext],
    ) -> ParsedQuery:
        location = LocationResolver.resolve("", context_location=hints.location).location
        return ParsedQuery(
            original_query=raw.text or "",
            location=location,
            intent=IntentInfo(primary=Intent.CURRENT_CONDITIONS, confidence=0.1),
            timeframe=Timeframe(type=TimeframeType.CURRENT, period=hints.timeframe),
            language=hints.language or self.default_language,
            units=hints.units or self.default_units,
            confidence=EMPTY_CONFIDENCE,
            parsing_source=ParsingSource.RULES_ONLY,
            time_context=time_context,
        )


_default_parser = RuleParser()


def parse_with_rules(raw: RawQuery, time_context: Optional[TimeContext] = None) -> ParsedQuery:
    """Parse with the default (English, metric) rule parser."""
    return _default_parser.parse(raw, time_context)
