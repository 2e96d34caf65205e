"""
Confidence Merger - Combine rule-based and AI-parsed queries.

Field policy:
- location / intent: the source with the higher field confidence wins;
  an unresolved AI location never replaces a resolved rule location
- remaining fields: the AI value wins when the AI's overall confidence is
  higher and the AI actually supplied the field
- confidence: max of both, plus a corroboration bonus when both sources
  agree on location and intent
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..models import ParsedQuery, ParsingSource

logger = logging.getLogger(__name__)

CORROBORATION_BONUS = 0.05

_OPTIONAL_FIELDS = (
    "timeframe",
    "metrics",
    "language",
    "units",
    "detail_level",
    "granularity",
    "activities",
)


def _normalise(name: Optional[str]) -> str:
    return (name or "").strip().lower()


def _supplied(query: ParsedQuery, field: str) -> bool:
    """A field counts as supplied when it was set explicitly and is non-empty."""
    if field not in query.model_fields_set:
        return False
    value: Any = getattr(query, field)
    return value is not None and value != "" and value != set() and value != []


def merge(rule_result: ParsedQuery, ai_result: Optional[ParsedQuery]) -> ParsedQuery:
    """Merge an AI parse into a rule parse. Never raises."""
    if ai_result is None:
        return rule_result.model_copy(update={"parsing_source": ParsingSource.RULES_FALLBACK})

    update = {}

    rule_loc, ai_loc = rule_result.location, ai_result.location
    same_place = _normalise(rule_loc.name) == _normalise(ai_loc.name)
    # Disagreement on location: higher confidence wins, ties go to the AI
    ai_wins_location = ai_loc.confidence > rule_loc.confidence or (
        not same_place and ai_loc.confidence == rule_loc.confidence
    )
    if ai_loc.resolved and (not rule_loc.resolved or ai_wins_location):
        location = ai_loc
        # Keep gazetteer coordinates when both name the same place
        if ai_loc.latitude is None and same_place:
            location = ai_loc.model_copy(
                update={"latitude": rule_loc.latitude, "longitude": rule_loc.longitude}
            )
        update["location"] = location

    if "intent" in ai_result.model_fields_set and ai_result.intent.confidence > rule_result.intent.confidence:
        update["intent"] = ai_result.intent

    if ai_result.confidence > rule_result.confidence:
        for field in _OPTIONAL_FIELDS:
            if _supplied(ai_result, field):
                update[field] = getattr(ai_result, field)

    confidence = max(rule_result.confidence, ai_result.confidence)
    agree = (
        rule_loc.resolved
        and same_place
        and rule_result.intent.primary == ai_result.intent.primary
    )
    if agree:
        confidence = min(1.0, confidence + CORROBORATION_BONUS)

    update["confidence"] = confidence
    update["parsing_source"] = ParsingSource.RULES_WITH_AI_FALLBACK

    merged = rule_result.model_copy(update=update)
    logger.debug(
        "Merged parse: rule=%.2f ai=%.2f merged=%.2f agree=%s",
        rule_result.confidence, ai_result.confidence, confidence, agree,
    )
    return merged
