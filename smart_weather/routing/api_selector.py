"""
API Selector - Map a ParsedQuery to a ranked set of backend APIs.

Backend APIs are plain capability descriptors (RoutingCandidate), ranked by
a pure function. The fallback chain is ordered data: the router walks it
with advance_fallback() when the selected API fails at call time.

Ranking order:
1. Health (healthy before degraded; unavailable is dropped)
2. Granularity fit when the query asks for hourly/daily data
3. Average observed response time (declared baseline when no history)
4. Declared priority
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..exceptions import NoSuitableAPIError
from ..models import (
    Granularity,
    HealthStatus,
    Intent,
    ParsedQuery,
    RouteState,
    RoutingCandidate,
    RoutingContext,
    RoutingDecision,
)

logger = logging.getLogger(__name__)

GRANULARITY_PENALTY = 0.15
FALLBACK_DECAY = 0.8

_HEALTH_RANK = {HealthStatus.HEALTHY: 0, HealthStatus.DEGRADED: 1}


API_REGISTRY: List[RoutingCandidate] = [
    RoutingCandidate(
        api_id="google_current_conditions",
        supported_intents=[Intent.CURRENT_CONDITIONS],
        required_params=["location"],
        priority=1,
        granularities=[],
        baseline_latency_ms=300,
    ),
    RoutingCandidate(
        api_id="google_daily_forecast",
        supported_intents=[Intent.FORECAST, Intent.WEATHER_ADVICE],
        required_params=["location"],
        priority=1,
        granularities=[Granularity.DAILY],
        baseline_latency_ms=400,
    ),
    RoutingCandidate(
        api_id="google_hourly_forecast",
        supported_intents=[Intent.FORECAST, Intent.WEATHER_ADVICE, Intent.CURRENT_CONDITIONS],
        required_params=["location"],
        priority=2,
        granularities=[Granularity.HOURLY],
        baseline_latency_ms=450,
    ),
    RoutingCandidate(
        api_id="google_hourly_history",
        supported_intents=[Intent.HISTORICAL],
        required_params=["location"],
        priority=1,
        granularities=[Granularity.HOURLY],
        baseline_latency_ms=600,
    ),
]


def average_response_time(candidate: RoutingCandidate, context: RoutingContext) -> float:
    history = context.response_time_history.get(candidate.api_id) or []
    if not history:
        return float(candidate.baseline_latency_ms)
    return sum(history) / len(history)


def build_api_parameters(query: ParsedQuery) -> Dict[str, Any]:
    """Parameters handed to the weather client for the selected API."""
    params: Dict[str, Any] = {
        "location": query.location.name,
        "units": query.units,
        "language": query.language,
    }
    if query.location.latitude is not None and query.location.longitude is not None:
        params["latitude"] = query.location.latitude
        params["longitude"] = query.location.longitude
    if query.granularity is not None:
        params["granularity"] = query.granularity.value
    if query.metrics:
        params["metrics"] = sorted(m.value for m in query.metrics)
    time_context = query.time_context
    if time_context is not None and time_context.resolved_absolute_time is not None:
        params["date"] = time_context.resolved_absolute_time.date().isoformat()
    return params


def rank_candidates(
    query: ParsedQuery,
    context: RoutingContext,
    registry: Optional[List[RoutingCandidate]] = None,
) -> List[RoutingCandidate]:
    """Candidates for the query intent, unavailable dropped, best first."""
    intent = query.intent.primary
    registry = API_REGISTRY if registry is None else registry

    usable = [
        c for c in registry
        if intent in c.supported_intents
        and context.health_of(c.api_id) != HealthStatus.UNAVAILABLE
    ]

    def sort_key(candidate: RoutingCandidate):
        return (
            _HEALTH_RANK.get(context.health_of(candidate.api_id), 2),
            0 if candidate.supports_granularity(query.granularity) else 1,
            average_response_time(candidate, context),
            candidate.priority,
        )

    return sorted(usable, key=sort_key)


def select_api(
    query: ParsedQuery,
    context: Optional[RoutingContext] = None,
    registry: Optional[List[RoutingCandidate]] = None,
) -> RoutingDecision:
    """
    Select the primary API and fallback chain for a parsed query.

    Raises:
        NoSuitableAPIError: No non-unavailable API supports the intent
    """
    context = context or RoutingContext()
    ranked = rank_candidates(query, context, registry)
    intent = query.intent.primary

    if not ranked:
        logger.warning("No suitable API for intent %s", intent.value)
        raise NoSuitableAPIError(
            f"No available API supports intent '{intent.value}'",
            intent=intent.value,
        )

    selected, fallback_chain = ranked[0], ranked[1:]
    confidence = query.confidence
    reasons = [
        f"{selected.api_id} serves {intent.value}",
        f"health={context.health_of(selected.api_id).value}",
    ]
    if not selected.supports_granularity(query.granularity):
        confidence -= GRANULARITY_PENALTY
        reasons.append(f"cannot serve {query.granularity.value} granularity")

    decision = RoutingDecision(
        selected_api=selected,
        confidence=max(0.0, min(1.0, confidence)),
        api_parameters=build_api_parameters(query),
        fallback_chain=fallback_chain,
        reasoning="; ".join(reasons),
        estimated_response_time=average_response_time(selected, context),
        state=RouteState.ROUTED,
    )
    logger.info(
        "Selected %s for %s (fallbacks: %s, confidence %.2f)",
        selected.api_id, intent.value, [c.api_id for c in fallback_chain], decision.confidence,
    )
    return decision


def advance_fallback(
    decision: RoutingDecision,
    context: Optional[RoutingContext] = None,
) -> Optional[RoutingDecision]:
    """
    Move to the next non-unavailable API in the fallback chain.

    Returns the degraded decision, or None when the chain is exhausted.
    """
    context = context or RoutingContext()
    chain = list(decision.fallback_chain)

    while chain:
        candidate = chain.pop(0)
        if context.health_of(candidate.api_id) == HealthStatus.UNAVAILABLE:
            logger.debug("Skipping unavailable fallback %s", candidate.api_id)
            continue

        step = decision.fallback_step + 1
        logger.info(
            "Falling back from %s to %s (step %d)",
            decision.selected_api.api_id, candidate.api_id, step,
        )
        return decision.model_copy(update={
            "selected_api": candidate,
            "fallback_chain": chain,
            "confidence": decision.confidence * FALLBACK_DECAY,
            "reasoning": f"fallback from {decision.selected_api.api_id}: {decision.reasoning}",
            "estimated_response_time": average_response_time(candidate, context),
            "state": RouteState.DEGRADED,
            "fallback_step": step,
        })

    return None
