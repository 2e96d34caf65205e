"""
Query Router - Single Entry Point for Weather Queries

Pipeline for one query:
1. Time resolution (relative expressions -> absolute date in caller's zone)
2. Rule parsing
3. AI fallback when rule confidence is below the threshold and AI is
   available; every AI failure is absorbed
4. Confidence merge
5. Location and confidence acceptance checks
6. API selection (health-aware, with fallback chain)
7. Cache lookup, then the weather client on a miss, walking the
   fallback chain when the selected API fails

Every failure is returned as RoutingResult(success=False, error=...),
never raised.

Usage:
    router = create_query_router()
    result = await router.route_query("台北今天天氣")
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from ..config import Settings, get_settings
from ..exceptions import (
    AIParsingTimeoutError,
    LocationNotSpecifiedError,
    QueryParsingError,
    RateLimitExceededError,
    WeatherClientError,
    WeatherTimeoutError,
    get_error_response,
)
from ..models import (
    CacheMetrics,
    CacheTypeTag,
    Intent,
    ParsedQuery,
    ParsingSource,
    RawQuery,
    RouteState,
    RoutingCandidate,
    RoutingContext,
    RoutingDecision,
    RoutingMetadata,
    RoutingResult,
    TimeContext,
)
from ..services.ai_parser import AIQueryParser, LLMQueryParser
from ..services.api_health import ApiHealthTracker
from ..services.cache import CacheService
from ..services.error_classifier import SERVICE_UNAVAILABLE, classify
from ..services.llm import create_llm_provider
from ..services.rate_limiter import SlidingWindowRateLimiter
from ..services.time_service import TimeService
from ..services.weather_client import GeoLocation, GoogleWeatherClient, WeatherAPIClient, WeatherRequest
from ..utils.redaction import truncate_query
from .api_selector import FALLBACK_DECAY, advance_fallback, select_api
from .confidence_merger import merge
from .keyword_matcher import KeywordMatcher
from .rule_parser import RuleParser, parse_context

logger = logging.getLogger(__name__)

GEOCODING_API = "google_geocoding"

# TTL class follows the question asked, not the API that answered it
INTENT_CACHE_TYPES: Dict[Intent, CacheTypeTag] = {
    Intent.CURRENT_CONDITIONS: CacheTypeTag.CURRENT_WEATHER,
    Intent.FORECAST: CacheTypeTag.FORECAST,
    Intent.WEATHER_ADVICE: CacheTypeTag.FORECAST,
    Intent.HISTORICAL: CacheTypeTag.HISTORICAL,
}


class QueryRouter:
    """
    Routes natural-language weather queries to a backend API.

    Collaborators are injected; create_query_router() wires the defaults
    from Settings.
    """

    def __init__(
        self,
        settings: Settings,
        cache: CacheService,
        time_service: Optional[TimeService] = None,
        rule_parser: Optional[RuleParser] = None,
        ai_parser: Optional[AIQueryParser] = None,
        weather_client: Optional[WeatherAPIClient] = None,
        health: Optional[ApiHealthTracker] = None,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        registry: Optional[List[RoutingCandidate]] = None,
    ):
        self.settings = settings
        self.cache = cache
        self.time_service = time_service or TimeService(settings.default_timezone)
        self.rule_parser = rule_parser or RuleParser(settings.default_language, settings.default_units)
        self.ai_parser = None if settings.disable_ai_parsing else ai_parser
        self.weather_client = weather_client
        self.health = health or ApiHealthTracker()
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(settings.max_requests_per_minute)
        self.registry = registry

        self._metrics: Dict[str, int] = {
            "requests": 0,
            "successes": 0,
            "service_failures": 0,
            "user_errors": 0,
            "ai_invocations": 0,
            "ai_failures": 0,
            "fallbacks": 0,
        }

    @property
    def ai_available(self) -> bool:
        return self.ai_parser is not None

    # ==========================================================================
    # Public Methods
    # ==========================================================================

    async def route_query(
        self,
        text: str,
        context: Optional[str] = None,
        routing_context: Optional[RoutingContext] = None,
    ) -> RoutingResult:
        """Parse, route and (when a client is configured) fetch one query."""
        started = time.perf_counter()
        self._metrics["requests"] += 1
        raw = RawQuery(text=text or "", context=context)
        parsed: Optional[ParsedQuery] = None
        decision: Optional[RoutingDecision] = None
        logger.info("Routing query: %s", truncate_query(raw.text))

        try:
            hints = parse_context(context)
            time_context = self.time_service.resolve(raw.text, hints.timezone)
            parsed = await self._parse(raw, time_context)

            if not parsed.location.resolved:
                raise LocationNotSpecifiedError("No location in query or context")

            floor = self.acceptance_floor(parsed)
            if parsed.confidence < floor:
                raise QueryParsingError(
                    "Parsing confidence below acceptance floor",
                    confidence=parsed.confidence,
                    threshold=floor,
                )

            observed = self.health.build_context(routing_context)
            decision = select_api(parsed, observed, self.registry)

            if self.weather_client is None:
                return self._success(parsed, decision, None, "bypass", started)
            return await self._execute(parsed, decision, routing_context, started)

        except Exception as exc:
            return self._failure(exc, raw, parsed, decision, started)

    async def handle_fallback(
        self,
        previous_result: RoutingResult,
        routing_context: Optional[RoutingContext] = None,
        cause_error: Optional[BaseException] = None,
    ) -> RoutingResult:
        """
        Advance a routed request to its next fallback API after a call failure.

        Confidence decays by 0.8 per step; an exhausted chain fails with
        SERVICE_UNAVAILABLE.
        """
        started = time.perf_counter()
        decision = previous_result.decision
        parsed = previous_result.parsed_query
        raw = RawQuery(text=parsed.original_query if parsed else "")

        if decision is None or parsed is None:
            return self._failure(cause_error or RuntimeError("nothing to fall back from"), raw, parsed, None, started)

        if cause_error is not None:
            self.health.record_failure(decision.selected_api.api_id, cause_error)

        next_decision = advance_fallback(decision, self.health.build_context(routing_context))
        if next_decision is None:
            logger.warning(
                "Fallback chain exhausted after %s (%s)",
                decision.selected_api.api_id, type(cause_error).__name__ if cause_error else "no cause",
            )
            failed = decision.model_copy(update={"state": RouteState.FAILED})
            return self._failure(SERVICE_UNAVAILABLE, raw, parsed, failed, started)

        self._metrics["fallbacks"] += 1
        if self.weather_client is None:
            return self._success(parsed, next_decision, None, "bypass", started)
        try:
            return await self._execute(parsed, next_decision, routing_context, started)
        except Exception as exc:
            return self._failure(exc, raw, parsed, next_decision, started)

    def get_cache_metrics(self) -> CacheMetrics:
        return self.cache.get_metrics()

    def get_service_metrics(self) -> Dict[str, Any]:
        """Request counters; user-correctable errors never count as service failures."""
        metrics: Dict[str, Any] = dict(self._metrics)
        counted = metrics["successes"] + metrics["service_failures"]
        metrics["failure_rate"] = round(metrics["service_failures"] / counted, 4) if counted else 0.0
        metrics["rate_limiter_usage"] = self.rate_limiter.current_usage
        metrics["api_health"] = {k: v["state"] for k, v in self.health.get_all_stats().items()}
        return metrics

    def acceptance_floor(self, parsed: ParsedQuery) -> float:
        """Lowered floor when the AI could not contribute."""
        if parsed.parsing_source == ParsingSource.RULES_FALLBACK:
            return self.settings.rules_only_floor
        return self.settings.min_confidence

    # ==========================================================================
    # Parsing
    # ==========================================================================

    async def _parse(self, raw: RawQuery, time_context: TimeContext) -> ParsedQuery:
        rule_result = self.rule_parser.parse(raw, time_context)

        if rule_result.confidence >= self.settings.ai_threshold:
            return rule_result

        if not self.ai_available:
            logger.debug("Rule confidence %.2f below threshold, AI unavailable", rule_result.confidence)
            return merge(rule_result, None)

        self._metrics["ai_invocations"] += 1
        enriched = time_context.to_prompt_context()
        if raw.context:
            enriched = f"{enriched}; {raw.context}"

        try:
            ai_result = await self._ai_parse(raw.text, enriched)
        except AIParsingTimeoutError:
            self._metrics["ai_failures"] += 1
            logger.warning("AI parsing timed out after %.1fs, using rules", self.settings.ai_parse_timeout)
            return merge(rule_result, None)
        except Exception as exc:
            self._metrics["ai_failures"] += 1
            logger.warning("AI parsing failed (%s), using rules", type(exc).__name__)
            return merge(rule_result, None)

        return merge(rule_result, ai_result)

    async def _ai_parse(self, text: str, context: str) -> ParsedQuery:
        try:
            return await asyncio.wait_for(
                self.ai_parser.parse(text, context),
                timeout=self.settings.ai_parse_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise AIParsingTimeoutError(
                f"AI parsing exceeded {self.settings.ai_parse_timeout}s",
                details={"timeout": self.settings.ai_parse_timeout},
            ) from exc

    # ==========================================================================
    # Execution
    # ==========================================================================

    async def _resolve_coordinates(self, parsed: ParsedQuery) -> ParsedQuery:
        location = parsed.location
        if location.latitude is not None and location.longitude is not None:
            return parsed

        key = CacheService.location_key(location.name)
        cached = self.cache.get(key)
        if cached is None:
            self.rate_limiter.acquire(GEOCODING_API)
            geo = await self.health.call(
                GEOCODING_API, self._geocode_with_timeout, location.name, parsed.language
            )
            cached = {"latitude": geo.latitude, "longitude": geo.longitude}
            self.cache.set(key, cached, "location")

        resolved = location.model_copy(update=cached)
        return parsed.model_copy(update={"location": resolved})

    def _cache_key(self, parsed: ParsedQuery, decision: RoutingDecision) -> str:
        params = decision.api_parameters
        return CacheService.build_key(
            parsed.intent.primary.value,
            latitude=parsed.location.latitude,
            longitude=parsed.location.longitude,
            location=parsed.location.name,
            units=parsed.units,
            language=parsed.language,
            granularity=parsed.granularity.value if parsed.granularity else None,
            date=params.get("date"),
            precision=self.settings.coordinate_precision,
        )

    async def _geocode_with_timeout(self, name: str, language: str) -> GeoLocation:
        try:
            return await asyncio.wait_for(
                self.weather_client.geocode(name, language),
                timeout=self.settings.weather_api_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise WeatherTimeoutError("geocoding timed out", api_id=GEOCODING_API) from exc

    async def _fetch_with_timeout(self, request: WeatherRequest) -> Any:
        try:
            return await asyncio.wait_for(
                self.weather_client.fetch(request),
                timeout=self.settings.weather_api_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise WeatherTimeoutError(f"{request.api_id} timed out", api_id=request.api_id) from exc

    async def _call_api(self, parsed: ParsedQuery, decision: RoutingDecision) -> Any:
        params = decision.api_parameters
        api_id = decision.selected_api.api_id
        request = WeatherRequest(
            api_id=api_id,
            latitude=parsed.location.latitude,
            longitude=parsed.location.longitude,
            location_name=parsed.location.name,
            units=parsed.units,
            language=parsed.language,
            granularity=params.get("granularity"),
            date=params.get("date"),
        )
        self.rate_limiter.acquire(api_id)
        return await self.health.call(api_id, self._fetch_with_timeout, request)

    async def _execute(
        self,
        parsed: ParsedQuery,
        decision: RoutingDecision,
        routing_context: Optional[RoutingContext],
        started: float,
    ) -> RoutingResult:
        parsed = await self._resolve_coordinates(parsed)
        key = self._cache_key(parsed, decision)

        original_api = decision.selected_api.api_id
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Cache hit for %s (served by %s)", key, cached["api_id"])
            served = self._served_decision(decision, cached["api_id"])
            return self._success(parsed, served, cached["data"], "hit", started, original_api)

        current = decision
        while True:
            try:
                data = await self._call_api(parsed, current)
                break
            except (WeatherClientError, RateLimitExceededError) as exc:
                # Another API will not fix a bad location or our own quota
                raw = RawQuery(text=parsed.original_query)
                return self._failure(exc, raw, parsed, current, started, original_api)
            except Exception as exc:
                logger.warning("%s failed: %s", current.selected_api.api_id, type(exc).__name__)
                next_decision = advance_fallback(current, self.health.build_context(routing_context))
                if next_decision is None:
                    failed = current.model_copy(update={"state": RouteState.FAILED})
                    raw = RawQuery(text=parsed.original_query)
                    return self._failure(exc, raw, parsed, failed, started, original_api)
                self._metrics["fallbacks"] += 1
                current = next_decision

        entry = {"api_id": current.selected_api.api_id, "data": data}
        self.cache.set(key, entry, INTENT_CACHE_TYPES[parsed.intent.primary])
        return self._success(parsed, current, data, "miss", started, original_api)

    @staticmethod
    def _served_decision(decision: RoutingDecision, api_id: str) -> RoutingDecision:
        """The decision as it stood when api_id served a cached response."""
        if api_id == decision.selected_api.api_id:
            return decision
        chain = decision.fallback_chain
        for step, candidate in enumerate(chain, start=1):
            if candidate.api_id == api_id:
                return decision.model_copy(update={
                    "selected_api": candidate,
                    "fallback_chain": chain[step:],
                    "confidence": decision.confidence * FALLBACK_DECAY ** step,
                    "reasoning": f"cached from fallback {api_id}: {decision.reasoning}",
                    "state": RouteState.DEGRADED,
                    "fallback_step": decision.fallback_step + step,
                })
        return decision

    # ==========================================================================
    # Results
    # ==========================================================================

    def _success(
        self,
        parsed: ParsedQuery,
        decision: RoutingDecision,
        data: Any,
        cache_status: str,
        started: float,
        original_api: Optional[str] = None,
    ) -> RoutingResult:
        self._metrics["successes"] += 1
        fallback_used = decision.fallback_step > 0
        return RoutingResult(
            success=True,
            parsed_query=parsed,
            decision=decision,
            data=data,
            metadata=RoutingMetadata(
                processing_time_ms=round((time.perf_counter() - started) * 1000, 2),
                parsing_confidence=parsed.confidence,
                parsing_source=parsed.parsing_source,
                cache_status=cache_status,
                state=decision.state,
                fallback_used=fallback_used,
                original_api=original_api if fallback_used else None,
            ),
        )

    def _failure(
        self,
        error: Any,
        raw: RawQuery,
        parsed: Optional[ParsedQuery],
        decision: Optional[RoutingDecision],
        started: float,
        original_api: Optional[str] = None,
    ) -> RoutingResult:
        language = parsed.language if parsed else KeywordMatcher.detect_language(
            raw.text, default=self.settings.default_language
        )
        record = classify(error, {"language": language})
        fallback_used = bool(decision and decision.fallback_step > 0)

        if record.counts_toward_failure_rate:
            self._metrics["service_failures"] += 1
        else:
            self._metrics["user_errors"] += 1

        if isinstance(error, BaseException):
            logger.info("Query failed with %s: %s", record.code, get_error_response(error)["error"])
        else:
            logger.info("Query failed with %s", record.code)

        return RoutingResult(
            success=False,
            parsed_query=parsed,
            decision=decision,
            error=record,
            metadata=RoutingMetadata(
                processing_time_ms=round((time.perf_counter() - started) * 1000, 2),
                parsing_confidence=parsed.confidence if parsed else 0.0,
                parsing_source=parsed.parsing_source if parsed else None,
                state=decision.state if decision else RouteState.NOT_ROUTED,
                fallback_used=fallback_used,
                original_api=original_api if fallback_used else None,
            ),
        )


def create_query_router(
    settings: Optional[Settings] = None,
    ai_parser: Optional[AIQueryParser] = None,
    weather_client: Optional[WeatherAPIClient] = None,
    cache: Optional[CacheService] = None,
    time_service: Optional[TimeService] = None,
) -> QueryRouter:
    """
    Wire a QueryRouter from Settings.

    Missing credentials degrade instead of failing: no LLM key means
    rules-only parsing, no weather key means routing without fetching.
    """
    settings = settings or get_settings()

    if ai_parser is None and settings.ai_enabled:
        provider = create_llm_provider(settings)
        if provider is not None:
            ai_parser = LLMQueryParser(provider)

    if weather_client is None and settings.weather_api_key:
        weather_client = GoogleWeatherClient(settings.weather_api_key, timeout=settings.weather_api_timeout)

    if cache is None:
        cache = CacheService(
            ttl_table=settings.ttl_table,
            max_size=settings.cache_max_size,
            cleanup_threshold=settings.cache_cleanup_threshold,
            sweep_interval=settings.cache_sweep_interval,
        )

    return QueryRouter(
        settings=settings,
        cache=cache,
        time_service=time_service,
        ai_parser=ai_parser,
        weather_client=weather_client,
        rate_limiter=SlidingWindowRateLimiter(settings.max_requests_per_minute),
    )
