"""
Query Router Tests

End-to-end routing with fake AI parsers and weather clients: AI fallback
thresholds, timeouts, acceptance floors, fallback chains, caching and
error classification.

Run with: pytest smart_weather/tests/test_query_router.py -v
"""

import time
import unittest

from smart_weather.config import Settings
from smart_weather.exceptions import (
    AIParsingError,
    AIParsingTimeoutError,
    LocationNotSupportedError,
    WeatherUnavailableError,
)
from smart_weather.models import (
    HealthStatus,
    Intent,
    IntentInfo,
    LocationInfo,
    ParsedQuery,
    ParsingSource,
    RouteState,
    RoutingContext,
)
from smart_weather.routing.api_selector import FALLBACK_DECAY
from smart_weather.routing.query_router import create_query_router
from smart_weather.services.cache import CacheService
from smart_weather.services.weather_client import GeoLocation
from smart_weather.tests.utils import FakeAIParser, FakeClock, FakeWeatherClient

SCENARIO_A = "台北今天天氣"
SCENARIO_B = "沖繩明天天氣預報 衝浪條件 海浪高度 風速"
HIKING = "Should I go hiking in Springfield tomorrow?"
TOKYO = "Tokyo weather today"

# Keeps google_current_conditions primary once the hourly API has a fast
# observed latency
SLOW_HOURLY = RoutingContext(response_time_history={"google_hourly_forecast": [1000.0]})


def ai_result(name, confidence, intent=Intent.WEATHER_ADVICE):
    return ParsedQuery(
        original_query="",
        location=LocationInfo(name=name, confidence=confidence),
        intent=IntentInfo(primary=intent, confidence=confidence),
        confidence=confidence,
    )


def make_router(ai=None, client=None, **settings):
    settings.setdefault("ai_parse_timeout", 0.05)
    return create_query_router(settings=Settings(**settings), ai_parser=ai, weather_client=client)


class TestAIFallback(unittest.IsolatedAsyncioTestCase):
    """AI is consulted only below the threshold, and its failures are absorbed."""

    async def test_confident_rules_skip_ai(self):
        ai = FakeAIParser(ai_result("台北", 0.9, Intent.CURRENT_CONDITIONS))
        router = make_router(ai)

        result = await router.route_query(SCENARIO_A)

        self.assertTrue(result.success)
        self.assertEqual(ai.calls, [])
        self.assertEqual(result.metadata.parsing_source, ParsingSource.RULES_ONLY)
        self.assertEqual(result.parsed_query.language, "zh-TW")
        self.assertEqual(result.decision.selected_api.api_id, "google_current_conditions")
        self.assertEqual(result.metadata.cache_status, "bypass")

    async def test_complex_query_merges_ai_result(self):
        ai = FakeAIParser(ai_result("沖繩", 0.85))
        router = make_router(ai)

        result = await router.route_query(SCENARIO_B)

        self.assertTrue(result.success)
        self.assertEqual(len(ai.calls), 1)
        self.assertIn("timezone=", ai.calls[0]["context"])
        self.assertEqual(result.metadata.parsing_source, ParsingSource.RULES_WITH_AI_FALLBACK)
        self.assertAlmostEqual(result.parsed_query.confidence, 0.9)
        self.assertEqual(result.parsed_query.intent.primary, Intent.WEATHER_ADVICE)
        self.assertEqual(result.decision.selected_api.api_id, "google_daily_forecast")

    async def test_ai_timeout_falls_back_to_rules(self):
        ai = FakeAIParser(ai_result("沖繩", 0.85), delay=1.0)
        router = make_router(ai)

        result = await router.route_query(SCENARIO_B)

        self.assertTrue(result.success)
        self.assertEqual(result.metadata.parsing_source, ParsingSource.RULES_FALLBACK)
        self.assertAlmostEqual(result.parsed_query.confidence, 0.455)
        self.assertEqual(router.get_service_metrics()["ai_failures"], 1)

    async def test_stalled_ai_raises_timeout_error(self):
        router = make_router(FakeAIParser(ai_result("沖繩", 0.85), delay=1.0))
        with self.assertRaises(AIParsingTimeoutError):
            await router._ai_parse(SCENARIO_B, "")

    async def test_ai_timeout_is_logged_as_timeout(self):
        router = make_router(FakeAIParser(ai_result("沖繩", 0.85), delay=1.0))

        with self.assertLogs("smart_weather.routing.query_router", level="WARNING") as logs:
            result = await router.route_query(SCENARIO_B)

        self.assertTrue(result.success)
        self.assertTrue(any("timed out" in line for line in logs.output))

    async def test_ai_error_falls_back_to_rules(self):
        router = make_router(FakeAIParser(error=AIParsingError("garbage")))
        result = await router.route_query(SCENARIO_B)
        self.assertTrue(result.success)
        self.assertEqual(result.metadata.parsing_source, ParsingSource.RULES_FALLBACK)

    async def test_disabled_ai_uses_lowered_floor(self):
        ai = FakeAIParser(ai_result("沖繩", 0.85))
        router = make_router(ai, disable_ai_parsing=True)

        result = await router.route_query(SCENARIO_B)

        self.assertTrue(result.success)
        self.assertEqual(ai.calls, [])
        self.assertEqual(result.metadata.parsing_source, ParsingSource.RULES_FALLBACK)

    async def test_raised_threshold_consults_ai_for_simple_queries(self):
        ai = FakeAIParser(ai_result("台北", 0.9, Intent.CURRENT_CONDITIONS))
        router = make_router(ai, ai_threshold=0.8)
        result = await router.route_query(SCENARIO_A)
        self.assertEqual(len(ai.calls), 1)
        self.assertEqual(result.metadata.parsing_source, ParsingSource.RULES_WITH_AI_FALLBACK)

    async def test_routing_is_idempotent(self):
        router = make_router()
        first = await router.route_query("Tokyo weather today")
        second = await router.route_query("Tokyo weather today")
        self.assertEqual(first.parsed_query.confidence, second.parsed_query.confidence)
        self.assertEqual(first.decision.selected_api, second.decision.selected_api)
        self.assertEqual(first.decision.api_parameters, second.decision.api_parameters)


class TestUserErrors(unittest.IsolatedAsyncioTestCase):
    async def test_missing_location(self):
        router = make_router()

        result = await router.route_query("weather tomorrow")

        self.assertFalse(result.success)
        self.assertEqual(result.error.code, "LOCATION_NOT_SPECIFIED")
        self.assertEqual(result.metadata.state, RouteState.NOT_ROUTED)
        metrics = router.get_service_metrics()
        self.assertEqual(metrics["user_errors"], 1)
        self.assertEqual(metrics["service_failures"], 0)
        self.assertEqual(metrics["failure_rate"], 0.0)

    async def test_context_supplies_location(self):
        router = make_router()
        result = await router.route_query("明天會下雨嗎", context="地點：高雄")
        self.assertTrue(result.success)
        self.assertEqual(result.parsed_query.location.name, "高雄")

    async def test_low_confidence_after_ai(self):
        router = make_router(FakeAIParser(ai_result("Springfield", 0.2)))

        result = await router.route_query(HIKING)

        self.assertFalse(result.success)
        self.assertEqual(result.error.code, "PARSING_FAILED")
        self.assertEqual(result.metadata.parsing_source, ParsingSource.RULES_WITH_AI_FALLBACK)
        self.assertEqual(router.get_service_metrics()["user_errors"], 1)

    async def test_error_message_in_query_language(self):
        router = make_router()
        result = await router.route_query("明天天氣如何")
        self.assertEqual(result.error.code, "LOCATION_NOT_SPECIFIED")
        self.assertIn("地點", result.error.user_message)

    async def test_weekday_query_routes_without_ai(self):
        router = make_router(disable_ai_parsing=True)

        result = await router.route_query("Should I bring an umbrella for Friday in Boston")

        self.assertTrue(result.success)
        self.assertEqual(result.parsed_query.location.name, "Boston")
        self.assertEqual(result.decision.selected_api.api_id, "google_daily_forecast")

    async def test_empty_query(self):
        router = make_router()
        result = await router.route_query("")
        self.assertFalse(result.success)
        self.assertEqual(result.error.code, "LOCATION_NOT_SPECIFIED")


class TestExecution(unittest.IsolatedAsyncioTestCase):
    """Cache, geocoding and fallback chains with a fake weather client."""

    async def test_second_identical_query_hits_cache(self):
        client = FakeWeatherClient()
        router = make_router(client=client)

        first = await router.route_query(SCENARIO_A)
        second = await router.route_query(SCENARIO_A)

        self.assertEqual(first.metadata.cache_status, "miss")
        self.assertEqual(second.metadata.cache_status, "hit")
        self.assertEqual(second.data, first.data)
        self.assertEqual(len(client.fetches), 1)
        self.assertEqual(router.get_cache_metrics().hits, 1)

    async def test_unknown_place_is_geocoded_once(self):
        client = FakeWeatherClient(places={"宜蘭": GeoLocation(name="宜蘭", latitude=24.7021, longitude=121.7378)})
        router = make_router(client=client)

        first = await router.route_query("宜蘭明天天氣")
        await router.route_query("宜蘭明天天氣")

        self.assertTrue(first.success)
        self.assertAlmostEqual(first.parsed_query.location.latitude, 24.7021)
        self.assertEqual(client.geocodes, ["宜蘭"])

    async def test_unsupported_location_does_not_walk_fallbacks(self):
        client = FakeWeatherClient(failures={
            "google_current_conditions": LocationNotSupportedError("outside coverage"),
        })
        router = make_router(client=client)

        result = await router.route_query("Tokyo weather today")

        self.assertFalse(result.success)
        self.assertEqual(result.error.code, "LOCATION_NOT_SUPPORTED")
        self.assertEqual([r.api_id for r in client.fetches], ["google_current_conditions"])
        self.assertIsNotNone(result.decision)
        self.assertEqual(result.decision.selected_api.api_id, "google_current_conditions")
        self.assertEqual(result.metadata.state, RouteState.ROUTED)

    async def test_slow_geocoder_is_cut_off(self):
        client = FakeWeatherClient(geocode_delay=1.0)
        router = make_router(client=client, weather_api_timeout=0.05)

        started = time.perf_counter()
        result = await router.route_query("What's the weather in Springfield today?")

        self.assertLess(time.perf_counter() - started, 0.5)
        self.assertFalse(result.success)
        self.assertEqual(result.error.code, "SERVICE_UNAVAILABLE")
        self.assertEqual(client.geocodes, ["Springfield"])
        self.assertEqual(client.fetches, [])
        self.assertIsNotNone(result.decision)

    async def test_fallback_response_keeps_requested_ttl(self):
        clock = FakeClock()
        client = FakeWeatherClient(failures={"google_current_conditions": WeatherUnavailableError("503")})
        router = create_query_router(
            settings=Settings(ai_parse_timeout=0.05),
            weather_client=client,
            cache=CacheService(clock=clock),
        )

        first = await router.route_query(TOKYO, routing_context=SLOW_HOURLY)
        clock.advance(300)
        second = await router.route_query(TOKYO, routing_context=SLOW_HOURLY)
        clock.advance(1)
        third = await router.route_query(TOKYO, routing_context=SLOW_HOURLY)

        self.assertEqual(first.decision.selected_api.api_id, "google_hourly_forecast")
        self.assertEqual(second.metadata.cache_status, "hit")
        self.assertEqual(third.metadata.cache_status, "miss")

    async def test_cache_hit_reports_serving_fallback(self):
        client = FakeWeatherClient(failures={"google_current_conditions": WeatherUnavailableError("503")})
        router = make_router(client=client)

        first = await router.route_query(TOKYO, routing_context=SLOW_HOURLY)
        second = await router.route_query(TOKYO, routing_context=SLOW_HOURLY)

        self.assertEqual(second.metadata.cache_status, "hit")
        self.assertEqual(second.data, first.data)
        self.assertEqual(second.data["api"], "google_hourly_forecast")
        self.assertEqual(second.decision.selected_api.api_id, "google_hourly_forecast")
        self.assertEqual(second.decision.state, RouteState.DEGRADED)
        self.assertTrue(second.metadata.fallback_used)
        self.assertEqual(second.metadata.original_api, "google_current_conditions")
        self.assertAlmostEqual(second.decision.confidence, first.decision.confidence)
        self.assertEqual(len(client.fetches), 2)

    async def test_failed_api_falls_back(self):
        client = FakeWeatherClient(failures={"google_current_conditions": WeatherUnavailableError("503")})
        router = make_router(client=client)

        result = await router.route_query("Tokyo weather today")

        self.assertTrue(result.success)
        self.assertEqual(result.decision.selected_api.api_id, "google_hourly_forecast")
        self.assertEqual(result.decision.state, RouteState.DEGRADED)
        self.assertTrue(result.metadata.fallback_used)
        self.assertEqual(result.metadata.original_api, "google_current_conditions")
        self.assertAlmostEqual(result.decision.confidence, result.parsed_query.confidence * FALLBACK_DECAY)

    async def test_exhausted_chain_is_service_failure(self):
        client = FakeWeatherClient(failures={
            "google_current_conditions": WeatherUnavailableError("503"),
            "google_hourly_forecast": WeatherUnavailableError("503"),
        })
        router = make_router(client=client)

        result = await router.route_query("Tokyo weather today")

        self.assertFalse(result.success)
        self.assertEqual(result.error.code, "SERVICE_UNAVAILABLE")
        self.assertTrue(result.error.retryable)
        self.assertEqual(result.metadata.state, RouteState.FAILED)
        self.assertEqual(router.get_service_metrics()["service_failures"], 1)

    async def test_all_apis_unavailable(self):
        router = make_router()
        context = RoutingContext(api_health={
            "google_current_conditions": HealthStatus.UNAVAILABLE,
            "google_hourly_forecast": HealthStatus.UNAVAILABLE,
        })

        result = await router.route_query("Tokyo weather today", routing_context=context)

        self.assertFalse(result.success)
        self.assertEqual(result.error.code, "NO_SUITABLE_API")


class TestHandleFallback(unittest.IsolatedAsyncioTestCase):
    async def test_decays_then_exhausts(self):
        router = make_router()
        first = await router.route_query("Tokyo weather today")
        self.assertEqual(first.decision.selected_api.api_id, "google_current_conditions")

        second = await router.handle_fallback(first, cause_error=WeatherUnavailableError("503"))
        self.assertTrue(second.success)
        self.assertEqual(second.decision.selected_api.api_id, "google_hourly_forecast")
        self.assertEqual(second.decision.fallback_step, 1)
        self.assertAlmostEqual(second.decision.confidence, first.decision.confidence * FALLBACK_DECAY)

        third = await router.handle_fallback(second, cause_error=WeatherUnavailableError("503"))
        self.assertFalse(third.success)
        self.assertEqual(third.error.code, "SERVICE_UNAVAILABLE")
        self.assertEqual(third.metadata.state, RouteState.FAILED)

    async def test_caller_marked_fallback_unavailable(self):
        router = make_router()
        first = await router.route_query("Tokyo weather today")
        context = RoutingContext(api_health={"google_hourly_forecast": HealthStatus.UNAVAILABLE})

        result = await router.handle_fallback(first, routing_context=context)

        self.assertFalse(result.success)
        self.assertEqual(result.error.code, "SERVICE_UNAVAILABLE")


if __name__ == "__main__":
    unittest.main()
