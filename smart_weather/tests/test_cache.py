"""
Cache Service Tests

Tests for TTL expiry, FIFO eviction, key derivation and metrics.

Run with: pytest smart_weather/tests/test_cache.py -v
"""

import pytest

from smart_weather.exceptions import ConfigurationError
from smart_weather.models import CacheTypeTag
from smart_weather.services.cache import CacheService
from smart_weather.tests.utils import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return CacheService(max_size=10, cleanup_threshold=8, sweep_interval=60, clock=clock)


class TestExpiry:
    def test_entry_is_live_at_exactly_ttl(self, cache, clock):
        cache.set("k", {"t": 20}, CacheTypeTag.CURRENT_WEATHER)

        clock.advance(300)
        assert cache.get("k") == {"t": 20}

        clock.advance(0.001)
        assert cache.get("k") is None

    def test_sweep_keeps_entry_at_expiry_instant(self, cache, clock):
        cache.set("k", 1, "current_weather")
        clock.advance(300)
        assert cache.sweep() == 0
        assert len(cache) == 1

    def test_ttl_depends_on_type_tag(self, cache, clock):
        cache.set("current", 1, "current_weather")
        cache.set("forecast", 2, "forecast")
        cache.set("history", 3, "historical")

        clock.advance(1000)
        assert cache.get("current") is None
        assert cache.get("forecast") == 2
        assert cache.get("history") == 3

    def test_custom_ttl_table(self, clock):
        cache = CacheService(ttl_table={"current_weather": 10}, max_size=10, cleanup_threshold=8, clock=clock)
        assert cache.ttl_for("current_weather") == 10
        assert cache.ttl_for(CacheTypeTag.LOCATION) == 604800

    def test_sweep_removes_expired(self, cache, clock):
        cache.set("a", 1, "current_weather")
        cache.set("b", 2, "forecast")
        clock.advance(301)
        assert cache.sweep() == 1
        assert len(cache) == 1


class TestEviction:
    def test_overflow_evicts_oldest_down_to_threshold(self, cache):
        for i in range(11):
            cache.set(f"k{i}", i, "forecast")

        assert len(cache) == 8
        assert cache.get("k0") is None
        assert cache.get("k2") is None
        assert cache.get("k3") == 3
        assert cache.get("k10") == 10
        assert cache.get_metrics().evictions == 3

    def test_expired_entries_go_before_live_ones(self, cache, clock):
        for i in range(5):
            cache.set(f"old{i}", i, "current_weather")
        clock.advance(301)
        for i in range(6):
            cache.set(f"new{i}", i, "forecast")

        assert len(cache) == 6
        metrics = cache.get_metrics()
        assert metrics.evictions == 0
        assert metrics.expirations == 5

    def test_reset_key_moves_to_back(self, cache):
        for i in range(10):
            cache.set(f"k{i}", i, "forecast")
        cache.set("k0", "fresh", "forecast")
        cache.set("k10", 10, "forecast")

        assert cache.get("k0") == "fresh"
        assert cache.get("k1") is None

    def test_threshold_must_be_below_max(self):
        with pytest.raises(ConfigurationError):
            CacheService(max_size=10, cleanup_threshold=10)


class TestKeysAndMetrics:
    def test_coordinates_are_rounded(self):
        a = CacheService.build_key("forecast", 25.03301, 121.56539)
        b = CacheService.build_key("forecast", 25.03299, 121.56541)
        assert a == b == "weather:forecast:25.0330,121.5654:metric:en:default"

    def test_key_separates_units_language_and_date(self):
        base = CacheService.build_key("forecast", 25.0, 121.0)
        assert CacheService.build_key("forecast", 25.0, 121.0, units="imperial") != base
        assert CacheService.build_key("forecast", 25.0, 121.0, language="ja") != base
        assert CacheService.build_key("forecast", 25.0, 121.0, date="2025-03-11").endswith(":2025-03-11")

    def test_name_key_is_normalised(self):
        assert CacheService.build_key("current_conditions", location="  New   York ") == (
            "weather:current_conditions:new york:metric:en:default"
        )
        assert CacheService.location_key("Hong  Kong") == "location:hong kong"

    def test_unknown_type_tag_is_counted_not_raised(self, cache):
        assert cache.set("k", 1, "pollen") is False
        assert cache.get_metrics().errors == 1
        assert len(cache) == 0

    def test_hit_rate(self, cache):
        cache.set("k", 1, "forecast")
        cache.get("k")
        cache.get("k")
        cache.get("missing")

        metrics = cache.get_metrics()
        assert metrics.hits == 2
        assert metrics.misses == 1
        assert metrics.hit_rate == pytest.approx(0.6667)
        assert metrics.memory_usage_percent == pytest.approx(10.0)

    def test_clear_resets_entries_and_counters(self, cache):
        cache.set("k", 1, "forecast")
        cache.get("k")
        cache.clear()
        metrics = cache.get_metrics()
        assert metrics.size == 0
        assert metrics.hits == 0

    def test_expiry_on_read_counts_as_expiration(self, cache, clock):
        cache.set("k", 1, "current_weather")
        clock.advance(301)
        assert cache.get("k") is None

        metrics = cache.get_metrics()
        assert metrics.expirations == 1
        assert metrics.evictions == 0
        assert metrics.misses == 1
