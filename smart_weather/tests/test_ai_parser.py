"""Tests for the LLM-backed AI parser and tolerant JSON extraction."""

import pytest

from smart_weather.config import Settings
from smart_weather.exceptions import AIParsingError
from smart_weather.models import Intent, Metric, TimeframeType
from smart_weather.services.ai_parser import AIQueryParser, LLMQueryParser
from smart_weather.services.json_parser import (
    JSONParseError,
    extract_json_object,
    parse_json_object,
    repair_truncated_json,
)
from smart_weather.services.llm import (
    BaseLLMProvider,
    OpenAICompatibleProvider,
    create_llm_provider,
    extract_content,
)
from smart_weather.tests.utils import FakeLLMProvider, run


class TestJSONParser:
    def test_fenced_block(self):
        content = 'Here you go:\n```json\n{"intent": "forecast"}\n```'
        assert extract_json_object(content) == {"intent": "forecast"}

    def test_object_surrounded_by_chatter(self):
        assert extract_json_object('Sure! {"a": {"b": 1}} hope that helps') == {"a": {"b": 1}}

    def test_braces_inside_strings(self):
        assert extract_json_object('x {"period": "} tricky {"} y') == {"period": "} tricky {"}

    def test_truncated_object_is_closed(self):
        assert repair_truncated_json('{"location": "沖繩", "metrics": ["wind", "mar') == {
            "location": "沖繩",
            "metrics": ["wind", "mar"],
        }
        assert repair_truncated_json('{"location": "Tokyo", "intent":') == {"location": "Tokyo", "intent": None}

    def test_nothing_parseable(self):
        with pytest.raises(JSONParseError):
            parse_json_object("I cannot help with that")
        with pytest.raises(JSONParseError):
            parse_json_object("   ")


class TestLLMQueryParser:
    def test_satisfies_protocol(self):
        assert isinstance(LLMQueryParser(FakeLLMProvider({})), AIQueryParser)

    def test_parses_complete_answer(self):
        provider = FakeLLMProvider({
            "location": "沖繩",
            "intent": "weather_advice",
            "confidence": 0.85,
            "language": "zh-TW",
            "metrics": ["wind", "marine", "not_a_metric"],
            "timeScope": "forecast",
            "period": "明天",
        })
        parsed = run(LLMQueryParser(provider).parse("沖繩明天天氣預報 衝浪條件", "timezone=Asia/Taipei"))

        assert provider.calls == 1
        assert parsed.location.name == "沖繩"
        assert parsed.location.confidence == 0.85
        assert parsed.intent.primary == Intent.WEATHER_ADVICE
        assert parsed.metrics == {Metric.WIND, Metric.MARINE}
        assert parsed.timeframe.type == TimeframeType.FORECAST
        assert parsed.timeframe.period == "明天"

    def test_unsupplied_fields_are_not_marked_set(self):
        provider = FakeLLMProvider({"intent": "forecast", "confidence": 0.7})
        parsed = run(LLMQueryParser(provider).parse("weather tomorrow", ""))
        assert "location" not in parsed.model_fields_set
        assert "language" not in parsed.model_fields_set
        assert not parsed.location.resolved

    def test_invalid_intent_raises(self):
        provider = FakeLLMProvider({"intent": "astrology", "confidence": 0.9})
        with pytest.raises(AIParsingError):
            run(LLMQueryParser(provider).parse("stars tonight", ""))

    def test_non_json_answer_raises(self):
        with pytest.raises(AIParsingError):
            run(LLMQueryParser(FakeLLMProvider("no idea")).parse("?", ""))


class TestProviderFactory:
    def test_no_key_means_no_provider(self):
        assert create_llm_provider(Settings()) is None

    def test_disabled_flag_wins_over_key(self):
        assert create_llm_provider(Settings(llm_api_key="sk-test", disable_ai_parsing=True)) is None

    def test_key_builds_openai_compatible_provider(self):
        provider = create_llm_provider(Settings(llm_api_key="sk-test", ai_parse_timeout=2.0))
        assert isinstance(provider, OpenAICompatibleProvider)
        assert provider.timeout == 2.0

    def test_extract_content(self):
        assert extract_content({"choices": [{"message": {"content": "{}"}}]}) == "{}"
        assert extract_content({}) == ""

    def test_generate_is_the_only_provider_hook(self):
        assert BaseLLMProvider.__abstractmethods__ == frozenset({"generate"})
