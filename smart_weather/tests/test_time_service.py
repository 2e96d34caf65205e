"""Tests for relative time resolution."""

from datetime import datetime

import pytest

from smart_weather.services.time_service import TimeService
from smart_weather.tests.utils import fixed_datetime


class TestFindExpression:
    @pytest.mark.parametrize("text,offset,description", [
        ("tomorrow in Tokyo", 1, "tomorrow"),
        ("what about the day after tomorrow", 2, "day after tomorrow"),
        ("台北大後天天氣", 3, "大後天"),
        ("大阪 あさって", 2, "明後日"),
        ("昨天有下雨嗎", -1, "昨天"),
    ])
    def test_known_expressions(self, text, offset, description):
        assert TimeService.find_expression(text) == (offset, description)

    def test_earliest_expression_wins(self):
        assert TimeService.find_expression("today or tomorrow") == (0, "today")

    def test_no_expression(self):
        assert TimeService.find_expression("Tokyo weather") is None
        assert TimeService.find_expression("") is None


class TestResolve:
    def test_tomorrow_is_next_local_midnight(self):
        # 17:00 UTC is already 01:00 on 2025-03-11 in Taipei
        service = TimeService("Asia/Taipei", clock=fixed_datetime("2025-03-10T17:00:00"))
        context = service.resolve("台北明天天氣")

        assert context.relative_expression_found is True
        assert context.day_offset == 1
        assert context.timezone == "Asia/Taipei"
        assert context.resolved_absolute_time.replace(tzinfo=None) == datetime(2025, 3, 12, 0, 0)
        assert context.resolved_absolute_time.utcoffset().total_seconds() == 8 * 3600

    def test_anchor_stays_at_midnight_across_dst(self):
        # 2025-03-09 is the spring-forward day in New York
        service = TimeService("Asia/Taipei", clock=fixed_datetime("2025-03-08T15:00:00"))
        context = service.resolve("weather tomorrow", "America/New_York")

        target = context.resolved_absolute_time
        assert (target.year, target.month, target.day, target.hour) == (2025, 3, 9, 0)
        assert target.utcoffset().total_seconds() == -5 * 3600

        after = service.resolve("day after tomorrow", "America/New_York").resolved_absolute_time
        assert after.hour == 0
        assert after.utcoffset().total_seconds() == -4 * 3600

    def test_without_expression_reports_current_time_only(self):
        service = TimeService("Asia/Tokyo", clock=fixed_datetime("2025-06-01T00:00:00"))
        context = service.resolve("Tokyo weather")
        assert context.relative_expression_found is False
        assert context.resolved_absolute_time is None
        assert context.current_time.hour == 9

    def test_unknown_timezone_falls_back_to_default(self):
        service = TimeService("Asia/Taipei", clock=fixed_datetime("2025-06-01T00:00:00"))
        context = service.resolve("today", "Mars/Olympus_Mons")
        assert context.timezone == "Asia/Taipei"

    def test_prompt_context_includes_resolved_date(self):
        service = TimeService("Asia/Taipei", clock=fixed_datetime("2025-03-10T02:00:00"))
        prompt = service.resolve("明天").to_prompt_context()
        assert "timezone=Asia/Taipei" in prompt
        assert "resolved_date=2025-03-11" in prompt


class TestFormatTime:
    def test_cjk_and_english_formats(self):
        service = TimeService("Asia/Taipei", clock=fixed_datetime("2025-03-10T02:00:00"))
        now = service.now()
        assert service.format_time(now, "zh-TW").startswith("2025年3月10日 10:00")
        assert service.format_time(now, "en").startswith("Mar 10, 2025, 10:00")
