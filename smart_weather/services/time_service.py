"""
Time Resolution Service

Resolves relative time expressions ("tomorrow", "明天", "あした") to
absolute timestamps anchored at local midnight of the caller's timezone.
This is a best-effort locale heuristic, not a calendar engine.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..models import TimeContext

logger = logging.getLogger(__name__)


# (expression, day offset, canonical description). Longer expressions of the
# same family must precede their prefixes ("大後天" before "後天").
RELATIVE_EXPRESSIONS: List[Tuple[str, int, str]] = [
    # English
    ("day after tomorrow", 2, "day after tomorrow"),
    ("day before yesterday", -2, "day before yesterday"),
    ("tomorrow", 1, "tomorrow"),
    ("yesterday", -1, "yesterday"),
    ("next week", 7, "next week"),
    ("tonight", 0, "today"),
    ("today", 0, "today"),
    # Chinese (traditional and simplified)
    ("大後天", 3, "大後天"),
    ("大后天", 3, "大后天"),
    ("後天", 2, "後天"),
    ("后天", 2, "后天"),
    ("前天", -2, "前天"),
    ("明天", 1, "明天"),
    ("昨天", -1, "昨天"),
    ("今天", 0, "今天"),
    ("今晚", 0, "今天"),
    ("下週", 7, "下週"),
    ("下周", 7, "下周"),
    ("下禮拜", 7, "下禮拜"),
    # Japanese
    ("明後日", 2, "明後日"),
    ("あさって", 2, "明後日"),
    ("一昨日", -2, "一昨日"),
    ("おととい", -2, "一昨日"),
    ("明日", 1, "明日"),
    ("あした", 1, "明日"),
    ("あす", 1, "明日"),
    ("昨日", -1, "昨日"),
    ("きのう", -1, "昨日"),
    ("今日", 0, "今日"),
    ("きょう", 0, "今日"),
    ("来週", 7, "来週"),
    ("來週", 7, "来週"),
]


class TimeService:
    """Resolves relative expressions against an injectable clock."""

    def __init__(
        self,
        default_timezone: str = "Asia/Taipei",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.default_timezone = default_timezone
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _zone(self, tz_name: Optional[str]) -> Tuple[ZoneInfo, str]:
        name = tz_name or self.default_timezone
        try:
            return ZoneInfo(name), name
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone '%s', using %s", name, self.default_timezone)
            return ZoneInfo(self.default_timezone), self.default_timezone

    def now(self, tz_name: Optional[str] = None) -> datetime:
        zone, _ = self._zone(tz_name)
        return self._clock().astimezone(zone)

    @staticmethod
    def find_expression(text: str) -> Optional[Tuple[int, str]]:
        """Return (day offset, description) of the earliest relative expression."""
        if not text:
            return None
        lowered = text.lower()
        best: Optional[Tuple[int, int, str]] = None
        for expression, offset, description in RELATIVE_EXPRESSIONS:
            idx = lowered.find(expression)
            if idx == -1:
                continue
            # Earliest position wins; on equal position the longer (earlier listed) wins.
            if best is None or idx < best[0]:
                best = (idx, offset, description)
        if best is None:
            return None
        return best[1], best[2]

    def resolve(self, text: str, tz_name: Optional[str] = None) -> TimeContext:
        zone, name = self._zone(tz_name)
        current = self._clock().astimezone(zone)
        found = self.find_expression(text)

        if found is None:
            return TimeContext(
                current_time=current,
                timezone=name,
                relative_expression_found=False,
            )

        offset, description = found
        local_midnight = current.replace(hour=0, minute=0, second=0, microsecond=0)
        # Calendar-day arithmetic in local wall time, then re-attach the zone
        # so DST transitions keep the anchor at 00:00 local.
        target = (local_midnight.replace(tzinfo=None) + timedelta(days=offset)).replace(tzinfo=zone)

        logger.debug("Resolved '%s' -> %s (%s)", description, target.isoformat(), name)
        return TimeContext(
            current_time=current,
            timezone=name,
            relative_expression_found=True,
            resolved_absolute_time=target,
            relative_description=description,
            day_offset=offset,
        )

    def format_time(self, value: datetime, language: str = "en") -> str:
        """Format a timestamp for display in the caller's language."""
        if language in ("zh-TW", "zh-CN", "zh", "ja"):
            return f"{value.year}年{value.month}月{value.day}日 {value:%H:%M} {value.tzname() or ''}".strip()
        return f"{value:%b} {value.day}, {value.year}, {value:%H:%M} {value.tzname() or ''}".strip()
