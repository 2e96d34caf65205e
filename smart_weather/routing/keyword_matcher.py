"""
Keyword Matcher - Pattern Detection for Query Understanding

This module provides:
1. Language detection from character-set heuristics
2. Intent classification from temporal/advice cue words
3. Metric and activity detection per language
4. Units, granularity and detail-level preferences

Every keyword table is compiled into a single alternation so a query is
scanned once per table. Alternations of escaped literals cannot backtrack
catastrophically.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Pattern, Set, Tuple

from ..models import Granularity, Intent, Metric

logger = logging.getLogger(__name__)


@dataclass
class IntentMatch:
    """Result of intent classification."""
    intent: Intent
    confidence: float
    matched_keyword: Optional[str]
    temporal_cue: Optional[str] = None  # current, forecast, historical
    reasoning: str = ""


@dataclass
class MetricMatch:
    metrics: Set[Metric] = field(default_factory=set)
    activities: List[str] = field(default_factory=list)
    matched_keywords: List[str] = field(default_factory=list)


def _compile(keywords: Iterable[str]) -> Pattern[str]:
    """Build one case-insensitive alternation, longest keywords first.

    ASCII keywords get letter boundaries so "sea" never matches "season";
    CJK keywords match anywhere since the scripts have no word spacing.
    """
    parts = []
    for kw in sorted(set(keywords), key=len, reverse=True):
        escaped = re.escape(kw)
        if kw.isascii():
            parts.append(rf"(?<![a-z]){escaped}(?![a-z])")
        else:
            parts.append(escaped)
    return re.compile("|".join(parts), re.IGNORECASE)


class KeywordMatcher:
    """
    Detects language, intent, metrics and preferences from raw query text.

    Intent priority order:
    1. Advice cues or activities (weather_advice)
    2. Historical cues
    3. Forecast cues
    4. Current cues
    5. Default current_conditions (no temporal cue)
    """

    # ==========================================================================
    # Language detection
    # ==========================================================================

    CJK_PATTERN = re.compile(r"[㐀-䶿一-鿿]")
    KANA_PATTERN = re.compile(r"[぀-ゟ゠-ヿ]")

    # Shinjitai forms that do not occur in Chinese weather queries
    JAPANESE_INDICATORS: FrozenSet[str] = frozenset("気県駅様縄予")
    SIMPLIFIED_INDICATORS: FrozenSet[str] = frozenset(
        "气预报温风湿阳时会冲绳东围这们还说请问该适吗么门间长书发"
    )
    TRADITIONAL_INDICATORS: FrozenSet[str] = frozenset(
        "氣預報溫風濕陽時會沖繩東圍這們還說請問該適嗎麼門間長書發臺灣"
    )

    # ==========================================================================
    # Intent cues
    # ==========================================================================

    ADVICE_KEYWORDS: List[str] = [
        "should i", "should we", "advice", "recommend", "suitable", "good day for",
        "good for", "what to wear", "umbrella", "safe to", "is it ok",
        "適合", "适合", "建議", "建议", "要不要", "需不需要", "該不該", "该不该",
        "帶傘", "带伞", "穿什麼", "穿什么", "可以去",
        "べき", "おすすめ", "傘がいる", "大丈夫",
    ]
    HISTORICAL_KEYWORDS: List[str] = [
        "yesterday", "last week", "last month", "last year", "was it", "did it",
        "historical", "history", "past",
        "昨天", "前天", "上週", "上周", "上禮拜", "上個月", "上个月", "去年", "歷史", "历史", "過去", "过去",
        "昨日", "一昨日", "先週", "先月",
    ]
    FORECAST_KEYWORDS: List[str] = [
        "tomorrow", "next week", "this weekend", "weekend", "forecast", "will it",
        "going to", "later", "upcoming", "next few days",
        "明天", "後天", "后天", "預報", "预报", "預測", "预测", "未來", "未来",
        "下週", "下周", "下禮拜", "週末", "周末", "明日", "明後日", "あした", "あす", "予報", "来週", "來週",
    ]
    CURRENT_KEYWORDS: List[str] = [
        "now", "current", "currently", "right now", "today", "tonight", "at the moment",
        "現在", "现在", "目前", "今天", "今日", "此刻", "今晚", "いま", "きょう",
    ]
    WEATHER_KEYWORDS: List[str] = [
        "weather", "forecast", "temperature", "conditions",
        "天氣", "天气", "氣象", "气象", "天候", "天気", "気象",
    ]

    # ==========================================================================
    # Metric keywords (per language)
    # ==========================================================================

    METRIC_KEYWORDS: Dict[Metric, List[str]] = {
        Metric.TEMPERATURE: [
            "temperature", "temp", "hot", "cold", "warm", "degrees", "heat",
            "溫度", "温度", "氣溫", "气温", "熱", "热", "冷", "気温", "暑い", "寒い",
        ],
        Metric.HUMIDITY: [
            "humidity", "humid", "muggy", "dew point",
            "濕度", "湿度", "潮濕", "潮湿", "悶熱", "闷热",
        ],
        Metric.WIND: [
            "wind", "windy", "breeze", "gust", "gusts",
            "風", "风", "颱風", "台风", "台風",
        ],
        Metric.PRECIPITATION: [
            "rain", "rainy", "precipitation", "shower", "showers", "drizzle", "snow", "umbrella",
            "雨", "降雨", "降水", "雪", "傘", "伞",
        ],
        Metric.AIR_QUALITY: [
            "air quality", "aqi", "pollution", "smog", "pm2.5", "pollen",
            "空氣品質", "空气质量", "空氣", "空气", "污染", "霧霾", "雾霾", "花粉", "大気",
        ],
        Metric.UV_INDEX: [
            "uv", "sunburn", "sunscreen", "uv index",
            "紫外線", "紫外线", "防曬", "防晒", "日焼け",
        ],
        Metric.MARINE: [
            "wave", "waves", "tide", "tides", "swell", "marine", "surf",
            "海浪", "浪高", "海況", "海况", "海象", "潮汐", "波浪", "高波",
        ],
    }

    # Activities map to the metric set they care about and imply advice intent.
    ACTIVITY_KEYWORDS: Dict[str, Tuple[List[str], Tuple[Metric, ...]]] = {
        "surfing": (
            ["surf", "surfing", "衝浪", "冲浪", "サーフィン"],
            (Metric.WIND, Metric.MARINE, Metric.PRECIPITATION, Metric.TEMPERATURE),
        ),
        "hiking": (
            ["hike", "hiking", "climb", "climbing", "trail", "trek",
             "登山", "爬山", "健行", "ハイキング", "山登り"],
            (Metric.UV_INDEX, Metric.PRECIPITATION, Metric.WIND, Metric.TEMPERATURE),
        ),
        "outdoor_event": (
            ["wedding", "picnic", "party", "ceremony", "outdoor", "bbq", "concert",
             "婚禮", "婚礼", "野餐", "戶外", "户外", "派對", "派对", "烤肉", "結婚式", "ピクニック"],
            (Metric.PRECIPITATION, Metric.WIND, Metric.TEMPERATURE),
        ),
        "sports": (
            ["running", "jogging", "jog", "cycling", "bike", "golf", "tennis", "marathon",
             "跑步", "慢跑", "騎車", "骑车", "高爾夫", "高尔夫", "網球", "网球", "ゴルフ", "ジョギング"],
            (Metric.TEMPERATURE, Metric.HUMIDITY, Metric.WIND, Metric.UV_INDEX),
        ),
        "farming": (
            ["farm", "farming", "planting", "crop", "crops", "harvest",
             "農業", "农业", "種植", "种植", "播種", "播种", "農作", "农作", "収穫"],
            (Metric.PRECIPITATION, Metric.TEMPERATURE, Metric.HUMIDITY, Metric.WIND),
        ),
        "beach": (
            ["beach", "swimming", "snorkeling", "diving",
             "海邊", "海边", "沙灘", "沙滩", "游泳", "潛水", "潜水", "ビーチ", "海水浴"],
            (Metric.UV_INDEX, Metric.MARINE, Metric.TEMPERATURE),
        ),
    }

    # ==========================================================================
    # Preferences
    # ==========================================================================

    IMPERIAL_KEYWORDS = ["fahrenheit", "°f", "mph", "華氏", "华氏", "華氏度"]
    METRIC_UNIT_KEYWORDS = ["celsius", "°c", "km/h", "攝氏", "摄氏", "摂氏"]
    HOURLY_KEYWORDS = ["hourly", "hour by hour", "every hour", "each hour",
                       "每小時", "每小时", "逐時", "逐时", "時間ごと", "1時間ごと"]
    DAILY_KEYWORDS = ["daily", "day by day", "each day", "7-day", "7 day", "10-day",
                      "每天", "每日", "逐日", "一週", "一周", "日ごと", "週間"]
    DETAIL_KEYWORDS = ["detail", "detailed", "comprehensive", "full", "complete",
                       "詳細", "详细", "完整", "全面", "詳しく"]

    # Compiled lazily on first use, shared by all callers
    _compiled: Dict[str, Pattern[str]] = {}

    @classmethod
    def _pattern(cls, name: str, keywords: Iterable[str]) -> Pattern[str]:
        pattern = cls._compiled.get(name)
        if pattern is None:
            pattern = _compile(keywords)
            cls._compiled[name] = pattern
        return pattern

    @classmethod
    def _first(cls, name: str, keywords: Iterable[str], text: str) -> Optional[str]:
        match = cls._pattern(name, keywords).search(text)
        return match.group(0) if match else None

    @classmethod
    def _all(cls, name: str, keywords: Iterable[str], text: str) -> List[str]:
        return [m.group(0) for m in cls._pattern(name, keywords).finditer(text)]

    # ==========================================================================
    # Public Methods
    # ==========================================================================

    @classmethod
    def has_cjk(cls, text: str) -> bool:
        return bool(cls.CJK_PATTERN.search(text) or cls.KANA_PATTERN.search(text))

    @classmethod
    def detect_language(cls, text: str, default: str = "en") -> str:
        """
        Detect query language from its character set.

        Kana or Japanese-only kanji imply Japanese. Other CJK text is Chinese;
        Simplified wins only when its indicator characters outnumber the
        Traditional ones, so ambiguous text defaults to Traditional.
        """
        if not text or not cls.has_cjk(text):
            return default

        if cls.KANA_PATTERN.search(text):
            return "ja"
        if any(ch in cls.JAPANESE_INDICATORS for ch in text):
            return "ja"

        simplified = sum(1 for ch in text if ch in cls.SIMPLIFIED_INDICATORS)
        traditional = sum(1 for ch in text if ch in cls.TRADITIONAL_INDICATORS)
        if simplified > traditional:
            return "zh-CN"
        return "zh-TW"

    @classmethod
    def detect_intent(cls, text: str, has_activity: bool = False) -> IntentMatch:
        """Classify intent from cue words; advice outranks temporal cues."""
        if not text or not text.strip():
            return IntentMatch(
                intent=Intent.CURRENT_CONDITIONS,
                confidence=0.1,
                matched_keyword=None,
                reasoning="Empty query",
            )

        historical = cls._first("historical", cls.HISTORICAL_KEYWORDS, text)
        forecast = cls._first("forecast", cls.FORECAST_KEYWORDS, text)
        current = cls._first("current", cls.CURRENT_KEYWORDS, text)
        temporal = "historical" if historical else "forecast" if forecast else "current" if current else None

        advice = cls._first("advice", cls.ADVICE_KEYWORDS, text)
        if advice or has_activity:
            return IntentMatch(
                intent=Intent.WEATHER_ADVICE,
                confidence=0.6,
                matched_keyword=advice,
                temporal_cue=temporal,
                reasoning="Advice or activity cue",
            )

        if historical:
            return IntentMatch(Intent.HISTORICAL, 0.8, historical, "historical", "Historical time cue")
        if forecast:
            return IntentMatch(Intent.FORECAST, 0.8, forecast, "forecast", "Future time cue")
        if current:
            return IntentMatch(Intent.CURRENT_CONDITIONS, 0.8, current, "current", "Present time cue")

        return IntentMatch(
            intent=Intent.CURRENT_CONDITIONS,
            confidence=0.5,
            matched_keyword=None,
            reasoning="No temporal cue, defaulting to current conditions",
        )

    @classmethod
    def detect_metrics(cls, text: str) -> MetricMatch:
        """Detect requested metrics and activities (activity metrics are merged in)."""
        result = MetricMatch()
        if not text:
            return result

        for metric, keywords in cls.METRIC_KEYWORDS.items():
            hit = cls._first(f"metric:{metric.value}", keywords, text)
            if hit:
                result.metrics.add(metric)
                result.matched_keywords.append(hit)

        for activity, (keywords, metrics) in cls.ACTIVITY_KEYWORDS.items():
            if cls._first(f"activity:{activity}", keywords, text):
                result.activities.append(activity)
                result.metrics.update(metrics)

        return result

    @classmethod
    def mentions_weather(cls, text: str) -> bool:
        return cls._first("weather", cls.WEATHER_KEYWORDS, text) is not None

    @classmethod
    def detect_units(cls, text: str) -> Optional[str]:
        if cls._first("imperial", cls.IMPERIAL_KEYWORDS, text):
            return "imperial"
        if cls._first("metric_units", cls.METRIC_UNIT_KEYWORDS, text):
            return "metric"
        return None

    @classmethod
    def detect_granularity(cls, text: str) -> Optional[Granularity]:
        if cls._first("hourly", cls.HOURLY_KEYWORDS, text):
            return Granularity.HOURLY
        if cls._first("daily", cls.DAILY_KEYWORDS, text):
            return Granularity.DAILY
        return None

    @classmethod
    def detect_detail_level(cls, text: str, metric_count: int) -> str:
        if cls._first("detail", cls.DETAIL_KEYWORDS, text):
            return "comprehensive" if metric_count > 3 else "detailed"
        return "basic"

    @classmethod
    def all_domain_words(cls) -> Set[str]:
        """Every keyword the matcher knows; used as a location stoplist."""
        words: Set[str] = set()
        for table in (
            cls.ADVICE_KEYWORDS, cls.HISTORICAL_KEYWORDS, cls.FORECAST_KEYWORDS,
            cls.CURRENT_KEYWORDS, cls.WEATHER_KEYWORDS,
        ):
            words.update(w.lower() for w in table)
        for keywords in cls.METRIC_KEYWORDS.values():
            words.update(w.lower() for w in keywords)
        for keywords, _ in cls.ACTIVITY_KEYWORDS.values():
            words.update(w.lower() for w in keywords)
        return words
