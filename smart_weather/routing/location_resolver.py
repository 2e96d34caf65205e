"""
Location Resolver - Place Name Extraction for Weather Queries

This module provides:
1. A gazetteer of well-known places with coordinates (multilingual aliases)
2. Ordered extraction patterns for places the gazetteer does not know
3. A stoplist so weather/time/activity words are never taken as places
4. Ambiguity detection when several distinct places are named

Gazetteer hits are preferred over pattern hits, and an earlier pattern
outranks a later one. Spans already claimed by a better match are skipped.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, NamedTuple, Optional, Pattern, Set, Tuple

from ..models import LocationInfo
from .keyword_matcher import KeywordMatcher

logger = logging.getLogger(__name__)


class Place(NamedTuple):
    canonical: str
    latitude: float
    longitude: float
    kind: str = "city"  # city, region, country


@dataclass
class LocationCandidate:
    name: str
    start: int
    end: int
    source: str  # gazetteer, pattern
    place: Optional[Place] = None


@dataclass
class LocationMatch:
    """Result of location extraction."""
    location: LocationInfo
    candidates: List[LocationCandidate] = field(default_factory=list)
    ambiguous: bool = False
    source: Optional[str] = None  # gazetteer, pattern, context


class LocationResolver:
    """
    Extracts a single place name from free text.

    Confidence by source:
    - gazetteer: 0.9
    - pattern: 0.75
    - caller context: 0.6
    Ambiguous queries lose AMBIGUITY_PENALTY.
    """

    GAZETTEER_CONFIDENCE = 0.9
    PATTERN_CONFIDENCE = 0.75
    CONTEXT_CONFIDENCE = 0.6
    AMBIGUITY_PENALTY = 0.25

    # ==========================================================================
    # Gazetteer
    # ==========================================================================

    PLACES: Dict[str, Place] = {
        "taipei": Place("Taipei", 25.0330, 121.5654),
        "kaohsiung": Place("Kaohsiung", 22.6273, 120.3014),
        "taichung": Place("Taichung", 24.1477, 120.6736),
        "tainan": Place("Tainan", 22.9999, 120.2270),
        "hualien": Place("Hualien", 23.9872, 121.6016),
        "taiwan": Place("Taiwan", 23.6978, 120.9605, "country"),
        "okinawa": Place("Okinawa", 26.2124, 127.6809, "region"),
        "tokyo": Place("Tokyo", 35.6762, 139.6503),
        "osaka": Place("Osaka", 34.6937, 135.5023),
        "kyoto": Place("Kyoto", 35.0116, 135.7681),
        "sapporo": Place("Sapporo", 43.0618, 141.3545),
        "japan": Place("Japan", 36.2048, 138.2529, "country"),
        "beijing": Place("Beijing", 39.9042, 116.4074),
        "shanghai": Place("Shanghai", 31.2304, 121.4737),
        "guangzhou": Place("Guangzhou", 23.1291, 113.2644),
        "shenzhen": Place("Shenzhen", 22.5431, 114.0579),
        "china": Place("China", 35.8617, 104.1954, "country"),
        "hong kong": Place("Hong Kong", 22.3193, 114.1694),
        "macau": Place("Macau", 22.1987, 113.5439),
        "seoul": Place("Seoul", 37.5665, 126.9780),
        "bangkok": Place("Bangkok", 13.7563, 100.5018),
        "singapore": Place("Singapore", 1.3521, 103.8198),
        "bali": Place("Bali", -8.3405, 115.0920, "region"),
        "sydney": Place("Sydney", -33.8688, 151.2093),
        "melbourne": Place("Melbourne", -37.8136, 144.9631),
        "new york": Place("New York", 40.7128, -74.0060),
        "los angeles": Place("Los Angeles", 34.0522, -118.2437),
        "san francisco": Place("San Francisco", 37.7749, -122.4194),
        "boston": Place("Boston", 42.3601, -71.0589),
        "honolulu": Place("Honolulu", 21.3069, -157.8583),
        "hawaii": Place("Hawaii", 19.8968, -155.5828, "region"),
        "london": Place("London", 51.5074, -0.1278),
        "paris": Place("Paris", 48.8566, 2.3522),
    }

    # Surface forms -> PLACES key
    PLACE_ALIASES: Dict[str, str] = {
        "台北市": "taipei", "臺北市": "taipei", "台北": "taipei", "臺北": "taipei",
        "高雄": "kaohsiung", "台中": "taichung", "臺中": "taichung",
        "台南": "tainan", "臺南": "tainan", "花蓮": "hualien", "花莲": "hualien",
        "台灣": "taiwan", "臺灣": "taiwan", "台湾": "taiwan",
        "沖繩": "okinawa", "冲绳": "okinawa", "沖縄": "okinawa",
        "東京": "tokyo", "东京": "tokyo", "大阪": "osaka", "京都": "kyoto", "札幌": "sapporo",
        "日本": "japan",
        "北京": "beijing", "上海": "shanghai", "廣州": "guangzhou", "广州": "guangzhou",
        "深圳": "shenzhen", "中國": "china", "中国": "china",
        "香港": "hong kong", "澳門": "macau", "澳门": "macau",
        "首爾": "seoul", "首尔": "seoul", "ソウル": "seoul",
        "曼谷": "bangkok", "バンコク": "bangkok",
        "新加坡": "singapore", "シンガポール": "singapore",
        "峇里島": "bali", "巴厘島": "bali", "巴厘岛": "bali", "バリ島": "bali",
        "雪梨": "sydney", "悉尼": "sydney", "シドニー": "sydney",
        "墨爾本": "melbourne", "墨尔本": "melbourne",
        "紐約": "new york", "纽约": "new york", "ニューヨーク": "new york", "nyc": "new york",
        "洛杉磯": "los angeles", "洛杉矶": "los angeles",
        "舊金山": "san francisco", "旧金山": "san francisco",
        "波士頓": "boston", "波士顿": "boston",
        "檀香山": "honolulu", "夏威夷": "hawaii", "ハワイ": "hawaii",
        "倫敦": "london", "伦敦": "london", "ロンドン": "london",
        "巴黎": "paris", "パリ": "paris",
    }

    # ==========================================================================
    # Extraction patterns (in priority order)
    # ==========================================================================

    _CJK = r"぀-ゟ゠-ヿ一-鿿"
    PATTERNS: List[Tuple[str, Pattern[str]]] = [
        # 宜蘭明天天氣, 金沢の天気
        ("cjk_weather", re.compile(
            rf"([{_CJK}]{{2,8}}?)(?:的|之|の)?(?:天氣|天气|天気|氣象|气象|氣溫|气温|気温|預報|预报|予報)"
        )),
        # 在宜蘭, 去墾丁
        ("cjk_preposition", re.compile(rf"(?:在|去|到|於|于)([{_CJK}]{{2,6}})")),
        # in Springfield, for Santa Cruz
        ("en_preposition", re.compile(
            r"\b(?:[Ii]n|[Aa]t|[Ff]or|[Nn]ear|[Aa]round)\s+([A-Z][\w'\-]*(?:\s+[A-Z][\w'\-]*){0,3})"
        )),
        # Springfield weather
        ("en_weather", re.compile(
            r"\b([A-Z][\w'\-]*(?:\s+[A-Z][\w'\-]*){0,3})\s+(?i:weather|forecast|temperature)\b"
        )),
    ]

    # Words that look like places to the patterns but are not
    STOPWORDS: Set[str] = {
        "what", "what's", "whats", "how", "how's", "will", "is", "the", "a", "an", "it", "i",
        "should", "can", "does", "do", "my", "me", "please", "tell", "show", "give",
        "current", "today", "tomorrow", "yesterday", "tonight", "weather", "morning",
        "evening", "afternoon", "the weekend", "weekend", "next", "this", "that",
        "celsius", "fahrenheit", "detail", "english", "chinese", "japanese",
        "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
        "january", "february", "march", "april", "may", "june", "july", "august",
        "september", "october", "november", "december",
        "我", "我們", "我们", "你", "請問", "请问", "那裡", "那里", "這裡", "这里", "那邊", "这边",
        "條件", "条件", "高度", "情況", "情况", "狀況", "状况",
        "一下", "看看", "查詢", "查询", "怎麼樣", "怎么样", "如何",
        "星期一", "星期二", "星期三", "星期四", "星期五", "星期六", "星期日", "星期天",
        "週一", "週二", "週三", "週四", "週五", "週六", "週日",
        "周一", "周二", "周三", "周四", "周五", "周六", "周日",
        "禮拜一", "禮拜二", "禮拜三", "禮拜四", "禮拜五", "禮拜六", "禮拜天", "礼拜天",
        "月曜日", "火曜日", "水曜日", "木曜日", "金曜日", "土曜日", "日曜日",
        "月曜", "火曜", "水曜", "木曜", "金曜", "土曜", "日曜", "土日",
    }

    _alias_pattern: Optional[Pattern[str]] = None
    _stop_cache: Optional[Set[str]] = None

    @classmethod
    def _aliases(cls) -> Pattern[str]:
        if cls._alias_pattern is None:
            surface = list(cls.PLACE_ALIASES) + list(cls.PLACES)
            parts = []
            for alias in sorted(set(surface), key=len, reverse=True):
                escaped = re.escape(alias)
                parts.append(rf"\b{escaped}\b" if alias.isascii() else escaped)
            cls._alias_pattern = re.compile("|".join(parts), re.IGNORECASE)
        return cls._alias_pattern

    @classmethod
    def _stopwords(cls) -> Set[str]:
        if cls._stop_cache is None:
            cls._stop_cache = {w.lower() for w in cls.STOPWORDS} | KeywordMatcher.all_domain_words()
        return cls._stop_cache

    @classmethod
    def lookup(cls, name: str) -> Optional[Place]:
        """Gazetteer lookup by any known surface form."""
        if not name:
            return None
        key = name.strip().lower()
        key = cls.PLACE_ALIASES.get(name.strip(), cls.PLACE_ALIASES.get(key, key))
        return cls.PLACES.get(key)

    @classmethod
    def _clean(cls, candidate: str) -> Optional[str]:
        """Strip time/weather/stop words from a pattern capture."""
        text = candidate.strip(" ,.?!，。？！、")
        stop = cls._stopwords()

        if text.isascii():
            words = text.split()
            while words and words[-1].lower() in stop:
                words.pop()
            while words and words[0].lower() in stop:
                words.pop(0)
            text = " ".join(words)
        else:
            # CJK: drop leading domain words (明天宜蘭 -> 宜蘭), then cut at
            # the first embedded one (宜蘭明天 -> 宜蘭)
            cjk_stop = [w for w in stop if not w.isascii() and len(w) >= 2]
            stripped = True
            while stripped and text:
                stripped = False
                for word in cjk_stop:
                    if text.startswith(word):
                        text = text[len(word):]
                        stripped = True
                        break
            cut = len(text)
            for word in cjk_stop:
                idx = text.find(word)
                if 0 < idx < cut:
                    cut = idx
            text = text[:cut]

        if not text or text.lower() in stop:
            return None
        if not text.isascii() and len(text) < 2:
            return None
        return text

    @classmethod
    def find_candidates(cls, text: str) -> List[LocationCandidate]:
        """All non-overlapping place candidates, best source first."""
        candidates: List[LocationCandidate] = []
        claimed: List[Tuple[int, int]] = []

        def overlaps(start: int, end: int) -> bool:
            return any(start < c_end and c_start < end for c_start, c_end in claimed)

        for match in cls._aliases().finditer(text):
            place = cls.lookup(match.group(0))
            candidates.append(LocationCandidate(match.group(0), match.start(), match.end(), "gazetteer", place))
            claimed.append((match.start(), match.end()))

        for _, pattern in cls.PATTERNS:
            for match in pattern.finditer(text):
                start, end = match.span(1)
                if overlaps(start, end):
                    continue
                name = cls._clean(match.group(1))
                if not name:
                    continue
                candidates.append(LocationCandidate(name, start, end, "pattern"))
                claimed.append((start, end))

        return candidates

    @classmethod
    def _distinct(cls, candidates: List[LocationCandidate]) -> List[LocationCandidate]:
        """Deduplicate by canonical place and drop enclosing countries/regions.

        "日本東京" names one place; "Tokyo or Osaka" names two.
        """
        seen: Dict[str, LocationCandidate] = {}
        for candidate in candidates:
            key = candidate.place.canonical if candidate.place else candidate.name.lower()
            seen.setdefault(key, candidate)
        distinct = list(seen.values())

        cities = [c for c in distinct if not c.place or c.place.kind == "city"]
        if cities and len(cities) < len(distinct):
            return cities
        return distinct

    @classmethod
    def resolve(cls, text: str, context_location: Optional[str] = None) -> LocationMatch:
        """Extract the location of a query, falling back to the caller context."""
        candidates = cls.find_candidates(text or "")
        distinct = cls._distinct(candidates)

        if not distinct:
            if context_location:
                place = cls.lookup(context_location)
                return LocationMatch(
                    location=LocationInfo(
                        name=context_location,
                        confidence=cls.CONTEXT_CONFIDENCE,
                        latitude=place.latitude if place else None,
                        longitude=place.longitude if place else None,
                    ),
                    source="context",
                )
            return LocationMatch(location=LocationInfo())

        best = distinct[0]
        confidence = cls.GAZETTEER_CONFIDENCE if best.source == "gazetteer" else cls.PATTERN_CONFIDENCE
        ambiguous = len(distinct) > 1
        if ambiguous:
            confidence -= cls.AMBIGUITY_PENALTY
            logger.debug("Ambiguous location in query: %s", [c.name for c in distinct])

        return LocationMatch(
            location=LocationInfo(
                name=best.name,
                confidence=confidence,
                latitude=best.place.latitude if best.place else None,
                longitude=best.place.longitude if best.place else None,
            ),
            candidates=distinct,
            ambiguous=ambiguous,
            source=best.source,
        )
