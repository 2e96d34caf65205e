"""
Query Routing Module

Components:
- KeywordMatcher: Language, intent, metric and activity detection
- LocationResolver: Gazetteer and pattern-based place extraction
- RuleParser: Deterministic RawQuery -> ParsedQuery
- merge: Rule/AI confidence merger
- select_api: Health-aware API selection with fallback chain
- QueryRouter: Main routing entry point
"""

from .keyword_matcher import KeywordMatcher
from .location_resolver import LocationResolver
from .rule_parser import RuleParser, parse_with_rules
from .confidence_merger import merge
from .api_selector import API_REGISTRY, select_api, advance_fallback
from .query_router import QueryRouter, create_query_router

__all__ = [
    "KeywordMatcher",
    "LocationResolver",
    "RuleParser",
    "parse_with_rules",
    "merge",
    "API_REGISTRY",
    "select_api",
    "advance_fallback",
    "QueryRouter",
    "create_query_router",
]
