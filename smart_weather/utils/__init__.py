"""Utility functions for smart_weather."""
from .redaction import Redactor, redact, truncate_query

__all__ = ["Redactor", "redact", "truncate_query"]
