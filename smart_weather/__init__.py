"""Hybrid multilingual weather-query understanding and routing engine."""

__version__ = "0.4.0"
