"""
Credential and identifier redaction for logs and user-facing text.

Upstream error strings (httpx messages, provider payloads) can carry
request URLs with API keys, bearer tokens or internal identifiers. Anything
that may reach a log line or an ErrorRecord goes through redact() first.
"""
import re
from typing import Any, Dict, List, Set, Tuple


class Redactor:
    """Pattern-based scrubber for free text and parameter dicts."""

    SENSITIVE_PARAMS: Set[str] = {
        'key',
        'api_key',
        'apikey',
        'token',
        'access_token',
        'secret',
        'password',
        'authorization',
        'credentials',
    }

    PATTERNS: List[Tuple[re.Pattern, str]] = [
        # key=... in URLs and query strings
        (re.compile(r'([?&](?:key|api_key|apikey|token|access_token)=)[^&\s"\']+', re.IGNORECASE), r'\1[REDACTED]'),
        # Authorization: Bearer ...
        (re.compile(r'(Bearer\s+)[A-Za-z0-9._\-]+', re.IGNORECASE), r'\1[REDACTED]'),
        # Google API keys
        (re.compile(r'AIza[0-9A-Za-z_\-]{35}'), '[API_KEY_REDACTED]'),
        # OpenAI/OpenRouter style secret keys
        (re.compile(r'\bsk-[A-Za-z0-9_\-]{16,}'), '[API_KEY_REDACTED]'),
        (re.compile(r'\b(sk|pk|api)_[A-Za-z0-9_-]{20,}'), '[API_KEY_REDACTED]'),
        # JWTs
        (re.compile(r'eyJ[A-Za-z0-9_-]+\.eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+'), '[JWT_REDACTED]'),
        # Email addresses
        (re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b'), '[EMAIL_REDACTED]'),
        # Python object reprs / memory addresses
        (re.compile(r'<[\w.]+ object at 0x[0-9a-fA-F]+>'), '[OBJECT]'),
        (re.compile(r'0x[0-9a-fA-F]{6,}'), '[ADDR]'),
        # Filesystem paths from tracebacks
        (re.compile(r'File "[^"]+", line \d+'), '[TRACE]'),
    ]

    @classmethod
    def redact(cls, text: str, max_length: int = 500) -> str:
        if not text:
            return text
        if len(text) > max_length:
            text = text[:max_length] + '...[TRUNCATED]'
        for pattern, replacement in cls.PATTERNS:
            text = pattern.sub(replacement, text)
        return text

    @classmethod
    def sanitize_params(cls, params: Dict[str, Any]) -> Dict[str, Any]:
        sanitized = {}
        for key, value in (params or {}).items():
            if key.lower().strip() in cls.SENSITIVE_PARAMS:
                sanitized[key] = '[REDACTED]'
            elif isinstance(value, str):
                sanitized[key] = cls.redact(value)
            else:
                sanitized[key] = value
        return sanitized


def redact(text: str, max_length: int = 500) -> str:
    return Redactor.redact(text, max_length)


def truncate_query(text: str, limit: int = 100) -> str:
    """Shorten query text for log lines."""
    text = text or ""
    return text if len(text) <= limit else text[:limit] + "..."
