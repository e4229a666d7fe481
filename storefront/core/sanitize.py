"""
storefront/core/sanitize.py — Input sanitizers and threat-signature detection
Every function here is pure and total: malformed input yields a neutral value
("" or None), never an exception.
"""
from __future__ import annotations

import math
import re
import unicodedata
from typing import Any, Optional, Protocol
from urllib.parse import urlsplit

MAX_STRING_LENGTH = 5000
MAX_EMAIL_LENGTH = 255
MAX_FILENAME_LENGTH = 255
MAX_SLUG_LENGTH = 200
MAX_PHONE_LENGTH = 20


# ──────────────────────────────────────────────────────────────────────────────
# Sanitizers
# ──────────────────────────────────────────────────────────────────────────────

_ANGLE_BRACKETS = re.compile(r"[<>]")
_JS_SCHEME = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER_ASSIGN = re.compile(r"on\w+\s*=", re.IGNORECASE)


def sanitize_string(value: Any) -> str:
    """Trim, drop angle brackets, script schemes and inline handlers, cap length."""
    if not isinstance(value, str):
        return ""
    cleaned = value.strip()
    cleaned = _ANGLE_BRACKETS.sub("", cleaned)
    cleaned = _JS_SCHEME.sub("", cleaned)
    cleaned = _EVENT_HANDLER_ASSIGN.sub("", cleaned)
    return cleaned[:MAX_STRING_LENGTH]


def sanitize_email(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return value.lower().strip()[:MAX_EMAIL_LENGTH]


_SCRIPT_BLOCK = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_IFRAME_BLOCK = re.compile(r"<iframe\b[^<]*(?:(?!</iframe>)<[^<]*)*</iframe>", re.IGNORECASE)
_QUOTED_HANDLER = re.compile(r"on\w+\s*=\s*[\"'][^\"']*[\"']", re.IGNORECASE)
_BARE_HANDLER = re.compile(r"on\w+\s*=\s*[^\s>]*", re.IGNORECASE)


def sanitize_html(value: Any) -> str:
    """Strip script/iframe blocks and inline event handlers from an HTML fragment."""
    if not isinstance(value, str):
        return ""
    cleaned = _SCRIPT_BLOCK.sub("", value)
    cleaned = _IFRAME_BLOCK.sub("", cleaned)
    cleaned = _QUOTED_HANDLER.sub("", cleaned)
    return _BARE_HANDLER.sub("", cleaned)


def sanitize_filename(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    cleaned = re.sub(r"[^a-zA-Z0-9._-]", "_", value)
    cleaned = re.sub(r"\.{2,}", ".", cleaned)
    return cleaned[:MAX_FILENAME_LENGTH]


def strip_accents(value: str) -> str:
    """Decompose to NFD and drop combining marks ("canción" → "cancion")."""
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def sanitize_slug(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    cleaned = strip_accents(value.lower())
    cleaned = re.sub(r"[^a-z0-9-]", "-", cleaned)
    cleaned = re.sub(r"-+", "-", cleaned)
    cleaned = cleaned.strip("-")
    return cleaned[:MAX_SLUG_LENGTH]


def sanitize_phone_number(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return re.sub(r"[^0-9+]", "", value)[:MAX_PHONE_LENGTH]


_FLOAT_PREFIX = re.compile(r"-?(?:\d+\.?\d*|\.\d+)")
_INT_PREFIX = re.compile(r"-?\d+")


def sanitize_number(value: Any) -> Optional[float]:
    """
    Coerce a user-supplied number. Numbers pass through (NaN rejected); strings
    are stripped of non-numeric characters and their leading numeric prefix
    parsed ("$1,500.50" → 1500.5). Anything else → None.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return None if math.isnan(value) else value
    if isinstance(value, str):
        match = _FLOAT_PREFIX.match(re.sub(r"[^0-9.-]", "", value))
        return float(match.group()) if match else None
    return None


def sanitize_integer(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        match = _INT_PREFIX.match(re.sub(r"[^0-9-]", "", value))
        return int(match.group()) if match else None
    return None


def sanitize_url(value: Any) -> Optional[str]:
    """Return the URL unchanged if it is an absolute http(s) URL, else None."""
    if not isinstance(value, str):
        return None
    try:
        parts = urlsplit(value.strip())
    except ValueError:
        return None
    if parts.scheme not in ("http", "https") or not parts.netloc:
        return None
    return parts.geturl()


def sanitize_object(obj: dict[str, Any]) -> dict[str, Any]:
    """
    Shallow sanitization pass over a validated request body.

    Top-level strings go through sanitize_string, lists get their string items
    sanitized, scalars are kept. Nested mappings are copied as-is rather than
    dropped or walked; the raw-body threat screen has already seen them, and
    no request schema declares nested string fields.
    """
    sanitized: dict[str, Any] = {}
    for key, value in obj.items():
        if isinstance(value, str):
            sanitized[key] = sanitize_string(value)
        elif isinstance(value, list):
            sanitized[key] = [
                sanitize_string(item) if isinstance(item, str) else item
                for item in value
            ]
        else:
            sanitized[key] = value
    return sanitized


# ──────────────────────────────────────────────────────────────────────────────
# Threat signatures
# ──────────────────────────────────────────────────────────────────────────────

SQL_INJECTION_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\b(SELECT|INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|TRUNCATE)\s+", re.IGNORECASE),
    re.compile(r"\b(EXEC|EXECUTE)\s*\(", re.IGNORECASE),
    re.compile(r"UNION\s+(ALL\s+)?SELECT", re.IGNORECASE),
    # OR 1=1, AND '1'='1'
    re.compile(r"(OR|AND)\s+['\"]?\d+['\"]?\s*=\s*['\"]?\d+['\"]?", re.IGNORECASE),
    re.compile(r"(['\"])\s*;\s*--", re.IGNORECASE),
    re.compile(r"(['\"])\s*;\s*(DROP|DELETE|UPDATE|INSERT)", re.IGNORECASE),
    # trailing comment on any line
    re.compile(r"--\s*$", re.MULTILINE),
    re.compile(r"/\*[\s\S]*?\*/"),
    re.compile(r"\bOR\s+['\"]?\w+['\"]?\s*=\s*['\"]?\w+['\"]?\s*--", re.IGNORECASE),
    re.compile(r";\s*(DROP|DELETE|TRUNCATE|ALTER)\s+", re.IGNORECASE),
)

XSS_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"<script[^>]*>[\s\S]*?</script>", re.IGNORECASE),
    re.compile(r"<script[^>]*>", re.IGNORECASE),
    re.compile(r"<iframe[^>]*>[\s\S]*?</iframe>", re.IGNORECASE),
    re.compile(r"<iframe[^>]*>", re.IGNORECASE),
    re.compile(r"javascript\s*:", re.IGNORECASE),
    re.compile(r"on\w+\s*=\s*[\"']?[^\"']*[\"']?", re.IGNORECASE),
    re.compile(r"<img[^>]+onerror\s*=", re.IGNORECASE),
    re.compile(r"<svg[^>]*onload\s*=", re.IGNORECASE),
    re.compile(r"expression\s*\(", re.IGNORECASE),
    re.compile(r"url\s*\(\s*[\"']?\s*javascript:", re.IGNORECASE),
)


def detect_sql_injection(value: Any) -> bool:
    if not isinstance(value, str) or not value:
        return False
    return any(pattern.search(value) for pattern in SQL_INJECTION_PATTERNS)


def detect_xss(value: Any) -> bool:
    if not isinstance(value, str) or not value:
        return False
    return any(pattern.search(value) for pattern in XSS_PATTERNS)


def is_suspicious_input(value: Any) -> bool:
    return detect_sql_injection(value) or detect_xss(value)


class ThreatDetector(Protocol):
    """Capability used by the pipeline to classify raw request text."""

    def looks_like_sql_injection(self, value: str) -> bool: ...

    def looks_like_xss(self, value: str) -> bool: ...


class RegexThreatDetector:
    """Signature matcher over the fixed SQLi/XSS pattern tables above."""

    def looks_like_sql_injection(self, value: str) -> bool:
        return detect_sql_injection(value)

    def looks_like_xss(self, value: str) -> bool:
        return detect_xss(value)

    def is_suspicious(self, value: str) -> bool:
        return self.looks_like_sql_injection(value) or self.looks_like_xss(value)
