"""Masking of credentials in log output.

Request logging touches bearer tokens, Supabase keys and profile e-mails;
none of them may reach a log sink in clear text.
"""

from __future__ import annotations

import re
from typing import Any

MASK = "***MASKED***"

# (pattern, replacement) pairs applied in order
_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"(Bearer\s+)[A-Za-z0-9_\-\.=]+", re.IGNORECASE), r"\g<1>" + MASK),
    (
        re.compile(
            r'(["\']?(?:(?:auth|access|refresh|api)[_-]?)?token["\']?\s*[:=]\s*)["\']?[A-Za-z0-9_\-\.]+["\']?',
            re.IGNORECASE,
        ),
        r"\g<1>" + MASK,
    ),
    (
        re.compile(r'(["\']?(?:api[_-]?key|secret|password)["\']?\s*[:=]\s*)["\']?[^"\'\s,}\]]+["\']?', re.IGNORECASE),
        r"\g<1>" + MASK,
    ),
    (re.compile(r"(https?://)[^:/\s]+:[^@/\s]+(@)"), r"\1" + MASK + r"\2"),
]

_EMAIL = re.compile(r"([a-zA-Z0-9._%+-]{1,2})[a-zA-Z0-9._%+-]*@([a-zA-Z0-9.-]+\.[a-zA-Z]{2,})")

SENSITIVE_KEYWORDS: frozenset[str] = frozenset(
    {
        "password",
        "secret",
        "token",
        "api_key",
        "apikey",
        "authorization",
        "bearer",
        "credential",
        "private_key",
    }
)


def mask_sensitive_string(text: str) -> str:
    """Mask tokens, secrets and e-mail local parts in a string."""
    if not text:
        return text
    for pattern, replacement in _PATTERNS:
        text = pattern.sub(replacement, text)
    return _EMAIL.sub(r"\1***@\2", text)


def is_sensitive_key(key: str) -> bool:
    lower_key = key.lower()
    return any(keyword in lower_key for keyword in SENSITIVE_KEYWORDS)


def mask_dict(data: dict[str, Any], depth: int = 0, max_depth: int = 10) -> dict[str, Any]:
    """Recursively mask sensitive values in a dictionary.

    Args:
        data: Dictionary to mask (e.g. request headers or a payload)
        depth: Current recursion depth
        max_depth: Maximum recursion depth

    Returns:
        A new dictionary with sensitive values masked
    """
    if depth >= max_depth:
        return data

    result: dict[str, Any] = {}
    for key, value in data.items():
        if is_sensitive_key(str(key)):
            result[key] = MASK
        elif isinstance(value, dict):
            result[key] = mask_dict(value, depth + 1, max_depth)
        elif isinstance(value, list):
            result[key] = [
                mask_dict(item, depth + 1, max_depth) if isinstance(item, dict) else item
                for item in value
            ]
        elif isinstance(value, str):
            result[key] = mask_sensitive_string(value)
        else:
            result[key] = value
    return result
