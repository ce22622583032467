"""
Redaction of sensitive values before they reach logs or error details.
"""
from typing import Any

REDACTED = "***"

# Compared against keys lowercased with "-" and "_" removed
SENSITIVE_KEY_FRAGMENTS = (
    "password",
    "passwd",
    "pwd",
    "token",
    "secret",
    "privatekey",
    "apikey",
    "authorization",
    "cookie",
    "session",
    "jwt",
)


def is_sensitive_key(key: Any) -> bool:
    """
    Check whether a mapping key names a sensitive value.

    Args:
        key: Mapping key (non-string keys are never sensitive)

    Returns:
        True if the value stored under this key must be redacted

    Example:
        >>> is_sensitive_key("clientSecret")
        True
        >>> is_sensitive_key("author")
        False
    """
    if not isinstance(key, str):
        return False
    normalized = key.lower().replace("-", "").replace("_", "")
    return any(fragment in normalized for fragment in SENSITIVE_KEY_FRAGMENTS)


def redact(value: Any) -> Any:
    """
    Return a copy of ``value`` with sensitive mapping values replaced.

    Walks dicts, lists and tuples recursively. Scalars are returned as-is.

    Example:
        >>> redact({"user": "admin", "password": "hunter2"})
        {'user': 'admin', 'password': '***'}
    """
    if isinstance(value, dict):
        return {
            k: REDACTED if is_sensitive_key(k) else redact(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [redact(item) for item in value]
    if isinstance(value, tuple):
        return tuple(redact(item) for item in value)
    return value
