"""
Safe JSON helpers for captured request/response data.

Captured bodies can hold anything a web handler produces: bytes, ORM
objects, self-referencing dicts, very large strings. These helpers turn
such values into bounded, JSON-serializable data before they are placed
in a LogEntry, so that serialization in the transport does not fail.
"""

import json
import math
from typing import Any, Dict, Mapping, Optional

from sentinel_sdk.config import MAX_LOG_FIELD_SIZE_BYTES


# Header names whose values are never shipped (lowercase)
SENSITIVE_HEADERS = [
    "authorization",
    "cookie",
    "x-api-key",
    "x-auth-token",
    "api-key",
    "api_key",
    "access-token",
    "access_token",
]

REDACTED_PLACEHOLDER = "[REDACTED]"
CIRCULAR_PLACEHOLDER = "[Circular Reference]"
BINARY_PLACEHOLDER = "[Binary Data]"
TRUNCATED_SUFFIX = "... [truncated]"


def make_serializable(value: Any, max_field_size: int = MAX_LOG_FIELD_SIZE_BYTES) -> Any:
    """
    Convert a value to a bounded JSON-serializable form.

    - Strings longer than max_field_size are truncated
    - bytes become a placeholder
    - dicts, lists, tuples and sets are converted recursively
    - Circular references are replaced by a placeholder
    - datetimes and dates use isoformat()
    - NaN and infinity become None
    - Anything else falls back to str()

    Args:
        value: Value to convert
        max_field_size: Maximum length of any single string

    Returns:
        JSON-serializable copy of value
    """
    return _convert(value, max_field_size, set())


def _convert(value: Any, limit: int, seen: set) -> Any:
    if isinstance(value, float) and not math.isfinite(value):
        # NaN and infinity have no JSON form
        return None
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return _truncate(value, limit)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return BINARY_PLACEHOLDER

    if isinstance(value, (dict, list, tuple, set, frozenset)):
        marker = id(value)
        if marker in seen:
            return CIRCULAR_PLACEHOLDER
        seen.add(marker)
        try:
            if isinstance(value, dict):
                return {str(k): _convert(v, limit, seen) for k, v in value.items()}
            return [_convert(item, limit, seen) for item in value]
        finally:
            seen.discard(marker)

    if hasattr(value, "isoformat"):
        return value.isoformat()
    return _truncate(str(value), limit)


def _truncate(text: str, limit: int) -> str:
    if len(text) > limit:
        return text[:limit] + TRUNCATED_SUFFIX
    return text


def redact_headers(
    headers: Optional[Mapping[str, Any]],
    placeholder: str = REDACTED_PLACEHOLDER,
) -> Dict[str, str]:
    """
    Copy headers, replacing the values of sensitive ones.

    Keys are kept as given; matching is case-insensitive.

    Examples:
        >>> redact_headers({"Authorization": "Bearer x", "Accept": "*/*"})
        {'Authorization': '[REDACTED]', 'Accept': '*/*'}
    """
    if not headers:
        return {}

    result = {}
    for key, value in headers.items():
        if key.lower() in SENSITIVE_HEADERS:
            result[key] = placeholder
        else:
            result[key] = str(value)
    return result


def parse_body(value: Any) -> Any:
    """
    Decode a JSON body if possible, otherwise return it unchanged.

    bytes are decoded as UTF-8 first; undecodable bytes are returned
    as-is (make_serializable will replace them with a placeholder).
    """
    if isinstance(value, (bytes, bytearray)):
        try:
            value = bytes(value).decode("utf-8")
        except UnicodeDecodeError:
            return value

    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value
