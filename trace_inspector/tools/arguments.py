"""Argument parsing helpers shared by the MCP tools.

All helpers raise ValueError for missing or malformed values so tools can
report them as invalid arguments.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def required_string(arguments: Dict[str, Any], key: str) -> str:
    value = arguments.get(key)
    if value is None or not str(value).strip():
        raise ValueError(f"Missing required parameter: {key}")
    return str(value)


def optional_string(arguments: Dict[str, Any], key: str,
                    default: Optional[str] = None) -> Optional[str]:
    value = arguments.get(key)
    if value is None:
        return default
    return str(value)


def optional_int(arguments: Dict[str, Any], key: str, default: int) -> int:
    value = arguments.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValueError(f"Parameter {key} must be a number")
    if isinstance(value, (int, float)):
        return int(value)
    try:
        return int(str(value).strip())
    except ValueError:
        raise ValueError(f"Parameter {key} must be a number: {value}")


def optional_bool(arguments: Dict[str, Any], key: str, default: bool) -> bool:
    value = arguments.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() == "true"


def optional_string_list(arguments: Dict[str, Any], key: str,
                         default: Optional[List[str]] = None) -> Optional[List[str]]:
    """List of strings; a single string is treated as a one-item list."""
    value = arguments.get(key)
    if value is None:
        return default
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if item is not None]
    return [str(value)]


def required_string_list(arguments: Dict[str, Any], key: str) -> List[str]:
    values = optional_string_list(arguments, key)
    if values is None:
        raise ValueError(f"Missing required parameter: {key}")
    return values


def parse_iso_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp such as ``2024-01-15T10:00:00Z``.

    Timestamps without an offset are taken as UTC.

    Raises:
        ValueError: If the value is not ISO-8601
    """
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid timestamp format. Expected ISO-8601: {value}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
