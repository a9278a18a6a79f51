"""
OTLP/JSON Attribute and Time Codec

Helpers shared by the trace, metric and log ingest pipelines:
- Flatten OTLP key/value attribute lists into plain dicts
- Convert nanosecond epoch values to stored timestamp strings
- Normalize span/trace ids, status codes and severity numbers
"""

from __future__ import annotations
import math
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Dict, Any, Union

AttributeValue = Union[str, int, float, bool]
AttributeMap = Dict[str, AttributeValue]

NANOS_PER_MILLI = 1_000_000
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# OTLP status code for STATUS_CODE_ERROR
STATUS_CODE_ERROR = 2


# =============================================================================
# ATTRIBUTES
# =============================================================================

def _resolve_value(value: Dict[str, Any]) -> Optional[AttributeValue]:
    """Pick the single scalar variant out of an AnyValue; None if unsupported."""
    if "stringValue" in value:
        return value["stringValue"]
    if "intValue" in value:
        raw = value["intValue"]
        if isinstance(raw, bool):
            return None
        if isinstance(raw, int):
            return raw
        try:
            return int(raw)
        except (TypeError, ValueError):
            return None
    if "doubleValue" in value:
        raw = value["doubleValue"]
        if isinstance(raw, bool):
            return None
        try:
            number = float(raw)
        except (TypeError, ValueError):
            return None
        # "Infinity" / "NaN" / 1e400 cannot be stored as counts or prices
        return number if math.isfinite(number) else None
    if "boolValue" in value:
        return bool(value["boolValue"])
    # arrayValue / kvlistValue / bytesValue are not flattened
    return None


def extract_attributes(attributes: Optional[List[Dict[str, Any]]]) -> AttributeMap:
    """
    Flatten an OTLP attribute list into {key: scalar}.

    Unsupported or unparseable values are dropped silently.
    """
    result: AttributeMap = {}
    if not attributes:
        return result

    for item in attributes:
        if not isinstance(item, dict):
            continue
        key = item.get("key")
        value = item.get("value")
        if not key or not isinstance(value, dict):
            continue
        resolved = _resolve_value(value)
        if resolved is not None:
            result[key] = resolved
    return result


def attr_string(attrs: AttributeMap, key: str) -> Optional[str]:
    value = attrs.get(key)
    return value if isinstance(value, str) else None


def attr_number(attrs: AttributeMap, key: str) -> Optional[Union[int, float]]:
    value = attrs.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def attr_int(attrs: AttributeMap, key: str, default: int = 0) -> int:
    """Numeric attribute as int, falling back to default."""
    value = attr_number(attrs, key)
    return int(value) if value is not None else default


# =============================================================================
# TIME
# =============================================================================

def format_timestamp(dt: datetime) -> str:
    """
    Format a datetime as the stored timestamp string.

    Fixed width, zero padded, UTC wall clock, millisecond precision:
    YYYY-MM-DDTHH:MM:SS.mmm. Lexicographic order equals time order.
    """
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S") + f".{dt.microsecond // 1000:03d}"


def nano_to_datetime(nano: Union[str, int]) -> str:
    """
    Convert a nanosecond epoch value to a stored timestamp string.

    Raises ValueError for values that are not integers.
    """
    if isinstance(nano, bool):
        raise ValueError(f"Invalid nanosecond timestamp: {nano!r}")
    millis = int(nano) // NANOS_PER_MILLI
    return format_timestamp(EPOCH + timedelta(milliseconds=millis))


def span_duration_ms(start_nano: Union[str, int], end_nano: Union[str, int]) -> int:
    """Duration between two nanosecond timestamps in whole milliseconds."""
    duration = (int(end_nano) - int(start_nano)) // NANOS_PER_MILLI
    return max(duration, 0)


# =============================================================================
# IDS, STATUS, SEVERITY
# =============================================================================

def to_hex_string(value: Optional[Union[str, bytes, bytearray]]) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return bytes(value).hex()


def span_status_to_string(code: Optional[int]) -> str:
    return "error" if code == STATUS_CODE_ERROR else "ok"


def severity_number_to_string(number: Any) -> str:
    """Map an OTLP SeverityNumber onto its band name; non-numeric values are unspecified."""
    if isinstance(number, bool):
        return "unspecified"
    try:
        number = int(number)
    except (TypeError, ValueError, OverflowError):
        return "unspecified"
    if number <= 0:
        return "unspecified"
    if number <= 4:
        return "trace"
    if number <= 8:
        return "debug"
    if number <= 12:
        return "info"
    if number <= 16:
        return "warn"
    if number <= 20:
        return "error"
    return "fatal"


def get_numeric_value(point: Dict[str, Any]) -> Union[int, float]:
    """
    Value of a metric data point; asDouble wins over asInt, 0 when neither.

    Raises ValueError for values that are unparseable or not finite.
    """
    if point.get("asDouble") is not None:
        value = float(point["asDouble"])
        if not math.isfinite(value):
            raise ValueError(f"Non-finite metric value: {point['asDouble']!r}")
        return value
    if point.get("asInt") is not None:
        return int(point["asInt"])
    return 0
