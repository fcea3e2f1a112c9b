"""Typed value codec for the documents REST API.

Field values travel as single-key objects naming their type, e.g.
``{"stringValue": "Nairobi"}`` or ``{"integerValue": "500"}``.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from kejabase.backend.base import SERVER_TIMESTAMP

# RFC 3339 with up to nanosecond precision; datetime keeps microseconds.
_FRACTION_RE = re.compile(r"\.(\d{6})\d+")


def parse_timestamp(value: str) -> datetime:
    text = _FRACTION_RE.sub(r".\1", value.strip())
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def encode_value(value: Any) -> dict[str, Any]:
    """Encode a Python value as a typed REST value."""
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, datetime):
        return {"timestampValue": format_timestamp(value)}
    if isinstance(value, bytes):
        raise TypeError("bytes values are not supported")
    if isinstance(value, Mapping):
        return {"mapValue": {"fields": encode_fields(value)}}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [encode_value(item) for item in value]}}
    raise TypeError(f"Cannot encode value of type {type(value).__name__}")


def encode_fields(data: Mapping[str, Any]) -> dict[str, Any]:
    return {str(key): encode_value(value) for key, value in data.items() if value is not SERVER_TIMESTAMP}


def server_timestamp_paths(data: Mapping[str, Any], prefix: str = "") -> list[str]:
    """Field paths whose value is the server timestamp sentinel."""
    paths: list[str] = []
    for key, value in data.items():
        path = f"{prefix}{key}"
        if value is SERVER_TIMESTAMP:
            paths.append(path)
        elif isinstance(value, Mapping):
            paths.extend(server_timestamp_paths(value, f"{path}."))
    return paths


def decode_value(value: Mapping[str, Any]) -> Any:
    """Decode a typed REST value into a plain Python value."""
    if "nullValue" in value:
        return None
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "stringValue" in value:
        return str(value["stringValue"])
    if "timestampValue" in value:
        return parse_timestamp(str(value["timestampValue"]))
    if "mapValue" in value:
        return decode_fields(value["mapValue"].get("fields") or {})
    if "arrayValue" in value:
        return [decode_value(item) for item in value["arrayValue"].get("values") or []]
    if "referenceValue" in value:
        return str(value["referenceValue"])
    if "geoPointValue" in value:
        point = value["geoPointValue"]
        return {"latitude": point.get("latitude", 0.0), "longitude": point.get("longitude", 0.0)}
    if "bytesValue" in value:
        return str(value["bytesValue"])
    raise ValueError(f"Unknown value type: {sorted(value)}")


def decode_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    return {key: decode_value(value) for key, value in fields.items()}
