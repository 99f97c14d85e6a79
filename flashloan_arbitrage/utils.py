"""
Common helpers for unit conversion and JSON encoding.
"""

import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Union

WEI_PER_GWEI = 10**9
WEI_PER_ETHER = 10**18

Number = Union[int, float, Decimal]


def timestamp_to_iso(timestamp: float) -> str:
    """Convert Unix timestamp to ISO 8601 string."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def clamp(value: Number, min_val: Number, max_val: Number) -> Number:
    """Clamp value between min and max."""
    return max(min_val, min(value, max_val))


def basis_points_to_decimal(bps: float) -> Decimal:
    """Convert basis points to a Decimal fraction (100 bps = 0.01)."""
    return Decimal(str(bps)) / Decimal("10000")


def gwei_to_wei(gwei: Number) -> int:
    return int(Decimal(str(gwei)) * WEI_PER_GWEI)


def wei_to_native(wei: int) -> Decimal:
    """Convert wei to native token units."""
    return Decimal(wei) / Decimal(WEI_PER_ETHER)


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Convert a token amount to integer base units, truncating dust."""
    return int(amount * (Decimal(10) ** decimals))


def from_base_units(raw: int, decimals: int) -> Decimal:
    """Convert integer base units to a token amount."""
    return Decimal(raw) / (Decimal(10) ** decimals)


def _json_default_handler(obj: Any) -> Any:
    """Default JSON serialization handler for custom types."""
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if hasattr(obj, "value") and hasattr(obj, "name"):
        return obj.value
    if hasattr(obj, "__dict__"):
        return obj.__dict__
    return str(obj)


def safe_json_dump(data: Any, **kwargs) -> str:
    """
    Serialize data to JSON, encoding Decimals, enums and datetimes.

    Args:
        data: Data to serialize
        **kwargs: Additional arguments to json.dumps

    Returns:
        JSON string
    """
    defaults = {"ensure_ascii": False, "default": _json_default_handler}
    defaults.update(kwargs)
    return json.dumps(data, **defaults)

