"""orjson helpers for cache entries, push frames and signed token claims."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import orjson

_ORJSON_OPTIONS = orjson.OPT_SORT_KEYS | orjson.OPT_NAIVE_UTC | orjson.OPT_UTC_Z


def _default(value: Any) -> Any:
    # Money is quantized to cents before it gets here; a cent amount with at most 15
    # significant digits prints exactly as a JSON number. Arithmetic stays on Decimal.
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"type {type(value).__name__} is not JSON serializable")


def canonical_dumps(payload: Any) -> bytes:
    """Return canonical JSON bytes with sorted keys and stable formatting."""
    return orjson.dumps(payload, default=_default, option=_ORJSON_OPTIONS)


def loads(raw: bytes | str) -> Any:
    return orjson.loads(raw)


def encode_frame(event: str, data: Any) -> str:
    """Serialize one server-to-client push frame."""
    return canonical_dumps({"event": event, "data": data}).decode()


def to_jsonable(payload: Any) -> Any:
    """Round-trip through orjson so dataclasses, enums and decimals become plain JSON types."""
    return orjson.loads(canonical_dumps(payload))
