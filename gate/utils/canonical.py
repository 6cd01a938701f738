"""Canonical JSON and hashing utilities."""

import hashlib
import json
import math
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel


def _canonical_value(obj: Any) -> Any:
    """Convert value for canonical representation."""
    if obj is None or isinstance(obj, (bool, str)):
        return obj
    if isinstance(obj, Enum):
        return _canonical_value(obj.value)
    if isinstance(obj, BaseModel):
        return _canonical_value(obj.model_dump(mode="json", exclude_none=True))
    if isinstance(obj, int):
        return int(obj)
    if isinstance(obj, (float, Decimal)):
        f = float(obj)
        if math.isnan(f) or math.isinf(f):
            raise ValueError(f"Cannot canonicalize non-finite number: {obj!r}")
        # 45.0 and 45 must serialize identically; from 1e21 up JSON uses exponent form
        return int(f) if f.is_integer() and abs(f) < 1e21 else f
    if isinstance(obj, dict):
        out = {}
        for k, v in obj.items():
            if not isinstance(k, str):
                raise TypeError(f"Object keys must be strings, got {type(k).__name__}")
            out[k] = _canonical_value(v)
        return {k: out[k] for k in sorted(out)}
    if isinstance(obj, (list, tuple)):
        return [_canonical_value(v) for v in obj]
    raise TypeError(f"Value of type {type(obj).__name__} is not JSON serializable")


def canonical_json(obj: Any) -> str:
    """Produce canonical JSON string (sorted keys, consistent formatting)."""
    canonical = _canonical_value(obj)
    return json.dumps(
        canonical,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def canonicalize(obj: Any) -> bytes:
    """UTF-8 bytes of the canonical JSON form."""
    return canonical_json(obj).encode("utf-8")


def digest(data: bytes | str) -> str:
    """SHA-256 hex digest of bytes (strings are UTF-8 encoded)."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def hash_value(obj: Any) -> str:
    """Compute SHA256 hash of canonical JSON."""
    return digest(canonicalize(obj))
