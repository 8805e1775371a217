""" Value coercion for printer snapshots.

The printer is inconsistent across message variants: the same field may
arrive as 50, 50.0 or "50", and temperatures usually as "219.900000".
Every helper here is total: anything unusable is reported as absent (None)
or, for `to_int`, as 0.
"""
import json
import math
from typing import Any, Mapping, Optional


def parse_number(s: str) -> Optional[float]:
    """Parse a numeric string; None for non-numeric, non-finite or padded text."""
    if not s or s != s.strip() or "_" in s:
        return None
    try:
        f = float(s)
    except ValueError:
        return None
    if not math.isfinite(f):
        return None
    return f


def as_float(v: Any) -> Optional[float]:
    if isinstance(v, bool) or v is None:
        return None
    if isinstance(v, int):
        return float(v)
    if isinstance(v, float):
        return v if math.isfinite(v) else None
    if isinstance(v, str):
        return parse_number(v)
    return None


def as_int(v: Any) -> Optional[int]:
    if isinstance(v, bool) or v is None:
        return None
    if isinstance(v, int):
        return v
    if isinstance(v, str):
        f = parse_number(v)
        if f is None:
            return None
        try:
            return int(v)  # exact for integer text
        except ValueError:
            return int(f)
    f = as_float(v)
    if f is None:
        return None
    return int(f)


def get_float(snapshot: Mapping[str, Any], key: str) -> Optional[float]:
    return as_float(snapshot.get(key))


def get_int(snapshot: Mapping[str, Any], key: str) -> Optional[int]:
    return as_int(snapshot.get(key))


def to_int(v: Any) -> int:
    """Numbers truncate toward zero; everything else (null, strings, bools, nested) is 0."""
    if isinstance(v, bool):
        return 0
    if isinstance(v, int):
        return v
    if isinstance(v, float) and math.isfinite(v):
        return int(v)
    return 0


def format_float(f: float) -> str:
    # 28.0 -> "28", 35.5 -> "35.5"
    if math.isfinite(f) and f.is_integer() and abs(f) < 1e21:
        return str(int(f))
    return repr(f)


def format_value(v: Any) -> str:
    """String payload for one scalar; numeric strings get 3 decimals ("219.900000" -> "219.900")."""
    if isinstance(v, bool):
        return "true" if v else "false"
    if v is None:
        return "null"
    if isinstance(v, int):
        return str(v)
    if isinstance(v, float):
        return format_float(v)
    if isinstance(v, str):
        f = parse_number(v)
        return v if f is None else f"{f:.3f}"
    if isinstance(v, (dict, list, tuple)):
        return json.dumps(v, separators=(",", ":"), ensure_ascii=False, default=str)
    return str(v)
