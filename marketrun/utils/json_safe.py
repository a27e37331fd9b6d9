"""JSON text columns (trail values, provider responses, webhook payloads, job summaries)."""
from __future__ import annotations

import dataclasses
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any

TRUNCATED_MARKER = "truncated"


def to_jsonable(value: Any):
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return to_jsonable(dataclasses.asdict(value))
    if hasattr(value, "to_dict"):
        return to_jsonable(value.to_dict())
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(v) for v in value]
    return str(value)


def safe_json(data: Any, *, limit: int = 8000) -> str | None:
    """Compact JSON for ``data``; oversized output is wrapped as ``{"truncated": true, "raw": ...}``."""
    if data is None:
        return None
    out = json.dumps(to_jsonable(data), separators=(",", ":"), ensure_ascii=False)
    if len(out) > limit:
        out = json.dumps({TRUNCATED_MARKER: True, "raw": out[: max(0, limit - 64)]})
    return out


def load_json_object(text: str | None) -> dict:
    """Inverse of ``safe_json`` for columns that always hold an object; anything else reads as ``{}``."""
    try:
        parsed = json.loads(text or "{}")
    except ValueError:
        return {}
    return parsed if isinstance(parsed, dict) else {}
