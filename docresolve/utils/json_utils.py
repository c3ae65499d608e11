"""JSON serialization helpers."""

from __future__ import annotations

import dataclasses
import hashlib
import json
import numbers
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

import numpy as np
from pydantic import BaseModel


def json_ready(obj: Any):
    """Return a JSON-serializable representation of ``obj``.

    Handles pydantic models, dataclasses, enums, datetimes, decimals, numpy
    arrays/scalars, mappings, sequences and sets recursively. Unknown values
    are returned as-is so native ``json`` can handle str/int/bool directly.
    """

    if obj is None or isinstance(obj, (bool, int, float, str)):
        return obj

    if isinstance(obj, Enum):
        return json_ready(obj.value)

    if isinstance(obj, BaseModel):
        return json_ready(obj.model_dump(mode="json"))

    if isinstance(obj, dict):
        return {str(json_ready(k)): json_ready(v) for k, v in obj.items()}

    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return json_ready(dataclasses.asdict(obj))

    if isinstance(obj, (list, tuple)):
        return [json_ready(v) for v in obj]

    if isinstance(obj, (set, frozenset)):
        return sorted((json_ready(v) for v in obj), key=repr)

    if isinstance(obj, (datetime, date)):
        return obj.isoformat()

    if isinstance(obj, Decimal):
        return str(obj)

    if isinstance(obj, np.generic):
        return obj.item()
    if isinstance(obj, np.ndarray):
        return obj.tolist()

    if isinstance(obj, numbers.Number):
        return float(obj)

    if isinstance(obj, (bytes, bytearray)):
        return bytes(obj).decode("utf-8", errors="ignore")

    return obj


def canonical_json(obj: Any) -> bytes:
    """Stable UTF-8 encoding used for content addressing."""

    return json.dumps(json_ready(obj), sort_keys=True, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def content_digest(obj: Any) -> str:
    return hashlib.sha256(canonical_json(obj)).hexdigest()


__all__ = ["canonical_json", "content_digest", "json_ready"]
