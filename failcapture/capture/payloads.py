"""Boundary normalization for snapshot, diagnostics and metadata payloads.

Callers hand over whatever their browser layer produced: plain dicts,
pydantic models, dataclasses. Everything is turned into a JSON-ready dict once,
here, so redaction and persistence only ever see plain data and never mutate
the caller's objects.
"""

from __future__ import annotations

import dataclasses
import json
from collections.abc import Mapping
from typing import Any


def to_json_payload(value: Any, *, name: str = "payload") -> dict[str, Any] | None:
    if value is None:
        return None
    if isinstance(value, Mapping):
        raw: Any = dict(value)
    elif callable(getattr(value, "model_dump", None)):
        raw = value.model_dump()
    elif dataclasses.is_dataclass(value) and not isinstance(value, type):
        raw = dataclasses.asdict(value)
    elif callable(getattr(value, "to_dict", None)):
        raw = value.to_dict()
    else:
        raise TypeError(f"{name} must be a mapping or a model, got {type(value).__name__}")
    if not isinstance(raw, Mapping):
        raise TypeError(f"{name} did not serialize to a mapping")
    # Round trip through JSON: deep copy plus a guarantee the bundle can encode it.
    try:
        text = json.dumps(dict(raw), allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise TypeError(f"{name} is not JSON-serializable: {exc}") from exc
    return json.loads(text)
