"""Clock helpers.

Buffers are driven by an injectable millisecond clock so pruning is
deterministic under test; manifests also carry a UTC ``Z`` timestamp.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable


Clock = Callable[[], int]


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


def utc_iso_z(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    text = dt.astimezone(timezone.utc).isoformat()
    if text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text


def utc_now_z() -> str:
    return utc_iso_z(datetime.now(timezone.utc))


def ms_to_utc_z(ts_ms: int) -> str:
    return utc_iso_z(datetime.fromtimestamp(int(ts_ms) / 1000.0, tz=timezone.utc))
