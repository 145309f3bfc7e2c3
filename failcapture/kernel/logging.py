"""Structured JSONL logging keyed by run id.

Design goals:
- Lightweight: no handlers, no background threads.
- Stable key ordering in JSON serialization.
- Archive-only rotation: full logs are moved into logs/archive/, never deleted.
- Never raises: a broken log must not break a persist.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from failcapture.kernel.redaction import redact_obj
from failcapture.kernel.timebase import utc_now_z


_LEVELS = {"debug": 10, "info": 20, "warning": 30, "error": 40}


@dataclass(frozen=True)
class JsonlLoggerConfig:
    path: Path
    rotate_max_bytes: int = 5_000_000
    min_level: str = "info"


class JsonlLogger:
    def __init__(self, cfg: JsonlLoggerConfig) -> None:
        self._cfg = cfg

    @classmethod
    def for_output_dir(cls, output_dir: str | Path, *, name: str = "failcapture") -> "JsonlLogger":
        path = Path(output_dir) / "logs" / f"{name}.jsonl"
        return cls(JsonlLoggerConfig(path=path))

    @property
    def path(self) -> str:
        return str(self._cfg.path)

    def _rotate_if_needed(self) -> None:
        try:
            if not self._cfg.path.exists():
                return
            if self._cfg.path.stat().st_size < self._cfg.rotate_max_bytes:
                return
        except Exception:
            return
        try:
            archive_dir = self._cfg.path.parent / "archive"
            archive_dir.mkdir(parents=True, exist_ok=True)
            ts = utc_now_z().replace(":", "").replace("-", "").replace(".", "")
            archived = archive_dir / f"{self._cfg.path.stem}.{ts}{self._cfg.path.suffix}"
            if not archived.exists():
                self._cfg.path.replace(archived)
        except Exception:
            return

    def enabled_for(self, level: str) -> bool:
        threshold = _LEVELS.get(str(self._cfg.min_level).lower(), 20)
        return _LEVELS.get(str(level).lower(), 20) >= threshold

    def event(
        self,
        *,
        event: str,
        run_id: str | None = None,
        level: str = "info",
        ts_utc: str | None = None,
        **fields: Any,
    ) -> None:
        if not self.enabled_for(level):
            return
        payload: dict[str, Any] = {
            "ts_utc": str(ts_utc or utc_now_z()),
            "level": str(level or "info"),
            "event": str(event or "event"),
            "run_id": str(run_id or ""),
        }
        for k, v in fields.items():
            if k in payload:
                continue
            payload[str(k)] = v
        try:
            line = json.dumps(redact_obj(payload), sort_keys=True, default=str)
            self._cfg.path.parent.mkdir(parents=True, exist_ok=True)
            self._rotate_if_needed()
            with self._cfg.path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        except Exception:
            return

    def warning(self, event: str, **fields: Any) -> None:
        self.event(event=event, level="warning", **fields)
