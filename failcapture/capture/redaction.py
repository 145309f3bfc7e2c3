"""Redaction applied to a run's payloads before anything reaches disk.

Two layers run in order:

1. A default heuristic that nulls the ``value`` of password, email and
   telephone inputs in a snapshot's element list.
2. An optional caller hook that may replace the snapshot, the diagnostics or
   the frame set, or ask for every frame to be dropped.

A hook that raises, or returns something unrecognizable, drops all frames.
When the redaction step itself is broken, losing evidence is preferred over
leaking it.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Protocol, runtime_checkable

from failcapture.capture.payloads import to_json_payload
from failcapture.capture.retention import FrameRecord
from failcapture.kernel.logging import JsonlLogger


SENSITIVE_INPUT_TYPES = frozenset({"password", "email", "tel"})


@dataclass(frozen=True)
class RedactionContext:
    run_id: str
    reason: str | None
    status: str
    snapshot: dict[str, Any] | None
    diagnostics: dict[str, Any] | None
    frame_paths: list[str]
    metadata: dict[str, Any]


@dataclass(frozen=True)
class RedactionResult:
    snapshot: dict[str, Any] | None = None
    diagnostics: dict[str, Any] | None = None
    frame_paths: list[str] | None = None
    drop_frames: bool = False


@runtime_checkable
class RedactionHook(Protocol):
    def evaluate(self, context: RedactionContext) -> RedactionResult | None: ...


@dataclass(frozen=True)
class RedactedFrame:
    """A frame that survived redaction; ``ts`` is None for hook-supplied files."""

    source: Path
    file_name: str
    ts: int | None
    width: int | None = None
    height: int | None = None


@dataclass(frozen=True)
class RedactionOutcome:
    snapshot: dict[str, Any] | None
    diagnostics: dict[str, Any] | None
    frames: list[RedactedFrame] = field(default_factory=list)
    frames_redacted: bool = False
    frames_dropped: bool = False


def redact_snapshot_values(snapshot: dict[str, Any] | None) -> dict[str, Any] | None:
    """Return a copy of ``snapshot`` with sensitive input values nulled."""
    if snapshot is None:
        return None
    redacted = copy.deepcopy(snapshot)
    elements = redacted.get("elements")
    if not isinstance(elements, list):
        return redacted
    for element in elements:
        if not isinstance(element, dict):
            continue
        input_type = str(element.get("input_type") or "").strip().lower()
        if input_type not in SENSITIVE_INPUT_TYPES:
            continue
        if element.get("value") is None:
            continue
        element["value"] = None
        element["value_redacted"] = True
    return redacted


def _hook_callable(hook: Any) -> Callable[[RedactionContext], Any]:
    evaluate = getattr(hook, "evaluate", None)
    if callable(evaluate):
        return evaluate
    return hook


def _coerce_result(raw: Any) -> RedactionResult:
    """Accept None, a RedactionResult, or a mapping; anything else is a hook bug."""
    if raw is None:
        return RedactionResult()
    if isinstance(raw, RedactionResult):
        fields = {
            "snapshot": raw.snapshot,
            "diagnostics": raw.diagnostics,
            "frame_paths": raw.frame_paths,
            "drop_frames": raw.drop_frames,
        }
    elif isinstance(raw, dict):
        unknown = set(raw) - {"snapshot", "diagnostics", "frame_paths", "drop_frames"}
        if unknown:
            raise TypeError(f"unexpected redaction result keys: {sorted(unknown)}")
        fields = raw
    else:
        raise TypeError(f"redaction hook returned {type(raw).__name__}")
    frame_paths = fields.get("frame_paths")
    if frame_paths is not None and not isinstance(frame_paths, (list, tuple)):
        raise TypeError("frame_paths must be a list")
    return RedactionResult(
        snapshot=to_json_payload(fields.get("snapshot"), name="snapshot"),
        diagnostics=to_json_payload(fields.get("diagnostics"), name="diagnostics"),
        frame_paths=None if frame_paths is None else [str(p) for p in frame_paths],
        drop_frames=bool(fields.get("drop_frames", False)),
    )


class RedactionPipeline:
    def __init__(
        self,
        *,
        redact_values: bool = True,
        hook: RedactionHook | Callable[[RedactionContext], Any] | None = None,
        logger: JsonlLogger | None = None,
    ) -> None:
        self._redact_values = bool(redact_values)
        self._hook = hook
        self._logger = logger

    def apply(
        self,
        *,
        run_id: str,
        reason: str | None,
        status: str,
        snapshot: dict[str, Any] | None,
        diagnostics: dict[str, Any] | None,
        frames: list[FrameRecord],
        metadata: dict[str, Any],
    ) -> RedactionOutcome:
        if self._redact_values:
            snapshot = redact_snapshot_values(snapshot)
        kept = [
            RedactedFrame(source=f.file_path, file_name=f.file_name, ts=f.ts, width=f.width, height=f.height)
            for f in frames
        ]
        if self._hook is None:
            return RedactionOutcome(snapshot=snapshot, diagnostics=diagnostics, frames=kept)

        context = RedactionContext(
            run_id=run_id,
            reason=reason,
            status=status,
            snapshot=snapshot,
            diagnostics=diagnostics,
            frame_paths=[str(f.file_path) for f in frames],
            metadata=dict(metadata),
        )
        try:
            result = _coerce_result(_hook_callable(self._hook)(context))
        except Exception as exc:
            # Fail-safe: a broken hook means no frame may be trusted.
            if self._logger is not None:
                self._logger.warning(
                    "artifacts.redaction.hook_failed",
                    run_id=run_id,
                    error_type=type(exc).__name__,
                    error=str(exc)[:200],
                )
            return RedactionOutcome(snapshot=snapshot, diagnostics=diagnostics, frames=[], frames_dropped=True)

        if result.snapshot is not None:
            snapshot = result.snapshot
        if result.diagnostics is not None:
            diagnostics = result.diagnostics
        if result.drop_frames:
            return RedactionOutcome(snapshot=snapshot, diagnostics=diagnostics, frames=[], frames_dropped=True)
        if result.frame_paths is None:
            return RedactionOutcome(snapshot=snapshot, diagnostics=diagnostics, frames=kept)
        return RedactionOutcome(
            snapshot=snapshot,
            diagnostics=diagnostics,
            frames=_replacement_frames(result.frame_paths, frames),
            frames_redacted=True,
        )


def _replacement_frames(paths: list[str], originals: list[FrameRecord]) -> list[RedactedFrame]:
    by_path = {str(f.file_path): f for f in originals}
    by_name = {f.file_name: f for f in originals}
    used: set[str] = set()
    out: list[RedactedFrame] = []
    for index, raw in enumerate(paths):
        source = Path(raw)
        original = by_path.get(str(source)) or by_name.get(source.name)
        name = _unique_name(source.name or f"frame_{index:05d}", used)
        used.add(name)
        out.append(
            RedactedFrame(
                source=source,
                file_name=name,
                ts=original.ts if original else None,
                # Replacement files may be re-encoded; only trust dims for untouched frames.
                width=original.width if original and original.file_path == source else None,
                height=original.height if original and original.file_path == source else None,
            )
        )
    return out


def _unique_name(name: str, used: set[str]) -> str:
    # Suffix before the extension so renamed copies sort right after the original.
    if name not in used:
        return name
    path = Path(name)
    n = 1
    while True:
        candidate = f"{path.stem}_{n}{path.suffix}"
        if candidate not in used:
            return candidate
        n += 1
