"""Run bundle persistence.

Layout under ``output_dir``::

    {run_id}-{ts}/
        .persist.pending.json   present only while a persist is in flight
        steps.json
        snapshot.json           optional
        diagnostics.json        optional
        frames/                 optional
        failure.mp4             optional
        manifest.json           written last

Each file is written atomically (sibling temp + fsync + rename). There is no
cross-file transaction: the pending marker is written first and removed after
the manifest, so a crash anywhere in between leaves a directory that
:func:`find_incomplete_bundles` reports.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from failcapture.capture.clip import ClipSynthesizer
from failcapture.capture.payloads import to_json_payload
from failcapture.capture.redaction import RedactedFrame, RedactionOutcome, RedactionPipeline
from failcapture.capture.retention import FrameRecord
from failcapture.kernel.atomic_write import atomic_copy_file, atomic_write_json
from failcapture.kernel.hashing import sha256_file
from failcapture.kernel.logging import JsonlLogger
from failcapture.kernel.timebase import Clock, ms_to_utc_z


MANIFEST_SCHEMA_VERSION = 1
MANIFEST_FILE = "manifest.json"
PENDING_MARKER = ".persist.pending.json"
STEPS_FILE = "steps.json"
SNAPSHOT_FILE = "snapshot.json"
DIAGNOSTICS_FILE = "diagnostics.json"
FRAMES_DIR = "frames"

STATUSES = ("failure", "success")


@dataclass(frozen=True)
class PersistRequest:
    run_id: str
    reason: str | None
    status: str
    buffer_seconds: float
    snapshot: dict[str, Any] | None
    diagnostics: dict[str, Any] | None
    metadata: dict[str, Any]


def validate_status(status: Any) -> str:
    value = str(status or "").strip().lower()
    if value not in STATUSES:
        raise ValueError(f"status must be one of {STATUSES}, got {status!r}")
    return value


def build_request(
    *,
    run_id: str,
    reason: Any,
    status: Any,
    buffer_seconds: float,
    snapshot: Any = None,
    diagnostics: Any = None,
    metadata: Any = None,
) -> PersistRequest:
    return PersistRequest(
        run_id=str(run_id),
        reason=None if reason is None else str(reason),
        status=validate_status(status),
        buffer_seconds=float(buffer_seconds),
        snapshot=to_json_payload(snapshot, name="snapshot"),
        diagnostics=to_json_payload(diagnostics, name="diagnostics"),
        metadata=to_json_payload(metadata, name="metadata") or {},
    )


class PersistenceWriter:
    """Writes one bundle per instance; later calls are no-ops returning None."""

    def __init__(
        self,
        output_dir: str | Path,
        *,
        redaction: RedactionPipeline,
        clip: ClipSynthesizer,
        clock: Clock,
        logger: JsonlLogger | None = None,
    ) -> None:
        self._output_dir = Path(output_dir)
        self._redaction = redaction
        self._clip = clip
        self._clock = clock
        self._logger = logger
        self._persisted = False

    @property
    def persisted(self) -> bool:
        return self._persisted

    def persist(self, request: PersistRequest, *, steps: list[dict[str, Any]], frames: list[FrameRecord]) -> str | None:
        if self._persisted:
            return None
        ts = int(self._clock())
        run_dir = self._output_dir / f"{request.run_id}-{ts}"
        try:
            manifest = self._write_bundle(run_dir, ts, request, steps=steps, frames=frames)
        except Exception as exc:
            # Left in place for find_incomplete_bundles(); the caller may retry.
            if self._logger is not None:
                self._logger.event(
                    event="artifacts.persist.failed",
                    run_id=request.run_id,
                    level="error",
                    run_dir=str(run_dir),
                    error_type=type(exc).__name__,
                    error=str(exc)[:200],
                )
            raise
        self._persisted = True
        if self._logger is not None:
            self._logger.event(
                event="artifacts.persist.completed",
                run_id=request.run_id,
                run_dir=str(run_dir),
                status=request.status,
                reason=request.reason,
                frame_count=manifest["frame_count"],
                frames_dropped=manifest["frames_dropped"],
                clip=manifest["clip"],
            )
        return str(run_dir)

    def _write_bundle(
        self,
        run_dir: Path,
        ts: int,
        request: PersistRequest,
        *,
        steps: list[dict[str, Any]],
        frames: list[FrameRecord],
    ) -> dict[str, Any]:
        run_dir.mkdir(parents=True, exist_ok=False)
        marker = run_dir / PENDING_MARKER
        atomic_write_json(
            marker,
            {"run_id": request.run_id, "started_at_ms": ts, "status": request.status, "reason": request.reason},
        )

        outcome = self._redaction.apply(
            run_id=request.run_id,
            reason=request.reason,
            status=request.status,
            snapshot=request.snapshot,
            diagnostics=request.diagnostics,
            frames=frames,
            metadata=request.metadata,
        )

        atomic_write_json(run_dir / STEPS_FILE, steps)
        snapshot_name = None
        if outcome.snapshot is not None:
            atomic_write_json(run_dir / SNAPSHOT_FILE, outcome.snapshot)
            snapshot_name = SNAPSHOT_FILE
        diagnostics_name = None
        if outcome.diagnostics is not None:
            atomic_write_json(run_dir / DIAGNOSTICS_FILE, outcome.diagnostics)
            diagnostics_name = DIAGNOSTICS_FILE

        copied = self._copy_frames(run_dir, request.run_id, outcome)
        clip_name = self._clip.render(
            run_id=request.run_id,
            frames=[(record, path) for record, path, _entry in copied],
            out_dir=run_dir,
            frames_dropped=outcome.frames_dropped,
        )

        manifest = {
            "schema_version": MANIFEST_SCHEMA_VERSION,
            "run_id": request.run_id,
            "created_at_ms": ts,
            "created_at_utc": ms_to_utc_z(ts),
            "status": request.status,
            "reason": request.reason,
            "buffer_seconds": request.buffer_seconds,
            "frame_count": len(copied),
            "frames": [entry for _record, _path, entry in copied],
            "steps": STEPS_FILE,
            "step_count": len(steps),
            "snapshot": snapshot_name,
            "diagnostics": diagnostics_name,
            "clip": clip_name,
            "clip_fps": self._clip.options.fps if clip_name else None,
            "metadata": request.metadata,
            "frames_redacted": bool(outcome.frames_redacted),
            "frames_dropped": bool(outcome.frames_dropped),
        }
        atomic_write_json(run_dir / MANIFEST_FILE, manifest)
        marker.unlink()
        return manifest

    def _copy_frames(
        self, run_dir: Path, run_id: str, outcome: RedactionOutcome
    ) -> list[tuple[RedactedFrame, Path, dict[str, Any]]]:
        if outcome.frames_dropped or not outcome.frames:
            return []
        frames_dir = run_dir / FRAMES_DIR
        copied: list[tuple[RedactedFrame, Path, dict[str, Any]]] = []
        for frame in outcome.frames:
            dest = frames_dir / frame.file_name
            # The manifest only lists what actually landed on disk. Source-side
            # problems skip the frame; destination errors still fail the persist.
            unreadable = _source_error(frame.source)
            if unreadable is None:
                try:
                    atomic_copy_file(frame.source, dest)
                except FileNotFoundError as exc:
                    unreadable = exc
            if unreadable is not None:
                if self._logger is not None:
                    missing = isinstance(unreadable, FileNotFoundError)
                    self._logger.warning(
                        "artifacts.frame.missing" if missing else "artifacts.frame.unreadable",
                        run_id=run_id,
                        source=str(frame.source),
                        error_type=type(unreadable).__name__,
                    )
                continue
            entry = {
                "file": frame.file_name,
                "ts": frame.ts,
                "sha256": sha256_file(dest),
                "bytes": dest.stat().st_size,
                "width": frame.width,
                "height": frame.height,
            }
            copied.append((frame, dest, entry))
        return copied


def _source_error(path: Path) -> OSError | None:
    try:
        with Path(path).open("rb"):
            return None
    except OSError as exc:
        return exc


def _is_bundle_dir(path: Path) -> bool:
    return any((path / name).exists() for name in (PENDING_MARKER, MANIFEST_FILE, STEPS_FILE, FRAMES_DIR))


def find_incomplete_bundles(output_dir: str | Path) -> list[Path]:
    """Run directories whose persist never finished.

    A directory counts when it still holds the pending marker, or holds bundle
    files but no manifest. Unrelated directories (such as ``logs/``) are ignored.
    """
    root = Path(output_dir)
    if not root.is_dir():
        return []
    incomplete: list[Path] = []
    for child in sorted(root.iterdir(), key=lambda p: p.name):
        if not child.is_dir() or not _is_bundle_dir(child):
            continue
        if (child / PENDING_MARKER).exists() or not (child / MANIFEST_FILE).exists():
            incomplete.append(child)
    return incomplete
