"""Best-effort clip synthesis from persisted frames via ffmpeg.

The encoder is optional. In ``auto`` mode a missing ffmpeg is the expected
case and is skipped quietly; in ``on`` mode it is reported as a warning. A
failing or hanging encoder never fails the persist: the clip is simply absent
from the manifest.
"""

from __future__ import annotations

import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Sequence

from failcapture.capture.options import ClipOptions
from failcapture.capture.redaction import RedactedFrame
from failcapture.kernel.logging import JsonlLogger


CLIP_FILE_NAME = "failure.mp4"
_STDERR_TAIL_BYTES = 2000


@dataclass(frozen=True)
class ProcessResult:
    returncode: int | None
    stderr_tail: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


class ProcessRunner(Protocol):
    def run(self, args: Sequence[str], *, timeout_s: float) -> ProcessResult: ...


class SubprocessRunner:
    """Blocking runner: spawn, wait with timeout, keep the stderr tail."""

    def run(self, args: Sequence[str], *, timeout_s: float) -> ProcessResult:
        env = os.environ.copy()
        # Keep the encoder from fanning out threads on shared CI hosts.
        env.setdefault("OMP_NUM_THREADS", "1")
        try:
            proc = subprocess.run(
                list(args),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                env=env,
                timeout=float(timeout_s),
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            return ProcessResult(returncode=None, stderr_tail=_tail(exc.stderr), timed_out=True)
        except OSError as exc:
            return ProcessResult(returncode=None, stderr_tail=str(exc))
        return ProcessResult(returncode=proc.returncode, stderr_tail=_tail(proc.stderr))


def _tail(stderr: bytes | str | None) -> str:
    if not stderr:
        return ""
    if isinstance(stderr, bytes):
        stderr = stderr[-_STDERR_TAIL_BYTES:].decode("utf-8", errors="replace")
    return stderr[-_STDERR_TAIL_BYTES:].strip()


def resolve_ffmpeg(configured: str | None = None) -> str | None:
    candidates = [
        str(configured or "").strip(),
        str(os.getenv("FFMPEG_PATH", "") or "").strip(),
    ]
    for raw in candidates:
        if not raw:
            continue
        if Path(raw).exists():
            return raw
        found = shutil.which(raw)
        if found:
            return found
    return shutil.which("ffmpeg") or shutil.which("ffmpeg.exe")


def _quote_concat_path(path: Path) -> str:
    return "'" + str(path).replace("'", "'\\''") + "'"


def build_concat_script(frame_paths: Sequence[Path], fps: float) -> str:
    """ffconcat script holding each frame for 1/fps seconds.

    The last frame is listed twice: the concat demuxer ignores the duration of
    the final entry, so without the repeat the last frame would be dropped.
    """
    if not frame_paths:
        raise ValueError("at least one frame is required")
    duration = 1.0 / float(fps)
    lines = ["ffconcat version 1.0"]
    for path in frame_paths:
        lines.append(f"file {_quote_concat_path(Path(path).resolve())}")
        lines.append(f"duration {duration:.6f}")
    lines.append(f"file {_quote_concat_path(Path(frame_paths[-1]).resolve())}")
    return "\n".join(lines) + "\n"


def select_clip_frames(frames: Sequence[RedactedFrame], seconds: float | None) -> list[RedactedFrame]:
    ordered = sorted(frames, key=lambda f: f.file_name)
    if seconds is None:
        return ordered
    stamps = [f.ts for f in ordered if f.ts is not None]
    if not stamps:
        return ordered
    cutoff = max(stamps) - int(round(float(seconds) * 1000))
    return [f for f in ordered if f.ts is None or f.ts >= cutoff]


def _even(value: int) -> int:
    return max(2, int(value) - (int(value) % 2))


class ClipSynthesizer:
    def __init__(
        self,
        options: ClipOptions,
        *,
        runner: ProcessRunner | None = None,
        logger: JsonlLogger | None = None,
        scratch_dir: Path | None = None,
    ) -> None:
        self._opts = options
        self._runner: ProcessRunner = runner or SubprocessRunner()
        self._logger = logger
        self._scratch_dir = scratch_dir
        self._probed: tuple[bool, str | None] | None = None
        self._probe_error: str | None = None

    @property
    def options(self) -> ClipOptions:
        return self._opts

    def encoder(self) -> str | None:
        """Resolve and probe ffmpeg once; None when it is not usable."""
        if self._probed is None:
            path = resolve_ffmpeg(self._opts.ffmpeg_path)
            ok = False
            if path:
                try:
                    ok = self._runner.run([path, "-hide_banner", "-version"], timeout_s=self._opts.probe_timeout_s).ok
                except Exception as exc:
                    self._probe_error = f"{type(exc).__name__}: {exc}"[:200]
            self._probed = (ok, path if ok else None)
        return self._probed[1]

    def render(
        self,
        *,
        run_id: str,
        frames: Sequence[tuple[RedactedFrame, Path]],
        out_dir: Path,
        frames_dropped: bool,
    ) -> str | None:
        """Render ``frames`` (record, persisted path) into a clip under ``out_dir``.

        Returns the clip file name, or None when no clip was produced. Never
        raises: a clip is optional and must not cost the bundle its manifest.
        """
        if self._opts.mode == "off" or frames_dropped or not frames:
            return None
        ffmpeg = self.encoder()
        if ffmpeg is None:
            if self._opts.mode == "on" and self._logger is not None:
                self._logger.warning("artifacts.clip.encoder_unavailable", run_id=run_id, error=self._probe_error)
            return None

        persisted = {record.file_name: path for record, path in frames}
        selected = select_clip_frames([record for record, _ in frames], self._opts.seconds)
        try:
            result, written = self._encode(ffmpeg, [persisted[r.file_name] for r in selected], selected, Path(out_dir))
        except Exception as exc:
            if self._logger is not None:
                self._logger.warning(
                    "artifacts.clip.failed",
                    run_id=run_id,
                    error_type=type(exc).__name__,
                    error=str(exc)[:200],
                )
            return None
        if not written:
            if self._logger is not None:
                self._logger.warning(
                    "artifacts.clip.failed",
                    run_id=run_id,
                    returncode=result.returncode,
                    timed_out=result.timed_out,
                    stderr_tail=result.stderr_tail[-500:],
                )
            return None
        if self._logger is not None:
            self._logger.event(
                event="artifacts.clip.written",
                run_id=run_id,
                clip=CLIP_FILE_NAME,
                frames=len(selected),
                fps=self._opts.fps,
            )
        return CLIP_FILE_NAME

    def _encode(
        self, ffmpeg: str, paths: list[Path], selected: Sequence[RedactedFrame], out_dir: Path
    ) -> tuple[ProcessResult, bool]:
        out_path = out_dir / CLIP_FILE_NAME
        tmp_out = out_path.with_name(f".{out_path.name}.tmp")
        script_path: Path | None = None
        try:
            script_fd, script_name = tempfile.mkstemp(
                prefix="failcapture-clip-",
                suffix=".ffconcat",
                dir=str(self._scratch_dir) if self._scratch_dir and Path(self._scratch_dir).is_dir() else None,
            )
            script_path = Path(script_name)
            with os.fdopen(script_fd, "w", encoding="utf-8") as handle:
                handle.write(build_concat_script(paths, self._opts.fps))
            result = self._runner.run(
                self._command(ffmpeg, script_path, tmp_out, selected),
                timeout_s=self._opts.timeout_s,
            )
            if not result.ok or not tmp_out.exists():
                return result, False
            os.replace(str(tmp_out), str(out_path))
            return result, True
        finally:
            if script_path is not None:
                try:
                    script_path.unlink()
                except OSError:
                    pass
            try:
                if tmp_out.exists():
                    tmp_out.unlink()
            except OSError:
                pass

    def _command(self, ffmpeg: str, script: Path, out: Path, frames: Sequence[RedactedFrame]) -> list[str]:
        sized = next((f for f in reversed(frames) if f.width and f.height), None)
        if sized is not None:
            # A fixed output size keeps the encoder happy when frame sizes vary.
            scale = f"scale={_even(sized.width or 2)}:{_even(sized.height or 2)}"
        else:
            scale = "scale=trunc(iw/2)*2:trunc(ih/2)*2"
        return [
            ffmpeg,
            "-hide_banner",
            "-loglevel",
            "error",
            "-y",
            "-f",
            "concat",
            "-safe",
            "0",
            "-i",
            str(script),
            "-vf",
            scale,
            "-r",
            f"{float(self._opts.fps):g}",
            "-an",
            "-c:v",
            self._opts.codec,
            "-pix_fmt",
            "yuv420p",
            "-f",
            "mp4",
            str(out),
        ]
