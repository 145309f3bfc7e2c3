"""Time-windowed frame buffer backed by a scratch directory.

Frames are written to scratch as they arrive and evicted once they fall out of
the retention window. Eviction is driven by the injected clock at insert time,
so a deterministic clock gives deterministic pruning.
"""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
from pathlib import Path

from failcapture.capture.options import normalize_frame_format
from failcapture.kernel.atomic_write import atomic_write_bytes
from failcapture.kernel.errors import ScratchWriteError
from failcapture.kernel.timebase import Clock


@dataclass(frozen=True)
class FrameRecord:
    ts: int
    file_name: str
    file_path: Path
    width: int | None = None
    height: int | None = None


def frame_file_name(ts: int, seq: int, fmt: str) -> str:
    # Zero padding keeps lexical order equal to capture order.
    return f"frame_{int(ts):013d}_{int(seq):05d}.{fmt}"


def probe_image_size(image: bytes) -> tuple[int, int] | None:
    """Return (width, height) from the image header, or None if undecodable."""
    if not image:
        return None
    try:
        from PIL import Image

        with Image.open(BytesIO(image)) as img:
            width, height = img.size
    except Exception:
        return None
    if int(width) <= 0 or int(height) <= 0:
        return None
    return int(width), int(height)


class RetentionBuffer:
    def __init__(self, scratch_dir: Path, *, window_ms: int, clock: Clock) -> None:
        self._dir = Path(scratch_dir)
        self._window_ms = max(0, int(window_ms))
        self._clock = clock
        self._frames: list[FrameRecord] = []
        self._seq = 0

    @property
    def window_ms(self) -> int:
        return self._window_ms

    def add(self, image: bytes, fmt: str = "jpeg") -> FrameRecord:
        fmt = normalize_frame_format(fmt)
        ts = int(self._clock())
        if self._frames and ts < self._frames[-1].ts:
            # Wall clocks can step back; keep the buffer ordered.
            ts = self._frames[-1].ts
        name = frame_file_name(ts, self._seq, fmt)
        path = self._dir / name
        try:
            atomic_write_bytes(path, image, fsync=False)
        except OSError as exc:
            raise ScratchWriteError(exc.errno, f"failed to write frame to scratch: {exc.strerror or exc}", str(path)) from exc
        self._seq += 1
        size = probe_image_size(image)
        record = FrameRecord(
            ts=ts,
            file_name=name,
            file_path=path,
            width=size[0] if size else None,
            height=size[1] if size else None,
        )
        self._frames.append(record)
        self.prune(ts)
        return record

    def prune(self, now: int | None = None) -> list[FrameRecord]:
        """Drop frames older than the window and return the evicted records."""
        current = int(self._clock()) if now is None else int(now)
        cutoff = current - self._window_ms
        keep: list[FrameRecord] = []
        evicted: list[FrameRecord] = []
        for frame in self._frames:
            if frame.ts >= cutoff:
                keep.append(frame)
            else:
                evicted.append(frame)
        for frame in evicted:
            # A leftover scratch file only costs disk until cleanup().
            try:
                frame.file_path.unlink()
            except OSError:
                pass
        self._frames = keep
        return evicted

    def count(self) -> int:
        return len(self._frames)

    def frames(self) -> list[FrameRecord]:
        return list(self._frames)

    def clear(self) -> None:
        self._frames = []
