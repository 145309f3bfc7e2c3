"""Failure artifact buffer for one automation run.

The host runtime feeds ``record_step`` and ``add_frame`` while the run is
going, then calls ``persist`` on a terminal outcome and ``cleanup`` when done.
One instance serves exactly one run and is not thread-safe: runs executing
concurrently each get their own buffer.
"""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path
from typing import Any

from failcapture.capture.clip import ClipSynthesizer, ProcessRunner
from failcapture.capture.options import FailureArtifactsOptions
from failcapture.capture.persist import PersistenceWriter, build_request, validate_status
from failcapture.capture.redaction import RedactionPipeline
from failcapture.capture.retention import RetentionBuffer
from failcapture.capture.steps import StepLog
from failcapture.kernel.errors import BufferClosedError
from failcapture.kernel.logging import JsonlLogger
from failcapture.kernel.timebase import Clock, wall_clock_ms


class FailureArtifactBuffer:
    def __init__(
        self,
        run_id: str,
        options: FailureArtifactsOptions | None = None,
        time_now: Clock | None = None,
        *,
        logger: JsonlLogger | None = None,
        process_runner: ProcessRunner | None = None,
    ) -> None:
        self.run_id = str(run_id)
        self._opts = options or FailureArtifactsOptions()
        self._clock: Clock = time_now or wall_clock_ms
        self._logger = logger or JsonlLogger.for_output_dir(self._opts.output_dir)
        self._temp_dir = Path(tempfile.mkdtemp(prefix="failcapture-"))
        frames_dir = self._temp_dir / "frames"
        frames_dir.mkdir(parents=True, exist_ok=True)
        self._closed = False

        self._frames = RetentionBuffer(frames_dir, window_ms=self._opts.buffer_ms, clock=self._clock)
        self._steps = StepLog(self._clock)
        self._writer = PersistenceWriter(
            self._opts.output_dir,
            redaction=RedactionPipeline(
                redact_values=self._opts.redact_snapshot_values,
                hook=self._opts.on_before_persist,
                logger=self._logger,
            ),
            clip=ClipSynthesizer(
                self._opts.clip,
                runner=process_runner,
                logger=self._logger,
                scratch_dir=self._temp_dir,
            ),
            clock=self._clock,
            logger=self._logger,
        )

    def __enter__(self) -> "FailureArtifactBuffer":
        return self

    def __exit__(self, *_exc: Any) -> None:
        self.cleanup()

    @property
    def options(self) -> FailureArtifactsOptions:
        return self._opts

    def get_options(self) -> FailureArtifactsOptions:
        return self._opts

    @property
    def scratch_dir(self) -> Path:
        return self._temp_dir

    @property
    def persisted(self) -> bool:
        return self._writer.persisted

    def record_step(self, action: str, step_id: str | None, step_index: int, url: str | None = None) -> None:
        self._steps.record(action, step_id, step_index, url)

    def add_frame(self, image: bytes, fmt: str = "jpeg") -> None:
        """Store a frame in scratch space and prune frames outside the window.

        Raises ScratchWriteError when the frame cannot be written; a frame the
        caller explicitly submitted is never dropped silently.
        """
        if self._closed:
            raise BufferClosedError(f"artifact buffer for run {self.run_id} was cleaned up")
        self._frames.add(image, fmt)

    def frame_count(self) -> int:
        return self._frames.count()

    def should_persist(self, status: str) -> bool:
        """Whether the configured persist mode wants a bundle for ``status``."""
        if validate_status(status) == "failure":
            return True
        return self._opts.persist_mode == "always"

    def persist(
        self,
        reason: str | None,
        status: str,
        snapshot: Any = None,
        diagnostics: Any = None,
        metadata: Any = None,
    ) -> str | None:
        """Write the run bundle and return its directory, or None if already persisted."""
        if self._writer.persisted:
            return None
        request = build_request(
            run_id=self.run_id,
            reason=reason,
            status=status,
            buffer_seconds=self._opts.buffer_seconds,
            snapshot=snapshot,
            diagnostics=diagnostics,
            metadata=metadata,
        )
        return self._writer.persist(request, steps=self._steps.to_list(), frames=self._frames.frames())

    def cleanup(self) -> None:
        """Release the scratch directory. Safe to call more than once."""
        self._closed = True
        self._frames.clear()
        shutil.rmtree(self._temp_dir, ignore_errors=True)
