"""Failure-artifact options and their defaults."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from failcapture.kernel.config import load_config, section
from failcapture.kernel.errors import ConfigError


PersistMode = Literal["on_failure", "always"]
ClipMode = Literal["off", "auto", "on"]
FrameFormat = Literal["jpeg", "png"]

DEFAULT_OUTPUT_DIR = ".failcapture/artifacts"

_PERSIST_MODE_ALIASES = {
    "on_failure": "on_failure",
    "on-failure": "on_failure",
    "onfail": "on_failure",
    "onfailure": "on_failure",
    "always": "always",
}
_CLIP_MODES = ("off", "auto", "on")


def normalize_persist_mode(value: Any) -> str:
    key = str(value or "").strip().lower()
    mode = _PERSIST_MODE_ALIASES.get(key)
    if mode is None:
        raise ConfigError(f"unknown persist_mode: {value!r}")
    return mode


def normalize_frame_format(value: Any) -> str:
    fmt = str(value or "").strip().lower()
    if fmt == "jpg":
        fmt = "jpeg"
    if fmt not in ("jpeg", "png"):
        raise ValueError(f"unsupported frame format: {value!r}")
    return fmt


@dataclass(frozen=True)
class ClipOptions:
    mode: ClipMode = "auto"
    fps: float = 8
    seconds: float | None = None
    ffmpeg_path: str | None = None
    codec: str = "libx264"
    timeout_s: float = 60.0
    probe_timeout_s: float = 5.0

    def __post_init__(self) -> None:
        if self.mode not in _CLIP_MODES:
            raise ConfigError(f"unknown clip mode: {self.mode!r}")
        if self.fps <= 0:
            raise ConfigError("clip fps must be positive")
        if self.seconds is not None and self.seconds <= 0:
            raise ConfigError("clip seconds must be positive when set")
        if self.timeout_s <= 0 or self.probe_timeout_s <= 0:
            raise ConfigError("clip timeouts must be positive")

    @classmethod
    def from_config(cls, clip_cfg: dict[str, Any]) -> "ClipOptions":
        clip_cfg = clip_cfg if isinstance(clip_cfg, dict) else {}
        raw_mode = clip_cfg.get("mode", "auto")
        if isinstance(raw_mode, bool):
            # YAML 1.1 reads bare off/on as booleans.
            raw_mode = "on" if raw_mode else "off"
        mode = str(raw_mode or "auto").strip().lower()
        if mode not in _CLIP_MODES:
            mode = "auto"
        fps = _positive_float(clip_cfg.get("fps"), 8)
        seconds_raw = clip_cfg.get("seconds")
        seconds = _positive_float(seconds_raw, 0.0) if seconds_raw is not None else 0.0
        ffmpeg_path = str(clip_cfg.get("ffmpeg_path", "") or "").strip() or None
        codec = str(clip_cfg.get("codec", "") or "").strip() or "libx264"
        return cls(
            mode=mode,  # type: ignore[arg-type]
            fps=fps,
            seconds=seconds or None,
            ffmpeg_path=ffmpeg_path,
            codec=codec,
            timeout_s=_positive_float(clip_cfg.get("timeout_s"), 60.0),
            probe_timeout_s=_positive_float(clip_cfg.get("probe_timeout_s"), 5.0),
        )


@dataclass(frozen=True)
class FailureArtifactsOptions:
    """Options for one :class:`FailureArtifactBuffer`.

    ``capture_on_action``, ``fps`` and ``persist_mode`` are advisory: the host
    runtime reads them to decide when to capture frames and whether to call
    ``persist`` on success. The buffer itself enforces ``buffer_seconds``,
    ``output_dir``, the redaction settings and ``clip``.

    ``on_before_persist`` is the redaction hook: an object with an
    ``evaluate(context)`` method or a plain callable taking a
    :class:`RedactionContext`.
    """

    buffer_seconds: float = 15
    capture_on_action: bool = True
    fps: float = 0.0
    frame_format: FrameFormat = "jpeg"
    persist_mode: PersistMode = "on_failure"
    output_dir: str = DEFAULT_OUTPUT_DIR
    redact_snapshot_values: bool = True
    on_before_persist: Any = None
    clip: ClipOptions = field(default_factory=ClipOptions)

    def __post_init__(self) -> None:
        if self.buffer_seconds < 0:
            raise ConfigError("buffer_seconds must not be negative")
        if self.fps < 0:
            raise ConfigError("fps must not be negative")
        object.__setattr__(self, "persist_mode", normalize_persist_mode(self.persist_mode))
        try:
            object.__setattr__(self, "frame_format", normalize_frame_format(self.frame_format))
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc
        if self.on_before_persist is not None and not (
            callable(self.on_before_persist) or callable(getattr(self.on_before_persist, "evaluate", None))
        ):
            raise ConfigError("on_before_persist must be callable or expose evaluate(context)")

    @property
    def buffer_ms(self) -> int:
        return int(round(float(self.buffer_seconds) * 1000))

    @classmethod
    def from_config(cls, config: dict[str, Any], *, on_before_persist: Any = None) -> "FailureArtifactsOptions":
        cfg = section(config, "failure_artifacts")
        persist_mode = cfg.get("persist_mode", "on_failure")
        try:
            persist_mode = normalize_persist_mode(persist_mode)
        except ConfigError:
            persist_mode = "on_failure"
        try:
            frame_format = normalize_frame_format(cfg.get("frame_format", "jpeg"))
        except ValueError:
            frame_format = "jpeg"
        buffer_seconds = _float(cfg.get("buffer_seconds"), 15.0)
        if buffer_seconds < 0:
            buffer_seconds = 15.0
        output_dir = str(cfg.get("output_dir", "") or "").strip() or DEFAULT_OUTPUT_DIR
        return cls(
            buffer_seconds=buffer_seconds,
            capture_on_action=bool(cfg.get("capture_on_action", True)),
            fps=max(0.0, _float(cfg.get("fps"), 0.0)),
            frame_format=frame_format,  # type: ignore[arg-type]
            persist_mode=persist_mode,  # type: ignore[arg-type]
            output_dir=str(Path(output_dir).expanduser()),
            redact_snapshot_values=bool(cfg.get("redact_snapshot_values", True)),
            on_before_persist=on_before_persist,
            clip=ClipOptions.from_config(cfg.get("clip", {})),
        )


def load_options(path: str | Path | None = None, *, on_before_persist: Any = None) -> FailureArtifactsOptions:
    return FailureArtifactsOptions.from_config(load_config(path), on_before_persist=on_before_persist)


def _float(value: Any, default: float) -> float:
    try:
        if value is None or isinstance(value, bool):
            return float(default)
        return float(value)
    except (TypeError, ValueError):
        return float(default)


def _positive_float(value: Any, default: float) -> float:
    number = _float(value, default)
    return number if number > 0 else float(default)
