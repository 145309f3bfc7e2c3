from __future__ import annotations

import unittest
from pathlib import Path

import pytest

from failcapture.capture.options import ClipOptions, FailureArtifactsOptions, load_options
from failcapture.kernel.config import load_config
from failcapture.kernel.errors import ConfigError


class OptionsDefaultsTests(unittest.TestCase):
    def test_defaults(self) -> None:
        opts = FailureArtifactsOptions()
        self.assertEqual(opts.buffer_seconds, 15)
        self.assertEqual(opts.buffer_ms, 15000)
        self.assertTrue(opts.capture_on_action)
        self.assertEqual(opts.fps, 0.0)
        self.assertEqual(opts.frame_format, "jpeg")
        self.assertEqual(opts.persist_mode, "on_failure")
        self.assertEqual(opts.output_dir, ".failcapture/artifacts")
        self.assertTrue(opts.redact_snapshot_values)
        self.assertIsNone(opts.on_before_persist)
        self.assertEqual(opts.clip, ClipOptions(mode="auto", fps=8, seconds=None))

    def test_persist_mode_aliases(self) -> None:
        self.assertEqual(FailureArtifactsOptions(persist_mode="onFail").persist_mode, "on_failure")  # type: ignore[arg-type]
        self.assertEqual(FailureArtifactsOptions(persist_mode="on-failure").persist_mode, "on_failure")  # type: ignore[arg-type]
        with self.assertRaises(ConfigError):
            FailureArtifactsOptions(persist_mode="sometimes")  # type: ignore[arg-type]

    def test_invalid_values_are_rejected(self) -> None:
        with self.assertRaises(ConfigError):
            FailureArtifactsOptions(buffer_seconds=-1)
        with self.assertRaises(ConfigError):
            FailureArtifactsOptions(frame_format="bmp")  # type: ignore[arg-type]
        with self.assertRaises(ConfigError):
            FailureArtifactsOptions(on_before_persist="not callable")
        with self.assertRaises(ConfigError):
            ClipOptions(mode="sometimes")  # type: ignore[arg-type]
        with self.assertRaises(ConfigError):
            ClipOptions(fps=0)
        with self.assertRaises(ConfigError):
            ClipOptions(seconds=-5)


def test_from_config_reads_section_and_falls_back() -> None:
    cfg = {
        "failure_artifacts": {
            "buffer_seconds": "5",
            "persist_mode": "always",
            "frame_format": "png",
            "fps": -3,
            "output_dir": "out/artifacts",
            "redact_snapshot_values": False,
            "clip": {"mode": "ON", "fps": "12", "seconds": 4, "codec": "mpeg4", "timeout_s": "bad"},
        }
    }
    opts = FailureArtifactsOptions.from_config(cfg)
    assert opts.buffer_seconds == 5.0
    assert opts.persist_mode == "always"
    assert opts.frame_format == "png"
    assert opts.fps == 0.0
    assert opts.output_dir == str(Path("out/artifacts"))
    assert opts.redact_snapshot_values is False
    assert opts.clip.mode == "on"
    assert opts.clip.fps == 12.0
    assert opts.clip.seconds == 4.0
    assert opts.clip.codec == "mpeg4"
    assert opts.clip.timeout_s == 60.0


def test_from_config_ignores_garbage() -> None:
    opts = FailureArtifactsOptions.from_config(
        {"failure_artifacts": {"persist_mode": "???", "frame_format": "tiff", "clip": {"mode": "loud", "fps": 0}}}
    )
    assert opts.persist_mode == "on_failure"
    assert opts.frame_format == "jpeg"
    assert opts.clip.mode == "auto"
    assert opts.clip.fps == 8
    assert FailureArtifactsOptions.from_config({}) == FailureArtifactsOptions()


def test_load_options_from_yaml(tmp_path: Path) -> None:
    path = tmp_path / "failure_artifacts.yaml"
    path.write_text(
        "failure_artifacts:\n  buffer_seconds: 3\n  clip:\n    mode: off\n",
        encoding="utf-8",
    )
    def hook(ctx):
        return None

    opts = load_options(path, on_before_persist=hook)
    assert opts.buffer_seconds == 3.0
    assert opts.clip.mode == "off"
    assert opts.on_before_persist is hook


def test_load_options_missing_file_gives_defaults(tmp_path: Path) -> None:
    assert load_options(tmp_path / "absent.yaml") == FailureArtifactsOptions()


def test_invalid_yaml_raises_config_error(tmp_path: Path) -> None:
    path = tmp_path / "broken.yaml"
    path.write_text("failure_artifacts: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(path)
    list_path = tmp_path / "list.yaml"
    list_path.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(list_path)


def test_shipped_config_matches_defaults() -> None:
    shipped = Path(__file__).resolve().parents[1] / "config" / "failure_artifacts.yaml"
    assert load_options(shipped) == FailureArtifactsOptions()
