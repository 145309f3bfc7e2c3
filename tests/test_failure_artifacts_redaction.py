from __future__ import annotations

from pathlib import Path

from failcapture.capture.redaction import RedactionPipeline, RedactionResult, redact_snapshot_values
from failcapture.capture.retention import FrameRecord


def _frames(tmp_path: Path) -> list[FrameRecord]:
    out = []
    for i, ts in enumerate((10, 20)):
        path = tmp_path / f"frame_{ts:013d}_{i:05d}.png"
        path.write_bytes(b"x")
        out.append(FrameRecord(ts=ts, file_name=path.name, file_path=path))
    return out


def test_heuristic_nulls_sensitive_inputs_only() -> None:
    snapshot = {
        "url": "https://example.com/login",
        "elements": [
            {"id": 1, "input_type": "password", "value": "hunter2", "role": "textbox"},
            {"id": 2, "input_type": "EMAIL", "value": "a@b.c"},
            {"id": 3, "input_type": "tel", "value": "555-0100"},
            {"id": 4, "input_type": "search", "value": "shoes"},
            {"id": 5, "input_type": "password", "value": None},
            {"id": 6, "role": "button", "text": "Sign in"},
            "not-an-element",
        ],
    }
    out = redact_snapshot_values(snapshot)
    assert out is not None
    els = out["elements"]
    assert els[0] == {"id": 1, "input_type": "password", "value": None, "value_redacted": True, "role": "textbox"}
    assert els[1]["value"] is None and els[1]["value_redacted"] is True
    assert els[2]["value"] is None and els[2]["value_redacted"] is True
    assert els[3] == {"id": 4, "input_type": "search", "value": "shoes"}
    assert "value_redacted" not in els[4]
    assert els[5] == {"id": 6, "role": "button", "text": "Sign in"}
    assert els[6] == "not-an-element"
    assert out["url"] == snapshot["url"]
    assert snapshot["elements"][0]["value"] == "hunter2"


def test_heuristic_tolerates_missing_elements() -> None:
    assert redact_snapshot_values(None) is None
    assert redact_snapshot_values({"url": "u"}) == {"url": "u"}
    assert redact_snapshot_values({"elements": "oops"}) == {"elements": "oops"}


def test_pipeline_without_hook_keeps_frames(tmp_path: Path) -> None:
    frames = _frames(tmp_path)
    outcome = RedactionPipeline().apply(
        run_id="r",
        reason="x",
        status="failure",
        snapshot=None,
        diagnostics=None,
        frames=frames,
        metadata={},
    )
    assert [f.ts for f in outcome.frames] == [10, 20]
    assert not outcome.frames_dropped
    assert not outcome.frames_redacted


def test_hook_replacement_frames_keep_known_timestamps(tmp_path: Path) -> None:
    frames = _frames(tmp_path)
    extra = tmp_path / "overlay.png"
    extra.write_bytes(b"y")

    def hook(ctx):
        return RedactionResult(frame_paths=[ctx.frame_paths[1], str(extra)])

    outcome = RedactionPipeline(hook=hook).apply(
        run_id="r",
        reason=None,
        status="success",
        snapshot=None,
        diagnostics=None,
        frames=frames,
        metadata={},
    )
    assert outcome.frames_redacted
    assert [(f.file_name, f.ts) for f in outcome.frames] == [(frames[1].file_name, 20), ("overlay.png", None)]


def test_hook_result_with_unknown_keys_drops_frames(tmp_path: Path) -> None:
    outcome = RedactionPipeline(hook=lambda ctx: {"drop": True}).apply(
        run_id="r",
        reason=None,
        status="failure",
        snapshot={"elements": []},
        diagnostics=None,
        frames=_frames(tmp_path),
        metadata={},
    )
    assert outcome.frames_dropped
    assert outcome.frames == []
    assert outcome.snapshot == {"elements": []}


def test_duplicate_replacement_names_stay_unique_and_ordered(tmp_path: Path) -> None:
    frames = _frames(tmp_path)
    first = tmp_path / "a" / "frame_1.png"
    second = tmp_path / "b" / "frame_1.png"
    third = tmp_path / "c" / "frame_1_1.png"
    for path in (first, second, third):
        path.parent.mkdir()
        path.write_bytes(b"z")

    def hook(ctx):
        return {"frame_paths": [str(first), str(second), str(third)]}

    outcome = RedactionPipeline(hook=hook).apply(
        run_id="r",
        reason=None,
        status="failure",
        snapshot=None,
        diagnostics=None,
        frames=frames,
        metadata={},
    )
    names = [f.file_name for f in outcome.frames]
    assert names == ["frame_1.png", "frame_1_1.png", "frame_1_1_1.png"]
    assert len(set(names)) == 3
    assert sorted(names) == names
