from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from failcapture.kernel.logging import JsonlLogger, JsonlLoggerConfig


def test_jsonl_logger_redacts_common_secret_patterns(tmp_path) -> None:
    logger = JsonlLogger.for_output_dir(tmp_path, name="test")
    logger.event(
        event="artifacts.persist.failed",
        run_id="run",
        error="navigation failed: https://app.example/cb?state=ok&access_token=tok-123456",
        metadata={"auth": "Bearer abc.def.ghi", "password": "hunter2", "token_count": 12},
    )
    path = Path(logger.path)
    assert path == tmp_path / "logs" / "test.jsonl"
    text = path.read_text(encoding="utf-8")
    assert "tok-123456" not in text
    assert "state=ok" in text
    assert "abc.def.ghi" not in text
    assert "hunter2" not in text
    assert "[REDACTED]" in text
    assert json.loads(text.splitlines()[-1])["metadata"]["token_count"] == 12


def test_min_level_filters_events(tmp_path) -> None:
    path = tmp_path / "events.jsonl"
    logger = JsonlLogger(JsonlLoggerConfig(path=path, min_level="warning"))
    logger.event(event="artifacts.persist.completed", run_id="r")
    assert not path.exists()
    logger.warning("artifacts.clip.failed", run_id="r", returncode=1)
    payload = json.loads(path.read_text(encoding="utf-8").splitlines()[-1])
    assert payload["level"] == "warning"
    assert payload["event"] == "artifacts.clip.failed"


def test_full_log_is_archived_not_deleted(tmp_path) -> None:
    path = tmp_path / "logs" / "events.jsonl"
    logger = JsonlLogger(JsonlLoggerConfig(path=path, rotate_max_bytes=10))
    logger.event(event="first", run_id="r")
    logger.event(event="second", run_id="r")
    archived = list((path.parent / "archive").glob("events.*.jsonl"))
    assert len(archived) == 1
    assert "first" in archived[0].read_text(encoding="utf-8")
    assert json.loads(path.read_text(encoding="utf-8"))["event"] == "second"


class LogCorrelationTests(unittest.TestCase):
    def test_jsonl_logs_include_run_id_and_fields(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            logger = JsonlLogger.for_output_dir(Path(tmp))
            logger.event(event="artifacts.persist.completed", run_id="run_test", frame_count=3, clip=None)
            lines = Path(logger.path).read_text(encoding="utf-8").splitlines()
            self.assertTrue(lines)
            payload = json.loads(lines[-1])
            self.assertEqual(payload["run_id"], "run_test")
            self.assertEqual(payload["frame_count"], 3)
            self.assertIsNone(payload["clip"])
            self.assertIn("ts_utc", payload)

    def test_unwritable_log_never_raises(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            blocker = Path(tmp) / "logs"
            blocker.write_text("not a directory", encoding="utf-8")
            logger = JsonlLogger.for_output_dir(Path(tmp))
            logger.event(event="artifacts.persist.completed", run_id="r")
            self.assertTrue(blocker.is_file())


if __name__ == "__main__":
    unittest.main()
