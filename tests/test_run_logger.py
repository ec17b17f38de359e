from __future__ import annotations

import json

from orchestrator.run_logger import RunLogger


def test_run_logger_writes_log_and_manifest(tmp_path):
    logger = RunLogger.for_group("g-1", data_root=str(tmp_path))
    logger.log("run_start group:g-1")
    logger.save_step("segment_001", {"status": "completed"})
    logger.save_step("segment_001", {"anchor_point": False})

    assert logger.run_dir == str(tmp_path / "runs" / "g-1")
    assert logger.tail(1)[0].endswith("run_start group:g-1")
    manifest = json.loads((tmp_path / "runs" / "g-1" / "run_manifest.json").read_text(encoding="utf-8"))
    assert manifest["run_id"] == "g-1"
    assert manifest["steps"]["segment_001"] == {"status": "completed", "anchor_point": False}


def test_run_logger_resumes_existing_manifest(tmp_path):
    first = RunLogger(str(tmp_path / "run"))
    first.save_step("run", {"status": "started"})
    second = RunLogger(str(tmp_path / "run"))
    assert second.manifest["steps"]["run"]["status"] == "started"
    assert second.tail() == []
