from __future__ import annotations

from pathlib import Path

import pytest

from better_hrep.run_log import (
    InvalidTransition,
    JobState,
    RunLogger,
    RunRecord,
    latest_by_task,
    load_recent_runs,
)


class TestRunLogger:
    def test_done_run(self, tmp_path: Path) -> None:
        log_path = tmp_path / "runs.jsonl"
        with RunLogger("index_committees_information", log_path=log_path) as run:
            run.transition(JobState.FETCHING, detail="page 0")
            run.transition(JobState.WRITING_BATCH, detail="page 0")
            run.meta["indexed"] = 9
        [record] = load_recent_runs(log_path=log_path)
        assert record.state == "done"
        assert [p["name"] for p in record.phases] == ["fetching", "writing_batch"]
        assert record.meta == {"indexed": 9}

    def test_exception_marks_failed_and_propagates(self, tmp_path: Path) -> None:
        log_path = tmp_path / "runs.jsonl"
        with pytest.raises(RuntimeError):
            with RunLogger("index_people_membership", log_path=log_path) as run:
                run.transition(JobState.FETCHING)
                raise RuntimeError("upstream down")
        [record] = load_recent_runs(log_path=log_path)
        assert record.state == "failed"
        assert record.error == "RuntimeError: upstream down"

    def test_unauthorized_is_terminal(self, tmp_path: Path) -> None:
        log_path = tmp_path / "runs.jsonl"
        run = RunLogger("index_people_membership", log_path=log_path)
        run.unauthorized()
        with pytest.raises(InvalidTransition):
            run.transition(JobState.FETCHING)
        [record] = load_recent_runs(log_path=log_path)
        assert record.state == "unauthorized"
        assert record.phases == []

    def test_illegal_first_state(self, tmp_path: Path) -> None:
        run = RunLogger("x", log_path=tmp_path / "runs.jsonl")
        with pytest.raises(InvalidTransition):
            run.transition(JobState.WRITING_BATCH)


class TestLoadRecentRuns:
    def test_newest_first_with_filter(self, tmp_path: Path) -> None:
        log_path = tmp_path / "runs.jsonl"
        for task in ("a", "b", "a"):
            with RunLogger(task, log_path=log_path) as run:
                run.transition(JobState.FETCHING)
        runs = load_recent_runs(log_path=log_path)
        assert [r.task for r in runs] == ["a", "b", "a"]
        assert len(load_recent_runs(log_path=log_path, task="a")) == 2
        assert len(load_recent_runs(1, log_path=log_path)) == 1

    def test_skips_garbage_lines(self, tmp_path: Path) -> None:
        log_path = tmp_path / "runs.jsonl"
        log_path.write_text("not json\n\n" + RunRecord("r1", "t", "now").to_json_line() + "\n")
        [record] = load_recent_runs(log_path=log_path)
        assert record.run_id == "r1"

    def test_missing_file(self, tmp_path: Path) -> None:
        assert load_recent_runs(log_path=tmp_path / "nope.jsonl") == []

    def test_latest_by_task(self, tmp_path: Path) -> None:
        log_path = tmp_path / "runs.jsonl"
        with RunLogger("a", log_path=log_path) as run:
            run.transition(JobState.FETCHING)
        RunLogger("a", log_path=log_path).unauthorized()
        latest = latest_by_task(log_path=log_path)
        assert latest["a"]["state"] == "unauthorized"
