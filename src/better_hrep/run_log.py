"""Append-only run log for indexing jobs.

Each indexing invocation is one JSON line recording its task name, the state
transitions it went through (as timed phases), its final state and counts.
``GET /health`` reads the newest record per task.

A job moves through::

    unauthorized                                    (terminal, nothing ran)
    fetching → writing_batch → ... → done
    fetching | writing_batch → failed               (unhandled error)

Usage::

    with RunLogger("index_membership") as run:
        run.transition(JobState.FETCHING)
        rows = await upstream.fetch_member_directory()
        run.transition(JobState.WRITING_BATCH, detail="batch 1")
        ...
    # On clean exit the run ends in ``done``; on an exception, ``failed``.
"""

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

LOGGER = logging.getLogger(__name__)

DEFAULT_LOG_PATH = Path(".run_log.jsonl")


class JobState(str, Enum):
    UNAUTHORIZED = "unauthorized"
    FETCHING = "fetching"
    WRITING_BATCH = "writing_batch"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STATES = frozenset({JobState.UNAUTHORIZED, JobState.DONE, JobState.FAILED})

# Legal moves; terminal states have none.
_TRANSITIONS: dict[JobState | None, frozenset[JobState]] = {
    None: frozenset({JobState.UNAUTHORIZED, JobState.FETCHING}),
    JobState.FETCHING: frozenset(
        {JobState.FETCHING, JobState.WRITING_BATCH, JobState.DONE, JobState.FAILED}
    ),
    JobState.WRITING_BATCH: frozenset(
        {JobState.FETCHING, JobState.WRITING_BATCH, JobState.DONE, JobState.FAILED}
    ),
}


class InvalidTransition(RuntimeError):
    pass


@dataclass
class RunRecord:
    """One line in the run log."""

    run_id: str
    task: str
    started_at: str  # ISO
    ended_at: str | None = None
    duration_s: float | None = None
    state: str = JobState.FETCHING.value
    phases: list[dict] = field(default_factory=list)  # [{name, duration_s, detail}]
    error: str | None = None
    meta: dict = field(default_factory=dict)

    def to_json_line(self) -> str:
        return json.dumps(
            {
                "run_id": self.run_id,
                "task": self.task,
                "started_at": self.started_at,
                "ended_at": self.ended_at,
                "duration_s": self.duration_s,
                "state": self.state,
                "phases": self.phases,
                "error": self.error,
                "meta": self.meta,
            }
        )

    @classmethod
    def from_json_line(cls, line: str) -> RunRecord | None:
        line = line.strip()
        if not line:
            return None
        try:
            d = json.loads(line)
            return cls(
                run_id=d.get("run_id", ""),
                task=d.get("task", ""),
                started_at=d.get("started_at", ""),
                ended_at=d.get("ended_at"),
                duration_s=d.get("duration_s"),
                state=d.get("state", JobState.DONE.value),
                phases=d.get("phases", []),
                error=d.get("error"),
                meta=d.get("meta", {}),
            )
        except (json.JSONDecodeError, TypeError, AttributeError):
            return None

    def summary(self) -> dict:
        return {
            "runId": self.run_id,
            "state": self.state,
            "startedAt": self.started_at,
            "endedAt": self.ended_at,
            "durationS": self.duration_s,
            "error": self.error,
            "meta": self.meta,
        }


class RunLogger:
    """Context manager recording one job's state machine to the run log."""

    def __init__(
        self,
        task: str,
        *,
        log_path: Path | None = None,
        meta: dict | None = None,
    ):
        self.task = task
        self.log_path = log_path if log_path is not None else get_log_path()
        self.meta = dict(meta or {})
        self.run_id = str(uuid.uuid4())[:8]
        self.state: JobState | None = None
        self._started_at: str | None = None
        self._start_time: float | None = None
        self._phase_name: str | None = None
        self._phase_detail: str | None = None
        self._phase_start: float | None = None
        self._phases: list[dict] = []
        self._error: str | None = None
        self._written = False

    def start(self) -> None:
        self._started_at = datetime.now(timezone.utc).isoformat()
        self._start_time = time.perf_counter()

    def transition(self, state: JobState, *, detail: str | None = None) -> None:
        """Move to *state*, closing the timed phase of the previous state."""
        if state not in _TRANSITIONS.get(self.state, frozenset()):
            raise InvalidTransition(f"{self.task}: {self.state} -> {state.value}")
        self._close_phase()
        self.state = state
        if state in TERMINAL_STATES:
            return
        self._phase_name = state.value
        self._phase_detail = detail
        self._phase_start = time.perf_counter()

    def _close_phase(self) -> None:
        if self._phase_name is None or self._phase_start is None:
            return
        self._phases.append(
            {
                "name": self._phase_name,
                "duration_s": round(time.perf_counter() - self._phase_start, 3),
                "detail": self._phase_detail,
            }
        )
        self._phase_name = None
        self._phase_start = None

    def unauthorized(self) -> None:
        """Record a rejected invocation; nothing else happens for this run."""
        if self._start_time is None:
            self.start()
        self.transition(JobState.UNAUTHORIZED)
        self._write()

    def end(self, state: JobState = JobState.DONE, error: str | None = None) -> None:
        if self.state not in TERMINAL_STATES:
            if self.state is None:
                # Failed before any work began.
                self.state = JobState.FETCHING
            self.transition(state)
        self._error = error
        self._write()

    def _write(self) -> None:
        if self._start_time is None or self._written:
            return
        self._written = True
        ended_at = datetime.now(timezone.utc).isoformat()
        record = RunRecord(
            run_id=self.run_id,
            task=self.task,
            started_at=self._started_at or ended_at,
            ended_at=ended_at,
            duration_s=round(time.perf_counter() - self._start_time, 2),
            state=self.state.value if self.state else JobState.FAILED.value,
            phases=self._phases,
            error=self._error,
            meta=self.meta,
        )
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(record.to_json_line() + "\n")
        except OSError as e:
            LOGGER.warning("Run log append failed: %s", e)

    def __enter__(self) -> RunLogger:
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is not None:
            error = f"{exc_type.__name__}: {exc_val}" if exc_val else exc_type.__name__
            self.end(JobState.FAILED, error)
        else:
            self.end(JobState.DONE)
        return None  # do not suppress


def load_recent_runs(
    n: int = 100,
    *,
    task: str | None = None,
    log_path: Path | None = None,
) -> list[RunRecord]:
    """Load the last n runs (newest first). Optionally filter by task."""
    path = log_path or get_log_path()
    if not path.exists():
        return []
    records: list[RunRecord] = []
    with open(path, encoding="utf-8") as f:
        for line in f:
            rec = RunRecord.from_json_line(line)
            if rec is None:
                continue
            if task is None or rec.task == task:
                records.append(rec)
    return records[-n:][::-1] if n > 0 else []


def latest_by_task(*, log_path: Path | None = None, n: int = 500) -> dict[str, dict]:
    """Newest run summary for every task seen in the last *n* runs."""
    latest: dict[str, dict] = {}
    for rec in load_recent_runs(n, log_path=log_path):
        latest.setdefault(rec.task, rec.summary())
    return latest


def get_log_path() -> Path:
    return Path(os.environ.get("HREP_RUN_LOG", str(DEFAULT_LOG_PATH)))
