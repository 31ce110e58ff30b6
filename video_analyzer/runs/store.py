"""Run store: persisted history of analysis runs.

Handles:
- Run creation (append-only; a retry is a new row)
- Field updates while a run is pending/running
- Lookups by id and by subject, most recent first

Terminal runs are frozen: every update is guarded in SQL on the current
status, so a completed or failed record is never rewritten. Other writers
(a remote worker finishing the job) may update the same row; writes are
last-write-wins on the fields they touch.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from video_analyzer.runs import db
from video_analyzer.runs.schemas import (
    AnalysisResult,
    AnalysisRun,
    FailureKind,
    RunStatus,
)

logger = logging.getLogger(__name__)

# Fields a caller may write after creation
UPDATABLE_FIELDS = (
    "status",
    "completed_at",
    "overall_score",
    "confidence_score",
    "breakdowns",
    "details",
    "error_message",
    "failure_kind",
    "remote_job_id",
)
_JSON_FIELDS = ("input_snapshot", "breakdowns", "details")


def _recency_order() -> str:
    # SQLite rowid breaks ties between runs started in the same instant
    return "started_at DESC" if db._is_postgres() else "started_at DESC, rowid DESC"


def _to_db_value(field: str, value: Any) -> Any:
    if value is None:
        return None
    if field in _JSON_FIELDS:
        if hasattr(value, "model_dump"):
            value = value.model_dump(mode="json")
        elif isinstance(value, dict):
            value = {
                k: v.model_dump(mode="json") if hasattr(v, "model_dump") else v
                for k, v in value.items()
            }
        return db.json_dumps(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return value


def _row_to_run(row: dict) -> AnalysisRun:
    for key in _JSON_FIELDS:
        row[key] = db.json_loads(row.get(key))
    for key in ("started_at", "completed_at"):
        val = row.get(key)
        if isinstance(val, str):
            row[key] = datetime.fromisoformat(val)
    return AnalysisRun.model_validate(row)


class RunStore:
    """Durable AnalysisRun records backed by the runs database."""

    def create_run(self, run: AnalysisRun) -> str:
        """Insert a new run record. Returns its id."""
        execute_params = (
            run.id,
            run.subject_id,
            run.status.value,
            run.format_type.value,
            run.started_at.isoformat(),
            _to_db_value("completed_at", run.completed_at),
            _to_db_value("input_snapshot", run.input_snapshot),
            run.overall_score,
            run.confidence_score,
            _to_db_value("breakdowns", run.breakdowns),
            _to_db_value("details", run.details),
            run.error_message,
            _to_db_value("failure_kind", run.failure_kind),
            run.remote_job_id,
        )
        db.execute(
            """INSERT INTO analysis_runs
               (id, subject_id, status, format_type, started_at, completed_at,
                input_snapshot, overall_score, confidence_score, breakdowns,
                details, error_message, failure_kind, remote_job_id)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)""",
            execute_params,
        )
        logger.info(f"Created run {run.id} for subject {run.subject_id} ({run.status.value})")
        return run.id

    def update_run(self, run_id: str, fields: dict[str, Any]) -> bool:
        """Update fields of a pending/running run.

        Returns False if the run is missing or already terminal.

        Raises:
            ValueError: if a field is not updatable.
        """
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update run fields: {sorted(unknown)}")
        if not fields:
            return True

        names = list(fields)
        assignments = ", ".join(f"{name} = %s" for name in names)
        params = tuple(_to_db_value(name, fields[name]) for name in names) + (run_id,)
        updated = db.execute(
            f"""UPDATE analysis_runs SET {assignments}
                WHERE id = %s AND status IN ('pending', 'running')""",
            params,
            fetch="rowcount",
        )
        if not updated:
            logger.warning(f"Run {run_id} not updated (missing or already terminal)")
            return False

        if "status" in fields:
            status = fields["status"]
            status = status.value if hasattr(status, "value") else status
            logger.info(f"Run {run_id} status → {status}")
        return True

    def mark_running(self, run_id: str) -> bool:
        return self.update_run(run_id, {"status": RunStatus.RUNNING})

    def mark_queued(self, run_id: str, remote_job_id: Optional[str]) -> bool:
        return self.update_run(run_id, {"remote_job_id": remote_job_id})

    def mark_completed(
        self,
        run_id: str,
        result: AnalysisResult,
        completed_at: Optional[datetime] = None,
    ) -> bool:
        return self.update_run(run_id, {
            "status": RunStatus.COMPLETED,
            "completed_at": completed_at or datetime.utcnow(),
            "overall_score": result.overall_score,
            "confidence_score": result.confidence_score,
            "breakdowns": result.breakdowns,
            "details": result.details,
        })

    def mark_failed(
        self,
        run_id: str,
        error_message: str,
        failure_kind: FailureKind,
        completed_at: Optional[datetime] = None,
    ) -> bool:
        return self.update_run(run_id, {
            "status": RunStatus.FAILED,
            "completed_at": completed_at or datetime.utcnow(),
            "error_message": error_message,
            "failure_kind": failure_kind,
        })

    def get_run(self, run_id: str) -> Optional[AnalysisRun]:
        """Get a run record by id."""
        row = db.execute(
            "SELECT * FROM analysis_runs WHERE id = %s",
            (run_id,),
            fetch="one",
        )
        if row is None:
            return None
        return _row_to_run(row)

    def list_runs(self, subject_id: str, limit: int = 10) -> list[AnalysisRun]:
        """Runs of a subject, most recent first."""
        rows = db.execute(
            f"""SELECT * FROM analysis_runs WHERE subject_id = %s
                ORDER BY {_recency_order()} LIMIT %s""",
            (subject_id, limit),
            fetch="all",
        )
        return [_row_to_run(row) for row in rows]

    def latest_run(self, subject_id: str) -> Optional[AnalysisRun]:
        runs = self.list_runs(subject_id, limit=1)
        return runs[0] if runs else None
