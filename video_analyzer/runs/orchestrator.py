"""Run orchestrator: lifecycle of the primary analysis run for a subject.

Handles:
- Reuse-vs-rerun decision (staleness window)
- Run creation with a frozen input snapshot
- Remote analyzer invocation (synchronous result or queued job)
- Bounded polling of the run record until it is terminal
- In-memory run history and the "active" run shown in detail

State machine per run: pending → running → {completed | failed}.
There is no cancelled state. Once running, a run completes, fails, or the
poll loop gives up and marks it failed with a timeout message. Retry is
always a fresh start() with a new run id.

The orchestrator is not the only writer of a run record: a remote worker
completes queued jobs, and another session may be watching the same run.
Every tick re-reads the record, and the timeout write only lands if the
record is still pending/running.
"""

import logging
import os
import threading
import time
from datetime import datetime
from typing import Callable, Optional

from video_analyzer.runs.analyzer import HttpRemoteAnalyzer, RemoteAnalyzer
from video_analyzer.runs.schemas import (
    AnalysisRun,
    AnalyzerResponse,
    FailureKind,
    InputSnapshot,
    OrchestratorSnapshot,
    RerunChoice,
    RunStatus,
    StartOutcome,
)
from video_analyzer.runs.store import RunStore
from video_analyzer.subjects import Subject

logger = logging.getLogger(__name__)

# A previous run younger than this triggers the use/rerun/cancel prompt
STALENESS_WINDOW_SECONDS = float(os.environ.get("RUN_STALENESS_WINDOW_SECONDS", "600"))

# Poll loop bounds: 90 x 2s = 3 minutes
POLL_INTERVAL_SECONDS = float(os.environ.get("RUN_POLL_INTERVAL_SECONDS", "2"))
POLL_MAX_ATTEMPTS = int(os.environ.get("RUN_POLL_MAX_ATTEMPTS", "90"))

HISTORY_LIMIT = int(os.environ.get("RUN_HISTORY_LIMIT", "10"))

TIMEOUT_MESSAGE = (
    "Analysis timed out after {seconds:.0f}s without a result. "
    "The job may still be queued remotely. Please retry."
)
REMOTE_FAILURE_MESSAGE = "Analysis failed remotely."

OrchestratorListener = Callable[[OrchestratorSnapshot], None]


def snapshot_subject(subject: Subject) -> InputSnapshot:
    """Freeze the subject's analyzable fields for a run."""
    return InputSnapshot(
        title=subject.title,
        description=subject.description,
        tags=list(subject.tags),
        view_count=subject.view_count,
        like_count=subject.like_count,
        comment_count=subject.comment_count,
        duration=subject.duration,
        duration_seconds=subject.duration_seconds,
        thumbnail_url=subject.thumbnail_url,
    )


class RunOrchestrator:
    """Drives the canonical analysis run for one subject."""

    def __init__(
        self,
        subject: Subject,
        store: Optional[RunStore] = None,
        analyzer: Optional[RemoteAnalyzer] = None,
        *,
        staleness_window_seconds: float = STALENESS_WINDOW_SECONDS,
        poll_interval_seconds: float = POLL_INTERVAL_SECONDS,
        poll_max_attempts: int = POLL_MAX_ATTEMPTS,
        history_limit: int = HISTORY_LIMIT,
        clock: Callable[[], datetime] = datetime.utcnow,
        sleep: Callable[[float], None] = time.sleep,
        background: bool = True,
    ):
        self.subject = subject
        self.store = store or RunStore()
        self.analyzer = analyzer or HttpRemoteAnalyzer()
        self.staleness_window_seconds = staleness_window_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.poll_max_attempts = poll_max_attempts
        self.history_limit = history_limit
        self._clock = clock
        self._sleep = sleep
        self._background = background

        self._lock = threading.RLock()
        self._history: list[AnalysisRun] = []  # most recent first
        self._current_run_id: Optional[str] = None
        self._active_run_id: Optional[str] = None
        # Selected run older than the history window
        self._selected_older: Optional[AnalysisRun] = None
        self._polling: set[str] = set()
        self._poll_threads: list[threading.Thread] = []
        self._listeners: list[OrchestratorListener] = []
        self._closed = False

    # --- Read accessors ---

    @property
    def history(self) -> list[AnalysisRun]:
        with self._lock:
            return list(self._history)

    @property
    def current_run(self) -> Optional[AnalysisRun]:
        """The run most recently started (or resumed) by this orchestrator."""
        with self._lock:
            return self._find(self._current_run_id)

    @property
    def active_run(self) -> Optional[AnalysisRun]:
        """The run whose breakdown is displayed."""
        with self._lock:
            return self._find(self._active_run_id)

    @property
    def status(self) -> Optional[RunStatus]:
        run = self.current_run
        return run.status if run else None

    @property
    def is_polling(self) -> bool:
        with self._lock:
            return bool(self._polling)

    def snapshot(self) -> OrchestratorSnapshot:
        with self._lock:
            return OrchestratorSnapshot(
                subject_id=self.subject.id,
                current_run=self._find(self._current_run_id),
                active_run=self._find(self._active_run_id),
                history=list(self._history),
                polling=bool(self._polling),
            )

    def subscribe(self, listener: OrchestratorListener) -> Callable[[], None]:
        """Register a listener for snapshots. Returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    # --- Operations ---

    def load(self) -> OrchestratorSnapshot:
        """Load run history for the subject and resume an in-flight run.

        The most recent completed run becomes active. If the latest run was
        left pending/running by an earlier session, polling resumes on it.
        """
        runs = self.store.list_runs(self.subject.id, limit=self.history_limit)
        with self._lock:
            self._history = runs
            completed = next((r for r in runs if r.status == RunStatus.COMPLETED), None)
            self._active_run_id = completed.id if completed else None
            latest = runs[0] if runs else None
            self._current_run_id = latest.id if latest else None

        logger.info(f"Loaded {len(runs)} run(s) for subject {self.subject.id}")
        self._notify()

        if latest is not None and not latest.is_terminal:
            logger.info(f"Resuming poll of in-flight run {latest.id} ({latest.status.value})")
            self._start_polling(latest.id)
        return self.snapshot()

    def start(self, choice: Optional[RerunChoice] = None) -> StartOutcome:
        """Start an analysis run, or ask the caller to confirm a rerun.

        Args:
            choice: Answer to a previous "confirm" outcome. None on first call.

        Returns:
            StartOutcome describing what happened.

        Raises:
            ValueError: if USE_EXISTING is chosen but the subject has no run.
        """
        if choice == RerunChoice.CANCEL:
            logger.info(f"Run start cancelled for subject {self.subject.id}")
            return StartOutcome(action="cancelled")

        now = self._clock()
        latest = self.store.latest_run(self.subject.id)

        if choice is None and latest is not None:
            age = latest.age_seconds(now)
            if age < self.staleness_window_seconds:
                logger.info(
                    f"Recent run {latest.id} for subject {self.subject.id} is "
                    f"{age:.0f}s old, asking for confirmation"
                )
                return StartOutcome(
                    action="confirm",
                    existing_run=latest,
                    choices=list(RerunChoice),
                )

        if choice == RerunChoice.USE_EXISTING:
            if latest is None:
                raise ValueError(f"No existing run to reuse for subject {self.subject.id}")
            with self._lock:
                self._remember(latest)
                self._active_run_id = latest.id
            logger.info(f"Reusing run {latest.id} for subject {self.subject.id}")
            self._notify()
            return StartOutcome(action="reused", run=latest, existing_run=latest)

        run = self._launch(now)
        return StartOutcome(action="started", run=run, existing_run=latest)

    def select_run(self, run_id: str) -> AnalysisRun:
        """Make a historical run the active one. No status change.

        Runs older than the in-memory history are read from the store.

        Raises:
            ValueError: if the run does not belong to this subject.
        """
        with self._lock:
            run = self._find(run_id)
        if run is None:
            run = self.store.get_run(run_id)
            if run is None or run.subject_id != self.subject.id:
                raise ValueError(
                    f"Run not found in history of subject {self.subject.id}: {run_id}"
                )
            run = self._with_failure_defaults(run)
        with self._lock:
            if self._find(run_id) is None:
                self._selected_older = run
            self._active_run_id = run_id
        self._notify()
        return run

    def poll(self, run_id: str) -> Optional[AnalysisRun]:
        """Poll a run record until it is terminal or attempts run out.

        Sleeps poll_interval_seconds before every read, for at most
        poll_max_attempts reads. On exhaustion the run is marked failed
        with a timeout message (unless another writer finished it first).

        Returns the final run record, or None if the record disappeared.
        """
        with self._lock:
            self._polling.add(run_id)
        try:
            for attempt in range(1, self.poll_max_attempts + 1):
                self._sleep(self.poll_interval_seconds)
                run = self.store.get_run(run_id)
                if run is None:
                    logger.error(f"Run {run_id} disappeared while polling")
                    return None
                if run.is_terminal:
                    logger.info(
                        f"Run {run_id} reached {run.status.value} after {attempt} poll(s)"
                    )
                    return self._record(self._with_failure_defaults(run))
                logger.debug(f"Run {run_id} still {run.status.value} (poll {attempt})")

            seconds = self.poll_max_attempts * self.poll_interval_seconds
            message = TIMEOUT_MESSAGE.format(seconds=seconds)
            if self.store.mark_failed(
                run_id, message, FailureKind.TIMEOUT, completed_at=self._clock()
            ):
                logger.warning(f"Run {run_id} timed out after {self.poll_max_attempts} polls")
            run = self.store.get_run(run_id)
            if run is None:
                return None
            return self._record(self._with_failure_defaults(run))
        finally:
            with self._lock:
                self._polling.discard(run_id)
            self._notify()

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until background poll threads finish (tests, shutdown)."""
        with self._lock:
            threads = list(self._poll_threads)
        for thread in threads:
            thread.join(timeout)

    def close(self) -> None:
        """Stop applying results to this orchestrator's in-memory state.

        Poll loops keep running to their own end (they persist the timeout),
        but their outcomes are no longer recorded here.
        """
        with self._lock:
            self._closed = True
            self._listeners.clear()

    # --- Internals ---

    def _launch(self, now: datetime) -> AnalysisRun:
        snapshot = snapshot_subject(self.subject)
        run = AnalysisRun(
            subject_id=self.subject.id,
            format_type=self.subject.format_type,
            started_at=now,
            input_snapshot=snapshot,
        )
        self.store.create_run(run)
        with self._lock:
            self._remember(run)
            self._current_run_id = run.id
        self._notify()

        self.store.mark_running(run.id)
        self._refresh(run.id)

        try:
            response = self.analyzer.invoke(snapshot, run.id)
        except Exception as e:
            logger.error(f"Analyzer raised for run {run.id}: {e}")
            response = AnalyzerResponse(success=False, error_message=f"Analyzer call failed: {e}")

        if not response.success:
            message = response.error_message or "Analyzer rejected the request."
            self.store.mark_failed(
                run.id, message, FailureKind.INVOCATION, completed_at=self._clock()
            )
            return self._refresh(run.id) or run

        if response.result is not None:
            self.store.mark_completed(run.id, response.result, completed_at=self._clock())
            return self._refresh(run.id) or run

        if response.job_id:
            self.store.mark_queued(run.id, response.job_id)
        self._refresh(run.id)
        self._start_polling(run.id)
        with self._lock:
            return self._find(run.id) or run

    def _start_polling(self, run_id: str) -> None:
        if not self._background:
            self.poll(run_id)
            return

        thread = threading.Thread(
            target=self._poll_in_background,
            args=(run_id,),
            name=f"run-poll-{run_id}",
            daemon=True,
        )
        with self._lock:
            self._poll_threads = [t for t in self._poll_threads if t.is_alive()]
            self._poll_threads.append(thread)
        thread.start()
        logger.info(f"Started poll thread for run {run_id}")

    def _poll_in_background(self, run_id: str) -> None:
        try:
            self.poll(run_id)
        except Exception as e:
            logger.error(f"Polling of run {run_id} crashed: {e}", exc_info=True)
            self.store.mark_failed(
                run_id,
                f"Polling stopped unexpectedly: {e}. Please retry.",
                FailureKind.TIMEOUT,
            )
            self._refresh(run_id)

    def _refresh(self, run_id: str) -> Optional[AnalysisRun]:
        run = self.store.get_run(run_id)
        if run is None:
            return None
        return self._record(run)

    def _record(self, run: AnalysisRun) -> AnalysisRun:
        """Apply a fresh copy of a run to history."""
        with self._lock:
            if self._closed:
                return run
            self._remember(run)
            if run.status == RunStatus.COMPLETED and run.id == self._current_run_id:
                self._active_run_id = run.id
        self._notify()
        return run

    def _remember(self, run: AnalysisRun) -> None:
        for index, existing in enumerate(self._history):
            if existing.id == run.id:
                self._history[index] = run
                return
        self._history.insert(0, run)
        self._history.sort(key=lambda r: r.started_at, reverse=True)
        del self._history[self.history_limit:]

    def _find(self, run_id: Optional[str]) -> Optional[AnalysisRun]:
        if run_id is None:
            return None
        run = next((r for r in self._history if r.id == run_id), None)
        if run is None and self._selected_older is not None and self._selected_older.id == run_id:
            return self._selected_older
        return run

    @staticmethod
    def _with_failure_defaults(run: AnalysisRun) -> AnalysisRun:
        # Remote workers write only status and message
        if run.status == RunStatus.FAILED:
            return run.model_copy(update={
                "failure_kind": run.failure_kind or FailureKind.REMOTE,
                "error_message": run.error_message or REMOTE_FAILURE_MESSAGE,
            })
        return run

    def _notify(self) -> None:
        with self._lock:
            if self._closed or not self._listeners:
                return
            listeners = list(self._listeners)
        snapshot = self.snapshot()
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Orchestrator listener failed: {e}")
