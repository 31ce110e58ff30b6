"""Tests for the run orchestrator against a virtual clock."""

import logging

import pytest
from pydantic import ValidationError

from video_analyzer.runs.orchestrator import REMOTE_FAILURE_MESSAGE, RunOrchestrator
from video_analyzer.runs.schemas import (
    AnalysisRun,
    AnalyzerResponse,
    FailureKind,
    RerunChoice,
    RunStatus,
)

from conftest import make_result


@pytest.fixture
def make_orchestrator(store, analyzer, clock, long_subject):
    def factory(subject=None, **kwargs):
        kwargs.setdefault("background", False)
        return RunOrchestrator(
            subject or long_subject,
            store=store,
            analyzer=analyzer,
            clock=clock,
            sleep=clock.sleep,
            **kwargs,
        )
    return factory


def _queue(analyzer, job_id="job-1"):
    analyzer.response = AnalyzerResponse(success=True, job_id=job_id)


def test_synchronous_completion(make_orchestrator, analyzer, clock, store):
    orchestrator = make_orchestrator()

    outcome = orchestrator.start()

    assert outcome.action == "started"
    run = outcome.run
    assert run.status == RunStatus.COMPLETED
    assert run.overall_score == 78
    assert orchestrator.active_run.id == run.id
    assert orchestrator.current_run.id == run.id
    assert clock.sleeps == []
    assert store.get_run(run.id).status == RunStatus.COMPLETED
    assert analyzer.calls[0][1] == run.id


def test_recent_run_asks_for_confirmation(make_orchestrator, clock):
    orchestrator = make_orchestrator()
    first = orchestrator.start().run

    clock.advance(4 * 60)
    outcome = orchestrator.start()

    assert outcome.needs_confirmation
    assert outcome.existing_run.id == first.id
    assert outcome.choices == [
        RerunChoice.USE_EXISTING,
        RerunChoice.FORCE_RERUN,
        RerunChoice.CANCEL,
    ]


def test_force_rerun_creates_new_run(make_orchestrator, clock, long_subject):
    orchestrator = make_orchestrator()
    first = orchestrator.start().run

    clock.advance(4 * 60)
    orchestrator.subject = long_subject.model_copy(update={"title": "Espresso, explained"})
    outcome = orchestrator.start(RerunChoice.FORCE_RERUN)

    second = outcome.run
    assert outcome.action == "started"
    assert second.id != first.id
    assert second.input_snapshot.title == "Espresso, explained"
    assert first.input_snapshot.title == long_subject.title
    assert [r.id for r in orchestrator.history] == [second.id, first.id]


def test_staleness_window_boundary(make_orchestrator, clock, analyzer):
    orchestrator = make_orchestrator()
    orchestrator.start()

    clock.advance(599)
    assert orchestrator.start().action == "confirm"

    clock.advance(1)
    outcome = orchestrator.start()
    assert outcome.action == "started"
    assert len(analyzer.calls) == 2


def test_cancel_changes_nothing(make_orchestrator, clock, store, long_subject):
    orchestrator = make_orchestrator()
    orchestrator.start()
    clock.advance(60)

    outcome = orchestrator.start(RerunChoice.CANCEL)

    assert outcome.action == "cancelled"
    assert len(store.list_runs(long_subject.id)) == 1


def test_use_existing_reactivates_latest_run(make_orchestrator, clock, analyzer):
    orchestrator = make_orchestrator()
    older = orchestrator.start().run
    clock.advance(700)
    latest = orchestrator.start().run
    orchestrator.select_run(older.id)

    clock.advance(60)
    outcome = orchestrator.start(RerunChoice.USE_EXISTING)

    assert outcome.action == "reused"
    assert outcome.run.id == latest.id
    assert orchestrator.active_run.id == latest.id
    assert len(analyzer.calls) == 2


def test_use_existing_without_runs(make_orchestrator):
    orchestrator = make_orchestrator()

    with pytest.raises(ValueError, match="No existing run"):
        orchestrator.start(RerunChoice.USE_EXISTING)


def test_invocation_failure(make_orchestrator, analyzer, clock):
    analyzer.response = AnalyzerResponse(
        success=False,
        error_message="AI credits exhausted. Please add credits to continue.",
    )
    orchestrator = make_orchestrator()

    run = orchestrator.start().run

    assert run.status == RunStatus.FAILED
    assert run.failure_kind == FailureKind.INVOCATION
    assert run.error_message.startswith("AI credits exhausted")
    assert clock.sleeps == []
    assert orchestrator.active_run is None


def test_analyzer_exception_fails_run(make_orchestrator, analyzer):
    analyzer.raises = RuntimeError("socket closed")
    orchestrator = make_orchestrator()

    run = orchestrator.start().run

    assert run.status == RunStatus.FAILED
    assert run.failure_kind == FailureKind.INVOCATION
    assert "socket closed" in run.error_message


def test_failed_rerun_keeps_previous_active(make_orchestrator, analyzer, clock):
    orchestrator = make_orchestrator()
    good = orchestrator.start().run
    analyzer.response = AnalyzerResponse(success=False, error_message="Rate limit exceeded.")

    clock.advance(30)
    failed = orchestrator.start(RerunChoice.FORCE_RERUN).run

    assert failed.status == RunStatus.FAILED
    assert orchestrator.current_run.id == failed.id
    assert orchestrator.active_run.id == good.id


def test_queued_run_completed_remotely(make_orchestrator, analyzer, clock, store):
    _queue(analyzer)

    def remote_worker(attempt):
        if attempt == 5:
            run_id = analyzer.calls[-1][1]
            store.mark_completed(run_id, make_result(88))

    clock.on_sleep = remote_worker
    orchestrator = make_orchestrator()

    run = orchestrator.start().run

    assert run.status == RunStatus.COMPLETED
    assert run.overall_score == 88
    assert run.remote_job_id == "job-1"
    assert clock.sleeps == [2.0] * 5
    assert orchestrator.active_run.id == run.id
    assert orchestrator.is_polling is False


def test_remote_failure_without_detail(make_orchestrator, analyzer, clock, store):
    _queue(analyzer)

    def remote_worker(attempt):
        if attempt == 3:
            store.update_run(analyzer.calls[-1][1], {"status": RunStatus.FAILED})

    clock.on_sleep = remote_worker
    orchestrator = make_orchestrator()

    run = orchestrator.start().run

    assert run.status == RunStatus.FAILED
    assert run.failure_kind == FailureKind.REMOTE
    assert run.error_message == REMOTE_FAILURE_MESSAGE


def test_poll_timeout(make_orchestrator, analyzer, clock, store):
    _queue(analyzer)
    orchestrator = make_orchestrator()
    started_at = clock.now

    run = orchestrator.start().run

    assert run.status == RunStatus.FAILED
    assert run.failure_kind == FailureKind.TIMEOUT
    assert len(clock.sleeps) == 90
    assert (clock.now - started_at).total_seconds() == 180
    assert "timed out after 180s" in run.error_message
    assert run.error_message != REMOTE_FAILURE_MESSAGE
    assert store.get_run(run.id).failure_kind == FailureKind.TIMEOUT


def test_poll_bounds_are_configurable(make_orchestrator, analyzer, clock):
    _queue(analyzer)
    orchestrator = make_orchestrator(poll_interval_seconds=0.5, poll_max_attempts=4)

    run = orchestrator.start().run

    assert clock.sleeps == [0.5] * 4
    assert run.failure_kind == FailureKind.TIMEOUT
    assert "timed out after 2s" in run.error_message


def test_timeout_does_not_overwrite_late_completion(make_orchestrator, analyzer, clock, store):
    _queue(analyzer)

    def remote_worker(attempt):
        if attempt == 3:
            store.mark_completed(analyzer.calls[-1][1], make_result(64))

    orchestrator = make_orchestrator(poll_max_attempts=3)
    clock.on_sleep = remote_worker
    original_get = store.get_run
    reads = []

    def counting_get(run_id):
        reads.append(run_id)
        run = original_get(run_id)
        if len(reads) == 5 and run is not None:
            # Third poll read still sees the job running
            return run.model_copy(update={"status": RunStatus.RUNNING})
        return run

    store.get_run = counting_get
    run = orchestrator.start().run

    assert run.status == RunStatus.COMPLETED
    assert run.overall_score == 64


def test_select_run(make_orchestrator, clock):
    orchestrator = make_orchestrator()
    first = orchestrator.start().run
    clock.advance(700)
    second = orchestrator.start().run

    selected = orchestrator.select_run(first.id)

    assert selected.id == first.id
    assert orchestrator.active_run.id == first.id
    assert orchestrator.current_run.id == second.id
    assert orchestrator.active_run.status == RunStatus.COMPLETED

    with pytest.raises(ValueError, match="Run not found"):
        orchestrator.select_run("run-unknown")


def test_history_is_bounded(make_orchestrator, clock):
    orchestrator = make_orchestrator(history_limit=3)
    ids = []
    for _ in range(5):
        ids.append(orchestrator.start(RerunChoice.FORCE_RERUN).run.id)
        clock.advance(1)

    assert [r.id for r in orchestrator.history] == list(reversed(ids))[:3]


def test_input_snapshot_is_frozen(make_orchestrator, analyzer, long_subject):
    orchestrator = make_orchestrator()
    run = orchestrator.start().run

    orchestrator.subject = long_subject.model_copy(update={"tags": ["changed"]})

    assert run.input_snapshot.tags == ["espresso", "coffee"]
    assert analyzer.calls[0][0].tags == ["espresso", "coffee"]
    with pytest.raises(ValidationError):
        run.input_snapshot.title = "edited"


def test_load_resumes_in_flight_run(make_orchestrator, store, clock, long_subject):
    completed = AnalysisRun(
        subject_id=long_subject.id,
        format_type=long_subject.format_type,
        started_at=clock.now,
        input_snapshot={"title": long_subject.title},
    )
    store.create_run(completed)
    store.mark_completed(completed.id, make_result(72))
    clock.advance(60)
    in_flight = AnalysisRun(
        subject_id=long_subject.id,
        format_type=long_subject.format_type,
        started_at=clock.now,
        input_snapshot={"title": long_subject.title},
    )
    store.create_run(in_flight)
    store.mark_running(in_flight.id)

    def remote_worker(attempt):
        if attempt == 2:
            store.mark_completed(in_flight.id, make_result(91))

    clock.on_sleep = remote_worker
    orchestrator = make_orchestrator()

    snapshot = orchestrator.load()

    assert [r.id for r in snapshot.history] == [in_flight.id, completed.id]
    assert snapshot.current_run.status == RunStatus.COMPLETED
    assert snapshot.active_run.id == in_flight.id
    assert snapshot.polling is False


def test_load_activates_latest_completed(make_orchestrator, store, clock, long_subject):
    done = AnalysisRun(
        subject_id=long_subject.id,
        format_type=long_subject.format_type,
        started_at=clock.now,
        input_snapshot={"title": long_subject.title},
    )
    store.create_run(done)
    store.mark_completed(done.id, make_result(72))
    clock.advance(60)
    failed = AnalysisRun(
        subject_id=long_subject.id,
        format_type=long_subject.format_type,
        started_at=clock.now,
        input_snapshot={"title": long_subject.title},
    )
    store.create_run(failed)
    store.mark_failed(failed.id, "Rate limit exceeded.", FailureKind.INVOCATION)

    orchestrator = make_orchestrator()
    snapshot = orchestrator.load()

    assert snapshot.current_run.id == failed.id
    assert snapshot.active_run.id == done.id
    assert clock.sleeps == []


def test_listeners_see_transitions(make_orchestrator):
    orchestrator = make_orchestrator()
    statuses = []
    orchestrator.subscribe(
        lambda snap: statuses.append(snap.current_run.status if snap.current_run else None)
    )

    orchestrator.start()

    assert statuses[0] == RunStatus.PENDING
    assert RunStatus.RUNNING in statuses
    assert statuses[-1] == RunStatus.COMPLETED


def test_background_polling(make_orchestrator, analyzer, clock, store):
    _queue(analyzer)

    def remote_worker(attempt):
        if attempt == 1:
            store.mark_completed(analyzer.calls[-1][1], make_result(83))

    clock.on_sleep = remote_worker
    orchestrator = make_orchestrator(background=True)

    outcome = orchestrator.start()
    orchestrator.wait(timeout=5)

    assert outcome.action == "started"
    assert orchestrator.current_run.status == RunStatus.COMPLETED
    assert orchestrator.current_run.overall_score == 83
    assert orchestrator.active_run.id == outcome.run.id


def test_select_run_older_than_history(make_orchestrator, clock, store, short_subject):
    orchestrator = make_orchestrator(history_limit=2)
    ids = []
    for _ in range(3):
        ids.append(orchestrator.start(RerunChoice.FORCE_RERUN).run.id)
        clock.advance(1)
    other = make_orchestrator(subject=short_subject).start().run

    assert ids[0] not in [r.id for r in orchestrator.history]
    selected = orchestrator.select_run(ids[0])

    assert selected.id == ids[0]
    assert orchestrator.active_run.id == ids[0]
    assert orchestrator.snapshot().active_run.id == ids[0]
    with pytest.raises(ValueError, match="Run not found"):
        orchestrator.select_run(other.id)


def test_poll_crash_is_logged_and_fails_run(make_orchestrator, analyzer, clock, caplog):
    _queue(analyzer)

    def broken_sleep(attempt):
        raise RuntimeError("clock went away")

    clock.on_sleep = broken_sleep
    orchestrator = make_orchestrator(background=True)

    with caplog.at_level(logging.ERROR, logger="video_analyzer.runs.orchestrator"):
        orchestrator.start()
        orchestrator.wait(timeout=5)

    run = orchestrator.current_run
    assert run.status == RunStatus.FAILED
    assert run.failure_kind == FailureKind.TIMEOUT
    assert "clock went away" in run.error_message
    crashes = [r for r in caplog.records if "crashed" in r.getMessage()]
    assert crashes and crashes[0].exc_info is not None
