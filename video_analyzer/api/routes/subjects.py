"""Subject API routes: analysis runs and the engine board.

Endpoints:
    PUT    /v1/subjects/{subject_id}                         Open (or refresh) a subject view
    DELETE /v1/subjects/{subject_id}                         Close the view
    GET    /v1/subjects/{subject_id}/runs                    Run status + history (poll this)
    POST   /v1/subjects/{subject_id}/runs                    Start a run (may ask to confirm)
    POST   /v1/subjects/{subject_id}/runs/{run_id}/select    Show a historical run
    GET    /v1/subjects/{subject_id}/board                   Engine states + composite
    GET    /v1/subjects/{subject_id}/board/composite         Composite score only
    POST   /v1/subjects/{subject_id}/board/engines/{key}     Run one engine
    POST   /v1/subjects/{subject_id}/board/run-remaining     Run all engines without a result
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from video_analyzer.api.sessions import SubjectSession, get_session_manager
from video_analyzer.board.schemas import BoardSnapshot, CompositeScore
from video_analyzer.runs.schemas import (
    AnalysisRun,
    OrchestratorSnapshot,
    RerunChoice,
    StartOutcome,
)
from video_analyzer.subjects import Subject

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subjects", tags=["subjects"])


class OpenSubjectResponse(BaseModel):
    runs: OrchestratorSnapshot
    board: BoardSnapshot


class StartRunRequest(BaseModel):
    choice: Optional[RerunChoice] = None


class EngineRunResponse(BaseModel):
    engine_key: str
    started: bool
    message: str


class RunRemainingResponse(BaseModel):
    launched: list[str]


def _session(subject_id: str) -> SubjectSession:
    try:
        return get_session_manager().get(subject_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))


# --- Subject view ---


@router.put("/{subject_id}", response_model=OpenSubjectResponse)
def open_subject(subject_id: str, subject: Subject) -> OpenSubjectResponse:
    """Open a subject view: loads run history and resumes an in-flight run."""
    if subject.id != subject_id:
        raise HTTPException(
            status_code=400,
            detail=f"Subject id mismatch: path {subject_id}, body {subject.id}",
        )
    session = get_session_manager().open(subject)
    return OpenSubjectResponse(
        runs=session.orchestrator.snapshot(),
        board=session.board.snapshot(),
    )


@router.delete("/{subject_id}")
def close_subject(subject_id: str):
    """Close a subject view. Engine results for it are discarded."""
    if not get_session_manager().close(subject_id):
        raise HTTPException(status_code=404, detail=f"Subject not open: {subject_id}")
    return {"subject_id": subject_id, "closed": True}


# --- Analysis runs ---


@router.get("/{subject_id}/runs", response_model=OrchestratorSnapshot)
def get_runs(subject_id: str) -> OrchestratorSnapshot:
    """Current run, active run and history. The frontend polls this."""
    return _session(subject_id).orchestrator.snapshot()


@router.post("/{subject_id}/runs", response_model=StartOutcome)
def start_run(subject_id: str, request: Optional[StartRunRequest] = None) -> StartOutcome:
    """Start an analysis run.

    Without a choice, a run younger than the staleness window yields a
    "confirm" outcome; call again with use_existing, force_rerun or cancel.
    """
    orchestrator = _session(subject_id).orchestrator
    choice = request.choice if request else None
    try:
        outcome = orchestrator.start(choice)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    logger.info(f"Start run for subject {subject_id}: {outcome.action}")
    return outcome


@router.post("/{subject_id}/runs/{run_id}/select", response_model=AnalysisRun)
def select_run(subject_id: str, run_id: str) -> AnalysisRun:
    """Make a historical run the active one."""
    try:
        return _session(subject_id).orchestrator.select_run(run_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))


# --- Engine board ---


@router.get("/{subject_id}/board", response_model=BoardSnapshot)
def get_board(subject_id: str) -> BoardSnapshot:
    return _session(subject_id).board.snapshot()


@router.get("/{subject_id}/board/composite", response_model=CompositeScore)
def get_composite(subject_id: str) -> CompositeScore:
    return _session(subject_id).board.composite()


@router.post("/{subject_id}/board/engines/{engine_key}", response_model=EngineRunResponse, status_code=202)
def run_engine(subject_id: str, engine_key: str) -> EngineRunResponse:
    """Run one engine. Ignored if it is already running."""
    session = _session(subject_id)
    if get_session_manager().registry.get(engine_key) is None:
        raise HTTPException(status_code=404, detail=f"Engine not found: {engine_key}")
    try:
        future = session.board.run(engine_key)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if future is None:
        return EngineRunResponse(
            engine_key=engine_key,
            started=False,
            message="Engine already running.",
        )
    return EngineRunResponse(
        engine_key=engine_key,
        started=True,
        message=f"Engine started. Poll GET /v1/subjects/{subject_id}/board for the result.",
    )


@router.post("/{subject_id}/board/run-remaining", response_model=RunRemainingResponse, status_code=202)
def run_remaining(subject_id: str) -> RunRemainingResponse:
    """Run every applicable engine that has no result and is not running."""
    launched = _session(subject_id).board.run_all_remaining()
    return RunRemainingResponse(launched=launched)
