"""Analysis run schemas: records, remote analyzer replies, start outcomes.

A run is one attempt at the expensive analysis of a subject. Its record
is written once per transition and frozen when it reaches a terminal
status; a retry is always a new run.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from video_analyzer.subjects import FormatType


class RunStatus(str, Enum):
    """Run lifecycle states."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)


class FailureKind(str, Enum):
    """Why a run failed. Timeouts are retryable; remote failures have detail."""
    INVOCATION = "invocation"
    REMOTE = "remote"
    TIMEOUT = "timeout"


class RerunChoice(str, Enum):
    """Caller's answer when a recent run already exists."""
    USE_EXISTING = "use_existing"
    FORCE_RERUN = "force_rerun"
    CANCEL = "cancel"


class CriterionScore(BaseModel):
    criterion: str
    score: float
    max_score: float = Field(default=0, alias="maxScore")
    evidence: str = ""

    model_config = {"populate_by_name": True}


class CategoryBreakdown(BaseModel):
    """Score of one analysis category (title, description, tags, ...)."""

    total: float
    breakdown: list[CriterionScore] = Field(default_factory=list)
    issues: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)


class InputSnapshot(BaseModel):
    """Frozen copy of the subject's analyzable fields at run start."""

    title: str
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    view_count: Optional[int] = None
    like_count: Optional[int] = None
    comment_count: Optional[int] = None
    duration: Optional[str] = None
    duration_seconds: Optional[int] = None
    thumbnail_url: Optional[str] = None

    model_config = {"frozen": True}

    def to_request(self) -> dict[str, Any]:
        """Body sent to the remote analyzer."""
        return {
            "title": self.title,
            "description": self.description,
            "tags": list(self.tags),
            "thumbnailUrl": self.thumbnail_url,
            "videoLength": self.duration,
            "durationSeconds": self.duration_seconds,
            "viewCount": self.view_count,
            "likeCount": self.like_count,
            "commentCount": self.comment_count,
        }


class AnalysisResult(BaseModel):
    """Result payload of a completed analysis."""

    overall_score: int = Field(..., ge=0, le=100)
    confidence_score: int = Field(default=0, ge=0, le=100)
    breakdowns: dict[str, CategoryBreakdown] = Field(default_factory=dict)
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Everything else the analyzer returned (audits, rewrites, actions)",
    )


class AnalysisRun(BaseModel):
    """Persisted record of one analysis run."""

    id: str = Field(default_factory=lambda: f"run-{uuid.uuid4().hex[:12]}")
    subject_id: str
    status: RunStatus = RunStatus.PENDING
    format_type: FormatType
    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    input_snapshot: InputSnapshot
    overall_score: Optional[int] = None
    confidence_score: Optional[int] = None
    breakdowns: dict[str, CategoryBreakdown] = Field(default_factory=dict)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    remote_job_id: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def age_seconds(self, now: datetime) -> float:
        return (now - self.started_at).total_seconds()


class AnalyzerResponse(BaseModel):
    """Reply of the remote analyzer to an invocation.

    Exactly one of: success with a result (synchronous completion),
    success with a job id (queued, poll the run record), or failure
    with an error message.
    """

    success: bool
    result: Optional[AnalysisResult] = None
    job_id: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def queued(self) -> bool:
        return self.success and self.result is None


class StartOutcome(BaseModel):
    """What start() did.

    action is one of:
    - "started": a new run was created (see run)
    - "confirm": a recent run exists; caller must choose (see existing_run)
    - "reused": the existing run was re-activated
    - "cancelled": caller declined; nothing changed
    """

    action: str
    run: Optional[AnalysisRun] = None
    existing_run: Optional[AnalysisRun] = None
    choices: list[RerunChoice] = Field(default_factory=list)

    @property
    def needs_confirmation(self) -> bool:
        return self.action == "confirm"


class OrchestratorSnapshot(BaseModel):
    """Read-only view of the orchestrator for one subject."""

    subject_id: str
    current_run: Optional[AnalysisRun] = None
    active_run: Optional[AnalysisRun] = None
    history: list[AnalysisRun] = Field(default_factory=list)
    polling: bool = False
