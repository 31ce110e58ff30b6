"""Engine board schemas: per-engine results and the composite read model.

Nothing here is persisted. Board state lives only as long as the view of
one subject; it is a cache for the current session, never a source of truth.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, computed_field


class Grade(str, Enum):
    """Letter grade of a composite score."""
    S = "S"
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    F = "F"


class EngineResult(BaseModel):
    """Latest successful output of one engine for the current subject."""

    engine_key: str
    score: int = Field(..., ge=0, le=100)
    status_label: Optional[str] = Field(
        default=None,
        description="Coarse categorical tag some engines attach (e.g. HOT, STALLED)",
    )
    payload: dict[str, Any] = Field(default_factory=dict)
    completed_at: datetime = Field(default_factory=datetime.utcnow)


class EngineSlot(BaseModel):
    """What the board shows for one applicable engine."""

    engine_key: str
    engine_name: str
    short_label: str
    loading: bool = False
    result: Optional[EngineResult] = None
    last_error: Optional[str] = None

    @computed_field
    @property
    def state(self) -> str:
        if self.loading:
            return "loading"
        return "complete" if self.result is not None else "idle"


class CompositeScore(BaseModel):
    """Composite ("Quantum") score over all completed applicable engines."""

    score: Optional[int] = Field(
        default=None,
        description="Rounded mean of completed engine scores; None if none completed",
    )
    grade: Optional[Grade] = None
    completed: list[str] = Field(default_factory=list)
    applicable: list[str] = Field(default_factory=list)
    weak_engines: list[str] = Field(
        default_factory=list,
        description="Engines below the weak threshold, only once all have completed",
    )
    any_loading: bool = False
    verdict: Optional[str] = None

    @computed_field
    @property
    def completion_ratio(self) -> float:
        if not self.applicable:
            return 0.0
        return len(self.completed) / len(self.applicable)

    @computed_field
    @property
    def all_complete(self) -> bool:
        return bool(self.applicable) and len(self.completed) == len(self.applicable)

    @computed_field
    @property
    def completion_label(self) -> str:
        return f"{len(self.completed)}/{len(self.applicable)} engines"


class BoardSnapshot(BaseModel):
    """Read-only view of the whole board for one subject."""

    subject_id: str
    format_type: str
    engines: list[EngineSlot] = Field(default_factory=list)
    composite: CompositeScore
