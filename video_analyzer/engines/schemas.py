"""Scoring engine definition schemas.

These schemas define what an engine IS (identity, applicability, where
its score lives in the payload), not how it computes anything. The
scoring itself happens in a remote service.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field

from video_analyzer.subjects import FormatType


class EngineDefinition(BaseModel):
    """Static description of one scoring engine."""

    engine_key: str = Field(
        ...,
        description="Unique identifier for this engine",
        examples=["avoe", "yaree", "sde"],
    )
    engine_name: str = Field(
        ...,
        description="Human-readable label",
        examples=["Packaging & Metadata", "Algorithm Signals"],
    )
    short_label: str = Field(
        ...,
        description="Compact label shown next to the score",
        examples=["AVOE", "Viral SEO"],
    )
    description: str = ""
    function_name: str = Field(
        ...,
        description="Remote function the engine client posts the subject to",
        examples=["avoe-analyze", "yaree-analyze"],
    )
    score_path: str = Field(
        ...,
        description="Dotted path of the 0-100 score inside the engine payload",
        examples=["overallScore", "gravity_score.total"],
    )
    status_path: Optional[str] = Field(
        default=None,
        description="Dotted path of an optional categorical label",
        examples=["video_status"],
    )
    format_restriction: Optional[FormatType] = Field(
        default=None,
        description="If set, the engine only applies to subjects of this format",
    )
    weight: float = Field(default=1.0, gt=0)
    display_order: int = 0

    def applies_to(self, format_type: FormatType) -> bool:
        return self.format_restriction is None or self.format_restriction == format_type


class EngineSummary(BaseModel):
    """Lightweight engine listing."""

    engine_key: str
    engine_name: str
    short_label: str
    format_restriction: Optional[FormatType] = None
    weight: float = 1.0


class EnginePayload(BaseModel):
    """Normalized output of one engine invocation."""

    engine_key: str
    score: int = Field(..., ge=0, le=100)
    status_label: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)
    duration_ms: int = 0
