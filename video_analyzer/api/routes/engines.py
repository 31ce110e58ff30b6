"""Engine API routes."""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from video_analyzer.engines.registry import get_engine_registry
from video_analyzer.engines.schemas import EngineDefinition, EngineSummary
from video_analyzer.subjects import FormatType

router = APIRouter(prefix="/engines", tags=["engines"])


@router.get("", response_model=list[EngineSummary])
async def list_engines(
    format_type: Optional[FormatType] = Query(
        None, description="Only engines applicable to this subject format"
    ),
) -> list[EngineSummary]:
    """List all scoring engines."""
    registry = get_engine_registry()
    if format_type is None:
        return registry.list_summaries()
    applicable = {e.engine_key for e in registry.applicable_for(format_type)}
    return [s for s in registry.list_summaries() if s.engine_key in applicable]


@router.get("/{engine_key}", response_model=EngineDefinition)
async def get_engine(engine_key: str) -> EngineDefinition:
    """Get the full definition of one engine."""
    engine = get_engine_registry().get(engine_key)
    if engine is None:
        raise HTTPException(status_code=404, detail=f"Engine not found: {engine_key}")
    return engine
