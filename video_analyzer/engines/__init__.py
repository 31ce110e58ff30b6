"""Scoring engine definitions and client."""

from video_analyzer.engines.client import EngineClient, EngineInvocationError
from video_analyzer.engines.registry import EngineRegistry, get_engine_registry
from video_analyzer.engines.schemas import (
    EngineDefinition,
    EnginePayload,
    EngineSummary,
)

__all__ = [
    "EngineClient",
    "EngineDefinition",
    "EngineInvocationError",
    "EnginePayload",
    "EngineRegistry",
    "EngineSummary",
    "get_engine_registry",
]
