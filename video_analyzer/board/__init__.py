"""Engine board: concurrent scoring engines and the composite score."""

from video_analyzer.board.aggregator import compute_composite, grade_for
from video_analyzer.board.engine_board import EngineBoard
from video_analyzer.board.schemas import (
    BoardSnapshot,
    CompositeScore,
    EngineResult,
    EngineSlot,
    Grade,
)

__all__ = [
    "BoardSnapshot",
    "CompositeScore",
    "EngineBoard",
    "EngineResult",
    "EngineSlot",
    "Grade",
    "compute_composite",
    "grade_for",
]
