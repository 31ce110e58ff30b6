"""Analysis runs: persistence, remote analyzer, and the run orchestrator.

Architecture (bottom-up):
- db: SQLite/Postgres access for the analysis_runs table
- store: RunStore, append-only run records with terminal-state guard
- analyzer: remote analyzer protocol and its HTTP implementation
- orchestrator: RunOrchestrator, reuse-vs-rerun, invocation, polling, history
"""

from video_analyzer.runs.analyzer import HttpRemoteAnalyzer, RemoteAnalyzer
from video_analyzer.runs.orchestrator import RunOrchestrator
from video_analyzer.runs.schemas import (
    AnalysisResult,
    AnalysisRun,
    AnalyzerResponse,
    FailureKind,
    InputSnapshot,
    RerunChoice,
    RunStatus,
    StartOutcome,
)
from video_analyzer.runs.store import RunStore

__all__ = [
    "AnalysisResult",
    "AnalysisRun",
    "AnalyzerResponse",
    "FailureKind",
    "HttpRemoteAnalyzer",
    "InputSnapshot",
    "RemoteAnalyzer",
    "RerunChoice",
    "RunOrchestrator",
    "RunStatus",
    "RunStore",
    "StartOutcome",
]
