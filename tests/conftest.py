"""Shared test fixtures: temporary runs database, fakes, virtual clock."""

import threading
from concurrent.futures import Executor, Future
from datetime import datetime, timedelta
from typing import Optional

import pytest

from video_analyzer.engines.client import EngineInvocationError
from video_analyzer.engines.registry import EngineRegistry
from video_analyzer.engines.schemas import EngineDefinition, EnginePayload
from video_analyzer.runs import db
from video_analyzer.runs.schemas import AnalysisResult, AnalyzerResponse, CategoryBreakdown
from video_analyzer.runs.store import RunStore
from video_analyzer.subjects import Subject


class FakeClock:
    """Virtual clock: sleep() advances now instead of blocking."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 10, 19, 12, 0, 0)
        self.sleeps: list[float] = []
        self.on_sleep = None

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)
        if self.on_sleep is not None:
            self.on_sleep(len(self.sleeps))


class FakeAnalyzer:
    """Remote analyzer returning a canned response and recording calls."""

    def __init__(self, response: Optional[AnalyzerResponse] = None):
        self.response = response or AnalyzerResponse(success=True, result=make_result(78))
        self.calls: list[tuple] = []
        self.raises: Optional[Exception] = None

    def invoke(self, snapshot, run_id):
        self.calls.append((snapshot, run_id))
        if self.raises is not None:
            raise self.raises
        return self.response


class FakeEngineClient:
    """Engine client with per-engine scores, failures and gates.

    A gated engine blocks until its threading.Event is set, which lets a
    test hold an engine in the loading state.
    """

    def __init__(self, scores: Optional[dict[str, int]] = None):
        self.scores = dict(scores or {})
        self.labels: dict[str, str] = {}
        self.failing: set[str] = set()
        self.gates: dict[str, threading.Event] = {}
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def gate(self, engine_key: str) -> threading.Event:
        event = threading.Event()
        self.gates[engine_key] = event
        return event

    def invoke(self, engine: EngineDefinition, subject: Subject) -> EnginePayload:
        with self._lock:
            self.calls.append((engine.engine_key, subject.id))
        gate = self.gates.get(engine.engine_key)
        if gate is not None:
            gate.wait(timeout=5)
        if engine.engine_key in self.failing:
            raise EngineInvocationError(engine.engine_key, "service unavailable")
        return EnginePayload(
            engine_key=engine.engine_key,
            score=self.scores.get(engine.engine_key, 75),
            status_label=self.labels.get(engine.engine_key),
        )

    def called_keys(self) -> list[str]:
        with self._lock:
            return [key for key, _ in self.calls]


class ImmediateExecutor(Executor):
    """Runs submitted work inline on the calling thread."""

    def submit(self, fn, *args, **kwargs):
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as e:
            future.set_exception(e)
        return future


def make_result(overall: int, confidence: int = 60) -> AnalysisResult:
    return AnalysisResult(
        overall_score=overall,
        confidence_score=confidence,
        breakdowns={
            "title": CategoryBreakdown(total=80, issues=["Title over 60 characters"]),
            "tags": CategoryBreakdown(total=55, suggestions=["Add long-tail tags"]),
        },
        details={"improvedTitle": "Better title"},
    )


@pytest.fixture
def runs_db(tmp_path, monkeypatch):
    """Point the runs database at a fresh SQLite file."""
    monkeypatch.setattr(db, "DATABASE_URL", "")
    monkeypatch.setattr(db, "SQLITE_PATH", tmp_path / "runs.db")
    monkeypatch.setattr(db, "_initialized", False)
    db.init_db()
    return tmp_path / "runs.db"


@pytest.fixture
def store(runs_db):
    return RunStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def analyzer():
    return FakeAnalyzer()


@pytest.fixture
def registry():
    return EngineRegistry()


@pytest.fixture
def short_subject():
    return Subject(
        id="vid-short",
        youtube_video_id="abc123",
        title="I tried the 5am routine for 30 days",
        description="What happened when I woke up at 5am every day.",
        tags=["morning routine", "productivity"],
        view_count=12000,
        like_count=900,
        comment_count=45,
        duration="PT45S",
    )


@pytest.fixture
def long_subject():
    return Subject(
        id="vid-long",
        youtube_video_id="def456",
        title="Complete guide to home espresso",
        description="Everything about grinders, baskets and milk.",
        tags=["espresso", "coffee"],
        view_count=54000,
        duration="PT15M42S",
    )
