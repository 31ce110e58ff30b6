"""In-process sessions: one orchestrator and one engine board per subject.

Sessions are the HTTP layer's stand-in for an open video detail view.
Opening a subject creates (or refreshes) its session; closing it drops
the board state, and late engine or poll results for it are discarded.
"""

import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional

from video_analyzer.board.engine_board import MAX_ENGINE_CONCURRENCY, EngineBoard
from video_analyzer.engines.client import EngineClient
from video_analyzer.engines.registry import EngineRegistry, get_engine_registry
from video_analyzer.runs.analyzer import HttpRemoteAnalyzer, RemoteAnalyzer
from video_analyzer.runs.orchestrator import RunOrchestrator
from video_analyzer.runs.store import RunStore
from video_analyzer.subjects import Subject

logger = logging.getLogger(__name__)


@dataclass
class SubjectSession:
    subject: Subject
    orchestrator: RunOrchestrator
    board: EngineBoard


class SessionManager:
    """Holds the open subject sessions of this process."""

    def __init__(
        self,
        store: Optional[RunStore] = None,
        analyzer: Optional[RemoteAnalyzer] = None,
        engine_client: Optional[EngineClient] = None,
        registry: Optional[EngineRegistry] = None,
        orchestrator_factory: Optional[Callable[..., RunOrchestrator]] = None,
        engine_executor: Optional[Executor] = None,
    ):
        self.store = store or RunStore()
        self.analyzer = analyzer or HttpRemoteAnalyzer()
        self.engine_client = engine_client or EngineClient()
        self.registry = registry or get_engine_registry()
        self._orchestrator_factory = orchestrator_factory or RunOrchestrator
        self._owns_executor = engine_executor is None
        # Shared by every board of this manager
        self._engine_executor = engine_executor or ThreadPoolExecutor(
            max_workers=MAX_ENGINE_CONCURRENCY,
            thread_name_prefix="engine",
        )
        self._sessions: dict[str, SubjectSession] = {}
        self._lock = threading.Lock()

    def open(self, subject: Subject) -> SubjectSession:
        """Open a subject, or refresh its fields if it is already open."""
        with self._lock:
            session = self._sessions.get(subject.id)
            if session is not None:
                session.subject = subject
                session.orchestrator.subject = subject
                session.board.set_subject(subject)
                return session

            orchestrator = self._orchestrator_factory(
                subject, store=self.store, analyzer=self.analyzer
            )
            board = EngineBoard(
                subject,
                client=self.engine_client,
                registry=self.registry,
                executor=self._engine_executor,
            )
            session = SubjectSession(subject=subject, orchestrator=orchestrator, board=board)
            self._sessions[subject.id] = session

        logger.info(f"Opened session for subject {subject.id} ({subject.format_type.value}-form)")
        orchestrator.load()
        return session

    def get(self, subject_id: str) -> SubjectSession:
        """Raises ValueError if the subject is not open."""
        with self._lock:
            session = self._sessions.get(subject_id)
        if session is None:
            raise ValueError(f"Subject not open: {subject_id}")
        return session

    def close(self, subject_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(subject_id, None)
        if session is None:
            return False
        session.orchestrator.close()
        session.board.close()
        logger.info(f"Closed session for subject {subject_id}")
        return True

    def close_all(self) -> None:
        with self._lock:
            subject_ids = list(self._sessions)
        for subject_id in subject_ids:
            self.close(subject_id)
        if self._owns_executor:
            self._engine_executor.shutdown(wait=False)

    def count(self) -> int:
        with self._lock:
            return len(self._sessions)


_manager: Optional[SessionManager] = None


def get_session_manager() -> SessionManager:
    """Get the global session manager instance."""
    global _manager
    if _manager is None:
        _manager = SessionManager()
    return _manager


def set_session_manager(manager: Optional[SessionManager]) -> None:
    """Replace the global session manager (tests, custom wiring)."""
    global _manager
    _manager = manager
