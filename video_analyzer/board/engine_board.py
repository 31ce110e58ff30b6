"""Engine board: independent scoring engines for one subject.

Each applicable engine can be triggered on its own; invocations run on a
thread pool and finish in any order. The board tracks per-engine
loading/result state and recomputes the composite on demand.

Concurrency rules:
- One in-flight invocation per engine key. A second run() for a loading
  key is rejected, not queued.
- Engines never wait on each other; a failure in one leaves the others alone.
- Results are applied under the board lock together with clearing the
  loading flag, so a key is always idle, idle-with-result, or loading.
- Switching subject bumps a generation counter. Late results carrying an
  older generation are discarded instead of applied.
"""

import logging
import os
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Optional

from video_analyzer.board.aggregator import WEAK_ENGINE_THRESHOLD, compute_composite
from video_analyzer.board.schemas import BoardSnapshot, CompositeScore, EngineResult, EngineSlot
from video_analyzer.engines.client import EngineClient, EngineInvocationError
from video_analyzer.engines.registry import EngineRegistry, get_engine_registry
from video_analyzer.engines.schemas import EngineDefinition
from video_analyzer.subjects import Subject

logger = logging.getLogger(__name__)

MAX_ENGINE_CONCURRENCY = int(os.environ.get("MAX_ENGINE_CONCURRENCY", "7"))

BoardListener = Callable[[BoardSnapshot], None]


class EngineBoard:
    """Live state of all scoring engines for the subject currently in view."""

    def __init__(
        self,
        subject: Subject,
        client: Optional[EngineClient] = None,
        registry: Optional[EngineRegistry] = None,
        executor: Optional[Executor] = None,
        weak_threshold: int = WEAK_ENGINE_THRESHOLD,
    ):
        self._client = client or EngineClient()
        self._registry = registry or get_engine_registry()
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=MAX_ENGINE_CONCURRENCY,
            thread_name_prefix="engine",
        )
        self._weak_threshold = weak_threshold

        self._lock = threading.Lock()
        self._subject = subject
        self._generation = 0
        self._results: dict[str, EngineResult] = {}
        self._loading: dict[str, bool] = {}
        self._errors: dict[str, str] = {}
        self._listeners: list[BoardListener] = []

    # --- Read accessors ---

    @property
    def subject(self) -> Subject:
        with self._lock:
            return self._subject

    @property
    def applicable_engines(self) -> list[EngineDefinition]:
        return self._registry.applicable_for(self.subject.format_type)

    @property
    def results(self) -> dict[str, EngineResult]:
        with self._lock:
            return dict(self._results)

    @property
    def loading(self) -> dict[str, bool]:
        with self._lock:
            return {key: True for key, flag in self._loading.items() if flag}

    def is_loading(self, engine_key: str) -> bool:
        with self._lock:
            return self._loading.get(engine_key, False)

    def result(self, engine_key: str) -> Optional[EngineResult]:
        with self._lock:
            return self._results.get(engine_key)

    def composite(self) -> CompositeScore:
        """Composite score over the current state (pure read)."""
        applicable = self.applicable_engines
        with self._lock:
            results = dict(self._results)
            loading = dict(self._loading)
        return compute_composite(
            applicable,
            results,
            loading,
            weak_threshold=self._weak_threshold,
        )

    def snapshot(self) -> BoardSnapshot:
        subject = self.subject
        applicable = self._registry.applicable_for(subject.format_type)
        with self._lock:
            slots = [
                EngineSlot(
                    engine_key=e.engine_key,
                    engine_name=e.engine_name,
                    short_label=e.short_label,
                    loading=self._loading.get(e.engine_key, False),
                    result=self._results.get(e.engine_key),
                    last_error=self._errors.get(e.engine_key),
                )
                for e in applicable
            ]
            results = dict(self._results)
            loading = dict(self._loading)
        return BoardSnapshot(
            subject_id=subject.id,
            format_type=subject.format_type.value,
            engines=slots,
            composite=compute_composite(
                applicable, results, loading, weak_threshold=self._weak_threshold
            ),
        )

    def subscribe(self, listener: BoardListener) -> Callable[[], None]:
        """Register a listener for board snapshots. Returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    # --- Operations ---

    def run(self, engine_key: str) -> Optional[Future]:
        """Start one engine for the current subject.

        Returns the future of the invocation, or None if the engine is
        already loading.

        Raises:
            ValueError: if the engine is unknown or not applicable to the subject.
        """
        engine = self._registry.get_validated(engine_key)

        with self._lock:
            subject = self._subject
            if not engine.applies_to(subject.format_type):
                raise ValueError(
                    f"Engine {engine_key} does not apply to "
                    f"{subject.format_type.value}-form subjects"
                )
            if self._loading.get(engine_key):
                logger.debug(f"Engine {engine_key} already running, ignoring run()")
                return None
            self._loading[engine_key] = True
            self._errors.pop(engine_key, None)
            generation = self._generation

        logger.info(f"Running engine {engine_key} for subject {subject.id}")
        try:
            future = self._executor.submit(self._invoke, engine, subject, generation)
        except RuntimeError:
            with self._lock:
                if generation == self._generation:
                    self._loading[engine_key] = False
            raise
        self._notify()
        return future

    def run_all_remaining(self) -> list[str]:
        """Start every applicable engine that has no result and is not loading.

        Returns the keys that were launched.
        """
        applicable = self.applicable_engines
        with self._lock:
            eligible = [
                e.engine_key for e in applicable
                if self._results.get(e.engine_key) is None
                and not self._loading.get(e.engine_key, False)
            ]

        launched = []
        for key in eligible:
            try:
                if self.run(key) is not None:
                    launched.append(key)
            except ValueError as e:
                # Subject switched to another format mid-launch
                logger.debug(f"Skipping engine {key}: {e}")
        logger.info(f"Launched {len(launched)} remaining engine(s): {launched}")
        return launched

    def set_subject(self, subject: Subject) -> None:
        """Point the board at a subject.

        The same subject (by id) with edited fields keeps its results; the
        next run() sees the new fields. A different subject discards all
        engine state, and in-flight responses for the old one are dropped.
        """
        with self._lock:
            if subject.id == self._subject.id:
                self._subject = subject
                return
            logger.info(f"Engine board switching subject {self._subject.id} → {subject.id}")
            self._generation += 1
            self._subject = subject
            self._results.clear()
            self._loading.clear()
            self._errors.clear()
        self._notify()

    def close(self) -> None:
        """Stop accepting work. In-flight results for this board are discarded."""
        with self._lock:
            self._generation += 1
            self._loading.clear()
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    # --- Internals ---

    def _invoke(
        self,
        engine: EngineDefinition,
        subject: Subject,
        generation: int,
    ) -> Optional[EngineResult]:
        key = engine.engine_key
        try:
            payload = self._client.invoke(engine, subject)
        except EngineInvocationError as e:
            logger.warning(f"Engine {key} failed for subject {subject.id}: {e}")
            self._apply(key, generation, error=str(e))
            return None
        except Exception as e:
            logger.error(f"Engine {key} crashed for subject {subject.id}: {e}", exc_info=True)
            self._apply(key, generation, error=f"Unexpected engine error: {e!r}")
            return None

        result = EngineResult(
            engine_key=key,
            score=payload.score,
            status_label=payload.status_label,
            payload=payload.raw,
            completed_at=datetime.utcnow(),
        )
        if self._apply(key, generation, result=result):
            return result
        return None

    def _apply(
        self,
        engine_key: str,
        generation: int,
        result: Optional[EngineResult] = None,
        error: Optional[str] = None,
    ) -> bool:
        """Apply an invocation outcome if it still belongs to the current subject."""
        with self._lock:
            if generation != self._generation:
                logger.info(
                    f"Discarding stale {engine_key} response "
                    f"(generation {generation}, current {self._generation})"
                )
                return False
            if result is not None:
                self._results[engine_key] = result
            if error is not None:
                self._errors[engine_key] = error
            self._loading[engine_key] = False

        self._notify()
        return True

    def _notify(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
        if not listeners:
            return
        snapshot = self.snapshot()
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Board listener failed: {e}")
