"""Single scoring engine invocation.

An engine client posts the subject's current fields to the engine's
remote function and normalizes the reply into an EnginePayload. It holds
no per-subject state and never retries: a failed call is reported to the
caller, which decides whether to run the engine again.
"""

import logging
import math
import time
from typing import Any, Optional

import httpx

from video_analyzer.engines.schemas import EngineDefinition, EnginePayload
from video_analyzer.remote import RemoteCallError, call_function, extract_path, get_http_client
from video_analyzer.subjects import Subject

logger = logging.getLogger(__name__)


class EngineInvocationError(RuntimeError):
    """An engine call failed or produced no usable score."""

    def __init__(self, engine_key: str, message: str):
        super().__init__(f"{engine_key}: {message}")
        self.engine_key = engine_key


def normalize_score(value: Any) -> Optional[int]:
    """Round a numeric score half-up to an int in [0, 100].

    Returns None for non-numeric or out-of-range values.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    score = int(math.floor(value + 0.5))
    if score < 0 or score > 100:
        return None
    return score


def parse_engine_payload(engine: EngineDefinition, data: dict[str, Any]) -> EnginePayload:
    """Pull the score and optional status label out of a raw payload."""
    raw_score = extract_path(data, engine.score_path)
    score = normalize_score(raw_score)
    if score is None:
        raise EngineInvocationError(
            engine.engine_key,
            f"payload has no valid score at '{engine.score_path}' (got {raw_score!r})",
        )

    status_label = None
    if engine.status_path:
        label = extract_path(data, engine.status_path)
        if label is not None:
            status_label = str(label)

    return EnginePayload(
        engine_key=engine.engine_key,
        score=score,
        status_label=status_label,
        raw=data,
    )


class EngineClient:
    """Invokes scoring engines over the function gateway."""

    def __init__(self, http_client: Optional[httpx.Client] = None):
        self._http = http_client or get_http_client()

    def invoke(self, engine: EngineDefinition, subject: Subject) -> EnginePayload:
        """Run one engine against the subject's current state.

        Raises:
            EngineInvocationError: if the call fails or the score is unusable.
        """
        start = time.monotonic()
        body = subject.analyzable_fields()
        try:
            data = call_function(self._http, engine.function_name, body)
        except RemoteCallError as e:
            raise EngineInvocationError(engine.engine_key, str(e)) from e

        payload = parse_engine_payload(engine, data)
        payload.duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            f"Engine {engine.engine_key} scored {payload.score} for subject "
            f"{subject.id} in {payload.duration_ms}ms"
        )
        return payload

    def close(self) -> None:
        self._http.close()
