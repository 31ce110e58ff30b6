"""Remote analyzer: the expensive multi-field analysis behind a run.

The analyzer is invoked with a run's frozen input snapshot. It either
answers synchronously with the full analysis, or accepts the job and
returns a job id; in that case a remote worker writes the outcome to the
run record and the orchestrator polls for it.
"""

import logging
import math
from typing import Any, Optional, Protocol, runtime_checkable

import httpx

from video_analyzer.remote import RemoteCallError, call_function, get_http_client
from video_analyzer.runs.schemas import (
    AnalysisResult,
    AnalyzerResponse,
    CategoryBreakdown,
    InputSnapshot,
)

logger = logging.getLogger(__name__)

ANALYZER_FUNCTION = "avoe-analyze"

# Payload keys holding category breakdowns → category name
BREAKDOWN_KEYS = {
    "titleScore": "title",
    "descriptionScore": "description",
    "tagsScore": "tags",
    "hashtagsScore": "hashtags",
    "thumbnailScore": "thumbnail",
    "viralityScore": "virality",
}


@runtime_checkable
class RemoteAnalyzer(Protocol):
    """Protocol for remote analyzer implementations."""

    def invoke(self, snapshot: InputSnapshot, run_id: str) -> AnalyzerResponse: ...


def parse_analysis(data: dict[str, Any]) -> AnalysisResult:
    """Convert a raw analyzer payload into an AnalysisResult.

    Raises:
        ValueError: if the payload carries no overall score.
    """
    overall = data.get("overallScore")
    if isinstance(overall, bool) or not isinstance(overall, (int, float)):
        raise ValueError(f"Analysis payload has no overallScore (got {overall!r})")

    breakdowns: dict[str, CategoryBreakdown] = {}
    details: dict[str, Any] = {}
    for key, value in data.items():
        if key in BREAKDOWN_KEYS and isinstance(value, dict):
            breakdowns[BREAKDOWN_KEYS[key]] = CategoryBreakdown.model_validate(value)
        elif key not in ("overallScore", "confidenceScore"):
            details[key] = value

    return AnalysisResult(
        overall_score=int(math.floor(overall + 0.5)),
        confidence_score=int(math.floor((data.get("confidenceScore") or 0) + 0.5)),
        breakdowns=breakdowns,
        details=details,
    )


class HttpRemoteAnalyzer:
    """Calls the analyzer function over the function gateway."""

    def __init__(
        self,
        http_client: Optional[httpx.Client] = None,
        function_name: str = ANALYZER_FUNCTION,
    ):
        self._http = http_client or get_http_client()
        self.function_name = function_name

    def invoke(self, snapshot: InputSnapshot, run_id: str) -> AnalyzerResponse:
        body = snapshot.to_request()
        body["runId"] = run_id
        try:
            data = call_function(self._http, self.function_name, body)
        except RemoteCallError as e:
            logger.warning(f"Analyzer rejected run {run_id}: {e}")
            return AnalyzerResponse(success=False, error_message=str(e))

        job_id = data.get("jobId") or data.get("job_id")
        if job_id and "overallScore" not in data:
            logger.info(f"Analyzer queued run {run_id} as job {job_id}")
            return AnalyzerResponse(success=True, job_id=str(job_id))

        try:
            result = parse_analysis(data)
        except ValueError as e:
            logger.warning(f"Analyzer returned an unusable payload for run {run_id}: {e}")
            return AnalyzerResponse(success=False, error_message=str(e))
        return AnalyzerResponse(success=True, result=result)
