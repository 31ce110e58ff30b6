"""Shared client for the hosted function endpoints.

Both the remote analyzer and the scoring engines live behind the same
function gateway: POST {ENGINE_SERVICE_URL}/{function_name} with a JSON
body, answered by a JSON object (or an {"error": ...} object on failure).

Used by:
- Engine clients (one function per scoring engine)
- The remote analyzer (analysis runs)
"""

import logging
import os
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

ENGINE_SERVICE_URL = os.environ.get("ENGINE_SERVICE_URL", "http://localhost:54321/functions/v1")
ENGINE_SERVICE_KEY = os.environ.get("ENGINE_SERVICE_KEY", "")
ENGINE_TIMEOUT_SECONDS = float(os.environ.get("ENGINE_TIMEOUT_SECONDS", "120"))

# Gateway status codes with a message worth showing as-is
STATUS_MESSAGES = {
    401: "Not authorized to call the analysis service.",
    402: "AI credits exhausted. Please add credits to continue.",
    429: "Rate limit exceeded. Please try again later.",
}


class RemoteCallError(RuntimeError):
    """A function call was rejected before producing a usable payload."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def get_http_client(
    base_url: Optional[str] = None,
    api_key: Optional[str] = None,
    timeout: Optional[float] = None,
) -> httpx.Client:
    """Create an HTTP client for the function gateway."""
    key = api_key if api_key is not None else ENGINE_SERVICE_KEY
    headers = {"Content-Type": "application/json"}
    if key:
        headers["Authorization"] = f"Bearer {key}"
        headers["apikey"] = key
    return httpx.Client(
        base_url=base_url or ENGINE_SERVICE_URL,
        headers=headers,
        timeout=httpx.Timeout(timeout or ENGINE_TIMEOUT_SECONDS, connect=10.0),
    )


def call_function(
    client: httpx.Client,
    function_name: str,
    body: dict[str, Any],
) -> dict[str, Any]:
    """POST a JSON body to a gateway function and return the JSON payload.

    Raises:
        RemoteCallError: on transport errors, non-2xx responses,
            non-JSON bodies, or an explicit {"error": ...} payload.
    """
    try:
        response = client.post(f"/{function_name}", json=body)
    except httpx.HTTPError as e:
        raise RemoteCallError(f"{function_name} unreachable: {e}") from e

    if response.status_code >= 400:
        message = STATUS_MESSAGES.get(response.status_code)
        if message is None:
            message = _error_from_body(response) or (
                f"{function_name} failed with HTTP {response.status_code}"
            )
        logger.warning(f"{function_name} returned {response.status_code}: {message}")
        raise RemoteCallError(message, status_code=response.status_code)

    try:
        data = response.json()
    except ValueError as e:
        raise RemoteCallError(f"{function_name} returned a non-JSON response") from e

    if not isinstance(data, dict):
        raise RemoteCallError(f"{function_name} returned an unexpected payload")
    if data.get("error"):
        raise RemoteCallError(str(data["error"]), status_code=response.status_code)
    return data


def _error_from_body(response: httpx.Response) -> Optional[str]:
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return None


def extract_path(payload: dict[str, Any], path: str) -> Any:
    """Read a dotted path ("gravity_score.total") out of a nested dict."""
    current: Any = payload
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current
