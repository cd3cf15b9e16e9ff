from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

import httpx

from studio_jobs.core.errors import JobFailedError, TransientStatusError
from studio_jobs.jobs.status import JobStatus, parse_status, parse_submission

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class JobEndpoints:
    """Submission/status URL pair for one kind of long-running generation job."""

    submit_url: str
    status_url: str
    output_field: str = "videos"
    label: str = "Video generation"


class GenerationClient:
    """Thin httpx wrapper around the webhook-routed generation endpoints.

    Pass ``client`` to share one ``httpx.AsyncClient`` across calls (tests use a
    ``MockTransport``); otherwise a short-lived client is opened per request.
    """

    def __init__(self, *, timeout_seconds: float = 30.0, client: httpx.AsyncClient | None = None) -> None:
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def submit(self, endpoints: JobEndpoints, payload: dict[str, Any]) -> str:
        body = await self._post(endpoints.submit_url, payload, status_query=False)
        request_id = parse_submission(body, label=endpoints.label)
        logger.debug("submitted %s request_id=%s", endpoints.label, request_id)
        return request_id

    async def fetch_status(self, endpoints: JobEndpoints, request_id: str) -> JobStatus:
        body = await self._post(endpoints.status_url, {"id": request_id}, status_query=True)
        return parse_status(body, output_field=endpoints.output_field, label=endpoints.label)

    async def post_json(self, url: str, payload: dict[str, Any]) -> Any:
        return await self._post(url, payload, status_query=False)

    async def _post(self, url: str, payload: dict[str, Any], *, status_query: bool) -> Any:
        if self._client is not None:
            response = await self._client.post(url, json=payload)
        else:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(url, json=payload)
        return _decode(response, status_query=status_query)


def _decode(response: httpx.Response, *, status_query: bool) -> Any:
    try:
        body = response.json()
    except ValueError as exc:
        raise TransientStatusError(
            f"Failed to parse API response: {response.reason_phrase or response.status_code}",
            status_code=response.status_code,
        ) from exc

    if response.is_success:
        return body

    error = _error_text(body)
    # Status queries only give up on an explicit error field; anything else may be a hiccup.
    explicit = isinstance(body, dict) and bool(body.get("error") or body.get("Error"))
    if error is not None and (explicit or not status_query):
        raise JobFailedError(error, payload=body)
    raise TransientStatusError(
        error or f"Request failed with status {response.status_code}",
        status_code=response.status_code,
    )


def _error_text(body: Any) -> str | None:
    if not isinstance(body, dict):
        return None
    for field in ("error", "Error", "message"):
        value = body.get(field)
        if isinstance(value, str) and value:
            return value
    return None
