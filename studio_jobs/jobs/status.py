from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from studio_jobs.core.errors import JobFailedError, TransientStatusError

GENERATING = "generating"
COMPLETED = "completed"


@dataclass(frozen=True, slots=True)
class JobStatus:
    state: Literal["generating", "completed"]
    output_url: str | None = None

    @property
    def done(self) -> bool:
        return self.state == COMPLETED


def parse_submission(payload: Any, *, label: str = "Video generation") -> str:
    """Extract the request id from a submission response body."""
    if not isinstance(payload, dict):
        raise JobFailedError(f"{label} response was not a JSON object", payload=payload)

    error = payload.get("Error") or payload.get("error")
    if error:
        raise JobFailedError(f"{label} initiation failed: {error}", payload=payload)

    request_id = payload.get("request_id")
    if not isinstance(request_id, str) or not request_id.strip():
        raise JobFailedError(f"{label} response did not contain a request_id", payload=payload)
    return request_id.strip()


def parse_status(payload: Any, *, output_field: str = "videos", label: str = "Video generation") -> JobStatus:
    """Classify a status response body.

    An explicit error field or any status other than ``generating`` with no
    outputs is a definitive failure. A body with neither outputs nor a status
    is treated as still generating. A body that is not a JSON object says
    nothing about the job and is reported as transient.
    """
    if not isinstance(payload, dict):
        raise TransientStatusError(f"{label} status response was not a JSON object")

    error = payload.get("Error") or payload.get("error")
    if error:
        raise JobFailedError(f"{label} failed: {error}", payload=payload)

    outputs = payload.get(output_field)
    if isinstance(outputs, list) and outputs:
        first = outputs[0]
        if not isinstance(first, str) or not first:
            raise JobFailedError(f"{label} returned an invalid {output_field} entry", payload=payload)
        return JobStatus(state=COMPLETED, output_url=first)

    status = payload.get("status")
    if status is None or status == GENERATING:
        return JobStatus(state=GENERATING)
    raise JobFailedError(f"{label} failed with status: {status}", payload=payload)
