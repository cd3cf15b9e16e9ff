from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
import logging

import httpx
from opentelemetry import trace

from studio_jobs.core.errors import JobCancelledError, JobTimeoutError, TransientStatusError
from studio_jobs.jobs.status import JobStatus

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

StatusFetcher = Callable[[str], Awaitable[JobStatus]]

# Failures of the status query itself; they say nothing about the job.
TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (TransientStatusError, httpx.RequestError)


async def poll_for_result(
    fetch_status: StatusFetcher,
    request_id: str,
    *,
    interval_seconds: float,
    max_attempts: int,
    cancel_event: asyncio.Event | None = None,
    label: str = "Video generation",
) -> str:
    """Wait for a submitted job and return its first output URL.

    Each attempt waits ``interval_seconds`` and then queries the status.
    Transient query failures are retried until the last attempt, where they are
    re-raised. ``JobFailedError`` from the status adapter propagates at once.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    with tracer.start_as_current_span("generation.poll") as span:
        span.set_attribute("generation.request_id", request_id)
        for attempt in range(1, max_attempts + 1):
            await _wait(interval_seconds, cancel_event)
            span.set_attribute("generation.attempts", attempt)

            try:
                status = await fetch_status(request_id)
            except TRANSIENT_ERRORS as exc:
                if attempt == max_attempts:
                    raise
                logger.warning(
                    "poll attempt %s/%s for request_id=%s failed transiently: %s; retrying",
                    attempt,
                    max_attempts,
                    request_id,
                    exc,
                )
                continue

            if status.done and status.output_url:
                logger.debug("request_id=%s completed after %s attempt(s)", request_id, attempt)
                return status.output_url
            logger.debug("request_id=%s still generating (attempt %s/%s)", request_id, attempt, max_attempts)

    budget = _format_budget(interval_seconds * max_attempts)
    raise JobTimeoutError(f"{label} timed out after {budget}.", attempts=max_attempts)


async def _wait(seconds: float, cancel_event: asyncio.Event | None) -> None:
    if cancel_event is None:
        await asyncio.sleep(seconds)
        return
    if cancel_event.is_set():
        raise JobCancelledError("Generation was cancelled.")
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return
    raise JobCancelledError("Generation was cancelled.")


def _format_budget(seconds: float) -> str:
    if seconds >= 60:
        return f"{seconds / 60:g} minutes"
    return f"{seconds:g} seconds"
