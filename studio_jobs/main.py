from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
import logging

import httpx

from studio_jobs.core.config import Settings, get_settings
from studio_jobs.core.telemetry import configure_logging, flush_telemetry, setup_telemetry
from studio_jobs.jobs.limiter import ProgressCallback
from studio_jobs.jobs.runner import (
    BatchSummary,
    FailureCallback,
    GenerationRunner,
    StateCallback,
    SuccessCallback,
)
from studio_jobs.jobs.tasks import GenerationTask
from studio_jobs.services.generation_client import GenerationClient
from studio_jobs.services.image_hosting import HostedImageCache, ImageHostingClient

logger = logging.getLogger(__name__)


@asynccontextmanager
async def generation_session(
    settings: Settings | None = None,
    *,
    cancel_event: asyncio.Event | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[tuple[GenerationRunner, HostedImageCache]]:
    """Open a runner plus image cache sharing one HTTP client.

    Tracing is installed once per process on first use; each session only
    flushes its spans on exit.
    """
    settings = settings or get_settings()
    configure_logging()
    setup_telemetry(settings)
    try:
        async with httpx.AsyncClient(timeout=settings.request_timeout_seconds, transport=transport) as http:
            client = GenerationClient(timeout_seconds=settings.request_timeout_seconds, client=http)
            runner = GenerationRunner(client, settings, cancel_event=cancel_event)
            images = HostedImageCache(ImageHostingClient(settings.image_upload_url, client=client))
            yield runner, images
    finally:
        await asyncio.to_thread(flush_telemetry)


async def run_video_batch(
    tasks: Sequence[GenerationTask],
    on_item_succeeded: SuccessCallback,
    on_item_failed: FailureCallback,
    *,
    on_progress: ProgressCallback | None = None,
    on_state_change: StateCallback | None = None,
    cancel_event: asyncio.Event | None = None,
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> BatchSummary:
    async with generation_session(settings, cancel_event=cancel_event, transport=transport) as (runner, _):
        return await runner.generate_all(
            tasks,
            on_item_succeeded,
            on_item_failed,
            on_progress=on_progress,
            on_state_change=on_state_change,
        )


async def regenerate_item(
    task: GenerationTask,
    *,
    cancel_event: asyncio.Event | None = None,
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    async with generation_session(settings, cancel_event=cancel_event, transport=transport) as (runner, _):
        result_url = await runner.generate_one(task)
    logger.info("regenerated key=%s", task.key)
    return result_url
