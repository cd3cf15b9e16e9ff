"""Submit-then-poll orchestration for batches of generation tasks.

``generate_all`` reports each item through callbacks instead of one aggregate
result: every task ends in exactly one call to ``on_item_succeeded`` or
``on_item_failed``, and one failing item never stops its siblings.
``generate_one`` runs the same submit+poll path for a single item and raises on
failure, for "regenerate this item" actions.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from functools import partial
import logging

from opentelemetry import trace

from studio_jobs.core.config import Settings
from studio_jobs.core.errors import ItemFailure, JobCancelledError, to_item_failure
from studio_jobs.jobs.limiter import ProgressCallback, run_with_concurrency
from studio_jobs.jobs.poller import poll_for_result
from studio_jobs.jobs.tasks import GenerationTask, ImageEditTask, ItemState
from studio_jobs.services.generation_client import GenerationClient, JobEndpoints

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

SuccessCallback = Callable[[str, str], None]
FailureCallback = Callable[[ItemFailure], None]
StateCallback = Callable[[str, ItemState], None]


@dataclass(frozen=True, slots=True)
class BatchSummary:
    total: int
    succeeded: int
    failed: int


class GenerationRunner:
    def __init__(
        self,
        client: GenerationClient,
        settings: Settings,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        self.client = client
        self.settings = settings
        self.cancel_event = cancel_event
        self.video_endpoints = JobEndpoints(
            submit_url=settings.video_generation_url,
            status_url=settings.video_status_url,
        )
        self.image_endpoints = JobEndpoints(
            submit_url=settings.image_generation_url,
            status_url=settings.image_status_url,
            output_field="images",
            label="Image generation",
        )

    def endpoints_for(self, task: GenerationTask) -> JobEndpoints:
        if isinstance(task, ImageEditTask):
            return self.image_endpoints
        return self.video_endpoints

    def concurrency_for(self, tasks: Sequence[GenerationTask]) -> int:
        if any(isinstance(task, ImageEditTask) for task in tasks):
            return min(self.settings.image_concurrency, self.settings.video_concurrency)
        return self.settings.video_concurrency

    async def generate_one(
        self,
        task: GenerationTask,
        *,
        on_state_change: StateCallback | None = None,
    ) -> str:
        notify = on_state_change or _ignore_state
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise JobCancelledError("Generation was cancelled.")
        task.validate()

        endpoints = self.endpoints_for(task)
        defaults = {
            "aspect_ratio": self.settings.default_aspect_ratio,
            "resolution": self.settings.default_resolution,
            "duration": self.settings.default_duration,
        }
        with tracer.start_as_current_span("generation.item") as span:
            span.set_attribute("generation.key", task.key)
            span.set_attribute("generation.kind", task.kind)

            notify(task.key, ItemState.SUBMITTED)
            with tracer.start_as_current_span("generation.submit"):
                request_id = await self.client.submit(endpoints, task.to_payload(defaults))
            span.set_attribute("generation.request_id", request_id)

            notify(task.key, ItemState.POLLING)
            return await poll_for_result(
                partial(self.client.fetch_status, endpoints),
                request_id,
                interval_seconds=self.settings.poll_interval_seconds,
                max_attempts=self.settings.max_poll_attempts,
                cancel_event=self.cancel_event,
                label=endpoints.label,
            )

    async def generate_all(
        self,
        tasks: Sequence[GenerationTask],
        on_item_succeeded: SuccessCallback,
        on_item_failed: FailureCallback,
        *,
        concurrency: int | None = None,
        on_progress: ProgressCallback | None = None,
        on_state_change: StateCallback | None = None,
    ) -> BatchSummary:
        _check_batch(tasks)
        limit = self.concurrency_for(tasks) if concurrency is None else concurrency
        notify = on_state_change or _ignore_state
        succeeded = 0
        failed = 0

        async def process(task: GenerationTask) -> None:
            nonlocal succeeded, failed
            try:
                result_url = await self.generate_one(task, on_state_change=notify)
            except Exception as exc:
                failure = to_item_failure(task.key, exc)
                failed += 1
                logger.warning("%s", failure)
                _notify_terminal(notify, task.key, ItemState.FAILED)
                on_item_failed(failure)
            else:
                succeeded += 1
                _notify_terminal(notify, task.key, ItemState.SUCCEEDED)
                on_item_succeeded(task.key, result_url)

        with tracer.start_as_current_span("generation.batch") as span:
            span.set_attribute("generation.total", len(tasks))
            span.set_attribute("generation.concurrency", limit)
            logger.info("starting generation batch of %s task(s) with concurrency=%s", len(tasks), limit)
            await run_with_concurrency(
                [partial(process, task) for task in tasks],
                limit,
                on_progress=on_progress,
            )
            span.set_attribute("generation.failed", failed)

        logger.info("generation batch finished: %s succeeded, %s failed", succeeded, failed)
        return BatchSummary(total=len(tasks), succeeded=succeeded, failed=failed)


def _check_batch(tasks: Sequence[GenerationTask]) -> None:
    seen: set[str] = set()
    for task in tasks:
        if not isinstance(task, GenerationTask):
            raise TypeError(f"expected a GenerationTask, got {type(task).__name__}")
        if not task.key:
            raise ValueError("every task needs a non-empty key")
        if task.key in seen:
            raise ValueError(f"duplicate task key in batch: {task.key}")
        seen.add(task.key)


def _ignore_state(key: str, state: ItemState) -> None:
    return None


def _notify_terminal(notify: StateCallback, key: str, state: ItemState) -> None:
    # The item's outcome callback must still run when the state hook rejects the update.
    try:
        notify(key, state)
    except Exception:
        logger.exception("state hook failed for %s on %s", key, state.value)
