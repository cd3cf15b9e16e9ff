from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable, Sequence
import logging
from typing import Any

logger = logging.getLogger(__name__)

TaskFunction = Callable[[], Awaitable[Any]]
ProgressCallback = Callable[[int, int], None]


async def run_with_concurrency(
    tasks: Sequence[TaskFunction],
    limit: int,
    *,
    on_progress: ProgressCallback | None = None,
) -> int:
    """Run ``tasks`` with at most ``limit`` of them in flight.

    Tasks are admitted in sequence order; a new one starts as soon as any
    admitted task settles. A failing task is logged and counted but never stops
    the remaining tasks from being admitted. Returns the number of tasks that
    raised.
    """
    if limit < 1:
        raise ValueError(f"concurrency limit must be >= 1, got {limit}")

    total = len(tasks)
    if total == 0:
        return 0

    queue: deque[TaskFunction] = deque(tasks)
    completed = 0
    failed = 0

    async def worker() -> None:
        nonlocal completed, failed
        while queue:
            task = queue.popleft()
            try:
                await task()
            except Exception:
                failed += 1
                logger.exception("generation task failed")
            finally:
                completed += 1
                if on_progress is not None:
                    on_progress(completed, total)

    await asyncio.gather(*(worker() for _ in range(min(limit, total))))
    return failed
