from __future__ import annotations

import asyncio

import pytest

from studio_jobs.jobs.limiter import run_with_concurrency


def test_run_with_concurrency_never_exceeds_limit() -> None:
    in_flight = 0
    peak = 0
    delays = [0.01, 0.002, 0.005, 0.0, 0.008, 0.001, 0.003, 0.0, 0.006, 0.004]

    def make_task(delay: float):
        async def task() -> None:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(delay)
            in_flight -= 1

        return task

    failed = asyncio.run(run_with_concurrency([make_task(d) for d in delays], 3))

    assert failed == 0
    assert peak == 3
    assert in_flight == 0


def test_run_with_concurrency_starts_everything_when_batch_fits_limit() -> None:
    started: list[int] = []

    async def run() -> int:
        gate = asyncio.Event()

        def make_task(index: int):
            async def task() -> None:
                started.append(index)
                await gate.wait()

            return task

        runner = asyncio.create_task(run_with_concurrency([make_task(i) for i in range(4)], 8))
        for _ in range(5):
            await asyncio.sleep(0)
        assert started == [0, 1, 2, 3]
        gate.set()
        return await runner

    assert asyncio.run(run()) == 0


def test_run_with_concurrency_keeps_going_after_a_task_fails() -> None:
    finished: list[int] = []

    def make_task(index: int):
        async def task() -> None:
            await asyncio.sleep(0)
            if index == 1:
                raise RuntimeError("boom")
            finished.append(index)

        return task

    failed = asyncio.run(run_with_concurrency([make_task(i) for i in range(5)], 2))

    assert failed == 1
    assert sorted(finished) == [0, 2, 3, 4]


def test_run_with_concurrency_reports_progress_once_per_task() -> None:
    progress: list[tuple[int, int]] = []

    def make_task(index: int):
        async def task() -> None:
            await asyncio.sleep(0.001 * (5 - index))
            if index % 2:
                raise ValueError(index)

        return task

    asyncio.run(
        run_with_concurrency(
            [make_task(i) for i in range(5)],
            2,
            on_progress=lambda completed, total: progress.append((completed, total)),
        )
    )

    assert progress == [(1, 5), (2, 5), (3, 5), (4, 5), (5, 5)]


def test_run_with_concurrency_admits_in_sequence_order() -> None:
    admitted: list[int] = []

    def make_task(index: int):
        async def task() -> None:
            admitted.append(index)
            await asyncio.sleep(0)

        return task

    asyncio.run(run_with_concurrency([make_task(i) for i in range(6)], 2))
    assert admitted == [0, 1, 2, 3, 4, 5]


def test_run_with_concurrency_handles_empty_batch() -> None:
    progress: list[tuple[int, int]] = []
    failed = asyncio.run(run_with_concurrency([], 3, on_progress=lambda c, t: progress.append((c, t))))
    assert failed == 0
    assert progress == []


def test_run_with_concurrency_rejects_non_positive_limit() -> None:
    with pytest.raises(ValueError):
        asyncio.run(run_with_concurrency([], 0))
