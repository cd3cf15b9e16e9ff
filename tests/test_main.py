from __future__ import annotations

import asyncio
import json

import httpx

from studio_jobs.core.config import Settings
from studio_jobs.core.errors import ItemFailure
from studio_jobs.jobs.tasks import ImageToVideoTask
from studio_jobs.jobs.tracker import BatchTracker
from studio_jobs.main import generation_session, regenerate_item, run_video_batch


def settings() -> Settings:
    return Settings(
        video_generation_url="https://gen.test/video",
        video_status_url="https://gen.test/video/status",
        image_upload_url="https://gen.test/upload",
        poll_interval_seconds=0,
        max_poll_attempts=3,
        otel_enabled=False,
    )


def gateway(request: httpx.Request) -> httpx.Response:
    body = json.loads(request.content)
    if request.url.path == "/upload":
        return httpx.Response(200, json={"image_url": "https://bucket.test/" + body["filename"]})
    if request.url.path == "/video/status":
        if body["id"] == "req-bad":
            return httpx.Response(200, json={"status": "failed"})
        return httpx.Response(200, json={"videos": [f"https://cdn.test/{body['id']}.mp4"]})
    request_id = "req-bad" if body["prompt"] == "bad" else "req-" + body["image_url"].rsplit("/", 1)[-1]
    return httpx.Response(200, json={"request_id": request_id})


def test_run_video_batch_feeds_tracker_and_supports_retry_of_failed_subset() -> None:
    tasks = [
        ImageToVideoTask(key="a", prompt="smile", start_image_url="https://img.test/a.png"),
        ImageToVideoTask(key="b", prompt="bad", start_image_url="https://img.test/b.png"),
    ]
    tracker = BatchTracker(task.key for task in tasks)
    transport = httpx.MockTransport(gateway)

    summary = asyncio.run(
        run_video_batch(
            tasks,
            tracker.on_item_succeeded,
            tracker.on_item_failed,
            on_state_change=tracker.on_state_change,
            settings=settings(),
            transport=transport,
        )
    )

    assert summary.succeeded == 1 and summary.failed == 1
    assert tracker.results == {"a": "https://cdn.test/req-a.png.mp4"}
    assert tracker.failures["b"].message == "Failed on b: Video generation failed with status: failed"

    retry_keys = tracker.retry()
    fixed = [ImageToVideoTask(key="b", prompt="wave", start_image_url="https://img.test/b.png")]
    assert retry_keys == ["b"]

    asyncio.run(
        run_video_batch(
            fixed,
            tracker.on_item_succeeded,
            tracker.on_item_failed,
            on_state_change=tracker.on_state_change,
            settings=settings(),
            transport=transport,
        )
    )

    assert tracker.settled
    assert tracker.failed_keys() == []
    assert tracker.results["b"] == "https://cdn.test/req-b.png.mp4"


def test_regenerate_item_returns_single_result() -> None:
    task = ImageToVideoTask(key="a", prompt="smile", start_image_url="https://img.test/a.png")

    url = asyncio.run(regenerate_item(task, settings=settings(), transport=httpx.MockTransport(gateway)))

    assert url == "https://cdn.test/req-a.png.mp4"


def test_generation_session_hosts_images_before_generating() -> None:
    failures: list[ItemFailure] = []
    results: dict[str, str] = {}

    async def run() -> None:
        async with generation_session(settings(), transport=httpx.MockTransport(gateway)) as (runner, images):
            start = await images.url_for("face.png", "data:image/png;base64,AAAA")
            task = ImageToVideoTask(key="face.png", prompt="smile", start_image_url=start)
            await runner.generate_all([task], results.__setitem__, failures.append)

    asyncio.run(run())

    assert failures == []
    assert results == {"face.png": "https://cdn.test/req-face.png.mp4"}
