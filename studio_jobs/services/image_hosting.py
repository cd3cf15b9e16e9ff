from __future__ import annotations

import asyncio
import logging

from studio_jobs.core.errors import GenerationError
from studio_jobs.services.generation_client import GenerationClient

logger = logging.getLogger(__name__)


class ImageHostingClient:
    """Turns data URLs into publicly fetchable URLs for job submission."""

    def __init__(self, upload_url: str, *, client: GenerationClient) -> None:
        self.upload_url = upload_url
        self._client = client

    async def upload(self, image: str, filename: str | None = None) -> str:
        if image.startswith(("http://", "https://")):
            return image

        payload: dict[str, str] = {"image_url": image}
        if filename:
            payload["filename"] = filename
        body = await self._client.post_json(self.upload_url, payload)

        if not isinstance(body, dict):
            raise GenerationError("Upload response was not a JSON object")
        if body.get("error"):
            raise GenerationError(f"Upload failed: {body['error']}")
        public_url = body.get("image_url") or body.get("file_url")
        if not isinstance(public_url, str):
            raise GenerationError("Upload response did not contain a valid URL")
        logger.debug("hosted image filename=%s", filename)
        return public_url


class HostedImageCache:
    """Memoizes hosted URLs per item so repeat generations skip the upload.

    A changed source image for the same key triggers a fresh upload; concurrent
    requests for the same key and source share one upload.
    """

    def __init__(self, hosting: ImageHostingClient) -> None:
        self._hosting = hosting
        self._urls: dict[str, tuple[str, str]] = {}
        self._inflight: dict[str, tuple[str, asyncio.Future[str]]] = {}

    async def url_for(self, key: str, image: str, filename: str | None = None) -> str:
        cached = self._urls.get(key)
        if cached is not None and cached[0] == image:
            return cached[1]

        pending = self._inflight.get(key)
        if pending is not None and pending[0] == image:
            return await asyncio.shield(pending[1])

        upload = asyncio.ensure_future(self._hosting.upload(image, filename or key))
        self._inflight[key] = (image, upload)
        try:
            url = await asyncio.shield(upload)
        finally:
            if self._inflight.get(key, (None, None))[1] is upload:
                del self._inflight[key]
        self._urls[key] = (image, url)
        return url

    def invalidate(self, key: str) -> None:
        self._urls.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._urls
