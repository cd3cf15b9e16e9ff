from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Union

from studio_jobs.core.errors import TaskValidationError


class ItemState(str, Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (ItemState.SUCCEEDED, ItemState.FAILED)


@dataclass(frozen=True, kw_only=True)
class GenerationTask(ABC):
    """Fields shared by every generation job; ``key`` correlates callbacks to items."""

    kind: ClassVar[str] = "generation"

    key: str
    prompt: str
    aspect_ratio: str | None = None
    resolution: str | None = None

    def validate(self) -> None:
        if not self.prompt or not self.prompt.strip():
            raise TaskValidationError("Video prompt is missing.")

    @abstractmethod
    def to_payload(self, defaults: dict[str, str]) -> dict[str, Any]:
        """Build the submission body, filling unset options from ``defaults``."""


@dataclass(frozen=True, kw_only=True)
class ImageToVideoTask(GenerationTask):
    kind: ClassVar[str] = "image_to_video"

    start_image_url: str
    duration: str | None = None

    def validate(self) -> None:
        super().validate()
        if not self.start_image_url:
            raise TaskValidationError("Start image URL is missing.")

    def to_payload(self, defaults: dict[str, str]) -> dict[str, Any]:
        return {
            "prompt": self.prompt,
            "image_url": self.start_image_url,
            "aspect_ratio": self.aspect_ratio or defaults["aspect_ratio"],
            "resolution": self.resolution or defaults["resolution"],
            "duration": self.duration or defaults["duration"],
        }


@dataclass(frozen=True, kw_only=True)
class TransitionVideoTask(ImageToVideoTask):
    """Video morphing from a start frame to an end frame (timeline pairs)."""

    kind: ClassVar[str] = "transition_video"

    end_image_url: str

    def validate(self) -> None:
        super().validate()
        if not self.end_image_url:
            raise TaskValidationError("End image URL is missing.")

    def to_payload(self, defaults: dict[str, str]) -> dict[str, Any]:
        payload = super().to_payload(defaults)
        payload["end_image_url"] = self.end_image_url
        return payload


@dataclass(frozen=True, kw_only=True)
class ImageEditTask(GenerationTask):
    kind: ClassVar[str] = "image_edit"

    image_urls: tuple[str, ...] = field(default_factory=tuple)
    num_images: int = 1
    output_format: str = "jpeg"

    def validate(self) -> None:
        if not self.prompt or not self.prompt.strip():
            raise TaskValidationError("Image prompt is missing.")
        if not self.image_urls:
            raise TaskValidationError("At least one source image URL is required.")

    def to_payload(self, defaults: dict[str, str]) -> dict[str, Any]:
        return {
            "prompt": self.prompt,
            "image_urls": list(self.image_urls),
            "aspect_ratio": self.aspect_ratio or defaults["aspect_ratio"],
            "num_images": self.num_images,
            "output_format": self.output_format,
            "resolution": self.resolution or "1K",
        }


VideoTask = Union[ImageToVideoTask, TransitionVideoTask]
