"""Failure taxonomy shared by the limiter, poller and task runner.

Every exception raised while processing a single item ends up wrapped in an
``ItemFailure`` before it reaches the caller's failure callback, so callers can
correlate failures to items through ``ItemFailure.key`` instead of parsing text.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import re

import httpx

SAFETY_MARKERS = ("SAFETY", "safety", "policy violation")
QUOTA_MARKERS = ("429", "RESOURCE_EXHAUSTED", "quota")

SAFETY_MESSAGE = "Generation failed due to safety filters. Try another image or prompt."
QUOTA_MESSAGE = "Your API key has exceeded its quota."
NETWORK_MESSAGE = "Network error. Please check your connection."

_EMBEDDED_JSON = re.compile(r"{.*}", re.DOTALL)


class GenerationError(Exception):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class TaskValidationError(GenerationError):
    """Task descriptor is missing a required field; nothing was sent."""


class TransientStatusError(GenerationError):
    """A request failed in a way that says nothing about the remote job."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class JobFailedError(GenerationError):
    """The backend reported that the job will never produce a result."""

    def __init__(self, message: str, *, payload: object | None = None) -> None:
        super().__init__(message)
        self.payload = payload
        self.is_safety_filter = is_safety_rejection(message)
        self.is_quota_exceeded = any(marker in message for marker in QUOTA_MARKERS)


class JobTimeoutError(GenerationError):
    def __init__(self, message: str, *, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class JobCancelledError(GenerationError):
    pass


@dataclass(frozen=True, slots=True)
class ItemFailure:
    key: str
    reason: str
    error: BaseException | None = None

    @property
    def message(self) -> str:
        return f"Failed on {self.key}: {self.reason}"

    @property
    def is_safety_filter(self) -> bool:
        return self.reason == SAFETY_MESSAGE

    def __str__(self) -> str:
        return self.message


def is_safety_rejection(reason: str) -> bool:
    return any(marker in reason for marker in SAFETY_MARKERS)


def describe_failure(exc: BaseException) -> str:
    """Render a user-presentable reason for a failed item."""
    if isinstance(exc, httpx.TransportError):
        return NETWORK_MESSAGE

    message = str(exc) or exc.__class__.__name__
    embedded = _unwrap_embedded_error(message)
    if embedded is not None:
        message = embedded.split(". For more information")[0]

    if any(marker in message for marker in QUOTA_MARKERS):
        return QUOTA_MESSAGE
    if is_safety_rejection(message):
        return SAFETY_MESSAGE
    return message


def to_item_failure(key: str, exc: BaseException) -> ItemFailure:
    return ItemFailure(key=key, reason=describe_failure(exc), error=exc)


def _unwrap_embedded_error(message: str) -> str | None:
    match = _EMBEDDED_JSON.search(message)
    if match is None:
        return None
    try:
        decoded = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    if not isinstance(decoded, dict):
        return None

    nested = decoded.get("error")
    if isinstance(nested, dict) and isinstance(nested.get("message"), str):
        return nested["message"]
    if isinstance(decoded.get("Error"), str):
        return decoded["Error"]
    return "An unknown API error occurred."
