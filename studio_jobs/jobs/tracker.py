from __future__ import annotations

from collections.abc import Iterable
import logging

from studio_jobs.core.errors import ItemFailure
from studio_jobs.jobs.tasks import ItemState

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[ItemState, frozenset[ItemState]] = {
    ItemState.PENDING: frozenset({ItemState.SUBMITTED, ItemState.FAILED}),
    ItemState.SUBMITTED: frozenset({ItemState.POLLING, ItemState.FAILED}),
    ItemState.POLLING: frozenset({ItemState.SUCCEEDED, ItemState.FAILED}),
    ItemState.SUCCEEDED: frozenset(),
    ItemState.FAILED: frozenset(),
}


class InvalidTransitionError(ValueError):
    pass


class BatchTracker:
    """Per-item lifecycle bookkeeping fed by ``GenerationRunner`` callbacks.

    Callbacks for keys that were never tracked or have been discarded are
    ignored, so a caller can drop items mid-batch and let late results fall on
    the floor. Terminal states only change through ``retry``.
    """

    def __init__(self, keys: Iterable[str] = ()) -> None:
        self._states: dict[str, ItemState] = {}
        self.results: dict[str, str] = {}
        self.failures: dict[str, ItemFailure] = {}
        self.track(keys)

    def track(self, keys: Iterable[str]) -> None:
        for key in keys:
            if key in self._states:
                raise ValueError(f"key already tracked: {key}")
            self._states[key] = ItemState.PENDING

    def discard(self, key: str) -> None:
        self._states.pop(key, None)
        self.results.pop(key, None)
        self.failures.pop(key, None)

    def state(self, key: str) -> ItemState | None:
        return self._states.get(key)

    def on_state_change(self, key: str, state: ItemState) -> bool:
        current = self._states.get(key)
        if current is None:
            logger.debug("ignoring %s for untracked key=%s", state.value, key)
            return False
        if current == state:
            return False
        if state not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(f"{key}: cannot move from {current.value} to {state.value}")
        self._states[key] = state
        return True

    def on_item_succeeded(self, key: str, result_url: str) -> None:
        if key not in self._states:
            logger.debug("ignoring late result for key=%s", key)
            return
        self.on_state_change(key, ItemState.SUCCEEDED)
        self.results[key] = result_url

    def on_item_failed(self, failure: ItemFailure) -> None:
        if failure.key not in self._states:
            logger.debug("ignoring late failure for key=%s", failure.key)
            return
        self.on_state_change(failure.key, ItemState.FAILED)
        self.failures[failure.key] = failure

    def retry(self, keys: Iterable[str] | None = None) -> list[str]:
        """Move failed items (all, or the given subset) back to pending."""
        selected = self.failed_keys() if keys is None else list(keys)
        for key in selected:
            if self._states.get(key) != ItemState.FAILED:
                raise InvalidTransitionError(f"{key}: only failed items can be retried")
            self._states[key] = ItemState.PENDING
            self.failures.pop(key, None)
        return selected

    def failed_keys(self) -> list[str]:
        return [key for key, state in self._states.items() if state == ItemState.FAILED]

    def keys_in(self, state: ItemState) -> list[str]:
        return [key for key, current in self._states.items() if current == state]

    @property
    def total(self) -> int:
        return len(self._states)

    @property
    def completed(self) -> int:
        return sum(1 for state in self._states.values() if state.terminal)

    @property
    def settled(self) -> bool:
        return self.completed == self.total
