"""Per-image results store driven by explicit state transitions."""

import threading
from typing import Callable, Optional

from autoalt.models import ImageRecord, ProcessingState

Listener = Callable[[ImageRecord, Optional[ProcessingState]], None]

ALLOWED_TRANSITIONS = {
    ProcessingState.QUEUED: {ProcessingState.HASHING, ProcessingState.ERROR},
    ProcessingState.HASHING: {ProcessingState.CLASSIFYING, ProcessingState.ERROR},
    ProcessingState.CLASSIFYING: {ProcessingState.DONE, ProcessingState.ERROR},
    ProcessingState.DONE: set(),
    ProcessingState.ERROR: set(),
}

_UPDATABLE_FIELDS = {"descriptor", "environment", "alt_text", "error", "members"}


class InvalidTransitionError(ValueError):
    pass


class ResultsStore:
    """
    Records keyed by image id, kept in insertion order.

    Workers finish in any order; readers always see rows in the order they were
    added. Listeners get ``(record, previous_state)`` after every change, with
    ``previous_state=None`` for a newly added record.
    """

    def __init__(self):
        self._records: dict[str, ImageRecord] = {}
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _notify(self, record: ImageRecord, previous: Optional[ProcessingState]) -> None:
        for listener in list(self._listeners):
            listener(record, previous)

    def add(self, record: ImageRecord) -> ImageRecord:
        with self._lock:
            if record.image_id in self._records:
                raise KeyError(f"Duplicate image id: {record.image_id}")
            self._records[record.image_id] = record
        self._notify(record, None)
        return record

    def get(self, image_id: str) -> ImageRecord:
        return self._records[image_id]

    def transition(self, image_id: str, state: ProcessingState, **fields) -> ImageRecord:
        """Move one record to *state*, updating result fields in the same step."""
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise TypeError(f"Unknown record fields: {', '.join(sorted(unknown))}")
        with self._lock:
            record = self._records[image_id]
            previous = record.state
            if state not in ALLOWED_TRANSITIONS[previous]:
                raise InvalidTransitionError(
                    f"{image_id}: cannot move from {previous.value} to {state.value}"
                )
            record.state = state
            for key, value in fields.items():
                setattr(record, key, value)
        self._notify(record, previous)
        return record

    def records(self) -> list[ImageRecord]:
        with self._lock:
            return list(self._records.values())

    def counts(self) -> dict[str, int]:
        counts = {state.value: 0 for state in ProcessingState}
        for record in self.records():
            counts[record.state.value] += 1
        return counts

    def __len__(self) -> int:
        return len(self._records)
