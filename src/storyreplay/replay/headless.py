from __future__ import annotations

import copy
from collections.abc import Callable
from typing import Any

from .types import Event, GenerationCallRecord, Payload

EntryCallback = Callable[[Event | GenerationCallRecord], None]


def describe_entry(entry: Event | GenerationCallRecord) -> list[Any]:
    if isinstance(entry, Event):
        return ["event", int(entry.frame), int(entry.sequence), entry.kind, entry.entity_id]
    return [
        "call",
        int(entry.frame),
        -1 if entry.sequence is None else int(entry.sequence),
        entry.call_kind,
        entry.entity_id,
        int(entry.call_index),
    ]


class TraceStateProvider:
    """Reference `StateProvider` for headless runs and tests.

    Its state is a JSON object: `{"data": <opaque>, "applied": [<entry descriptors>],
    "responses": {<entity_id>: <last response text>}}`. It is enough to prove
    that playback delivers the same entries in the same order as live play.
    """

    def __init__(self, data: Payload = None, *, on_entry: EntryCallback | None = None) -> None:
        self._state: dict[str, Any] = {"data": copy.deepcopy(data), "applied": [], "responses": {}}
        self._on_entry = on_entry

    @property
    def applied(self) -> list[list[Any]]:
        return self._state["applied"]

    @property
    def responses(self) -> dict[str, str]:
        return self._state["responses"]

    def snapshot(self) -> Payload:
        return copy.deepcopy(self._state)

    def restore(self, snapshot: Payload) -> None:
        if not isinstance(snapshot, dict):
            raise ValueError(f"trace snapshot must be an object, got {type(snapshot).__name__}")
        applied = snapshot.get("applied")
        responses = snapshot.get("responses")
        if not isinstance(applied, list) or not isinstance(responses, dict):
            raise ValueError("trace snapshot must contain 'applied' list and 'responses' object")
        self._state = copy.deepcopy(snapshot)

    def apply(self, event: Event) -> None:
        self._state["applied"].append(describe_entry(event))
        if self._on_entry is not None:
            self._on_entry(event)

    def apply_generation_call(self, record: GenerationCallRecord) -> None:
        self._state["applied"].append(describe_entry(record))
        self._state["responses"][record.entity_id] = record.response_text
        if self._on_entry is not None:
            self._on_entry(record)
