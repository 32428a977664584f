from __future__ import annotations

import os
from typing import Protocol, runtime_checkable

from ..debug_log import replay_debug_log
from .recorder import EventRecorder
from .types import Checkpoint, Payload

DEFAULT_CHECKPOINT_INTERVAL = 3600


@runtime_checkable
class SnapshotSource(Protocol):
    def snapshot(self) -> Payload: ...


def resolve_checkpoint_interval(default_interval: int = DEFAULT_CHECKPOINT_INTERVAL) -> int:
    interval = max(1, int(default_interval))
    raw = os.environ.get("STORYREPLAY_CHECKPOINT_INTERVAL")
    if raw is None:
        return interval
    try:
        parsed = int(raw)
    except ValueError:
        return interval
    if parsed <= 0:
        return interval
    return parsed


class CheckpointScheduler:
    """Decides when to snapshot the game state into a recorder.

    Construction records the frame-0 checkpoint synchronously, so a recorder
    driven by a scheduler never accepts an event before its initial state.
    """

    def __init__(
        self,
        recorder: EventRecorder,
        state_provider: SnapshotSource,
        *,
        interval: int | None = None,
    ) -> None:
        if interval is None:
            interval = resolve_checkpoint_interval()
        if int(interval) < 1:
            raise ValueError(f"checkpoint interval must be at least 1, got {interval}")
        self._recorder = recorder
        self._state_provider = state_provider
        self._interval = int(interval)

        if recorder.last_checkpoint_frame is None:
            self._take(0, state_provider, reason="initial")

    @property
    def interval(self) -> int:
        return self._interval

    @property
    def last_checkpoint_frame(self) -> int:
        frame = self._recorder.last_checkpoint_frame
        return 0 if frame is None else int(frame)

    def due(self, frame: int) -> bool:
        return int(frame) - self.last_checkpoint_frame >= self._interval

    def _take(self, frame: int, state_provider: SnapshotSource, *, reason: str) -> Checkpoint | None:
        checkpoint = self._recorder.record_checkpoint(frame, state_provider.snapshot())
        if checkpoint is not None:
            replay_debug_log(
                "checkpoint",
                frame=checkpoint.frame,
                sequence=checkpoint.sequence,
                size_bytes=checkpoint.size_bytes,
                reason=reason,
            )
        return checkpoint

    def maybe_checkpoint(
        self,
        frame: int,
        state_provider: SnapshotSource | None = None,
        *,
        force: bool = False,
    ) -> Checkpoint | None:
        """Take a checkpoint at `frame` if the interval elapsed (or `force`).

        At most one checkpoint exists per frame; frames at or before the last
        checkpoint are ignored. Call it after the frame's events were logged.
        An interval checkpoint is put off while generation calls are in flight
        and taken on the first due frame after they complete.
        """
        frame = int(frame)
        if frame <= self.last_checkpoint_frame:
            return None
        if not force and not self.due(frame):
            return None
        in_flight = len(self._recorder.in_flight_calls)
        if in_flight and not force:
            replay_debug_log("checkpoint_deferred", frame=frame, in_flight=in_flight)
            return None
        provider = self._state_provider if state_provider is None else state_provider
        return self._take(frame, provider, reason="forced" if force else "interval")
