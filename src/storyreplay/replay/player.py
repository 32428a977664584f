from __future__ import annotations

import bisect
import heapq
from collections.abc import Iterator
from pathlib import Path
from typing import Protocol, runtime_checkable

from ..debug_log import replay_debug_log
from .codec import load_session_file
from .errors import CheckpointRestoreError, MissingCheckpointError, PlayerNotLoadedError, ReplayError
from .types import Checkpoint, Event, GenerationCallRecord, Payload, Session, entry_order_key
from .versioning import check_recorder_version

ReplayEntry = Event | GenerationCallRecord


@runtime_checkable
class StateProvider(Protocol):
    """Game-side collaborator that owns and interprets all game state."""

    def snapshot(self) -> Payload: ...

    def restore(self, snapshot: Payload) -> None: ...

    def apply(self, event: Event) -> None: ...

    def apply_generation_call(self, record: GenerationCallRecord) -> None: ...


class ReplayPlayer:
    """Seek/step over a sealed session, driving a `StateProvider`.

    The player keeps only a position and the immutable session; all game
    state lives in the provider. It owns no timer: callers pace playback by
    calling `step`/`seek`, and pausing is simply not calling them.
    """

    def __init__(self, state_provider: StateProvider) -> None:
        self._provider = state_provider
        self._session: Session | None = None
        self._current_frame = 0
        self._checkpoint_frames: list[int] = []
        self._event_keys: list[tuple[int, int]] = []
        self._call_keys: list[tuple[int, int]] = []

    @property
    def state_provider(self) -> StateProvider:
        return self._provider

    @property
    def loaded(self) -> bool:
        return self._session is not None

    def _require_session(self) -> Session:
        if self._session is None:
            raise PlayerNotLoadedError("no session loaded")
        return self._session

    @property
    def session(self) -> Session:
        return self._require_session()

    @property
    def current_frame(self) -> int:
        self._require_session()
        return int(self._current_frame)

    @property
    def last_frame(self) -> int:
        return self._require_session().last_frame

    @property
    def at_end(self) -> bool:
        return self.current_frame >= self.last_frame

    def load(self, session: Session, *, seek_to: int | None = 0) -> None:
        """Take ownership of `session`. By default the provider is moved to frame 0."""
        check_recorder_version(session)
        self._session = session
        self._current_frame = 0
        self._checkpoint_frames = [int(checkpoint.frame) for checkpoint in session.checkpoints]
        self._event_keys = [entry_order_key(event) for event in session.events]
        self._call_keys = [entry_order_key(call) for call in session.generation_calls]
        replay_debug_log(
            "player_load",
            game_seed=session.header.game_seed,
            frames=session.last_frame,
            events=len(session.events),
            calls=len(session.generation_calls),
            checkpoints=len(session.checkpoints),
        )
        if seek_to is not None:
            try:
                self.seek(int(seek_to))
            except ReplayError:
                self.unload()
                raise

    def load_file(self, path: Path, *, seek_to: int | None = 0) -> Session:
        session = load_session_file(Path(path))
        self.load(session, seek_to=seek_to)
        return session

    def unload(self) -> None:
        self._session = None
        self._current_frame = 0
        self._checkpoint_frames = []
        self._event_keys = []
        self._call_keys = []

    def checkpoint_for(self, frame: int) -> Checkpoint:
        """Return the latest checkpoint at or before `frame`."""
        session = self._require_session()
        idx = bisect.bisect_right(self._checkpoint_frames, int(frame)) - 1
        if idx < 0:
            raise MissingCheckpointError(f"no checkpoint at or before frame {int(frame)}", frame=int(frame))
        return session.checkpoints[idx]

    def _entries_between(self, after: tuple[int, float], last_frame: int) -> Iterator[ReplayEntry]:
        """Events and calls with key > `after` and frame <= `last_frame`, merged by `(frame, sequence)`."""
        session = self._require_session()
        stop = (int(last_frame), float("inf"))
        ev_lo = bisect.bisect_right(self._event_keys, after)
        ev_hi = bisect.bisect_right(self._event_keys, stop)
        call_lo = bisect.bisect_right(self._call_keys, after)
        call_hi = bisect.bisect_right(self._call_keys, stop)
        events = session.events[ev_lo:ev_hi]
        calls = session.generation_calls[call_lo:call_hi]
        return heapq.merge(events, calls, key=entry_order_key)

    def _deliver(self, entry: ReplayEntry) -> None:
        if isinstance(entry, Event):
            self._provider.apply(entry)
        else:
            self._provider.apply_generation_call(entry)

    def _clamp(self, frame: int) -> int:
        return min(int(frame), self.last_frame)

    def seek(self, target_frame: int) -> Payload:
        """Rebuild state at `target_frame` from the nearest checkpoint.

        Targets past the end clamp to the last recorded frame. Returns the
        provider's state afterwards.
        """
        self._require_session()
        if int(target_frame) < 0:
            raise ValueError(f"target frame must be non-negative, got {target_frame}")
        target = self._clamp(target_frame)
        checkpoint = self.checkpoint_for(target)
        if checkpoint.snapshot is None:
            raise CheckpointRestoreError(checkpoint.frame, "snapshot is missing")
        try:
            self._provider.restore(checkpoint.snapshot)
        except Exception as exc:
            raise CheckpointRestoreError(checkpoint.frame, f"{type(exc).__name__}: {exc}") from exc

        applied = 0
        for entry in self._entries_between((int(checkpoint.frame), int(checkpoint.sequence)), target):
            self._deliver(entry)
            applied += 1
        self._current_frame = target
        replay_debug_log("seek", target=target, checkpoint=checkpoint.frame, applied=applied)
        return self.current_state()

    def step(self, n: int = 1) -> Payload:
        """Advance `n` frames by applying only the entries in between.

        Produces the same state as `seek(current_frame + n)`. Negative `n`
        falls back to a seek.
        """
        self._require_session()
        n = int(n)
        if n < 0:
            return self.seek(max(0, self._current_frame + n))
        target = self._clamp(self._current_frame + n)
        if target <= self._current_frame:
            return self.current_state()
        applied = 0
        for entry in self._entries_between((self._current_frame, float("inf")), target):
            self._deliver(entry)
            applied += 1
        self._current_frame = target
        replay_debug_log("step", frame=target, applied=applied)
        return self.current_state()

    def iter_steps(self, n: int = 1) -> Iterator[int]:
        """Step `n` frames at a time until the end, yielding each reached frame."""
        self._require_session()
        if int(n) < 1:
            raise ValueError(f"step size must be positive, got {n}")
        while not self.at_end:
            self.step(n)
            yield self._current_frame

    def current_state(self) -> Payload:
        self._require_session()
        return self._provider.snapshot()
