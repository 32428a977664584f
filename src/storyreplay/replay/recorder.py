from __future__ import annotations

import datetime as dt
import warnings
from typing import TYPE_CHECKING

import msgspec

from ..debug_log import replay_debug_log
from .errors import LateGenerationCallWarning, MissingCheckpointError, OrderingViolationError, SealedRecorderError
from .types import (
    DEFAULT_TICK_RATE,
    FORMAT_VERSION,
    Checkpoint,
    Event,
    GenerationCallRecord,
    Payload,
    RecorderStats,
    Session,
    SessionHeader,
    _default_game_version,
    entry_order_key,
    excerpt_prompt,
)

if TYPE_CHECKING:
    from .seeds import SeedDeriver


def _utc_now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat(timespec="seconds")


def snapshot_size_bytes(snapshot: Payload) -> int:
    try:
        return len(msgspec.json.encode(snapshot))
    except (TypeError, msgspec.EncodeError):
        return 0


class EventRecorder:
    """Append-only buffers for one live session.

    Everything stays in memory; writing to disk is the codec's job and only
    happens on an explicit save. One recorder owns one session, and callers
    must not share an instance across threads.
    """

    def __init__(
        self,
        game_seed: int,
        *,
        tick_rate: int = DEFAULT_TICK_RATE,
        created_at: str | None = None,
        game_version: str | None = None,
    ) -> None:
        if int(tick_rate) <= 0:
            raise ValueError(f"tick_rate must be positive, got {tick_rate}")
        self._game_seed = int(game_seed)
        self._tick_rate = int(tick_rate)
        self._created_at = _utc_now_iso() if created_at is None else str(created_at)
        self._game_version = _default_game_version() if game_version is None else str(game_version)

        self._events: list[Event] = []
        self._generation_calls: list[GenerationCallRecord] = []
        self._checkpoints: list[Checkpoint] = []
        self._checkpoint_bytes = 0
        self._next_sequence = 0
        self._in_flight: dict[int, PendingGenerationCall] = {}
        self._max_frame = 0
        self._session: Session | None = None

    @property
    def game_seed(self) -> int:
        return self._game_seed

    @property
    def tick_rate(self) -> int:
        return self._tick_rate

    @property
    def sealed(self) -> bool:
        return self._session is not None

    @property
    def events(self) -> tuple[Event, ...]:
        return tuple(self._events)

    @property
    def generation_calls(self) -> tuple[GenerationCallRecord, ...]:
        return tuple(self._generation_calls)

    @property
    def checkpoints(self) -> tuple[Checkpoint, ...]:
        return tuple(self._checkpoints)

    @property
    def in_flight_calls(self) -> tuple[PendingGenerationCall, ...]:
        """Calls issued through `begin_generation_call` that have not completed yet."""
        return tuple(self._in_flight.values())

    @property
    def last_event_frame(self) -> int | None:
        if not self._events:
            return None
        return int(self._events[-1].frame)

    @property
    def last_checkpoint_frame(self) -> int | None:
        if not self._checkpoints:
            return None
        return int(self._checkpoints[-1].frame)

    @property
    def current_frame(self) -> int:
        return int(self._max_frame)

    def _ensure_writable(self, action: str) -> None:
        if self._session is not None:
            raise SealedRecorderError(f"cannot {action}: recorder is sealed")

    def _ensure_initial_checkpoint(self, action: str) -> None:
        if not self._checkpoints:
            raise MissingCheckpointError(f"cannot {action} before the frame-0 checkpoint is recorded", frame=0)

    def _observe_frame(self, frame: int) -> None:
        if frame > self._max_frame:
            self._max_frame = frame

    def reserve_sequence(self) -> int:
        self._ensure_writable("reserve a sequence number")
        sequence = self._next_sequence
        self._next_sequence += 1
        return sequence

    def append_event(self, frame: int, kind: str, entity_id: str, payload: Payload = None) -> Event:
        """Append an event or raise `OrderingViolationError` without mutating."""
        self._ensure_writable("log event")
        self._ensure_initial_checkpoint("log event")
        frame = int(frame)
        if frame < 0:
            raise OrderingViolationError(f"event frame must be non-negative, got {frame}")
        last_event = self.last_event_frame
        if last_event is not None and frame < last_event:
            raise OrderingViolationError(f"event frame {frame} precedes last event frame {last_event}")
        last_checkpoint = self.last_checkpoint_frame
        if last_checkpoint is not None and frame < last_checkpoint:
            raise OrderingViolationError(f"event frame {frame} precedes last checkpoint frame {last_checkpoint}")

        event = Event(
            frame=frame,
            kind=str(kind),
            entity_id="" if entity_id is None else str(entity_id),
            payload=payload,
            sequence=self.reserve_sequence(),
        )
        self._events.append(event)
        self._observe_frame(frame)
        return event

    def log_event(self, frame: int, kind: str, entity_id: str, payload: Payload = None) -> bool:
        """Append an event; returns False (and records nothing) on an ordering violation.

        Raises `SealedRecorderError` after `finalize()`.
        """
        try:
            self.append_event(frame, kind, entity_id, payload)
        except OrderingViolationError as exc:
            replay_debug_log("event_rejected", frame=frame, kind=kind, entity=entity_id, reason=exc)
            return False
        return True

    def log_generation_call(self, record: GenerationCallRecord) -> GenerationCallRecord:
        """Append a generation call record stamped at issue time.

        Records may arrive out of frame order (calls complete concurrently);
        `finalize()` restores `(frame, sequence)` order.
        """
        self._ensure_writable("log generation call")
        self._ensure_initial_checkpoint("log generation call")
        if int(record.frame) < 0:
            raise OrderingViolationError(f"generation call frame must be non-negative, got {record.frame}")
        if int(record.call_index) < 0:
            raise ValueError(f"call_index must be non-negative, got {record.call_index}")

        sequence = record.sequence
        if sequence is not None and int(sequence) >= self._next_sequence:
            raise OrderingViolationError(f"generation call sequence {sequence} was never reserved")
        # A checkpoint holds every entry stamped before it, so a record may
        # neither sort before the last checkpoint nor predate its stamp.
        last_checkpoint = self._checkpoints[-1]
        if int(record.frame) < last_checkpoint.frame or (
            sequence is not None and int(sequence) < last_checkpoint.sequence
        ):
            raise OrderingViolationError(
                f"generation call at frame {record.frame} (sequence={sequence}) "
                f"was stamped before the checkpoint at frame {last_checkpoint.frame}"
            )
        if sequence is None:
            sequence = self.reserve_sequence()
        stored = GenerationCallRecord(
            frame=int(record.frame),
            entity_id=str(record.entity_id),
            call_kind=str(record.call_kind),
            call_index=int(record.call_index),
            seed=int(record.seed) & 0xFFFF_FFFF,
            prompt_excerpt=str(record.prompt_excerpt),
            response_text=str(record.response_text),
            tokens_used=int(record.tokens_used),
            sequence=int(sequence),
        )
        self._generation_calls.append(stored)
        self._observe_frame(stored.frame)
        return stored

    def begin_generation_call(
        self,
        seeds: SeedDeriver,
        *,
        entity_id: str,
        call_kind: str,
        frame: int,
        prompt: str = "",
    ) -> PendingGenerationCall:
        """Reserve `call_index`, `seed` and `sequence` for a call about to be issued.

        The call stays in flight until `complete()`; no checkpoint can be
        recorded meanwhile.
        """
        self._ensure_writable("begin generation call")
        self._ensure_initial_checkpoint("begin generation call")
        last_checkpoint = self._checkpoints[-1].frame
        if int(frame) < last_checkpoint:
            raise OrderingViolationError(
                f"generation call frame {frame} precedes last checkpoint frame {last_checkpoint}"
            )
        reservation = seeds.reserve(entity_id, call_kind, frame)
        pending = PendingGenerationCall(
            self,
            frame=reservation.frame,
            entity_id=reservation.entity_id,
            call_kind=reservation.call_kind,
            call_index=reservation.call_index,
            seed=reservation.seed,
            sequence=self.reserve_sequence(),
            prompt_excerpt=excerpt_prompt(prompt),
        )
        self._in_flight[pending.sequence] = pending
        return pending

    def _settle(self, pending: PendingGenerationCall) -> None:
        self._in_flight.pop(pending.sequence, None)

    def drop_in_flight_calls(self) -> int:
        """Give up on every call still in flight; their results will be discarded.

        Each dropped call warns with `LateGenerationCallWarning`. Returns the
        number of calls dropped.
        """
        dropped = list(self._in_flight.values())
        self._in_flight.clear()
        for pending in dropped:
            pending._drop()
        return len(dropped)

    def record_checkpoint(self, frame: int, snapshot: Payload) -> Checkpoint | None:
        """Append a checkpoint. Returns None if one already exists at `frame`.

        The very first checkpoint must be at frame 0. Raises
        `OrderingViolationError` while generation calls are in flight, since the
        snapshot could not include their results.
        """
        self._ensure_writable("record checkpoint")
        frame = int(frame)
        last = self.last_checkpoint_frame
        if last is None and frame != 0:
            raise MissingCheckpointError(f"first checkpoint must be at frame 0, got {frame}", frame=frame)
        if last is not None:
            if frame == last:
                return None
            if frame < last:
                raise OrderingViolationError(f"checkpoint frame {frame} precedes last checkpoint frame {last}")
        if frame < self._max_frame:
            raise OrderingViolationError(f"checkpoint frame {frame} precedes recorded frame {self._max_frame}")
        if self._in_flight:
            raise OrderingViolationError(
                f"cannot checkpoint frame {frame}: {len(self._in_flight)} generation call(s) still in flight"
            )

        checkpoint = Checkpoint(
            frame=frame,
            snapshot=snapshot,
            sequence=self.reserve_sequence(),
            size_bytes=snapshot_size_bytes(snapshot),
        )
        self._checkpoints.append(checkpoint)
        self._checkpoint_bytes += int(checkpoint.size_bytes)
        self._observe_frame(frame)
        return checkpoint

    def get_stats(self) -> RecorderStats:
        return RecorderStats(
            event_count=len(self._events),
            generation_call_count=len(self._generation_calls),
            checkpoint_count=len(self._checkpoints),
            checkpoint_bytes=int(self._checkpoint_bytes),
        )

    def finalize(self, *, final_frame: int | None = None) -> Session:
        """Seal the recorder and return the immutable session.

        Calling it again returns the same session.
        """
        if self._session is not None:
            return self._session
        self._ensure_initial_checkpoint("finalize")
        if final_frame is not None:
            self._observe_frame(int(final_frame))

        generation_calls = sorted(self._generation_calls, key=entry_order_key)
        header = SessionHeader(
            format_version=FORMAT_VERSION,
            game_seed=self._game_seed,
            frame_count=int(self._max_frame),
            event_count=len(self._events),
            generation_call_count=len(generation_calls),
            checkpoint_count=len(self._checkpoints),
            created_at=self._created_at,
            tick_rate=self._tick_rate,
            game_version=self._game_version,
        )
        self._session = Session(
            header=header,
            events=tuple(self._events),
            generation_calls=tuple(generation_calls),
            checkpoints=tuple(self._checkpoints),
        )
        replay_debug_log(
            "seal",
            game_seed=self._game_seed,
            frames=header.frame_count,
            events=header.event_count,
            calls=header.generation_call_count,
            checkpoints=header.checkpoint_count,
        )
        return self._session


class PendingGenerationCall:
    """A generation request whose identity was fixed when it was issued."""

    __slots__ = (
        "_recorder",
        "frame",
        "entity_id",
        "call_kind",
        "call_index",
        "seed",
        "sequence",
        "prompt_excerpt",
        "_record",
        "_done",
        "_dropped",
    )

    def __init__(
        self,
        recorder: EventRecorder,
        *,
        frame: int,
        entity_id: str,
        call_kind: str,
        call_index: int,
        seed: int,
        sequence: int,
        prompt_excerpt: str,
    ) -> None:
        self._recorder = recorder
        self.frame = int(frame)
        self.entity_id = str(entity_id)
        self.call_kind = str(call_kind)
        self.call_index = int(call_index)
        self.seed = int(seed)
        self.sequence = int(sequence)
        self.prompt_excerpt = str(prompt_excerpt)
        self._record: GenerationCallRecord | None = None
        self._done = False
        self._dropped = False

    @property
    def done(self) -> bool:
        return self._done

    @property
    def record(self) -> GenerationCallRecord | None:
        return self._record

    def _drop(self) -> None:
        self._dropped = True
        warnings.warn(
            f"Generation call for {self.entity_id!r}/{self.call_kind!r} at frame {self.frame} "
            f"(call_index={self.call_index}) was still in flight when the recording closed; its result will be dropped.",
            category=LateGenerationCallWarning,
            stacklevel=3,
        )
        replay_debug_log(
            "drop_generation_call",
            entity=self.entity_id,
            kind=self.call_kind,
            frame=self.frame,
            call_index=self.call_index,
        )

    def cancel(self) -> None:
        """Give up on the call without logging it, e.g. when the backend failed."""
        if self._done:
            return
        self._done = True
        self._recorder._settle(self)
        replay_debug_log(
            "cancel_generation_call",
            entity=self.entity_id,
            kind=self.call_kind,
            frame=self.frame,
            call_index=self.call_index,
        )

    def complete(self, response_text: str, tokens_used: int = 0) -> bool:
        """Log the finished call. Returns False when the recorder was sealed first."""
        if self._done:
            raise ValueError(
                f"generation call already completed: {self.entity_id}/{self.call_kind} "
                f"frame={self.frame} index={self.call_index}"
            )
        self._done = True
        self._recorder._settle(self)
        if self._dropped:
            return False
        if self._recorder.sealed:
            warnings.warn(
                f"Generation result for {self.entity_id!r}/{self.call_kind!r} at frame {self.frame} "
                f"(call_index={self.call_index}) arrived after the recorder was sealed; dropped.",
                category=LateGenerationCallWarning,
                stacklevel=2,
            )
            replay_debug_log(
                "late_generation_call",
                entity=self.entity_id,
                kind=self.call_kind,
                frame=self.frame,
                call_index=self.call_index,
            )
            return False
        self._record = self._recorder.log_generation_call(
            GenerationCallRecord(
                frame=self.frame,
                entity_id=self.entity_id,
                call_kind=self.call_kind,
                call_index=self.call_index,
                seed=self.seed,
                prompt_excerpt=self.prompt_excerpt,
                response_text=str(response_text),
                tokens_used=int(tokens_used),
                sequence=self.sequence,
            )
        )
        return True
