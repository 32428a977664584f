from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ..debug_log import replay_debug_log
from ..paths import default_replay_path
from .checkpoints import CheckpointScheduler, SnapshotSource
from .codec import dump_session_file
from .recorder import EventRecorder, PendingGenerationCall
from .seeds import SeedDeriver
from .types import DEFAULT_TICK_RATE, Checkpoint, GenerationCallRecord, Payload, Session


@dataclass(slots=True)
class Recording:
    """One live session: seed derivation, recorder and checkpoint policy wired together.

    Created by `start_recording`; owned by whoever started the session.
    """

    seeds: SeedDeriver
    recorder: EventRecorder
    scheduler: CheckpointScheduler

    @property
    def game_seed(self) -> int:
        return self.recorder.game_seed

    @property
    def sealed(self) -> bool:
        return self.recorder.sealed

    def log_event(self, frame: int, kind: str, entity_id: str, payload: Payload = None) -> bool:
        return self.recorder.log_event(frame, kind, entity_id, payload)

    def begin_generation_call(
        self,
        *,
        entity_id: str,
        call_kind: str,
        frame: int,
        prompt: str = "",
    ) -> PendingGenerationCall:
        return self.recorder.begin_generation_call(
            self.seeds,
            entity_id=entity_id,
            call_kind=call_kind,
            frame=frame,
            prompt=prompt,
        )

    def log_generation_call(self, record: GenerationCallRecord) -> GenerationCallRecord:
        return self.recorder.log_generation_call(record)

    def end_frame(self, frame: int, state_provider: SnapshotSource | None = None) -> Checkpoint | None:
        """Hook for the end of every game tick: takes a checkpoint when one is due."""
        return self.scheduler.maybe_checkpoint(frame, state_provider)

    def seal(self, *, final_frame: int | None = None, checkpoint: bool = True) -> Session:
        """Finalize the session, forcing a closing checkpoint at `final_frame` first.

        Generation calls still in flight are dropped (with a warning) before
        the closing checkpoint, since it could not include their results.
        """
        if self.recorder.sealed:
            return self.recorder.finalize()
        if final_frame is None:
            final_frame = self.recorder.current_frame
        if checkpoint:
            self.recorder.drop_in_flight_calls()
            self.scheduler.maybe_checkpoint(int(final_frame), force=True)
        return self.recorder.finalize(final_frame=int(final_frame))

    def save(self, path: Path | None = None, *, final_frame: int | None = None) -> tuple[Path, Session]:
        session = self.seal(final_frame=final_frame)
        if path is None:
            path = default_replay_path(session.header.game_seed)
        path = Path(path)
        dump_session_file(path, session)
        return path, session


def start_recording(
    game_seed: int,
    state_provider: SnapshotSource,
    *,
    checkpoint_interval: int | None = None,
    tick_rate: int = DEFAULT_TICK_RATE,
) -> Recording:
    """Create a recorder and capture the frame-0 checkpoint from `state_provider`."""
    recorder = EventRecorder(game_seed, tick_rate=tick_rate)
    scheduler = CheckpointScheduler(recorder, state_provider, interval=checkpoint_interval)
    replay_debug_log(
        "session_start",
        game_seed=int(game_seed),
        tick_rate=int(tick_rate),
        checkpoint_interval=scheduler.interval,
    )
    return Recording(seeds=SeedDeriver(game_seed), recorder=recorder, scheduler=scheduler)
