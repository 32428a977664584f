from __future__ import annotations

import pytest

from storyreplay.replay import (
    DEFAULT_CHECKPOINT_INTERVAL,
    CheckpointScheduler,
    EventRecorder,
    SeedDeriver,
    TraceStateProvider,
    resolve_checkpoint_interval,
)


class _CountingProvider:
    def __init__(self) -> None:
        self.calls = 0

    def snapshot(self) -> dict[str, int]:
        self.calls += 1
        return {"n": self.calls}


def test_scheduler_takes_frame_zero_checkpoint_on_creation() -> None:
    rec = EventRecorder(1)
    provider = _CountingProvider()
    CheckpointScheduler(rec, provider, interval=100)

    assert [cp.frame for cp in rec.checkpoints] == [0]
    assert rec.checkpoints[0].snapshot == {"n": 1}
    assert rec.log_event(0, "spawn", "npc1")


def test_maybe_checkpoint_is_idempotent_per_frame() -> None:
    rec = EventRecorder(1)
    provider = TraceStateProvider({"hp": 3})
    scheduler = CheckpointScheduler(rec, provider, interval=10)

    first = scheduler.maybe_checkpoint(10, provider)
    second = scheduler.maybe_checkpoint(10, provider)

    assert first is not None
    assert second is None
    assert [cp.frame for cp in rec.checkpoints] == [0, 10]


def test_maybe_checkpoint_respects_interval() -> None:
    rec = EventRecorder(1)
    provider = _CountingProvider()
    scheduler = CheckpointScheduler(rec, provider, interval=50)

    assert scheduler.maybe_checkpoint(49) is None
    assert scheduler.maybe_checkpoint(50) is not None
    assert scheduler.maybe_checkpoint(99) is None
    assert scheduler.maybe_checkpoint(120) is not None
    assert [cp.frame for cp in rec.checkpoints] == [0, 50, 120]
    assert provider.calls == 3


def test_forced_checkpoint_ignores_interval() -> None:
    rec = EventRecorder(1)
    scheduler = CheckpointScheduler(rec, _CountingProvider(), interval=3600)

    assert scheduler.maybe_checkpoint(7) is None
    checkpoint = scheduler.maybe_checkpoint(7, force=True)
    assert checkpoint is not None
    assert checkpoint.frame == 7
    assert scheduler.maybe_checkpoint(7, force=True) is None


def test_scheduler_ignores_frames_before_last_checkpoint() -> None:
    rec = EventRecorder(1)
    scheduler = CheckpointScheduler(rec, _CountingProvider(), interval=5)
    scheduler.maybe_checkpoint(20)
    assert scheduler.maybe_checkpoint(10, force=True) is None
    assert scheduler.last_checkpoint_frame == 20


def test_scheduler_rejects_bad_interval() -> None:
    with pytest.raises(ValueError, match="at least 1"):
        CheckpointScheduler(EventRecorder(1), _CountingProvider(), interval=0)


def test_resolve_checkpoint_interval_env(monkeypatch: pytest.MonkeyPatch) -> None:
    assert resolve_checkpoint_interval() == DEFAULT_CHECKPOINT_INTERVAL

    monkeypatch.setenv("STORYREPLAY_CHECKPOINT_INTERVAL", "600")
    assert resolve_checkpoint_interval() == 600
    assert CheckpointScheduler(EventRecorder(1), _CountingProvider()).interval == 600

    monkeypatch.setenv("STORYREPLAY_CHECKPOINT_INTERVAL", "nope")
    assert resolve_checkpoint_interval(120) == 120

    monkeypatch.setenv("STORYREPLAY_CHECKPOINT_INTERVAL", "0")
    assert resolve_checkpoint_interval(120) == 120


def test_interval_checkpoint_waits_for_calls_in_flight() -> None:
    rec = EventRecorder(1)
    scheduler = CheckpointScheduler(rec, _CountingProvider(), interval=10)
    pending = rec.begin_generation_call(SeedDeriver(1), entity_id="npc1", call_kind="dialogue", frame=4)

    assert scheduler.maybe_checkpoint(10) is None
    assert scheduler.maybe_checkpoint(11) is None
    pending.complete("done")
    checkpoint = scheduler.maybe_checkpoint(12)
    assert checkpoint is not None
    assert [cp.frame for cp in rec.checkpoints] == [0, 12]
