from __future__ import annotations

import gzip
import json
import warnings

import pytest

from storyreplay.replay import (
    EventRecorder,
    GenerationCallRecord,
    LateGenerationCallWarning,
    MissingCheckpointError,
    OrderingViolationError,
    SealedRecorderError,
    SeedDeriver,
    dump_session,
)


def _recorder(game_seed: int = 1) -> EventRecorder:
    rec = EventRecorder(game_seed, created_at="2026-01-01T00:00:00+00:00")
    rec.record_checkpoint(0, {"hp": 10})
    return rec


def _call(frame: int, entity_id: str = "npc1", *, call_index: int = 0, seed: int = 1) -> GenerationCallRecord:
    return GenerationCallRecord(
        frame=frame,
        entity_id=entity_id,
        call_kind="dialogue",
        call_index=call_index,
        seed=seed,
        prompt_excerpt="Greet the player",
        response_text="Well met, traveler.",
        tokens_used=12,
    )


def test_log_event_assigns_increasing_sequence() -> None:
    rec = _recorder()
    assert rec.log_event(1, "move", "npc1", {"x": 1})
    assert rec.log_event(1, "talk", "npc2", None)
    assert rec.log_event(3, "move", "npc1", {"x": 2})

    sequences = [event.sequence for event in rec.events]
    assert sequences == sorted(sequences)
    assert len(set(sequences)) == 3
    assert rec.current_frame == 3


def test_log_event_rejects_frame_regression_without_mutation() -> None:
    rec = _recorder()
    for frame in (5, 5, 7):
        assert rec.log_event(frame, "tick", "npc1")
    before = rec.events

    assert rec.log_event(6, "tick", "npc1") is False
    assert rec.events == before
    assert [event.frame for event in rec.events] == [5, 5, 7]


def test_append_event_raises_ordering_violation() -> None:
    rec = _recorder()
    rec.append_event(4, "tick", "npc1")
    with pytest.raises(OrderingViolationError, match="precedes last event frame 4"):
        rec.append_event(3, "tick", "npc1")
    with pytest.raises(OrderingViolationError, match="non-negative"):
        rec.append_event(-1, "tick", "npc1")


def test_events_before_last_checkpoint_are_rejected() -> None:
    rec = _recorder()
    rec.record_checkpoint(10, {"hp": 9})
    assert rec.log_event(9, "tick", "npc1") is False
    assert rec.log_event(10, "tick", "npc1") is True


def test_events_require_initial_checkpoint() -> None:
    rec = EventRecorder(1)
    with pytest.raises(MissingCheckpointError):
        rec.log_event(0, "tick", "npc1")
    with pytest.raises(MissingCheckpointError, match="frame 0"):
        rec.record_checkpoint(5, {})


def test_record_checkpoint_is_idempotent_per_frame() -> None:
    rec = _recorder()
    first = rec.record_checkpoint(10, {"hp": 1})
    second = rec.record_checkpoint(10, {"hp": 2})

    assert first is not None
    assert second is None
    assert [cp.frame for cp in rec.checkpoints] == [0, 10]
    with pytest.raises(OrderingViolationError):
        rec.record_checkpoint(5, {})


def test_checkpoint_size_is_tracked() -> None:
    rec = _recorder()
    stats = rec.get_stats()
    assert stats.checkpoint_count == 1
    assert stats.checkpoint_bytes == len(b'{"hp":10}')


def test_generation_calls_are_sorted_on_finalize() -> None:
    rec = _recorder()
    seeds = SeedDeriver(1)
    early = rec.begin_generation_call(seeds, entity_id="npc1", call_kind="dialogue", frame=2, prompt="hi")
    late = rec.begin_generation_call(seeds, entity_id="npc2", call_kind="dialogue", frame=3, prompt="yo")

    # Completion order is the reverse of issue order.
    assert late.complete("second", 5)
    assert early.complete("first", 4)
    assert [call.frame for call in rec.generation_calls] == [3, 2]

    session = rec.finalize()
    assert [call.response_text for call in session.generation_calls] == ["first", "second"]
    assert [call.frame for call in session.generation_calls] == [2, 3]


def test_log_generation_call_assigns_sequence() -> None:
    rec = _recorder()
    stored = rec.log_generation_call(_call(1))
    assert stored.sequence is not None
    assert rec.get_stats().generation_call_count == 1


def test_log_generation_call_rejects_unreserved_sequence() -> None:
    rec = _recorder()
    record = GenerationCallRecord(
        frame=1,
        entity_id="npc1",
        call_kind="dialogue",
        call_index=0,
        seed=1,
        prompt_excerpt="",
        response_text="",
        sequence=999,
    )
    with pytest.raises(OrderingViolationError, match="never reserved"):
        rec.log_generation_call(record)


def test_concrete_session_counts_and_sealed_rejection() -> None:
    rec = EventRecorder(99999)
    rec.record_checkpoint(0, {"turn": 0})
    for frame in range(1, 8):
        assert rec.log_event(frame, "dialogue", "npc1", {"line": frame})
    rec.log_generation_call(_call(2, call_index=0))
    rec.log_generation_call(_call(5, "npc2", call_index=0))

    session = rec.finalize()
    header = json.loads(gzip.decompress(dump_session(session)))["header"]
    assert header["gameSeed"] == 99999
    assert header["eventCount"] == 7
    assert header["generationCallCount"] == 2
    assert header["checkpointCount"] == 1

    with pytest.raises(SealedRecorderError):
        rec.log_event(8, "dialogue", "npc1", {})
    stats = rec.get_stats()
    assert (stats.event_count, stats.generation_call_count, stats.checkpoint_count) == (7, 2, 1)


def test_every_append_is_rejected_after_finalize() -> None:
    rec = _recorder()
    rec.log_event(1, "tick", "npc1")
    session = rec.finalize()

    with pytest.raises(SealedRecorderError):
        rec.log_event(2, "tick", "npc1")
    with pytest.raises(SealedRecorderError):
        rec.log_generation_call(_call(2))
    with pytest.raises(SealedRecorderError):
        rec.record_checkpoint(5, {})
    with pytest.raises(SealedRecorderError):
        rec.begin_generation_call(SeedDeriver(1), entity_id="npc1", call_kind="dialogue", frame=2)

    assert rec.finalize() is session
    assert len(session.events) == 1


def test_late_generation_result_is_dropped_with_warning() -> None:
    rec = _recorder()
    pending = rec.begin_generation_call(SeedDeriver(1), entity_id="npc1", call_kind="dialogue", frame=1)
    session = rec.finalize()

    with pytest.warns(LateGenerationCallWarning, match="after the recorder was sealed"):
        assert pending.complete("too late", 3) is False
    assert session.generation_calls == ()
    assert rec.get_stats().generation_call_count == 0


def test_pending_call_cannot_complete_twice() -> None:
    rec = _recorder()
    pending = rec.begin_generation_call(SeedDeriver(1), entity_id="npc1", call_kind="dialogue", frame=1)
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        assert pending.complete("hello")
    with pytest.raises(ValueError, match="already completed"):
        pending.complete("again")


def test_finalize_records_final_frame_and_header() -> None:
    rec = _recorder(game_seed=5)
    rec.log_event(3, "tick", "npc1")
    session = rec.finalize(final_frame=40)

    assert session.header.frame_count == 40
    assert session.header.game_seed == 5
    assert session.header.created_at == "2026-01-01T00:00:00+00:00"
    assert session.header.event_count == 1
    assert session.last_frame == 40


def test_prompt_excerpt_is_truncated() -> None:
    rec = _recorder()
    pending = rec.begin_generation_call(
        SeedDeriver(1),
        entity_id="npc1",
        call_kind="dialogue",
        frame=1,
        prompt="x" * 500,
    )
    assert pending.prompt_excerpt == "x" * 200 + "..."


def test_checkpoint_is_refused_while_a_call_is_in_flight() -> None:
    rec = _recorder()
    pending = rec.begin_generation_call(SeedDeriver(1), entity_id="npc1", call_kind="dialogue", frame=5)
    assert rec.in_flight_calls == (pending,)

    with pytest.raises(OrderingViolationError, match="1 generation call"):
        rec.record_checkpoint(10, {"hp": 9})
    assert [cp.frame for cp in rec.checkpoints] == [0]

    assert pending.complete("hello", 2)
    assert rec.in_flight_calls == ()
    checkpoint = rec.record_checkpoint(10, {"hp": 9})
    assert checkpoint is not None
    assert pending.sequence < checkpoint.sequence


def test_checkpoint_cannot_precede_recorded_frames() -> None:
    rec = _recorder()
    rec.log_event(8, "tick", "npc1")
    with pytest.raises(OrderingViolationError, match="precedes recorded frame 8"):
        rec.record_checkpoint(6, {"hp": 9})
    assert rec.record_checkpoint(8, {"hp": 9}) is not None


def test_calls_stamped_before_the_last_checkpoint_are_rejected() -> None:
    rec = _recorder()
    seeds = SeedDeriver(1)
    stamp = rec.reserve_sequence()
    rec.record_checkpoint(10, {"hp": 9})

    with pytest.raises(OrderingViolationError, match="precedes last checkpoint frame 10"):
        rec.begin_generation_call(seeds, entity_id="npc1", call_kind="dialogue", frame=9)
    with pytest.raises(OrderingViolationError, match="stamped before the checkpoint at frame 10"):
        rec.log_generation_call(_call(9))

    early = GenerationCallRecord(
        frame=12,
        entity_id="npc1",
        call_kind="dialogue",
        call_index=0,
        seed=1,
        prompt_excerpt="",
        response_text="",
        sequence=stamp,
    )
    with pytest.raises(OrderingViolationError, match="stamped before the checkpoint at frame 10"):
        rec.log_generation_call(early)
    assert rec.generation_calls == ()


def test_dropped_call_warns_once_and_never_logs() -> None:
    rec = _recorder()
    pending = rec.begin_generation_call(SeedDeriver(1), entity_id="npc1", call_kind="dialogue", frame=3)

    with pytest.warns(LateGenerationCallWarning, match="still in flight"):
        assert rec.drop_in_flight_calls() == 1
    assert rec.in_flight_calls == ()
    assert rec.record_checkpoint(4, {"hp": 8}) is not None

    with warnings.catch_warnings():
        warnings.simplefilter("error")
        assert pending.complete("too late") is False
    assert rec.generation_calls == ()
