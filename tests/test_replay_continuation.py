from __future__ import annotations

from storyreplay.replay import (
    ReplayPlayer,
    TraceStateProvider,
    continue_recording,
    dump_session,
    start_recording,
)


def _recorded_session():
    provider = TraceStateProvider({"scene": "market"})
    recording = start_recording(31337, provider, checkpoint_interval=20)
    for frame in range(0, 60, 5):
        recording.log_event(frame, "haggle", "merchant", {"price": 100 - frame})
        provider.apply(recording.recorder.events[-1])
        recording.end_frame(frame)
    return recording.seal(final_frame=60)


def test_continuation_starts_from_player_state() -> None:
    session = _recorded_session()
    original_bytes = dump_session(session)

    player = ReplayPlayer(TraceStateProvider())
    player.load(session)
    expected = player.seek(32)
    player.seek(0)

    recording = continue_recording(player, 32, checkpoint_interval=10)
    assert player.current_frame == 32
    assert recording.game_seed == 31337
    assert recording.scheduler.interval == 10
    initial = recording.recorder.checkpoints
    assert [cp.frame for cp in initial] == [0]
    assert initial[0].snapshot == expected

    # The branch counts frames from zero again and records independently.
    assert recording.log_event(0, "leave", "merchant")
    assert recording.log_event(3, "arrive", "guard")
    branch = recording.seal(final_frame=5)
    assert branch.header.frame_count == 5
    assert [event.kind for event in branch.events] == ["leave", "arrive"]

    assert dump_session(session) == original_bytes


def test_continuation_defaults_to_last_frame_and_can_reseed() -> None:
    session = _recorded_session()
    player = ReplayPlayer(TraceStateProvider())
    player.load(session)

    recording = continue_recording(player, game_seed=7)
    assert player.current_frame == session.last_frame == 60
    assert recording.game_seed == 7
    assert recording.recorder.checkpoints[0].snapshot == session.checkpoints[-1].snapshot


def test_replaying_a_branch_restores_the_continuation_point() -> None:
    session = _recorded_session()
    player = ReplayPlayer(TraceStateProvider())
    player.load(session)
    recording = continue_recording(player, 41)
    start_state = player.current_state()

    pending = recording.begin_generation_call(entity_id="merchant", call_kind="dialogue", frame=2)
    pending.complete("Final offer.", 2)
    assert pending.record is not None
    player.state_provider.apply_generation_call(pending.record)
    branch = recording.seal(final_frame=2)

    replayer = ReplayPlayer(TraceStateProvider())
    replayer.load(branch)
    assert replayer.current_state() == start_state
    final = replayer.seek(2)
    assert final["responses"] == {"merchant": "Final offer."}
    assert final == player.state_provider.snapshot()
