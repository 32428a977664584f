from __future__ import annotations

from ..debug_log import replay_debug_log
from .player import ReplayPlayer
from .session import Recording, start_recording


def continue_recording(
    player: ReplayPlayer,
    frame: int | None = None,
    *,
    game_seed: int | None = None,
    checkpoint_interval: int | None = None,
) -> Recording:
    """Branch a loaded replay into a new live session.

    The player is moved to `frame` (default: the last recorded frame) and
    the provider's state there becomes the new session's frame-0 checkpoint.
    Frames of the new session count from 0 again. The original session is
    left untouched.
    """
    session = player.session
    target = session.last_frame if frame is None else int(frame)
    player.seek(target)
    seed = session.header.game_seed if game_seed is None else int(game_seed)
    recording = start_recording(
        seed,
        player.state_provider,
        checkpoint_interval=checkpoint_interval,
        tick_rate=session.header.tick_rate,
    )
    replay_debug_log(
        "continue",
        from_seed=session.header.game_seed,
        from_frame=player.current_frame,
        game_seed=seed,
    )
    return recording
