from __future__ import annotations

import warnings

from .. import __version__
from ..debug_log import replay_debug_log
from .errors import ReplayRecorderVersionWarning
from .types import Session


def check_recorder_version(session: Session, *, current_version: str | None = None) -> bool:
    """Warn when `session` was recorded by another storyreplay release.

    Recorded responses still replay verbatim; only the provider's reading of
    payloads and snapshots may differ. Returns True if a warning was issued.
    """
    current = __version__ if current_version is None else str(current_version)
    recorded = session.header.game_version
    if recorded == current:
        return False
    replay_debug_log("version_mismatch", recorded=recorded, current=current)
    warnings.warn(
        f"session recorded by storyreplay {recorded or '<unknown>'} is played by {current}; "
        "payloads reach the state provider unchanged",
        category=ReplayRecorderVersionWarning,
        stacklevel=3,
    )
    return True
