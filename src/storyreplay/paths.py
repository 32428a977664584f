from __future__ import annotations

import datetime as dt
import os
from pathlib import Path

from platformdirs import PlatformDirs

APP_NAME = "storyreplay"
REPLAY_SUFFIX = ".replay.json.gz"


def _dirs() -> PlatformDirs:
    return PlatformDirs(appname=APP_NAME, appauthor=False)


def default_runtime_dir() -> Path:
    override = os.environ.get("STORYREPLAY_RUNTIME_DIR")
    if override:
        return Path(override).expanduser().resolve()
    return Path(_dirs().user_data_path)


def default_replays_dir(base_dir: Path | None = None) -> Path:
    base = default_runtime_dir() if base_dir is None else Path(base_dir)
    return base / "replays"


def default_logs_dir(base_dir: Path | None = None) -> Path:
    base = default_runtime_dir() if base_dir is None else Path(base_dir)
    return base / "logs" / "replay"


def default_replay_path(
    game_seed: int,
    *,
    base_dir: Path | None = None,
    now: dt.datetime | None = None,
) -> Path:
    """Return `<replays>/session-<UTC timestamp>-<seed>.replay.json.gz`."""
    stamp = (now or dt.datetime.now(dt.timezone.utc)).strftime("%Y%m%dT%H%M%SZ")
    return default_replays_dir(base_dir) / f"session-{stamp}-{int(game_seed)}{REPLAY_SUFFIX}"

