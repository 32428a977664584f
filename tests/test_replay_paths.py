from __future__ import annotations

import datetime as dt
from pathlib import Path

import pytest

from storyreplay.paths import default_logs_dir, default_replay_path, default_replays_dir, default_runtime_dir


def test_runtime_dir_honors_env_override(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("STORYREPLAY_RUNTIME_DIR", str(tmp_path / "custom"))
    assert default_runtime_dir() == (tmp_path / "custom").resolve()
    assert default_replays_dir() == (tmp_path / "custom").resolve() / "replays"
    assert default_logs_dir() == (tmp_path / "custom").resolve() / "logs" / "replay"


def test_runtime_dir_falls_back_to_user_data_dir(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("STORYREPLAY_RUNTIME_DIR", raising=False)
    assert "storyreplay" in str(default_runtime_dir())


def test_default_replay_path_is_timestamped(tmp_path: Path) -> None:
    now = dt.datetime(2026, 5, 4, 3, 2, 1, tzinfo=dt.timezone.utc)
    path = default_replay_path(99999, base_dir=tmp_path, now=now)
    assert path == tmp_path / "replays" / "session-20260504T030201Z-99999.replay.json.gz"
