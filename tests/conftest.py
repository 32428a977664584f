from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path

import pytest


def pytest_configure(config: pytest.Config) -> None:
    # Ensure the local `src/` tree wins over any other editable install that may exist
    # (e.g. a different git worktree pointing at the same project).
    src_dir = Path(__file__).resolve().parents[1] / "src"
    src_str = str(src_dir)
    if src_str not in sys.path:
        sys.path.insert(0, src_str)


@pytest.fixture(autouse=True)
def _isolated_runtime(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    from storyreplay.debug import set_debug_enabled
    from storyreplay.debug_log import close_replay_debug_log

    monkeypatch.setenv("STORYREPLAY_RUNTIME_DIR", str(tmp_path / "runtime"))
    monkeypatch.delenv("STORYREPLAY_CHECKPOINT_INTERVAL", raising=False)
    monkeypatch.delenv("STORYREPLAY_DEBUG", raising=False)
    set_debug_enabled(None)
    close_replay_debug_log()
    yield
    set_debug_enabled(None)
    close_replay_debug_log()
