from __future__ import annotations

import datetime as dt
import os
from pathlib import Path
from threading import Lock

from .debug import debug_enabled
from .paths import default_logs_dir

_TRACE_LOCK = Lock()
_TRACE_PATH: Path | None = None


def _format_value(value: object) -> str:
    text = str(value)
    return text.replace("\n", "\\n")


def _format_fields(fields: dict[str, object]) -> str:
    parts: list[str] = []
    for key in sorted(fields):
        parts.append(f"{key}={_format_value(fields[key])}")
    return " ".join(parts)


def replay_debug_log_path() -> Path | None:
    with _TRACE_LOCK:
        return _TRACE_PATH


def init_replay_debug_log(
    *,
    role: str,
    base_dir: Path | None = None,
    game_seed: int | None = None,
) -> Path:
    """Start appending trace lines to a fresh per-process log file.

    `role` is a short label such as `record`, `play` or `cli`.
    """
    from . import __version__

    role_name = str(role).strip().lower() or "unknown"
    timestamp = dt.datetime.now(dt.timezone.utc).strftime("%Y%m%dT%H%M%S.%fZ")
    path = default_logs_dir(base_dir) / f"replay-{role_name}-pid{os.getpid()}-{timestamp}.log"
    path.parent.mkdir(parents=True, exist_ok=True)

    with _TRACE_LOCK:
        global _TRACE_PATH
        _TRACE_PATH = path

    replay_debug_log(
        "init",
        role=role_name,
        version=str(__version__),
        game_seed="" if game_seed is None else int(game_seed),
        pid=int(os.getpid()),
    )
    return path


def maybe_init_replay_debug_log(*, role: str, base_dir: Path | None = None) -> Path | None:
    if not debug_enabled():
        return None
    if replay_debug_log_path() is not None:
        return replay_debug_log_path()
    return init_replay_debug_log(role=role, base_dir=base_dir)


def replay_debug_log(event: str, **fields: object) -> None:
    timestamp = dt.datetime.now(dt.timezone.utc).isoformat(timespec="milliseconds")
    payload = _format_fields(fields)
    line = f"{timestamp} event={str(event).strip()}"
    if payload:
        line += f" {payload}"
    line += "\n"

    with _TRACE_LOCK:
        path = _TRACE_PATH
        if path is None:
            return
        with path.open("a", encoding="utf-8") as handle:
            handle.write(line)


def close_replay_debug_log() -> None:
    with _TRACE_LOCK:
        global _TRACE_PATH
        _TRACE_PATH = None


__all__ = [
    "close_replay_debug_log",
    "init_replay_debug_log",
    "maybe_init_replay_debug_log",
    "replay_debug_log",
    "replay_debug_log_path",
]
