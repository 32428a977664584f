from __future__ import annotations

import time
from pathlib import Path

import msgspec
import typer

from .debug import set_debug_enabled
from .debug_log import maybe_init_replay_debug_log
from .replay.codec import decompress_session_bytes, inspect_session_file, load_session_file
from .replay.errors import (
    CheckpointRestoreError,
    CorruptFileError,
    HeaderMismatchError,
    MissingCheckpointError,
    OrderingViolationError,
    ReplayError,
    VersionMismatchError,
)
from .replay.headless import TraceStateProvider
from .replay.player import ReplayPlayer
from .replay.seeds import derive_seed
from .replay.types import Event, GenerationCallRecord, Session, summarize_session

app = typer.Typer(add_completion=False)
replay_app = typer.Typer(add_completion=False)
seed_app = typer.Typer(add_completion=False)
app.add_typer(replay_app, name="replay")
app.add_typer(seed_app, name="seed")

_ERROR_LABELS: tuple[tuple[type[ReplayError], str], ...] = (
    (VersionMismatchError, "unsupported format version"),
    (HeaderMismatchError, "header mismatch"),
    (OrderingViolationError, "ordering violation"),
    (CorruptFileError, "corrupt replay file"),
    (MissingCheckpointError, "missing checkpoint"),
    (CheckpointRestoreError, "checkpoint restore failed"),
)


def _error_label(exc: ReplayError) -> str:
    for error_type, label in _ERROR_LABELS:
        if isinstance(exc, error_type):
            return label
    return "replay error"


def _fail(path: Path, exc: Exception) -> typer.Exit:
    if isinstance(exc, ReplayError):
        typer.echo(f"{_error_label(exc)}: {path}: {exc}", err=True)
    else:
        typer.echo(f"cannot read {path}: {exc}", err=True)
    return typer.Exit(code=1)


def _load(path: Path) -> Session:
    try:
        return load_session_file(path)
    except (OSError, ReplayError) as exc:
        raise _fail(path, exc) from exc


def _format_entry(entry: Event | GenerationCallRecord, *, tick_rate: int) -> str:
    seconds = float(entry.frame) / float(tick_rate)
    if isinstance(entry, Event):
        who = f" [{entry.entity_id}]" if entry.entity_id else ""
        return f"[{seconds:7.1f}s f{entry.frame}] {entry.kind}{who}"
    text = entry.response_text.replace("\n", " ")
    if len(text) > 80:
        text = text[:80] + "..."
    return (
        f"[{seconds:7.1f}s f{entry.frame}] {entry.call_kind} <{entry.entity_id}> "
        f"seed={entry.seed} idx={entry.call_index}: {text}"
    )


@app.callback()
def main_callback(
    debug: bool = typer.Option(False, "--debug", help="write a trace log under the runtime dir"),
    base_dir: Path | None = typer.Option(
        None,
        "--base-dir",
        "--runtime-dir",
        help="base path for runtime files (default: per-user data dir; override with STORYREPLAY_RUNTIME_DIR)",
    ),
) -> None:
    if debug:
        set_debug_enabled(True)
    maybe_init_replay_debug_log(role="cli", base_dir=base_dir)


@replay_app.command("info")
def cmd_replay_info(
    replay_file: Path = typer.Argument(..., help="replay file path (.replay.json.gz)"),
) -> None:
    """Print header fields, counts and compression stats."""
    try:
        info = inspect_session_file(replay_file)
    except (OSError, ReplayError) as exc:
        raise _fail(replay_file, exc) from exc
    summary = summarize_session(_load(replay_file))
    header = info.header
    typer.echo(f"Format:       v{header.format_version}")
    typer.echo(f"Created:      {header.created_at}")
    typer.echo(f"Version:      {header.game_version}")
    typer.echo(f"Game seed:    {header.game_seed}")
    typer.echo(f"Frames:       {header.frame_count} ({summary.duration_seconds:.1f}s at {header.tick_rate} fps)")
    typer.echo(f"Events:       {header.event_count}")
    typer.echo(f"Gen calls:    {header.generation_call_count} ({summary.tokens_used} tokens)")
    typer.echo(f"Checkpoints:  {header.checkpoint_count}")
    typer.echo(f"Entities:     {', '.join(summary.entity_ids) or '-'}")
    typer.echo(
        f"File size:    {info.compressed_bytes} bytes "
        f"({info.uncompressed_bytes} uncompressed, {info.compression_ratio * 100.0:.1f}% saved)"
    )


@replay_app.command("validate")
def cmd_replay_validate(
    replay_files: list[Path] = typer.Argument(..., help="replay files to check"),
) -> None:
    """Fully decode each file and check every invariant; exit 1 if any fails."""
    failed = 0
    for path in replay_files:
        try:
            session = load_session_file(path)
        except (OSError, ReplayError) as exc:
            _fail(path, exc)
            failed += 1
            continue
        typer.echo(
            f"ok: {path} frames={session.header.frame_count} events={len(session.events)} "
            f"calls={len(session.generation_calls)} checkpoints={len(session.checkpoints)}"
        )
    if failed:
        raise typer.Exit(code=1)


@replay_app.command("dump")
def cmd_replay_dump(
    replay_file: Path = typer.Argument(..., help="replay file path (.replay.json.gz)"),
    output: Path | None = typer.Option(None, "--output", "-o", help="write JSON here instead of stdout"),
) -> None:
    """Decompress a replay into indented JSON for inspection (no validation)."""
    try:
        raw = decompress_session_bytes(replay_file.read_bytes())
        pretty = msgspec.json.format(raw, indent=2)
    except (OSError, ReplayError, msgspec.DecodeError) as exc:
        raise _fail(replay_file, exc) from exc
    if output is None:
        typer.echo(pretty.decode("utf-8"))
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(pretty + b"\n")
    typer.echo(f"wrote {output}")


@replay_app.command("play")
def cmd_replay_play(
    replay_file: Path = typer.Argument(..., help="replay file path (.replay.json.gz)"),
    start: int = typer.Option(0, help="seek to this frame before playing"),
    until: int | None = typer.Option(None, help="stop at this frame (default: end of recording)"),
    step: int = typer.Option(1, min=1, help="frames advanced per step"),
    speed: float = typer.Option(0.0, help="playback speed multiplier; 0 plays as fast as possible"),
) -> None:
    """Play a replay headlessly, printing each delivered event and generation call."""
    session = _load(replay_file)
    tick_rate = int(session.header.tick_rate)
    seeking = True

    def _print_entry(entry: Event | GenerationCallRecord) -> None:
        if not seeking:
            typer.echo(_format_entry(entry, tick_rate=tick_rate))

    provider = TraceStateProvider(on_entry=_print_entry)
    player = ReplayPlayer(provider)
    stop = session.last_frame if until is None else min(int(until), session.last_frame)
    frame_interval = 0.0 if speed <= 0.0 else 1.0 / float(tick_rate) / float(speed)

    try:
        player.load(session, seek_to=None)
        player.seek(max(0, int(start)))
        seeking = False
        while player.current_frame < stop:
            before = player.current_frame
            player.step(min(int(step), stop - before))
            if frame_interval > 0.0:
                time.sleep(frame_interval * float(player.current_frame - before))
    except ReplayError as exc:
        raise _fail(replay_file, exc) from exc
    typer.echo(f"reached frame {player.current_frame} of {session.last_frame}; {len(provider.applied)} entries applied")


@seed_app.command("derive")
def cmd_seed_derive(
    game_seed: int = typer.Option(..., "--game-seed", help="session game seed"),
    entity: str = typer.Option(..., "--entity", help="entity id"),
    kind: str = typer.Option(..., "--kind", help="call kind, e.g. dialogue"),
    frame: int = typer.Option(..., "--frame", min=0, help="frame the call was issued on"),
    index: int = typer.Option(0, "--index", min=0, help="call index within the frame"),
) -> None:
    """Print the seed a generation call would use."""
    typer.echo(str(derive_seed(game_seed, entity, kind, frame, index)))


def main(argv: list[str] | None = None) -> None:
    app(prog_name="storyreplay", args=argv)


if __name__ == "__main__":
    main()
