from __future__ import annotations

import bisect
import gzip
import zlib
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import msgspec

from ..debug_log import replay_debug_log
from .errors import (
    CorruptFileError,
    HeaderMismatchError,
    OrderingViolationError,
    ReplayCodecError,
    ReplayError,
    VersionMismatchError,
)
from .schema import CheckpointRow, EventRow, GenerationCallRow, HeaderRow, SessionDocument
from .types import (
    SUPPORTED_FORMAT_VERSIONS,
    Checkpoint,
    Event,
    GenerationCallRecord,
    Session,
    SessionHeader,
    entry_order_key,
)

_GZIP_MAGIC = b"\x1f\x8b"
_U32_MAX = 0xFFFF_FFFF


def _is_gzip(data: bytes) -> bool:
    return data.startswith(_GZIP_MAGIC)


def session_to_document(session: Session) -> SessionDocument:
    header = session.header
    return SessionDocument(
        header=HeaderRow(
            format_version=int(header.format_version),
            game_seed=int(header.game_seed),
            frame_count=int(header.frame_count),
            event_count=int(header.event_count),
            generation_call_count=int(header.generation_call_count),
            checkpoint_count=int(header.checkpoint_count),
            created_at=str(header.created_at),
            tick_rate=int(header.tick_rate),
            game_version=str(header.game_version),
        ),
        events=[
            EventRow(
                frame=int(event.frame),
                kind=str(event.kind),
                entity_id=str(event.entity_id),
                sequence=int(event.sequence),
                payload=event.payload,
            )
            for event in session.events
        ],
        generation_calls=[
            GenerationCallRow(
                frame=int(call.frame),
                entity_id=str(call.entity_id),
                call_kind=str(call.call_kind),
                call_index=int(call.call_index),
                seed=int(call.seed),
                sequence=-1 if call.sequence is None else int(call.sequence),
                prompt_excerpt=str(call.prompt_excerpt),
                response_text=str(call.response_text),
                tokens_used=int(call.tokens_used),
            )
            for call in session.generation_calls
        ],
        checkpoints=[
            CheckpointRow(
                frame=int(checkpoint.frame),
                sequence=int(checkpoint.sequence),
                snapshot=checkpoint.snapshot,
                size_bytes=int(checkpoint.size_bytes),
            )
            for checkpoint in session.checkpoints
        ],
    )


def _check_count(name: str, declared: int, actual: int) -> None:
    if int(declared) != int(actual):
        raise HeaderMismatchError(f"header {name}={int(declared)} but file holds {int(actual)}")


def _check_entry_order(name: str, keys: Sequence[tuple[int, int]]) -> None:
    prev: tuple[int, int] | None = None
    for idx, key in enumerate(keys):
        frame, sequence = key
        if frame < 0:
            raise OrderingViolationError(f"{name}[{idx}] has negative frame {frame}")
        if sequence < 0:
            raise OrderingViolationError(f"{name}[{idx}] has negative sequence {sequence}")
        if prev is not None and key < prev:
            raise OrderingViolationError(
                f"{name}[{idx}] at (frame={frame}, sequence={sequence}) "
                f"precedes (frame={prev[0]}, sequence={prev[1]})"
            )
        prev = key


def _check_checkpoint_stamps(doc: SessionDocument) -> None:
    """Every entry must sit on the same side of each checkpoint by `(frame, sequence)` and by stamp.

    A seek restores a checkpoint and applies only what sorts after it, so an
    entry stamped after a checkpoint but sorted before it would be lost.
    """
    keys = [(row.frame, row.sequence) for row in doc.checkpoints]
    for name, rows in (("events", doc.events), ("generationCalls", doc.generation_calls)):
        for idx, row in enumerate(rows):
            pos = bisect.bisect_left(keys, (row.frame, row.sequence))
            if pos > 0 and row.sequence < doc.checkpoints[pos - 1].sequence:
                raise OrderingViolationError(
                    f"{name}[{idx}] at frame {row.frame} was stamped before "
                    f"the checkpoint at frame {doc.checkpoints[pos - 1].frame}"
                )
            if pos < len(keys) and row.sequence > doc.checkpoints[pos].sequence:
                raise OrderingViolationError(
                    f"{name}[{idx}] at frame {row.frame} was stamped after "
                    f"the checkpoint at frame {doc.checkpoints[pos].frame}"
                )


def validate_document(doc: SessionDocument) -> None:
    """Check header counts and ordering invariants of a decoded document."""
    header = doc.header
    _check_count("eventCount", header.event_count, len(doc.events))
    _check_count("generationCallCount", header.generation_call_count, len(doc.generation_calls))
    _check_count("checkpointCount", header.checkpoint_count, len(doc.checkpoints))
    if int(header.tick_rate) <= 0:
        raise CorruptFileError(f"header tickRate must be positive, got {header.tick_rate}")

    _check_entry_order("events", [(row.frame, row.sequence) for row in doc.events])
    _check_entry_order("generationCalls", [(row.frame, row.sequence) for row in doc.generation_calls])

    prev: CheckpointRow | None = None
    for idx, row in enumerate(doc.checkpoints):
        if prev is not None and row.frame <= prev.frame:
            raise OrderingViolationError(
                f"checkpoints[{idx}] at frame {row.frame} is not after frame {prev.frame}"
            )
        if prev is not None and row.sequence <= prev.sequence:
            raise OrderingViolationError(
                f"checkpoints[{idx}] sequence {row.sequence} is not after sequence {prev.sequence}"
            )
        prev = row
    if not doc.checkpoints or doc.checkpoints[0].frame != 0:
        raise CorruptFileError("session has no frame-0 checkpoint")

    sequences: set[int] = set()
    for row in (*doc.events, *doc.generation_calls, *doc.checkpoints):
        if row.sequence in sequences:
            raise OrderingViolationError(f"sequence {row.sequence} is used more than once")
        sequences.add(row.sequence)
    _check_checkpoint_stamps(doc)

    for idx, call in enumerate(doc.generation_calls):
        if not 0 <= int(call.seed) <= _U32_MAX:
            raise CorruptFileError(f"generationCalls[{idx}] seed {call.seed} is not a uint32")
        if int(call.call_index) < 0:
            raise CorruptFileError(f"generationCalls[{idx}] has negative callIndex {call.call_index}")

    max_frame = max(
        (row.frame for row in (*doc.events, *doc.generation_calls, *doc.checkpoints)),
        default=0,
    )
    if int(header.frame_count) < max_frame:
        raise HeaderMismatchError(f"header frameCount={header.frame_count} but data reaches frame {max_frame}")


def session_from_document(doc: SessionDocument) -> Session:
    validate_document(doc)
    header = doc.header
    return Session(
        header=SessionHeader(
            format_version=int(header.format_version),
            game_seed=int(header.game_seed),
            frame_count=int(header.frame_count),
            event_count=int(header.event_count),
            generation_call_count=int(header.generation_call_count),
            checkpoint_count=int(header.checkpoint_count),
            created_at=str(header.created_at),
            tick_rate=int(header.tick_rate),
            game_version=str(header.game_version),
        ),
        events=tuple(
            Event(
                frame=row.frame,
                kind=row.kind,
                entity_id=row.entity_id,
                payload=row.payload,
                sequence=row.sequence,
            )
            for row in doc.events
        ),
        generation_calls=tuple(
            GenerationCallRecord(
                frame=row.frame,
                entity_id=row.entity_id,
                call_kind=row.call_kind,
                call_index=row.call_index,
                seed=row.seed,
                prompt_excerpt=row.prompt_excerpt,
                response_text=row.response_text,
                tokens_used=row.tokens_used,
                sequence=row.sequence,
            )
            for row in doc.generation_calls
        ),
        checkpoints=tuple(
            Checkpoint(
                frame=row.frame,
                snapshot=row.snapshot,
                sequence=row.sequence,
                size_bytes=row.size_bytes,
            )
            for row in doc.checkpoints
        ),
    )


def _check_session_shape(session: Session) -> None:
    header = session.header
    _check_count("eventCount", header.event_count, len(session.events))
    _check_count("generationCallCount", header.generation_call_count, len(session.generation_calls))
    _check_count("checkpointCount", header.checkpoint_count, len(session.checkpoints))
    for call in session.generation_calls:
        if call.sequence is None:
            raise ReplayCodecError("generation call without a sequence; was the session finalized?")
    _check_entry_order("events", [entry_order_key(event) for event in session.events])
    _check_entry_order("generationCalls", [entry_order_key(call) for call in session.generation_calls])


def decompress_session_bytes(data: bytes) -> bytes:
    """Return the uncompressed JSON text of a session file (plain JSON passes through)."""
    if not _is_gzip(data):
        return bytes(data)
    try:
        return gzip.decompress(data)
    except (OSError, EOFError, zlib.error) as exc:
        raise CorruptFileError(f"replay stream cannot be decompressed: {exc}") from exc


def _read_format_version(obj: Any) -> int:
    if not isinstance(obj, dict):
        raise CorruptFileError("replay root must be an object")
    header = obj.get("header")
    if not isinstance(header, dict):
        raise CorruptFileError("replay header must be an object")
    version = header.get("formatVersion")
    if isinstance(version, bool) or not isinstance(version, int):
        raise VersionMismatchError(version, SUPPORTED_FORMAT_VERSIONS)
    if int(version) not in SUPPORTED_FORMAT_VERSIONS:
        raise VersionMismatchError(version, SUPPORTED_FORMAT_VERSIONS)
    return int(version)


def load_session(data: bytes) -> Session:
    """Decode a session file. Either the whole session is valid or an error is raised."""
    raw = decompress_session_bytes(data)
    try:
        obj = msgspec.json.decode(raw)
    except msgspec.DecodeError as exc:
        raise CorruptFileError(f"replay is not valid JSON: {exc}") from exc
    _read_format_version(obj)
    try:
        doc = msgspec.convert(obj, type=SessionDocument)
    except msgspec.ValidationError as exc:
        raise CorruptFileError(f"replay structure is invalid: {exc}") from exc
    return session_from_document(doc)


def dump_session(session: Session) -> bytes:
    """Serialize a sealed session as gzipped JSON.

    The gzip header is written with mtime=0 for stable content hashing.
    """
    _check_session_shape(session)
    raw = msgspec.json.encode(session_to_document(session))
    return gzip.compress(raw, compresslevel=9, mtime=0)


def dump_session_file(path: Path, session: Session) -> int:
    """Write `session` to `path`, creating parent directories. Returns bytes written."""
    path = Path(path)
    blob = dump_session(session)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as handle:
        handle.write(blob)
    replay_debug_log(
        "save",
        path=path,
        bytes=len(blob),
        events=len(session.events),
        calls=len(session.generation_calls),
        checkpoints=len(session.checkpoints),
    )
    return len(blob)


def load_session_file(path: Path) -> Session:
    path = Path(path)
    with path.open("rb") as handle:
        data = handle.read()
    session = load_session(data)
    replay_debug_log("load", path=path, bytes=len(data), frames=session.header.frame_count)
    return session


def is_valid_session_file(path: Path) -> bool:
    try:
        load_session_file(Path(path))
    except (OSError, ReplayError):
        return False
    return True


@dataclass(frozen=True, slots=True)
class SessionFileInfo:
    path: Path
    compressed_bytes: int
    uncompressed_bytes: int
    header: SessionHeader

    @property
    def compression_ratio(self) -> float:
        """Fraction of the uncompressed size saved by compression (0.75 == 75% smaller)."""
        if self.uncompressed_bytes <= 0:
            return 0.0
        return 1.0 - float(self.compressed_bytes) / float(self.uncompressed_bytes)


def inspect_session_file(path: Path) -> SessionFileInfo:
    path = Path(path)
    data = path.read_bytes()
    raw = decompress_session_bytes(data)
    session = load_session(data)
    return SessionFileInfo(
        path=path,
        compressed_bytes=len(data),
        uncompressed_bytes=len(raw),
        header=session.header,
    )
