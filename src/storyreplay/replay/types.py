from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, TypeAlias

ReplayFormatVersion: TypeAlias = Literal[1]

FORMAT_VERSION: ReplayFormatVersion = 1
SUPPORTED_FORMAT_VERSIONS: tuple[int, ...] = (1,)

DEFAULT_TICK_RATE = 60
PROMPT_EXCERPT_LIMIT = 200

# JSON-compatible value owned by the game layer; never inspected here.
Payload: TypeAlias = Any


def _default_game_version() -> str:
    from .. import __version__

    return str(__version__)


def excerpt_prompt(prompt: str, limit: int = PROMPT_EXCERPT_LIMIT) -> str:
    text = str(prompt)
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


@dataclass(frozen=True, slots=True)
class Event:
    frame: int
    kind: str
    entity_id: str
    payload: Payload
    sequence: int


@dataclass(frozen=True, slots=True)
class GenerationCallRecord:
    """One request/response exchange with the text-generation backend.

    `call_index` and `seed` are stamped when the request is issued.
    `response_text` is kept in full: playback treats it as authoritative and
    never regenerates from `seed`.
    `sequence` is assigned by the recorder when left as None.
    """

    frame: int
    entity_id: str
    call_kind: str
    call_index: int
    seed: int
    prompt_excerpt: str
    response_text: str
    tokens_used: int = 0
    sequence: int | None = None


@dataclass(frozen=True, slots=True)
class Checkpoint:
    frame: int
    snapshot: Payload
    sequence: int
    size_bytes: int = 0


@dataclass(frozen=True, slots=True)
class SessionHeader:
    game_seed: int
    frame_count: int = 0
    event_count: int = 0
    generation_call_count: int = 0
    checkpoint_count: int = 0
    created_at: str = ""
    format_version: int = FORMAT_VERSION
    tick_rate: int = DEFAULT_TICK_RATE
    game_version: str = field(default_factory=_default_game_version)


@dataclass(frozen=True, slots=True)
class Session:
    header: SessionHeader
    events: tuple[Event, ...] = ()
    generation_calls: tuple[GenerationCallRecord, ...] = ()
    checkpoints: tuple[Checkpoint, ...] = ()

    @property
    def last_frame(self) -> int:
        return int(self.header.frame_count)


@dataclass(frozen=True, slots=True)
class RecorderStats:
    event_count: int
    generation_call_count: int
    checkpoint_count: int
    checkpoint_bytes: int = 0


@dataclass(frozen=True, slots=True)
class SessionSummary:
    game_seed: int
    game_version: str
    created_at: str
    last_frame: int
    duration_seconds: float
    event_count: int
    generation_call_count: int
    checkpoint_count: int
    entity_ids: tuple[str, ...]
    tokens_used: int


def entry_order_key(entry: Event | GenerationCallRecord | Checkpoint) -> tuple[int, int]:
    """Sort key shared by every recorded entry: `(frame, sequence)`."""
    sequence = entry.sequence
    return int(entry.frame), -1 if sequence is None else int(sequence)


def summarize_session(session: Session) -> SessionSummary:
    header = session.header
    tick_rate = int(header.tick_rate) if int(header.tick_rate) > 0 else DEFAULT_TICK_RATE
    entities: set[str] = set()
    for event in session.events:
        if event.entity_id:
            entities.add(event.entity_id)
    for call in session.generation_calls:
        if call.entity_id:
            entities.add(call.entity_id)
    return SessionSummary(
        game_seed=int(header.game_seed),
        game_version=str(header.game_version),
        created_at=str(header.created_at),
        last_frame=int(header.frame_count),
        duration_seconds=float(header.frame_count) / float(tick_rate),
        event_count=len(session.events),
        generation_call_count=len(session.generation_calls),
        checkpoint_count=len(session.checkpoints),
        entity_ids=tuple(sorted(entities)),
        tokens_used=sum(int(call.tokens_used) for call in session.generation_calls),
    )
