from __future__ import annotations

from typing import Any

import msgspec

# On-disk shape of a session file. Keys are camelCase:
# {"header": {...}, "events": [...], "generationCalls": [...], "checkpoints": [...]}


class HeaderRow(msgspec.Struct, rename="camel", forbid_unknown_fields=True):
    format_version: int
    game_seed: int
    frame_count: int
    event_count: int
    generation_call_count: int
    checkpoint_count: int
    created_at: str = ""
    tick_rate: int = 60
    game_version: str = ""


class EventRow(msgspec.Struct, rename="camel", forbid_unknown_fields=True):
    frame: int
    kind: str
    entity_id: str
    sequence: int
    payload: Any = None


class GenerationCallRow(msgspec.Struct, rename="camel", forbid_unknown_fields=True):
    frame: int
    entity_id: str
    call_kind: str
    call_index: int
    seed: int
    sequence: int
    prompt_excerpt: str = ""
    response_text: str = ""
    tokens_used: int = 0


class CheckpointRow(msgspec.Struct, rename="camel", forbid_unknown_fields=True):
    frame: int
    sequence: int
    snapshot: Any = None
    size_bytes: int = 0


class SessionDocument(msgspec.Struct, rename="camel", forbid_unknown_fields=True):
    header: HeaderRow
    events: list[EventRow] = msgspec.field(default_factory=list)
    generation_calls: list[GenerationCallRow] = msgspec.field(default_factory=list)
    checkpoints: list[CheckpointRow] = msgspec.field(default_factory=list)
