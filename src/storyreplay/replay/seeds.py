from __future__ import annotations

import struct
from dataclasses import dataclass

_U32 = struct.Struct("<I")
_U64 = struct.Struct("<Q")

_MASK32 = 0xFFFF_FFFF
_MASK64 = 0xFFFF_FFFF_FFFF_FFFF

_FNV64_OFFSET = 0xCBF2_9CE4_8422_2325
_FNV64_PRIME = 0x0000_0100_0000_01B3


def _encode_u32(out: bytearray, value: int) -> None:
    out += _U32.pack(int(value) & _MASK32)


def _encode_u64(out: bytearray, value: int) -> None:
    out += _U64.pack(int(value) & _MASK64)


def _encode_str(out: bytearray, value: str) -> None:
    raw = str(value).encode("utf-8")
    _encode_u32(out, len(raw))
    out += raw


def _fnv1a64(data: bytes) -> int:
    h = _FNV64_OFFSET
    for byte in data:
        h ^= byte
        h = (h * _FNV64_PRIME) & _MASK64
    return h


def _splitmix64_finalize(value: int) -> int:
    z = value & _MASK64
    z = ((z ^ (z >> 30)) * 0xBF58_476D_1CE4_E5B9) & _MASK64
    z = ((z ^ (z >> 27)) * 0x94D0_49BB_1331_11EB) & _MASK64
    return z ^ (z >> 31)


def seed_key_bytes(game_seed: int, entity_id: str, call_kind: str, frame: int, call_index: int) -> bytes:
    """Canonical encoding of a seed tuple.

    Layout: `u64 game_seed | u32 len + utf8 entity_id | u32 len + utf8 call_kind | u64 frame | u32 call_index`,
    little-endian. Strings are length-prefixed so `("ab", "c")` and `("a", "bc")` differ.
    """
    out = bytearray()
    _encode_u64(out, game_seed)
    _encode_str(out, entity_id)
    _encode_str(out, call_kind)
    _encode_u64(out, frame)
    _encode_u32(out, call_index)
    return bytes(out)


def derive_seed(game_seed: int, entity_id: str, call_kind: str, frame: int, call_index: int) -> int:
    """Map a `(game_seed, entity_id, call_kind, frame, call_index)` tuple to a stable uint32."""
    if int(frame) < 0:
        raise ValueError(f"frame must be non-negative, got {frame}")
    if int(call_index) < 0:
        raise ValueError(f"call_index must be non-negative, got {call_index}")
    h = _splitmix64_finalize(_fnv1a64(seed_key_bytes(game_seed, entity_id, call_kind, frame, call_index)))
    return int((h ^ (h >> 32)) & _MASK32)


class FrameCallIndexTable:
    """Per-frame call counters keyed by `(entity_id, call_kind, frame)`.

    Only the frame currently being played is remembered: advancing to a later
    frame drops every counter. Reservations must come in non-decreasing frame
    order; going back (for example after a seek) requires `clear()` first,
    otherwise a revisited frame would hand out call indices twice.
    """

    __slots__ = ("_frame", "_counts")

    def __init__(self) -> None:
        self._frame: int | None = None
        self._counts: dict[tuple[str, str, int], int] = {}

    @property
    def frame(self) -> int | None:
        return self._frame

    def __len__(self) -> int:
        return len(self._counts)

    def _observe(self, frame: int) -> None:
        if self._frame is not None and frame < self._frame:
            raise ValueError(f"frame {frame} precedes current frame {self._frame}; clear() the table first")
        if self._frame != frame:
            self._counts.clear()
            self._frame = frame

    def peek(self, entity_id: str, call_kind: str, frame: int) -> int:
        frame = int(frame)
        if self._frame != frame:
            return 0
        return self._counts.get((str(entity_id), str(call_kind), frame), 0)

    def reserve(self, entity_id: str, call_kind: str, frame: int) -> int:
        """Return the next call index for the key and advance its counter."""
        frame = int(frame)
        if frame < 0:
            raise ValueError(f"frame must be non-negative, got {frame}")
        self._observe(frame)
        key = (str(entity_id), str(call_kind), frame)
        index = self._counts.get(key, 0)
        self._counts[key] = index + 1
        return index

    def clear(self) -> None:
        self._counts.clear()
        self._frame = None


@dataclass(frozen=True, slots=True)
class SeedReservation:
    entity_id: str
    call_kind: str
    frame: int
    call_index: int
    seed: int


class SeedDeriver:
    def __init__(self, game_seed: int, *, table: FrameCallIndexTable | None = None) -> None:
        self._game_seed = int(game_seed)
        self._table = FrameCallIndexTable() if table is None else table

    @property
    def game_seed(self) -> int:
        return self._game_seed

    @property
    def table(self) -> FrameCallIndexTable:
        return self._table

    def derive(self, entity_id: str, call_kind: str, frame: int, call_index: int) -> int:
        return derive_seed(self._game_seed, entity_id, call_kind, frame, call_index)

    def reserve(self, entity_id: str, call_kind: str, frame: int) -> SeedReservation:
        """Reserve a call index for an about-to-be-issued call and derive its seed.

        Must run synchronously at issue time, before the request is sent.
        """
        call_index = self._table.reserve(entity_id, call_kind, frame)
        return SeedReservation(
            entity_id=str(entity_id),
            call_kind=str(call_kind),
            frame=int(frame),
            call_index=int(call_index),
            seed=self.derive(entity_id, call_kind, frame, call_index),
        )

    def get_next_seed(self, entity_id: str, call_kind: str, frame: int) -> int:
        return self.reserve(entity_id, call_kind, frame).seed

    def reset(self) -> None:
        self._table.clear()
