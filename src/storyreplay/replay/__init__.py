from __future__ import annotations

from .checkpoints import DEFAULT_CHECKPOINT_INTERVAL, CheckpointScheduler, resolve_checkpoint_interval
from .codec import (
    SessionFileInfo,
    dump_session,
    dump_session_file,
    inspect_session_file,
    is_valid_session_file,
    load_session,
    load_session_file,
)
from .continuation import continue_recording
from .errors import (
    CheckpointRestoreError,
    CorruptFileError,
    HeaderMismatchError,
    LateGenerationCallWarning,
    MissingCheckpointError,
    OrderingViolationError,
    PlayerNotLoadedError,
    ReplayCodecError,
    ReplayError,
    ReplayRecorderVersionWarning,
    SealedRecorderError,
    VersionMismatchError,
)
from .generation import GenerationResult, record_generation_call
from .headless import TraceStateProvider
from .player import ReplayPlayer, StateProvider
from .recorder import EventRecorder, PendingGenerationCall
from .seeds import FrameCallIndexTable, SeedDeriver, SeedReservation, derive_seed
from .session import Recording, start_recording
from .types import (
    FORMAT_VERSION,
    Checkpoint,
    Event,
    GenerationCallRecord,
    RecorderStats,
    Session,
    SessionHeader,
    SessionSummary,
    excerpt_prompt,
    summarize_session,
)
from .versioning import check_recorder_version

__all__ = [
    "DEFAULT_CHECKPOINT_INTERVAL",
    "FORMAT_VERSION",
    "Checkpoint",
    "CheckpointRestoreError",
    "CheckpointScheduler",
    "CorruptFileError",
    "Event",
    "EventRecorder",
    "FrameCallIndexTable",
    "GenerationCallRecord",
    "GenerationResult",
    "HeaderMismatchError",
    "LateGenerationCallWarning",
    "MissingCheckpointError",
    "OrderingViolationError",
    "PendingGenerationCall",
    "PlayerNotLoadedError",
    "RecorderStats",
    "Recording",
    "ReplayCodecError",
    "ReplayError",
    "ReplayPlayer",
    "ReplayRecorderVersionWarning",
    "SealedRecorderError",
    "SeedDeriver",
    "SeedReservation",
    "Session",
    "SessionFileInfo",
    "SessionHeader",
    "SessionSummary",
    "StateProvider",
    "TraceStateProvider",
    "VersionMismatchError",
    "check_recorder_version",
    "continue_recording",
    "derive_seed",
    "dump_session",
    "dump_session_file",
    "excerpt_prompt",
    "inspect_session_file",
    "is_valid_session_file",
    "load_session",
    "load_session_file",
    "record_generation_call",
    "resolve_checkpoint_interval",
    "start_recording",
    "summarize_session",
]
