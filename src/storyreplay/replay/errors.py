from __future__ import annotations


class ReplayError(Exception):
    """Base class for every error raised by the replay subsystem."""


class OrderingViolationError(ReplayError, ValueError):
    """An append (or a loaded file) breaks `(frame, sequence)` ordering."""


class SealedRecorderError(ReplayError, RuntimeError):
    """A write was attempted after `EventRecorder.finalize()`."""


class MissingCheckpointError(ReplayError, LookupError):
    """No checkpoint precedes the requested frame."""

    def __init__(self, message: str, *, frame: int | None = None) -> None:
        super().__init__(message)
        self.frame = frame


class CheckpointRestoreError(ReplayError):
    """The checkpoint chosen for a seek could not be restored."""

    def __init__(self, frame: int, reason: str) -> None:
        super().__init__(f"checkpoint at frame {int(frame)} could not be restored: {reason}")
        self.frame = int(frame)
        self.reason = str(reason)


class PlayerNotLoadedError(ReplayError, RuntimeError):
    pass


class ReplayCodecError(ReplayError, ValueError):
    """Base class for replay file load failures."""


class CorruptFileError(ReplayCodecError):
    pass


class VersionMismatchError(ReplayCodecError):
    def __init__(self, version: object, supported: tuple[int, ...]) -> None:
        wanted = ", ".join(str(v) for v in supported)
        super().__init__(f"unsupported replay format version: {version!r} (supported: {wanted})")
        self.version = version
        self.supported = supported


class HeaderMismatchError(ReplayCodecError):
    pass


class LateGenerationCallWarning(UserWarning):
    """A generation result arrived after its recorder was sealed and was dropped."""


class ReplayRecorderVersionWarning(UserWarning):
    """Warnings related to the session's recorded `game_version`."""
