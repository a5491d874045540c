"""Error taxonomy for the transcription pipeline.

Every error raised by the pipeline is a ``TranscriptionError`` carrying a
stable ``ErrorCode`` and optional context (source file, window offset) so the
calling shell can present it however it likes.
"""

from enum import Enum
from typing import Optional

from .data_models import Transcript


class ErrorCode(str, Enum):
    """Stable error identifiers surfaced to callers and logs."""

    # decode (ERR100x)
    FILE_NOT_FOUND = "ERR1001"
    UNSUPPORTED_FORMAT = "ERR1002"
    NO_AUDIO_STREAM = "ERR1003"
    DECODE_FAILED = "ERR1004"
    SESSION_EXHAUSTED = "ERR1005"
    PERMISSION_DENIED = "ERR1006"

    # normalization (ERR200x)
    INVALID_SAMPLE_RATE = "ERR2001"
    INVALID_CHANNELS = "ERR2002"
    EMPTY_AUDIO = "ERR2003"

    # backend (ERR300x)
    BACKEND_UNAVAILABLE = "ERR3001"
    DEVICE_BUSY = "ERR3002"
    CPU_INIT_FAILED = "ERR3003"

    # inference (ERR400x)
    WINDOW_FAILED = "ERR4001"
    DEVICE_LOST = "ERR4002"
    MODEL_LOAD_FAILED = "ERR4003"

    # internal (ERR500x)
    NON_MONOTONIC = "ERR5001"
    CANCELLED = "ERR5002"

    # model store (ERR600x)
    MODEL_NOT_FOUND = "ERR6001"


class TranscriptionError(RuntimeError):
    """Base class for all pipeline errors.

    Attributes:
        code: Stable error identifier
        detail: Human readable description
        path: Audio file the error relates to, if any
        window_offset: Absolute offset in seconds of the window, if any
    """

    default_code = ErrorCode.DECODE_FAILED

    def __init__(
        self,
        detail: str,
        code: Optional[ErrorCode] = None,
        path: Optional[str] = None,
        window_offset: Optional[float] = None,
    ) -> None:
        self.code = code or self.default_code
        self.detail = detail
        self.path = path
        self.window_offset = window_offset
        super().__init__(self._format())

    def _format(self) -> str:
        context = []
        if self.path is not None:
            context.append(f"file={self.path}")
        if self.window_offset is not None:
            context.append(f"window={self.window_offset:.2f}s")
        suffix = f" [{', '.join(context)}]" if context else ""
        return f"{self.code.value} {self.detail}{suffix}"

    def with_context(
        self,
        path: Optional[str] = None,
        window_offset: Optional[float] = None,
    ) -> "TranscriptionError":
        """Attach file/window context, keeping any context already present."""
        if self.path is None and path is not None:
            self.path = str(path)
        if self.window_offset is None and window_offset is not None:
            self.window_offset = window_offset
        self.args = (self._format(),)
        return self


class DecodeError(TranscriptionError):
    """Input file is missing, unreadable or in an unsupported format."""

    default_code = ErrorCode.DECODE_FAILED


class NormalizationError(TranscriptionError):
    """PCM cannot be normalized (zero rate, zero channels, empty input)."""

    default_code = ErrorCode.EMPTY_AUDIO


class BackendInitError(TranscriptionError):
    """A compute backend failed to initialize."""

    default_code = ErrorCode.BACKEND_UNAVAILABLE


class InferenceError(TranscriptionError):
    """Inference failed for a window or for the whole run.

    Non-fatal errors are recovered by the inference driver; fatal ones abort
    the run and carry the transcript accumulated so far.
    """

    default_code = ErrorCode.WINDOW_FAILED

    def __init__(
        self,
        detail: str,
        code: Optional[ErrorCode] = None,
        path: Optional[str] = None,
        window_offset: Optional[float] = None,
        fatal: bool = False,
        partial_transcript: Optional[Transcript] = None,
    ) -> None:
        self.fatal = fatal
        self.partial_transcript = partial_transcript
        super().__init__(detail, code, path, window_offset)


class DeviceLostError(InferenceError):
    """The accelerator became unusable mid-run; always fatal."""

    default_code = ErrorCode.DEVICE_LOST

    def __init__(self, detail: str, **kwargs) -> None:
        kwargs["fatal"] = True
        super().__init__(detail, **kwargs)


class AggregationError(TranscriptionError):
    """Aggregated timeline violates its ordering invariant (a defect)."""

    default_code = ErrorCode.NON_MONOTONIC


class CancelledError(TranscriptionError):
    """The run was cancelled; carries the partial transcript."""

    default_code = ErrorCode.CANCELLED

    def __init__(
        self,
        detail: str = "run cancelled",
        partial_transcript: Optional[Transcript] = None,
        **kwargs,
    ) -> None:
        self.partial_transcript = partial_transcript
        super().__init__(detail, **kwargs)


class ModelNotFound(TranscriptionError):
    """The model store has no weights for the requested identifier."""

    default_code = ErrorCode.MODEL_NOT_FOUND


__all__ = [
    "AggregationError",
    "BackendInitError",
    "CancelledError",
    "DecodeError",
    "DeviceLostError",
    "ErrorCode",
    "InferenceError",
    "ModelNotFound",
    "NormalizationError",
    "TranscriptionError",
]
