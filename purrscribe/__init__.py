"""purrscribe: a windowed speech-to-text pipeline.

This package decodes audio of any format, normalizes it to mono 16 kHz,
runs it through an ASR model window by window on the best available compute
backend, merges the overlapping results and renders them as text, JSON or
SRT.

Example:
    >>> from purrscribe import TranscriptionConfig, TranscriptionPipeline
    >>> config = TranscriptionConfig(model_path="v3_ctc", gpu_enabled=True)
    >>> result = TranscriptionPipeline().run("audio.wav", config)
    >>> for segment in result.transcript.segments:
    ...     print(f"[{segment.start:.2f}s - {segment.end:.2f}s] {segment.text}")
"""

from .aggregator import SegmentAggregator
from .backends import (
    BackendHandle,
    BackendKind,
    BackendSelector,
    DevicePool,
    check_gpu_status,
    list_devices,
)
from .capabilities import load_capability
from .chunker import AudioChunker
from .config import OutputFormat, TranscriptionConfig
from .data_models import (
    AudioBuffer,
    RawSegment,
    RunMetrics,
    RunStatus,
    Segment,
    Transcript,
    TranscriptionResult,
    TranscriptUpdate,
    Window,
    WordTimestamp,
)
from .decoder import AudioDecoder
from .errors import (
    AggregationError,
    BackendInitError,
    CancelledError,
    DecodeError,
    DeviceLostError,
    ErrorCode,
    InferenceError,
    ModelNotFound,
    NormalizationError,
    TranscriptionError,
)
from .formatter import OutputFormatter, format_srt_time
from .inference import InferenceCapability, InferenceDriver, InferenceParams, WindowResult
from .model_store import ModelStore
from .normalizer import SignalNormalizer
from .pipeline import CancellationToken, TranscriptionPipeline, transcribe
from .profiler import MemoryProfiler, MemoryStats, RunReporter

__version__ = "0.1.0"

__all__ = [
    "AggregationError",
    "AudioBuffer",
    "AudioChunker",
    "AudioDecoder",
    "BackendHandle",
    "BackendInitError",
    "BackendKind",
    "BackendSelector",
    "CancellationToken",
    "CancelledError",
    "DecodeError",
    "DeviceLostError",
    "DevicePool",
    "ErrorCode",
    "InferenceCapability",
    "InferenceDriver",
    "InferenceError",
    "InferenceParams",
    "MemoryProfiler",
    "MemoryStats",
    "ModelNotFound",
    "ModelStore",
    "NormalizationError",
    "OutputFormat",
    "OutputFormatter",
    "RawSegment",
    "RunMetrics",
    "RunReporter",
    "RunStatus",
    "Segment",
    "SegmentAggregator",
    "SignalNormalizer",
    "Transcript",
    "TranscriptUpdate",
    "TranscriptionConfig",
    "TranscriptionError",
    "TranscriptionPipeline",
    "TranscriptionResult",
    "Window",
    "WindowResult",
    "WordTimestamp",
    "check_gpu_status",
    "format_srt_time",
    "list_devices",
    "load_capability",
    "transcribe",
]
