"""Core data models for purrscribe.

This module defines the data structures that flow through the transcription
pipeline: normalized audio buffers, inference windows, raw and aggregated
segments, the final transcript and the run metrics.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

SAMPLE_RATE = 16000


@dataclass
class AudioBuffer:
    """Mono float32 audio at a fixed sample rate.

    Attributes:
        samples: Audio samples as 1D float32 numpy array
        sample_rate: Sample rate in Hz (16000 after normalization)
    """
    samples: np.ndarray
    sample_rate: int = SAMPLE_RATE

    @property
    def sample_count(self) -> int:
        return int(self.samples.shape[0])

    @property
    def channel_count(self) -> int:
        return 1

    @property
    def duration_seconds(self) -> float:
        return self.sample_count / self.sample_rate


@dataclass
class Window:
    """A slice of normalized audio submitted to inference as one unit.

    In whole-file mode ``samples`` is a view into the AudioBuffer; in
    streaming mode it is a copy of the chunker's accumulation buffer.

    Attributes:
        samples: Audio samples for this window (1D float32)
        offset_seconds: Absolute start time in the original timeline
        end_seconds: Absolute end time in the original timeline
        index: Position in the sequence of windows (0-based)
        is_final: True for the last window of the signal
    """
    samples: np.ndarray
    offset_seconds: float
    end_seconds: float
    index: int
    is_final: bool = False

    @property
    def duration_seconds(self) -> float:
        return self.end_seconds - self.offset_seconds


@dataclass(frozen=True)
class WordTimestamp:
    """Word-level timing produced by capabilities that support it."""
    word: str
    start: float
    end: float
    confidence: float = 1.0

    def shifted(self, offset: float) -> "WordTimestamp":
        return replace(self, start=self.start + offset, end=self.end + offset)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "word": self.word,
            "start": round(self.start, 3),
            "end": round(self.end, 3),
            "confidence": round(self.confidence, 4),
        }


@dataclass(frozen=True)
class RawSegment:
    """One inference result unit.

    Timestamps are window-relative when produced by a capability and
    absolute once shifted by the window offset.

    Attributes:
        text: Transcribed text
        start: Start time in seconds
        end: End time in seconds
        confidence: Confidence score in [0.0, 1.0]
        words: Optional word-level timestamps
        failed: True for the placeholder emitted when a window fails
    """
    text: str
    start: float
    end: float
    confidence: float = 1.0
    words: Optional[Tuple[WordTimestamp, ...]] = None
    failed: bool = False

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError(
                f"segment start ({self.start}) must not exceed end ({self.end})"
            )

    def shifted(self, offset: float) -> "RawSegment":
        """Return the segment moved onto the absolute timeline."""
        words = None
        if self.words is not None:
            words = tuple(w.shifted(offset) for w in self.words)
        return replace(
            self,
            start=self.start + offset,
            end=self.end + offset,
            words=words,
        )


@dataclass
class Segment:
    """Represents a transcribed segment of the aggregated timeline.

    Attributes:
        id: Sequential identifier within the transcript
        start: Start time in seconds relative to original audio
        end: End time in seconds relative to original audio
        text: Transcribed text content
        confidence: Confidence score in [0.0, 1.0]
        words: Optional word-level timestamps
        failed: True if the segment stands in for a failed window
    """
    id: int
    start: float
    end: float
    text: str
    confidence: float = 1.0
    words: Optional[List[WordTimestamp]] = None
    failed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "start": round(self.start, 3),
            "end": round(self.end, 3),
            "text": self.text,
            "confidence": round(self.confidence, 4),
        }
        if self.words is not None:
            data["words"] = [w.to_dict() for w in self.words]
        if self.failed:
            data["failed"] = True
        return data


@dataclass(frozen=True)
class Transcript:
    """The aggregated, time-ordered segments of a whole run.

    Attributes:
        segments: Segments in non-decreasing start order
        language: Detected or declared language code
        model_id: Identifier of the model that produced the text
    """
    segments: Tuple[Segment, ...] = ()
    language: Optional[str] = None
    model_id: str = ""

    @property
    def text(self) -> str:
        return " ".join(
            s.text.strip() for s in self.segments if s.text.strip()
        )

    @property
    def end_seconds(self) -> float:
        return self.segments[-1].end if self.segments else 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Reproducible form of the transcript (no timing metrics)."""
        return {
            "text": self.text,
            "language": self.language,
            "model_id": self.model_id,
            "segments": [s.to_dict() for s in self.segments],
        }


@dataclass(frozen=True)
class RunMetrics:
    """Performance metrics for one pipeline run.

    Attributes:
        audio_duration: Total audio duration in seconds
        processing_time: Wall-clock time from decoder entry to formatter exit
        real_time_factor: processing_time / audio_duration
        segment_count: Number of segments in the transcript
        backend_used: Name of the backend actually selected
        gpu_enabled: Whether GPU use was requested
        window_count: Number of windows dispatched to inference
        word_count: Number of whitespace-separated words in the transcript
        peak_memory_mb: Peak accelerator memory, when measurable
    """
    audio_duration: float
    processing_time: float
    real_time_factor: float
    segment_count: int
    backend_used: str
    gpu_enabled: bool
    window_count: int = 0
    word_count: int = 0
    peak_memory_mb: Optional[float] = None

    def __str__(self) -> str:
        return (
            f"{self.audio_duration:.1f}s audio in {self.processing_time:.2f}s "
            f"(RTF: {self.real_time_factor:.3f}, segments: {self.segment_count}, "
            f"windows: {self.window_count}, backend: {self.backend_used})"
        )


class RunStatus(str, Enum):
    """Terminal state of a pipeline run."""
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class TranscriptUpdate:
    """Snapshot surfaced to the caller while a run is in progress."""
    transcript: Transcript
    window_index: int
    is_final: bool


@dataclass(frozen=True)
class TranscriptionResult:
    """Outcome of a run: the transcript, its metrics and how it ended."""
    status: RunStatus
    transcript: Transcript
    metrics: RunMetrics
    windows: Tuple[Tuple[float, float], ...] = field(default=())

    @property
    def cancelled(self) -> bool:
        return self.status is RunStatus.CANCELLED
