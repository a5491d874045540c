"""Inference driver.

The acoustic model is an opaque capability: given the samples of one window
it returns window-relative segments. The driver feeds windows to it one at a
time against a single BackendHandle, pins the language detected on the first
window, shifts results onto the absolute timeline, and turns per-window
failures into degraded placeholder segments.
"""

import logging
from dataclasses import dataclass, replace
from typing import List, Optional, Protocol, Tuple, runtime_checkable

import numpy as np
import torch

from .backends import BackendHandle
from .config import TranscriptionConfig
from .data_models import RawSegment, Window
from .errors import DeviceLostError, ErrorCode, InferenceError

logger = logging.getLogger(__name__)

# Substrings of torch/driver errors after which the device cannot be reused.
_DEVICE_LOST_MARKERS = (
    "device-side assert",
    "device lost",
    "illegal memory access",
    "unspecified launch failure",
    "cuda error: an illegal instruction",
    "hip error",
)


@dataclass(frozen=True)
class InferenceParams:
    """Run-level parameters passed with every window.

    Attributes:
        language: Language code, or None to ask the model to detect it
        temperature: Sampling temperature (0.0 = greedy)
        word_timestamps: Request word-level timestamps
    """
    language: Optional[str] = None
    temperature: float = 0.0
    word_timestamps: bool = False


@dataclass(frozen=True)
class WindowResult:
    """What a capability returns for one window.

    Attributes:
        segments: Window-relative segments in any order
        language: Language the model used or detected, if known
    """
    segments: Tuple[RawSegment, ...] = ()
    language: Optional[str] = None


@runtime_checkable
class InferenceCapability(Protocol):
    """Anything that can turn one window of 16 kHz mono audio into segments."""

    model_id: str

    def infer(
        self,
        samples: np.ndarray,
        params: InferenceParams,
        backend: BackendHandle,
    ) -> WindowResult:
        ...


def is_device_lost(error: BaseException) -> bool:
    """True if ``error`` means the accelerator cannot be used any more."""
    if isinstance(error, DeviceLostError):
        return True
    message = str(error).lower()
    return any(marker in message for marker in _DEVICE_LOST_MARKERS)


class InferenceDriver:
    """Runs windows through a capability, strictly in order.

    One driver belongs to one run: it owns the pinned language and the
    failure count, and shares the run's BackendHandle.

    Attributes:
        capability: Model wrapper used for every window
        backend: Compute context of the run
        failed_windows: Number of windows that degraded to placeholders
    """

    def __init__(
        self,
        capability: InferenceCapability,
        backend: BackendHandle,
        config: TranscriptionConfig,
    ):
        self.capability = capability
        self.backend = backend
        self.temperature = config.temperature
        self.word_timestamps = config.word_timestamps
        self._language: Optional[str] = None if config.detect_language else config.language
        self._detect = config.detect_language
        self.failed_windows = 0
        self.processed_windows = 0

    @property
    def language(self) -> Optional[str]:
        """Declared language, or the one pinned from the first window."""
        return self._language

    def params(self) -> InferenceParams:
        return InferenceParams(
            language=self._language,
            temperature=self.temperature,
            word_timestamps=self.word_timestamps,
        )

    def process(self, window: Window) -> List[RawSegment]:
        """Infer one window and return its segments on the absolute timeline.

        Raises:
            DeviceLostError: If the accelerator failed in a way that makes
                further windows pointless
            InferenceError: If the capability reported a fatal error
        """
        logger.debug(
            f"Window {window.index}: {window.offset_seconds:.2f}s-"
            f"{window.end_seconds:.2f}s, language={self._language or 'auto'}"
        )
        try:
            result = self.capability.infer(window.samples, self.params(), self.backend)
        except InferenceError as e:
            if e.fatal:
                raise e.with_context(window_offset=window.offset_seconds)
            return self._degraded(window, e)
        except RuntimeError as e:
            if is_device_lost(e):
                raise DeviceLostError(
                    f"backend '{self.backend.name}' failed: {e}",
                    window_offset=window.offset_seconds,
                ) from e
            if "out of memory" in str(e).lower() and torch.cuda.is_available():
                torch.cuda.empty_cache()
            return self._degraded(window, e)
        except Exception as e:
            raise InferenceError(
                f"capability '{self.capability.model_id}' raised {type(e).__name__}: {e}",
                fatal=True,
                window_offset=window.offset_seconds,
            ) from e
        finally:
            self.processed_windows += 1

        if self._language is None and self._detect and result.language:
            self._language = result.language
            logger.info(f"Detected language '{self._language}', pinned for remaining windows")

        duration = window.duration_seconds
        segments = []
        for segment in sorted(result.segments, key=lambda s: (s.start, s.end)):
            segments.append(self._clamp(segment, duration).shifted(window.offset_seconds))
        return segments

    def _clamp(self, segment: RawSegment, duration: float) -> RawSegment:
        # Models occasionally report timestamps slightly past the window end.
        start = min(max(segment.start, 0.0), duration)
        end = min(max(segment.end, start), duration)
        if start == segment.start and end == segment.end:
            return segment
        words = segment.words
        if words is not None:
            words = tuple(
                replace(w, end=min(w.end, duration))
                for w in words
                if w.start < duration
            )
        return RawSegment(
            text=segment.text,
            start=start,
            end=end,
            confidence=segment.confidence,
            words=words,
            failed=segment.failed,
        )

    def _degraded(self, window: Window, error: BaseException) -> List[RawSegment]:
        self.failed_windows += 1
        code = getattr(error, "code", ErrorCode.WINDOW_FAILED)
        logger.warning(
            f"Window {window.index} at {window.offset_seconds:.2f}s failed "
            f"({code.value}): {error}; emitting placeholder"
        )
        return [
            RawSegment(
                text="",
                start=window.offset_seconds,
                end=window.end_seconds,
                confidence=0.0,
                failed=True,
            )
        ]
