"""Windowing of normalized audio for inference.

This module splits a normalized signal into overlapping windows sized for
the model's context limit. A whole AudioBuffer is windowed with zero-copy
slices; a lazy stream of normalized blocks is windowed incrementally so
inference can start before decoding has finished.
"""

import math
from typing import Iterable, Iterator, List, Union

import numpy as np

from .data_models import SAMPLE_RATE, AudioBuffer, Window

DEFAULT_WINDOW_LENGTH = 30.0
DEFAULT_OVERLAP = 1.0


class AudioChunker:
    """Splits normalized audio into overlapping inference windows.

    Consecutive windows start ``chunk_length - overlap`` seconds apart, so
    each pair shares ``overlap`` seconds of audio. The last window may be
    shorter than ``chunk_length`` and is marked ``is_final``.

    Attributes:
        chunk_length: Duration of each window in seconds
        overlap: Overlap duration between consecutive windows in seconds
        sample_rate: Audio sample rate in Hz
    """

    def __init__(
        self,
        chunk_length: float = DEFAULT_WINDOW_LENGTH,
        overlap: float = DEFAULT_OVERLAP,
        sample_rate: int = SAMPLE_RATE,
    ):
        """Initialize audio chunker.

        Args:
            chunk_length: Window duration in seconds (default: 30)
            overlap: Overlap duration in seconds (default: 1.0)
            sample_rate: Audio sample rate in Hz (default: 16000)

        Raises:
            ValueError: If chunk_length <= overlap or if values are non-positive
        """
        if chunk_length <= 0:
            raise ValueError(
                f"chunk_length must be positive, got {chunk_length}"
            )
        if overlap < 0:
            raise ValueError(
                f"overlap must be non-negative, got {overlap}"
            )
        if overlap >= chunk_length:
            raise ValueError(
                f"overlap ({overlap}s) must be less than chunk_length ({chunk_length}s)"
            )
        if sample_rate <= 0:
            raise ValueError(
                f"sample_rate must be positive, got {sample_rate}"
            )

        self.chunk_length = chunk_length
        self.overlap = overlap
        self.sample_rate = sample_rate
        self.chunk_samples = int(round(chunk_length * sample_rate))
        self.overlap_samples = int(round(overlap * sample_rate))
        self.stride_samples = self.chunk_samples - self.overlap_samples
        if self.stride_samples <= 0:
            raise ValueError(
                f"chunk_length ({chunk_length}s) is too short for sample_rate {sample_rate}"
            )

    def count_windows(self, sample_count: int) -> int:
        """Number of windows produced for a signal of ``sample_count`` samples."""
        if sample_count <= 0:
            return 0
        if sample_count <= self.chunk_samples:
            return 1
        return math.ceil((sample_count - self.chunk_samples) / self.stride_samples) + 1

    def chunk_audio(self, audio: Union[AudioBuffer, np.ndarray]) -> List[Window]:
        """Split audio into overlapping windows.

        Returns:
            List of Window objects covering the whole signal

        Raises:
            ValueError: If audio is empty or has invalid shape
        """
        return list(self.iter_windows(audio))

    def iter_windows(self, audio: Union[AudioBuffer, np.ndarray]) -> Iterator[Window]:
        """Lazily window a fully normalized signal.

        Window samples are views into ``audio``; nothing is copied.

        Raises:
            ValueError: If audio is empty or has invalid shape
        """
        samples = audio.samples if isinstance(audio, AudioBuffer) else audio
        if samples.ndim != 1:
            raise ValueError(
                f"audio must be 1-dimensional, got shape {samples.shape}"
            )
        if len(samples) == 0:
            raise ValueError("audio cannot be empty")

        total = len(samples)
        start_sample = 0
        index = 0

        while start_sample < total:
            end_sample = min(start_sample + self.chunk_samples, total)
            is_final = end_sample >= total

            yield self._window(samples[start_sample:end_sample], start_sample, end_sample, index, is_final)

            if is_final:
                break
            index += 1
            start_sample += self.stride_samples

    def iter_stream_windows(self, blocks: Iterable[np.ndarray]) -> Iterator[Window]:
        """Window a lazy sequence of normalized blocks.

        A window is emitted as soon as at least one sample beyond its end has
        arrived, which is what tells it apart from the final window. Only the
        audio not yet covered by an emitted window is kept in memory.

        Yields:
            The same windows ``iter_windows`` would produce for the
            concatenated signal
        """
        buffer = np.zeros(0, dtype=np.float32)
        buffer_start = 0
        start_sample = 0
        index = 0

        for block in blocks:
            buffer = np.concatenate([buffer, block])
            while buffer_start + len(buffer) > start_sample + self.chunk_samples:
                offset = start_sample - buffer_start
                samples = buffer[offset:offset + self.chunk_samples].copy()
                yield self._window(
                    samples,
                    start_sample,
                    start_sample + self.chunk_samples,
                    index,
                    False,
                )
                index += 1
                start_sample += self.stride_samples
                buffer = buffer[start_sample - buffer_start:]
                buffer_start = start_sample

        total = buffer_start + len(buffer)
        if total == 0:
            return
        offset = start_sample - buffer_start
        yield self._window(buffer[offset:].copy(), start_sample, total, index, True)

    def _window(
        self,
        samples: np.ndarray,
        start_sample: int,
        end_sample: int,
        index: int,
        is_final: bool,
    ) -> Window:
        return Window(
            samples=samples,
            offset_seconds=start_sample / self.sample_rate,
            end_seconds=end_sample / self.sample_rate,
            index=index,
            is_final=is_final,
        )
