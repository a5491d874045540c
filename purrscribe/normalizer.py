"""Signal normalization to the canonical inference format.

Decoded PCM of any rate and channel layout is downmixed to mono by
averaging channels and resampled to 16 kHz float32.

Resampling is done on fixed one-second blocks of source audio, each padded
with a short margin of neighboring samples that is trimmed after
resampling. Block boundaries depend only on the source sample index, so the
output is bit-identical for the same input no matter how the decoder
chunked the PCM, and identical between streaming and whole-file modes.
"""

import logging
import math
from typing import Iterable, Iterator, Union

import librosa
from librosa.util.exceptions import ParameterError
import numpy as np

from .data_models import SAMPLE_RATE, AudioBuffer
from .decoder import PcmChunk
from .errors import ErrorCode, NormalizationError

logger = logging.getLogger(__name__)


class SignalNormalizer:
    """Downmixes and resamples PCM to mono 16 kHz float32.

    Attributes:
        target_rate: Output sample rate in Hz
        context_seconds: Margin of neighboring audio resampled with each block
    """

    def __init__(
        self,
        target_rate: int = SAMPLE_RATE,
        context_seconds: float = 0.02,
    ):
        """Initialize signal normalizer.

        Args:
            target_rate: Output sample rate in Hz (default: 16000)
            context_seconds: Resampling margin in seconds (default: 0.02)

        Raises:
            ValueError: If target_rate is not positive or context is negative
        """
        if target_rate <= 0:
            raise ValueError(
                f"target_rate must be positive, got {target_rate}"
            )
        if context_seconds < 0:
            raise ValueError(
                f"context_seconds must be non-negative, got {context_seconds}"
            )
        self.target_rate = target_rate
        self.context_seconds = context_seconds

    def normalize(
        self,
        chunks: Iterable[Union[PcmChunk, np.ndarray]],
        sample_rate: int,
        channels: int,
    ) -> AudioBuffer:
        """Normalize a whole PCM sequence into one AudioBuffer.

        Raises:
            NormalizationError: If rate/channels are zero or input is empty
        """
        blocks = list(self.iter_blocks(chunks, sample_rate, channels))
        samples = np.concatenate(blocks).astype(np.float32, copy=False)
        return AudioBuffer(samples=samples, sample_rate=self.target_rate)

    def iter_blocks(
        self,
        chunks: Iterable[Union[PcmChunk, np.ndarray]],
        sample_rate: int,
        channels: int,
    ) -> Iterator[np.ndarray]:
        """Lazily normalize PCM chunks into mono float32 blocks.

        Args:
            chunks: PCM chunks with shape [frames, channels] (or 1D for mono)
            sample_rate: Source sample rate in Hz
            channels: Source channel count

        Yields:
            1D float32 arrays at ``target_rate``

        Raises:
            NormalizationError: If rate/channels are zero or input is empty
        """
        if sample_rate <= 0:
            raise NormalizationError(
                f"sample_rate must be positive, got {sample_rate}",
                ErrorCode.INVALID_SAMPLE_RATE,
            )
        if channels <= 0:
            raise NormalizationError(
                f"channel count must be positive, got {channels}",
                ErrorCode.INVALID_CHANNELS,
            )

        mono = (self._downmix(chunk, channels) for chunk in chunks)
        if sample_rate == self.target_rate:
            stream = mono
        else:
            stream = self._resample_stream(mono, sample_rate)

        produced = 0
        for block in stream:
            if block.shape[0]:
                produced += block.shape[0]
                yield block

        if produced == 0:
            raise NormalizationError("audio input is empty", ErrorCode.EMPTY_AUDIO)
        logger.debug(
            f"Normalized {produced} samples "
            f"({produced / self.target_rate:.2f}s) from {sample_rate} Hz x{channels}"
        )

    def _downmix(self, chunk: Union[PcmChunk, np.ndarray], channels: int) -> np.ndarray:
        samples = chunk.samples if isinstance(chunk, PcmChunk) else np.asarray(chunk)
        if samples.ndim == 1:
            return samples.astype(np.float32, copy=False)
        if samples.shape[1] != channels:
            raise NormalizationError(
                f"chunk has {samples.shape[1]} channels, expected {channels}",
                ErrorCode.INVALID_CHANNELS,
            )
        if channels == 1:
            return samples[:, 0].astype(np.float32, copy=False)
        return samples.mean(axis=1, dtype=np.float32)

    def _resample_stream(
        self,
        mono_blocks: Iterable[np.ndarray],
        sample_rate: int,
    ) -> Iterator[np.ndarray]:
        g = math.gcd(sample_rate, self.target_rate)
        up = self.target_rate // g
        down = sample_rate // g

        # One second of source audio is always a whole number of polyphase
        # periods, so every full block maps to exactly target_rate samples.
        block_len = sample_rate
        k = max(1, math.ceil(self.context_seconds * sample_rate / down))
        context = min(k * down, block_len)

        left = np.zeros(0, dtype=np.float32)
        pending = np.zeros(0, dtype=np.float32)

        for mono in mono_blocks:
            pending = np.concatenate([pending, mono])
            while pending.shape[0] >= block_len + context:
                block = pending[:block_len]
                right = pending[block_len:block_len + context]
                yield self._resample_block(left, block, right, sample_rate, up, down)
                left = block[-context:]
                pending = pending[block_len:]

        while pending.shape[0] > 0:
            block = pending[:block_len]
            right = pending[block_len:block_len + context]
            yield self._resample_block(left, block, right, sample_rate, up, down)
            left = block[-context:]
            pending = pending[block_len:]

    def _resample_block(
        self,
        left: np.ndarray,
        block: np.ndarray,
        right: np.ndarray,
        sample_rate: int,
        up: int,
        down: int,
    ) -> np.ndarray:
        padded = np.concatenate([left, block, right])
        try:
            resampled = librosa.resample(
                padded,
                orig_sr=sample_rate,
                target_sr=self.target_rate,
                res_type="polyphase",
            )
        except ParameterError as e:
            raise NormalizationError(
                f"cannot resample audio: {e}",
                ErrorCode.INVALID_SAMPLE_RATE,
            ) from e
        start = left.shape[0] // down * up
        count = -(-block.shape[0] * up // down)
        return resampled[start:start + count].astype(np.float32)
