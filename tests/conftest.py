"""Shared fixtures: a deterministic inference capability and WAV writers."""

from typing import Callable, List, Optional, Sequence

import numpy as np
import pytest
import soundfile as sf

from purrscribe.backends import (
    ACCELERATOR_PRIORITY,
    BackendInit,
    BackendKind,
    BackendSelector,
    DevicePool,
)
from purrscribe.data_models import RawSegment, WordTimestamp
from purrscribe.errors import BackendInitError, InferenceError
from purrscribe.inference import InferenceParams, WindowResult
from purrscribe.pipeline import TranscriptionPipeline


class StubCapability:
    """Deterministic capability for pipeline tests.

    Splits every window into ``segment_seconds`` pieces and labels each piece
    with the mean absolute amplitude of its samples, so identical audio
    always yields identical text.

    Attributes:
        calls: InferenceParams of every infer() call, in order
        backends: BackendHandle passed to every call
    """

    model_id = "stub-model"

    def __init__(
        self,
        language: str = "en",
        segment_seconds: float = 1.0,
        fail_windows: Sequence[int] = (),
        fatal_window: Optional[int] = None,
        device_lost_window: Optional[int] = None,
        crash_window: Optional[int] = None,
        words: bool = False,
        on_infer: Optional[Callable[[int], None]] = None,
    ):
        self.language = language
        self.segment_seconds = segment_seconds
        self.fail_windows = set(fail_windows)
        self.fatal_window = fatal_window
        self.device_lost_window = device_lost_window
        self.crash_window = crash_window
        self.words = words
        self.on_infer = on_infer
        self.calls: List[InferenceParams] = []
        self.backends = []

    def infer(self, samples, params, backend):
        index = len(self.calls)
        self.calls.append(params)
        self.backends.append(backend)
        if self.on_infer is not None:
            self.on_infer(index)
        if index in self.fail_windows:
            raise InferenceError(f"stub failure in window {index}")
        if index == self.fatal_window:
            raise InferenceError("model crashed", fatal=True)
        if index == self.device_lost_window:
            raise RuntimeError("CUDA error: device-side assert triggered")
        if index == self.crash_window:
            raise ValueError("'xx' is not a valid language code")

        duration = len(samples) / 16000
        step = int(self.segment_seconds * 16000)
        segments = []
        for start in range(0, len(samples), step):
            piece = samples[start:start + step]
            label = f"w{int(round(float(np.abs(piece).mean()) * 1000))}"
            seg_start = start / 16000
            seg_end = min((start + step) / 16000, duration)
            word_list = None
            if self.words:
                word_list = (WordTimestamp(label, seg_start, seg_end, 0.9),)
            segments.append(
                RawSegment(
                    text=label,
                    start=seg_start,
                    end=seg_end,
                    confidence=0.9,
                    words=word_list,
                )
            )
        return WindowResult(segments=tuple(segments), language=self.language)


def write_wav(
    path,
    duration: float,
    sample_rate: int = 16000,
    channels: int = 1,
    frequency: float = 220.0,
) -> str:
    """Write a sine sweep WAV whose amplitude changes over time."""
    frames = int(round(duration * sample_rate))
    t = np.arange(frames, dtype=np.float64) / sample_rate
    envelope = 0.2 + 0.6 * (0.5 + 0.5 * np.sin(2 * np.pi * t / 7.0))
    mono = (envelope * np.sin(2 * np.pi * frequency * t)).astype(np.float32)
    data = mono if channels == 1 else np.stack([mono] * channels, axis=1)
    sf.write(str(path), data, sample_rate, subtype="FLOAT")
    return str(path)


@pytest.fixture
def wav_factory(tmp_path):
    """Return a function writing WAV files into tmp_path."""
    def factory(name="audio.wav", duration=5.0, sample_rate=16000, channels=1, **kwargs):
        return write_wav(tmp_path / name, duration, sample_rate, channels, **kwargs)
    return factory


def _unavailable(thread_count):
    raise BackendInitError("no accelerator in test environment")


def cpu_only_selector(pool: Optional[DevicePool] = None) -> BackendSelector:
    """Selector whose accelerator initializers always fail."""
    return BackendSelector(
        initializers={kind: _unavailable for kind in ACCELERATOR_PRIORITY},
        pool=pool or DevicePool(),
    )


def fake_accelerator(kind: BackendKind = BackendKind.CUDA, device: str = "cuda:0"):
    """Initializer reporting a working accelerator without touching hardware."""
    def init(thread_count):
        return BackendInit(kind, device, f"fake {kind.value}")
    return init


@pytest.fixture
def stub():
    return StubCapability()


@pytest.fixture
def pipeline_factory():
    """Build a CPU pipeline around a capability."""
    def factory(capability, **kwargs):
        kwargs.setdefault("selector", cpu_only_selector())
        return TranscriptionPipeline(
            capability_factory=lambda config, backend: capability,
            **kwargs,
        )
    return factory
