"""Run metrics and memory profiling.

This module provides the Run Reporter, which times a pipeline run from
decoder entry to formatter exit and derives the real-time factor, plus a
GPU memory profiler used to report peak accelerator memory.
"""

import time
from dataclasses import dataclass
from typing import Optional

import torch

from .data_models import RunMetrics, Transcript


@dataclass
class MemoryStats:
    """Memory usage statistics.

    Attributes:
        allocated_mb: Currently allocated memory in MB
        reserved_mb: Reserved memory in MB
        max_allocated_mb: Peak allocated memory in MB
        total_mb: Total available memory in MB
    """
    allocated_mb: float
    reserved_mb: float
    max_allocated_mb: float
    total_mb: float

    def __str__(self) -> str:
        return (
            f"Memory: {self.allocated_mb:.1f}MB allocated, "
            f"{self.reserved_mb:.1f}MB reserved, "
            f"{self.max_allocated_mb:.1f}MB peak, "
            f"{self.total_mb:.1f}MB total"
        )


class MemoryProfiler:
    """Profiles GPU memory usage during inference.

    Only CUDA (and ROCm, which torch exposes through the same API) devices
    are measured; on anything else every query returns None.
    """

    def __init__(self, device: Optional[torch.device] = None):
        """Initialize memory profiler.

        Args:
            device: Device to profile (default: current CUDA device if any)
        """
        if isinstance(device, str):
            device = torch.device(device)
        self.device = device
        if self.device is None and torch.cuda.is_available():
            self.device = torch.device("cuda")

    @property
    def enabled(self) -> bool:
        return (
            self.device is not None
            and self.device.type == "cuda"
            and torch.cuda.is_available()
        )

    def get_memory_stats(self) -> Optional[MemoryStats]:
        """Get current memory statistics.

        Returns:
            MemoryStats object if a CUDA device is profiled, None otherwise
        """
        if not self.enabled:
            return None

        allocated = torch.cuda.memory_allocated(self.device) / 1024**2
        reserved = torch.cuda.memory_reserved(self.device) / 1024**2
        max_allocated = torch.cuda.max_memory_allocated(self.device) / 1024**2
        total = torch.cuda.get_device_properties(self.device).total_memory / 1024**2

        return MemoryStats(
            allocated_mb=allocated,
            reserved_mb=reserved,
            max_allocated_mb=max_allocated,
            total_mb=total,
        )

    def reset_peak_stats(self):
        """Reset peak memory statistics."""
        if self.enabled:
            torch.cuda.reset_peak_memory_stats(self.device)

    def peak_memory_mb(self) -> Optional[float]:
        stats = self.get_memory_stats()
        return stats.max_allocated_mb if stats is not None else None


def word_count(transcript: Transcript) -> int:
    return sum(len(s.text.split()) for s in transcript.segments if not s.failed)


class RunReporter:
    """Times one pipeline run and computes its RunMetrics.

    The clock starts at decoder entry (``start``) and stops at formatter exit
    (``stop``). Values are informational and never feed back into the run.

    Example:
        >>> reporter = RunReporter(memory_profiler=MemoryProfiler("cpu"))
        >>> reporter.start()
        >>> ...  # decode, infer, aggregate, format
        >>> reporter.stop()
        >>> metrics = reporter.report(transcript, 65.0, "cpu", False, 3)
    """

    def __init__(
        self,
        memory_profiler: Optional[MemoryProfiler] = None,
        clock=time.perf_counter,
    ):
        self.memory_profiler = memory_profiler
        self._clock = clock
        self._start: Optional[float] = None
        self._end: Optional[float] = None

    def start(self) -> None:
        self._start = self._clock()
        self._end = None
        if self.memory_profiler is not None:
            self.memory_profiler.reset_peak_stats()

    def stop(self) -> None:
        if self._start is None:
            raise RuntimeError("RunReporter.stop() called before start()")
        self._end = self._clock()

    @property
    def elapsed(self) -> float:
        """Seconds since ``start``, or until ``stop`` once stopped."""
        if self._start is None:
            return 0.0
        end = self._end if self._end is not None else self._clock()
        return end - self._start

    @staticmethod
    def calculate_metrics(
        audio_duration: float,
        processing_time: float,
        segment_count: int,
        backend_used: str,
        gpu_enabled: bool,
        window_count: int = 0,
        word_count: int = 0,
        peak_memory_mb: Optional[float] = None,
    ) -> RunMetrics:
        """Build RunMetrics; the real-time factor is 0.0 for empty audio."""
        rtf = processing_time / audio_duration if audio_duration > 0 else 0.0
        return RunMetrics(
            audio_duration=audio_duration,
            processing_time=processing_time,
            real_time_factor=rtf,
            segment_count=segment_count,
            backend_used=backend_used,
            gpu_enabled=gpu_enabled,
            window_count=window_count,
            word_count=word_count,
            peak_memory_mb=peak_memory_mb,
        )

    def report(
        self,
        transcript: Transcript,
        audio_duration: float,
        backend_used: str,
        gpu_enabled: bool,
        window_count: int,
    ) -> RunMetrics:
        peak = None
        if self.memory_profiler is not None:
            peak = self.memory_profiler.peak_memory_mb()
        return self.calculate_metrics(
            audio_duration=audio_duration,
            processing_time=self.elapsed,
            segment_count=len(transcript.segments),
            backend_used=backend_used,
            gpu_enabled=gpu_enabled,
            window_count=window_count,
            word_count=word_count(transcript),
            peak_memory_mb=peak,
        )
