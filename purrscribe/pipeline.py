"""The transcription pipeline.

A run is a producer/consumer pair. A producer thread decodes, normalizes and
windows the input file and hands windows to the consumer through a bounded
queue, so decoding blocks whenever inference falls behind. The consumer
feeds windows to the inference driver strictly in file order against one
BackendHandle and merges the results with the segment aggregator.

Streaming and whole-file runs share all of this; the ``streaming`` flag only
controls whether a TranscriptUpdate is surfaced after every window or once
at the end.

Example:
    >>> pipeline = TranscriptionPipeline()
    >>> config = TranscriptionConfig(model_path="v3_ctc", output_format="srt")
    >>> with open("talk.srt", "w") as sink:
    ...     result = pipeline.transcribe_to("talk.mp3", config, sink)
    >>> print(result.metrics)
"""

import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import (
    BinaryIO,
    Callable,
    Generator,
    Iterator,
    List,
    Optional,
    Sequence,
    TextIO,
    Tuple,
    Union,
)

from .aggregator import (
    DEFAULT_OVERLAP_TOLERANCE,
    DEFAULT_SIMILARITY_THRESHOLD,
    SegmentAggregator,
)
from .backends import BackendHandle, BackendSelector
from .capabilities import default_capability_factory
from .chunker import DEFAULT_OVERLAP, DEFAULT_WINDOW_LENGTH, AudioChunker
from .config import TranscriptionConfig
from .data_models import (
    SAMPLE_RATE,
    RunStatus,
    Transcript,
    TranscriptionResult,
    TranscriptUpdate,
    Window,
)
from .decoder import AudioDecoder
from .errors import CancelledError, InferenceError, TranscriptionError
from .formatter import OutputFormatter
from .inference import InferenceCapability, InferenceDriver
from .normalizer import SignalNormalizer
from .profiler import MemoryProfiler, RunReporter

logger = logging.getLogger(__name__)

CapabilityFactory = Callable[[TranscriptionConfig, BackendHandle], InferenceCapability]
UpdateCallback = Callable[[TranscriptUpdate], None]

_END = object()


class CancellationToken:
    """Cooperative, thread-safe cancellation flag for one or more runs.

    The pipeline checks the token before dispatching each window; a window
    already being inferred always completes.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


@dataclass
class _Failure:
    error: BaseException


@dataclass
class _Outcome:
    status: RunStatus
    transcript: Transcript
    audio_duration: float
    backend_used: str
    windows: Tuple[Tuple[float, float], ...]


class _WindowProducer(threading.Thread):
    """Decodes, normalizes and windows one file on a background thread."""

    def __init__(
        self,
        path: str,
        decoder: AudioDecoder,
        normalizer: SignalNormalizer,
        chunker: AudioChunker,
        streaming: bool,
        queue_size: int,
    ):
        super().__init__(name=f"purrscribe-producer:{Path(path).name}", daemon=True)
        self.path = path
        self.decoder = decoder
        self.normalizer = normalizer
        self.chunker = chunker
        self.streaming = streaming
        self.queue: "queue.Queue" = queue.Queue(maxsize=queue_size)
        self.normalized_samples = 0
        self.source_duration: Optional[float] = None
        self._stop_event = threading.Event()

    def run(self) -> None:
        try:
            with self.decoder.open(self.path) as session:
                self.source_duration = session.duration_seconds
                if self.streaming:
                    blocks = self.normalizer.iter_blocks(
                        session, session.sample_rate, session.channels
                    )
                    windows = self.chunker.iter_stream_windows(self._counted(blocks))
                else:
                    buffer = self.normalizer.normalize(
                        session, session.sample_rate, session.channels
                    )
                    self.normalized_samples = buffer.sample_count
                    windows = self.chunker.iter_windows(buffer)

                for window in windows:
                    if not self._put(window):
                        return
            self._put(_END)
        except Exception as e:
            # Re-raised on the consumer side.
            self._put(_Failure(e))

    def _counted(self, blocks: Iterator) -> Iterator:
        for block in blocks:
            self.normalized_samples += block.shape[0]
            yield block

    def _put(self, item) -> bool:
        while not self._stop_event.is_set():
            try:
                self.queue.put(item, timeout=0.05)
                return True
            except queue.Full:
                continue
        return False

    def windows(self) -> Iterator[Window]:
        """Consume windows in order; re-raises the producer's failure."""
        while True:
            item = self.queue.get()
            if item is _END:
                return
            if isinstance(item, _Failure):
                raise item.error
            yield item

    def stop(self) -> None:
        """Stop producing and wait until the decode session is closed."""
        self._stop_event.set()
        while True:
            try:
                self.queue.get_nowait()
            except queue.Empty:
                break
        self.join()

    @property
    def audio_duration(self) -> float:
        return self.normalized_samples / SAMPLE_RATE


class TranscriptionPipeline:
    """Runs audio files through decode, inference, aggregation and output.

    A pipeline object holds no per-run state and can serve several runs at
    once; each run gets its own backend handle, chunker state, pinned
    language and metrics.

    Attributes:
        capability_factory: Loads the inference capability for a run
        selector: Chooses the compute backend for a run
        decoder: Opens input files
        normalizer: Converts PCM to mono 16 kHz float32
        window_length: Inference window length in seconds
        overlap: Overlap between consecutive windows in seconds
        queue_size: Windows buffered between producer and inference
    """

    def __init__(
        self,
        capability_factory: Optional[CapabilityFactory] = None,
        selector: Optional[BackendSelector] = None,
        queue_size: int = 2,
        decoder: Optional[AudioDecoder] = None,
        normalizer: Optional[SignalNormalizer] = None,
        window_length: float = DEFAULT_WINDOW_LENGTH,
        overlap: float = DEFAULT_OVERLAP,
        overlap_tolerance: float = DEFAULT_OVERLAP_TOLERANCE,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ):
        """Initialize transcription pipeline.

        Raises:
            TypeError: If queue_size is not an int
            ValueError: If queue_size is not positive or windowing is invalid
        """
        if isinstance(queue_size, bool) or not isinstance(queue_size, int):
            raise TypeError(
                f"queue_size must be int, got {type(queue_size).__name__}"
            )
        if queue_size < 1:
            raise ValueError(
                f"queue_size must be positive integer, got {queue_size}"
            )
        # Validates window_length/overlap up front.
        AudioChunker(window_length, overlap)

        self.capability_factory = capability_factory or default_capability_factory
        self.selector = selector or BackendSelector()
        self.queue_size = queue_size
        self.decoder = decoder or AudioDecoder()
        self.normalizer = normalizer or SignalNormalizer()
        self.window_length = window_length
        self.overlap = overlap
        self.overlap_tolerance = overlap_tolerance
        self.similarity_threshold = similarity_threshold

    def run(
        self,
        path: Union[str, Path],
        config: TranscriptionConfig,
        cancel_token: Optional[CancellationToken] = None,
        on_update: Optional[UpdateCallback] = None,
    ) -> TranscriptionResult:
        """Transcribe one file.

        Args:
            path: Audio file of any supported container/codec
            config: Run configuration
            cancel_token: Checked before each window is dispatched
            on_update: Called with every TranscriptUpdate (after each window
                when ``config.streaming``, otherwise once at the end)

        Returns:
            TranscriptionResult with status ``completed`` or ``cancelled``

        Raises:
            DecodeError, NormalizationError: If the input cannot be read
            BackendInitError: If no backend, not even CPU, initializes
            InferenceError: If inference fails fatally; carries the partial
                transcript
            AggregationError: If the merged timeline is inconsistent
        """
        reporter = RunReporter()
        outcome = self._drive(self._execute(path, config, cancel_token, reporter), on_update)
        reporter.stop()
        return self._result(outcome, config, reporter)

    def iter_updates(
        self,
        path: Union[str, Path],
        config: TranscriptionConfig,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Generator[TranscriptUpdate, None, TranscriptionResult]:
        """Generator of TranscriptUpdate objects for one run.

        The generator's return value (``StopIteration.value``) is the
        TranscriptionResult. Closing the generator early releases the
        backend and the decode session.
        """
        reporter = RunReporter()
        outcome = yield from self._execute(path, config, cancel_token, reporter)
        reporter.stop()
        return self._result(outcome, config, reporter)

    def transcribe_to(
        self,
        path: Union[str, Path],
        config: TranscriptionConfig,
        sink: Union[TextIO, BinaryIO],
        timestamps: bool = False,
        cancel_token: Optional[CancellationToken] = None,
        on_update: Optional[UpdateCallback] = None,
    ) -> TranscriptionResult:
        """Transcribe, render in ``config.output_format`` and write to ``sink``.

        Processing time runs until the formatted output has been written.
        The sink is not closed.
        """
        reporter = RunReporter()
        outcome = self._drive(self._execute(path, config, cancel_token, reporter), on_update)
        formatter = OutputFormatter(timestamps=timestamps)
        provisional = self._metrics(outcome, config, reporter)
        formatter.write(sink, formatter.render(outcome.transcript, config.output_format, provisional))
        reporter.stop()
        return self._result(outcome, config, reporter)

    def transcribe_files(
        self,
        paths: Sequence[Union[str, Path]],
        config: TranscriptionConfig,
        max_workers: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[TranscriptionResult]:
        """Transcribe independent files in parallel.

        Each file is a separate run with its own backend handle. Results are
        returned in input order; if any run fails, the first failure in input
        order is raised once all runs have finished.

        Raises:
            ValueError: If max_workers is not positive
        """
        if max_workers is not None and max_workers < 1:
            raise ValueError(
                f"max_workers must be positive integer, got {max_workers}"
            )
        if not paths:
            return []
        workers = max_workers or min(len(paths), 4)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="purrscribe-run") as pool:
            futures = [pool.submit(self.run, path, config, cancel_token) for path in paths]
            return [future.result() for future in futures]

    @staticmethod
    def _drive(run: Generator, on_update: Optional[UpdateCallback]) -> _Outcome:
        while True:
            try:
                update = next(run)
            except StopIteration as stop:
                return stop.value
            if on_update is not None:
                on_update(update)

    def _execute(
        self,
        path: Union[str, Path],
        config: TranscriptionConfig,
        cancel_token: Optional[CancellationToken],
        reporter: RunReporter,
    ) -> Generator[TranscriptUpdate, None, _Outcome]:
        path = self.decoder.ensure_readable(path)
        logger.info(
            f"Transcribing '{path}' (streaming={config.streaming}, "
            f"gpu_enabled={config.gpu_enabled}, language={config.language})"
        )

        with self.selector.select(config.gpu_enabled, config.thread_count) as backend:
            try:
                capability = self.capability_factory(config, backend)
            except TranscriptionError as e:
                raise e.with_context(path=path)

            driver = InferenceDriver(capability, backend, config)
            aggregator = SegmentAggregator(
                model_id=getattr(capability, "model_id", ""),
                language=driver.language,
                overlap_tolerance=self.overlap_tolerance,
                similarity_threshold=self.similarity_threshold,
            )
            chunker = AudioChunker(self.window_length, self.overlap)
            producer = _WindowProducer(
                path,
                self.decoder,
                self.normalizer,
                chunker,
                config.streaming,
                self.queue_size,
            )

            if backend.kind.is_accelerator:
                reporter.memory_profiler = MemoryProfiler(backend.torch_device)
            reporter.start()
            producer.start()

            windows: List[Tuple[float, float]] = []
            status = RunStatus.COMPLETED
            try:
                try:
                    for window in producer.windows():
                        if cancel_token is not None and cancel_token.cancelled:
                            raise CancelledError(
                                partial_transcript=aggregator.snapshot(),
                                path=path,
                                window_offset=window.offset_seconds,
                            )
                        try:
                            segments = driver.process(window)
                        except InferenceError as e:
                            aggregator.language = driver.language
                            e.partial_transcript = aggregator.snapshot()
                            raise e.with_context(path=path)

                        aggregator.language = driver.language
                        aggregator.add_window(
                            segments,
                            window.index,
                            window.offset_seconds,
                            window.end_seconds,
                        )
                        windows.append((window.offset_seconds, window.end_seconds))
                        if config.streaming:
                            yield TranscriptUpdate(
                                transcript=aggregator.snapshot(),
                                window_index=window.index,
                                is_final=window.is_final,
                            )
                except CancelledError as e:
                    status = RunStatus.CANCELLED
                    logger.info(
                        f"Run cancelled after {len(windows)} window(s): {e}"
                    )
                except TranscriptionError as e:
                    raise e.with_context(path=path)
            finally:
                producer.stop()

            transcript = aggregator.finalize()
            if status is RunStatus.COMPLETED:
                audio_duration = producer.audio_duration
            else:
                audio_duration = producer.source_duration or producer.audio_duration
            backend_used = backend.name

        if not config.streaming and status is RunStatus.COMPLETED:
            yield TranscriptUpdate(
                transcript=transcript,
                window_index=len(windows) - 1,
                is_final=True,
            )

        return _Outcome(
            status=status,
            transcript=transcript,
            audio_duration=audio_duration,
            backend_used=backend_used,
            windows=tuple(windows),
        )

    def _metrics(self, outcome: _Outcome, config: TranscriptionConfig, reporter: RunReporter):
        return reporter.report(
            outcome.transcript,
            audio_duration=outcome.audio_duration,
            backend_used=outcome.backend_used,
            gpu_enabled=config.gpu_enabled,
            window_count=len(outcome.windows),
        )

    def _result(
        self,
        outcome: _Outcome,
        config: TranscriptionConfig,
        reporter: RunReporter,
    ) -> TranscriptionResult:
        metrics = self._metrics(outcome, config, reporter)
        logger.info(f"Run {outcome.status.value}: {metrics}")
        return TranscriptionResult(
            status=outcome.status,
            transcript=outcome.transcript,
            metrics=metrics,
            windows=outcome.windows,
        )


def transcribe(
    path: Union[str, Path],
    config: TranscriptionConfig,
    cancel_token: Optional[CancellationToken] = None,
) -> TranscriptionResult:
    """Transcribe one file with the default capability and backend selector."""
    return TranscriptionPipeline().run(path, config, cancel_token)
