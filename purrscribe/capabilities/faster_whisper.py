"""faster-whisper inference capability."""

import logging
import math
from pathlib import Path
from typing import List, Optional

import numpy as np

from ..backends import BackendHandle, BackendKind
from ..config import TranscriptionConfig
from ..data_models import RawSegment, WordTimestamp
from ..errors import ErrorCode, InferenceError
from ..inference import InferenceParams, WindowResult

logger = logging.getLogger(__name__)


def _confidence(avg_logprob: Optional[float]) -> float:
    if avg_logprob is None:
        return 1.0
    return min(1.0, max(0.0, math.exp(avg_logprob)))


class FasterWhisperCapability:
    """Wraps a ``faster_whisper.WhisperModel``.

    Attributes:
        model: Loaded WhisperModel
        model_id: Identifier reported in the transcript
    """

    def __init__(self, model, model_id: str):
        self.model = model
        self.model_id = model_id

    @classmethod
    def load(
        cls,
        config: TranscriptionConfig,
        backend: BackendHandle,
    ) -> "FasterWhisperCapability":
        """Load a Whisper model for ``backend``.

        CTranslate2 has no Metal backend, so MPS runs fall back to the CPU
        build with the run's thread count.

        Raises:
            InferenceError: If the model cannot be loaded
        """
        from faster_whisper import WhisperModel

        if backend.kind in (BackendKind.CUDA, BackendKind.ROCM):
            device, compute_type = "cuda", "float16"
        else:
            device, compute_type = "cpu", "float32"

        model_path = str(config.model_path)
        logger.info(f"Loading Whisper model '{model_path}' on device '{device}'")
        try:
            model = WhisperModel(
                model_path,
                device=device,
                compute_type=compute_type,
                cpu_threads=backend.thread_count,
            )
        except (ValueError, RuntimeError, OSError) as e:
            raise InferenceError(
                f"Failed to load Whisper model '{model_path}': {e}",
                ErrorCode.MODEL_LOAD_FAILED,
                fatal=True,
            ) from e
        return cls(model, model_id=Path(model_path).name or model_path)

    def infer(
        self,
        samples: np.ndarray,
        params: InferenceParams,
        backend: BackendHandle,
    ) -> WindowResult:
        segments, info = self.model.transcribe(
            np.ascontiguousarray(samples, dtype=np.float32),
            language=params.language,
            temperature=params.temperature,
            word_timestamps=params.word_timestamps,
            beam_size=1,
            condition_on_previous_text=False,
            vad_filter=False,
        )

        parsed: List[RawSegment] = []
        # ``segments`` is a generator; decoding happens while iterating.
        for seg in segments:
            text = seg.text.strip()
            if not text:
                continue
            words = None
            if params.word_timestamps and seg.words:
                words = tuple(
                    WordTimestamp(
                        word=w.word.strip(),
                        start=w.start,
                        end=max(w.end, w.start),
                        confidence=w.probability,
                    )
                    for w in seg.words
                )
            parsed.append(
                RawSegment(
                    text=text,
                    start=seg.start,
                    end=max(seg.end, seg.start),
                    confidence=_confidence(seg.avg_logprob),
                    words=words,
                )
            )

        language = info.language if info else None
        return WindowResult(segments=tuple(parsed), language=language)
