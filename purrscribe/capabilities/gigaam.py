"""GigaAM inference capability.

GigaAM ASR models decode a whole window into a single string, so each window
yields one segment spanning its full duration. The models are Russian-only.
"""

import logging
from pathlib import Path

import numpy as np
import torch

from ..backends import BackendHandle, BackendKind
from ..config import TranscriptionConfig
from ..data_models import RawSegment
from ..errors import ErrorCode, InferenceError
from ..inference import InferenceParams, WindowResult

logger = logging.getLogger(__name__)

GIGAAM_LANGUAGE = "ru"


class GigaAMCapability:
    """Wraps a loaded GigaAM ASR model.

    Attributes:
        model: GigaAM model instance
        model_id: Identifier reported in the transcript
    """

    def __init__(self, model, model_id: str):
        self.model = model
        self.model_id = model_id
        self._device = next(model.parameters()).device

    @classmethod
    def load(cls, config: TranscriptionConfig, backend: BackendHandle) -> "GigaAMCapability":
        """Load a GigaAM model for ``backend``.

        ``config.model_path`` is either a model name ("v3_ctc") or a path to a
        downloaded ``<name>.ckpt`` checkpoint.

        Raises:
            InferenceError: If the model cannot be loaded or is not an ASR model
        """
        import gigaam
        from gigaam.model import GigaAMASR

        path = Path(config.model_path)
        if path.is_file():
            model_name, download_root = path.stem, str(path.parent)
        else:
            model_name, download_root = str(config.model_path), None

        device = "cuda" if backend.kind in (BackendKind.CUDA, BackendKind.ROCM) else "cpu"
        logger.info(f"Loading GigaAM model '{model_name}' on device '{device}'")
        try:
            model = gigaam.load_model(
                model_name=model_name,
                fp16_encoder=device == "cuda",
                use_flash=False,
                device=device,
                download_root=download_root,
            )
        except (ValueError, FileNotFoundError, RuntimeError, OSError) as e:
            raise InferenceError(
                f"Failed to load GigaAM model '{model_name}': {e}",
                ErrorCode.MODEL_LOAD_FAILED,
                fatal=True,
            ) from e

        if not isinstance(model, GigaAMASR):
            raise InferenceError(
                f"Model '{model_name}' is not an ASR model (CTC/RNNT)",
                ErrorCode.MODEL_LOAD_FAILED,
                fatal=True,
            )
        model.eval()
        return cls(model, model_id=f"gigaam-{model_name}")

    @torch.inference_mode()
    def infer(
        self,
        samples: np.ndarray,
        params: InferenceParams,
        backend: BackendHandle,
    ) -> WindowResult:
        """Transcribe one window.

        ``temperature`` and ``word_timestamps`` are ignored; GigaAM decodes
        greedily and has no word alignment.
        """
        duration = len(samples) / 16000
        if len(samples) == 0:
            return WindowResult(segments=(), language=GIGAAM_LANGUAGE)

        wav = torch.from_numpy(np.ascontiguousarray(samples)).float().unsqueeze(0)
        lengths = torch.tensor([wav.shape[-1]], dtype=torch.long)
        wav = wav.to(self._device)
        lengths = lengths.to(self._device)

        if self._device.type == "cuda":
            with torch.autocast(device_type="cuda", dtype=torch.float16):
                encoded, encoded_len = self.model.forward(wav, lengths)
        else:
            encoded, encoded_len = self.model.forward(wav, lengths)
        text = self.model.decoding.decode(self.model.head, encoded, encoded_len)[0]

        segments = ()
        if text.strip():
            segments = (RawSegment(text=text.strip(), start=0.0, end=duration),)
        return WindowResult(segments=segments, language=GIGAAM_LANGUAGE)
