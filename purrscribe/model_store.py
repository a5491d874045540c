"""Local model store.

Resolves model identifiers ("base", "large-v3-turbo", "v3_ctc", ...) to
model weights already present on disk. Downloading and verification are out
of scope; the pipeline only ever sees a resolved local path.

Layout of the models directory::

    <models_dir>/
        base/                  # CTranslate2 (faster-whisper) model directory
        ggml-small.bin         # single-file Whisper weights
        v3_ctc.ckpt            # GigaAM checkpoint
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from .errors import ModelNotFound

logger = logging.getLogger(__name__)

MODELS_DIR_ENV = "PURRSCRIBE_MODELS_DIR"

WHISPER_MODELS = (
    "tiny",
    "tiny.en",
    "base",
    "base.en",
    "small",
    "small.en",
    "medium",
    "medium.en",
    "large-v1",
    "large-v2",
    "large-v3",
    "large-v3-turbo",
)

GIGAAM_MODELS = (
    "v2_ctc",
    "v2_rnnt",
    "v3_ctc",
    "v3_rnnt",
    "v3_e2e_ctc",
    "v3_e2e_rnnt",
)

# Tried in order by find_default_model before anything else installed.
DEFAULT_PREFERENCE = ("base", "base.en", "small", "small.en", "tiny", "tiny.en")


def default_models_dir() -> Path:
    env = os.environ.get(MODELS_DIR_ENV)
    if env:
        return Path(env).expanduser()
    return Path.home() / ".cache" / "purrscribe" / "models"


@dataclass(frozen=True)
class ModelInfo:
    """An installed model.

    Attributes:
        identifier: Model identifier ("base", "v3_ctc", ...)
        path: Local path to pass as ``TranscriptionConfig.model_path``
        family: "gigaam" or "faster_whisper"
    """
    identifier: str
    path: Path
    family: str


class ModelStore:
    """Maps model identifiers to local model weights.

    Attributes:
        models_dir: Directory holding installed models
    """

    def __init__(self, models_dir: Optional[Union[str, Path]] = None):
        self.models_dir = Path(models_dir) if models_dir is not None else default_models_dir()

    def candidates(self, identifier: str) -> List[Path]:
        """Paths under ``models_dir`` that could hold ``identifier``."""
        return [
            self.models_dir / identifier,
            self.models_dir / f"faster-whisper-{identifier}",
            self.models_dir / f"ggml-{identifier}.bin",
            self.models_dir / f"{identifier}.ckpt",
        ]

    def find(self, identifier: str) -> Optional[Path]:
        for candidate in self.candidates(identifier):
            if candidate.exists():
                return candidate
        return None

    def resolve(self, identifier: Union[str, Path]) -> Path:
        """Resolve an existing path or a model identifier to local weights.

        Raises:
            ModelNotFound: If nothing on disk matches ``identifier``
        """
        path = Path(identifier).expanduser()
        if path.exists():
            return path

        found = self.find(str(identifier))
        if found is not None:
            logger.debug(f"Resolved model '{identifier}' to {found}")
            return found

        known = str(identifier) in WHISPER_MODELS or str(identifier) in GIGAAM_MODELS
        hint = "not installed" if known else "unknown model identifier"
        raise ModelNotFound(
            f"Model '{identifier}' not found in {self.models_dir} ({hint})"
        )

    def list_models(self) -> List[ModelInfo]:
        """Installed models, in the order of the known model tables."""
        models = []
        for family, identifiers in (
            ("faster_whisper", WHISPER_MODELS),
            ("gigaam", GIGAAM_MODELS),
        ):
            for identifier in identifiers:
                path = self.find(identifier)
                if path is not None:
                    models.append(ModelInfo(identifier, path, family))
        return models

    def find_default_model(self) -> Path:
        """First installed model by preference, else any installed model.

        Raises:
            ModelNotFound: If no model is installed
        """
        for identifier in DEFAULT_PREFERENCE:
            path = self.find(identifier)
            if path is not None:
                return path
        installed = self.list_models()
        if installed:
            return installed[0].path
        raise ModelNotFound(f"No model found in {self.models_dir}")
