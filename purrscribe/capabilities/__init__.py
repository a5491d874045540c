"""Inference capability registry.

Model libraries are optional extras and are only imported when a capability
of that family is requested.
"""

from pathlib import Path

from ..backends import BackendHandle
from ..config import TranscriptionConfig
from ..inference import InferenceCapability

GIGAAM_NAMES = {"gigaam", "giga-am"}
WHISPER_NAMES = {"faster_whisper", "faster-whisper", "whisper", "fw"}


def detect_family(model_path) -> str:
    """Guess the capability family from a model path or identifier."""
    path = Path(str(model_path))
    name = path.name.lower()
    if path.suffix == ".ckpt" or name.startswith(("v1_", "v2_", "v3_")):
        return "gigaam"
    return "faster_whisper"


def load_capability(
    name: str,
    config: TranscriptionConfig,
    backend: BackendHandle,
) -> InferenceCapability:
    """Resolve a capability by name and load its model.

    Args:
        name: Capability family, or "auto" to infer it from the model path
        config: Run configuration (model path, language, ...)
        backend: Compute context the model is placed on

    Raises:
        ValueError: If the name is unknown
        RuntimeError: If the optional library for the family is not installed
        InferenceError: If the model fails to load
    """
    normalized = (name or "auto").lower()
    if normalized == "auto":
        normalized = detect_family(config.model_path)

    if normalized in GIGAAM_NAMES:
        try:
            from .gigaam import GigaAMCapability
            import gigaam  # noqa: F401
        except ImportError as exc:
            raise RuntimeError(
                "gigaam capability requires the gigaam package. "
                "Install with: pip install purrscribe[gigaam]"
            ) from exc
        return GigaAMCapability.load(config, backend)

    if normalized in WHISPER_NAMES:
        try:
            from .faster_whisper import FasterWhisperCapability
            import faster_whisper  # noqa: F401
        except ImportError as exc:
            raise RuntimeError(
                "faster_whisper capability requires the faster-whisper package. "
                "Install with: pip install purrscribe[whisper]"
            ) from exc
        return FasterWhisperCapability.load(config, backend)

    raise ValueError(f"Unknown inference capability: {name}")


def default_capability_factory(
    config: TranscriptionConfig,
    backend: BackendHandle,
) -> InferenceCapability:
    return load_capability("auto", config, backend)


__all__ = ["default_capability_factory", "detect_family", "load_capability"]
