"""Run configuration for purrscribe.

A ``TranscriptionConfig`` is an immutable snapshot built once by the calling
shell before a run. The option set is exhaustive: nothing else affects
pipeline behavior.
"""

import os
import dataclasses
from dataclasses import asdict, dataclass, fields
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional, Union


class OutputFormat(str, Enum):
    """Supported renderings of a transcript."""
    TEXT = "text"
    JSON = "json"
    SRT = "srt"


def default_thread_count() -> int:
    return max(1, min(4, os.cpu_count() or 1))


@dataclass(frozen=True)
class TranscriptionConfig:
    """Immutable configuration snapshot for a run.

    Attributes:
        model_path: Path (or model store identifier) of the model weights
        language: Language code, or "auto" to detect it on the first window
        gpu_enabled: Try accelerator backends before falling back to CPU
        thread_count: Number of CPU threads for inference
        temperature: Sampling temperature in [0.0, 1.0] (0.0 = greedy)
        word_timestamps: Request word-level timestamps from the model
        output_format: One of text, json, srt
        streaming: Surface partial transcripts after every window
    """
    model_path: Union[str, Path]
    language: Optional[str] = "auto"
    gpu_enabled: bool = False
    thread_count: int = default_thread_count()
    temperature: float = 0.0
    word_timestamps: bool = False
    output_format: Union[OutputFormat, str] = OutputFormat.TEXT
    streaming: bool = False

    def __post_init__(self):
        # Validate model_path parameter
        if not isinstance(self.model_path, (str, Path)):
            raise TypeError(
                f"model_path must be str or Path, got {type(self.model_path).__name__}"
            )
        if not str(self.model_path):
            raise ValueError("model_path cannot be empty")

        # Validate language parameter
        language = self.language
        if language is None:
            language = "auto"
        if not isinstance(language, str):
            raise TypeError(
                f"language must be str, got {type(language).__name__}"
            )
        if not language:
            raise ValueError("language cannot be empty string")
        object.__setattr__(self, "language", language.lower())

        for name in ("gpu_enabled", "word_timestamps", "streaming"):
            value = getattr(self, name)
            if not isinstance(value, bool):
                raise TypeError(
                    f"{name} must be bool, got {type(value).__name__}"
                )

        # Validate thread_count parameter
        if isinstance(self.thread_count, bool) or not isinstance(self.thread_count, int):
            raise TypeError(
                f"thread_count must be int, got {type(self.thread_count).__name__}"
            )
        if self.thread_count < 1:
            raise ValueError(
                f"thread_count must be positive integer, got {self.thread_count}"
            )

        # Validate temperature parameter
        if isinstance(self.temperature, bool) or not isinstance(self.temperature, (int, float)):
            raise TypeError(
                f"temperature must be numeric, got {type(self.temperature).__name__}"
            )
        if self.temperature < 0.0 or self.temperature > 1.0:
            raise ValueError(
                f"temperature must be in range [0.0, 1.0], got {self.temperature}"
            )
        object.__setattr__(self, "temperature", float(self.temperature))

        # Validate output_format parameter
        try:
            output_format = OutputFormat(self.output_format)
        except ValueError as e:
            choices = ", ".join(f.value for f in OutputFormat)
            raise ValueError(
                f"output_format must be one of {choices}, got '{self.output_format}'"
            ) from e
        object.__setattr__(self, "output_format", output_format)

    @property
    def detect_language(self) -> bool:
        return self.language == "auto"

    @classmethod
    def from_dict(cls, options: Mapping[str, Any]) -> "TranscriptionConfig":
        """Build a config from a plain mapping such as parsed CLI arguments.

        Raises:
            ValueError: If the mapping contains an unrecognized option
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(options) - known)
        if unknown:
            raise ValueError(f"unknown configuration option(s): {', '.join(unknown)}")
        return cls(**dict(options))

    def replace(self, **changes: Any) -> "TranscriptionConfig":
        """Return a new validated snapshot with ``changes`` applied."""
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["model_path"] = str(self.model_path)
        data["output_format"] = self.output_format.value
        return data
