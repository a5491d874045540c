"""Rendering of transcripts as text, JSON or SRT.

Rendering is a pure function of the Transcript (and, for JSON, the run
metrics). Segments standing in for failed windows carry no text, so they are
left out of text and SRT output and kept, flagged, in JSON.
"""

import io
import json
from typing import BinaryIO, List, Optional, TextIO, Union

from .config import OutputFormat
from .data_models import RunMetrics, Segment, Transcript


def format_timestamp(seconds: float) -> str:
    """Format seconds for the timestamped text layout ("12.00s")."""
    return f"{seconds:.2f}s"


def format_srt_time(seconds: float) -> str:
    """Format seconds as an SRT timestamp (HH:MM:SS,mmm).

    Example:
        >>> format_srt_time(3661.123)
        '01:01:01,123'
    """
    total_ms = max(0, int(round(seconds * 1000)))
    hours, rest = divmod(total_ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    secs, millis = divmod(rest, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


def _visible(segments) -> List[Segment]:
    return [s for s in segments if not s.failed and s.text.strip()]


class OutputFormatter:
    """Renders a Transcript in one of the supported output formats.

    Attributes:
        timestamps: Prefix each text line with its time span
    """

    def __init__(self, timestamps: bool = False):
        self.timestamps = timestamps

    def render(
        self,
        transcript: Transcript,
        output_format: Union[OutputFormat, str] = OutputFormat.TEXT,
        metrics: Optional[RunMetrics] = None,
    ) -> str:
        """Render ``transcript``.

        Raises:
            ValueError: If output_format is not a supported format
        """
        output_format = OutputFormat(output_format)
        if output_format is OutputFormat.JSON:
            return self.render_json(transcript, metrics)
        if output_format is OutputFormat.SRT:
            return self.render_srt(transcript)
        return self.render_text(transcript)

    def render_text(self, transcript: Transcript) -> str:
        if not self.timestamps:
            return transcript.text
        return "\n".join(
            f"[{format_timestamp(s.start)} -> {format_timestamp(s.end)}] {s.text.strip()}"
            for s in _visible(transcript.segments)
        )

    def render_json(
        self,
        transcript: Transcript,
        metrics: Optional[RunMetrics] = None,
    ) -> str:
        """JSON document; without ``metrics`` the output is reproducible."""
        data = transcript.to_dict()
        if metrics is not None:
            data["audio_duration"] = round(metrics.audio_duration, 3)
            data["processing_time"] = round(metrics.processing_time, 3)
        return json.dumps(data, indent=2, ensure_ascii=False)

    def render_srt(self, transcript: Transcript) -> str:
        entries = [
            f"{i}\n{format_srt_time(s.start)} --> {format_srt_time(s.end)}\n{s.text.strip()}\n"
            for i, s in enumerate(_visible(transcript.segments), start=1)
        ]
        return "\n".join(entries)

    @staticmethod
    def write(sink: Union[TextIO, BinaryIO], rendered: str) -> None:
        """Write rendered output to a text or byte sink; the sink stays open."""
        if isinstance(sink, io.TextIOBase):
            sink.write(rendered)
        else:
            sink.write(rendered.encode("utf-8"))
        flush = getattr(sink, "flush", None)
        if flush is not None:
            flush()
