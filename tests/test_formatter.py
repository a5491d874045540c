"""Tests for OutputFormatter."""

import io
import json

import pytest

from purrscribe.config import OutputFormat
from purrscribe.data_models import RunMetrics, Segment, Transcript, WordTimestamp
from purrscribe.formatter import OutputFormatter, format_srt_time, format_timestamp


@pytest.fixture
def transcript():
    return Transcript(
        segments=(
            Segment(0, 0.0, 1.5, "Привет,", confidence=0.91),
            Segment(1, 1.5, 3.0, "", confidence=0.0, failed=True),
            Segment(
                2,
                61.5,
                63.25,
                " world ",
                confidence=0.8,
                words=[WordTimestamp("world", 61.5, 63.25, 0.8)],
            ),
        ),
        language="ru",
        model_id="stub-model",
    )


class TestTimestamps:
    """Test timestamp formatting."""

    @pytest.mark.parametrize(
        "seconds,expected",
        [
            (0.0, "00:00:00,000"),
            (61.5, "00:01:01,500"),
            (3661.123, "01:01:01,123"),
            (59.9996, "00:01:00,000"),
            (-0.2, "00:00:00,000"),
        ],
    )
    def test_srt_time(self, seconds, expected):
        """Test SRT timestamps round to the nearest millisecond."""
        assert format_srt_time(seconds) == expected

    def test_plain_timestamp(self):
        """Test the timestamped text layout."""
        assert format_timestamp(12.0) == "12.00s"


class TestRendering:
    """Test the three output formats."""

    def test_plain_text(self, transcript):
        """Test plain text joins non-empty segment texts."""
        assert OutputFormatter().render(transcript, "text") == "Привет, world"

    def test_timestamped_text(self, transcript):
        """Test timestamped text has one line per visible segment."""
        rendered = OutputFormatter(timestamps=True).render_text(transcript)
        assert rendered.splitlines() == [
            "[0.00s -> 1.50s] Привет,",
            "[61.50s -> 63.25s] world",
        ]

    def test_srt(self, transcript):
        """Test SRT entries are numbered from 1 and skip failed segments."""
        rendered = OutputFormatter().render(transcript, OutputFormat.SRT)
        assert rendered == (
            "1\n00:00:00,000 --> 00:00:01,500\nПривет,\n"
            "\n"
            "2\n00:01:01,500 --> 00:01:03,250\nworld\n"
        )

    def test_json_without_metrics(self, transcript):
        """Test JSON carries every segment, flagged failures and words."""
        data = json.loads(OutputFormatter().render(transcript, "json"))

        assert data["text"] == "Привет, world"
        assert data["language"] == "ru"
        assert data["model_id"] == "stub-model"
        assert len(data["segments"]) == 3
        assert data["segments"][1]["failed"] is True
        assert data["segments"][2]["words"][0]["word"] == "world"
        assert "processing_time" not in data

    def test_json_keeps_unicode(self, transcript):
        """Test non-ASCII text is written as-is."""
        assert "Привет" in OutputFormatter().render_json(transcript)

    def test_json_with_metrics(self, transcript):
        """Test metrics add duration and processing time."""
        metrics = RunMetrics(
            audio_duration=63.25,
            processing_time=1.23456,
            real_time_factor=0.0195,
            segment_count=3,
            backend_used="cpu",
            gpu_enabled=False,
        )

        data = json.loads(OutputFormatter().render_json(transcript, metrics))

        assert data["audio_duration"] == 63.25
        assert data["processing_time"] == 1.235

    def test_rendering_is_pure(self, transcript):
        """Test rendering the same transcript twice gives identical output."""
        formatter = OutputFormatter()
        for output_format in OutputFormat:
            assert formatter.render(transcript, output_format) == formatter.render(
                transcript, output_format
            )

    def test_empty_transcript(self):
        """Test an empty transcript renders to empty text and SRT."""
        empty = Transcript()
        assert OutputFormatter().render(empty, "text") == ""
        assert OutputFormatter().render(empty, "srt") == ""

    def test_unknown_format(self, transcript):
        """Test unsupported formats raise ValueError."""
        with pytest.raises(ValueError):
            OutputFormatter().render(transcript, "vtt")


class TestWrite:
    """Test writing to sinks."""

    def test_text_sink(self):
        """Test str output goes to text sinks unchanged."""
        sink = io.StringIO()
        OutputFormatter.write(sink, "héllo")
        assert sink.getvalue() == "héllo"

    def test_bytes_sink(self):
        """Test byte sinks receive UTF-8."""
        sink = io.BytesIO()
        OutputFormatter.write(sink, "héllo")
        assert sink.getvalue() == "héllo".encode("utf-8")
        assert not sink.closed
