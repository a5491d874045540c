"""Segment aggregation across overlapping windows.

Consecutive windows share an overlap margin, so speech near a window boundary
is usually transcribed twice. The aggregator merges each window's absolute
segments into one timeline where the later window wins the overlapping span:

* earlier segments starting at or after a new segment's start are dropped;
* earlier segments running into a new segment by more than the overlap
  tolerance are truncated at the new segment's start. Their word timestamps
  are trimmed when available; otherwise, if the tail of the earlier text
  matches the head of the new text, the duplicated words are cut;
* failed-window placeholders never displace real text; they are shortened
  to start where the earlier text ends.
"""

import logging
from dataclasses import dataclass, replace
from difflib import SequenceMatcher
from typing import List, Optional, Sequence

from .data_models import RawSegment, Segment, Transcript
from .errors import AggregationError

logger = logging.getLogger(__name__)

DEFAULT_OVERLAP_TOLERANCE = 0.1
DEFAULT_SIMILARITY_THRESHOLD = 0.6

_EPSILON = 1e-9


def _normalize_token(token: str) -> str:
    return "".join(ch for ch in token.lower() if ch.isalnum())


def duplicated_token_count(
    earlier: str,
    later: str,
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> int:
    """Length of the longest tail of ``earlier`` repeated at the head of ``later``.

    Tails are compared token by token (case and punctuation insensitive) with
    ``difflib.SequenceMatcher``; a tail of length k counts as repeated when
    its similarity ratio with the first k tokens of ``later`` reaches
    ``threshold``. Leading tail tokens with no counterpart in ``later`` are
    kept.

    Returns:
        Number of trailing tokens of ``earlier`` to cut, 0 if none match
    """
    a = [_normalize_token(t) for t in earlier.split()]
    b = [_normalize_token(t) for t in later.split()]
    for k in range(min(len(a), len(b)), 0, -1):
        matcher = SequenceMatcher(None, a[-k:], b[:k], autojunk=False)
        if matcher.ratio() >= threshold:
            first = matcher.get_matching_blocks()[0]
            return k - first.a
    return 0


@dataclass
class _Entry:
    segment: RawSegment
    window_index: int
    window_end: float


class SegmentAggregator:
    """Merges per-window segments into a single ordered transcript.

    Attributes:
        model_id: Identifier written into the transcript
        language: Language written into the transcript
        overlap_tolerance: Largest overlap (seconds) left unresolved
        similarity_threshold: Ratio at which boundary texts count as duplicates
    """

    def __init__(
        self,
        model_id: str = "",
        language: Optional[str] = None,
        overlap_tolerance: float = DEFAULT_OVERLAP_TOLERANCE,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ):
        if overlap_tolerance < 0:
            raise ValueError(
                f"overlap_tolerance must be non-negative, got {overlap_tolerance}"
            )
        if not 0.0 < similarity_threshold <= 1.0:
            raise ValueError(
                f"similarity_threshold must be in range (0.0, 1.0], got {similarity_threshold}"
            )
        self.model_id = model_id
        self.language = language
        self.overlap_tolerance = overlap_tolerance
        self.similarity_threshold = similarity_threshold
        self._entries: List[_Entry] = []
        self._window_count = 0
        self._last_offset = float("-inf")

    @property
    def window_count(self) -> int:
        return self._window_count

    def add_window(
        self,
        segments: Sequence[RawSegment],
        window_index: int,
        offset_seconds: float,
        end_seconds: float,
    ) -> None:
        """Merge the absolute segments of one window.

        Windows must be added in file order.

        Raises:
            AggregationError: If windows arrive out of order
        """
        if offset_seconds < self._last_offset:
            raise AggregationError(
                f"window {window_index} at {offset_seconds:.2f}s arrived after "
                f"a window at {self._last_offset:.2f}s",
                window_offset=offset_seconds,
            )
        self._last_offset = offset_seconds
        self._window_count += 1

        for segment in sorted(segments, key=lambda s: (s.start, s.end)):
            self._merge(segment, window_index, offset_seconds, end_seconds)

    def _merge(
        self,
        new: RawSegment,
        window_index: int,
        offset_seconds: float,
        end_seconds: float,
    ) -> None:
        tolerance = self.overlap_tolerance

        if new.failed:
            # A placeholder only covers audio no earlier segment already has.
            covered = max(
                (e.segment.end for e in self._entries if e.window_index != window_index),
                default=new.start,
            )
            start = min(max(new.start, covered), new.end)
            if start != new.start:
                new = replace(new, start=start)
        else:
            while (
                self._entries
                and self._entries[-1].window_index != window_index
                and self._entries[-1].segment.start >= new.start
            ):
                dropped = self._entries.pop()
                logger.debug(
                    f"Dropped segment at {dropped.segment.start:.2f}s superseded "
                    f"by window {window_index}"
                )

        for i in range(len(self._entries) - 1, -1, -1):
            entry = self._entries[i]
            if entry.window_index != window_index and entry.window_end <= offset_seconds:
                break
            if entry.segment.end - new.start <= tolerance + _EPSILON:
                continue
            if entry.window_index == window_index or new.failed:
                entry.segment = replace(
                    entry.segment,
                    end=max(entry.segment.start, new.start),
                )
                continue
            truncated = self._truncate(entry.segment, new)
            if truncated is None:
                del self._entries[i]
                logger.debug(f"Removed duplicate segment before {new.start:.2f}s")
            else:
                entry.segment = truncated

        self._entries.append(_Entry(new, window_index, end_seconds))

    def _truncate(self, earlier: RawSegment, new: RawSegment) -> Optional[RawSegment]:
        """Cut ``earlier`` at ``new.start``; None if nothing of it remains."""
        cut = new.start
        if earlier.failed:
            return replace(earlier, end=cut)

        if earlier.words:
            kept = []
            for word in earlier.words:
                if word.start >= cut:
                    break
                kept.append(replace(word, end=min(word.end, cut)))
            if not kept:
                return None
            return replace(
                earlier,
                end=cut,
                words=tuple(kept),
                text=" ".join(w.word.strip() for w in kept if w.word.strip()),
            )

        text = earlier.text
        if not new.failed and new.text.strip():
            count = duplicated_token_count(earlier.text, new.text, self.similarity_threshold)
            if count:
                tokens = earlier.text.split()
                text = " ".join(tokens[:len(tokens) - count])
                if not text:
                    return None
                logger.debug(f"Trimmed {count} duplicated token(s) before {cut:.2f}s")
        return replace(earlier, end=cut, text=text)

    def snapshot(self) -> Transcript:
        """Transcript of everything merged so far."""
        segments = tuple(
            Segment(
                id=i,
                start=entry.segment.start,
                end=entry.segment.end,
                text=entry.segment.text,
                confidence=entry.segment.confidence,
                words=list(entry.segment.words) if entry.segment.words is not None else None,
                failed=entry.segment.failed,
            )
            for i, entry in enumerate(self._entries)
        )
        return Transcript(segments=segments, language=self.language, model_id=self.model_id)

    def finalize(self) -> Transcript:
        """Validate the merged timeline and return the final transcript.

        Raises:
            AggregationError: If segments are out of order or overlap by more
                than the tolerance
        """
        transcript = self.snapshot()
        check_timeline(transcript.segments, self.overlap_tolerance)
        return transcript


def check_timeline(segments: Sequence[Segment], overlap_tolerance: float) -> None:
    """Raise AggregationError unless ``segments`` form a valid timeline."""
    furthest_end = float("-inf")
    previous_start = float("-inf")
    for segment in segments:
        if segment.start < previous_start - _EPSILON:
            raise AggregationError(
                f"segment {segment.id} starts at {segment.start:.3f}s, "
                f"before the previous segment ({previous_start:.3f}s)"
            )
        if furthest_end - segment.start > overlap_tolerance + _EPSILON:
            raise AggregationError(
                f"segment {segment.id} at {segment.start:.3f}s overlaps earlier "
                f"audio ending at {furthest_end:.3f}s"
            )
        previous_start = segment.start
        furthest_end = max(furthest_end, segment.end)
