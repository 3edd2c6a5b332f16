"""
Chunk selection for re-transcription passes.

Each pass transcribes the audio that arrived since the previous pass plus a
short overlap, so words that straddle a flush boundary are heard in full.
Diarization gets its own trailing window: it asks who is talking right now,
not what changed.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from .accumulator import SampleAccumulator


@dataclass
class ChunkSelection:
    """The audio picked for one pass."""
    start: int                 # First sample of the transcription span
    end: int                   # One past the last sample
    audio: np.ndarray          # accumulator[start:end]
    context: np.ndarray        # Trailing window for diarization
    sample_rate: int = 16000

    @property
    def duration(self) -> float:
        return (self.end - self.start) / self.sample_rate


class ChunkSelector:
    """Decides which samples each transcription pass reads."""

    def __init__(
        self,
        sample_rate: int = 16000,
        overlap_seconds: float = 1.0,
        min_new_seconds: float = 1.0,
        context_seconds: float = 5.0
    ):
        self.sample_rate = sample_rate
        self.overlap_samples = int(sample_rate * overlap_seconds)
        self.min_new_samples = int(sample_rate * min_new_seconds)
        self.context_samples = int(sample_rate * context_seconds)

    def has_enough_audio(self, accumulator: SampleAccumulator) -> bool:
        return accumulator.unconsumed >= self.min_new_samples

    def span(self, accumulator: SampleAccumulator) -> Optional[tuple]:
        """The [start, end) span the next pass would read, or None to skip."""
        if not self.has_enough_audio(accumulator):
            return None
        start = max(0, accumulator.last_flush_index - self.overlap_samples)
        return start, len(accumulator)

    def context_window(self, accumulator: SampleAccumulator) -> np.ndarray:
        """Trailing audio for diarization, independent of the cursor."""
        return accumulator.window(min(len(accumulator), self.context_samples))

    def select(self, accumulator: SampleAccumulator) -> Optional[ChunkSelection]:
        """
        Pick the next pass and consume it.

        The cursor moves to the end of the buffer whether or not the pass
        later yields any text, so the same audio is never queued twice.

        Returns:
            ChunkSelection, or None when less than the minimum of new audio
            is available (cursor untouched)
        """
        span = self.span(accumulator)
        if span is None:
            return None

        start, end = span
        audio = accumulator.slice(start, end)
        accumulator.advance(end)

        return ChunkSelection(
            start=start,
            end=end,
            audio=audio,
            context=self.context_window(accumulator),
            sample_rate=self.sample_rate,
        )
