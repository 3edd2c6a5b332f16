"""
Sample accumulator for live meetings.

Holds the last minute of mono audio plus the cursor marking how much of it
has already been handed to transcription.
"""

import numpy as np


class SampleAccumulator:
    """
    Append-only float32 sample buffer with a bounded retention window.

    Invariants: 0 <= last_flush_index <= len(self) <= max_samples.
    """

    def __init__(self, sample_rate: int = 16000, max_seconds: float = 60.0):
        self.sample_rate = sample_rate
        self.max_samples = int(sample_rate * max_seconds)
        self._buffer = np.zeros(0, dtype=np.float32)
        self.last_flush_index = 0

    def __len__(self) -> int:
        return len(self._buffer)

    @property
    def duration(self) -> float:
        """Buffered audio in seconds."""
        return len(self._buffer) / self.sample_rate

    @property
    def unconsumed(self) -> int:
        """Samples appended since the last transcription pass."""
        return len(self._buffer) - self.last_flush_index

    def append(self, samples) -> None:
        """Add samples to the tail, then enforce the retention window."""
        samples = np.asarray(samples, dtype=np.float32).reshape(-1)
        if samples.size == 0:
            return
        self._buffer = np.concatenate([self._buffer, samples])
        self.trim()

    def trim(self) -> int:
        """Drop the oldest samples beyond the cap. Returns how many were dropped."""
        excess = len(self._buffer) - self.max_samples
        if excess <= 0:
            return 0
        self._buffer = self._buffer[excess:]
        self.last_flush_index = max(0, self.last_flush_index - excess)
        return excess

    def window(self, last_n: int) -> np.ndarray:
        """Copy of the trailing last_n samples (fewer if the buffer is shorter)."""
        if last_n <= 0:
            return np.zeros(0, dtype=np.float32)
        return self._buffer[-last_n:].copy()

    def slice(self, start: int, end: int = None) -> np.ndarray:
        """Copy of samples [start, end)."""
        return self._buffer[start:end].copy()

    def advance(self, index: int) -> None:
        """Move the cursor forward to index (clamped to the buffer)."""
        self.last_flush_index = min(max(self.last_flush_index, index), len(self._buffer))

    def reset(self) -> None:
        self._buffer = np.zeros(0, dtype=np.float32)
        self.last_flush_index = 0
