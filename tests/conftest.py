"""
Pytest fixtures for Parley tests.
"""

import os
import sys
import tempfile
from concurrent.futures import Future
from pathlib import Path
import numpy as np
import pytest

# Keep logs and config of the test run out of the real home directory
_TEST_HOME = tempfile.mkdtemp(prefix="parley-test-home-")
os.environ["PARLEY_HOME"] = _TEST_HOME

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from parley.engines.base import (  # noqa: E402
    CaptureEngine,
    CaptureError,
    DiarizationEngine,
    DiarizationError,
    DiarizationResult,
    SpeakerSegment,
    TranscriptionEngine,
    TranscriptionResult,
)
from parley.meeting.history import MeetingHistory  # noqa: E402
from parley.meeting.models import MeetingSummary, SpeakerProfile  # noqa: E402


class FakeCapture(CaptureEngine):
    """Capture engine that delivers whatever the test pushed when flushed."""

    def __init__(self, available=True, fail_start=False):
        super().__init__()
        self.available = available
        self.fail_start = fail_start
        self.recording = False
        self.pending = []
        self.flush_count = 0

    def is_available(self):
        return self.available

    def is_recording(self):
        return self.recording

    def start_recording(self):
        if self.fail_start:
            raise CaptureError("device busy")
        self.recording = True

    def stop_recording(self):
        self.recording = False

    def push(self, samples):
        self.pending.append(np.asarray(samples, dtype=np.float32))

    def flush(self):
        self.flush_count += 1
        blocks, self.pending = self.pending, []
        for block in blocks:
            self._on_audio(block)
        ack = Future()
        ack.set_result(sum(len(b) for b in blocks))
        return ack


class FakeTranscriber(TranscriptionEngine):
    """Returns queued texts in order, then the default text."""

    ENGINE_ID = "fake"
    ENGINE_NAME = "Fake"

    def __init__(self, texts=None, default="", error=None):
        super().__init__()
        self.texts = list(texts or [])
        self.default = default
        self.error = error
        self.calls = []

    def load(self, model_name, device="auto", compute_type="float16"):
        self._loaded = True
        return True

    def transcribe(self, audio, sample_rate=16000, language=None, initial_prompt=None, vad_filter=True, **kwargs):
        self.calls.append(len(audio))
        if self.error is not None:
            error, self.error = self.error, None
            raise error
        text = self.texts.pop(0) if self.texts else self.default
        return TranscriptionResult(text=text, duration_seconds=len(audio) / sample_rate)


class FakeDiarizer(DiarizationEngine):
    """Reports one speaker covering the whole window, with a fixed embedding."""

    def __init__(self, label="SPEAKER_00", embedding=None, error=None, results=None):
        self.label = label
        self.embedding = embedding
        self.error = error
        self.results = list(results or [])
        self.calls = []
        self.known = None

    def diarize(self, audio, sample_rate=16000):
        self.calls.append(np.array(audio, copy=True))
        if self.error is not None:
            raise self.error
        if self.results:
            return self.results.pop(0)
        duration = len(audio) / sample_rate
        embeddings = {} if self.embedding is None else {self.label: np.asarray(self.embedding, dtype=np.float32)}
        return DiarizationResult(
            segments=[SpeakerSegment(start=0.0, end=duration, speaker=self.label)],
            embeddings=embeddings,
        )

    def load_known_speakers(self, profiles):
        self.known = list(profiles)


class FakeDirectory:
    """In-memory stand-in for SpeakerDirectory."""

    def __init__(self, profiles=None):
        self._profiles = list(profiles or [])

    def profiles(self):
        return list(self._profiles)

    def find_profile(self, profile_id):
        for profile in self._profiles:
            if profile.id == profile_id:
                return profile
        return None


class FakeSummarizer:
    def __init__(self, summary=None, error=None):
        self.summary = summary or MeetingSummary(summary="We talked.", action_items=["Alice: send notes"])
        self.error = error
        self.calls = []

    def summarize(self, meeting):
        self.calls.append(meeting)
        if self.error is not None:
            raise self.error
        return self.summary


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def unit(*values):
    vector = np.asarray(values, dtype=np.float32)
    return vector / np.linalg.norm(vector)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def history(temp_dir):
    return MeetingHistory(temp_dir / "meetings")


@pytest.fixture
def alice():
    return SpeakerProfile(name="Alice", embedding=unit(1.0, 0.0, 0.0), role="PM", group_name="Product")


@pytest.fixture
def bob():
    return SpeakerProfile(name="Bob", embedding=unit(0.0, 1.0, 0.0))


@pytest.fixture
def fake_capture():
    return FakeCapture()


@pytest.fixture
def fake_summarizer():
    return FakeSummarizer()


@pytest.fixture
def speech():
    """Returns n seconds of quiet but non-silent 16 kHz audio."""
    def make(seconds, level=0.01):
        t = np.arange(int(seconds * 16000), dtype=np.float32) / 16000
        return (level * np.sin(2 * np.pi * 220.0 * t)).astype(np.float32)
    return make


@pytest.fixture
def profile_matching():
    """Embedding whose cosine similarity with `profile` is exactly `score` (3-d unit vectors)."""
    def make(profile, score):
        base = np.asarray(profile.embedding, dtype=np.float64)
        base = base / np.linalg.norm(base)
        other = np.roll(base, 1)
        other = other - np.dot(other, base) * base
        other = other / np.linalg.norm(other)
        return (score * base + np.sqrt(1.0 - score ** 2) * other).astype(np.float32)
    return make


__all__ = [
    "FakeCapture", "FakeTranscriber", "FakeDiarizer", "FakeDirectory",
    "FakeSummarizer", "FakeClock", "DiarizationError", "unit",
]
