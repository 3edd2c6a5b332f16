"""
End-to-end tests for the live meeting pipeline with in-process fakes.
"""

import threading
from concurrent.futures import Future

import numpy as np
import pytest

from conftest import (
    FakeCapture,
    FakeClock,
    FakeDiarizer,
    FakeDirectory,
    FakeSummarizer,
    FakeTranscriber,
    unit,
)
from parley.engines.base import CaptureError, DiarizationError
from parley.meeting.manager import MeetingError, MeetingPipeline, MeetingState, PipelineConfig
from parley.meeting.models import MeetingStatus
from parley.meeting.summarizer import SummarizationError

TIMEOUT = 10.0


@pytest.fixture
def make_pipeline(history):
    """Build pipelines with a long timer (tests drive passes with flush_now) and close them afterwards."""
    pipelines = []

    def make(capture=None, transcriber=None, diarizer=None, directory=None,
             summarizer=None, clock=None, **config):
        config.setdefault("flush_interval", 3600.0)
        pipeline = MeetingPipeline(
            capture=capture or FakeCapture(),
            transcriber=transcriber or FakeTranscriber(default="hello"),
            diarizer=diarizer,
            directory=directory,
            summarizer=summarizer,
            history=history,
            config=PipelineConfig(**config),
            **({"clock": clock} if clock is not None else {}),
        )
        pipelines.append(pipeline)
        return pipeline

    yield make
    for pipeline in pipelines:
        pipeline.close()


def _run_pass(pipeline):
    future = pipeline.flush_now()
    assert future is not None
    future.result(timeout=TIMEOUT)


class TestEndToEnd:
    """Record, attribute, stop, complete."""

    def test_enrolled_speaker_meeting(self, make_pipeline, history, alice, speech, profile_matching, fake_summarizer):
        """20 s of audio, one profile matching at 0.9 -> one participant, attributed segments, completed."""
        capture = FakeCapture()
        diarizer = FakeDiarizer(embedding=profile_matching(alice, 0.9))
        pipeline = make_pipeline(
            capture=capture,
            transcriber=FakeTranscriber(default="let's get started"),
            diarizer=diarizer,
            directory=FakeDirectory([alice]),
            summarizer=fake_summarizer,
        )
        updates = []
        pipeline.add_listener(updates.append)

        pipeline.start_meeting("Standup")
        assert pipeline.is_meeting_active
        assert pipeline.state == MeetingState.RECORDING

        capture.push(speech(20.0))
        _run_pass(pipeline)

        meeting = pipeline.current_meeting
        assert meeting.participant_ids == [alice.id]
        assert meeting.segments[0].speaker_name == "Alice"
        assert meeting.segments[0].text == "let's get started"
        assert updates[0].speaker_name == "Alice" and updates[0].is_final

        completed = pipeline.stop_meeting().result(timeout=TIMEOUT)

        assert completed.status == MeetingStatus.COMPLETED
        assert completed.summary == "We talked."
        assert completed.action_items == ["Alice: send notes"]
        assert pipeline.state == MeetingState.COMPLETED
        assert updates[-1].meeting_completed

        stored = history.load(completed.id)
        assert stored.status == MeetingStatus.COMPLETED
        assert stored.participant_ids == [alice.id]

    def test_diarizer_sees_trailing_context(self, make_pipeline, alice, speech):
        capture = FakeCapture()
        diarizer = FakeDiarizer(embedding=alice.embedding)
        pipeline = make_pipeline(capture=capture, diarizer=diarizer, directory=FakeDirectory([alice]))
        pipeline.start_meeting()

        capture.push(speech(20.0))
        _run_pass(pipeline)

        assert len(diarizer.calls[0]) == 5 * 16000

    def test_overlapping_passes(self, make_pipeline, speech):
        """The second pass re-reads one second of the first."""
        capture = FakeCapture()
        transcriber = FakeTranscriber(default="words")
        pipeline = make_pipeline(capture=capture, transcriber=transcriber)
        pipeline.start_meeting()

        capture.push(speech(4.0))
        _run_pass(pipeline)
        capture.push(speech(3.0))
        _run_pass(pipeline)

        assert transcriber.calls == [4 * 16000, 4 * 16000]

    def test_sub_second_pass_skipped(self, make_pipeline, speech):
        capture = FakeCapture()
        transcriber = FakeTranscriber(default="words")
        pipeline = make_pipeline(capture=capture, transcriber=transcriber)
        pipeline.start_meeting()

        capture.push(speech(0.5))
        assert pipeline.flush_now() is None
        assert transcriber.calls == []

    def test_commits_in_pass_order(self, make_pipeline, speech):
        """Consecutive passes from the same speaker merge in order."""
        capture = FakeCapture()
        pipeline = make_pipeline(capture=capture, transcriber=FakeTranscriber(texts=["hello", "world"]))
        pipeline.start_meeting()

        capture.push(speech(2.0))
        first = pipeline.flush_now()
        capture.push(speech(2.0))
        second = pipeline.flush_now()
        first.result(timeout=TIMEOUT)
        second.result(timeout=TIMEOUT)

        segments = pipeline.current_meeting.segments
        assert len(segments) == 1
        assert segments[0].text == "hello world"
        assert segments[0].speaker_name == "Participant"

    def test_final_pass_on_stop(self, make_pipeline, speech):
        """Audio still buffered in the capture engine is transcribed on stop."""
        capture = FakeCapture()
        pipeline = make_pipeline(capture=capture, transcriber=FakeTranscriber(texts=["tail end"]))
        pipeline.start_meeting()

        capture.push(speech(3.0))
        completed = pipeline.stop_meeting().result(timeout=TIMEOUT)

        assert [s.text for s in completed.segments] == ["tail end"]
        assert not capture.recording
        assert capture.flush_count == 1

    def test_timer_drives_passes(self, make_pipeline, speech):
        capture = FakeCapture()
        transcriber = FakeTranscriber(default="tick")
        pipeline = make_pipeline(capture=capture, transcriber=transcriber, flush_interval=0.05)
        committed = threading.Event()
        pipeline.add_listener(lambda update: committed.set())

        pipeline.start_meeting()
        capture.push(speech(2.0))

        assert committed.wait(TIMEOUT)
        assert pipeline.current_meeting.segments[0].text == "tick"


class TestContinuity:
    """Speaker continuity across passes."""

    def test_weak_match_keeps_previous_speaker(self, make_pipeline, alice, speech):
        capture = FakeCapture()
        diarizer = FakeDiarizer(embedding=alice.embedding)
        pipeline = make_pipeline(
            capture=capture,
            transcriber=FakeTranscriber(texts=["first", "second"]),
            diarizer=diarizer,
            directory=FakeDirectory([alice]),
        )
        pipeline.start_meeting()

        capture.push(speech(2.0))
        _run_pass(pipeline)

        diarizer.embedding = unit(0.0, 0.0, 1.0)
        capture.push(speech(2.0))
        _run_pass(pipeline)

        segments = pipeline.current_meeting.segments
        assert len(segments) == 1
        assert segments[0].text == "first second"
        assert segments[0].speaker_name == "Alice"

    def test_new_speaker_starts_segment(self, make_pipeline, alice, bob, speech):
        capture = FakeCapture()
        diarizer = FakeDiarizer(embedding=alice.embedding)
        pipeline = make_pipeline(
            capture=capture,
            transcriber=FakeTranscriber(texts=["hi bob", "hi alice"]),
            diarizer=diarizer,
            directory=FakeDirectory([alice, bob]),
        )
        pipeline.start_meeting()

        capture.push(speech(2.0))
        _run_pass(pipeline)
        diarizer.embedding = bob.embedding
        capture.push(speech(2.0))
        _run_pass(pipeline)

        meeting = pipeline.current_meeting
        assert [s.speaker_name for s in meeting.segments] == ["Alice", "Bob"]
        assert meeting.participant_ids == [alice.id, bob.id]


class TestFailures:
    """Failures stay local to their pass."""

    def test_transcription_failure_skips_pass(self, make_pipeline, speech):
        capture = FakeCapture()
        transcriber = FakeTranscriber(default="recovered", error=RuntimeError("cuda oom"))
        pipeline = make_pipeline(capture=capture, transcriber=transcriber)
        pipeline.start_meeting()

        capture.push(speech(2.0))
        _run_pass(pipeline)
        assert pipeline.current_meeting.segments == []

        capture.push(speech(2.0))
        _run_pass(pipeline)
        assert [s.text for s in pipeline.current_meeting.segments] == ["recovered"]

    def test_diarization_failure_keeps_last_speaker(self, make_pipeline, speech, alice):
        capture = FakeCapture()
        diarizer = FakeDiarizer(error=DiarizationError("bad window"))
        pipeline = make_pipeline(capture=capture, diarizer=diarizer, directory=FakeDirectory([alice]))
        pipeline.start_meeting()

        capture.push(speech(2.0))
        _run_pass(pipeline)
        assert pipeline.current_meeting.segments[0].speaker_name == "Participant"

    def test_summarizer_failure_still_completes(self, make_pipeline, speech, history):
        capture = FakeCapture()
        pipeline = make_pipeline(capture=capture, summarizer=FakeSummarizer(error=SummarizationError("429")))
        pipeline.start_meeting()
        capture.push(speech(2.0))

        completed = pipeline.stop_meeting().result(timeout=TIMEOUT)

        assert completed.status == MeetingStatus.COMPLETED
        assert completed.summary is None
        assert history.load(completed.id).status == MeetingStatus.COMPLETED

    def test_listener_errors_are_isolated(self, make_pipeline, speech):
        capture = FakeCapture()
        pipeline = make_pipeline(capture=capture)
        received = []

        def broken(update):
            raise ValueError("ui gone")

        pipeline.add_listener(broken)
        pipeline.add_listener(received.append)
        pipeline.start_meeting()
        capture.push(speech(2.0))
        _run_pass(pipeline)

        assert received[0].text == "hello"

    def test_unacknowledged_flush_does_not_stall(self, make_pipeline, speech):
        """A flush that never resolves only costs the settle timeout."""
        class SilentFlush(FakeCapture):
            def flush(self):
                blocks, self.pending = self.pending, []
                for block in blocks:
                    self._on_audio(block)
                return Future()

        capture = SilentFlush()
        pipeline = make_pipeline(capture=capture, flush_settle_timeout=0.05, final_settle_timeout=0.05)
        pipeline.start_meeting()
        capture.push(speech(2.0))
        _run_pass(pipeline)

        completed = pipeline.stop_meeting().result(timeout=TIMEOUT)
        assert completed.segments[0].text == "hello"

    def test_stop_capture_error_still_completes(self, make_pipeline, speech):
        class StubbornCapture(FakeCapture):
            def stop_recording(self):
                raise CaptureError("device unplugged")

        pipeline = make_pipeline(capture=StubbornCapture())
        pipeline.start_meeting()
        completed = pipeline.stop_meeting().result(timeout=TIMEOUT)
        assert completed.status == MeetingStatus.COMPLETED


class TestLifecycle:
    """State machine guards and queries."""

    def test_start_requires_available_capture(self, make_pipeline):
        pipeline = make_pipeline(capture=FakeCapture(available=False))
        with pytest.raises(MeetingError):
            pipeline.start_meeting()
        assert pipeline.state == MeetingState.IDLE

    def test_start_requires_idle_capture(self, make_pipeline):
        capture = FakeCapture()
        capture.recording = True
        pipeline = make_pipeline(capture=capture)
        with pytest.raises(MeetingError):
            pipeline.start_meeting()

    def test_capture_start_failure_reverts_to_idle(self, make_pipeline, history):
        capture = FakeCapture(fail_start=True)
        pipeline = make_pipeline(capture=capture)

        with pytest.raises(MeetingError) as excinfo:
            pipeline.start_meeting()
        assert isinstance(excinfo.value.__cause__, CaptureError)
        assert pipeline.state == MeetingState.IDLE
        assert pipeline.current_meeting is None
        assert history.load_all() == []

        capture.fail_start = False
        pipeline.start_meeting()
        assert pipeline.is_meeting_active

    def test_only_one_recording_meeting(self, make_pipeline):
        pipeline = make_pipeline()
        pipeline.start_meeting()
        with pytest.raises(MeetingError):
            pipeline.start_meeting()

    def test_stop_requires_active_meeting(self, make_pipeline):
        pipeline = make_pipeline()
        with pytest.raises(MeetingError):
            pipeline.stop_meeting()

    def test_stop_marks_processing(self, make_pipeline, history):
        release = threading.Event()

        class SlowSummarizer(FakeSummarizer):
            def summarize(self, meeting):
                release.wait(TIMEOUT)
                return super().summarize(meeting)

        pipeline = make_pipeline(summarizer=SlowSummarizer())
        meeting = pipeline.start_meeting()
        future = pipeline.stop_meeting()

        assert pipeline.is_processing
        assert not pipeline.is_meeting_active
        assert history.load(meeting.id).status == MeetingStatus.PROCESSING

        release.set()
        assert future.result(timeout=TIMEOUT).status == MeetingStatus.COMPLETED

    def test_recently_stopped_cooldown(self, make_pipeline):
        clock = FakeClock()
        pipeline = make_pipeline(clock=clock)
        assert not pipeline.recently_stopped

        pipeline.start_meeting()
        future = pipeline.stop_meeting()
        assert pipeline.recently_stopped

        clock.now = 1002.5
        assert pipeline.recently_stopped
        clock.now = 1003.0
        assert not pipeline.recently_stopped
        future.result(timeout=TIMEOUT)

    def test_duration_recorded_on_stop(self, make_pipeline):
        clock = FakeClock()
        pipeline = make_pipeline(clock=clock)
        pipeline.start_meeting()
        clock.now += 42.0
        completed = pipeline.stop_meeting().result(timeout=TIMEOUT)
        assert completed.duration == pytest.approx(42.0)

    def test_new_meeting_discards_previous_audio(self, make_pipeline, speech):
        capture = FakeCapture()
        transcriber = FakeTranscriber(default="x")
        pipeline = make_pipeline(capture=capture, transcriber=transcriber)

        first = pipeline.start_meeting("One")
        capture.push(speech(2.0))
        _run_pass(pipeline)
        pipeline.stop_meeting().result(timeout=TIMEOUT)

        second = pipeline.start_meeting("Two")
        assert second.id != first.id
        assert pipeline.current_meeting.segments == []

        capture.push(speech(1.5))
        _run_pass(pipeline)
        # Only the new meeting's audio was transcribed
        assert transcriber.calls[-1] == int(1.5 * 16000)

    def test_close_stops_active_meeting(self, history, speech):
        capture = FakeCapture()
        pipeline = MeetingPipeline(
            capture=capture,
            transcriber=FakeTranscriber(default="bye"),
            history=history,
            config=PipelineConfig(flush_interval=3600.0),
        )
        meeting = pipeline.start_meeting()
        capture.push(speech(2.0))

        pipeline.close()

        stored = history.load(meeting.id)
        assert stored.status == MeetingStatus.COMPLETED
        assert stored.segments[0].text == "bye"
        with pytest.raises(MeetingError):
            pipeline.start_meeting()


class TestSupplementary:
    """Partials, levels and manual summaries."""

    def test_partial_updates(self, make_pipeline):
        pipeline = make_pipeline()
        updates = []
        done = threading.Event()
        pipeline.add_listener(lambda u: (updates.append(u), done.set()))

        pipeline.handle_partial("not recording yet")
        pipeline.start_meeting()
        pipeline.handle_partial(" so far ")

        assert done.wait(TIMEOUT)
        assert updates[0].text == "so far"
        assert updates[0].speaker_name == "..."
        assert not updates[0].is_final
        assert pipeline.last_partial == "so far"
        assert pipeline.current_meeting.segments == []

    def test_level_readings(self, make_pipeline):
        pipeline = make_pipeline()
        pipeline.handle_level(0.25)
        assert pipeline.input_level == 0.25

    def test_remove_listener(self, make_pipeline, speech):
        capture = FakeCapture()
        pipeline = make_pipeline(capture=capture)
        updates = []
        pipeline.add_listener(updates.append)
        pipeline.remove_listener(updates.append)
        pipeline.start_meeting()
        capture.push(speech(2.0))
        _run_pass(pipeline)
        assert updates == []

    def test_summarize_stored_meeting(self, make_pipeline, history, speech):
        capture = FakeCapture()
        pipeline = make_pipeline(capture=capture, summarize=False, summarizer=FakeSummarizer())
        pipeline.start_meeting()
        capture.push(speech(2.0))
        completed = pipeline.stop_meeting().result(timeout=TIMEOUT)
        assert completed.summary is None

        summarized = pipeline.summarize_meeting(completed.id)
        assert summarized.summary == "We talked."
        assert history.load(completed.id).action_items == ["Alice: send notes"]

    def test_summarize_current_meeting(self, make_pipeline):
        pipeline = make_pipeline(summarize=False, summarizer=FakeSummarizer())
        pipeline.start_meeting()
        with pytest.raises(MeetingError):
            pipeline.summarize_meeting()
        pipeline.stop_meeting().result(timeout=TIMEOUT)

        assert pipeline.summarize_meeting().summary == "We talked."
        assert pipeline.current_meeting.summary == "We talked."

    def test_summarize_without_summarizer(self, make_pipeline):
        with pytest.raises(MeetingError):
            make_pipeline().summarize_meeting("anything")

    def test_late_samples_ignored_after_final_flush(self, make_pipeline, speech):
        capture = FakeCapture()
        pipeline = make_pipeline(capture=capture)
        pipeline.start_meeting()
        completed = pipeline.stop_meeting().result(timeout=TIMEOUT)

        pipeline.handle_audio(np.ones(32000, dtype=np.float32))
        assert pipeline.flush_now() is None
        assert completed.segments == []
