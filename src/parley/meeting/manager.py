"""
Live meeting pipeline.

Owns one meeting at a time: audio from the capture engine accumulates in a
SampleAccumulator, a FlushScheduler periodically asks the engine to flush and
queues a transcription pass, and each pass's text is attributed to a speaker
and folded into the meeting. Stopping runs a final pass and hands the meeting
to the summarizer.

Threading:
    meeting-state      every read/write of session state (single worker)
    meeting-inference  ASR + diarization, one pass at a time
    meeting-handoff    final flush, final pass and summarization
"""

import copy
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

import numpy as np

from ..engines.base import CaptureEngine, CaptureError, DiarizationEngine, TranscriptionEngine
from ..logger import log_error, log_exception
from ..utils import ConfigManager, TextProcessor
from .accumulator import SampleAccumulator
from .assembler import SegmentAssembler
from .chunking import ChunkSelection, ChunkSelector
from .history import MeetingHistory
from .models import DEFAULT_SPEAKER_NAME, Meeting, MeetingStatus, MeetingSummary, TranscriptUpdate
from .scheduler import FlushScheduler
from .speakers import SpeakerGuess, SpeakerIdentifier

logger = logging.getLogger(__name__)

PARTIAL_SPEAKER_NAME = "..."


class MeetingError(Exception):
    """A lifecycle request that cannot be honoured (bad state, capture failure)."""


class MeetingState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PROCESSING = "processing"
    COMPLETED = "completed"


@dataclass
class PipelineConfig:
    """Typed settings for MeetingPipeline. Defaults match config_schema.yaml."""
    sample_rate: int = 16000
    flush_interval: float = 15.0
    flush_settle_timeout: float = 0.5
    final_settle_timeout: float = 1.5
    overlap_seconds: float = 1.0
    min_new_audio_seconds: float = 1.0
    diarization_context_seconds: float = 5.0
    max_buffer_seconds: float = 60.0
    stop_cooldown: float = 3.0
    default_speaker_name: str = DEFAULT_SPEAKER_NAME
    match_threshold: float = 0.05
    target_peak: float = 0.9
    max_gain: float = 100.0
    language: Optional[str] = None
    initial_prompt: Optional[str] = None
    vad_filter: bool = True
    summarize: bool = True

    @classmethod
    def from_config(cls) -> 'PipelineConfig':
        meeting = ConfigManager.get_config_section('meeting_options')
        speaker = ConfigManager.get_config_section('speaker_options')
        common = ConfigManager.get_config_section('model_options', 'common')
        local = ConfigManager.get_config_section('model_options', 'local')
        summary = ConfigManager.get_config_section('summary_options')

        defaults = cls()
        return cls(
            sample_rate=meeting.get('sample_rate', defaults.sample_rate),
            flush_interval=meeting.get('flush_interval', defaults.flush_interval),
            flush_settle_timeout=meeting.get('flush_settle_timeout', defaults.flush_settle_timeout),
            final_settle_timeout=meeting.get('final_settle_timeout', defaults.final_settle_timeout),
            overlap_seconds=meeting.get('overlap_seconds', defaults.overlap_seconds),
            min_new_audio_seconds=meeting.get('min_new_audio_seconds', defaults.min_new_audio_seconds),
            diarization_context_seconds=meeting.get('diarization_context_seconds',
                                                    defaults.diarization_context_seconds),
            max_buffer_seconds=meeting.get('max_buffer_seconds', defaults.max_buffer_seconds),
            stop_cooldown=meeting.get('stop_cooldown', defaults.stop_cooldown),
            default_speaker_name=meeting.get('default_speaker_name') or defaults.default_speaker_name,
            match_threshold=speaker.get('match_threshold', defaults.match_threshold),
            target_peak=speaker.get('target_peak', defaults.target_peak),
            max_gain=speaker.get('max_gain', defaults.max_gain),
            language=common.get('language'),
            initial_prompt=common.get('initial_prompt'),
            vad_filter=local.get('vad_filter', defaults.vad_filter),
            summarize=summary.get('enabled', defaults.summarize),
        )


class MeetingSession:
    """Everything that belongs to one recorded meeting. Touched only on the state thread."""

    def __init__(self, meeting: Meeting, accumulator: SampleAccumulator, started_at: float, speaker_name: str):
        self.meeting = meeting
        self.accumulator = accumulator
        self.started_at = started_at
        self.last_speaker_id: Optional[str] = None
        self.last_speaker_name = speaker_name
        self.accepting_audio = True
        self.passes: List[Future] = []


class MeetingPipeline:
    """
    Records, transcribes and attributes one meeting at a time.

    Usage:
        pipeline = MeetingPipeline(capture, transcriber, diarizer, directory, summarizer, history)
        pipeline.add_listener(print)
        pipeline.start_meeting("Standup")
        ...
        meeting = pipeline.stop_meeting().result()
        pipeline.close()
    """

    def __init__(
        self,
        capture: CaptureEngine,
        transcriber: TranscriptionEngine,
        diarizer: Optional[DiarizationEngine] = None,
        directory=None,
        summarizer=None,
        history: Optional[MeetingHistory] = None,
        config: Optional[PipelineConfig] = None,
        text_processor: Optional[TextProcessor] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.capture = capture
        self.transcriber = transcriber
        self.diarizer = diarizer
        self.directory = directory
        self.summarizer = summarizer
        self.history = history or MeetingHistory()
        self.config = config or PipelineConfig()
        self.text_processor = text_processor or TextProcessor()
        self.clock = clock

        cfg = self.config
        self.selector = ChunkSelector(
            sample_rate=cfg.sample_rate,
            overlap_seconds=cfg.overlap_seconds,
            min_new_seconds=cfg.min_new_audio_seconds,
            context_seconds=cfg.diarization_context_seconds,
        )
        self.identifier = SpeakerIdentifier(
            diarizer,
            profiles=directory.profiles if directory is not None else list,
            match_threshold=cfg.match_threshold,
            target_peak=cfg.target_peak,
            max_gain=cfg.max_gain,
            sample_rate=cfg.sample_rate,
        )
        self._assembler = SegmentAssembler(save=self.history.save, notify=self._emit)

        self._state_thread: Optional[threading.Thread] = None
        self._state_executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="meeting-state", initializer=self._mark_state_thread)
        self._inference_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="meeting-inference")
        self._handoff_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="meeting-handoff")

        self._state = MeetingState.IDLE
        self._session: Optional[MeetingSession] = None
        self._stopped_at: Optional[float] = None
        self._scheduler: Optional[FlushScheduler] = None
        self._handoffs: List[Future] = []
        self._closed = False

        self._listeners: List[Callable[[TranscriptUpdate], None]] = []
        self._listeners_lock = threading.Lock()

        self.input_level = 0.0
        self.last_partial = ""

        self.capture.set_callbacks(self.handle_audio, self.handle_level)

    # --- Queries -------------------------------------------------------------

    @property
    def state(self) -> MeetingState:
        return self._state

    @property
    def is_meeting_active(self) -> bool:
        return self._state == MeetingState.RECORDING

    @property
    def is_processing(self) -> bool:
        return self._state == MeetingState.PROCESSING

    @property
    def current_meeting(self) -> Optional[Meeting]:
        session = self._session
        return session.meeting if session is not None else None

    @property
    def recently_stopped(self) -> bool:
        """True for stop_cooldown seconds after the last stop_meeting()."""
        stopped_at = self._stopped_at
        if stopped_at is None:
            return False
        return self.clock() - stopped_at < self.config.stop_cooldown

    # --- Listeners -----------------------------------------------------------

    def add_listener(self, listener: Callable[[TranscriptUpdate], None]) -> None:
        with self._listeners_lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[TranscriptUpdate], None]) -> None:
        with self._listeners_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _emit(self, update: TranscriptUpdate) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(update)
            except Exception as e:
                log_exception(e, "in transcript listener")

    # --- Capture callbacks ---------------------------------------------------

    def handle_audio(self, samples) -> None:
        """Capture engine callback: queue samples for the current meeting."""
        block = np.array(samples, dtype=np.float32).reshape(-1)
        try:
            self._state_executor.submit(self._append, block)
        except RuntimeError:
            logger.debug("Pipeline closed, dropping audio")

    def handle_level(self, level: float) -> None:
        self.input_level = float(level)

    def handle_partial(self, text: str) -> None:
        """Show in-progress text from a streaming engine. Never enters the transcript."""
        session = self._session
        if session is None or self._state != MeetingState.RECORDING or not text or not text.strip():
            return
        self.last_partial = text.strip()
        update = TranscriptUpdate(
            text=self.last_partial,
            speaker_name=PARTIAL_SPEAKER_NAME,
            is_final=False,
            meeting_id=session.meeting.id
        )
        try:
            self._state_executor.submit(self._emit, update)
        except RuntimeError:
            logger.debug("Pipeline closed, dropping partial")

    def _append(self, samples: np.ndarray) -> None:
        session = self._session
        if session is None or not session.accepting_audio:
            return
        session.accumulator.append(samples)

    # --- Lifecycle -----------------------------------------------------------

    def start_meeting(self, title: str = "Meeting") -> Meeting:
        """
        Start recording a new meeting.

        Args:
            title: Meeting title

        Returns:
            The new Meeting (status recording)

        Raises:
            MeetingError: If a meeting is already recording, the capture engine
                is unavailable or busy, or capture fails to start
        """
        if self._closed:
            raise MeetingError("Pipeline is closed")
        if not self.capture.is_available():
            raise MeetingError("No audio capture device available")
        if self.capture.is_recording():
            raise MeetingError("Capture engine is already recording")

        session = self._call_on_state(self._open_session, title)

        try:
            self.capture.start_recording()
        except CaptureError as e:
            self._call_on_state(self._abort_session, session)
            log_error("Failed to start meeting capture", e)
            raise MeetingError(f"Failed to start recording: {e}") from e

        self._call_on_state(self.history.save, session.meeting)

        self._scheduler = FlushScheduler(self.config.flush_interval, self._tick, name="meeting-flush")
        self._scheduler.start()

        logger.info(f"Meeting started: '{session.meeting.title}' ({session.meeting.id})")
        return session.meeting

    def stop_meeting(self) -> Future:
        """
        Stop the recording meeting and hand it off for final processing.

        Returns:
            Future resolving to the completed Meeting

        Raises:
            MeetingError: If no meeting is recording
        """
        session = self._call_on_state(self._begin_stop)

        scheduler, self._scheduler = self._scheduler, None
        if scheduler is not None:
            scheduler.stop(timeout=self.config.final_settle_timeout + 1.0)

        logger.info(f"Meeting stopped after {session.meeting.duration:.0f}s, processing")

        future = self._handoff_executor.submit(self._handoff, session)
        self._handoffs.append(future)
        return future

    def close(self) -> None:
        """Stop any active meeting, wait for outstanding work and shut down the workers."""
        if self._closed:
            return

        if self.is_meeting_active:
            try:
                self.stop_meeting()
            except MeetingError as e:
                logger.debug(f"Nothing to stop on close: {e}")
        self._closed = True

        for future in list(self._handoffs):
            try:
                future.result()
            except Exception as e:
                log_exception(e, "in meeting handoff")

        self._handoff_executor.shutdown(wait=True)
        self._inference_executor.shutdown(wait=True)
        self._state_executor.shutdown(wait=True)
        logger.debug("Meeting pipeline closed")

    def flush_now(self) -> Optional[Future]:
        """
        Run a flush + transcription pass right away instead of waiting for the timer.

        Returns:
            Future of the queued pass (resolves after its commit), or None if
            nothing is recording or too little audio is new
        """
        session = self._session
        if session is None or self._state != MeetingState.RECORDING:
            return None
        self._flush_capture(self.config.flush_settle_timeout)
        return self._schedule_pass(session).result()

    def summarize_meeting(self, meeting_id: Optional[str] = None) -> Meeting:
        """
        (Re)generate the summary of the current or a stored meeting.

        Raises:
            MeetingError: If there is no summarizer or no such meeting
            SummarizationError: If the summarizer gives up
        """
        if self.summarizer is None:
            raise MeetingError("No summarizer configured")

        session = self._session
        if meeting_id is None or (session is not None and session.meeting.id == meeting_id):
            if session is None:
                raise MeetingError("No meeting to summarize")
            if self._state == MeetingState.RECORDING:
                raise MeetingError("Stop the meeting before summarizing it")
            snapshot = self._call_on_state(copy.deepcopy, session.meeting)
            summary = self.summarizer.summarize(snapshot)
            return self._call_on_state(self._attach_summary, session.meeting, summary)

        meeting = self.history.load(meeting_id)
        if meeting is None:
            raise MeetingError(f"Meeting {meeting_id} not found")
        summary = self.summarizer.summarize(meeting)
        return self._attach_summary(meeting, summary)

    # --- State domain --------------------------------------------------------

    def _mark_state_thread(self) -> None:
        self._state_thread = threading.current_thread()

    def _call_on_state(self, fn, *args):
        """Run fn on the state thread and return its result (inline if already there)."""
        if threading.current_thread() is self._state_thread:
            return fn(*args)
        return self._state_executor.submit(fn, *args).result()

    def _open_session(self, title: str) -> MeetingSession:
        if self._state == MeetingState.RECORDING:
            raise MeetingError("A meeting is already recording")

        cfg = self.config
        session = MeetingSession(
            meeting=Meeting(title=title or "Meeting"),
            accumulator=SampleAccumulator(cfg.sample_rate, cfg.max_buffer_seconds),
            started_at=self.clock(),
            speaker_name=cfg.default_speaker_name,
        )
        self._session = session
        self._state = MeetingState.RECORDING
        self._stopped_at = None
        self.last_partial = ""
        return session

    def _abort_session(self, session: MeetingSession) -> None:
        if self._session is session:
            self._session = None
            self._state = MeetingState.IDLE

    def _begin_stop(self) -> MeetingSession:
        session = self._session
        if session is None or self._state != MeetingState.RECORDING:
            raise MeetingError("No meeting is recording")

        meeting = session.meeting
        meeting.status = MeetingStatus.PROCESSING
        meeting.duration = self.clock() - session.started_at
        self.history.save(meeting)

        self._state = MeetingState.PROCESSING
        self._stopped_at = self.clock()
        return session

    def _close_intake(self, session: MeetingSession) -> None:
        session.accepting_audio = False

    def _select_and_dispatch(self, session: MeetingSession, final: bool = False) -> Optional[Future]:
        # Late timer ticks after the final flush must not start another pass
        if not final and not session.accepting_audio:
            return None

        selection = self.selector.select(session.accumulator)
        if selection is None:
            logger.debug(f"Skipping pass: {session.accumulator.unconsumed} new samples")
            return None

        logger.debug(f"Pass over [{selection.start}, {selection.end}) "
                     f"({selection.duration:.1f}s){' final' if final else ''}")
        future = self._inference_executor.submit(self._run_pass, session, selection)
        session.passes.append(future)
        return future

    def _commit(self, session: MeetingSession, text: str, guess: Optional[SpeakerGuess]) -> None:
        speaker_id, speaker_name = self.identifier.resolve(
            guess, session.last_speaker_id, session.last_speaker_name)
        session.last_speaker_id = speaker_id
        session.last_speaker_name = speaker_name

        timestamp = max(0.0, self.clock() - session.started_at)
        self._assembler.add(session.meeting, text, speaker_id, speaker_name, timestamp)

    def _attach_summary(self, meeting: Meeting, summary: Optional[MeetingSummary]) -> Meeting:
        if summary is not None:
            meeting.summary = summary.summary
            meeting.action_items = list(summary.action_items)
        self.history.save(meeting)
        return meeting

    def _complete(self, session: MeetingSession, summary: Optional[MeetingSummary]) -> Meeting:
        meeting = session.meeting
        meeting.status = MeetingStatus.COMPLETED
        self._attach_summary(meeting, summary)

        if self._session is session:
            self._state = MeetingState.COMPLETED

        logger.info(f"Meeting completed: '{meeting.title}' ({len(meeting.segments)} segments, "
                    f"{'with' if meeting.summary else 'no'} summary)")
        self._emit(TranscriptUpdate(
            text="",
            speaker_name="",
            is_final=True,
            meeting_id=meeting.id,
            meeting_completed=True
        ))
        return meeting

    # --- Passes --------------------------------------------------------------

    def _tick(self) -> None:
        """Scheduler callback: flush, then queue a pass."""
        session = self._session
        if session is None or self._state != MeetingState.RECORDING:
            return
        self._flush_capture(self.config.flush_settle_timeout)
        self._schedule_pass(session)

    def _schedule_pass(self, session: MeetingSession, final: bool = False) -> Future:
        """Queue selection behind every sample delivered so far. Resolves to the pass future or None."""
        return self._state_executor.submit(self._select_and_dispatch, session, final)

    def _flush_capture(self, timeout: float) -> bool:
        """Ask the capture engine to flush and wait up to `timeout` for the acknowledgment."""
        try:
            ack = self.capture.flush()
            ack.result(timeout=timeout)
            return True
        except FutureTimeout:
            logger.warning(f"Capture flush not acknowledged within {timeout:.1f}s, using audio received so far")
        except CaptureError as e:
            log_error("Capture flush failed", e)
        return False

    def _run_pass(self, session: MeetingSession, selection: ChunkSelection) -> None:
        """Inference worker: transcribe, diarize, then commit on the state thread."""
        cfg = self.config
        try:
            result = self.transcriber.transcribe(
                selection.audio,
                sample_rate=cfg.sample_rate,
                language=cfg.language,
                initial_prompt=cfg.initial_prompt,
                vad_filter=cfg.vad_filter,
            )
        except Exception as e:
            log_exception(e, "in meeting transcription")
            logger.warning(f"Transcription failed, pass skipped: {e}")
            return

        text = self.text_processor.process(result.text)
        if not text:
            logger.debug("Pass produced no text")
            return

        guess = self.identifier.detect(selection.context)

        # Waiting here keeps commits in pass order
        self._state_executor.submit(self._commit, session, text, guess).result()

    # --- Handoff -------------------------------------------------------------

    def _handoff(self, session: MeetingSession) -> Meeting:
        try:
            self._finish_recording(session)
        except Exception as e:
            log_exception(e, "finishing meeting recording")

        summary = None
        if self.summarizer is not None and self.config.summarize:
            snapshot = self._call_on_state(copy.deepcopy, session.meeting)
            try:
                summary = self.summarizer.summarize(snapshot)
            except Exception as e:
                log_error(f"Summarization failed for meeting {snapshot.id}", e)
        else:
            logger.info("Summarization disabled, completing without summary")

        return self._call_on_state(self._complete, session, summary)

    def _finish_recording(self, session: MeetingSession) -> None:
        self._flush_capture(self.config.final_settle_timeout)
        self._call_on_state(self._close_intake, session)

        try:
            self.capture.stop_recording()
        except CaptureError as e:
            log_error("Failed to stop meeting capture", e)

        final_pass = self._schedule_pass(session, final=True).result()
        if final_pass is None:
            logger.debug("No final pass (under a second of new audio)")

        for future in self._call_on_state(list, session.passes):
            try:
                future.result()
            except Exception as e:
                log_exception(e, "in meeting pass")
