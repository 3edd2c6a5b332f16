"""
Offline import of a recorded meeting.

The whole file is cut into fixed windows; each window is transcribed and
attributed to its dominant speaker. No overlap, no live scheduling.
"""

import logging
from math import gcd
from pathlib import Path
from typing import Optional, Union

import numpy as np
import soundfile as sf
from scipy.signal import resample_poly

from ..engines.base import DiarizationEngine, TranscriptionEngine
from ..logger import log_exception
from .history import MeetingHistory
from .manager import PipelineConfig
from .models import Meeting, MeetingSegment, MeetingStatus
from .speakers import format_speaker_name, identify_dominant

logger = logging.getLogger(__name__)


def load_audio_file(filepath: Union[str, Path], sample_rate: int = 16000) -> np.ndarray:
    """Decode an audio file to mono float32 at `sample_rate`."""
    audio, file_rate = sf.read(str(filepath), dtype='float32', always_2d=True)

    # Mix down to mono
    audio = audio.mean(axis=1)

    # Resample if needed
    if file_rate != sample_rate and len(audio) > 0:
        g = gcd(sample_rate, file_rate)
        # resample_poly applies the anti-aliasing filter itself
        audio = resample_poly(audio, sample_rate // g, file_rate // g)

    return np.asarray(audio, dtype=np.float32)


class BatchImporter:
    """Turns a complete recording into a completed Meeting."""

    def __init__(
        self,
        transcriber: TranscriptionEngine,
        diarizer: Optional[DiarizationEngine] = None,
        directory=None,
        history: Optional[MeetingHistory] = None,
        config: Optional[PipelineConfig] = None,
        window_seconds: float = 30.0,
        text_processor=None
    ):
        self.transcriber = transcriber
        self.diarizer = diarizer
        self.directory = directory
        self.history = history or MeetingHistory()
        self.config = config or PipelineConfig()
        self.window_seconds = window_seconds
        self.text_processor = text_processor

    def import_file(self, filepath: Union[str, Path], title: Optional[str] = None) -> Meeting:
        filepath = Path(filepath)
        logger.info(f"Importing {filepath.name}")
        samples = load_audio_file(filepath, self.config.sample_rate)
        return self.import_samples(samples, title or f"Import: {filepath.stem}")

    def import_samples(self, samples: np.ndarray, title: str = "Imported Meeting") -> Meeting:
        """
        Transcribe and attribute a complete recording.

        Args:
            samples: Mono float32 audio at the configured sample rate
            title: Title for the resulting meeting

        Returns:
            The completed, persisted Meeting

        Raises:
            Exception: Whatever the transcription engine raises; the import
                is abandoned
        """
        sample_rate = self.config.sample_rate
        samples = np.asarray(samples, dtype=np.float32).reshape(-1)
        window = int(self.window_seconds * sample_rate)
        min_samples = int(self.config.min_new_audio_seconds * sample_rate)

        diarizer = self._ready_diarizer()
        meeting = Meeting(title=title, status=MeetingStatus.PROCESSING)

        for offset in range(0, len(samples), window):
            chunk = samples[offset:offset + window]
            if len(chunk) < min_samples:
                logger.debug(f"Skipping {len(chunk) / sample_rate:.2f}s tail window")
                continue

            result = self.transcriber.transcribe(
                chunk,
                sample_rate=sample_rate,
                language=self.config.language,
                initial_prompt=self.config.initial_prompt,
                vad_filter=self.config.vad_filter,
            )
            text = self.text_processor.process(result.text) if self.text_processor else result.text.strip()
            if not text:
                continue

            speaker_id, speaker_name = self._attribute(diarizer, chunk)
            timestamp = offset / sample_rate
            meeting.segments.append(MeetingSegment(
                timestamp=timestamp,
                text=text,
                speaker_id=speaker_id,
                speaker_name=speaker_name,
                is_final=True
            ))
            meeting.add_participant(speaker_id)
            logger.info(f"[{int(timestamp)}s] [{speaker_name}] {text}")

        meeting.duration = len(samples) / sample_rate
        meeting.status = MeetingStatus.COMPLETED
        self.history.save(meeting)
        logger.info(f"Imported '{title}': {len(meeting.segments)} segments")
        return meeting

    def _ready_diarizer(self) -> Optional[DiarizationEngine]:
        if self.diarizer is None or not self.diarizer.is_available():
            return None
        if self.directory is not None:
            self.diarizer.load_known_speakers(self.directory.profiles())
        return self.diarizer

    def _attribute(self, diarizer: Optional[DiarizationEngine], chunk: np.ndarray):
        """(speaker_id, speaker_name) for a window; the default name when unknown."""
        default = (None, self.config.default_speaker_name)
        if diarizer is None:
            return default

        try:
            label = identify_dominant(
                diarizer, chunk,
                sample_rate=self.config.sample_rate,
                target_peak=self.config.target_peak,
                max_gain=self.config.max_gain,
            )
        except Exception as e:
            log_exception(e, "in import diarization")
            return default

        if label is None:
            return default

        profile = self.directory.find_profile(label) if self.directory is not None else None
        if profile is not None:
            return profile.id, profile.name
        return label, format_speaker_name(label)
