"""
Speaker identification for live meetings.

Diarizes the trailing context window, keeps the speaker who talked the
longest, and matches that speaker's embedding against enrolled profiles.
A weak match keeps the previous speaker, so labels do not flip-flop.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Sequence, Tuple

import numpy as np

from ..engines.base import DiarizationEngine, SpeakerSegment
from ..logger import log_exception
from .models import SpeakerProfile

logger = logging.getLogger(__name__)

UNKNOWN_PARTICIPANT = "Unknown Participant"


def cosine_similarity(a, b) -> float:
    """dot(a, b) / (|a| * |b|); 0.0 for empty, zero-norm or mismatched vectors."""
    a = np.asarray(a, dtype=np.float64).reshape(-1)
    b = np.asarray(b, dtype=np.float64).reshape(-1)
    if a.size == 0 or a.size != b.size:
        return 0.0
    denom = np.linalg.norm(a) * np.linalg.norm(b)
    if denom == 0:
        return 0.0
    # Clip float rounding just past +/-1
    return float(np.clip(np.dot(a, b) / denom, -1.0, 1.0))


def normalize_peak(audio: np.ndarray, target_peak: float = 0.9, max_gain: float = 100.0) -> np.ndarray:
    """Scale audio so its peak sits at target_peak, with the gain capped at max_gain.

    Enrollment normalizes the same way; embeddings from differently scaled
    audio do not compare well.
    """
    audio = np.asarray(audio, dtype=np.float32)
    peak = float(np.max(np.abs(audio))) if audio.size else 0.0
    scale = min(target_peak / peak, max_gain) if peak > 0 else 1.0
    return audio * np.float32(scale)


def speaker_durations(segments: Iterable[SpeakerSegment]) -> Dict[str, float]:
    """Total speaking time per label."""
    totals: Dict[str, float] = {}
    for seg in segments:
        totals[seg.speaker] = totals.get(seg.speaker, 0.0) + (seg.end - seg.start)
    return totals


def dominant_speaker(segments: Iterable[SpeakerSegment]) -> Optional[str]:
    """Label with the most speaking time; ties go to the lowest label."""
    totals = speaker_durations(segments)
    if not totals:
        return None
    return min(totals.items(), key=lambda item: (-item[1], item[0]))[0]


def format_speaker_name(label: str) -> str:
    """Display name for a raw diarizer label ("SPEAKER_00" -> "Speaker 00")."""
    # Generated ids (uuid-like) carry no meaning for the reader
    if len(label) > 20 and "-" in label:
        return UNKNOWN_PARTICIPANT
    return label.replace("SPEAKER_", "Speaker ")


@dataclass
class SpeakerGuess:
    """What diarization found in one window, before the continuity policy."""
    label: str                               # Dominant diarizer label
    profile: Optional[SpeakerProfile] = None  # Accepted enrolled profile
    score: float = 0.0                       # Best cosine similarity seen


class SpeakerIdentifier:
    """
    Resolves "who is talking now" for a window of meeting audio.

    detect() does the heavy work (diarization + matching) and is safe to run
    off the pipeline's state thread; resolve() applies the continuity policy
    against the last-known speaker. identify() does both.
    """

    def __init__(
        self,
        diarizer: Optional[DiarizationEngine],
        profiles: Callable[[], Sequence[SpeakerProfile]],
        match_threshold: float = 0.05,
        target_peak: float = 0.9,
        max_gain: float = 100.0,
        sample_rate: int = 16000
    ):
        self.diarizer = diarizer
        self._profiles = profiles
        self.match_threshold = match_threshold
        self.target_peak = target_peak
        self.max_gain = max_gain
        self.sample_rate = sample_rate

    def best_match(self, embedding, profiles: Sequence[SpeakerProfile]) -> Tuple[Optional[SpeakerProfile], float]:
        """Highest scoring profile, or None if nothing beats the threshold."""
        best_profile = None
        best_score = self.match_threshold
        top_score = 0.0

        scores = []
        for profile in profiles:
            score = cosine_similarity(embedding, profile.embedding)
            scores.append(f"{profile.name}={score:.3f}")
            top_score = max(top_score, score)
            if score > best_score:
                best_score = score
                best_profile = profile

        logger.debug(f"[Match] Enrolled scores: {', '.join(scores)} -> "
                     f"{'MATCHED ' + best_profile.name if best_profile else 'NO MATCH'}")
        return best_profile, (best_score if best_profile else top_score)

    def detect(self, audio: np.ndarray) -> Optional[SpeakerGuess]:
        """
        Diarize a window and match its dominant speaker.

        Returns:
            SpeakerGuess, or None when there is nothing to go on (no enrolled
            profiles, empty audio, no diarizer, no speech, no embedding for the
            dominant speaker, diarizer failure)
        """
        profiles = list(self._profiles())
        if not profiles or audio is None or len(audio) == 0 or self.diarizer is None:
            return None

        normalized = normalize_peak(audio, self.target_peak, self.max_gain)

        try:
            result = self.diarizer.diarize(normalized, sample_rate=self.sample_rate)
        except Exception as e:
            log_exception(e, "in meeting diarization")
            logger.warning(f"Diarization failed, keeping last speaker: {e}")
            return None

        label = dominant_speaker(result.segments)
        if label is None:
            logger.debug("No speakers detected in context window")
            return None

        embedding = result.embeddings.get(label)
        if embedding is None:
            logger.debug(f"No embedding for dominant speaker {label}, keeping last speaker")
            return None

        profile, score = self.best_match(embedding, profiles)
        return SpeakerGuess(label=label, profile=profile, score=score)

    def resolve(
        self,
        guess: Optional[SpeakerGuess],
        last_id: Optional[str],
        last_name: str
    ) -> Tuple[Optional[str], str]:
        """Apply the continuity policy. Returns (speaker_id, speaker_name)."""
        if guess is None:
            return last_id, last_name

        if guess.profile is not None:
            logger.debug(f"Speaker -> '{guess.profile.name}' (score: {guess.score:.3f})")
            return guess.profile.id, guess.profile.name

        # Low confidence: reuse the last known speaker instead of a raw label
        if last_id is not None:
            logger.debug(f"Low confidence ({guess.score:.3f}), keeping '{last_name}'")
            return last_id, last_name

        return guess.label, format_speaker_name(guess.label)

    def identify(
        self,
        audio: np.ndarray,
        last_id: Optional[str],
        last_name: str
    ) -> Tuple[Optional[str], str]:
        """Detect and resolve in one call. Never raises for engine failures."""
        return self.resolve(self.detect(audio), last_id, last_name)


def identify_dominant(
    diarizer: DiarizationEngine,
    audio: np.ndarray,
    sample_rate: int = 16000,
    target_peak: float = 0.9,
    max_gain: float = 100.0
) -> Optional[str]:
    """One-shot diarization reduced to the dominant label (no profile matching)."""
    normalized = normalize_peak(audio, target_peak, max_gain)
    result = diarizer.diarize(normalized, sample_rate=sample_rate)
    return dominant_speaker(result.segments)
