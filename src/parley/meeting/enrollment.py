"""
Enrolled speaker directory.

Profiles (name, role, group, color and a voice embedding) live in a single
JSON file. Enrollment diarizes a clean sample of one person talking and keeps
the embedding of whoever spoke the longest.
"""

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np

from ..engines.base import DiarizationEngine
from ..logger import get_parley_home, log_error
from .models import SpeakerProfile
from .speakers import dominant_speaker, normalize_peak

logger = logging.getLogger(__name__)

SPEAKER_COLORS = [
    "#00E5FF", "#FF4081", "#7C4DFF", "#00C853",
    "#FFD740", "#FF6E40", "#448AFF", "#E040FB",
    "#64FFDA", "#FF5252", "#536DFE", "#B388FF",
]

MIN_ENROLL_SECONDS = 3.0
UNGROUPED = "Ungrouped"


class EnrollmentError(Exception):
    """Raised when a voice sample cannot be turned into a profile."""


class SpeakerDirectory:
    """Thread-safe store of enrolled speaker profiles."""

    def __init__(
        self,
        storage_path: Optional[Union[str, Path]] = None,
        sample_rate: int = 16000,
        target_peak: float = 0.9,
        max_gain: float = 100.0
    ):
        self.storage_path = Path(storage_path) if storage_path else get_parley_home() / "speakers_enrolled.json"
        self.sample_rate = sample_rate
        # Must match the live identifier so enrolled and live embeddings compare
        self.target_peak = target_peak
        self.max_gain = max_gain
        self._lock = threading.Lock()
        self._profiles: List[SpeakerProfile] = []
        self.load()

    def load(self) -> List[SpeakerProfile]:
        """(Re)read profiles from disk. A missing or corrupt file means no profiles."""
        profiles = []
        if self.storage_path.exists():
            try:
                data = json.loads(self.storage_path.read_text(encoding='utf-8'))
                profiles = [SpeakerProfile.from_dict(item) for item in data]
            except (OSError, ValueError, KeyError, TypeError) as e:
                log_error(f"Failed to load enrolled speakers from {self.storage_path}", e)
                profiles = []
        with self._lock:
            self._profiles = profiles
        logger.debug(f"Loaded {len(profiles)} enrolled speaker(s)")
        return list(profiles)

    def profiles(self) -> List[SpeakerProfile]:
        """Snapshot of the enrolled profiles."""
        with self._lock:
            return list(self._profiles)

    def find_profile(self, profile_id: Optional[str]) -> Optional[SpeakerProfile]:
        if profile_id is None:
            return None
        with self._lock:
            for profile in self._profiles:
                if profile.id == profile_id:
                    return profile
        return None

    def grouped_profiles(self) -> Dict[str, List[SpeakerProfile]]:
        """Profiles by group name, sorted by name within each group."""
        groups: Dict[str, List[SpeakerProfile]] = {}
        for profile in sorted(self.profiles(), key=lambda p: p.name.lower()):
            groups.setdefault(profile.group_name or UNGROUPED, []).append(profile)
        return groups

    def enroll(
        self,
        name: str,
        audio: np.ndarray,
        diarizer: DiarizationEngine,
        role: str = "",
        group_name: str = ""
    ) -> SpeakerProfile:
        """
        Create a profile from a voice sample.

        Args:
            name: Display name for the speaker
            audio: Mono float32 sample of the speaker talking alone
            diarizer: Backend used to extract the embedding
            role: Optional role ("Engineer", "PM", ...)
            group_name: Optional group for display

        Returns:
            The saved SpeakerProfile

        Raises:
            EnrollmentError: If the sample is too short or has no usable voice
        """
        name = name.strip()
        if not name:
            raise EnrollmentError("Speaker name is empty")

        embedding = self._extract_embedding(audio, diarizer)
        with self._lock:
            profile = SpeakerProfile(
                name=name,
                embedding=embedding,
                role=role,
                group_name=group_name,
                color_hex=self._next_color(),
            )
            self._profiles.append(profile)
            self._save_locked()

        logger.info(f"Enrolled speaker '{name}' ({profile.id})")
        return profile

    def re_enroll(self, profile_id: str, audio: np.ndarray, diarizer: DiarizationEngine) -> SpeakerProfile:
        """Replace a profile's embedding with one from a new sample."""
        embedding = self._extract_embedding(audio, diarizer)
        with self._lock:
            profile = self._find_locked(profile_id)
            profile.embedding = np.asarray(embedding, dtype=np.float32).reshape(-1)
            profile.updated_at = datetime.now()
            self._save_locked()
        logger.info(f"Re-enrolled speaker '{profile.name}'")
        return profile

    def update_profile(
        self,
        profile_id: str,
        name: Optional[str] = None,
        role: Optional[str] = None,
        group_name: Optional[str] = None,
        color_hex: Optional[str] = None
    ) -> SpeakerProfile:
        """Change a profile's details. Arguments left as None keep their value."""
        with self._lock:
            profile = self._find_locked(profile_id)
            if name is not None and name.strip():
                profile.name = name.strip()
            if role is not None:
                profile.role = role
            if group_name is not None:
                profile.group_name = group_name
            if color_hex is not None:
                profile.color_hex = color_hex
            profile.updated_at = datetime.now()
            self._save_locked()
        return profile

    def delete_profile(self, profile_id: str) -> bool:
        with self._lock:
            before = len(self._profiles)
            self._profiles = [p for p in self._profiles if p.id != profile_id]
            if len(self._profiles) == before:
                return False
            self._save_locked()
        logger.info(f"Removed enrolled speaker {profile_id}")
        return True

    def _extract_embedding(self, audio: np.ndarray, diarizer: DiarizationEngine) -> np.ndarray:
        audio = np.asarray(audio, dtype=np.float32).reshape(-1)
        duration = len(audio) / self.sample_rate
        if duration < MIN_ENROLL_SECONDS:
            raise EnrollmentError(
                f"Sample too short ({duration:.1f}s); need at least {MIN_ENROLL_SECONDS:.0f}s of speech"
            )

        normalized = normalize_peak(audio, self.target_peak, self.max_gain)
        embedding = self._dominant_embedding(normalized, diarizer)
        if embedding is None:
            # Retry with a second of silence on both sides; short clips often
            # start and end mid-word
            pad = np.zeros(self.sample_rate, dtype=np.float32)
            logger.debug("No speaker found in enrollment sample, retrying with padding")
            embedding = self._dominant_embedding(np.concatenate([pad, normalized, pad]), diarizer)

        if embedding is None:
            raise EnrollmentError("No voice detected in the enrollment sample")
        return np.asarray(embedding, dtype=np.float32).reshape(-1)

    def _dominant_embedding(self, audio: np.ndarray, diarizer: DiarizationEngine) -> Optional[np.ndarray]:
        result = diarizer.diarize(audio, sample_rate=self.sample_rate)
        label = dominant_speaker(result.segments)
        if label is None:
            return None
        return result.embeddings.get(label)

    def _next_color(self) -> str:
        used: Dict[str, int] = {}
        for profile in self._profiles:
            used[profile.color_hex] = used.get(profile.color_hex, 0) + 1
        for color in SPEAKER_COLORS:
            if used.get(color, 0) < 2:
                return color
        return SPEAKER_COLORS[len(self._profiles) % len(SPEAKER_COLORS)]

    def _find_locked(self, profile_id: str) -> SpeakerProfile:
        for profile in self._profiles:
            if profile.id == profile_id:
                return profile
        raise KeyError(f"No enrolled speaker with id {profile_id}")

    def _save_locked(self) -> None:
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.storage_path.with_suffix('.tmp')
        data = [p.to_dict() for p in self._profiles]
        temp_path.write_text(json.dumps(data, indent=2), encoding='utf-8')
        temp_path.replace(self.storage_path)
