"""
Base classes for the engines the meeting pipeline talks to.

Provides the interfaces every capture, transcription and diarization
backend must implement, plus the result types they hand back.
"""

from abc import ABC, abstractmethod
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence
import numpy as np


class EngineError(Exception):
    """Base class for failures reported by an engine."""


class CaptureError(EngineError):
    """The capture engine could not start, stop or flush."""


class TranscriptionError(EngineError):
    """The transcription engine failed on a chunk of audio."""


class DiarizationError(EngineError):
    """The diarization engine failed on a window of audio."""


class EngineNotAvailableError(Exception):
    """Raised when an engine is not available (missing dependencies)."""
    def __init__(self, engine_id: str, install_hint: str):
        self.engine_id = engine_id
        self.install_hint = install_hint
        super().__init__(f"Engine '{engine_id}' not available. {install_hint}")


@dataclass
class TranscriptionSegment:
    """A single segment of transcribed audio with timing information."""
    text: str
    start: float  # Start time in seconds
    end: float    # End time in seconds


@dataclass
class TranscriptionResult:
    """Result of a transcription operation."""
    text: str
    segments: List[TranscriptionSegment] = field(default_factory=list)
    duration_seconds: float = 0.0


@dataclass
class SpeakerSegment:
    """A segment of audio attributed to a speaker."""
    start: float      # Start time in seconds
    end: float        # End time in seconds
    speaker: str      # Speaker label (e.g., "SPEAKER_00" or an enrolled profile id)

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass
class DiarizationResult:
    """Speaker turns and one embedding per label, scoped to one audio window."""
    segments: List[SpeakerSegment] = field(default_factory=list)
    embeddings: Dict[str, np.ndarray] = field(default_factory=dict)

    @property
    def labels(self) -> List[str]:
        return sorted({seg.speaker for seg in self.segments})


class CaptureEngine(ABC):
    """
    Abstract base class for audio capture.

    Samples are pushed asynchronously through the callbacks registered with
    set_callbacks() (mono float32 at the pipeline's sample rate).
    """

    def __init__(self):
        self._on_audio: Optional[Callable[[np.ndarray], None]] = None
        self._on_level: Optional[Callable[[float], None]] = None

    def set_callbacks(
        self,
        on_audio: Callable[[np.ndarray], None],
        on_level: Optional[Callable[[float], None]] = None
    ) -> None:
        """Register the sample and level callbacks. Call before start_recording()."""
        self._on_audio = on_audio
        self._on_level = on_level

    def is_available(self) -> bool:
        """Check if an input device is ready to record."""
        return True

    @abstractmethod
    def is_recording(self) -> bool:
        """Check if currently recording."""

    @abstractmethod
    def start_recording(self) -> None:
        """Start capturing. Raises CaptureError on failure."""

    @abstractmethod
    def stop_recording(self) -> None:
        """Stop capturing. Raises CaptureError on failure."""

    @abstractmethod
    def flush(self) -> Future:
        """
        Push everything buffered so far through the audio callback.

        Returns:
            A Future that resolves once every sample of this flush has been
            handed to the audio callback.

        Raises:
            CaptureError: If the engine cannot flush
        """


class TranscriptionEngine(ABC):
    """
    Abstract base class for transcription engines.

    All transcription backends must implement this interface. Callers may
    hand the same leading audio to transcribe() more than once (overlapping
    passes), so engines must not keep state between calls.
    """

    # Class attributes to be overridden by subclasses
    ENGINE_ID: str = "base"
    ENGINE_NAME: str = "Base Engine"

    def __init__(self):
        self._model = None
        self._model_name: Optional[str] = None
        self._device: Optional[str] = None
        self._loaded = False

    @property
    def is_loaded(self) -> bool:
        """Check if a model is currently loaded."""
        return self._loaded

    @property
    def model_name(self) -> Optional[str]:
        """Get the name of the currently loaded model."""
        return self._model_name

    @property
    def device(self) -> Optional[str]:
        """Get the device the model is running on."""
        return self._device

    @abstractmethod
    def load(self, model_name: str, device: str = "auto", compute_type: str = "float16") -> bool:
        """
        Load a transcription model.

        Args:
            model_name: Name/ID of the model to load
            device: Device to load on ("auto", "cuda", "cpu")
            compute_type: Compute precision ("float16", "float32", "int8")

        Returns:
            True if loaded successfully, False otherwise
        """

    @abstractmethod
    def transcribe(
        self,
        audio: np.ndarray,
        sample_rate: int = 16000,
        language: Optional[str] = None,
        initial_prompt: Optional[str] = None,
        vad_filter: bool = True,
        **kwargs
    ) -> TranscriptionResult:
        """
        Transcribe audio data.

        Args:
            audio: Audio data as numpy array (float32, normalized to [-1, 1])
            sample_rate: Sample rate of the audio
            language: Language code (e.g., "en") or None for auto-detect
            initial_prompt: Optional prompt to condition the transcription
            vad_filter: Whether to apply voice activity detection
            **kwargs: Engine-specific options

        Returns:
            TranscriptionResult with text and segments
        """

    def unload(self) -> None:
        """Unload the current model and free resources."""
        self._model = None
        self._model_name = None
        self._device = None
        self._loaded = False

    @classmethod
    def is_available(cls) -> bool:
        """
        Check if this engine is available (dependencies installed).

        Override in subclasses to check for specific dependencies.
        """
        return True

    @classmethod
    def get_install_hint(cls) -> str:
        """
        Get installation instructions for this engine.

        Override in subclasses to provide specific instructions.
        """
        return "Install required dependencies."


class DiarizationEngine(ABC):
    """Abstract base class for speaker diarization backends."""

    def is_available(self) -> bool:
        """Check if the backend's dependencies and models are usable."""
        return True

    @abstractmethod
    def diarize(self, audio: np.ndarray, sample_rate: int = 16000) -> DiarizationResult:
        """
        Identify speakers in audio.

        Args:
            audio: Mono float32 audio in [-1, 1]
            sample_rate: Sample rate of audio

        Returns:
            DiarizationResult with speaker turns and per-label embeddings

        Raises:
            DiarizationError: If the backend fails
        """

    def load_known_speakers(self, profiles: Sequence) -> None:
        """
        Teach the backend enrolled speakers so it can label turns with their ids.

        Backends without known-speaker support ignore this.
        """
