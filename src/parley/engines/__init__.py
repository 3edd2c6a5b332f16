"""
Parley Engines

Interfaces for the collaborators the meeting pipeline drives (capture,
transcription, diarization) and the transcription backends:
- Whisper (faster-whisper) - Default, well-tested
"""

from .base import (
    CaptureEngine,
    CaptureError,
    DiarizationEngine,
    DiarizationError,
    DiarizationResult,
    EngineError,
    EngineNotAvailableError,
    SpeakerSegment,
    TranscriptionEngine,
    TranscriptionError,
    TranscriptionResult,
    TranscriptionSegment,
)
from .factory import (
    create_engine,
    load_engine,
    register_engine,
)

__all__ = [
    # Base classes
    "CaptureEngine",
    "DiarizationEngine",
    "TranscriptionEngine",
    # Results
    "DiarizationResult",
    "SpeakerSegment",
    "TranscriptionResult",
    "TranscriptionSegment",
    # Errors
    "CaptureError",
    "DiarizationError",
    "EngineError",
    "EngineNotAvailableError",
    "TranscriptionError",
    # Factory functions
    "create_engine",
    "load_engine",
    "register_engine",
]
