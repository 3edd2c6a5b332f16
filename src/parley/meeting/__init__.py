"""
Meeting Transcription Mode

Records a meeting, re-transcribes it in overlapping passes and attributes
each piece of text to a speaker.
"""

# Lazy imports so the audio and model stacks only load when used
def __getattr__(name):
    if name == "AudioCapture":
        from .capture import AudioCapture
        return AudioCapture
    elif name == "MeetingPipeline":
        from .manager import MeetingPipeline
        return MeetingPipeline
    elif name == "PipelineConfig":
        from .manager import PipelineConfig
        return PipelineConfig
    elif name == "BatchImporter":
        from .importer import BatchImporter
        return BatchImporter
    elif name == "MeetingHistory":
        from .history import MeetingHistory
        return MeetingHistory
    elif name == "SpeakerDirectory":
        from .enrollment import SpeakerDirectory
        return SpeakerDirectory
    elif name == "SpeakerDiarizer":
        from .diarization import SpeakerDiarizer
        return SpeakerDiarizer
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

__all__ = [
    "AudioCapture",
    "MeetingPipeline",
    "PipelineConfig",
    "BatchImporter",
    "MeetingHistory",
    "SpeakerDirectory",
    "SpeakerDiarizer",
]
