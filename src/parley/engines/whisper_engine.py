"""
faster-whisper backend for meeting passes.

Every pass re-reads the tail of the previous one, so the engine runs each
chunk on its own: no conditioning on earlier text, and a silence threshold
that drops words whisper invents in the overlap's quiet stretches.
"""

import gc
import logging
from typing import Optional

import numpy as np

from .base import TranscriptionEngine, TranscriptionError, TranscriptionResult, TranscriptionSegment
from .factory import register_engine

logger = logging.getLogger(__name__)

HALLUCINATION_SILENCE_THRESHOLD = 0.5


@register_engine
class WhisperEngine(TranscriptionEngine):
    """Transcribes meeting passes with faster-whisper."""

    ENGINE_ID = "whisper"
    ENGINE_NAME = "Whisper (faster-whisper)"

    def __init__(self):
        super().__init__()
        self._compute_type = None

    @classmethod
    def is_available(cls) -> bool:
        try:
            import faster_whisper  # noqa: F401
            return True
        except ImportError:
            return False

    @classmethod
    def get_install_hint(cls) -> str:
        return "pip install faster-whisper"

    @staticmethod
    def _pick_device(device: str, compute_type: str) -> str:
        if compute_type == "int8":
            # int8 runs on CPU
            return "cpu"
        if device != "auto":
            return device
        try:
            import torch
            return "cuda" if torch.cuda.is_available() else "cpu"
        except ImportError:
            return "cpu"

    def load(self, model_name: str, device: str = "auto", compute_type: str = "float16") -> bool:
        """
        Load a whisper model, falling back to CPU if the GPU load fails.

        Returns:
            True if a model is ready, False otherwise (the error is logged)
        """
        from faster_whisper import WhisperModel

        device = self._pick_device(device, compute_type)
        logger.info(f"Loading whisper '{model_name}' on {device} ({compute_type})")

        try:
            try:
                self._model = WhisperModel(model_name, device=device, compute_type=compute_type)
            except Exception as e:
                if device == "cpu":
                    raise
                logger.warning(f"Loading on {device} failed ({e}), retrying on CPU")
                device = "cpu"
                self._model = WhisperModel(model_name, device=device, compute_type=compute_type)
        except Exception as e:
            logger.error(f"Failed to load whisper '{model_name}': {e}")
            self._model = None
            self._loaded = False
            return False

        self._device = device
        self._model_name = model_name
        self._compute_type = compute_type
        self._loaded = True
        return True

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
        Transcribe one pass of meeting audio.

        Raises:
            TranscriptionError: If no model is loaded or whisper fails
        """
        if not self._loaded or self._model is None:
            raise TranscriptionError("No whisper model loaded")

        audio = np.asarray(audio)
        if audio.dtype == np.int16:
            audio = audio.astype(np.float32) / 32768.0
        else:
            audio = audio.astype(np.float32, copy=False)

        duration = len(audio) / sample_rate
        if len(audio) == 0:
            return TranscriptionResult(text="", duration_seconds=0.0)

        try:
            segments_iter, _info = self._model.transcribe(
                audio=audio,
                language=language,
                initial_prompt=initial_prompt,
                vad_filter=vad_filter,
                condition_on_previous_text=False,
                hallucination_silence_threshold=kwargs.get(
                    "hallucination_silence_threshold", HALLUCINATION_SILENCE_THRESHOLD),
            )
            # faster-whisper decodes lazily; errors surface while iterating
            segments = [TranscriptionSegment(text=s.text, start=s.start, end=s.end) for s in segments_iter]
        except Exception as e:
            raise TranscriptionError(f"Whisper failed on {duration:.1f}s of audio: {e}") from e

        text = "".join(s.text for s in segments).strip()
        logger.debug(f"Whisper: {duration:.1f}s -> {len(segments)} segment(s), {len(text)} chars")
        return TranscriptionResult(text=text, segments=segments, duration_seconds=duration)

    def unload(self) -> None:
        """Drop the model and return GPU memory."""
        super().unload()
        self._compute_type = None
        gc.collect()
        try:
            import torch
        except ImportError:
            return
        if torch.cuda.is_available():
            torch.cuda.empty_cache()
