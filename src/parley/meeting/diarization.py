"""
Speaker diarization using pyannote-audio.
Identifies different speakers in audio and fingerprints each of them.

Setup required:
1. pip install pyannote.audio
2. Accept license at https://huggingface.co/pyannote/speaker-diarization-3.1
3. Accept license at https://huggingface.co/pyannote/wespeaker-voxceleb-resnet34-LM
4. Set HF_TOKEN environment variable with your HuggingFace token
"""

import logging
import os
import threading
from typing import Dict, List, Optional, Sequence

import numpy as np

from ..engines.base import DiarizationEngine, DiarizationError, DiarizationResult, SpeakerSegment
from ..logger import log_exception
from .speakers import cosine_similarity

logger = logging.getLogger(__name__)

# Try to import pyannote - it's optional
PYANNOTE_AVAILABLE = False
try:
    from pyannote.audio import Pipeline, Model, Inference
    import torch
    PYANNOTE_AVAILABLE = True
except ImportError:
    pass

DIARIZATION_MODEL = "pyannote/speaker-diarization-3.1"
EMBEDDING_MODEL = "pyannote/wespeaker-voxceleb-resnet34-LM"


def _hf_token() -> Optional[str]:
    return os.environ.get("HF_TOKEN") or os.environ.get("HUGGINGFACE_TOKEN")


class SpeakerDiarizer(DiarizationEngine):
    """
    Identifies different speakers in audio using pyannote-audio.

    Usage:
        diarizer = SpeakerDiarizer()
        if diarizer.is_available():
            result = diarizer.diarize(audio_data, sample_rate=16000)
    """

    MIN_EMBEDDING_SECONDS = 0.5

    def __init__(self, device: str = "cpu", similarity_threshold: float = 0.25, max_speakers: int = 8):
        self._pipeline = None
        self._embedding_inference = None
        self._device = device
        self._similarity_threshold = similarity_threshold  # Relabel turns to enrolled ids above this
        self._max_speakers = max_speakers
        self._known_speakers: Dict[str, np.ndarray] = {}  # profile id -> embedding
        self._lock = threading.Lock()

    def is_available(self) -> bool:
        """Check if pyannote-audio is available and configured."""
        if not PYANNOTE_AVAILABLE:
            return False
        return bool(_hf_token())

    @property
    def is_loaded(self) -> bool:
        return self._pipeline is not None

    def load(self) -> bool:
        """Load the diarization pipeline. Returns True if successful."""
        if not PYANNOTE_AVAILABLE:
            logger.warning("pyannote.audio not installed. Install with: pip install pyannote.audio")
            return False

        hf_token = _hf_token()
        if not hf_token:
            logger.warning("HuggingFace token not found. Set HF_TOKEN environment variable. "
                           f"Accept license at: https://huggingface.co/{DIARIZATION_MODEL}")
            return False

        try:
            logger.info("Loading pyannote speaker-diarization pipeline...")
            pipeline = Pipeline.from_pretrained(DIARIZATION_MODEL, token=hf_token)

            device = torch.device("cuda" if self._device == "cuda" and torch.cuda.is_available() else "cpu")
            pipeline.to(device)

            embedding_model = Model.from_pretrained(EMBEDDING_MODEL, token=hf_token)
            embedding_model.to(device)

            self._embedding_inference = Inference(embedding_model, window="whole")
            self._pipeline = pipeline
            logger.info(f"Diarization loaded on {'GPU' if device.type == 'cuda' else 'CPU'}")
            return True

        except Exception as e:
            log_exception(e, "loading diarization pipeline")
            return False

    def load_known_speakers(self, profiles: Sequence) -> None:
        """Remember enrolled embeddings so turns can be labelled with profile ids."""
        known = {p.id: np.asarray(p.embedding, dtype=np.float32).reshape(-1) for p in profiles}
        with self._lock:
            self._known_speakers = known
        logger.debug(f"Diarizer knows {len(known)} enrolled speaker(s)")

    def diarize(self, audio: np.ndarray, sample_rate: int = 16000) -> DiarizationResult:
        """
        Identify speakers in audio.

        Args:
            audio: Mono float32 audio in [-1, 1]
            sample_rate: Sample rate of audio

        Returns:
            DiarizationResult with speaker turns and one embedding per label

        Raises:
            DiarizationError: If the models cannot be loaded or the pipeline fails
        """
        if self._pipeline is None and not self.load():
            raise DiarizationError("Diarization pipeline is not available")

        audio = np.asarray(audio, dtype=np.float32).reshape(-1)
        if audio.size == 0:
            return DiarizationResult()

        try:
            waveform = torch.from_numpy(audio).unsqueeze(0)
            diarization = self._pipeline(
                {"waveform": waveform, "sample_rate": sample_rate},
                min_speakers=1,
                max_speakers=self._max_speakers
            )

            # Newer pyannote returns DiarizeOutput - extract the Annotation
            annotation = getattr(diarization, 'speaker_diarization', diarization)
            tracks = list(annotation.itertracks(yield_label=True))
        except Exception as e:
            raise DiarizationError(f"Diarization failed: {e}") from e

        logger.debug(f"[Diarization] {len(tracks)} turns, labels {annotation.labels()}")

        # Fingerprint each label from all of its turns
        embeddings: Dict[str, np.ndarray] = {}
        for label in annotation.labels():
            pieces = []
            for turn, _, speaker in tracks:
                if speaker != label:
                    continue
                start = int(turn.start * sample_rate)
                end = min(int(turn.end * sample_rate), len(audio))
                if end > start:
                    pieces.append(audio[start:end])
            if not pieces:
                continue
            speaker_audio = np.concatenate(pieces)
            if len(speaker_audio) < sample_rate * self.MIN_EMBEDDING_SECONDS:
                logger.debug(f"[Diarization] {label}: only {len(speaker_audio) / sample_rate:.2f}s, "
                             "too short for embedding")
                continue
            embedding = self.extract_embedding(speaker_audio, sample_rate)
            if embedding is not None:
                embeddings[label] = embedding

        relabel = self._match_known(embeddings)

        segments: List[SpeakerSegment] = [
            SpeakerSegment(start=float(turn.start), end=float(turn.end), speaker=relabel.get(speaker, speaker))
            for turn, _, speaker in tracks
        ]
        relabelled: Dict[str, np.ndarray] = {}
        for label, embedding in embeddings.items():
            relabelled.setdefault(relabel.get(label, label), embedding)

        return DiarizationResult(segments=segments, embeddings=relabelled)

    def extract_embedding(self, audio: np.ndarray, sample_rate: int = 16000) -> Optional[np.ndarray]:
        """
        Extract a voice embedding from audio.

        Returns:
            Unit-length embedding vector, or None on error
        """
        if self._embedding_inference is None:
            return None

        try:
            waveform = torch.from_numpy(np.asarray(audio, dtype=np.float32)).unsqueeze(0)
            embedding = self._embedding_inference({"waveform": waveform, "sample_rate": sample_rate})

            if isinstance(embedding, torch.Tensor):
                embedding = embedding.cpu().numpy()
            embedding = np.asarray(embedding, dtype=np.float32).flatten()

            # Normalize to unit length for cosine similarity
            norm = np.linalg.norm(embedding)
            if norm == 0:
                return None
            return embedding / norm

        except Exception as e:
            log_exception(e, "extracting speaker embedding")
            return None

    def _match_known(self, embeddings: Dict[str, np.ndarray]) -> Dict[str, str]:
        """Map window labels to enrolled profile ids where the voice is close enough."""
        with self._lock:
            known = dict(self._known_speakers)
        if not known:
            return {}

        relabel = {}
        for label, embedding in embeddings.items():
            best_id = None
            best_similarity = self._similarity_threshold
            for profile_id, known_embedding in known.items():
                similarity = cosine_similarity(embedding, known_embedding)
                if similarity > best_similarity:
                    best_similarity = similarity
                    best_id = profile_id
            if best_id is not None:
                relabel[label] = best_id
                logger.debug(f"[Diarization] {label} -> enrolled {best_id} ({best_similarity:.3f})")
        return relabel
