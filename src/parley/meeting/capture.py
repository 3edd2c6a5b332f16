"""
Microphone capture for meeting transcription, using sounddevice.

The PortAudio callback only queues blocks; flush() drains the queue into the
pipeline's audio callback on the caller's thread.
"""

import logging
import queue
import threading
from concurrent.futures import Future
from typing import Optional

import numpy as np
import sounddevice as sd

from ..engines.base import CaptureEngine, CaptureError

logger = logging.getLogger(__name__)


class AudioCapture(CaptureEngine):
    """Captures mono float32 audio from an input device."""

    def __init__(self, sample_rate: int = 16000, block_size: int = 1024, device=None):
        super().__init__()
        self.sample_rate = sample_rate
        self.block_size = block_size
        self.device = device

        self._recording = False
        self._stream = None
        self._queue: queue.Queue = queue.Queue()
        self._flush_lock = threading.Lock()

    def _find_input_device(self) -> Optional[dict]:
        try:
            return sd.query_devices(self.device, kind='input')
        except (ValueError, sd.PortAudioError) as e:
            logger.warning(f"[Meeting Audio] No input device: {e}")
            return None

    def is_available(self) -> bool:
        return self._find_input_device() is not None

    def is_recording(self) -> bool:
        return self._recording

    def _callback(self, indata, frames, time_info, status):
        if status:
            logger.debug(f"[Meeting Audio] Stream status: {status}")
        if not self._recording:
            return
        block = indata[:, 0].copy() if indata.ndim > 1 else indata.flatten().copy()
        self._queue.put(block)
        if self._on_level is not None:
            self._on_level(float(np.sqrt(np.mean(block ** 2))) if block.size else 0.0)

    def start_recording(self) -> None:
        """Open the input stream. Raises CaptureError on failure."""
        if self._recording:
            raise CaptureError("Capture is already recording")

        device_info = self._find_input_device()
        if device_info is None:
            raise CaptureError("No input device available")

        # Drop anything left over from a previous session
        self._drain()

        try:
            self._recording = True
            self._stream = sd.InputStream(
                device=self.device,
                samplerate=self.sample_rate,
                channels=1,
                dtype='float32',
                blocksize=self.block_size,
                callback=self._callback,
            )
            self._stream.start()
            logger.info(f"[Meeting Audio] Recording from {device_info['name']} at {self.sample_rate}Hz")
        except (sd.PortAudioError, ValueError) as e:
            self._recording = False
            self._stream = None
            raise CaptureError(f"Failed to start capture: {e}") from e

    def stop_recording(self) -> None:
        """Close the input stream. Raises CaptureError if PortAudio refuses."""
        self._recording = False
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
            logger.info("[Meeting Audio] Recording stopped")
        except sd.PortAudioError as e:
            raise CaptureError(f"Failed to stop capture: {e}") from e

    def flush(self) -> Future:
        """Hand every queued block to the audio callback; the Future is already done."""
        future: Future = Future()
        try:
            with self._flush_lock:
                blocks = self._drain()
                if blocks and self._on_audio is not None:
                    self._on_audio(np.concatenate(blocks))
            future.set_result(sum(len(b) for b in blocks))
        except Exception as e:
            future.set_exception(CaptureError(f"Flush failed: {e}"))
        return future

    def _drain(self) -> list:
        blocks = []
        while True:
            try:
                blocks.append(self._queue.get_nowait())
            except queue.Empty:
                return blocks
