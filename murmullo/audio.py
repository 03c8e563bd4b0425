"""
Audio engine for single-mic capture.

Owns the sounddevice input stream and the in-memory chunk accumulator
while capturing. stop() releases the device unconditionally and hands the
recording over as a WAV container.
"""

import io
import logging
import threading
from typing import List, Optional

import numpy as np
import soundfile as sf

from .errors import DeviceUnavailable

logger = logging.getLogger(__name__)


# Constants
DEFAULT_SAMPLE_RATE = 16000
DEFAULT_BLOCKSIZE = 1024
DEFAULT_DEVICE_TIMEOUT = 5.0


def encode_wav(audio: np.ndarray, sample_rate: int = DEFAULT_SAMPLE_RATE) -> bytes:
    """Encode float32 mono samples as 16-bit PCM WAV bytes."""
    buffer = io.BytesIO()
    sf.write(buffer, audio, sample_rate, format="WAV", subtype="PCM_16")
    return buffer.getvalue()


class AudioEngine:
    """
    Manages the mic stream for one capture at a time.

    Thread-safe: all public methods can be called from any thread.

    Usage:
        engine = AudioEngine()
        engine.start(timeout=5)
        # ... user speaks ...
        wav_bytes = engine.stop()
    """

    def __init__(
        self,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        device: Optional[int] = None,
    ):
        self.sample_rate = sample_rate
        self.device = device

        self._stream = None
        self._chunks: List[np.ndarray] = []
        self._lock = threading.Lock()

    @property
    def is_capturing(self) -> bool:
        with self._lock:
            return self._stream is not None

    def start(self, timeout: float = DEFAULT_DEVICE_TIMEOUT) -> None:
        """
        Open and start the input stream.

        Raises:
            DeviceUnavailable: no device, permission denied, or opening
                took longer than timeout.
        """
        with self._lock:
            if self._stream is not None:
                return
            self._chunks = []

        outcome = {}

        def open_stream() -> None:
            try:
                import sounddevice as sd

                stream = sd.InputStream(
                    device=self.device,
                    samplerate=self.sample_rate,
                    channels=1,
                    dtype=np.float32,
                    blocksize=DEFAULT_BLOCKSIZE,
                    callback=self._audio_callback,
                )
                stream.start()
                outcome["stream"] = stream
            except Exception as e:
                outcome["error"] = e

        opener = threading.Thread(target=open_stream, name="mic-open", daemon=True)
        opener.start()
        opener.join(timeout)

        if opener.is_alive():
            # Late success must not leak a live stream
            threading.Thread(target=self._close_late, args=(opener, outcome), daemon=True).start()
            raise DeviceUnavailable(f"Microphone did not open within {timeout}s")
        if "error" in outcome:
            raise DeviceUnavailable(f"Microphone unavailable: {outcome['error']}")

        with self._lock:
            self._stream = outcome["stream"]
        logger.info("[Audio] Capture started (%d Hz mono)", self.sample_rate)

    def stop(self) -> bytes:
        """
        Stop capturing and return the recording as WAV bytes.

        The device is released before encoding, even if encoding fails.
        Returns b"" when nothing was captured.
        """
        with self._lock:
            stream = self._stream
            self._stream = None
            chunks = self._chunks
            self._chunks = []

        self._close(stream)

        if not chunks:
            return b""
        audio = np.concatenate(chunks)
        logger.info("[Audio] Captured %.2fs", len(audio) / self.sample_rate)
        return encode_wav(audio, self.sample_rate)

    def shutdown(self) -> None:
        """Release the device and drop any buffered audio."""
        with self._lock:
            stream = self._stream
            self._stream = None
            self._chunks = []
        self._close(stream)

    def _audio_callback(self, indata: np.ndarray, frames: int, time_info, status) -> None:
        """Called by sounddevice for each audio block."""
        if status:
            logger.debug("[Audio] Callback status: %s", status)

        audio = indata.copy().flatten()
        with self._lock:
            if self._stream is None:
                return
            self._chunks.append(audio)

    def _close(self, stream) -> None:
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception as e:
            logger.warning("[Audio] Error closing stream: %s", e)

    def _close_late(self, opener: threading.Thread, outcome: dict) -> None:
        opener.join()
        self._close(outcome.get("stream"))
