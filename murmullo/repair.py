"""
Audio container validation and repair.

MediaRecorder-style capture can produce a buffer with a broken header when
recording was interrupted. Such buffers are normalized by ffmpeg into a
16 kHz mono PCM WAV before upload.
"""

import logging
import os
import shutil
import subprocess
import tempfile
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Tuple

from .errors import CorruptedAudio
from .types import AudioContainerProbe, AudioFormat, RepairedBuffer

logger = logging.getLogger(__name__)


EBML_MAGIC = b"\x1a\x45\xdf\xa3"
RIFF_MAGIC = b"RIFF"
WAVE_MAGIC = b"WAVE"
HEADER_PROBE_BYTES = 4
DEFAULT_REPAIR_TIMEOUT = 30.0


def probe(buffer: bytes) -> AudioContainerProbe:
    """Sniff the container header. Never touches the buffer contents."""
    header = bytes(buffer[:HEADER_PROBE_BYTES])
    if header == EBML_MAGIC:
        fmt = AudioFormat.VALID_WEBM
    elif header == RIFF_MAGIC and buffer[8:12] == WAVE_MAGIC:
        fmt = AudioFormat.VALID_WAV
    else:
        fmt = AudioFormat.CORRUPTED_UNKNOWN
    return AudioContainerProbe(format=fmt, header_bytes=header)


def resolve_ffmpeg(configured: str = "") -> Optional[str]:
    """Configured path if it exists, else ffmpeg on PATH."""
    if configured:
        return configured if os.path.isfile(configured) else None
    return shutil.which("ffmpeg")


def build_repair_command(binary: str, input_path: Path, output_path: Path) -> list:
    return [
        binary, "-y",
        "-i", str(input_path),
        "-ar", "16000",
        "-ac", "1",
        "-f", "wav",
        str(output_path),
    ]


@contextmanager
def scratch_files(tag: str, directory: Optional[str] = None) -> Iterator[Tuple[Path, Path]]:
    """
    Yield (input, output) temp paths, both removed on exit.

    Names embed the tag plus a random suffix so concurrent repairs never collide.
    """
    base = Path(directory or tempfile.gettempdir())
    stem = f"mur_{tag}_{uuid.uuid4().hex[:8]}"
    input_path = base / f"{stem}.in"
    output_path = base / f"{stem}.wav"
    try:
        yield input_path, output_path
    finally:
        for path in (input_path, output_path):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("[Repair] Could not remove %s: %s", path, e)


class AudioFormatGuard:
    """
    Passes valid containers through, repairs anything else.

    Usage:
        guard = AudioFormatGuard(ffmpeg_path="", timeout=30)
        buffer = guard.validate_or_repair(raw, session_id)
    """

    def __init__(
        self,
        ffmpeg_path: str = "",
        timeout: float = DEFAULT_REPAIR_TIMEOUT,
        temp_dir: Optional[str] = None,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.timeout = timeout
        self.temp_dir = temp_dir

    def validate_or_repair(self, buffer: bytes, session_id: str = "") -> RepairedBuffer:
        """
        Return the buffer tagged with its format, repairing it if needed.

        Raises:
            CorruptedAudio: repair subprocess missing, failed, timed out,
                or produced no output. Carries the original header as hex.
        """
        result = probe(buffer)
        if result.is_valid:
            return RepairedBuffer(data=bytes(buffer), format=result.format)

        logger.info("[Repair] Invalid header %s, repairing (%d bytes)",
                    result.header_hex, len(buffer))
        repaired = self._repair(buffer, session_id or "x", result.header_hex)
        return RepairedBuffer(data=repaired, format=AudioFormat.VALID_WAV, repaired=True)

    def _repair(self, buffer: bytes, tag: str, header_hex: str) -> bytes:
        binary = resolve_ffmpeg(self.ffmpeg_path)
        if binary is None:
            raise CorruptedAudio("ffmpeg not found", header_hex=header_hex)

        with scratch_files(tag, self.temp_dir) as (input_path, output_path):
            input_path.write_bytes(buffer)
            command = build_repair_command(binary, input_path, output_path)

            try:
                completed = subprocess.run(
                    command,
                    capture_output=True,
                    timeout=self.timeout,
                )
            except FileNotFoundError:
                raise CorruptedAudio(f"ffmpeg not found at {binary}", header_hex=header_hex)
            except subprocess.TimeoutExpired:
                raise CorruptedAudio(
                    f"ffmpeg timed out after {self.timeout}s", header_hex=header_hex
                )

            if completed.returncode != 0:
                stderr = completed.stderr.decode("utf-8", errors="replace")[-300:]
                logger.error("[Repair] ffmpeg exit %d: %s", completed.returncode, stderr)
                raise CorruptedAudio(
                    f"ffmpeg exited with code {completed.returncode}", header_hex=header_hex
                )

            if not output_path.exists() or output_path.stat().st_size == 0:
                raise CorruptedAudio("ffmpeg produced no output", header_hex=header_hex)

            data = output_path.read_bytes()

        logger.info("[Repair] Repaired to WAV (%d bytes)", len(data))
        return data
