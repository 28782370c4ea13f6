"""
Audio chunk primitives.

Pure data containers only.
No behavior beyond derived properties, no queues, no timing logic.
"""

from __future__ import annotations
from dataclasses import dataclass

from constants import (
    AUDIO_SAMPLE_WIDTH_BYTES,
    MAX_AUDIO_CHUNK_BYTES,
    pcm_bytes_to_seconds,
)


class InvalidAudioChunk(ValueError):
    """Raised when chunk bytes violate the PCM16 chunk bounds."""


@dataclass(frozen=True)
class AudioChunk:
    """
    One slice of captured microphone audio on its way upstream.

    session_id:
        Session the chunk belongs to.

    pcm_bytes:
        Raw PCM16 mono little-endian audio at the relay sample rate.
        Even length, at most MAX_AUDIO_CHUNK_BYTES.

    ts_ms:
        Wall-clock timestamp (milliseconds) when the chunk was received.
        Observability only.
    """
    session_id: str
    pcm_bytes: bytes
    ts_ms: int = 0

    def __post_init__(self) -> None:
        size = len(self.pcm_bytes)
        if size % AUDIO_SAMPLE_WIDTH_BYTES != 0:
            raise InvalidAudioChunk(f"odd PCM16 chunk length {size}")
        if size > MAX_AUDIO_CHUNK_BYTES:
            raise InvalidAudioChunk(
                f"chunk of {size} bytes exceeds {MAX_AUDIO_CHUNK_BYTES}"
            )

    @property
    def num_samples(self) -> int:
        """Return number of PCM16 samples in the chunk."""
        return len(self.pcm_bytes) // AUDIO_SAMPLE_WIDTH_BYTES

    @property
    def duration_s(self) -> float:
        """Return playback duration of the chunk in seconds."""
        return pcm_bytes_to_seconds(len(self.pcm_bytes))
