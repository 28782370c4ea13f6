"""
PCM chunk splitting utilities.

Purpose:
- Slice a continuous PCM16 capture stream into fixed-size chunks
  (CAPTURE_CHUNK_SAMPLES samples each) for the audio-chunk message.

Invariants:
- PCM16 signed, little-endian, mono
- Chunks leave in exactly the order their samples arrived
- A trailing partial chunk is held until more audio arrives or flush()
"""

from __future__ import annotations

from constants import (
    AUDIO_SAMPLE_WIDTH_BYTES,
    CAPTURE_CHUNK_SAMPLES,
)


def split_pcm_into_chunks(
    pcm_bytes: bytes,
    *,
    chunk_samples: int = CAPTURE_CHUNK_SAMPLES,
    sample_width_bytes: int = AUDIO_SAMPLE_WIDTH_BYTES,
) -> tuple[list[bytes], bytes]:
    """
    Split raw PCM16 bytes into fixed-size chunks.

    Returns:
        (chunks, remainder) where every chunk is exactly
        chunk_samples * sample_width_bytes long and remainder holds
        the incomplete trailing bytes (possibly empty).

    Raises:
        ValueError if chunk parameters are not positive.
    """
    if chunk_samples <= 0:
        raise ValueError("chunk_samples must be > 0")
    if sample_width_bytes <= 0:
        raise ValueError("sample_width_bytes must be > 0")

    chunk_bytes = chunk_samples * sample_width_bytes
    whole = len(pcm_bytes) // chunk_bytes
    end = whole * chunk_bytes

    chunks = [
        pcm_bytes[offset : offset + chunk_bytes]
        for offset in range(0, end, chunk_bytes)
    ]
    return chunks, pcm_bytes[end:]


class PCMChunker:
    """
    Stateful re-chunker for a capture stream.

    Capture callbacks deliver blocks of arbitrary size; this class
    carries the remainder between calls so output chunks are aligned
    to CAPTURE_CHUNK_SAMPLES without losing samples.
    """

    def __init__(self, chunk_samples: int = CAPTURE_CHUNK_SAMPLES) -> None:
        if chunk_samples <= 0:
            raise ValueError("chunk_samples must be > 0")
        self._chunk_samples = chunk_samples
        self._buffer = b""

    @property
    def pending_bytes(self) -> int:
        """Bytes held back waiting for a full chunk."""
        return len(self._buffer)

    def add(self, pcm_bytes: bytes) -> list[bytes]:
        """Append audio and return every complete chunk now available."""
        chunks, self._buffer = split_pcm_into_chunks(
            self._buffer + pcm_bytes,
            chunk_samples=self._chunk_samples,
        )
        return chunks

    def flush(self) -> bytes:
        """Return and clear the trailing partial chunk (may be empty)."""
        tail = self._buffer
        # Never emit half a sample
        if len(tail) % AUDIO_SAMPLE_WIDTH_BYTES:
            tail = tail[: len(tail) - len(tail) % AUDIO_SAMPLE_WIDTH_BYTES]
        self._buffer = b""
        return tail

    def clear(self) -> None:
        """Drop any buffered audio."""
        self._buffer = b""
