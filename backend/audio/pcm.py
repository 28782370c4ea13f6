"""PCM conversion utilities."""
from __future__ import annotations

import base64
import binascii

import numpy as np

from constants import AUDIO_SAMPLE_RATE_HZ, PCM16_FULL_SCALE


class PCMDecodeError(ValueError):
    """Raised when a base64 audio payload is not valid PCM16."""


def pcm16le_to_float32(pcm_bytes: bytes) -> np.ndarray:
    """
    Convert PCM16 little-endian mono bytes to float32 in [-1.0, 1.0).

    No resampling. No channel mixing.
    """
    if len(pcm_bytes) % 2 != 0:
        # Truncated sample; caller should treat as malformed upstream.
        pcm_bytes = pcm_bytes[: len(pcm_bytes) - 1]

    audio_i16 = np.frombuffer(pcm_bytes, dtype="<i2")  # little-endian int16
    return audio_i16.astype(np.float32) / PCM16_FULL_SCALE


def float32_to_pcm16le(samples: np.ndarray) -> bytes:
    """
    Convert float samples to PCM16 little-endian bytes.

    Values are clipped to [-1.0, 1.0] before scaling; multichannel input
    is mixed down by averaging channels.
    """
    audio = np.asarray(samples, dtype=np.float32)
    if audio.ndim > 1:
        audio = audio.mean(axis=1)
    clipped = np.clip(audio, -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * PCM16_FULL_SCALE, clipped * (PCM16_FULL_SCALE - 1))
    return scaled.astype("<i2").tobytes()


def resample_linear(
    samples: np.ndarray,
    *,
    src_rate_hz: int,
    dst_rate_hz: int = AUDIO_SAMPLE_RATE_HZ,
) -> np.ndarray:
    """
    Resample a mono float32 signal by linear interpolation.

    Good enough for speech going to a provider that resamples anyway.
    Returns the input unchanged when the rates match.
    """
    if src_rate_hz <= 0 or dst_rate_hz <= 0:
        raise ValueError("sample rates must be > 0")

    audio = np.asarray(samples, dtype=np.float32)
    if src_rate_hz == dst_rate_hz or audio.size == 0:
        return audio

    n_out = int(round(audio.size * dst_rate_hz / src_rate_hz))
    if n_out <= 0:
        return np.zeros(0, dtype=np.float32)

    src_positions = np.arange(audio.size, dtype=np.float64)
    dst_positions = np.linspace(0, audio.size - 1, n_out, dtype=np.float64)
    return np.interp(dst_positions, src_positions, audio).astype(np.float32)


def encode_pcm_base64(pcm_bytes: bytes) -> str:
    """Base64-encode PCM bytes for JSON transport."""
    return base64.b64encode(pcm_bytes).decode("ascii")


def decode_pcm_base64(payload: str) -> bytes:
    """
    Decode a base64 PCM16 payload.

    Raises:
        PCMDecodeError if the payload is not valid base64 or does not
        hold a whole number of 16-bit samples.
    """
    try:
        pcm_bytes = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise PCMDecodeError(f"invalid base64 audio: {e}") from e

    if len(pcm_bytes) % 2 != 0:
        raise PCMDecodeError(
            f"PCM16 payload has odd byte length {len(pcm_bytes)}"
        )
    return pcm_bytes
