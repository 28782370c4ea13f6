# pylint: disable=missing-module-docstring,missing-function-docstring

import base64

import numpy as np
import pytest

from audio.chunker import PCMChunker, split_pcm_into_chunks
from audio.frames import AudioChunk, InvalidAudioChunk
from audio.pcm import (
    PCMDecodeError,
    decode_pcm_base64,
    float32_to_pcm16le,
    pcm16le_to_float32,
    resample_linear,
)
from constants import CAPTURE_CHUNK_BYTES, CAPTURE_CHUNK_SAMPLES, MAX_AUDIO_CHUNK_BYTES


def test_float_to_pcm16_clips_and_scales():
    pcm = float32_to_pcm16le(np.array([1.5, 1.0, 0.0, -1.0, -2.0], dtype=np.float32))

    assert np.frombuffer(pcm, dtype="<i2").tolist() == [32767, 32767, 0, -32768, -32768]


def test_float_to_pcm16_mixes_down_channels():
    stereo = np.array([[0.5, -0.5], [1.0, 1.0]], dtype=np.float32)

    assert np.frombuffer(float32_to_pcm16le(stereo), dtype="<i2").tolist() == [0, 32767]


def test_pcm16_to_float_range():
    samples = pcm16le_to_float32(np.array([-32768, 0, 16384], dtype="<i2").tobytes())

    assert samples.dtype == np.float32
    assert samples.tolist() == [-1.0, 0.0, 0.5]


def test_resample_halves_length_from_48k():
    out = resample_linear(np.ones(4800, dtype=np.float32), src_rate_hz=48_000)

    assert out.size == 2400
    assert np.allclose(out, 1.0)


def test_resample_same_rate_is_identity():
    samples = np.arange(10, dtype=np.float32)

    assert np.array_equal(resample_linear(samples, src_rate_hz=24_000), samples)


def test_decode_base64_rejects_odd_length():
    with pytest.raises(PCMDecodeError):
        decode_pcm_base64(base64.b64encode(b"\x00\x01\x02").decode())


def test_split_returns_whole_chunks_and_remainder():
    data = b"\x01\x00" * (CAPTURE_CHUNK_SAMPLES * 2 + 100)
    chunks, rest = split_pcm_into_chunks(data)

    assert [len(c) for c in chunks] == [CAPTURE_CHUNK_BYTES, CAPTURE_CHUNK_BYTES]
    assert len(rest) == 200


def test_chunker_preserves_sample_order_across_blocks():
    samples = np.arange(CAPTURE_CHUNK_SAMPLES * 3 + 10, dtype="<i2")
    pcm = samples.tobytes()
    chunker = PCMChunker()

    out: list[bytes] = []
    for offset in range(0, len(pcm), 3000):
        out.extend(chunker.add(pcm[offset : offset + 3000]))

    assert [len(c) for c in out] == [CAPTURE_CHUNK_BYTES] * 3
    assert chunker.pending_bytes == 20
    tail = chunker.flush()
    assert b"".join(out) + tail == pcm
    assert chunker.pending_bytes == 0


def test_chunker_flush_drops_half_sample():
    chunker = PCMChunker()
    chunker.add(b"\x01\x00\x02")

    assert chunker.flush() == b"\x01\x00"


def test_audio_chunk_bounds():
    chunk = AudioChunk(session_id="s1", pcm_bytes=b"\x00" * CAPTURE_CHUNK_BYTES)

    assert chunk.num_samples == CAPTURE_CHUNK_SAMPLES
    assert chunk.duration_s == pytest.approx(CAPTURE_CHUNK_SAMPLES / 24_000)

    with pytest.raises(InvalidAudioChunk):
        AudioChunk(session_id="s1", pcm_bytes=b"\x00")
    with pytest.raises(InvalidAudioChunk):
        AudioChunk(session_id="s1", pcm_bytes=b"\x00" * (MAX_AUDIO_CHUNK_BYTES + 2))
