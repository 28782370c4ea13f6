"""
Gapless playback scheduler (client side).

Model:
- Each decoded audio-delta becomes a ScheduledBuffer starting at
  max(clock.now(), next_start_time); next_start_time then advances by
  the buffer's duration, so buffers play back to back without overlap.
- barge_in() drops every pending and in-flight buffer at once and resets
  next_start_time to 0, so the next buffer starts "now".
- render() mixes whatever is scheduled for an output block; the
  sounddevice OutputStream callback calls it on the PortAudio thread.

The engine is an ordinary object; the caller decides how many exist.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Protocol

import numpy as np

from audio.pcm import pcm16le_to_float32
from constants import AUDIO_CHANNELS, AUDIO_SAMPLE_RATE_HZ
from observability.logger import log_event


class AudioClock(Protocol):
    """Source of the output device's notion of 'now', in seconds."""

    def now(self) -> float: ...


class MonotonicClock:
    """AudioClock backed by time.monotonic (no output device)."""

    def now(self) -> float:
        return time.monotonic()


@dataclass(frozen=True)
class ScheduledBuffer:
    samples: np.ndarray
    start_time: float
    duration: float

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration


class PlaybackEngine:
    """
    Schedules PCM16 buffers on an AudioClock timeline.

    Invariant: for consecutive buffers n, n+1 scheduled without a
    barge-in in between, start(n+1) >= start(n) + duration(n).
    """

    def __init__(
        self,
        *,
        clock: AudioClock | None = None,
        sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ,
    ) -> None:
        if sample_rate_hz <= 0:
            raise ValueError("sample_rate_hz must be > 0")
        self._clock: AudioClock = clock or MonotonicClock()
        self._rate = sample_rate_hz
        self._lock = threading.Lock()
        self._queue: list[ScheduledBuffer] = []
        self._next_start_time = 0.0

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def next_start_time(self) -> float:
        with self._lock:
            return self._next_start_time

    @property
    def queue(self) -> tuple[ScheduledBuffer, ...]:
        with self._lock:
            return tuple(self._queue)

    def is_playing(self) -> bool:
        now = self._clock.now()
        with self._lock:
            return any(buf.end_time > now for buf in self._queue)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def enqueue_pcm16(self, pcm_bytes: bytes) -> ScheduledBuffer | None:
        """Decode and schedule one PCM16 buffer. Empty input is ignored."""
        samples = pcm16le_to_float32(pcm_bytes)
        if samples.size == 0:
            return None
        return self.schedule(samples)

    def schedule(self, samples: np.ndarray) -> ScheduledBuffer:
        duration = samples.size / self._rate
        now = self._clock.now()
        with self._lock:
            start = max(now, self._next_start_time)
            buf = ScheduledBuffer(samples=samples, start_time=start, duration=duration)
            self._next_start_time = start + duration
            self._queue = [b for b in self._queue if b.end_time > now]
            self._queue.append(buf)
        return buf

    def barge_in(self) -> int:
        """
        Stop everything scheduled or playing.

        Returns the number of buffers discarded.
        """
        with self._lock:
            dropped = len(self._queue)
            self._queue = []
            self._next_start_time = 0.0

        log_event({
            "ts_ms": int(time.time() * 1000),
            "event_type": "PLAYBACK_BARGE_IN",
            "buffers_dropped": dropped,
        })
        return dropped

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def render(self, frames: int, block_start_time: float) -> np.ndarray:
        """
        Mix scheduled audio for an output block of `frames` samples whose
        first sample plays at block_start_time.
        """
        out = np.zeros(frames, dtype=np.float32)
        block_end_time = block_start_time + frames / self._rate

        with self._lock:
            for buf in self._queue:
                if buf.end_time <= block_start_time or buf.start_time >= block_end_time:
                    continue
                offset = int(round((buf.start_time - block_start_time) * self._rate))
                dst_start = max(offset, 0)
                src_start = max(-offset, 0)
                n = min(frames - dst_start, buf.samples.size - src_start)
                if n > 0:
                    out[dst_start : dst_start + n] += buf.samples[src_start : src_start + n]
            self._queue = [b for b in self._queue if b.end_time > block_end_time]

        np.clip(out, -1.0, 1.0, out=out)
        return out


class SoundDevicePlayback:
    """
    PlaybackEngine driven by a sounddevice OutputStream.

    The stream's own clock is the engine's AudioClock, and each callback
    renders the block that will reach the DAC at outputBufferDacTime.
    """

    def __init__(
        self,
        *,
        sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ,
        device: int | str | None = None,
    ) -> None:
        # Imported here: loading PortAudio fails on hosts without audio support
        import sounddevice as sd  # pylint: disable=import-outside-toplevel

        self._stream = sd.OutputStream(
            samplerate=sample_rate_hz,
            channels=AUDIO_CHANNELS,
            dtype="float32",
            callback=self._callback,
            device=device,
        )
        self.engine = PlaybackEngine(clock=self, sample_rate_hz=sample_rate_hz)

    def now(self) -> float:
        return float(self._stream.time)

    def start(self) -> None:
        self._stream.start()

    def close(self) -> None:
        self.engine.barge_in()
        self._stream.stop()
        self._stream.close()

    def _callback(self, outdata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:  # pylint: disable=unused-argument
        outdata[:, 0] = self.engine.render(frames, time_info.outputBufferDacTime)
