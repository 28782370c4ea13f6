"""
Microphone capture adapter (client side).

Responsibilities:
- Open the microphone through a sounddevice InputStream
- Convert float32 device audio to PCM16 mono at the relay rate
- Slice the stream into fixed CAPTURE_CHUNK_SAMPLES chunks
- Hand chunks to an async sender in capture order
- On stop: flush what is buffered, then signal commit

Threading:
- PortAudio invokes the stream callback on its own thread; the callback
  only copies the block and hands it to the event loop with
  call_soon_threadsafe. All chunking and sending happens on the loop.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Protocol

import numpy as np

from audio.chunker import PCMChunker
from audio.pcm import float32_to_pcm16le, resample_linear
from constants import (
    AUDIO_CHANNELS,
    AUDIO_SAMPLE_RATE_HZ,
    CAPTURE_CHUNK_SAMPLES,
    CAPTURE_DEVICE_SAMPLE_RATE_HZ_DEFAULT,
)
from observability.logger import log_event


class PermissionDenied(Exception):
    """The microphone could not be opened (no device, no permission)."""


class CaptureStream(Protocol):
    def start(self) -> None: ...
    def stop(self) -> None: ...
    def close(self) -> None: ...


StreamCallback = Callable[[np.ndarray, int, Any, Any], None]
StreamFactory = Callable[..., CaptureStream]
SendChunk = Callable[[bytes], Awaitable[None]]
SendCommit = Callable[[], Awaitable[None]]


def _now_ms() -> int:
    return int(time.time() * 1000)


class _SoundDeviceInput:
    """InputStream wrapper that reports device failures as PermissionDenied."""

    def __init__(self, stream: Any, error_type: type[Exception]) -> None:
        self._stream = stream
        self._error_type = error_type

    def start(self) -> None:
        try:
            self._stream.start()
        except self._error_type as e:
            raise PermissionDenied(f"microphone unavailable: {e}") from e

    def stop(self) -> None:
        self._stream.stop()

    def close(self) -> None:
        self._stream.close()


def sounddevice_input_stream(
    *,
    callback: StreamCallback,
    samplerate: int,
    blocksize: int,
    device: int | str | None = None,
) -> CaptureStream:
    """
    Default StreamFactory: a mono float32 sounddevice InputStream.

    Raises:
        PermissionDenied if PortAudio cannot open or start the input device.
    """
    # Imported here: loading PortAudio fails on hosts without audio support
    import sounddevice as sd  # pylint: disable=import-outside-toplevel

    try:
        stream = sd.InputStream(
            samplerate=samplerate,
            channels=AUDIO_CHANNELS,
            dtype="float32",
            blocksize=blocksize,
            callback=callback,
            device=device,
        )
    except sd.PortAudioError as e:
        raise PermissionDenied(f"microphone unavailable: {e}") from e
    return _SoundDeviceInput(stream, sd.PortAudioError)


class AudioCaptureAdapter:
    """
    Start/stop microphone capture feeding an async chunk sender.

    Guarantees:
    - Chunks are sent in capture order, one at a time
    - Every full chunk is exactly CAPTURE_CHUNK_SAMPLES samples
    - stop_capture() sends the trailing partial chunk, then commit;
      nothing is sent after it returns
    """

    def __init__(
        self,
        *,
        send_chunk: SendChunk,
        commit: SendCommit,
        device_sample_rate_hz: int = CAPTURE_DEVICE_SAMPLE_RATE_HZ_DEFAULT,
        block_size: int = 1024,
        device: int | str | None = None,
        stream_factory: StreamFactory = sounddevice_input_stream,
        chunk_samples: int = CAPTURE_CHUNK_SAMPLES,
    ) -> None:
        self._send_chunk = send_chunk
        self._commit = commit
        self._device_rate = device_sample_rate_hz
        self._block_size = block_size
        self._device = device
        self._stream_factory = stream_factory

        self._loop: asyncio.AbstractEventLoop | None = None
        self._stream: CaptureStream | None = None
        self._queue: asyncio.Queue[bytes | None] | None = None
        self._sender: asyncio.Task[None] | None = None
        self._chunker = PCMChunker(chunk_samples)
        self._capturing = False
        self._stopping = False
        self.chunks_sent = 0

    @property
    def capturing(self) -> bool:
        return self._capturing

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start_capture(self) -> None:
        """
        Open the microphone and begin streaming chunks.

        Raises:
            PermissionDenied if the device cannot be opened. Capture
            state is left untouched in that case.
        """
        if self._capturing:
            return

        self._loop = asyncio.get_running_loop()
        self._chunker.clear()

        stream = self._stream_factory(
            callback=self._on_audio,
            samplerate=self._device_rate,
            blocksize=self._block_size,
            device=self._device,
        )
        self._queue = asyncio.Queue()
        self._capturing = True
        try:
            stream.start()
        except PermissionDenied:
            self._capturing = False
            self._queue = None
            stream.close()
            raise

        self._stream = stream
        self.chunks_sent = 0
        self._sender = asyncio.create_task(self._send_loop(self._queue))

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "CAPTURE_STARTED",
            "device_sample_rate_hz": self._device_rate,
            "target_sample_rate_hz": AUDIO_SAMPLE_RATE_HZ,
        })

    async def stop_capture(self) -> None:
        """Stop the microphone, flush buffered audio, then commit."""
        if not self._capturing or self._stopping:
            return
        self._stopping = True

        stream = self._stream
        self._stream = None
        if stream is not None:
            stream.stop()
            stream.close()

        # Blocks handed off by the stream callback before stop() are still
        # queued on the loop; let them reach the chunker before the flush.
        await asyncio.sleep(0)
        self._capturing = False
        self._stopping = False

        queue = self._queue
        tail = self._chunker.flush()
        if queue is not None:
            if tail:
                queue.put_nowait(tail)
            queue.put_nowait(None)

        sender = self._sender
        self._sender = None
        if sender is not None:
            await sender

        await self._commit()

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "CAPTURE_STOPPED",
            "chunks_sent": self.chunks_sent,
        })

    def feed_block(self, samples: np.ndarray) -> None:
        """
        Accept one block of float32 device audio (event loop thread).

        Ignored when capture is not running.
        """
        if not self._capturing or self._queue is None:
            return
        audio = resample_linear(samples, src_rate_hz=self._device_rate)
        for chunk in self._chunker.add(float32_to_pcm16le(audio)):
            self._queue.put_nowait(chunk)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _on_audio(self, indata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:  # pylint: disable=unused-argument
        # PortAudio thread: copy and hand off, nothing else.
        loop = self._loop
        if not self._capturing or loop is None:
            return
        block = np.array(indata, dtype=np.float32, copy=True)
        if block.ndim > 1:
            block = block[:, 0]
        loop.call_soon_threadsafe(self.feed_block, block)

    async def _send_loop(self, queue: asyncio.Queue[bytes | None]) -> None:
        while True:
            chunk = await queue.get()
            if chunk is None:
                return
            await self._send_chunk(chunk)
            self.chunks_sent += 1
