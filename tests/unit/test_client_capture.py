# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio

import numpy as np
import pytest

from client.capture import AudioCaptureAdapter, PermissionDenied, _SoundDeviceInput
from constants import CAPTURE_CHUNK_BYTES, CAPTURE_CHUNK_SAMPLES


class FakeStream:
    def __init__(self, callback, fail_start: bool = False) -> None:
        self.callback = callback
        self.fail_start = fail_start
        self.started = False
        self.closed = False

    def start(self) -> None:
        if self.fail_start:
            raise PermissionDenied("microphone blocked")
        self.started = True

    def stop(self) -> None:
        self.started = False

    def close(self) -> None:
        self.closed = True


class Outbox:
    def __init__(self) -> None:
        self.items: list[tuple[str, bytes]] = []

    async def send_chunk(self, pcm: bytes) -> None:
        await asyncio.sleep(0)
        self.items.append(("chunk", pcm))

    async def commit(self) -> None:
        self.items.append(("commit", b""))


def make_capture(outbox: Outbox, streams: list, *, fail_start: bool = False) -> AudioCaptureAdapter:
    def factory(*, callback, samplerate, blocksize, device):  # pylint: disable=unused-argument
        stream = FakeStream(callback, fail_start=fail_start)
        streams.append(stream)
        return stream

    return AudioCaptureAdapter(
        send_chunk=outbox.send_chunk,
        commit=outbox.commit,
        device_sample_rate_hz=24_000,
        stream_factory=factory,
    )


def test_capture_sends_fixed_chunks_then_tail_then_commit():
    outbox = Outbox()
    streams: list = []
    capture = make_capture(outbox, streams)
    total = CAPTURE_CHUNK_SAMPLES * 2 + 1000

    async def scenario():
        await capture.start_capture()
        assert capture.capturing
        signal = np.linspace(-0.5, 0.5, total, dtype=np.float32)
        for offset in range(0, total, 1024):
            capture.feed_block(signal[offset : offset + 1024])
        await capture.stop_capture()

        # Anything arriving after stop is discarded
        capture.feed_block(np.zeros(CAPTURE_CHUNK_SAMPLES, dtype=np.float32))
        await asyncio.sleep(0)

    asyncio.run(scenario())

    kinds = [kind for kind, _ in outbox.items]
    assert kinds == ["chunk", "chunk", "chunk", "commit"]
    sizes = [len(pcm) for kind, pcm in outbox.items if kind == "chunk"]
    assert sizes == [CAPTURE_CHUNK_BYTES, CAPTURE_CHUNK_BYTES, 2000]
    assert capture.chunks_sent == 3
    assert not capture.capturing
    assert streams[0].closed


def test_stream_callback_hands_audio_to_the_loop():
    outbox = Outbox()
    streams: list = []
    capture = make_capture(outbox, streams)

    async def scenario():
        await capture.start_capture()
        block = np.full((CAPTURE_CHUNK_SAMPLES, 1), 0.25, dtype=np.float32)
        streams[0].callback(block, CAPTURE_CHUNK_SAMPLES, None, None)
        await asyncio.sleep(0)
        await capture.stop_capture()

    asyncio.run(scenario())

    assert [kind for kind, _ in outbox.items] == ["chunk", "commit"]
    assert len(outbox.items[0][1]) == CAPTURE_CHUNK_BYTES


def test_commit_without_audio_still_signals_end_of_turn():
    outbox = Outbox()
    capture = make_capture(outbox, [])

    async def scenario():
        await capture.start_capture()
        await capture.stop_capture()
        await capture.stop_capture()

    asyncio.run(scenario())

    assert outbox.items == [("commit", b"")]


def test_permission_denied_leaves_capture_stopped():
    outbox = Outbox()
    streams: list = []
    capture = make_capture(outbox, streams, fail_start=True)

    async def scenario():
        with pytest.raises(PermissionDenied):
            await capture.start_capture()

    asyncio.run(scenario())

    assert not capture.capturing
    assert streams[0].closed
    assert outbox.items == []


def test_audio_handed_off_right_before_stop_is_still_sent():
    outbox = Outbox()
    streams: list = []
    capture = make_capture(outbox, streams)

    async def scenario():
        await capture.start_capture()
        block = np.full((1000, 1), 0.25, dtype=np.float32)
        streams[0].callback(block, 1000, None, None)
        await capture.stop_capture()

    asyncio.run(scenario())

    assert [kind for kind, _ in outbox.items] == ["chunk", "commit"]
    assert len(outbox.items[0][1]) == 2000
    assert capture.chunks_sent == 1


class DeviceError(Exception):
    pass


class BrokenDevice:
    def __init__(self) -> None:
        self.closed = False

    def start(self) -> None:
        raise DeviceError("Error starting stream: Device unavailable")

    def stop(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True


def test_device_error_on_start_is_reported_as_permission_denied():
    outbox = Outbox()
    broken = BrokenDevice()

    def factory(*, callback, samplerate, blocksize, device=None):  # pylint: disable=unused-argument
        return _SoundDeviceInput(broken, DeviceError)

    capture = AudioCaptureAdapter(
        send_chunk=outbox.send_chunk,
        commit=outbox.commit,
        stream_factory=factory,
    )

    async def scenario():
        with pytest.raises(PermissionDenied, match="Device unavailable"):
            await capture.start_capture()
        # a failed start leaves nothing to stop
        await capture.stop_capture()

    asyncio.run(scenario())

    assert not capture.capturing
    assert broken.closed
    assert outbox.items == []
