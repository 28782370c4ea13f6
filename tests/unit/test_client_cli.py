# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio

import numpy as np

from client.capture import AudioCaptureAdapter
from client.cli import finish_turn, format_summary, parse_device
from client.transport import TransportError


class IdleStream:
    def __init__(self, callback) -> None:
        self.callback = callback

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass

    def close(self) -> None:
        pass


def test_parse_device_accepts_index_or_name():
    assert parse_device("1") == 1
    assert parse_device(" 12 ") == 12
    assert parse_device("MacBook Pro Microphone") == "MacBook Pro Microphone"
    assert parse_device("hw:1,0") == "hw:1,0"


def test_finish_turn_reports_a_dropped_session(capsys):
    streams: list = []

    async def send_chunk(_pcm: bytes) -> None:
        raise TransportError("no active session")

    async def commit() -> None:
        raise AssertionError("commit after a failed send")

    def factory(*, callback, samplerate, blocksize, device):  # pylint: disable=unused-argument
        stream = IdleStream(callback)
        streams.append(stream)
        return stream

    capture = AudioCaptureAdapter(
        send_chunk=send_chunk,
        commit=commit,
        device_sample_rate_hz=24_000,
        stream_factory=factory,
    )

    async def scenario():
        await capture.start_capture()
        capture.feed_block(np.zeros(500, dtype=np.float32))
        return await finish_turn(capture)

    assert asyncio.run(scenario()) is False
    assert not capture.capturing
    assert "no active session" in capsys.readouterr().err


def test_format_summary():
    text = format_summary({"sessionId": "s1", "totalDuration": 42, "messageCount": 3, "estimatedCost": 0.0123})

    assert text.startswith("session s1: 42s, 3 messages, ")
