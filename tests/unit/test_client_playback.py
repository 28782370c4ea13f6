# pylint: disable=missing-module-docstring,missing-function-docstring

import numpy as np
import pytest

from client.playback import PlaybackEngine


class ManualClock:
    def __init__(self, t: float = 0.0) -> None:
        self.t = t

    def now(self) -> float:
        return self.t


def pcm(samples: int, value: int = 1000) -> bytes:
    return np.full(samples, value, dtype="<i2").tobytes()


def test_buffers_are_scheduled_back_to_back():
    clock = ManualClock(10.0)
    engine = PlaybackEngine(clock=clock, sample_rate_hz=24_000)

    first = engine.enqueue_pcm16(pcm(2400))
    clock.t = 10.05
    second = engine.enqueue_pcm16(pcm(4800))

    assert first.start_time == pytest.approx(10.0)
    assert first.duration == pytest.approx(0.1)
    assert second.start_time == pytest.approx(first.end_time)
    assert engine.next_start_time == pytest.approx(10.3)


def test_late_buffer_starts_now_not_in_the_past():
    clock = ManualClock(1.0)
    engine = PlaybackEngine(clock=clock)

    engine.enqueue_pcm16(pcm(2400))
    clock.t = 5.0
    late = engine.enqueue_pcm16(pcm(2400))

    assert late.start_time == pytest.approx(5.0)


def test_scheduled_buffers_never_overlap():
    clock = ManualClock(0.0)
    engine = PlaybackEngine(clock=clock)

    buffers = []
    for i in range(20):
        clock.t = i * 0.01
        buffers.append(engine.enqueue_pcm16(pcm(240 + 37 * i)))

    for prev, nxt in zip(buffers, buffers[1:]):
        assert nxt.start_time >= prev.end_time - 1e-9


def test_barge_in_drops_everything_and_restarts_now():
    clock = ManualClock(2.0)
    engine = PlaybackEngine(clock=clock)
    for _ in range(3):
        engine.enqueue_pcm16(pcm(24_000))

    assert engine.barge_in() == 3
    assert engine.queue == ()
    assert engine.next_start_time == 0.0
    assert not engine.is_playing()

    clock.t = 2.5
    resumed = engine.enqueue_pcm16(pcm(2400))
    assert resumed.start_time == pytest.approx(2.5)


def test_empty_buffer_is_ignored():
    engine = PlaybackEngine(clock=ManualClock())

    assert engine.enqueue_pcm16(b"") is None
    assert engine.queue == ()


def test_render_mixes_the_scheduled_window():
    clock = ManualClock(0.0)
    engine = PlaybackEngine(clock=clock, sample_rate_hz=1_000)
    engine.enqueue_pcm16(pcm(10, value=16384))

    block = engine.render(20, block_start_time=0.0)

    assert block[:10] == pytest.approx([0.5] * 10)
    assert block[10:] == pytest.approx([0.0] * 10)
    assert engine.queue == ()


def test_render_after_barge_in_is_silent():
    engine = PlaybackEngine(clock=ManualClock(0.0), sample_rate_hz=1_000)
    engine.enqueue_pcm16(pcm(100, value=16384))
    engine.barge_in()

    assert not engine.render(50, block_start_time=0.0).any()
