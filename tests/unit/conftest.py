# pylint: disable=missing-module-docstring,missing-function-docstring,missing-class-docstring

import asyncio
import json
from typing import Any

import pytest

from adapters.upstream.base import EmitEvent, UpstreamProvider, UpstreamProviderError
from observability import logger
from protocol.messages import ServerMessage
from relay.events import Event


class FakeUpstream(UpstreamProvider):
    """In-memory provider connection. Tests push provider events with respond()."""

    def __init__(self, session_id: str, emit: EmitEvent, *, fail_connect: bool, block_connect: bool) -> None:
        self.session_id = session_id
        self._emit = emit
        self._fail_connect = fail_connect
        self._block_connect = block_connect
        self.release = asyncio.Event()
        self.connected = False
        self.sent: list[bytes] = []
        self.commits = 0
        self.close_calls = 0
        self.send_error: str | None = None
        self.hang_close = False
        self.force_resets = 0

    async def connect(self) -> None:
        if self._block_connect:
            await self.release.wait()
        if self._fail_connect:
            raise UpstreamProviderError("provider unreachable")
        self.connected = True

    async def send_audio(self, pcm_bytes: bytes) -> None:
        if self.send_error is not None:
            raise UpstreamProviderError(self.send_error)
        self.sent.append(pcm_bytes)

    async def commit(self) -> None:
        self.commits += 1

    async def close(self) -> None:
        self.close_calls += 1
        if self.hang_close:
            await asyncio.Event().wait()
        self.connected = False

    def force_reset(self) -> None:
        self.force_resets += 1
        self.connected = False

    async def respond(self, event: Event) -> None:
        await self._emit(event)


class FakeUpstreamFactory:
    def __init__(self) -> None:
        self.created: dict[str, FakeUpstream] = {}
        self.fail_connect: set[str] = set()
        self.block_connect: set[str] = set()

    def __call__(self, session_id: str, emit: EmitEvent) -> FakeUpstream:
        upstream = FakeUpstream(
            session_id,
            emit,
            fail_connect=session_id in self.fail_connect,
            block_connect=session_id in self.block_connect,
        )
        self.created[session_id] = upstream
        return upstream


class ClientRecorder:
    """Stands in for a client connection sink."""

    def __init__(self) -> None:
        self.messages: list[ServerMessage] = []

    async def __call__(self, message: ServerMessage) -> None:
        self.messages.append(message)

    @property
    def events(self) -> list[str]:
        return [m.event for m in self.messages]

    def of(self, event: str) -> list[dict[str, Any]]:
        return [m.data for m in self.messages if m.event == event]


class FakeClock:
    def __init__(self, now_ms: int = 1_000) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms


@pytest.fixture(autouse=True)
def _reset_logger(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(logger, "_min_level", logger.LEVELS["debug"])
    monkeypatch.setattr(logger, "_json_lines", True)


@pytest.fixture
def logs(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    captured: list[dict[str, Any]] = []
    monkeypatch.setattr(logger, "_print", lambda line: captured.append(json.loads(line)))
    return captured


@pytest.fixture
def upstreams() -> FakeUpstreamFactory:
    return FakeUpstreamFactory()


@pytest.fixture
def recorder_factory():
    return ClientRecorder


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
