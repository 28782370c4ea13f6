# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import base64
import json

from relay.coordinator import SessionCoordinator
from session.connection_status import ConnectionStatus
from session.gateway import ConnectionGateway


async def settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def frame(event: str, **data) -> str:
    return json.dumps({"event": event, "data": data})


def audio_frame(session_id: str, pcm: bytes) -> str:
    return frame("realtime:audio-chunk", sessionId=session_id, audioChunk=base64.b64encode(pcm).decode())


class Wire:
    def __init__(self) -> None:
        self.frames: list[dict] = []

    async def send_text(self, text: str) -> None:
        self.frames.append(json.loads(text))

    @property
    def events(self) -> list[str]:
        return [f["event"] for f in self.frames]


async def open_gateway(coord: SessionCoordinator) -> tuple[ConnectionGateway, Wire]:
    wire = Wire()
    gw = ConnectionGateway(coordinator=coord, send_text=wire.send_text)
    await gw.flush(await gw.on_ws_connect())
    return gw, wire


def test_gateway_routes_session_traffic(upstreams, clock):
    async def scenario():
        coord = SessionCoordinator(upstream_factory=upstreams, clock=clock)
        gw, wire = await open_gateway(coord)

        await gw.flush(await gw.on_json_message(frame("realtime:start-session", sessionId="s1", userId="u1")))
        await settle()
        await gw.flush(await gw.on_json_message(audio_frame("s1", b"\x01\x00\x02\x00")))
        await gw.flush(await gw.on_json_message(frame("realtime:commit-audio", sessionId="s1")))
        await gw.flush(await gw.on_json_message(frame("realtime:end-session", sessionId="s1")))
        return gw, wire

    gw, wire = asyncio.run(scenario())

    assert gw.connection_status is ConnectionStatus.UP
    assert wire.events == ["realtime:connected", "realtime:session-closed"]
    assert upstreams.created["s1"].sent == [b"\x01\x00\x02\x00"]
    assert upstreams.created["s1"].commits == 1


def test_protocol_errors_are_answered_not_fatal(upstreams, clock, logs):
    async def scenario():
        coord = SessionCoordinator(upstream_factory=upstreams, clock=clock)
        gw, wire = await open_gateway(coord)
        await gw.flush(await gw.on_json_message("{broken"))
        await gw.flush(await gw.on_json_message(frame("realtime:teleport", sessionId="s1")))
        return wire

    wire = asyncio.run(scenario())

    assert wire.events == ["realtime:error", "realtime:error"]
    assert all(f["data"]["message"] == "Invalid message" for f in wire.frames)
    assert [e["error_class"] for e in logs if e["event_type"] == "PROTOCOL_ERROR"] == [
        "MalformedMessage",
        "UnknownEvent",
    ]


def test_connection_cannot_drive_another_connections_session(upstreams, clock, logs):
    async def scenario():
        coord = SessionCoordinator(upstream_factory=upstreams, clock=clock)
        owner, _ = await open_gateway(coord)
        other, other_wire = await open_gateway(coord)

        await owner.on_json_message(frame("realtime:start-session", sessionId="s1"))
        await settle()
        await other.on_json_message(audio_frame("s1", b"\x00\x00"))
        await other.on_json_message(frame("realtime:end-session", sessionId="s1"))
        return coord, other_wire

    coord, other_wire = asyncio.run(scenario())

    assert coord.active_session_count() == 1
    assert upstreams.created["s1"].sent == []
    assert other_wire.frames == []
    dropped = [e for e in logs if e.get("reason") == "session_not_owned_by_connection"]
    assert len(dropped) == 2
    assert all(e["level"] == "warning" for e in dropped)


def test_disconnect_tears_down_owned_sessions(upstreams, clock):
    async def scenario():
        coord = SessionCoordinator(upstream_factory=upstreams, clock=clock)
        gw, wire = await open_gateway(coord)
        for sid in ("s1", "s2"):
            await gw.on_json_message(frame("realtime:start-session", sessionId=sid))
        await settle()
        await gw.on_ws_disconnect(reason="client_disconnect")
        return coord, gw, wire

    coord, gw, wire = asyncio.run(scenario())

    assert coord.active_session_count() == 0
    assert gw.connection_status is ConnectionStatus.DOWN
    assert gw.owned_sessions == frozenset()
    # Summaries produced after the socket went away are not written to it
    assert "realtime:session-closed" not in wire.events
    assert all(u.close_calls >= 1 for u in upstreams.created.values())


def test_binary_frame_is_rejected_without_teardown(upstreams, clock, logs):
    async def scenario():
        coord = SessionCoordinator(upstream_factory=upstreams, clock=clock)
        gw, wire = await open_gateway(coord)
        await gw.flush(await gw.on_json_message(frame("realtime:start-session", sessionId="s1", userId="u1")))
        await settle()
        await gw.flush(await gw.on_binary_message(b"\x00\x01"))
        return coord, wire

    coord, wire = asyncio.run(scenario())

    assert wire.events == ["realtime:connected", "realtime:error"]
    assert wire.frames[-1]["data"]["message"] == "Invalid message"
    assert coord.active_session_count() == 1
    assert any(e.get("error_class") == "UnexpectedBinaryFrame" for e in logs)
