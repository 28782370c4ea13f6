"""
Connection gateway: one instance per client WebSocket.

Responsibilities:
- Track connection_status independently of session state
- Decode inbound JSON frames into coordinator operations
- Remember which sessions this connection started, and tear them
  down when the connection goes away
- Serialize outbound frames for the connection (one writer at a time)
- Turn protocol errors into realtime:error replies

NOT responsible for:
- Any state machine logic
- Upstream I/O
- Pricing
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Coroutine
from uuid import uuid4

from audio.frames import InvalidAudioChunk
from observability.logger import log_event
from protocol.messages import (
    AudioChunkMessage,
    CommitAudioMessage,
    EndSessionMessage,
    GetSessionInfoMessage,
    ProtocolError,
    ServerMessage,
    StartSessionMessage,
    decode_client_message,
    error_message,
)
from relay.coordinator import SessionCoordinator
from session.connection_status import ConnectionStatus


SendText = Callable[[str], Coroutine[Any, Any, None]]


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def _new_connection_id() -> str:
    return f"conn_{uuid4().hex[:12]}"


# ------------------------------------------------------------------
# Gateway result
# ------------------------------------------------------------------

@dataclass(frozen=True)
class GatewayResult:
    """
    Return value for gateway boundary methods.

    outbound:
        Immediate replies produced by the gateway itself (protocol errors).
        Session traffic is pushed through the connection sink instead.
    """
    outbound: tuple[ServerMessage, ...] = ()


# ------------------------------------------------------------------
# ConnectionGateway
# ------------------------------------------------------------------

class ConnectionGateway:
    """
    One gateway == one client connection (may own several sessions).
    """

    def __init__(
        self,
        *,
        coordinator: SessionCoordinator,
        send_text: SendText,
    ) -> None:
        self._coordinator = coordinator
        self._send_text = send_text
        self._send_lock = asyncio.Lock()
        self.connection_id = _new_connection_id()
        self.connection_status = ConnectionStatus.DOWN
        self._owned: set[str] = set()

    @property
    def owned_sessions(self) -> frozenset[str]:
        return frozenset(self._owned)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def on_ws_connect(self) -> GatewayResult:
        """Called once the WebSocket has been accepted."""
        self.connection_status = ConnectionStatus.UP
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "WS_CONNECTED",
            "connection_id": self.connection_id,
        })
        return GatewayResult()

    async def on_ws_disconnect(self, reason: str | None = None) -> GatewayResult:
        """Called when the WebSocket disconnects; tears down owned sessions."""
        self.connection_status = ConnectionStatus.DOWN
        owned = sorted(self._owned)
        self._owned.clear()

        for session_id in owned:
            await self._coordinator.transport_disconnected(session_id, reason)

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "WS_DISCONNECTED",
            "connection_id": self.connection_id,
            "reason": reason,
            "sessions_torn_down": owned,
        })
        return GatewayResult()

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def on_json_message(self, payload: str) -> GatewayResult:
        """Route one inbound text frame."""
        try:
            msg = decode_client_message(payload)
        except ProtocolError as e:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "PROTOCOL_ERROR",
                "level": "warning",
                "connection_id": self.connection_id,
                "error_class": type(e).__name__,
                "error": str(e),
                "payload_preview": payload[:100],
            })
            return GatewayResult(outbound=(
                error_message("Invalid message", f"{type(e).__name__}: {e}"),
            ))

        if isinstance(msg, StartSessionMessage):
            started = await self._coordinator.start_session(
                msg.session_id,
                msg.user_id,
                sink=self.send,
            )
            if started:
                self._owned.add(msg.session_id)
            return GatewayResult()

        if not self._owns(msg.session_id, msg.event):
            return GatewayResult()

        if isinstance(msg, AudioChunkMessage):
            try:
                await self._coordinator.forward_audio_chunk(msg.session_id, msg.pcm_bytes)
            except InvalidAudioChunk as e:
                return GatewayResult(outbound=(error_message("Invalid audio chunk", str(e)),))

        elif isinstance(msg, CommitAudioMessage):
            await self._coordinator.commit_audio(msg.session_id)

        elif isinstance(msg, EndSessionMessage):
            await self._coordinator.end_session(msg.session_id)

        elif isinstance(msg, GetSessionInfoMessage):
            await self._coordinator.request_session_info(msg.session_id)

        return GatewayResult()

    async def on_binary_message(self, payload: bytes) -> GatewayResult:
        """
        Binary frames are not part of the protocol.

        Audio travels base64-encoded inside realtime:audio-chunk; the frame
        is rejected and the connection stays open.
        """
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "PROTOCOL_ERROR",
            "level": "warning",
            "connection_id": self.connection_id,
            "error_class": "UnexpectedBinaryFrame",
            "bytes": len(payload),
        })
        return GatewayResult(outbound=(
            error_message("Invalid message", f"binary frames are not supported ({len(payload)} bytes)"),
        ))

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send(self, message: ServerMessage) -> None:
        """
        Connection sink handed to every session this connection starts.

        Messages for a connection that is already DOWN are dropped.
        """
        if self.connection_status is not ConnectionStatus.UP:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "OUTBOUND_DROPPED",
                "level": "debug",
                "connection_id": self.connection_id,
                "message_event": message.event,
            })
            return
        async with self._send_lock:
            await self._send_text(message.to_json())

    async def flush(self, result: GatewayResult) -> None:
        for message in result.outbound:
            await self.send(message)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _owns(self, session_id: str, event: str) -> bool:
        if session_id in self._owned:
            return True
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "INVALID_SESSION_STATE",
            "level": "warning",
            "connection_id": self.connection_id,
            "session_id": session_id,
            "dropped_event": event,
            "reason": "session_not_owned_by_connection",
        })
        return False
