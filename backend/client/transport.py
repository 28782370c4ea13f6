"""
Client-side transport for the realtime relay.

Responsibilities:
- Own one WebSocket connection to the relay (/realtime)
- Generate session ids and send the client -> server messages
- Dispatch server messages into client state:
    audio-delta     -> PlaybackEngine.enqueue_pcm16
    speech-started  -> PlaybackEngine.barge_in
    transcript      -> Transcript
    text-delta      -> current_response
    response-done   -> Transcript (assistant)
    session-closed  -> summary
    error           -> last_error

Non-responsibilities:
- No microphone handling (see client.capture)
- No device output (see client.playback.SoundDevicePlayback)
"""

from __future__ import annotations

import asyncio
import random
import string
import time
from typing import Any, Awaitable, Callable

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from audio.pcm import PCMDecodeError, decode_pcm_base64
from client.playback import PlaybackEngine
from constants import (
    DEFAULT_USER_ID,
    S2C_AUDIO_DELTA,
    S2C_CONNECTED,
    S2C_ERROR,
    S2C_RESPONSE_DONE,
    S2C_SESSION_CLOSED,
    S2C_SESSION_INFO,
    S2C_SPEECH_STARTED,
    S2C_SPEECH_STOPPED,
    S2C_TEXT_DELTA,
    S2C_TRANSCRIPT,
    SESSION_ID_PREFIX,
    SESSION_ID_RANDOM_CHARS,
)
from context.transcript import Transcript, TranscriptMessage
from observability.logger import log_event, log_warning
from protocol.messages import (
    AudioChunkMessage,
    ClientMessage,
    CommitAudioMessage,
    EndSessionMessage,
    GetSessionInfoMessage,
    ProtocolError,
    ServerMessage,
    StartSessionMessage,
    decode_server_message,
    encode_client_message,
)
from session.connection_status import ConnectionStatus


class TransportError(Exception):
    """Raised when the relay connection is unusable or a request fails."""


Connector = Callable[[str], Awaitable[ClientConnection]]
MessageListener = Callable[[ServerMessage], None]

_SESSION_ID_ALPHABET = string.ascii_lowercase + string.digits


def _now_ms() -> int:
    return int(time.time() * 1000)


def new_session_id(now_ms: int | None = None) -> str:
    """session-<epoch ms>-<9 random base36 chars>"""
    ms = _now_ms() if now_ms is None else now_ms
    suffix = "".join(random.choices(_SESSION_ID_ALPHABET, k=SESSION_ID_RANDOM_CHARS))
    return f"{SESSION_ID_PREFIX}{ms}-{suffix}"


async def _default_connect(url: str) -> ClientConnection:
    return await connect(url, open_timeout=10)


class RealtimeVoiceClient:
    """
    One relay connection carrying at most one active session.

    handle_server_message() is synchronous and side-effect only on local
    state, so it can be driven directly without a socket.
    """

    def __init__(
        self,
        *,
        url: str,
        user_id: str = DEFAULT_USER_ID,
        playback: PlaybackEngine | None = None,
        on_message: MessageListener | None = None,
        connector: Connector = _default_connect,
    ) -> None:
        self._url = url
        self._user_id = user_id or DEFAULT_USER_ID
        self._playback = playback
        self._on_message = on_message
        self._connector = connector

        self._ws: ClientConnection | None = None
        self._recv_task: asyncio.Task[None] | None = None
        self._send_lock = asyncio.Lock()

        self._connected: asyncio.Future[dict[str, Any]] | None = None
        self._closed: asyncio.Future[dict[str, Any]] | None = None

        self.connection_status = ConnectionStatus.DOWN
        self.session_id: str | None = None
        self.transcript = Transcript()
        self.current_response = ""
        self.summary: dict[str, Any] | None = None
        self.session_info: dict[str, Any] | None = None
        self.last_error: dict[str, Any] | None = None

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        if self.connection_status != ConnectionStatus.DOWN:
            return
        self.connection_status = ConnectionStatus.CONNECTING
        try:
            self._ws = await self._connector(self._url)
        except (OSError, WebSocketException, TimeoutError) as e:
            self.connection_status = ConnectionStatus.DOWN
            raise TransportError(f"cannot reach relay at {self._url}: {e}") from e

        self.connection_status = ConnectionStatus.UP
        self._recv_task = asyncio.create_task(self._recv_loop(self._ws))
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "CLIENT_CONNECTED",
            "url": self._url,
        })

    async def close(self) -> None:
        ws = self._ws
        self._ws = None
        self.connection_status = ConnectionStatus.DOWN
        if ws is not None:
            await ws.close()
        task = self._recv_task
        self._recv_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    # ------------------------------------------------------------------
    # Session API
    # ------------------------------------------------------------------

    async def start_session(self, *, timeout_s: float = 15.0) -> str:
        """
        Start a new session and wait for realtime:connected.

        Raises:
            TransportError if the relay answers with realtime:error or
            does not answer in time.
        """
        session_id = new_session_id()
        loop = asyncio.get_running_loop()
        self._connected = loop.create_future()
        self._closed = loop.create_future()
        self.session_id = session_id
        self.summary = None
        self.last_error = None
        self.current_response = ""
        self.transcript.clear()

        await self._send(StartSessionMessage(session_id=session_id, user_id=self._user_id))
        try:
            await asyncio.wait_for(self._connected, timeout=timeout_s)
        except asyncio.TimeoutError as e:
            self.session_id = None
            raise TransportError("timed out waiting for realtime:connected") from e
        return session_id

    async def send_audio_chunk(self, pcm_bytes: bytes) -> None:
        if self.session_id is None:
            raise TransportError("no active session")
        await self._send(AudioChunkMessage(session_id=self.session_id, pcm_bytes=pcm_bytes))

    async def commit_audio(self) -> None:
        if self.session_id is None:
            raise TransportError("no active session")
        await self._send(CommitAudioMessage(session_id=self.session_id))

    async def request_session_info(self) -> None:
        if self.session_id is None:
            raise TransportError("no active session")
        await self._send(GetSessionInfoMessage(session_id=self.session_id))

    async def end_session(self, *, timeout_s: float = 10.0) -> dict[str, Any] | None:
        """
        End the current session and wait for its summary.

        Returns the realtime:session-closed payload, or None when there
        is no session or the relay did not answer in time.
        """
        if self.session_id is None:
            return self.summary
        closed = self._closed
        await self._send(EndSessionMessage(session_id=self.session_id))
        if closed is None:
            return None
        try:
            return await asyncio.wait_for(asyncio.shield(closed), timeout=timeout_s)
        except asyncio.TimeoutError:
            log_warning("CLIENT_END_SESSION_TIMEOUT", session_id=self.session_id)
            return None

    # ------------------------------------------------------------------
    # Server -> client dispatch
    # ------------------------------------------------------------------

    def handle_server_message(self, msg: ServerMessage) -> None:
        data = msg.data

        if msg.event == S2C_CONNECTED:
            _resolve(self._connected, data)

        elif msg.event == S2C_AUDIO_DELTA:
            if self._playback is not None:
                try:
                    self._playback.enqueue_pcm16(decode_pcm_base64(data.get("audioChunk", "")))
                except PCMDecodeError as e:
                    log_warning("CLIENT_BAD_AUDIO_DELTA", error=str(e))

        elif msg.event == S2C_SPEECH_STARTED:
            if self._playback is not None:
                self._playback.barge_in()

        elif msg.event == S2C_TRANSCRIPT:
            try:
                self.transcript.append(TranscriptMessage.from_dict(data, created_at_ms=_now_ms()))
            except ValueError as e:
                log_warning("CLIENT_BAD_TRANSCRIPT", error=str(e))

        elif msg.event == S2C_TEXT_DELTA:
            self.current_response += str(data.get("textChunk", ""))

        elif msg.event == S2C_RESPONSE_DONE:
            content = str(data.get("content", "")) or self.current_response
            if content:
                self.transcript.add_assistant(content, _now_ms())
            self.current_response = ""

        elif msg.event == S2C_SESSION_CLOSED:
            self.summary = dict(data)
            self.session_id = None
            _resolve(self._closed, self.summary)

        elif msg.event == S2C_SESSION_INFO:
            self.session_info = dict(data)

        elif msg.event == S2C_ERROR:
            self.last_error = dict(data)
            if self._connected is not None and not self._connected.done():
                self.session_id = None
                self._connected.set_exception(
                    TransportError(str(data.get("message", "session start failed")))
                )

        elif msg.event == S2C_SPEECH_STOPPED:
            pass

        if self._on_message is not None:
            self._on_message(msg)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _send(self, msg: ClientMessage) -> None:
        ws = self._ws
        if ws is None or self.connection_status != ConnectionStatus.UP:
            raise TransportError("not connected")
        async with self._send_lock:
            try:
                await ws.send(encode_client_message(msg))
            except ConnectionClosed as e:
                self.connection_status = ConnectionStatus.DOWN
                raise TransportError(f"connection closed: {e}") from e

    async def _recv_loop(self, ws: ClientConnection) -> None:
        try:
            async for raw in ws:
                try:
                    msg = decode_server_message(raw)
                except ProtocolError as e:
                    log_warning("CLIENT_BAD_SERVER_MESSAGE", error=str(e))
                    continue
                self.handle_server_message(msg)
        except ConnectionClosed:
            pass
        finally:
            self.connection_status = ConnectionStatus.DOWN
            for fut in (self._connected, self._closed):
                if fut is not None and not fut.done():
                    fut.set_exception(TransportError("relay connection closed"))
                    # Retrieve so an unawaited future does not warn.
                    fut.exception()


def _resolve(fut: asyncio.Future[dict[str, Any]] | None, value: dict[str, Any]) -> None:
    if fut is not None and not fut.done():
        fut.set_result(dict(value))
