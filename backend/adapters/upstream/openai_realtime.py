"""
OpenAI Realtime API adapter (one WebSocket per relay session).

Core model:
- connect() opens wss://.../v1/realtime?model=..., sends session.update
  (text+audio modalities, pcm16 both ways, input transcription, turn
  detection) and starts the receive loop.
- send_audio() wraps each PCM16 chunk in input_audio_buffer.append.
- commit() sends input_audio_buffer.commit, plus response.create when
  provider-side turn detection is off.
- The receive loop translates provider messages into relay events and
  awaits emit_event for each one, so provider order is preserved.

Provider message mapping:
    response.audio.delta / response.output_audio.delta       -> UpstreamAudioDelta
    response.text.delta / response.output_text.delta,
    response.audio_transcript.delta /
    response.output_audio_transcript.delta                   -> UpstreamTextDelta
    response.done                                            -> UpstreamResponseDone
    input_audio_buffer.speech_started / speech_stopped       -> UpstreamSpeech*
    conversation.item.input_audio_transcription.completed    -> UpstreamTranscript(user)
    error                                                    -> UpstreamError
    socket closed while not closing                          -> UpstreamClosed

Design constraints:
- Adapter must not call reducer directly.
- Adapter must not own session state transitions.
- Adapter knows nothing about the client transport.
"""

from __future__ import annotations

import asyncio
import base64
import json
import time
import urllib.parse
from typing import Any, Mapping

from websockets.asyncio.client import ClientConnection, connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from adapters.upstream.base import EmitEvent, UpstreamProvider, UpstreamProviderError
from billing.cost import TokenUsage
from constants import (
    AUDIO_SAMPLE_RATE_HZ,
    AUDIO_SAMPLE_WIDTH_BYTES,
    REALTIME_AUDIO_FORMAT,
    REALTIME_BASE_URL_DEFAULT,
    REALTIME_INSTRUCTIONS_DEFAULT,
    REALTIME_MODALITIES,
    REALTIME_MODEL_DEFAULT,
    REALTIME_TRANSCRIPTION_MODEL,
    REALTIME_VOICE_DEFAULT,
    UPSTREAM_CONNECT_TIMEOUT_S_DEFAULT,
    UPSTREAM_MAX_MESSAGE_BYTES,
    VAD_PREFIX_PADDING_MS_DEFAULT,
    VAD_SILENCE_DURATION_MS_DEFAULT,
    VAD_THRESHOLD_DEFAULT,
)
from observability.logger import log_event
from relay.events import (
    Event,
    EventType,
    UpstreamAudioDelta,
    UpstreamClosed,
    UpstreamError,
    UpstreamResponseDone,
    UpstreamSpeechStarted,
    UpstreamSpeechStopped,
    UpstreamTextDelta,
    UpstreamTranscript,
)


# The provider rejects commits of less than 100ms of audio
MIN_COMMIT_BYTES = (AUDIO_SAMPLE_RATE_HZ // 10) * AUDIO_SAMPLE_WIDTH_BYTES

_AUDIO_DELTA_TYPES = frozenset({
    "response.audio.delta",
    "response.output_audio.delta",
})

_TEXT_DELTA_TYPES = frozenset({
    "response.text.delta",
    "response.output_text.delta",
    "response.audio_transcript.delta",
    "response.output_audio_transcript.delta",
})


def _now_ms() -> int:
    return int(time.time() * 1000)


def _response_text(response: Mapping[str, Any]) -> str:
    """Concatenate assistant text/transcript parts of a response.done payload."""
    parts: list[str] = []
    for item in response.get("output") or ():
        if not isinstance(item, Mapping):
            continue
        for content in item.get("content") or ():
            if not isinstance(content, Mapping):
                continue
            text = content.get("text") or content.get("transcript")
            if isinstance(text, str):
                parts.append(text)
    return "".join(parts)


class OpenAIRealtimeAdapter(UpstreamProvider):
    """
    Session-scoped OpenAI Realtime WebSocket connection.

    Lifecycle:
    - connect() once; a second call is a no-op while connected.
    - close() is idempotent; after it returns no event is emitted.
    - No reconnects: a dropped socket is reported as UpstreamClosed.
    """

    def __init__(
        self,
        *,
        emit_event: EmitEvent,
        session_id: str,
        api_key: str,
        model: str = REALTIME_MODEL_DEFAULT,
        base_url: str = REALTIME_BASE_URL_DEFAULT,
        voice: str = REALTIME_VOICE_DEFAULT,
        instructions: str = REALTIME_INSTRUCTIONS_DEFAULT,
        server_vad: bool = True,
        vad_threshold: float = VAD_THRESHOLD_DEFAULT,
        vad_silence_ms: int = VAD_SILENCE_DURATION_MS_DEFAULT,
        connect_timeout_s: float = UPSTREAM_CONNECT_TIMEOUT_S_DEFAULT,
    ) -> None:
        self._emit = emit_event
        self._session_id = session_id
        self._api_key = api_key

        self._model = model
        self._base_url = base_url
        self._voice = voice
        self._instructions = instructions
        self._server_vad = server_vad
        self._vad_threshold = vad_threshold
        self._vad_silence_ms = vad_silence_ms
        self._connect_timeout_s = connect_timeout_s

        self._ws: ClientConnection | None = None
        self._recv_task: asyncio.Task[None] | None = None
        self._lock = asyncio.Lock()
        self._closing: bool = False

        # Bytes appended since the provider last committed the buffer
        self._uncommitted_bytes: int = 0

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._closing

    def build_url(self) -> str:
        qs = urllib.parse.urlencode({"model": self._model})
        return f"{self._base_url}?{qs}"

    def session_update_payload(self) -> dict[str, Any]:
        """The session.update message sent right after the socket opens."""
        turn_detection: dict[str, Any] | None = None
        if self._server_vad:
            turn_detection = {
                "type": "server_vad",
                "threshold": self._vad_threshold,
                "prefix_padding_ms": VAD_PREFIX_PADDING_MS_DEFAULT,
                "silence_duration_ms": self._vad_silence_ms,
            }

        return {
            "type": "session.update",
            "session": {
                "modalities": list(REALTIME_MODALITIES),
                "instructions": self._instructions,
                "voice": self._voice,
                "input_audio_format": REALTIME_AUDIO_FORMAT,
                "output_audio_format": REALTIME_AUDIO_FORMAT,
                "input_audio_transcription": {"model": REALTIME_TRANSCRIPTION_MODEL},
                "turn_detection": turn_detection,
            },
        }

    async def connect(self) -> None:
        async with self._lock:
            if self._closing:
                raise UpstreamProviderError("adapter already closed")
            if self._ws is not None:
                return

            headers = {
                "Authorization": f"Bearer {self._api_key}",
                "OpenAI-Beta": "realtime=v1",
            }
            try:
                ws = await ws_connect(
                    self.build_url(),
                    additional_headers=headers,
                    max_size=UPSTREAM_MAX_MESSAGE_BYTES,
                    open_timeout=self._connect_timeout_s,
                )
            except (OSError, WebSocketException, asyncio.TimeoutError) as e:
                raise UpstreamProviderError(f"realtime_connect_failed: {e!r}") from e

            try:
                await ws.send(json.dumps(self.session_update_payload()))
            except (OSError, WebSocketException) as e:
                await ws.close()
                raise UpstreamProviderError(f"realtime_configure_failed: {e!r}") from e

            self._ws = ws
            self._uncommitted_bytes = 0
            self._recv_task = asyncio.create_task(self._recv_loop(ws))

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "UPSTREAM_CONNECTED",
            "session_id": self._session_id,
            "model": self._model,
            "server_vad": self._server_vad,
        })

    async def send_audio(self, pcm_bytes: bytes) -> None:
        if not pcm_bytes:
            return
        await self._send({
            "type": "input_audio_buffer.append",
            "audio": base64.b64encode(pcm_bytes).decode("ascii"),
        })
        self._uncommitted_bytes += len(pcm_bytes)

    async def commit(self) -> None:
        # With server VAD the provider may already have committed this audio;
        # committing an empty buffer is a provider error, so skip it.
        if self._uncommitted_bytes < MIN_COMMIT_BYTES:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "UPSTREAM_COMMIT_SKIPPED",
                "level": "debug",
                "session_id": self._session_id,
                "uncommitted_bytes": self._uncommitted_bytes,
            })
            return

        await self._send({"type": "input_audio_buffer.commit"})
        self._uncommitted_bytes = 0
        if not self._server_vad:
            await self._send({"type": "response.create"})

    async def close(self) -> None:
        async with self._lock:
            if self._closing and self._ws is None:
                return
            self._closing = True
            ws = self._ws
            self._ws = None
            recv_task = self._recv_task
            self._recv_task = None

        # close() may run inside the receive task itself (error -> teardown);
        # that task then exits on its own once the closing flag is seen.
        if recv_task is not None and recv_task is not asyncio.current_task():
            recv_task.cancel()
            try:
                await recv_task
            except asyncio.CancelledError:
                pass

        if ws is not None:
            try:
                await ws.close()
            except (OSError, WebSocketException):
                pass

    def force_reset(self) -> None:
        """
        Emergency hard reset without awaiting.

        Must:
        - Not await
        - Not acquire locks
        - Not emit events
        """
        self._closing = True

        ws = self._ws
        self._ws = None

        rt = self._recv_task
        self._recv_task = None
        if rt is not None and not rt.done():
            rt.cancel()

        if ws is not None:
            try:
                # Close best-effort (can't await).
                asyncio.ensure_future(ws.close())
            except RuntimeError:
                # No running loop; the socket dies with the process.
                pass

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _send(self, message: dict[str, Any]) -> None:
        ws = self._ws
        if ws is None or self._closing:
            return
        try:
            await ws.send(json.dumps(message))
        except (OSError, WebSocketException) as e:
            raise UpstreamProviderError(
                f"realtime_send_failed ({message.get('type')}): {e!r}"
            ) from e

    async def _recv_loop(self, ws: ClientConnection) -> None:
        reason: str | None = None
        try:
            async for raw in ws:
                if self._closing:
                    return
                try:
                    data = json.loads(raw)
                except ValueError:
                    log_event({
                        "ts_ms": _now_ms(),
                        "event_type": "UPSTREAM_BAD_MESSAGE",
                        "level": "warning",
                        "session_id": self._session_id,
                    })
                    continue
                if isinstance(data, dict):
                    await self.handle_message(data)
        except asyncio.CancelledError:
            return
        except ConnectionClosed as e:
            reason = f"{e.rcvd.code if e.rcvd else 'no_close_frame'}"

        if not self._closing:
            await self._emit(
                UpstreamClosed(
                    event_type=EventType.UPSTREAM_CLOSED,
                    ts_ms=_now_ms(),
                    reason=reason,
                )
            )

    async def handle_message(self, data: Mapping[str, Any]) -> None:
        """Translate one provider message into at most one relay event."""
        event = self._translate(data)
        if event is not None and not self._closing:
            await self._emit(event)

    def _translate(self, data: Mapping[str, Any]) -> Event | None:
        msg_type = data.get("type")
        ts_ms = _now_ms()

        if msg_type in _AUDIO_DELTA_TYPES:
            delta = data.get("delta")
            if not isinstance(delta, str) or not delta:
                return None
            return UpstreamAudioDelta(
                event_type=EventType.UPSTREAM_AUDIO_DELTA,
                ts_ms=ts_ms,
                audio_b64=delta,
            )

        if msg_type in _TEXT_DELTA_TYPES:
            delta = data.get("delta")
            if not isinstance(delta, str) or not delta:
                return None
            return UpstreamTextDelta(
                event_type=EventType.UPSTREAM_TEXT_DELTA,
                ts_ms=ts_ms,
                delta=delta,
            )

        if msg_type == "response.done":
            response = data.get("response")
            if not isinstance(response, Mapping):
                response = {}
            usage = response.get("usage")
            return UpstreamResponseDone(
                event_type=EventType.UPSTREAM_RESPONSE_DONE,
                ts_ms=ts_ms,
                usage=TokenUsage.from_provider(usage if isinstance(usage, Mapping) else None),
                content=_response_text(response),
            )

        if msg_type == "input_audio_buffer.speech_started":
            return UpstreamSpeechStarted(
                event_type=EventType.UPSTREAM_SPEECH_STARTED,
                ts_ms=ts_ms,
            )

        if msg_type == "input_audio_buffer.speech_stopped":
            return UpstreamSpeechStopped(
                event_type=EventType.UPSTREAM_SPEECH_STOPPED,
                ts_ms=ts_ms,
            )

        if msg_type == "input_audio_buffer.committed":
            self._uncommitted_bytes = 0
            return None

        if msg_type == "conversation.item.input_audio_transcription.completed":
            transcript = data.get("transcript")
            if not isinstance(transcript, str) or not transcript.strip():
                return None
            return UpstreamTranscript(
                event_type=EventType.UPSTREAM_TRANSCRIPT,
                ts_ms=ts_ms,
                role="user",
                text=transcript.strip(),
            )

        if msg_type == "error":
            error = data.get("error")
            if not isinstance(error, Mapping):
                error = {}
            message = error.get("message")
            code = error.get("code") or error.get("type")
            return UpstreamError(
                event_type=EventType.UPSTREAM_ERROR,
                ts_ms=ts_ms,
                message=message if isinstance(message, str) and message else "Upstream provider error",
                code=str(code) if code else None,
            )

        # session.created, session.updated, rate_limits.updated, ...
        return None
