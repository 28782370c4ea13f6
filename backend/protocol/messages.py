"""
JSON message codec for the realtime transport.

Every WebSocket text frame is one JSON object:

    {"event": "realtime:<name>", "data": {...}}

Client -> Server:
    realtime:start-session      {sessionId, userId?}
    realtime:audio-chunk        {sessionId, audioChunk: base64 PCM16}
    realtime:commit-audio       {sessionId}
    realtime:end-session        {sessionId}
    realtime:get-session-info   {sessionId}

Server -> Client:
    realtime:connected          {sessionId}
    realtime:transcript         {role, content}
    realtime:text-delta         {textChunk}
    realtime:audio-delta        {audioChunk}
    realtime:response-done      {content}
    realtime:speech-started     {}
    realtime:speech-stopped     {}
    realtime:session-closed     {sessionId, totalDuration, messageCount, estimatedCost}
    realtime:session-info       {sessionId, userId, messageCount, tokenUsage, estimatedCost, status}
    realtime:error              {message, error?}

Usage example:

    try:
        msg = decode_client_message(text)
    except ProtocolError as e:
        await send(error_message("Malformed message", str(e)))
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union

from audio.pcm import PCMDecodeError, decode_pcm_base64, encode_pcm_base64
from constants import (
    C2S_AUDIO_CHUNK,
    C2S_COMMIT_AUDIO,
    C2S_END_SESSION,
    C2S_GET_SESSION_INFO,
    C2S_START_SESSION,
    DEFAULT_USER_ID,
    MAX_AUDIO_CHUNK_BYTES,
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
)


# -------------------------
# Exceptions
# -------------------------

class ProtocolError(Exception):
    """Base class for transport message errors."""


class MalformedMessage(ProtocolError):
    """
    Raised when a frame is not a JSON object of the form
    {"event": str, "data": object}.
    """


class UnknownEvent(ProtocolError):
    """Raised when the event name is not part of the protocol."""


class MissingField(ProtocolError):
    """Raised when a required data field is absent or has the wrong type."""


class InvalidAudioPayload(ProtocolError):
    """Raised when audioChunk is not bounded, valid base64 PCM16."""


# -------------------------
# Client -> Server messages
# -------------------------

@dataclass(frozen=True)
class StartSessionMessage:
    session_id: str
    user_id: str = DEFAULT_USER_ID
    event: str = C2S_START_SESSION


@dataclass(frozen=True)
class AudioChunkMessage:
    """pcm_bytes is already base64-decoded and bounds-checked."""
    session_id: str
    pcm_bytes: bytes
    event: str = C2S_AUDIO_CHUNK


@dataclass(frozen=True)
class CommitAudioMessage:
    session_id: str
    event: str = C2S_COMMIT_AUDIO


@dataclass(frozen=True)
class EndSessionMessage:
    session_id: str
    event: str = C2S_END_SESSION


@dataclass(frozen=True)
class GetSessionInfoMessage:
    session_id: str
    event: str = C2S_GET_SESSION_INFO


ClientMessage = Union[
    StartSessionMessage,
    AudioChunkMessage,
    CommitAudioMessage,
    EndSessionMessage,
    GetSessionInfoMessage,
]


# -------------------------
# Server -> Client messages
# -------------------------

@dataclass(frozen=True)
class ServerMessage:
    event: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(
            {"event": self.event, "data": self.data},
            ensure_ascii=False,
            separators=(",", ":"),
        )


@dataclass(frozen=True)
class SessionSummary:
    """Payload of realtime:session-closed."""
    session_id: str
    total_duration_s: int
    message_count: int
    estimated_cost: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "totalDuration": self.total_duration_s,
            "messageCount": self.message_count,
            "estimatedCost": self.estimated_cost,
        }


SERVER_EVENTS: frozenset[str] = frozenset({
    S2C_CONNECTED,
    S2C_TRANSCRIPT,
    S2C_TEXT_DELTA,
    S2C_AUDIO_DELTA,
    S2C_RESPONSE_DONE,
    S2C_SPEECH_STARTED,
    S2C_SPEECH_STOPPED,
    S2C_SESSION_CLOSED,
    S2C_SESSION_INFO,
    S2C_ERROR,
})


# -------------------------
# Envelope helpers
# -------------------------

def _parse_envelope(text: str | bytes) -> tuple[str, dict[str, Any]]:
    try:
        obj = json.loads(text)
    except (TypeError, ValueError) as e:
        raise MalformedMessage(f"invalid JSON: {e}") from e

    if not isinstance(obj, dict):
        raise MalformedMessage("message must be a JSON object")

    event = obj.get("event")
    if not isinstance(event, str) or not event:
        raise MalformedMessage("message.event must be a non-empty string")

    data = obj.get("data", {})
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise MalformedMessage("message.data must be an object")

    return event, data


def _require_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise MissingField(f"{key} must be a non-empty string")
    return value


# -------------------------
# Client message codec
# -------------------------

def decode_client_message(text: str | bytes) -> ClientMessage:
    """
    Parse one inbound client frame.

    Raises:
        MalformedMessage, UnknownEvent, MissingField, InvalidAudioPayload
    """
    event, data = _parse_envelope(text)

    if event == C2S_START_SESSION:
        user_id = data.get("userId")
        if user_id is None or user_id == "":
            user_id = DEFAULT_USER_ID
        elif not isinstance(user_id, str):
            raise MissingField("userId must be a string")
        return StartSessionMessage(
            session_id=_require_str(data, "sessionId"),
            user_id=user_id,
        )

    if event == C2S_AUDIO_CHUNK:
        session_id = _require_str(data, "sessionId")
        payload = data.get("audioChunk")
        if not isinstance(payload, str):
            raise MissingField("audioChunk must be a base64 string")
        try:
            pcm_bytes = decode_pcm_base64(payload)
        except PCMDecodeError as e:
            raise InvalidAudioPayload(str(e)) from e
        if len(pcm_bytes) > MAX_AUDIO_CHUNK_BYTES:
            raise InvalidAudioPayload(
                f"audioChunk of {len(pcm_bytes)} bytes exceeds {MAX_AUDIO_CHUNK_BYTES}"
            )
        return AudioChunkMessage(session_id=session_id, pcm_bytes=pcm_bytes)

    if event == C2S_COMMIT_AUDIO:
        return CommitAudioMessage(session_id=_require_str(data, "sessionId"))

    if event == C2S_END_SESSION:
        return EndSessionMessage(session_id=_require_str(data, "sessionId"))

    if event == C2S_GET_SESSION_INFO:
        return GetSessionInfoMessage(session_id=_require_str(data, "sessionId"))

    raise UnknownEvent(f"unknown event: {event!r}")


def encode_client_message(msg: ClientMessage) -> str:
    """Serialize a client message for sending over the WebSocket."""
    data: dict[str, Any] = {"sessionId": msg.session_id}
    if isinstance(msg, StartSessionMessage):
        data["userId"] = msg.user_id
    elif isinstance(msg, AudioChunkMessage):
        data["audioChunk"] = encode_pcm_base64(msg.pcm_bytes)
    return json.dumps({"event": msg.event, "data": data}, separators=(",", ":"))


# -------------------------
# Server message codec
# -------------------------

def decode_server_message(text: str | bytes) -> ServerMessage:
    """
    Parse one outbound server frame (client side).

    Raises:
        MalformedMessage, UnknownEvent
    """
    event, data = _parse_envelope(text)
    if event not in SERVER_EVENTS:
        raise UnknownEvent(f"unknown server event: {event!r}")
    return ServerMessage(event=event, data=data)


def connected_message(session_id: str) -> ServerMessage:
    return ServerMessage(S2C_CONNECTED, {"sessionId": session_id})


def transcript_message(role: str, content: str) -> ServerMessage:
    return ServerMessage(S2C_TRANSCRIPT, {"role": role, "content": content})


def text_delta_message(text_chunk: str) -> ServerMessage:
    return ServerMessage(S2C_TEXT_DELTA, {"textChunk": text_chunk})


def audio_delta_message(audio_b64: str) -> ServerMessage:
    return ServerMessage(S2C_AUDIO_DELTA, {"audioChunk": audio_b64})


def response_done_message(content: str) -> ServerMessage:
    return ServerMessage(S2C_RESPONSE_DONE, {"content": content})


def speech_started_message() -> ServerMessage:
    return ServerMessage(S2C_SPEECH_STARTED, {})


def speech_stopped_message() -> ServerMessage:
    return ServerMessage(S2C_SPEECH_STOPPED, {})


def session_closed_message(summary: SessionSummary) -> ServerMessage:
    return ServerMessage(S2C_SESSION_CLOSED, summary.to_dict())


def session_info_message(info: dict[str, Any]) -> ServerMessage:
    return ServerMessage(S2C_SESSION_INFO, dict(info))


def error_message(message: str, error: str | None = None) -> ServerMessage:
    data: dict[str, Any] = {"message": message}
    if error is not None:
        data["error"] = error
    return ServerMessage(S2C_ERROR, data)
