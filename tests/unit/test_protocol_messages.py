# pylint: disable=missing-module-docstring,missing-function-docstring

import base64
import json

import pytest

from constants import MAX_AUDIO_CHUNK_BYTES, S2C_SESSION_CLOSED
from protocol.messages import (
    AudioChunkMessage,
    CommitAudioMessage,
    GetSessionInfoMessage,
    InvalidAudioPayload,
    MalformedMessage,
    MissingField,
    SessionSummary,
    StartSessionMessage,
    UnknownEvent,
    decode_client_message,
    decode_server_message,
    encode_client_message,
    error_message,
    session_closed_message,
)


def frame(event: str, **data) -> str:
    return json.dumps({"event": event, "data": data})


def test_start_session_defaults_user_to_anonymous():
    msg = decode_client_message(frame("realtime:start-session", sessionId="s1"))

    assert msg == StartSessionMessage(session_id="s1", user_id="anonymous")


def test_start_session_keeps_explicit_user():
    msg = decode_client_message(frame("realtime:start-session", sessionId="s1", userId="u1"))

    assert msg.user_id == "u1"


def test_audio_chunk_is_decoded_to_pcm_bytes():
    pcm = b"\x01\x00\xff\x7f"
    msg = decode_client_message(
        frame("realtime:audio-chunk", sessionId="s1", audioChunk=base64.b64encode(pcm).decode())
    )

    assert msg == AudioChunkMessage(session_id="s1", pcm_bytes=pcm)


@pytest.mark.parametrize(
    "payload",
    [
        "not base64!!",
        base64.b64encode(b"\x01\x02\x03").decode(),
        base64.b64encode(b"\x00" * (MAX_AUDIO_CHUNK_BYTES + 2)).decode(),
    ],
)
def test_bad_audio_payloads_are_rejected(payload):
    with pytest.raises(InvalidAudioPayload):
        decode_client_message(frame("realtime:audio-chunk", sessionId="s1", audioChunk=payload))


def test_commit_and_info_messages():
    assert decode_client_message(frame("realtime:commit-audio", sessionId="s1")) == CommitAudioMessage("s1")
    assert decode_client_message(frame("realtime:get-session-info", sessionId="s1")) == GetSessionInfoMessage("s1")


@pytest.mark.parametrize("text", ["{nope", "[1, 2]", json.dumps({"data": {}}), json.dumps({"event": "x", "data": 3})])
def test_malformed_frames(text):
    with pytest.raises(MalformedMessage):
        decode_client_message(text)


def test_missing_session_id():
    with pytest.raises(MissingField):
        decode_client_message(frame("realtime:end-session"))


def test_unknown_client_event():
    with pytest.raises(UnknownEvent):
        decode_client_message(frame("realtime:dance", sessionId="s1"))


def test_encoded_client_message_is_accepted_by_the_server_decoder():
    original = AudioChunkMessage(session_id="s1", pcm_bytes=b"\x10\x00" * 16)

    assert decode_client_message(encode_client_message(original)) == original


def test_server_message_envelope():
    summary = SessionSummary(session_id="s1", total_duration_s=12, message_count=3, estimated_cost=0.0125)
    text = session_closed_message(summary).to_json()

    assert json.loads(text) == {
        "event": S2C_SESSION_CLOSED,
        "data": {"sessionId": "s1", "totalDuration": 12, "messageCount": 3, "estimatedCost": 0.0125},
    }
    assert decode_server_message(text).data["messageCount"] == 3


def test_error_message_detail_is_optional():
    assert error_message("Invalid message").data == {"message": "Invalid message"}
    assert error_message("Invalid message", "why").data == {"message": "Invalid message", "error": "why"}


def test_unknown_server_event():
    with pytest.raises(UnknownEvent):
        decode_server_message(frame("realtime:start-session", sessionId="s1"))
