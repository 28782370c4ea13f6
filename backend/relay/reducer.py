"""
Pure session reducer.

(record, event) -> (new_record, commands)

Rules:
- Pure: no side effects, no IO, no clocks.
- Deterministic: output depends only on inputs.
- Total: every (state, event) pair is handled or explicitly ignored (logged).

Lifecycle:
    IDLE --StartSession--> CONNECTING --UpstreamConnected--> ACTIVE
    CONNECTING --UpstreamConnectFailed--> IDLE (purged)
    CONNECTING|ACTIVE --EndSession|TransportDisconnected|UpstreamError|UpstreamClosed--> CLOSING
    CLOSING --TeardownComplete--> CLOSED (purged)
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from protocol.messages import (
    audio_delta_message,
    connected_message,
    error_message,
    response_done_message,
    speech_started_message,
    speech_stopped_message,
    text_delta_message,
    transcript_message,
)
from relay.commands import (
    CloseUpstream,
    Command,
    CommitUpstreamAudio,
    EmitSessionSummary,
    FinishTeardown,
    LogEvent,
    OpenUpstream,
    PurgeSession,
    SendSessionInfo,
    SendToClient,
    SendUpstreamAudio,
)
from relay.enums.state import SessionState
from relay.events import (
    AudioChunkReceived,
    CommitAudio,
    EndSession,
    Event,
    SessionInfoRequested,
    StartSession,
    TeardownComplete,
    TransportDisconnected,
    UpstreamAudioDelta,
    UpstreamClosed,
    UpstreamConnected,
    UpstreamConnectFailed,
    UpstreamError,
    UpstreamResponseDone,
    UpstreamSpeechStarted,
    UpstreamSpeechStopped,
    UpstreamTextDelta,
    UpstreamTranscript,
)
from relay.session_record import SessionRecord
from context.transcript import TranscriptMessage


Result = tuple[SessionRecord, tuple[Command, ...]]


# =============================================================================
# Small helpers
# =============================================================================

def _log(
    record: SessionRecord,
    event: Event,
    decision: str,
    details: dict[str, Any] | None = None,
    *,
    level: str = "info",
) -> LogEvent:
    return LogEvent(
        event={
            "ts_ms": event.ts_ms,
            "level": level,
            "session_id": record.session_id,
            "state": record.state.value,
            "event_type": event.event_type.value,
            "decision": decision,
            "details": details or {},
        }
    )


def _ignore(record: SessionRecord, event: Event, reason: str) -> Result:
    return record, (_log(record, event, "ignore", {"reason": reason}, level="debug"),)


def _reject_invalid_state(record: SessionRecord, event: Event) -> Result:
    """Client traffic that the current state cannot accept. Dropped, never fatal."""
    return record, (
        _log(
            record,
            event,
            "invalid_session_state",
            {"reason": f"{event.event_type.value} not accepted in {record.state.value}"},
            level="warning",
        ),
    )


def _state_changed(
    prev: SessionRecord, new: SessionRecord, event: Event, source: str
) -> LogEvent:
    return _log(
        new,
        event,
        "state_changed",
        {
            "from_state": prev.state.value,
            "to_state": new.state.value,
            "source": source,
        },
    )


def _begin_teardown(
    record: SessionRecord,
    event: Event,
    source: str,
    *,
    error: str | None = None,
    error_detail: str | None = None,
) -> Result:
    """
    Move a live session to CLOSING.

    Emits, in order: optional error to the client, upstream close,
    session-closed summary, and the teardown marker. This is the only
    place a summary is produced, so it happens once per session.
    """
    new = replace(
        record,
        state=SessionState.CLOSING,
        ended_at_ms=event.ts_ms,
        current_response="",
        last_error=error if error is not None else record.last_error,
    )

    cmds: list[Command] = []
    if error is not None:
        cmds.append(SendToClient(error_message(error, error_detail)))
        cmds.append(_log(record, event, "upstream_failed", {"error": error_detail or error}, level="error"))

    cmds.extend((
        CloseUpstream(reason=source),
        EmitSessionSummary(
            total_duration_s=new.duration_s(),
            message_count=new.message_count,
            usage=new.usage,
        ),
        FinishTeardown(),
        _state_changed(record, new, event, source),
    ))
    return new, tuple(cmds)


# =============================================================================
# Reducer
# =============================================================================

def reduce(record: SessionRecord, event: Event) -> Result:
    """
    Pure reducer for the relay session state machine.

    Given the current session record and a single event, returns:
    - the next record
    - a tuple of commands describing required side effects

    Properties:
    - Deterministic: no IO, clocks, or randomness
    - Total: every (state, event) pair is handled or explicitly ignored
    - Nothing is sent to the client once the session left CONNECTING/ACTIVE,
      except the teardown sequence itself
    """
    state = record.state

    # ------------------------------------------------------------------
    # Terminal / closing gate
    # ------------------------------------------------------------------
    if state is SessionState.CLOSED:
        return _ignore(record, event, "session_closed")

    if state is SessionState.CLOSING:
        if isinstance(event, TeardownComplete):
            new = replace(record, state=SessionState.CLOSED)
            return new, (
                PurgeSession(reason="closed"),
                _state_changed(record, new, event, "teardown_complete"),
            )
        return _ignore(record, event, "session_closing")

    # ------------------------------------------------------------------
    # IDLE
    # ------------------------------------------------------------------
    if state is SessionState.IDLE:
        if isinstance(event, StartSession):
            new = replace(
                record,
                session_id=event.session_id,
                user_id=event.user_id,
                state=SessionState.CONNECTING,
                created_at_ms=event.ts_ms,
                ended_at_ms=None,
                last_error=None,
            )
            return new, (
                OpenUpstream(),
                _log(new, event, "session_started", {"user_id": event.user_id}),
                _state_changed(record, new, event, "start_session"),
            )

        if isinstance(event, (AudioChunkReceived, CommitAudio)):
            return _reject_invalid_state(record, event)

        return _ignore(record, event, "session_idle")

    # ------------------------------------------------------------------
    # Events valid in any live state (CONNECTING / ACTIVE)
    # ------------------------------------------------------------------
    if isinstance(event, StartSession):
        return record, (
            _log(record, event, "duplicate_start_ignored", level="warning"),
        )

    if isinstance(event, EndSession):
        return _begin_teardown(record, event, "end_session")

    if isinstance(event, TransportDisconnected):
        return _begin_teardown(record, event, f"transport_disconnected:{event.reason or 'unknown'}")

    if isinstance(event, UpstreamError):
        return _begin_teardown(
            record,
            event,
            "upstream_error",
            error=event.message,
            error_detail=event.code,
        )

    if isinstance(event, UpstreamClosed):
        return _begin_teardown(
            record,
            event,
            "upstream_closed",
            error="Upstream connection closed",
            error_detail=event.reason,
        )

    if isinstance(event, SessionInfoRequested):
        return record, (SendSessionInfo(),)

    # ------------------------------------------------------------------
    # CONNECTING
    # ------------------------------------------------------------------
    if state is SessionState.CONNECTING:
        if isinstance(event, UpstreamConnected):
            new = replace(record, state=SessionState.ACTIVE)
            return new, (
                SendToClient(connected_message(record.session_id)),
                _state_changed(record, new, event, "upstream_connected"),
            )

        if isinstance(event, UpstreamConnectFailed):
            new = replace(record, state=SessionState.IDLE, last_error=event.reason)
            return new, (
                SendToClient(error_message("Failed to create session", event.reason)),
                CloseUpstream(reason="connect_failed"),
                PurgeSession(reason="connect_failed"),
                _log(record, event, "upstream_connect_failed", {"reason": event.reason}, level="error"),
                _state_changed(record, new, event, "connect_failed"),
            )

        if isinstance(event, (AudioChunkReceived, CommitAudio)):
            return _reject_invalid_state(record, event)

        return _ignore(record, event, "session_connecting")

    # ------------------------------------------------------------------
    # ACTIVE
    # ------------------------------------------------------------------
    if isinstance(event, AudioChunkReceived):
        new = replace(record, chunks_forwarded=record.chunks_forwarded + 1)
        return new, (SendUpstreamAudio(pcm_bytes=event.chunk.pcm_bytes),)

    if isinstance(event, CommitAudio):
        return record, (
            CommitUpstreamAudio(),
            _log(record, event, "audio_committed", {"chunks_forwarded": record.chunks_forwarded}),
        )

    if isinstance(event, UpstreamTextDelta):
        new = replace(record, current_response=record.current_response + event.delta)
        return new, (SendToClient(text_delta_message(event.delta)),)

    if isinstance(event, UpstreamAudioDelta):
        return record, (SendToClient(audio_delta_message(event.audio_b64)),)

    if isinstance(event, UpstreamTranscript):
        message = TranscriptMessage(role=event.role, content=event.text, created_at_ms=event.ts_ms)
        new = replace(record, messages=record.messages + (message,))
        return new, (SendToClient(transcript_message(event.role, event.text)),)

    if isinstance(event, UpstreamSpeechStarted):
        return record, (SendToClient(speech_started_message()),)

    if isinstance(event, UpstreamSpeechStopped):
        return record, (SendToClient(speech_stopped_message()),)

    if isinstance(event, UpstreamResponseDone):
        content = record.current_response or event.content
        usage = record.usage + event.usage
        if not content:
            new = replace(record, usage=usage, current_response="")
            return new, (
                _log(new, event, "response_done_empty", level="debug"),
            )

        message = TranscriptMessage(role="assistant", content=content, created_at_ms=event.ts_ms)
        new = replace(
            record,
            usage=usage,
            current_response="",
            messages=record.messages + (message,),
        )
        return new, (
            SendToClient(response_done_message(content)),
            _log(new, event, "response_done", {"content_len": len(content), "message_count": new.message_count}),
        )

    return _ignore(record, event, "unhandled_in_active")
