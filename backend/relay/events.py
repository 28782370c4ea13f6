"""
Unified event definitions for the session reducer.

Rules:
- Events describe facts that have occurred.
- Events carry data only (no behavior).
- All reducer decisions are based on these events.
- No clocks, no timers, no async, no side effects.

Sources:
- Client events come from the transport gateway via the coordinator.
- Upstream events come from the provider adapter's receive loop.
- Internal events are posted by the runtime itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from audio.frames import AudioChunk
from billing.cost import TokenUsage
from context.transcript import Role


# =============================================================================
# Event Type Enumeration
# =============================================================================

class EventType(str, Enum):
    """
    Canonical event types understood by the reducer.

    Every (state, event_type) pair must be explicitly handled
    or explicitly ignored by the reducer.
    """

    # ------------------------------------------------------------------
    # Client
    # ------------------------------------------------------------------
    START_SESSION = "START_SESSION"
    AUDIO_CHUNK = "AUDIO_CHUNK"
    COMMIT_AUDIO = "COMMIT_AUDIO"
    END_SESSION = "END_SESSION"
    SESSION_INFO_REQUESTED = "SESSION_INFO_REQUESTED"
    TRANSPORT_DISCONNECTED = "TRANSPORT_DISCONNECTED"

    # ------------------------------------------------------------------
    # Upstream provider
    # ------------------------------------------------------------------
    UPSTREAM_CONNECTED = "UPSTREAM_CONNECTED"
    UPSTREAM_CONNECT_FAILED = "UPSTREAM_CONNECT_FAILED"
    UPSTREAM_TRANSCRIPT = "UPSTREAM_TRANSCRIPT"
    UPSTREAM_TEXT_DELTA = "UPSTREAM_TEXT_DELTA"
    UPSTREAM_AUDIO_DELTA = "UPSTREAM_AUDIO_DELTA"
    UPSTREAM_RESPONSE_DONE = "UPSTREAM_RESPONSE_DONE"
    UPSTREAM_SPEECH_STARTED = "UPSTREAM_SPEECH_STARTED"
    UPSTREAM_SPEECH_STOPPED = "UPSTREAM_SPEECH_STOPPED"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    UPSTREAM_CLOSED = "UPSTREAM_CLOSED"

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------
    TEARDOWN_COMPLETE = "TEARDOWN_COMPLETE"


# =============================================================================
# Base Event
# =============================================================================

@dataclass(frozen=True)
class Event:
    """
    Base event type.

    All events must specify:
    - event_type: discriminant
    - ts_ms: timestamp provided by the source (or fake in tests)
    """

    event_type: EventType
    ts_ms: int


# =============================================================================
# Client Events
# =============================================================================

@dataclass(frozen=True)
class StartSession(Event):
    """Client asked to open a session under a client-chosen id."""
    session_id: str
    user_id: str


@dataclass(frozen=True)
class AudioChunkReceived(Event):
    """One captured audio chunk arrived from the client."""
    chunk: AudioChunk


@dataclass(frozen=True)
class CommitAudio(Event):
    """Client finished an utterance."""


@dataclass(frozen=True)
class EndSession(Event):
    """Client requested graceful session termination."""


@dataclass(frozen=True)
class SessionInfoRequested(Event):
    """Client asked for a session snapshot."""


@dataclass(frozen=True)
class TransportDisconnected(Event):
    """The client connection owning this session went away."""
    reason: str | None = None


# =============================================================================
# Upstream Events
# =============================================================================

@dataclass(frozen=True)
class UpstreamConnected(Event):
    """Provider connection is open and configured."""


@dataclass(frozen=True)
class UpstreamConnectFailed(Event):
    """Provider connection could not be opened."""
    reason: str


@dataclass(frozen=True)
class UpstreamTranscript(Event):
    """Provider finished transcribing a user utterance."""
    role: Role
    text: str


@dataclass(frozen=True)
class UpstreamTextDelta(Event):
    """Incremental assistant text."""
    delta: str


@dataclass(frozen=True)
class UpstreamAudioDelta(Event):
    """
    Incremental assistant audio.

    audio_b64 is relayed to the client as received (base64 PCM16).
    """
    audio_b64: str


@dataclass(frozen=True)
class UpstreamResponseDone(Event):
    """
    Provider finished one response.

    content is the provider's own text for the response (may be empty);
    the reducer prefers the text accumulated from deltas.
    """
    usage: TokenUsage
    content: str = ""


@dataclass(frozen=True)
class UpstreamSpeechStarted(Event):
    """Provider VAD detected the user starting to speak."""


@dataclass(frozen=True)
class UpstreamSpeechStopped(Event):
    """Provider VAD detected the user stopping."""


@dataclass(frozen=True)
class UpstreamError(Event):
    """Provider reported an error. Terminal for the session."""
    message: str
    code: str | None = None


@dataclass(frozen=True)
class UpstreamClosed(Event):
    """Provider connection ended without being asked to."""
    reason: str | None = None


# =============================================================================
# Internal Events
# =============================================================================

@dataclass(frozen=True)
class TeardownComplete(Event):
    """Runtime finished executing the teardown commands."""
