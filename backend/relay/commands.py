"""
Side-effect command definitions for the session runtime.

Rules:
- Commands are declarative requests for side effects.
- Commands are emitted by the reducer and executed by the runtime.
- No behavior, no async, no I/O, no clocks.
Invariant:
    - All concrete Command subclasses MUST be frozen dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from billing.cost import TokenUsage
from protocol.messages import ServerMessage

# =============================================================================
# Command Type Enumeration
# =============================================================================

class CommandType(str, Enum):
    """
    Canonical command types emitted by the reducer.

    Stable discriminants used for logging and runtime dispatch.
    """

    # Upstream
    OPEN_UPSTREAM = "OPEN_UPSTREAM"
    SEND_UPSTREAM_AUDIO = "SEND_UPSTREAM_AUDIO"
    COMMIT_UPSTREAM_AUDIO = "COMMIT_UPSTREAM_AUDIO"
    CLOSE_UPSTREAM = "CLOSE_UPSTREAM"

    # Client / transport
    SEND_TO_CLIENT = "SEND_TO_CLIENT"
    EMIT_SESSION_SUMMARY = "EMIT_SESSION_SUMMARY"
    SEND_SESSION_INFO = "SEND_SESSION_INFO"

    # Lifecycle
    FINISH_TEARDOWN = "FINISH_TEARDOWN"
    PURGE_SESSION = "PURGE_SESSION"

    # Observability
    LOG_EVENT = "LOG_EVENT"


# =============================================================================
# Base Command
# =============================================================================

class Command:
    """
    Base command type.

    command_type is an explicit discriminant and must never be inferred
    from Python type identity.
    """

    command_type: CommandType


# =============================================================================
# Upstream Commands
# =============================================================================

@dataclass(frozen=True)
class OpenUpstream(Command):
    """Open the provider connection for this session."""
    command_type: CommandType = CommandType.OPEN_UPSTREAM


@dataclass(frozen=True)
class SendUpstreamAudio(Command):
    """Relay one chunk of PCM16 audio to the provider, unmodified."""
    pcm_bytes: bytes
    command_type: CommandType = CommandType.SEND_UPSTREAM_AUDIO


@dataclass(frozen=True)
class CommitUpstreamAudio(Command):
    """Tell the provider the current utterance is complete."""
    command_type: CommandType = CommandType.COMMIT_UPSTREAM_AUDIO


@dataclass(frozen=True)
class CloseUpstream(Command):
    """Tear down the provider connection. Idempotent."""
    reason: str
    command_type: CommandType = CommandType.CLOSE_UPSTREAM


# =============================================================================
# Client Commands
# =============================================================================

@dataclass(frozen=True)
class SendToClient(Command):
    """Deliver one message to the client that owns the session."""
    message: ServerMessage
    command_type: CommandType = CommandType.SEND_TO_CLIENT


@dataclass(frozen=True)
class EmitSessionSummary(Command):
    """
    Send realtime:session-closed.

    The runtime prices `usage` with the injected cost estimator;
    the reducer stays free of pricing policy.
    """
    total_duration_s: int
    message_count: int
    usage: TokenUsage
    command_type: CommandType = CommandType.EMIT_SESSION_SUMMARY


@dataclass(frozen=True)
class SendSessionInfo(Command):
    """Send realtime:session-info built from the current record."""
    command_type: CommandType = CommandType.SEND_SESSION_INFO


# =============================================================================
# Lifecycle Commands
# =============================================================================

@dataclass(frozen=True)
class FinishTeardown(Command):
    """Post TeardownComplete once preceding teardown commands ran."""
    command_type: CommandType = CommandType.FINISH_TEARDOWN


@dataclass(frozen=True)
class PurgeSession(Command):
    """Remove the session from the coordinator's table."""
    reason: str
    command_type: CommandType = CommandType.PURGE_SESSION


# =============================================================================
# Observability
# =============================================================================

@dataclass(frozen=True)
class LogEvent(Command):
    """Structured log line produced by the reducer."""
    event: dict[str, Any]
    command_type: CommandType = CommandType.LOG_EVENT
