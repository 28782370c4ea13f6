"""
Authoritative session state enumeration.

Rules:
- This enum defines ONLY the lifecycle states of one relay session.
- No behavior, no helper methods, no side effects.
- Transitions are defined exclusively in the reducer.
"""

from __future__ import annotations

from enum import Enum


class SessionState(str, Enum):
    """
    Lifecycle of a single relay session.

    IDLE        no upstream; a failed connect returns here
    CONNECTING  upstream connection being opened
    ACTIVE      audio and provider events flowing
    CLOSING     upstream being torn down, summary emitted
    CLOSED      terminal; every further event is ignored
    """

    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    ACTIVE = "ACTIVE"
    CLOSING = "CLOSING"
    CLOSED = "CLOSED"


class SessionStatus(str, Enum):
    """Coarse status reported in session-info snapshots."""

    ACTIVE = "active"
    COMPLETED = "completed"
    ERROR = "error"
