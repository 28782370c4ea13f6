"""
Authoritative per-session state container.

Rules:
- This dataclass is a pure data model.
- It contains ALL state the reducer may ever need.
- No behavior beyond trivial derived properties.
"""
from __future__ import annotations

from dataclasses import dataclass

from billing.cost import TokenUsage
from constants import DEFAULT_USER_ID
from context.transcript import TranscriptMessage
from relay.enums.state import SessionState, SessionStatus


@dataclass(frozen=True)
class SessionRecord:
    """Immutable snapshot of one relay session."""

    session_id: str = ""
    user_id: str = DEFAULT_USER_ID

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    state: SessionState = SessionState.IDLE
    created_at_ms: int = 0
    ended_at_ms: int | None = None

    # ------------------------------------------------------------------
    # Conversation
    # ------------------------------------------------------------------
    messages: tuple[TranscriptMessage, ...] = ()

    # Assistant text streamed so far for the response in progress
    current_response: str = ""

    # ------------------------------------------------------------------
    # Accounting
    # ------------------------------------------------------------------
    usage: TokenUsage = TokenUsage()
    chunks_forwarded: int = 0

    # ------------------------------------------------------------------
    # Error handling
    # ------------------------------------------------------------------
    last_error: str | None = None

    @property
    def message_count(self) -> int:
        return len(self.messages)

    @property
    def status(self) -> SessionStatus:
        if self.last_error is not None:
            return SessionStatus.ERROR
        if self.state in (SessionState.CLOSING, SessionState.CLOSED):
            return SessionStatus.COMPLETED
        return SessionStatus.ACTIVE

    def duration_s(self, now_ms: int | None = None) -> int:
        """Whole seconds between creation and end (or now_ms)."""
        end = self.ended_at_ms if self.ended_at_ms is not None else now_ms
        if end is None or end <= self.created_at_ms:
            return 0
        return (end - self.created_at_ms) // 1000
