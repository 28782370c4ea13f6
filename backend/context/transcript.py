"""
Conversation transcript.

Responsibilities:
- Define the TranscriptMessage value type shared by server and client
- Store ordered user/assistant messages for the life of a session
- Provide a serializable representation for the transport and for logs

Non-responsibilities:
- No truncation: a session transcript keeps every message
- No reducer logic
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Mapping


Role = Literal["user", "assistant"]
ROLES: tuple[Role, ...] = ("user", "assistant")


@dataclass(frozen=True)
class TranscriptMessage:
    """Single transcript entry."""
    role: Role
    content: str
    created_at_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "content": self.content,
            "timestamp": self.created_at_ms,
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any], *, created_at_ms: int = 0) -> TranscriptMessage:
        """
        Build a message from a transport payload ({role, content}).

        Raises:
            ValueError if role is unknown or content is not a string.
        """
        role = data.get("role")
        content = data.get("content")
        if role not in ROLES:
            raise ValueError(f"unknown transcript role: {role!r}")
        if not isinstance(content, str):
            raise ValueError("transcript content must be a string")
        return TranscriptMessage(role=role, content=content, created_at_ms=created_at_ms)


class Transcript:
    """
    Mutable, append-only transcript owned by a client session.

    The server keeps its copy inside the immutable session record
    (a tuple of TranscriptMessage); this class is the client mirror.

    Invariants:
    - Messages are stored in arrival order
    """

    def __init__(self) -> None:
        self._messages: list[TranscriptMessage] = []

    def append(self, message: TranscriptMessage) -> None:
        self._messages.append(message)

    def add_user(self, content: str, created_at_ms: int = 0) -> None:
        self.append(TranscriptMessage("user", content, created_at_ms))

    def add_assistant(self, content: str, created_at_ms: int = 0) -> None:
        self.append(TranscriptMessage("assistant", content, created_at_ms))

    @property
    def messages(self) -> tuple[TranscriptMessage, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def serialize(self) -> list[dict[str, str]]:
        """
        Serialize messages into a role/content structure.

        Output format:
        [
          {"role": "user", "content": "..."},
          {"role": "assistant", "content": "..."},
        ]
        """
        return [{"role": m.role, "content": m.content} for m in self._messages]

    def clear(self) -> None:
        self._messages.clear()
