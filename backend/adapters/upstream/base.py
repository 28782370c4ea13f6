"""
Upstream realtime provider contract.

This module defines the *interface only*: no state machine, no
transport, no pricing.

Key invariants:
- One adapter instance == one provider connection == one session.
- The adapter emits relay events through an async emit_event callback;
  it never calls the reducer and never decides state transitions.
- Events are emitted in the order the provider produced them, from the
  adapter's own receive task (never from inside connect/send/commit/close).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Coroutine

from relay.events import Event


EmitEvent = Callable[[Event], Coroutine[Any, Any, None]]


class UpstreamProviderError(Exception):
    """Provider connection could not be opened or used."""


class UpstreamProvider(ABC):
    """
    Abstract interface for a realtime speech provider connection.

    Implementations are responsible for:
    - Opening and configuring the provider connection in connect()
    - Relaying PCM16 audio via send_audio() without modification
    - Signalling end of utterance via commit()
    - Translating provider messages into relay events

    Non-responsibilities:
    - No session lifecycle decisions
    - No client transport
    - No retries (provider failures are terminal for the session)
    """

    @abstractmethod
    async def connect(self) -> None:
        """
        Open and configure the provider connection.

        Returns once the provider can accept audio.

        Raises:
            UpstreamProviderError if the connection cannot be opened.
        """
        raise NotImplementedError

    @abstractmethod
    async def send_audio(self, pcm_bytes: bytes) -> None:
        """
        Relay one PCM16 chunk.

        Contract:
        - Chunks are forwarded in call order.
        - After close(), calls are ignored.
        """
        raise NotImplementedError

    @abstractmethod
    async def commit(self) -> None:
        """Mark the buffered audio as a complete utterance."""
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        """
        Tear down the connection.

        Contract:
        - Idempotent.
        - No events are emitted after close() returns.
        """
        raise NotImplementedError

    @abstractmethod
    def force_reset(self) -> None:
        """
        Emergency teardown without awaiting.

        Used by SessionRuntime.shutdown when close() fails or does not
        finish in time.
        """
        raise NotImplementedError


UpstreamFactory = Callable[[str, EmitEvent], UpstreamProvider]
