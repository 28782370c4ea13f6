"""
Session coordinator: the keyed table of live relay sessions.

Responsibilities:
- Create a SessionRuntime per start-session, keyed by the client's id
- Reject duplicate ids without disturbing the existing session
- Route client operations to the right runtime
- Drop traffic for unknown sessions with a warning (never fatal)
- Purge entries when a runtime reports it is finished

The table is a plain dict touched only from the event loop thread.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable

from adapters.upstream.base import UpstreamFactory
from audio.frames import AudioChunk
from billing.cost import CostEstimator, estimate_realtime_cost
from constants import UPSTREAM_CONNECT_TIMEOUT_S_DEFAULT
from observability.logger import log_event
from protocol.messages import error_message
from relay.events import (
    AudioChunkReceived,
    CommitAudio,
    EndSession,
    Event,
    EventType,
    SessionInfoRequested,
    StartSession,
    TransportDisconnected,
)
from relay.runtime import ClientSink, SessionRuntime


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class SessionCoordinator:
    """
    One coordinator per server process.

    Every public operation is safe to call for any session id: unknown
    ids are logged and ignored. Per-session ordering is guaranteed by
    the runtime; sessions never block each other.
    """

    def __init__(
        self,
        *,
        upstream_factory: UpstreamFactory,
        cost_estimator: CostEstimator = estimate_realtime_cost,
        clock: Callable[[], int] = _now_ms,
        connect_timeout_s: float = UPSTREAM_CONNECT_TIMEOUT_S_DEFAULT,
    ) -> None:
        self._upstream_factory = upstream_factory
        self._cost_estimator = cost_estimator
        self._clock = clock
        self._connect_timeout_s = connect_timeout_s
        self._sessions: dict[str, SessionRuntime] = {}

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def active_session_count(self) -> int:
        return len(self._sessions)

    def session_ids(self) -> tuple[str, ...]:
        return tuple(self._sessions)

    def get(self, session_id: str) -> SessionRuntime | None:
        return self._sessions.get(session_id)

    def session_info(self, session_id: str) -> dict[str, Any] | None:
        runtime = self._sessions.get(session_id)
        if runtime is None:
            return None
        return runtime.info()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def start_session(
        self,
        session_id: str,
        user_id: str,
        *,
        sink: ClientSink,
    ) -> bool:
        """
        Open a new session and begin connecting upstream.

        Returns False (and tells the requester) if the id is taken.
        The outcome of the upstream connect arrives later as
        realtime:connected or realtime:error on `sink`.
        """
        if session_id in self._sessions:
            log_event({
                "ts_ms": self._clock(),
                "event_type": "DUPLICATE_SESSION_REJECTED",
                "level": "warning",
                "session_id": session_id,
                "user_id": user_id,
            })
            await sink(error_message("Session already exists", session_id))
            return False

        runtime = SessionRuntime(
            session_id=session_id,
            upstream_factory=self._upstream_factory,
            sink=sink,
            on_purge=self._purge,
            cost_estimator=self._cost_estimator,
            clock=self._clock,
            connect_timeout_s=self._connect_timeout_s,
        )
        self._sessions[session_id] = runtime

        await runtime.handle_event(
            StartSession(
                event_type=EventType.START_SESSION,
                ts_ms=self._clock(),
                session_id=session_id,
                user_id=user_id,
            )
        )
        return True

    async def forward_audio_chunk(self, session_id: str, pcm_bytes: bytes) -> bool:
        """
        Relay one chunk upstream.

        Returns False when the session is unknown. Chunks for a known
        session that is not ACTIVE are dropped by the reducer with a
        warning.

        Raises:
            InvalidAudioChunk if pcm_bytes violates the chunk bounds.
        """
        ts_ms = self._clock()
        chunk = AudioChunk(session_id=session_id, pcm_bytes=pcm_bytes, ts_ms=ts_ms)
        return await self._dispatch(
            session_id,
            AudioChunkReceived(
                event_type=EventType.AUDIO_CHUNK,
                ts_ms=ts_ms,
                chunk=chunk,
            ),
        )

    async def commit_audio(self, session_id: str) -> bool:
        return await self._dispatch(
            session_id,
            CommitAudio(event_type=EventType.COMMIT_AUDIO, ts_ms=self._clock()),
        )

    async def end_session(self, session_id: str) -> bool:
        return await self._dispatch(
            session_id,
            EndSession(event_type=EventType.END_SESSION, ts_ms=self._clock()),
        )

    async def request_session_info(self, session_id: str) -> bool:
        return await self._dispatch(
            session_id,
            SessionInfoRequested(
                event_type=EventType.SESSION_INFO_REQUESTED,
                ts_ms=self._clock(),
            ),
        )

    async def transport_disconnected(self, session_id: str, reason: str | None = None) -> None:
        """Tear down a session whose client went away. Unknown ids are a no-op."""
        runtime = self._sessions.get(session_id)
        if runtime is None:
            return
        await runtime.handle_event(
            TransportDisconnected(
                event_type=EventType.TRANSPORT_DISCONNECTED,
                ts_ms=self._clock(),
                reason=reason,
            )
        )

    async def shutdown(self) -> None:
        """Tear down every live session (process exit)."""
        runtimes = list(self._sessions.values())
        if runtimes:
            await asyncio.gather(
                *(rt.shutdown() for rt in runtimes),
                return_exceptions=True,
            )
        self._sessions.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _dispatch(self, session_id: str, event: Event) -> bool:
        runtime = self._sessions.get(session_id)
        if runtime is None:
            log_event({
                "ts_ms": event.ts_ms,
                "event_type": "INVALID_SESSION_STATE",
                "level": "warning",
                "session_id": session_id,
                "dropped_event": event.event_type.value,
                "reason": "unknown_session",
            })
            return False
        await runtime.handle_event(event)
        return True

    def _purge(self, runtime: SessionRuntime, reason: str) -> None:
        # Identity check: the id may already belong to a newer session.
        if self._sessions.get(runtime.session_id) is runtime:
            del self._sessions[runtime.session_id]
        log_event({
            "ts_ms": self._clock(),
            "event_type": "SESSION_PURGED",
            "session_id": runtime.session_id,
            "reason": reason,
            "active_sessions": len(self._sessions),
        })
