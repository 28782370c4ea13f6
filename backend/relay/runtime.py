"""
Runtime execution shell for a single relay session.

Responsibilities:
- Own the session record
- Call the pure reducer
- Execute commands with side effects (upstream I/O, client sends, pricing)
- Open the upstream connection in its own task so the session stays
  responsive (end-session while connecting cancels the attempt)

Non-responsibilities:
- Session lookup by id (coordinator)
- Transport parsing (gateway)
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Any, Callable, Coroutine

from adapters.upstream.base import UpstreamFactory, UpstreamProviderError
from billing.cost import CostEstimator, compare_with_pipeline, cost_breakdown, estimate_realtime_cost
from constants import SESSION_SHUTDOWN_TIMEOUT_S_DEFAULT, UPSTREAM_CONNECT_TIMEOUT_S_DEFAULT
from observability.logger import log_event
from observability.metrics import discard_timer, emit_metric, start_timer, stop_timer, timed
from protocol.messages import (
    ServerMessage,
    SessionSummary,
    session_closed_message,
    session_info_message,
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
    Event,
    EventType,
    TeardownComplete,
    TransportDisconnected,
    UpstreamConnected,
    UpstreamConnectFailed,
    UpstreamError,
)
from relay.reducer import reduce
from relay.session_record import SessionRecord


ClientSink = Callable[[ServerMessage], Coroutine[Any, Any, None]]


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class SessionRuntime:
    """
    Runtime execution boundary for a single relay session.

    Architectural role:
    Runtime is the bridge between the pure session layer
    (reducer + immutable record) and the imperative world
    (provider socket, client transport, logging, time).

    Guarantees:
    - Reducer is called exactly once per event
    - Events are processed one at a time (asyncio.Lock), in arrival order
    - All side effects occur *after* the record has been updated
    - Events produced while executing commands (send failures, teardown
      completion) are queued and processed before the lock is released
    """

    def __init__(
        self,
        *,
        session_id: str,
        upstream_factory: UpstreamFactory,
        sink: ClientSink,
        on_purge: Callable[[SessionRuntime, str], None],
        cost_estimator: CostEstimator = estimate_realtime_cost,
        clock: Callable[[], int] = _now_ms,
        connect_timeout_s: float = UPSTREAM_CONNECT_TIMEOUT_S_DEFAULT,
    ) -> None:
        self._record = SessionRecord(session_id=session_id)
        self._sink = sink
        self._on_purge = on_purge
        self._estimate_cost = cost_estimator
        self._clock = clock
        self._connect_timeout_s = connect_timeout_s

        self._upstream = upstream_factory(session_id, self.handle_event)

        self._lock = asyncio.Lock()
        self._pending: deque[Event] = deque()
        self._connect_task: asyncio.Task[None] | None = None
        self._session_timer: str | None = None
        self._purged = False

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self._record.session_id

    @property
    def record(self) -> SessionRecord:
        """
        Current immutable session record.

        Only the runtime replaces it, via the reducer.
        """
        return self._record

    @property
    def state(self) -> SessionState:
        return self._record.state

    def info(self) -> dict[str, Any]:
        """Snapshot used by realtime:session-info and the coordinator."""
        record = self._record
        return {
            "sessionId": record.session_id,
            "userId": record.user_id,
            "messageCount": record.message_count,
            "tokenUsage": record.usage.to_dict(),
            "estimatedCost": self._estimate_cost(record.usage),
            "status": record.status.value,
            "state": record.state.value,
            "duration": record.duration_s(self._clock()),
        }

    # ------------------------------------------------------------------
    # Event entry point
    # ------------------------------------------------------------------

    async def handle_event(self, event: Event) -> None:
        """
        Process a single event through the reducer and execute its commands.

        This is the only entry point for events affecting the record.
        Sources: coordinator (client messages), upstream adapter receive
        loop, the upstream connect task.
        """
        async with self._lock:
            self._pending.append(event)
            while self._pending:
                current = self._pending.popleft()
                self._record, commands = reduce(self._record, current)
                for cmd in commands:
                    await self._execute_command(cmd)

    async def shutdown(
        self,
        reason: str = "server_shutdown",
        timeout_s: float = SESSION_SHUTDOWN_TIMEOUT_S_DEFAULT,
    ) -> None:
        """
        Tear the session down as if its transport went away.

        Safe to call in any state; a session already closed is untouched.
        If the orderly teardown fails or does not finish in timeout_s, the
        upstream connection is force-reset and the session purged anyway.
        """
        try:
            await asyncio.wait_for(
                self.handle_event(
                    TransportDisconnected(
                        event_type=EventType.TRANSPORT_DISCONNECTED,
                        ts_ms=self._clock(),
                        reason=reason,
                    )
                ),
                timeout=timeout_s,
            )
        except (asyncio.TimeoutError, UpstreamProviderError, OSError) as e:
            log_event({
                "ts_ms": self._clock(),
                "event_type": "SESSION_SHUTDOWN_FORCED",
                "level": "error",
                "session_id": self.session_id,
                "exception": type(e).__name__,
                "error": str(e),
            })
            self._upstream.force_reset()
            if self._session_timer is not None:
                discard_timer(self._session_timer)
                self._session_timer = None
            if not self._purged:
                self._purged = True
                self._on_purge(self, "forced_shutdown")

        await self._cancel_connect_task()

    # ------------------------------------------------------------------
    # Command execution (side effects)
    # ------------------------------------------------------------------

    async def _execute_command(self, cmd: Command) -> None:
        """Execute a single command with side effects."""

        if isinstance(cmd, LogEvent):
            log_event({**cmd.event, "user_id": self._record.user_id})

        elif isinstance(cmd, OpenUpstream):
            self._session_timer = start_timer("session_duration")
            self._connect_task = asyncio.create_task(self._open_upstream())

        elif isinstance(cmd, SendUpstreamAudio):
            try:
                await self._upstream.send_audio(cmd.pcm_bytes)
            except UpstreamProviderError as e:
                self._queue_upstream_error("Failed to forward audio", str(e))

        elif isinstance(cmd, CommitUpstreamAudio):
            try:
                await self._upstream.commit()
            except UpstreamProviderError as e:
                self._queue_upstream_error("Failed to commit audio", str(e))

        elif isinstance(cmd, CloseUpstream):
            await self._cancel_connect_task()
            await self._upstream.close()
            log_event({
                "ts_ms": self._clock(),
                "event_type": "UPSTREAM_CLOSED",
                "session_id": self.session_id,
                "reason": cmd.reason,
            })

        elif isinstance(cmd, SendToClient):
            await self._send(cmd.message)

        elif isinstance(cmd, EmitSessionSummary):
            summary = SessionSummary(
                session_id=self.session_id,
                total_duration_s=cmd.total_duration_s,
                message_count=cmd.message_count,
                estimated_cost=self._estimate_cost(cmd.usage),
            )
            log_event({
                "ts_ms": self._clock(),
                "event_type": "SESSION_SUMMARY",
                "session_id": self.session_id,
                "user_id": self._record.user_id,
                "summary": summary.to_dict(),
                "token_usage": cmd.usage.to_dict(),
                "cost_breakdown": cost_breakdown(cmd.usage).to_dict(),
                "pipeline_comparison": compare_with_pipeline(
                    cmd.usage,
                    duration_s=cmd.total_duration_s,
                    conversation_text="".join(m.content for m in self._record.messages),
                    estimator=self._estimate_cost,
                ).to_dict(),
            })
            emit_metric(
                "session_chunks_forwarded",
                self._record.chunks_forwarded,
                unit="count",
                session_id=self.session_id,
            )
            emit_metric(
                "session_estimated_cost",
                summary.estimated_cost,
                unit="usd",
                session_id=self.session_id,
            )
            await self._send(session_closed_message(summary))

        elif isinstance(cmd, SendSessionInfo):
            await self._send(session_info_message(self.info()))

        elif isinstance(cmd, FinishTeardown):
            self._pending.append(
                TeardownComplete(
                    event_type=EventType.TEARDOWN_COMPLETE,
                    ts_ms=self._clock(),
                )
            )

        elif isinstance(cmd, PurgeSession):
            if self._session_timer is not None:
                if self._record.state is SessionState.CLOSED:
                    stop_timer(self._session_timer, session_id=self.session_id)
                else:
                    discard_timer(self._session_timer)
                self._session_timer = None
            self._purged = True
            self._on_purge(self, cmd.reason)

        else:
            raise TypeError(f"unhandled command: {cmd!r}")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _open_upstream(self) -> None:
        try:
            with timed("upstream_connect_latency", session_id=self.session_id):
                await asyncio.wait_for(
                    self._upstream.connect(),
                    timeout=self._connect_timeout_s,
                )
        except (UpstreamProviderError, asyncio.TimeoutError, OSError) as e:
            reason = str(e) or type(e).__name__
            await self.handle_event(
                UpstreamConnectFailed(
                    event_type=EventType.UPSTREAM_CONNECT_FAILED,
                    ts_ms=self._clock(),
                    reason=reason,
                )
            )
            return

        await self.handle_event(
            UpstreamConnected(
                event_type=EventType.UPSTREAM_CONNECTED,
                ts_ms=self._clock(),
            )
        )

    async def _cancel_connect_task(self) -> None:
        task = self._connect_task
        if task is None or task is asyncio.current_task():
            return
        self._connect_task = None
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _queue_upstream_error(self, message: str, detail: str) -> None:
        self._pending.append(
            UpstreamError(
                event_type=EventType.UPSTREAM_ERROR,
                ts_ms=self._clock(),
                message=message,
                code=detail,
            )
        )

    async def _send(self, message: ServerMessage) -> None:
        try:
            await self._sink(message)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            # Client send failures never abort the session; the gateway
            # reports the disconnect itself.
            log_event({
                "ts_ms": self._clock(),
                "event_type": "SEND_TO_CLIENT_FAILED",
                "level": "warning",
                "session_id": self.session_id,
                "message_event": message.event,
                "exception": type(exc).__name__,
                "error": str(exc),
            })
