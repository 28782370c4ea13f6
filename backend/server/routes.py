"""
Route registration for the relay API.

Responsibilities:
- Define HTTP and WebSocket endpoints
- Wire a ConnectionGateway to each WebSocket lifecycle
- Pull dependencies from app.state
"""

from __future__ import annotations

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from observability.logger import log_event
from relay.coordinator import SessionCoordinator
from session.gateway import ConnectionGateway


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""
    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.get("/realtime/stats")
    async def stats() -> dict[str, int]: # pyright: ignore[reportUnusedFunction]
        coordinator: SessionCoordinator = app.state.coordinator
        return {"activeSessions": coordinator.active_session_count()}

    @app.websocket("/realtime")
    async def realtime_endpoint(ws: WebSocket) -> None: # pyright: ignore[reportUnusedFunction]
        await ws.accept()

        gateway = ConnectionGateway(
            coordinator=app.state.coordinator,
            send_text=ws.send_text,
        )

        try:
            await gateway.flush(await gateway.on_ws_connect())

            while True:
                msg = await ws.receive()

                if msg["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(code=msg.get("code", 1000))

                if msg.get("text") is not None:
                    result = await gateway.on_json_message(msg["text"])
                    await gateway.flush(result)

                elif msg.get("bytes") is not None:
                    result = await gateway.on_binary_message(msg["bytes"])
                    await gateway.flush(result)

        except WebSocketDisconnect:
            await gateway.on_ws_disconnect(reason="client_disconnect")

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "WS_FATAL_ERROR",
                "level": "error",
                "connection_id": gateway.connection_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            await gateway.on_ws_disconnect(reason="server_error")
