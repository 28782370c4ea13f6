"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware and logging
- Initialize shared resources (one SessionCoordinator per process)
- Register routes
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from adapters.upstream.base import EmitEvent, UpstreamFactory, UpstreamProvider
from adapters.upstream.openai_realtime import OpenAIRealtimeAdapter
from billing.cost import CostEstimator, estimate_realtime_cost
from config import AppConfig
from observability import logger
from relay.coordinator import SessionCoordinator

from server.routes import register_routes


def create_app(
    config: AppConfig | None = None,
    *,
    upstream_factory: UpstreamFactory | None = None,
    cost_estimator: CostEstimator = estimate_realtime_cost,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    The app factory pattern allows:
    - Testing with a fake upstream provider
    - Environment-specific setup
    - ASGI server compatibility
    """
    if config is None:
        config = AppConfig.load_from_env()

    logger.configure(level=config.log_level, json_lines=config.enable_json_logs)

    if upstream_factory is None:
        upstream_factory = build_upstream_factory(config)

    coordinator = SessionCoordinator(
        upstream_factory=upstream_factory,
        cost_estimator=cost_estimator,
        connect_timeout_s=config.upstream_connect_timeout_s,
    )

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        await coordinator.shutdown()

    app = FastAPI(title="Realtime Voice Relay", lifespan=lifespan)

    app.state.config = config
    app.state.coordinator = coordinator

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_allow_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    register_routes(app)

    return app


def build_upstream_factory(config: AppConfig) -> UpstreamFactory:
    """Build the OpenAI Realtime adapter factory from configuration."""
    api_key = config.openai_api_key
    if not api_key:
        raise RuntimeError("OPENAI_API_KEY environment variable not set")

    def factory(session_id: str, emit_event: EmitEvent) -> UpstreamProvider:
        return OpenAIRealtimeAdapter(
            emit_event=emit_event,
            session_id=session_id,
            api_key=api_key,
            model=config.realtime_model,
            base_url=config.realtime_url,
            voice=config.realtime_voice,
            instructions=config.realtime_instructions,
            server_vad=config.server_vad_enabled,
            vad_threshold=config.vad_threshold,
            vad_silence_ms=config.vad_silence_ms,
            connect_timeout_s=config.upstream_connect_timeout_s,
        )

    return factory
