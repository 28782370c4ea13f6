"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No session logic
- No protocol constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import (
    REALTIME_BASE_URL_DEFAULT,
    REALTIME_INSTRUCTIONS_DEFAULT,
    REALTIME_MODEL_DEFAULT,
    REALTIME_VOICE_DEFAULT,
    TURN_DETECTION_NONE,
    TURN_DETECTION_SERVER_VAD,
    UPSTREAM_CONNECT_TIMEOUT_S_DEFAULT,
    VAD_SILENCE_DURATION_MS_DEFAULT,
    VAD_THRESHOLD_DEFAULT,
)


class ConfigError(ValueError):
    """Raised when an environment variable holds an unusable value."""


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup and passed downward to
    the app factory, the session coordinator and the upstream adapter.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str = "dev"
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Upstream realtime provider
    # ------------------------------------------------------------------

    openai_api_key: str | None = None
    realtime_model: str = REALTIME_MODEL_DEFAULT
    realtime_url: str = REALTIME_BASE_URL_DEFAULT
    realtime_voice: str = REALTIME_VOICE_DEFAULT
    realtime_instructions: str = REALTIME_INSTRUCTIONS_DEFAULT
    turn_detection: str = TURN_DETECTION_SERVER_VAD
    vad_threshold: float = VAD_THRESHOLD_DEFAULT
    vad_silence_ms: int = VAD_SILENCE_DURATION_MS_DEFAULT
    upstream_connect_timeout_s: float = UPSTREAM_CONNECT_TIMEOUT_S_DEFAULT

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool = True

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_allow_origins: tuple[str, ...] = ("*",)

    @property
    def server_vad_enabled(self) -> bool:
        """True when the provider decides turn boundaries itself."""
        return self.turn_detection == TURN_DETECTION_SERVER_VAD

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ConfigError if a numeric variable cannot be parsed or
            REALTIME_TURN_DETECTION is not a known mode.
        """
        turn_detection = os.environ.get(
            "REALTIME_TURN_DETECTION", TURN_DETECTION_SERVER_VAD
        )
        if turn_detection not in (TURN_DETECTION_SERVER_VAD, TURN_DETECTION_NONE):
            raise ConfigError(
                f"REALTIME_TURN_DETECTION must be "
                f"{TURN_DETECTION_SERVER_VAD!r} or {TURN_DETECTION_NONE!r}, "
                f"got {turn_detection!r}"
            )

        origins = os.environ.get("CORS_ALLOW_ORIGINS", "*")

        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),

            openai_api_key=os.environ.get("OPENAI_API_KEY"),
            realtime_model=os.environ.get("REALTIME_MODEL", REALTIME_MODEL_DEFAULT),
            realtime_url=os.environ.get("REALTIME_URL", REALTIME_BASE_URL_DEFAULT),
            realtime_voice=os.environ.get("REALTIME_VOICE", REALTIME_VOICE_DEFAULT),
            realtime_instructions=os.environ.get(
                "REALTIME_INSTRUCTIONS", REALTIME_INSTRUCTIONS_DEFAULT
            ),
            turn_detection=turn_detection,
            vad_threshold=_env_float("REALTIME_VAD_THRESHOLD", VAD_THRESHOLD_DEFAULT),
            vad_silence_ms=_env_int(
                "REALTIME_VAD_SILENCE_MS", VAD_SILENCE_DURATION_MS_DEFAULT
            ),
            upstream_connect_timeout_s=_env_float(
                "UPSTREAM_CONNECT_TIMEOUT_S", UPSTREAM_CONNECT_TIMEOUT_S_DEFAULT
            ),

            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",
            cors_allow_origins=tuple(
                o.strip() for o in origins.split(",") if o.strip()
            ) or ("*",),
        )
