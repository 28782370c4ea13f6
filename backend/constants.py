"""
BEHAVIOR-AS-CONSTANTS
---------------------
Single source of truth for every behavioral constant of the relay.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Deployment-specific values (keys, URLs, voice) live in config.py instead.
"""

from __future__ import annotations

from typing import Final, Tuple

# =============================================================================
# Audio Format (PCM16 mono @ 24kHz)
# =============================================================================

AUDIO_SAMPLE_RATE_HZ: Final[int] = 24_000
AUDIO_CHANNELS: Final[int] = 1
AUDIO_SAMPLE_WIDTH_BYTES: Final[int] = 2  # PCM16 (signed 16-bit, little-endian)

# Capture slices the microphone stream into fixed chunks of this many samples
CAPTURE_CHUNK_SAMPLES: Final[int] = 4096
CAPTURE_CHUNK_BYTES: Final[int] = CAPTURE_CHUNK_SAMPLES * AUDIO_SAMPLE_WIDTH_BYTES

# Microphones usually run at 44.1/48kHz; capture resamples client-side
CAPTURE_DEVICE_SAMPLE_RATE_HZ_DEFAULT: Final[int] = 48_000

# Upper bound for one inbound audio-chunk (decoded PCM bytes)
MAX_AUDIO_CHUNK_BYTES: Final[int] = 256 * 1024

# PCM16 full scale used for int16 <-> float32 conversion
PCM16_FULL_SCALE: Final[float] = 32768.0

# =============================================================================
# Transport event names (socket.io-style "realtime:" namespace)
# =============================================================================

# Client -> Server
C2S_START_SESSION: Final[str] = "realtime:start-session"
C2S_AUDIO_CHUNK: Final[str] = "realtime:audio-chunk"
C2S_COMMIT_AUDIO: Final[str] = "realtime:commit-audio"
C2S_END_SESSION: Final[str] = "realtime:end-session"
C2S_GET_SESSION_INFO: Final[str] = "realtime:get-session-info"

# Server -> Client
S2C_CONNECTED: Final[str] = "realtime:connected"
S2C_TRANSCRIPT: Final[str] = "realtime:transcript"
S2C_TEXT_DELTA: Final[str] = "realtime:text-delta"
S2C_AUDIO_DELTA: Final[str] = "realtime:audio-delta"
S2C_RESPONSE_DONE: Final[str] = "realtime:response-done"
S2C_SPEECH_STARTED: Final[str] = "realtime:speech-started"
S2C_SPEECH_STOPPED: Final[str] = "realtime:speech-stopped"
S2C_SESSION_CLOSED: Final[str] = "realtime:session-closed"
S2C_SESSION_INFO: Final[str] = "realtime:session-info"
S2C_ERROR: Final[str] = "realtime:error"

DEFAULT_USER_ID: Final[str] = "anonymous"
SESSION_ID_PREFIX: Final[str] = "session-"
SESSION_ID_RANDOM_CHARS: Final[int] = 9

# =============================================================================
# Upstream provider (OpenAI Realtime)
# =============================================================================

REALTIME_BASE_URL_DEFAULT: Final[str] = "wss://api.openai.com/v1/realtime"
REALTIME_MODEL_DEFAULT: Final[str] = "gpt-4o-mini-realtime-preview"
REALTIME_VOICE_DEFAULT: Final[str] = "alloy"
REALTIME_AUDIO_FORMAT: Final[str] = "pcm16"
REALTIME_TRANSCRIPTION_MODEL: Final[str] = "whisper-1"
REALTIME_MODALITIES: Final[Tuple[str, ...]] = ("text", "audio")

REALTIME_INSTRUCTIONS_DEFAULT: Final[str] = (
    "You are a helpful English learning assistant. Help users practice "
    "English conversation, correct their mistakes gently, and provide "
    "explanations when needed. Be encouraging and supportive."
)

TURN_DETECTION_SERVER_VAD: Final[str] = "server_vad"
TURN_DETECTION_NONE: Final[str] = "none"
VAD_THRESHOLD_DEFAULT: Final[float] = 0.5
VAD_PREFIX_PADDING_MS_DEFAULT: Final[int] = 300
VAD_SILENCE_DURATION_MS_DEFAULT: Final[int] = 500

UPSTREAM_CONNECT_TIMEOUT_S_DEFAULT: Final[float] = 10.0
SESSION_SHUTDOWN_TIMEOUT_S_DEFAULT: Final[float] = 5.0
UPSTREAM_MAX_MESSAGE_BYTES: Final[int] = 2**24

# =============================================================================
# Pricing (USD per token)
# =============================================================================

PRICE_TEXT_INPUT_PER_TOKEN: Final[float] = 0.60 / 1_000_000
PRICE_TEXT_OUTPUT_PER_TOKEN: Final[float] = 2.40 / 1_000_000
PRICE_AUDIO_INPUT_PER_TOKEN: Final[float] = 10.00 / 1_000_000
PRICE_AUDIO_OUTPUT_PER_TOKEN: Final[float] = 20.00 / 1_000_000

# Pipeline pricing used for comparison reports (speech-to-text + chat + TTS)
LEGACY_WHISPER_PER_SECOND: Final[float] = 0.006 / 60
LEGACY_GPT4_INPUT_PER_TOKEN: Final[float] = 0.03 / 1000
LEGACY_GPT4_OUTPUT_PER_TOKEN: Final[float] = 0.06 / 1000
LEGACY_TTS_PER_CHAR: Final[float] = 0.015 / 1000

AUDIO_TOKENS_PER_SECOND: Final[float] = 16.67
TEXT_CHARS_PER_TOKEN: Final[int] = 4

# Costs below this are rendered in millidollars
COST_MILLI_THRESHOLD_USD: Final[float] = 0.001

# =============================================================================
# Helper Functions
# =============================================================================

def pcm_bytes_to_seconds(num_bytes: int) -> float:
    """
    Duration of a PCM16 mono buffer at the relay rate.

    Non-positive input returns 0.0.
    """
    num_samples = num_bytes // AUDIO_SAMPLE_WIDTH_BYTES
    if num_samples <= 0:
        return 0.0
    return num_samples / AUDIO_SAMPLE_RATE_HZ

