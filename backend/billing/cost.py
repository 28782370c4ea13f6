"""
Token usage accounting and cost estimation.

Responsibilities:
- Accumulate provider-reported token usage per session
- Turn usage into an estimated USD cost through a pluggable estimator
- Small helpers for rough pre-call estimates and display

Non-responsibilities:
- No billing persistence
- No knowledge of sessions or transport
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from constants import (
    AUDIO_TOKENS_PER_SECOND,
    COST_MILLI_THRESHOLD_USD,
    LEGACY_GPT4_INPUT_PER_TOKEN,
    LEGACY_GPT4_OUTPUT_PER_TOKEN,
    LEGACY_TTS_PER_CHAR,
    LEGACY_WHISPER_PER_SECOND,
    PRICE_AUDIO_INPUT_PER_TOKEN,
    PRICE_AUDIO_OUTPUT_PER_TOKEN,
    PRICE_TEXT_INPUT_PER_TOKEN,
    PRICE_TEXT_OUTPUT_PER_TOKEN,
    TEXT_CHARS_PER_TOKEN,
)


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return max(int(value), 0)
    return 0


@dataclass(frozen=True)
class TokenUsage:
    """
    Token counts reported by the provider, accumulated per session.

    input_tokens / output_tokens are totals and include the audio
    tokens broken out in audio_input_tokens / audio_output_tokens.
    """
    input_tokens: int = 0
    output_tokens: int = 0
    audio_input_tokens: int = 0
    audio_output_tokens: int = 0

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            audio_input_tokens=self.audio_input_tokens + other.audio_input_tokens,
            audio_output_tokens=self.audio_output_tokens + other.audio_output_tokens,
        )

    @property
    def text_input_tokens(self) -> int:
        """Input tokens that were not audio."""
        return max(self.input_tokens - self.audio_input_tokens, 0)

    @property
    def text_output_tokens(self) -> int:
        """Output tokens that were not audio."""
        return max(self.output_tokens - self.audio_output_tokens, 0)

    @staticmethod
    def from_provider(usage: Mapping[str, Any] | None) -> TokenUsage:
        """
        Parse the provider's `usage` object.

        Missing or malformed fields count as zero.
        """
        if not usage:
            return TokenUsage()

        input_details = usage.get("input_token_details") or {}
        output_details = usage.get("output_token_details") or {}
        if not isinstance(input_details, Mapping):
            input_details = {}
        if not isinstance(output_details, Mapping):
            output_details = {}

        return TokenUsage(
            input_tokens=_as_int(usage.get("input_tokens")),
            output_tokens=_as_int(usage.get("output_tokens")),
            audio_input_tokens=_as_int(input_details.get("audio_tokens", input_details.get("audio"))),
            audio_output_tokens=_as_int(output_details.get("audio_tokens", output_details.get("audio"))),
        )

    def to_dict(self) -> dict[str, int]:
        """camelCase view used on the transport."""
        return {
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "audioInputTokens": self.audio_input_tokens,
            "audioOutputTokens": self.audio_output_tokens,
        }


CostEstimator = Callable[[TokenUsage], float]


@dataclass(frozen=True)
class CostBreakdown:
    """Per-category cost in USD."""
    text_input: float
    text_output: float
    audio_input: float
    audio_output: float

    @property
    def total(self) -> float:
        return self.text_input + self.text_output + self.audio_input + self.audio_output

    def to_dict(self) -> dict[str, float]:
        return {
            "textInput": self.text_input,
            "textOutput": self.text_output,
            "audioInput": self.audio_input,
            "audioOutput": self.audio_output,
            "total": self.total,
        }


def cost_breakdown(usage: TokenUsage) -> CostBreakdown:
    """Split the default realtime pricing across token categories."""
    return CostBreakdown(
        text_input=usage.text_input_tokens * PRICE_TEXT_INPUT_PER_TOKEN,
        text_output=usage.text_output_tokens * PRICE_TEXT_OUTPUT_PER_TOKEN,
        audio_input=usage.audio_input_tokens * PRICE_AUDIO_INPUT_PER_TOKEN,
        audio_output=usage.audio_output_tokens * PRICE_AUDIO_OUTPUT_PER_TOKEN,
    )


def estimate_realtime_cost(usage: TokenUsage) -> float:
    """Default CostEstimator: realtime-model list prices."""
    return cost_breakdown(usage).total


def estimate_pipeline_cost(
    *,
    audio_seconds: float,
    input_tokens: int,
    output_tokens: int,
    tts_chars: int,
) -> float:
    """
    Cost of the same conversation on a transcribe -> chat -> TTS pipeline.

    Used for comparison reports only.
    """
    return (
        max(audio_seconds, 0.0) * LEGACY_WHISPER_PER_SECOND
        + max(input_tokens, 0) * LEGACY_GPT4_INPUT_PER_TOKEN
        + max(output_tokens, 0) * LEGACY_GPT4_OUTPUT_PER_TOKEN
        + max(tts_chars, 0) * LEGACY_TTS_PER_CHAR
    )


def estimate_audio_tokens(duration_s: float) -> int:
    """Rough audio token count for a clip of the given length."""
    if duration_s <= 0:
        return 0
    return math.floor(duration_s * AUDIO_TOKENS_PER_SECOND)


def estimate_text_tokens(text: str) -> int:
    """Rough text token count (about four characters per token)."""
    return math.ceil(len(text) / TEXT_CHARS_PER_TOKEN)


@dataclass(frozen=True)
class PipelineComparison:
    pipeline: float
    realtime: float

    @property
    def savings(self) -> float:
        return self.pipeline - self.realtime

    @property
    def savings_percent(self) -> float:
        if self.pipeline <= 0:
            return 0.0
        return self.savings / self.pipeline * 100

    def to_dict(self) -> dict[str, float]:
        return {
            "pipeline": self.pipeline,
            "realtime": self.realtime,
            "savings": self.savings,
            "savingsPercent": self.savings_percent,
        }


def compare_with_pipeline(
    usage: TokenUsage,
    *,
    duration_s: float,
    conversation_text: str,
    estimator: CostEstimator = estimate_realtime_cost,
) -> PipelineComparison:
    """
    Price a finished session against the transcribe -> chat -> TTS pipeline.

    When the provider reported no audio tokens, they are estimated from
    the session duration in both directions.
    """
    if usage.audio_input_tokens == 0 and usage.audio_output_tokens == 0:
        audio_tokens = estimate_audio_tokens(duration_s)
        usage = TokenUsage(
            input_tokens=usage.input_tokens + audio_tokens,
            output_tokens=usage.output_tokens + audio_tokens,
            audio_input_tokens=audio_tokens,
            audio_output_tokens=audio_tokens,
        )
    text_tokens = estimate_text_tokens(conversation_text)
    return PipelineComparison(
        pipeline=estimate_pipeline_cost(
            audio_seconds=duration_s,
            input_tokens=text_tokens,
            output_tokens=text_tokens,
            tts_chars=len(conversation_text),
        ),
        realtime=estimator(usage),
    )


def format_cost(cost_usd: float) -> str:
    """
    Render a cost for humans.

    Sub-millidollar amounts are shown in millidollars ("$0.1234m").
    """
    if cost_usd < COST_MILLI_THRESHOLD_USD:
        return f"${cost_usd * 1000:.4f}m"
    return f"${cost_usd:.4f}"
