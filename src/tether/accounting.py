"""Token and cost accounting for a completed turn."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from tether.pricing import ModelRegistry


@dataclass
class TokenUsage:
    """Token counts derived from a ``turn.completed`` usage block."""

    raw_input: int = 0
    cached_input: int = 0
    output: int = 0
    reasoning: int = 0

    @property
    def net_input(self) -> int:
        """Input tokens excluding the cached prompt prefix."""
        return max(0, self.raw_input - self.cached_input)

    @property
    def is_empty(self) -> bool:
        return self.net_input == 0 and self.output == 0

    @classmethod
    def from_usage(cls, usage: object) -> TokenUsage:
        """Read counters from a raw usage mapping, tolerating missing fields."""
        if not isinstance(usage, dict):
            return cls()
        input_details = usage.get("input_tokens_details")
        output_details = usage.get("output_tokens_details")
        cached = _first_int(
            usage.get("cached_input_tokens"),
            _get(input_details, "cached_tokens"),
            _get(input_details, "cache_read_input_tokens"),
        )
        reasoning = _first_int(
            usage.get("reasoning_output_tokens"),
            _get(output_details, "reasoning_tokens"),
        )
        return cls(
            raw_input=_first_int(usage.get("input_tokens")),
            cached_input=cached,
            output=_first_int(usage.get("output_tokens")),
            reasoning=reasoning,
        )


def _get(obj: object, key: str) -> Any:
    return obj.get(key) if isinstance(obj, dict) else None


def _first_int(*values: object) -> int:
    for value in values:
        if value is None or isinstance(value, bool):
            continue
        if isinstance(value, int | float):
            return int(value)
    return 0


def estimate_typed_tokens(text: str | None) -> int | None:
    """Estimate tokens for the literal text a user typed.

    Returns ``None`` when nothing was typed, so callers fall back to the
    net input count.
    """
    if not text:
        return None
    return max(1, math.ceil(len(text) / 4))


def display_input_tokens(usage: TokenUsage, typed_tokens: int | None) -> int:
    """Input tokens shown to the user for a turn."""
    return typed_tokens if typed_tokens is not None else usage.net_input


def calculate_cost(
    registry: ModelRegistry,
    model_id: str | None,
    input_tokens: int,
    output_tokens: int,
) -> float:
    """Monetary cost of a turn using the model's per-million pricing."""
    info = registry.get(model_id)
    input_cost = (input_tokens / 1_000_000) * info.input_price
    output_cost = (output_tokens / 1_000_000) * info.output_price
    return input_cost + output_cost
