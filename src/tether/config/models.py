"""Pydantic v2 models for tether.yaml configuration."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator

from tether.constants import (
    PROCESS_TIMEOUT,
    RETRY_HISTORY_CHAR_BUDGET,
    STDERR_ERROR_CHARS,
    SUMMARY_TIMEOUT,
    TOOL_RESULT_MAX_LENGTH,
)
from tether.pricing import DEFAULT_MODEL, MODELS, ModelInfo, ModelRegistry


class ModelConfig(BaseModel):
    """Pricing entry for one agent model."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(description="Model identifier passed to the agent CLI")
    name: str | None = Field(default=None, description="Display name")
    context: int = Field(default=128_000, gt=0, description="Context window in tokens")
    input_price: float = Field(ge=0, description="USD per million input tokens")
    output_price: float = Field(ge=0, description="USD per million output tokens")

    def to_info(self) -> ModelInfo:
        return ModelInfo(
            id=self.id,
            name=self.name or self.id,
            context=self.context,
            input_price=self.input_price,
            output_price=self.output_price,
        )


def _default_models() -> list[ModelConfig]:
    return [
        ModelConfig(
            id=m.id,
            name=m.name,
            context=m.context,
            input_price=m.input_price,
            output_price=m.output_price,
        )
        for m in MODELS
    ]


class BridgeConfig(BaseModel):
    """Top-level tether.yaml configuration."""

    model_config = ConfigDict(extra="forbid")

    binary: str = Field(default="codex", description="Agent CLI executable")
    process_timeout: float = Field(
        default=PROCESS_TIMEOUT,
        gt=0,
        description="Seconds before a turn's process is sent SIGTERM",
    )
    summary_timeout: float = Field(
        default=SUMMARY_TIMEOUT,
        gt=0,
        description="Seconds before a summary invocation is abandoned",
    )
    tool_result_max_length: int = Field(
        default=TOOL_RESULT_MAX_LENGTH,
        gt=0,
        description="Characters of tool output rendered into the transcript",
    )
    retry_history_char_budget: int = Field(
        default=RETRY_HISTORY_CHAR_BUDGET,
        gt=0,
        description="Inline history budget for compact-history retries",
    )
    stderr_error_chars: int = Field(
        default=STDERR_ERROR_CHARS,
        ge=0,
        description="Characters of stderr included in process-exit errors",
    )
    default_model: str = Field(
        default=DEFAULT_MODEL,
        description="Model used when a conversation's model is unknown",
    )
    strip_env: list[str] = Field(
        default_factory=list,
        description="Environment variables removed before spawning the agent",
    )
    models: list[ModelConfig] = Field(
        default_factory=_default_models,
        description="Known models and their pricing",
    )

    @model_validator(mode="after")
    def _validate_default_model(self) -> BridgeConfig:
        if not self.models:
            msg = "At least one model must be defined"
            raise ValueError(msg)
        ids = [m.id for m in self.models]
        if self.default_model not in ids:
            available = ", ".join(f"'{i}'" for i in ids)
            msg = (
                f"Default model '{self.default_model}' not found — "
                f"available models: {available}"
            )
            raise ValueError(msg)
        return self

    def build_registry(self) -> ModelRegistry:
        return ModelRegistry(
            (m.to_info() for m in self.models), default_model=self.default_model
        )
