"""Model registry — context sizes and per-million-token pricing."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelInfo:
    """Static description of one agent model."""

    id: str
    name: str
    context: int
    input_price: float
    output_price: float


#: Models the agent CLI is known to accept (prices in USD per million tokens).
MODELS: tuple[ModelInfo, ...] = (
    ModelInfo("gpt-5.3-codex", "GPT-5.3 Codex", 128_000, 10.0, 30.0),
    ModelInfo("gpt-5.2-codex", "GPT-5.2 Codex", 128_000, 10.0, 30.0),
    ModelInfo("o3", "o3", 200_000, 15.0, 60.0),
)

DEFAULT_MODEL = "gpt-5.3-codex"


class ModelRegistry:
    """Lookup table from model id to :class:`ModelInfo`.

    Unknown ids resolve to the default model, so pricing never fails.
    """

    def __init__(
        self,
        models: Iterable[ModelInfo] = MODELS,
        default_model: str = DEFAULT_MODEL,
    ) -> None:
        self._models = {m.id: m for m in models}
        if default_model not in self._models:
            msg = f"Default model '{default_model}' is not in the registry"
            raise ValueError(msg)
        self._default = default_model

    @property
    def default_model(self) -> str:
        return self._default

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._models

    def __iter__(self) -> Iterator[ModelInfo]:
        return iter(self._models.values())

    def resolve_id(self, model_id: str | None) -> str:
        """Return *model_id* if known, else the default model id."""
        if model_id and model_id in self._models:
            return model_id
        return self._default

    def get(self, model_id: str | None) -> ModelInfo:
        """Return the model for *model_id*, falling back to the default."""
        info = self._models.get(model_id or "")
        if info is None:
            logger.debug("Unknown model %r, using %s pricing", model_id, self._default)
            return self._models[self._default]
        return info
