"""Per-model pricing and model-family detection."""

from __future__ import annotations

from dataclasses import dataclass

from usage_monitor.token_tracker.models import ModelFamily

DEFAULT_MODEL = "claude-3-sonnet-20240229"


@dataclass(frozen=True)
class ModelPricing:
    """USD per 1000 tokens."""

    input: float
    output: float
    cache: float


PRICING: dict[str, ModelPricing] = {
    "claude-3-sonnet-20240229": ModelPricing(input=0.003, output=0.015, cache=0.00075),
    "claude-3-5-sonnet-20241022": ModelPricing(input=0.003, output=0.015, cache=0.00075),
    "claude-3-haiku-20240307": ModelPricing(input=0.00025, output=0.00125, cache=0.00003125),
    "claude-3-opus-20240229": ModelPricing(input=0.015, output=0.075, cache=0.00375),
}


def get_model_pricing(model: str | None) -> ModelPricing:
    """Look up pricing: exact key, then the first key contained in ``model``.

    Anything else falls back to the claude-3-sonnet-20240229 row.
    """
    if model:
        if model in PRICING:
            return PRICING[model]
        for key, pricing in PRICING.items():
            if key in model:
                return pricing
    return PRICING[DEFAULT_MODEL]


def get_model_family(model: str | None) -> ModelFamily:
    name = (model or "").lower()
    if "sonnet" in name:
        return ModelFamily.SONNET
    if "opus" in name:
        return ModelFamily.OPUS
    if "haiku" in name:
        return ModelFamily.HAIKU
    return ModelFamily.UNKNOWN


def calculate_cost(
    input_tokens: int,
    output_tokens: int,
    cache_tokens: int = 0,
    model: str | None = DEFAULT_MODEL,
) -> float:
    pricing = get_model_pricing(model)
    return (
        input_tokens / 1000 * pricing.input
        + output_tokens / 1000 * pricing.output
        + cache_tokens / 1000 * pricing.cache
    )
