"""Model tiers, provider ownership and the per-token rate table.

Rates are USD per one million tokens and are pinned to the model identifiers
below; bump ``RATE_TABLE_VERSION`` whenever either changes.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

RATE_TABLE_VERSION = "2025-06"

_PER_MILLION = Decimal("1000000")
_COST_QUANTUM = Decimal("0.000001")


@dataclass(frozen=True, slots=True)
class ModelSpec:
    tier: str
    provider: str
    model_id: str
    input_rate: Decimal
    output_rate: Decimal
    vision: bool
    credit_cost: int


MODEL_CATALOG: dict[str, ModelSpec] = {
    "nano": ModelSpec(
        tier="nano",
        provider="openai",
        model_id="gpt-4.1-nano",
        input_rate=Decimal("0.10"),
        output_rate=Decimal("0.40"),
        vision=False,
        credit_cost=1,
    ),
    "mini": ModelSpec(
        tier="mini",
        provider="openai",
        model_id="gpt-4.1-mini",
        input_rate=Decimal("0.40"),
        output_rate=Decimal("1.60"),
        vision=True,
        credit_cost=4,
    ),
    "sonnet": ModelSpec(
        tier="sonnet",
        provider="anthropic",
        model_id="claude-sonnet-4-20250514",
        input_rate=Decimal("3.00"),
        output_rate=Decimal("15.00"),
        vision=True,
        credit_cost=8,
    ),
    "opus": ModelSpec(
        tier="opus",
        provider="anthropic",
        model_id="claude-opus-4-20250514",
        input_rate=Decimal("15.00"),
        output_rate=Decimal("75.00"),
        vision=True,
        credit_cost=12,
    ),
}

DEFAULT_MODEL_FOR_PROVIDER = {"openai": "mini", "anthropic": "sonnet"}


def get_model(tier: str) -> ModelSpec | None:
    return MODEL_CATALOG.get(tier)


def is_known_pair(provider: str | None, tier: str | None) -> bool:
    spec = MODEL_CATALOG.get(tier or "")
    return spec is not None and spec.provider == provider


def is_vision_capable(tier: str | None) -> bool:
    spec = MODEL_CATALOG.get(tier or "")
    return bool(spec and spec.vision)


def compute_cost(tier: str, input_tokens: int, output_tokens: int) -> Decimal:
    spec = MODEL_CATALOG[tier]
    cost = (spec.input_rate * input_tokens + spec.output_rate * output_tokens) / _PER_MILLION
    return cost.quantize(_COST_QUANTUM)
