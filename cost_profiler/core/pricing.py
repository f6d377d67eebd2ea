from dataclasses import dataclass
from typing import Dict, List, Optional

from cost_profiler.config.logger import get_logger

LOGGER = get_logger("cost_profiler.pricing")


@dataclass(frozen=True)
class ModelPricing:
    """Pricing for a single model in USD per 1M tokens."""

    model: str
    provider: str
    input_per_1m: float
    output_per_1m: float
    cached_input_per_1m: Optional[float] = None


MODEL_PRICING: Dict[str, ModelPricing] = {
    # OpenAI
    "gpt-4o": ModelPricing(
        model="gpt-4o",
        provider="openai",
        input_per_1m=2.50,
        output_per_1m=10.00,
    ),
    "gpt-4o-mini": ModelPricing(
        model="gpt-4o-mini",
        provider="openai",
        input_per_1m=0.15,
        output_per_1m=0.60,
    ),
    "gpt-4-turbo": ModelPricing(
        model="gpt-4-turbo",
        provider="openai",
        input_per_1m=10.00,
        output_per_1m=30.00,
    ),
    "gpt-3.5-turbo": ModelPricing(
        model="gpt-3.5-turbo",
        provider="openai",
        input_per_1m=0.50,
        output_per_1m=1.50,
    ),
    "text-embedding-3-small": ModelPricing(
        model="text-embedding-3-small",
        provider="openai",
        input_per_1m=0.02,
        output_per_1m=0.00,
    ),
    "text-embedding-3-large": ModelPricing(
        model="text-embedding-3-large",
        provider="openai",
        input_per_1m=0.13,
        output_per_1m=0.00,
    ),
    # Anthropic
    "claude-3-5-sonnet-20241022": ModelPricing(
        model="claude-3-5-sonnet-20241022",
        provider="anthropic",
        input_per_1m=3.00,
        output_per_1m=15.00,
        cached_input_per_1m=0.30,
    ),
    "claude-3-5-haiku-20241022": ModelPricing(
        model="claude-3-5-haiku-20241022",
        provider="anthropic",
        input_per_1m=1.00,
        output_per_1m=5.00,
        cached_input_per_1m=0.10,
    ),
    "claude-3-opus-20240229": ModelPricing(
        model="claude-3-opus-20240229",
        provider="anthropic",
        input_per_1m=15.00,
        output_per_1m=75.00,
        cached_input_per_1m=1.50,
    ),
    "claude-sonnet-4-20250514": ModelPricing(
        model="claude-sonnet-4-20250514",
        provider="anthropic",
        input_per_1m=3.00,
        output_per_1m=15.00,
        cached_input_per_1m=0.30,
    ),
    # Google Gemini
    "gemini-1.5-pro": ModelPricing(
        model="gemini-1.5-pro",
        provider="google-gemini",
        input_per_1m=1.25,
        output_per_1m=5.00,
        cached_input_per_1m=0.3125,
    ),
    "gemini-1.5-flash": ModelPricing(
        model="gemini-1.5-flash",
        provider="google-gemini",
        input_per_1m=0.075,
        output_per_1m=0.30,
        cached_input_per_1m=0.01875,
    ),
    "gemini-1.0-pro": ModelPricing(
        model="gemini-1.0-pro",
        provider="google-gemini",
        input_per_1m=0.50,
        output_per_1m=1.50,
    ),
}

# Conservative fallback for models missing from the table.
DEFAULT_PRICING = ModelPricing(
    model="unknown",
    provider="openai",
    input_per_1m=10.00,
    output_per_1m=30.00,
)


def lookup_pricing(model: str) -> Optional[ModelPricing]:
    return MODEL_PRICING.get(model)


def calculate_cost(
    model: str,
    input_tokens: int,
    output_tokens: int,
    cached_tokens: int = 0,
    pricing: Optional[Dict[str, ModelPricing]] = None,
) -> float:
    """Return the USD cost of one call, rounded to 6 decimal places.

    Cached tokens are billed at the cached-input rate (zero when the model has
    none) and excluded from regular input. When ``cached_tokens`` exceeds
    ``input_tokens`` the regular input contribution is clamped to zero.
    Unknown models are priced with ``DEFAULT_PRICING`` instead of failing.
    """

    table = pricing if pricing is not None else MODEL_PRICING
    config = table.get(model)
    if config is None:
        LOGGER.debug(
            "Pricing model missing; using default rates",
            extra={"model": model},
        )
        config = DEFAULT_PRICING

    regular_input_tokens = max(0, input_tokens - cached_tokens)
    input_cost = (regular_input_tokens / 1_000_000) * config.input_per_1m
    output_cost = (output_tokens / 1_000_000) * config.output_per_1m
    cached_cost = 0.0
    if config.cached_input_per_1m:
        cached_cost = (cached_tokens / 1_000_000) * config.cached_input_per_1m
    return round(input_cost + output_cost + cached_cost, 6)


def get_models_by_provider() -> Dict[str, List[str]]:
    grouped: Dict[str, List[str]] = {}
    for name, config in MODEL_PRICING.items():
        grouped.setdefault(config.provider, []).append(name)
    return grouped
