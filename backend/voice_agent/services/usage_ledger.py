"""Token usage accounting and cost estimation per model."""
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from voice_agent.core.logging import logger

TOKENS_PER_UNIT = 1_000_000  # rates are quoted per million tokens


class UsageCategory(str, Enum):
    """The four counters tracked by the ledger."""
    INPUT_TEXT = "input_text"
    INPUT_AUDIO = "input_audio"
    OUTPUT_TEXT = "output_text"
    OUTPUT_AUDIO = "output_audio"


@dataclass(frozen=True)
class ModelPricing:
    """Unit rates in USD per 1,000,000 tokens."""
    text_input: float
    text_input_cached: float
    audio_input: float
    audio_input_cached: float
    text_output: float
    audio_output: float

    def rate_for(self, category: UsageCategory) -> float:
        # Cached rates are displayed only; all counted tokens are billed as non-cached.
        return {
            UsageCategory.INPUT_TEXT: self.text_input,
            UsageCategory.INPUT_AUDIO: self.audio_input,
            UsageCategory.OUTPUT_TEXT: self.text_output,
            UsageCategory.OUTPUT_AUDIO: self.audio_output,
        }[category]


DEFAULT_PRICING = ModelPricing(
    text_input=5.00,
    text_input_cached=2.50,
    audio_input=40.00,
    audio_input_cached=2.50,
    text_output=20.00,
    audio_output=80.00,
)

MODEL_PRICING: Dict[str, ModelPricing] = {
    "gpt-4o-realtime-preview": DEFAULT_PRICING,
    "gpt-4o-mini-realtime-preview": ModelPricing(
        text_input=0.60,
        text_input_cached=0.30,
        audio_input=10.00,
        audio_input_cached=0.30,
        text_output=2.40,
        audio_output=20.00,
    ),
    "gpt-4o-realtime-preview-2025-06-03": DEFAULT_PRICING,
}


class PricingTable:
    """Per-model rate lookup with a default fallback."""

    def __init__(
        self,
        rates: Optional[Dict[str, ModelPricing]] = None,
        default: ModelPricing = DEFAULT_PRICING
    ):
        self._rates = dict(MODEL_PRICING if rates is None else rates)
        self.default = default

    def for_model(self, model_id: Optional[str]) -> ModelPricing:
        """Rates for a model, falling back to the default set for unknown ids."""
        if model_id is None:
            return self.default
        return self._rates.get(model_id, self.default)


@dataclass
class CostBreakdown:
    """Derived cost per category and total, in USD."""
    per_category: Dict[UsageCategory, float] = field(default_factory=dict)
    total: float = 0.0


def estimate_tokens(text: Optional[str]) -> int:
    """
    Rough token estimate: one token per four characters.

    This is the documented approximation, applied to both text and
    audio transcripts.

    Args:
        text: Text to estimate

    Returns:
        ceil(len(text) / 4), or 0 for empty/missing text
    """
    if not text:
        return 0
    return math.ceil(len(text) / 4)


# Keys of an authoritative usage report, mapped onto ledger counters
_FLAT_USAGE_KEYS = {
    "input_text_tokens": UsageCategory.INPUT_TEXT,
    "input_audio_tokens": UsageCategory.INPUT_AUDIO,
    "output_text_tokens": UsageCategory.OUTPUT_TEXT,
    "output_audio_tokens": UsageCategory.OUTPUT_AUDIO,
}


class UsageLedger:
    """Accumulates estimated token counts and reconciles them with real ones."""

    def __init__(self, pricing: Optional[PricingTable] = None):
        self.pricing = pricing or PricingTable()
        self._counts: Dict[UsageCategory, int] = {category: 0 for category in UsageCategory}

    @staticmethod
    def estimate(text: Optional[str]) -> int:
        return estimate_tokens(text)

    def count(self, category: UsageCategory) -> int:
        return self._counts[UsageCategory(category)]

    @property
    def counts(self) -> Dict[UsageCategory, int]:
        return dict(self._counts)

    @property
    def total_tokens(self) -> int:
        return sum(self._counts.values())

    def record_estimate(self, category: UsageCategory, tokens: int) -> None:
        """
        Add an estimated token count to one counter.

        Args:
            category: Counter to increase
            tokens: Estimated tokens; non-positive values are ignored
        """
        if tokens <= 0:
            return
        self._counts[UsageCategory(category)] += tokens

    def record_text(self, category: UsageCategory, text: Optional[str]) -> int:
        """Estimate ``text`` and record it; returns the estimate."""
        tokens = estimate_tokens(text)
        self.record_estimate(category, tokens)
        return tokens

    def reconcile(self, usage: Dict[str, Any]) -> None:
        """
        Replace counters with authoritative values from a usage report.

        Counters named by the report are overwritten, never added to, so
        provisional estimates are not double counted. Two report shapes
        are understood: per-counter keys (``input_audio_tokens`` ...) and
        per-side totals (``input_tokens`` / ``output_tokens``), where a
        present side total replaces both counters of that side.

        Args:
            usage: Usage dictionary from a ``response.usage`` event
        """
        if not usage:
            return

        updates: Dict[UsageCategory, int] = {}

        if usage.get("input_tokens"):
            updates[UsageCategory.INPUT_TEXT] = int(usage["input_tokens"])
            updates[UsageCategory.INPUT_AUDIO] = int(usage.get("input_audio_tokens") or 0)
        if usage.get("output_tokens"):
            updates[UsageCategory.OUTPUT_TEXT] = int(usage["output_tokens"])
            updates[UsageCategory.OUTPUT_AUDIO] = int(usage.get("output_audio_tokens") or 0)

        for key, category in _FLAT_USAGE_KEYS.items():
            if category in updates:
                continue
            value = usage.get(key)
            if value is not None:
                updates[category] = int(value)

        self._counts.update(updates)
        logger.info(f"Usage reconciled from server report: {usage}")

    def cost(self, model_id: Optional[str] = None) -> CostBreakdown:
        """
        Derive cost from the current counters.

        Args:
            model_id: Model whose rates apply (unknown ids use the default rates)

        Returns:
            CostBreakdown with per-category and total cost in USD
        """
        rates = self.pricing.for_model(model_id)
        per_category = {
            category: (count / TOKENS_PER_UNIT) * rates.rate_for(category)
            for category, count in self._counts.items()
        }
        return CostBreakdown(per_category=per_category, total=sum(per_category.values()))

    def reset(self) -> None:
        """Zero all counters (new session or cleared log)."""
        self._counts = {category: 0 for category in UsageCategory}
