from dataclasses import dataclass
from typing import Optional

from app.core.config import settings
from app.schemas.flash_cards import AICosts


@dataclass(frozen=True)
class CostRates:
    text_per_1k_tokens_usd: float
    per_image_usd: float


def default_rates() -> CostRates:
    return CostRates(
        text_per_1k_tokens_usd=settings.TEXT_COST_PER_1K_TOKENS_USD,
        per_image_usd=settings.IMAGE_COST_USD,
    )


class CostAccountant:
    """Turns token and image counts into a cost estimate for a session."""

    def __init__(self, rates: Optional[CostRates] = None):
        self.rates = rates or default_rates()

    def estimate(self, text_tokens: int, image_generations: int) -> AICosts:
        if text_tokens < 0 or image_generations < 0:
            raise ValueError("usage counts cannot be negative")
        total = (
            text_tokens / 1000 * self.rates.text_per_1k_tokens_usd
            + image_generations * self.rates.per_image_usd
        )
        return AICosts(
            text_tokens=text_tokens,
            image_generations=image_generations,
            total_cost_usd=round(total, 6),
        )
