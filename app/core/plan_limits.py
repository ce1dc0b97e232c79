from typing import Dict, Mapping, Optional

from app.core.config import settings
from app.utils.enums import SubscriptionTier


def default_tier_limits() -> Dict[SubscriptionTier, int]:
    """Daily generation limits per subscription tier, from settings."""
    return {
        SubscriptionTier.free: settings.DAILY_LIMIT_FREE,
        SubscriptionTier.educator: settings.DAILY_LIMIT_EDUCATOR,
        SubscriptionTier.premium: settings.DAILY_LIMIT_PREMIUM,
    }


def daily_limit_for(
    tier: Optional[SubscriptionTier],
    limits: Optional[Mapping[SubscriptionTier, int]] = None,
) -> int:
    """Return the daily limit for ``tier``; unknown tiers get the free limit."""
    table = limits if limits is not None else default_tier_limits()
    if tier is None or tier not in table:
        return table[SubscriptionTier.free]
    return table[tier]


def quota_exceeded_details(
    *,
    tier: SubscriptionTier,
    limit: int,
    used: int,
    resets_at: str,
) -> dict:
    """Payload attached to QUOTA_EXCEEDED errors.

    Shape:
    {
      current_tier,           # e.g. "free"
      limit: {
        metric,               # "daily_generations"
        limit,                # numeric tier limit
        used,                 # sessions started in the current day window
      },
      resets_at,              # ISO timestamp of the next window start
    }
    """
    return {
        "current_tier": tier.value,
        "limit": {"metric": "daily_generations", "limit": limit, "used": used},
        "resets_at": resets_at,
    }
