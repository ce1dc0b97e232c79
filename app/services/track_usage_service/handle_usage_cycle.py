# app/services/track_usage_service/handle_usage_cycle.py

import asyncio
import logging
import uuid
import weakref
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Mapping, Optional, Tuple

from app.core.config import settings
from app.core.plan_limits import daily_limit_for, default_tier_limits, quota_exceeded_details
from app.repositories.generation import GenerationStore
from app.schemas.flash_cards import UsageSummary
from app.utils.datetime_utils import day_window, get_current_utc_datetime
from app.utils.enums import SubscriptionTier

logger = logging.getLogger(__name__)


@dataclass
class QuotaDecision:
    allowed: bool
    reason: Optional[str] = None
    details: dict = field(default_factory=dict)
    # Unset when the lookup failed open; the insert is then not re-checked
    limit: Optional[int] = None
    window: Optional[Tuple[datetime, datetime]] = None


class QuotaGate:
    """
    Per-user daily admission check for new generation sessions.

    The window is the calendar day in ``QUOTA_TIMEZONE`` (UTC by default):
    every session whose ``created_at`` falls inside it counts, whatever its
    outcome. Lookup failures fail open.

    Callers hold ``admission_lock(user_id)`` across the check and the insert
    so concurrent requests of one user are admitted one at a time.
    """

    def __init__(
        self,
        store: GenerationStore,
        limits: Optional[Mapping[SubscriptionTier, int]] = None,
        tz_name: Optional[str] = None,
        clock: Callable[[], datetime] = get_current_utc_datetime,
    ):
        self.store = store
        self.limits = dict(limits) if limits is not None else default_tier_limits()
        self.tz_name = tz_name or settings.QUOTA_TIMEZONE
        self.clock = clock
        self._admission_locks: "weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def admission_lock(self, user_id: uuid.UUID) -> asyncio.Lock:
        lock = self._admission_locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._admission_locks[user_id] = lock
        return lock

    async def _tier_for(self, user_id: uuid.UUID) -> SubscriptionTier:
        user = await self.store.get_user(user_id)
        if user is None or user.subscription_tier is None:
            return SubscriptionTier.free
        return SubscriptionTier(user.subscription_tier)

    async def check_quota(self, user_id: uuid.UUID) -> QuotaDecision:
        """Decide whether ``user_id`` may start another session today."""
        try:
            tier = await self._tier_for(user_id)
            limit = daily_limit_for(tier, self.limits)
            _, start, end = day_window(self.clock(), self.tz_name)
            used = await self.store.count_sessions_between(user_id, start, end)
        except Exception:
            logger.exception(f"Quota lookup failed for user {user_id}; allowing generation")
            return QuotaDecision(allowed=True)

        if used >= limit:
            return QuotaDecision(
                allowed=False,
                reason=(
                    f"You've reached your daily limit of {limit} card generations on the "
                    f"{tier.value} plan. Try again tomorrow or upgrade your plan."
                ),
                details=quota_exceeded_details(
                    tier=tier, limit=limit, used=used, resets_at=end.isoformat()
                ),
            )
        return QuotaDecision(allowed=True, limit=limit, window=(start, end))

    async def record_generation(self, user_id: uuid.UUID) -> None:
        """Best-effort increment of today's completed-generation counter."""
        try:
            usage_date, _, _ = day_window(self.clock(), self.tz_name)
            await self.store.increment_daily_usage(user_id, usage_date)
        except Exception:
            logger.exception(f"Failed to record daily usage for user {user_id}")

    async def usage_summary(self, user_id: uuid.UUID) -> UsageSummary:
        """Sessions started today against the user's tier limit."""
        tier = await self._tier_for(user_id)
        limit = daily_limit_for(tier, self.limits)
        _, start, end = day_window(self.clock(), self.tz_name)
        used = await self.store.count_sessions_between(user_id, start, end)
        return UsageSummary(
            tier=tier.value,
            limit=limit,
            used_today=used,
            remaining=max(limit - used, 0),
            resets_at=end,
        )
