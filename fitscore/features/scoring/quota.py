"""
Per-tenant scoring quota.

Usage is the number of ``score`` rows in ai_events inside the current billing
period. The period and the limit come from the tenant's active subscription;
tenants without one get the FREE limit over the current calendar month.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import structlog

from fitscore.config import settings
from fitscore.infrastructure.audit.ai_event_logger import AIEventLogger
from fitscore.infrastructure.observability.logging import component_logger
from fitscore.repositories.ai_event_repository import AIEventRepository
from fitscore.repositories.subscription_repository import SubscriptionRepository


class QuotaExceededError(Exception):
    """The tenant has used every score in the current period."""

    def __init__(
        self,
        message: str,
        tenant_id: str,
        remaining: int,
        reset_at: datetime,
        used: int,
        limit: int,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.tenant_id = tenant_id
        self.remaining = remaining
        self.reset_at = reset_at
        self.used = used
        self.limit = limit
        self.recoverable = recoverable


@dataclass(slots=True)
class QuotaStatus:
    plan_tier: str
    used: int
    limit: int
    period_start: datetime
    reset_at: datetime

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)

    @property
    def exhausted(self) -> bool:
        return self.used >= self.limit


def calendar_month(now: datetime) -> tuple[datetime, datetime]:
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


class QuotaService:
    def __init__(
        self,
        *,
        subscriptions: type[SubscriptionRepository] = SubscriptionRepository,
        events: type[AIEventRepository] = AIEventRepository,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        self._subscriptions = subscriptions
        self._events = events
        self._clock = clock
        self._log = component_logger(__name__, logger, component="quota")

    async def usage(self, tenant_id: str) -> QuotaStatus:
        subscription = await self._subscriptions.get_active_subscription(tenant_id)
        if subscription:
            tier = subscription.plan_tier
            start, end = subscription.current_period_start, subscription.current_period_end
        else:
            tier = "FREE"
            start, end = calendar_month(self._clock())

        used = await self._events.count_score_events(tenant_id, start, end)
        return QuotaStatus(
            plan_tier=tier.upper(),
            used=used,
            limit=settings.plan_limit(tier),
            period_start=start,
            reset_at=end,
        )

    async def ensure_available(self, tenant_id: str) -> QuotaStatus:
        """
        Raise QuotaExceededError when no scores are left in this period.

        Called before any paid work so an exhausted tenant costs nothing.
        """
        status = await self.usage(tenant_id)
        if status.exhausted:
            self._log.warning(
                "Scoring quota exhausted",
                tenant_id=tenant_id,
                plan_tier=status.plan_tier,
                used=status.used,
                limit=status.limit,
                reset_at=status.reset_at.isoformat(),
            )
            raise QuotaExceededError(
                f"Scoring limit reached: {status.used} of {status.limit} scores used, "
                f"next reset at {status.reset_at.isoformat()}",
                tenant_id=tenant_id,
                remaining=status.remaining,
                reset_at=status.reset_at,
                used=status.used,
                limit=status.limit,
            )
        return status

    async def consume(
        self,
        tenant_id: str,
        record_kind: str,
        record_id: str,
        *,
        score: float,
        prompt: str,
        response: dict[str, Any],
    ) -> None:
        """Write the score event. The row is both the audit entry and the usage unit."""
        await AIEventLogger.log(
            tenant_id,
            "score",
            record_kind,
            record_id,
            score=score,
            prompt=prompt,
            response=response,
            required=True,
        )
