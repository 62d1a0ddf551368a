from fitscore.db.helpers import fetch_one, with_db_retry
from fitscore.models.domain.tenant import Subscription


class SubscriptionRepository:
    @staticmethod
    @with_db_retry()
    async def get_active_subscription(tenant_id: str) -> Subscription | None:
        row = await fetch_one(
            """
            SELECT plan_tier, current_period_start, current_period_end
            FROM subscriptions
            WHERE portal_id = %s
              AND status IN ('active', 'trialing')
            ORDER BY current_period_end DESC
            LIMIT 1
            """,
            (tenant_id,),
        )
        if not row:
            return None
        return Subscription(
            plan_tier=row["plan_tier"],
            current_period_start=row["current_period_start"],
            current_period_end=row["current_period_end"],
        )
