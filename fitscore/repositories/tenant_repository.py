"""
Repository for tenant (HubSpot portal) accounts: credentials, AI settings and
per-classification deal statistics.
"""

from datetime import datetime

from fitscore.db.helpers import execute_query, fetch_all, fetch_one, with_db_retry
from fitscore.infrastructure.observability.logging import get_logger
from fitscore.models.domain.scoring import ClassificationStats, normalize_classification
from fitscore.models.domain.tenant import TenantAccount

logger = get_logger(__name__)

# Column prefix per classification on hubspot_accounts
_STATS_PREFIX = {"ideal": "ideal", "nonideal": "nonideal"}

_ACCOUNT_COLUMNS = """
    portal_id, access_token, refresh_token, expires_at, status,
    COALESCE(ai_config, '{}'::jsonb) AS ai_config, last_training_date
"""


def _row_to_account(row: dict) -> TenantAccount:
    return TenantAccount(
        portal_id=str(row["portal_id"]),
        encrypted_access_token=bytes(row["access_token"]),
        encrypted_refresh_token=bytes(row["refresh_token"]),
        expires_at=row.get("expires_at"),
        status=row.get("status") or "active",
        ai_config=row.get("ai_config") or {},
        last_training_date=row.get("last_training_date"),
    )


class TenantRepository:
    @staticmethod
    @with_db_retry()
    async def list_active_tenants() -> list[TenantAccount]:
        rows = await fetch_all(
            f"""
            SELECT {_ACCOUNT_COLUMNS}
            FROM hubspot_accounts
            WHERE status = 'active'
            ORDER BY portal_id
            """
        )
        return [_row_to_account(row) for row in rows]

    @staticmethod
    @with_db_retry()
    async def get_tenant(portal_id: str) -> TenantAccount | None:
        row = await fetch_one(
            f"SELECT {_ACCOUNT_COLUMNS} FROM hubspot_accounts WHERE portal_id = %s",
            (portal_id,),
        )
        return _row_to_account(row) if row else None

    @staticmethod
    @with_db_retry()
    async def update_credentials(
        portal_id: str,
        encrypted_access: bytes,
        encrypted_refresh: bytes,
        expires_at: datetime,
    ) -> None:
        updated = await execute_query(
            """
            UPDATE hubspot_accounts
            SET access_token = %s,
                refresh_token = %s,
                expires_at = %s,
                updated_at = NOW()
            WHERE portal_id = %s
            """,
            (encrypted_access, encrypted_refresh, expires_at, portal_id),
        )
        logger.info("Stored refreshed credentials", portal_id=portal_id, rows=updated)

    @staticmethod
    @with_db_retry()
    async def get_classification_stats(portal_id: str, classification: str) -> ClassificationStats:
        prefix = _STATS_PREFIX[normalize_classification(classification)]
        row = await fetch_one(
            f"""
            SELECT {prefix}_low AS low, {prefix}_high AS high,
                   {prefix}_median AS median, {prefix}_count AS count
            FROM hubspot_accounts
            WHERE portal_id = %s
            """,
            (portal_id,),
        )
        if not row or not row.get("count"):
            return ClassificationStats()
        return ClassificationStats(
            low=float(row["low"] or 0),
            high=float(row["high"] or 0),
            median=float(row["median"] or 0),
            count=int(row["count"]),
        )

    @staticmethod
    @with_db_retry()
    async def save_classification_stats(
        portal_id: str, classification: str, stats: ClassificationStats
    ) -> None:
        prefix = _STATS_PREFIX[normalize_classification(classification)]
        await execute_query(
            f"""
            UPDATE hubspot_accounts
            SET {prefix}_low = %s,
                {prefix}_high = %s,
                {prefix}_median = %s,
                {prefix}_count = %s,
                updated_at = NOW()
            WHERE portal_id = %s
            """,
            (stats.low, stats.high, stats.median, stats.count, portal_id),
        )

    @staticmethod
    @with_db_retry()
    async def mark_training_complete(
        portal_id: str, ideal_deals: int, nonideal_deals: int, trained_at: datetime
    ) -> None:
        await execute_query(
            """
            UPDATE hubspot_accounts
            SET last_training_date = %s,
                ideal_last_trained = CASE WHEN %s > 0 THEN %s ELSE ideal_last_trained END,
                nonideal_last_trained = CASE WHEN %s > 0 THEN %s ELSE nonideal_last_trained END,
                current_ideal_deals = %s,
                current_less_ideal_deals = %s,
                updated_at = NOW()
            WHERE portal_id = %s
            """,
            (
                trained_at,
                ideal_deals,
                trained_at,
                nonideal_deals,
                trained_at,
                ideal_deals,
                nonideal_deals,
                portal_id,
            ),
        )

    @staticmethod
    @with_db_retry()
    async def get_training_summary(portal_id: str) -> dict | None:
        """Per-classification stats, last-trained times and trained-deal counts."""
        return await fetch_one(
            """
            SELECT portal_id, last_training_date,
                   ideal_low, ideal_high, ideal_median, ideal_count, ideal_last_trained,
                   nonideal_low, nonideal_high, nonideal_median, nonideal_count,
                   nonideal_last_trained,
                   current_ideal_deals, current_less_ideal_deals
            FROM hubspot_accounts
            WHERE portal_id = %s
            """,
            (portal_id,),
        )
