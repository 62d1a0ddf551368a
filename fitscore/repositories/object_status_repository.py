"""
Per-record training and scoring status rows (hubspot_object_status).

The scoring columns double as the scoring queue.
"""

from fitscore.db.helpers import execute_query, fetch_all, fetch_one, with_db_retry
from fitscore.models.domain.scoring import QueueItem, QueueStatus

_QUEUE_COLUMNS = """
    portal_id, object_type, object_id, scoring_status, scoring_error, updated_at
"""


def _row_to_item(row: dict) -> QueueItem:
    return QueueItem(
        tenant_id=str(row["portal_id"]),
        record_kind=row["object_type"],
        record_id=str(row["object_id"]),
        status=QueueStatus(row["scoring_status"]),
        error=row.get("scoring_error"),
        updated_at=row.get("updated_at"),
    )


class ObjectStatusRepository:
    @staticmethod
    @with_db_retry()
    async def get_scoring_item(tenant_id: str, kind: str, record_id: str) -> QueueItem | None:
        row = await fetch_one(
            f"""
            SELECT {_QUEUE_COLUMNS}
            FROM hubspot_object_status
            WHERE portal_id = %s AND object_type = %s AND object_id = %s
              AND scoring_status IS NOT NULL
            """,
            (tenant_id, kind, record_id),
        )
        return _row_to_item(row) if row else None

    @staticmethod
    @with_db_retry()
    async def save_scoring_item(item: QueueItem) -> None:
        """Insert or overwrite the scoring columns for ``item``."""
        await execute_query(
            """
            INSERT INTO hubspot_object_status (
                portal_id, object_type, object_id, scoring_status, scoring_error, scoring_date
            ) VALUES (%s, %s, %s, %s, %s, CASE WHEN %s = 'completed' THEN NOW() END)
            ON CONFLICT (portal_id, object_type, object_id) DO UPDATE
            SET scoring_status = EXCLUDED.scoring_status,
                scoring_error = EXCLUDED.scoring_error,
                scoring_date = COALESCE(EXCLUDED.scoring_date, hubspot_object_status.scoring_date),
                updated_at = NOW()
            """,
            (
                item.tenant_id,
                item.record_kind,
                item.record_id,
                item.status.value,
                item.error,
                item.status.value,
            ),
        )

    @staticmethod
    @with_db_retry()
    async def claim_queued(tenant_id: str | None, limit: int) -> list[QueueItem]:
        """Move up to ``limit`` queued items to in_progress and return them."""
        rows = await fetch_all(
            f"""
            UPDATE hubspot_object_status
            SET scoring_status = 'in_progress', updated_at = NOW()
            WHERE id IN (
                SELECT id FROM hubspot_object_status
                WHERE scoring_status = 'queued'
                  AND (%s::text IS NULL OR portal_id = %s)
                ORDER BY portal_id, updated_at
                LIMIT %s
                FOR UPDATE SKIP LOCKED
            )
            RETURNING {_QUEUE_COLUMNS}
            """,
            (tenant_id, tenant_id, limit),
        )
        return sorted((_row_to_item(row) for row in rows), key=lambda item: item.tenant_id)

    @staticmethod
    @with_db_retry()
    async def scoring_summary(tenant_id: str) -> dict[str, int]:
        rows = await fetch_all(
            """
            SELECT scoring_status AS status, COUNT(*) AS count
            FROM hubspot_object_status
            WHERE portal_id = %s AND scoring_status IS NOT NULL
            GROUP BY scoring_status
            """,
            (tenant_id,),
        )
        summary = {status.value: 0 for status in QueueStatus}
        summary.update({row["status"]: int(row["count"]) for row in rows})
        return summary

    @staticmethod
    @with_db_retry()
    async def get_training_status(tenant_id: str, kind: str, record_id: str) -> str | None:
        row = await fetch_one(
            """
            SELECT training_status FROM hubspot_object_status
            WHERE portal_id = %s AND object_type = %s AND object_id = %s
            """,
            (tenant_id, kind, record_id),
        )
        return row["training_status"] if row else None

    @staticmethod
    @with_db_retry()
    async def mark_training(
        tenant_id: str,
        kind: str,
        record_id: str,
        classification: str,
        status: str,
        error: str | None = None,
    ) -> None:
        await execute_query(
            """
            INSERT INTO hubspot_object_status (
                portal_id, object_type, object_id, classification,
                training_status, training_error, training_date
            ) VALUES (%s, %s, %s, %s, %s, %s, CASE WHEN %s = 'completed' THEN NOW() END)
            ON CONFLICT (portal_id, object_type, object_id) DO UPDATE
            SET classification = EXCLUDED.classification,
                training_status = EXCLUDED.training_status,
                training_error = EXCLUDED.training_error,
                training_date = COALESCE(EXCLUDED.training_date, hubspot_object_status.training_date),
                updated_at = NOW()
            """,
            (tenant_id, kind, record_id, classification, status, error, status),
        )
