"""
Repository for ai_events: one row per scoring or training event.
Scoring rows are also the unit the scoring quota counts.
"""

from datetime import datetime
from typing import Any

from psycopg.types.json import Jsonb

from fitscore.db.helpers import execute_query, fetch_val, with_db_retry


class AIEventRepository:
    @staticmethod
    @with_db_retry()
    async def insert_event(
        tenant_id: str,
        event_type: str,
        object_type: str,
        object_id: str,
        *,
        classification: str | None = None,
        score: float | None = None,
        prompt: str | None = None,
        response: dict[str, Any] | None = None,
        document_data: dict[str, Any] | None = None,
    ) -> None:
        await execute_query(
            """
            INSERT INTO ai_events (
                portal_id, event_type, object_type, object_id, classification,
                score, prompt, response, document_data, created_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, NOW())
            """,
            (
                tenant_id,
                event_type,
                object_type,
                object_id,
                classification,
                score,
                prompt,
                Jsonb(response) if response is not None else None,
                Jsonb(document_data) if document_data is not None else None,
            ),
        )

    @staticmethod
    @with_db_retry()
    async def count_score_events(tenant_id: str, period_start: datetime, period_end: datetime) -> int:
        count = await fetch_val(
            """
            SELECT COUNT(*) FROM ai_events
            WHERE portal_id = %s
              AND event_type = 'score'
              AND created_at >= %s
              AND created_at < %s
            """,
            (tenant_id, period_start, period_end),
        )
        return int(count or 0)
