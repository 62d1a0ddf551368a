"""
Scoring queue on top of the object status rows.

Items move queued -> in_progress -> completed | failed. A failed item can be
queued again; a completed item stays completed.
"""

import structlog

from fitscore.features.scoring.quota import QuotaExceededError
from fitscore.features.scoring.service import ScoringEngine
from fitscore.infrastructure.observability.logging import component_logger
from fitscore.models.domain.records import RECORD_KINDS
from fitscore.models.domain.scoring import QueueItem, QueueStatus, ScoringResult
from fitscore.repositories.object_status_repository import ObjectStatusRepository


class ScoringQueueService:
    def __init__(
        self,
        *,
        repository: type[ObjectStatusRepository] = ObjectStatusRepository,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        self._repository = repository
        self._log = component_logger(__name__, logger, component="scoring_queue")

    async def enqueue(self, tenant_id: str, record_kind: str, record_id: str) -> QueueItem:
        """Create a queued item, re-queue a failed one, or return the tracked item unchanged."""
        if record_kind not in RECORD_KINDS:
            raise ValueError(f"Unknown record kind '{record_kind}'")

        item = await self._repository.get_scoring_item(tenant_id, record_kind, record_id)
        if item is None:
            item = QueueItem(tenant_id=tenant_id, record_kind=record_kind, record_id=record_id)
        elif item.status == QueueStatus.FAILED:
            item.transition(QueueStatus.QUEUED)
        else:
            self._log.debug(
                "Scoring request already tracked",
                tenant_id=tenant_id,
                record_kind=record_kind,
                record_id=record_id,
                status=item.status.value,
            )
            return item

        await self._repository.save_scoring_item(item)
        self._log.info(
            "Scoring request queued", tenant_id=tenant_id, record_kind=record_kind, record_id=record_id
        )
        return item

    async def claim(self, tenant_id: str | None, limit: int) -> list[QueueItem]:
        return await self._repository.claim_queued(tenant_id, limit)

    async def process_item(self, engine: ScoringEngine, item: QueueItem) -> ScoringResult | None:
        """
        Score one claimed item and record the outcome on its status row.

        Returns None when the record failed. QuotaExceededError is re-raised
        after the item is marked failed so the caller can stop the tenant.
        """
        if item.status == QueueStatus.QUEUED:
            item.transition(QueueStatus.IN_PROGRESS)
            await self._repository.save_scoring_item(item)

        try:
            result = await engine.score(item.record_kind, item.record_id)
        except QuotaExceededError as e:
            item.transition(QueueStatus.FAILED, error=f"quota exceeded: {e}")
            await self._repository.save_scoring_item(item)
            raise
        except Exception as e:
            self._log.exception(
                "Scoring failed",
                tenant_id=item.tenant_id,
                record_kind=item.record_kind,
                record_id=item.record_id,
            )
            item.transition(QueueStatus.FAILED, error=str(e))
            await self._repository.save_scoring_item(item)
            return None

        item.transition(QueueStatus.COMPLETED)
        await self._repository.save_scoring_item(item)
        return result

    async def summary(self, tenant_id: str) -> dict[str, int]:
        return await self._repository.scoring_summary(tenant_id)

    async def fail(self, item: QueueItem, error: str) -> None:
        """Mark a claimed item failed without scoring it."""
        item.transition(QueueStatus.FAILED, error=error)
        await self._repository.save_scoring_item(item)
