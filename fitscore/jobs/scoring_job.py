"""
Scoring job: drain the scoring queue.

Queued items are claimed in small batches and scored tenant by tenant. A
tenant whose quota runs out has its remaining claimed items marked failed so
they can be queued again in the next period.
"""

from collections.abc import Callable
from itertools import groupby

from fitscore.config import settings
from fitscore.db.pool import db_pool
from fitscore.features.scoring.queue_service import ScoringQueueService
from fitscore.features.scoring.quota import QuotaExceededError
from fitscore.features.scoring.service import ScoringEngine
from fitscore.infrastructure.observability.logging import get_logger
from fitscore.jobs.metrics import JobDeadline, JobMetrics
from fitscore.models.api.job_response import JobSummary
from fitscore.models.domain.scoring import QueueItem, QueueStatus, ScoringResult
from fitscore.repositories.tenant_repository import TenantRepository
from fitscore.services.ai.llm_oracle import LLMOracle
from fitscore.services.tenant_context import load_tenants, open_tenant_context
from fitscore.services.vectorstore.pinecone_client import PineconeClient

logger = get_logger(__name__)


class ScoringJob:
    def __init__(
        self,
        *,
        queue: ScoringQueueService | None = None,
        store_factory: Callable[[], PineconeClient] = PineconeClient,
        oracle_factory: Callable[..., LLMOracle] = LLMOracle,
        context_factory=open_tenant_context,
        tenant_repository: type[TenantRepository] = TenantRepository,
        deadline_factory: Callable[[], JobDeadline] = JobDeadline,
        batch_size: int | None = None,
        engine_options: dict | None = None,
    ):
        self.queue = queue or ScoringQueueService()
        self._store_factory = store_factory
        self._oracle_factory = oracle_factory
        self._context_factory = context_factory
        self._tenants = tenant_repository
        self._deadline_factory = deadline_factory
        self._batch_size = batch_size or settings.SCORING_QUEUE_BATCH_SIZE
        self._engine_options = engine_options or {}
        self.is_running = False
        self.metrics = JobMetrics("scoring")

    async def _fail_items(self, items: list[QueueItem], error: str) -> None:
        for item in items:
            if item.status != QueueStatus.IN_PROGRESS:
                continue
            await self.queue.fail(item, error)
            self.metrics.record_failure(item.tenant_id, item.record_id, error)

    async def _score_tenant(self, tenant_id: str, items: list[QueueItem], store) -> bool:
        """Score one tenant's claimed items. Returns False when the tenant must stop."""
        try:
            account = (await load_tenants(tenant_id, self._tenants))[0]
        except Exception as e:
            self.metrics.record_tenant_error(tenant_id, str(e))
            await self._fail_items(items, str(e))
            return False

        try:
            async with self._context_factory(account) as ctx:
                oracle = self._oracle_factory(ctx.ai_config)
                engine = ScoringEngine(ctx, store=store, oracle=oracle, **self._engine_options)
                try:
                    for position, item in enumerate(items):
                        try:
                            result = await self.queue.process_item(engine, item)
                        except QuotaExceededError as e:
                            self.metrics.record_failure(tenant_id, item.record_id, str(e))
                            await self._fail_items(items[position + 1 :], "quota exceeded")
                            self.metrics.mark_stopped_early(tenant_id)
                            return False
                        if result is None:
                            self.metrics.record_failure(tenant_id, item.record_id, item.error or "failed")
                        else:
                            self.metrics.record_success(tenant_id, item.record_id)
                finally:
                    await oracle.close()
        except Exception as e:
            self.metrics.record_tenant_error(tenant_id, f"{type(e).__name__}: {e}")
            await self._fail_items(items, str(e))
            return False
        return True

    async def run_once(self, tenant_id: str | None = None, limit: int | None = None) -> JobSummary:
        """Score queued items for one tenant or for all tenants, up to ``limit`` items."""
        if self.is_running:
            logger.warning("Scoring job already running, skipping this run")
            return JobSummary(success=False, processed=0, failed=0, error="already_running")

        self.is_running = True
        self.metrics.reset()
        deadline = self._deadline_factory()
        stopped: set[str] = set()
        claimed_total = 0
        store = None
        try:
            store = self._store_factory()
            while not deadline.approaching():
                batch_size = self._batch_size
                if limit is not None:
                    batch_size = min(batch_size, limit - claimed_total)
                    if batch_size <= 0:
                        break

                items = await self.queue.claim(tenant_id, batch_size)
                if not items:
                    break
                claimed_total += len(items)

                for tenant, group in groupby(items, key=lambda item: item.tenant_id):
                    tenant_items = list(group)
                    if tenant in stopped:
                        await self._fail_items(tenant_items, "quota exceeded")
                        continue
                    if not await self._score_tenant(tenant, tenant_items, store):
                        stopped.add(tenant)
                if tenant_id and stopped:
                    break

            if deadline.approaching():
                logger.info("Time budget nearly spent, leaving the rest of the queue")
        except Exception as e:
            logger.error("Scoring job failed", error=str(e), error_type=type(e).__name__)
            self.metrics.job_error = str(e)
        finally:
            if store is not None:
                await store.close()
            self.metrics.finalize()
            self.is_running = False

        logger.info("Scoring job completed", claimed=claimed_total, **self.metrics.to_dict())
        return self.metrics.to_summary()

    async def score_now(self, tenant_id: str, record_kind: str, record_id: str) -> ScoringResult:
        """
        Score one record right away, outside the queue.

        Raises:
            QuotaExceededError: the tenant has no scores left
        """
        account = (await load_tenants(tenant_id, self._tenants))[0]
        store = self._store_factory()
        try:
            async with self._context_factory(account) as ctx:
                oracle = self._oracle_factory(ctx.ai_config)
                try:
                    engine = ScoringEngine(ctx, store=store, oracle=oracle, **self._engine_options)
                    return await engine.score(record_kind, record_id)
                finally:
                    await oracle.close()
        finally:
            await store.close()


async def run_scoring_job() -> None:
    """Worker entrypoint: drain the scoring queue once."""
    await db_pool.initialize()
    try:
        summary = await ScoringJob().run_once()
        logger.info("Scoring run finished", **summary.model_dump(exclude={"tenants"}))
    finally:
        await db_pool.close()
