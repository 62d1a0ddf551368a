"""
Training job: index closed deals for every active tenant.

Tenants are processed one after another. Each tenant gets its own CRM client
and credential caller; the vector store and the embedder are shared by the run.
A tenant failure is recorded in the summary and the job moves on.
"""

import asyncio
from collections.abc import Awaitable, Callable

from fitscore.config import settings
from fitscore.db.pool import db_pool
from fitscore.features.training.service import TrainingService
from fitscore.infrastructure.observability.logging import get_logger
from fitscore.jobs.metrics import JobDeadline, JobMetrics
from fitscore.models.api.job_response import JobSummary
from fitscore.models.domain.tenant import TenantAccount
from fitscore.repositories.tenant_repository import TenantRepository
from fitscore.services.ai.llm_oracle import LLMOracle
from fitscore.services.tenant_context import load_tenants, open_tenant_context
from fitscore.services.vectorstore.pinecone_client import PineconeClient

logger = get_logger(__name__)


class TrainingJob:
    def __init__(
        self,
        *,
        store_factory: Callable[[], PineconeClient] = PineconeClient,
        embedder_factory: Callable[[], LLMOracle] = LLMOracle,
        context_factory=open_tenant_context,
        tenant_repository: type[TenantRepository] = TenantRepository,
        deadline_factory: Callable[[], JobDeadline] = JobDeadline,
        tenant_delay: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        service_options: dict | None = None,
    ):
        self._store_factory = store_factory
        self._embedder_factory = embedder_factory
        self._context_factory = context_factory
        self._tenants = tenant_repository
        self._deadline_factory = deadline_factory
        self._tenant_delay = (
            settings.TRAINING_TENANT_DELAY_SECONDS if tenant_delay is None else tenant_delay
        )
        self._sleep = sleep
        self._service_options = service_options or {}
        self.is_running = False
        self.metrics = JobMetrics("training")

    def _service(self, ctx, store, embedder, deadline) -> TrainingService:
        return TrainingService(
            ctx,
            store=store,
            embedder=embedder,
            deadline=deadline,
            metrics=self.metrics,
            sleep=self._sleep,
            **self._service_options,
        )

    async def run_once(self, tenant_id: str | None = None) -> JobSummary:
        """Train one tenant, or every active tenant when ``tenant_id`` is None."""
        if self.is_running:
            logger.warning("Training job already running, skipping this run")
            return JobSummary(success=False, processed=0, failed=0, error="already_running")

        self.is_running = True
        self.metrics.reset()
        deadline = self._deadline_factory()
        store = embedder = None
        try:
            tenants = await load_tenants(tenant_id, self._tenants)
            logger.info("Starting training job", tenants=len(tenants))
            store = self._store_factory()
            embedder = self._embedder_factory()

            for index, account in enumerate(tenants):
                if deadline.approaching():
                    logger.info("Time budget nearly spent, skipping remaining tenants")
                    self.metrics.mark_stopped_early(account.portal_id)
                    break
                if index:
                    await self._sleep(self._tenant_delay)
                await self._run_tenant(account, store, embedder, deadline)

        except Exception as e:
            logger.error("Training job failed", error=str(e), error_type=type(e).__name__)
            self.metrics.job_error = str(e)
        finally:
            for resource in (store, embedder):
                if resource is not None:
                    await resource.close()
            self.metrics.finalize()
            self.is_running = False

        logger.info("Training job completed", **self.metrics.to_dict())
        return self.metrics.to_summary()

    async def _run_tenant(self, account: TenantAccount, store, embedder, deadline) -> None:
        self.metrics.tenant(account.portal_id)
        try:
            async with self._context_factory(account) as ctx:
                await self._service(ctx, store, embedder, deadline).run()
        except Exception as e:
            self.metrics.record_tenant_error(account.portal_id, f"{type(e).__name__}: {e}")

    async def train_deal(self, tenant_id: str, deal_id: str, classification: str) -> dict:
        """Train a single deal on demand."""
        account = (await load_tenants(tenant_id, self._tenants))[0]
        store = self._store_factory()
        embedder = self._embedder_factory()
        try:
            async with self._context_factory(account) as ctx:
                service = self._service(ctx, store, embedder, JobDeadline.unlimited())
                return await service.train_single_deal(deal_id, classification)
        finally:
            await store.close()
            await embedder.close()

    async def delete_tenant_index(self, tenant_id: str) -> bool:
        """Drop every vector of the tenant. Returns False when there was nothing to drop."""
        store = self._store_factory()
        try:
            return await store.delete_namespace(settings.namespace_for(tenant_id))
        finally:
            await store.close()


async def run_training_job() -> None:
    """Worker entrypoint: one training pass over every active tenant."""
    await db_pool.initialize()
    try:
        summary = await TrainingJob().run_once()
        logger.info("Training run finished", **summary.model_dump(exclude={"tenants"}))
    finally:
        await db_pool.close()
