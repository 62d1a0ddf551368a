"""
Per-tenant training pipeline.

For each classification the service pages through closed deals and, one deal
at a time, fetches the deal with its contacts and companies, packages them,
embeds them and writes the changed vectors. Statistics are merged after every
page and once more when the tenant is done.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from fitscore.config import settings
from fitscore.features.training.document_packager import DocumentPackager, vector_id_for
from fitscore.features.training.statistics import RunningStatisticsTracker, StatisticsError
from fitscore.features.training.vector_diff import VectorDiffEngine
from fitscore.infrastructure.audit.ai_event_logger import AIEventLogger
from fitscore.jobs.metrics import JobDeadline, JobMetrics
from fitscore.models.api.job_response import TenantJobSummary
from fitscore.models.domain.records import DealRecord, properties_for
from fitscore.models.domain.scoring import CLASSIFICATIONS, normalize_classification
from fitscore.repositories.object_status_repository import ObjectStatusRepository
from fitscore.services.ai.embedding_batcher import Embedder, EmbeddingBatcher, EmbeddingError
from fitscore.services.crm.paginator import RecordPaginator
from fitscore.services.crm.resilient_caller import CredentialRefreshError
from fitscore.services.crm.search_filters import training_filter
from fitscore.services.tenant_context import TenantContext
from fitscore.services.vectorstore.pinecone_client import PineconeClient


@dataclass(slots=True)
class DealOutcome:
    deal_id: str
    deal_value: float
    upserted: int
    deal_vector_written: bool


class TrainingService:
    def __init__(
        self,
        ctx: TenantContext,
        *,
        store: PineconeClient,
        embedder: Embedder,
        stats: RunningStatisticsTracker | None = None,
        deadline: JobDeadline | None = None,
        metrics: JobMetrics | None = None,
        status_repository: type[ObjectStatusRepository] = ObjectStatusRepository,
        max_records: int | None = None,
        page_delay: float | None = None,
        deal_delay: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.ctx = ctx
        self.tenant_id = ctx.tenant_id
        self.namespace = settings.namespace_for(ctx.tenant_id)
        self._log = ctx.logger.bind(component="training_service")
        self._sleep = sleep
        self._page_delay = page_delay
        self._deal_delay = settings.TRAINING_DEAL_DELAY_SECONDS if deal_delay is None else deal_delay
        self._max_records = max_records
        self._status = status_repository

        self.packager = DocumentPackager(ctx.client, ctx.caller, sleep=sleep, logger=self._log)
        self.batcher = EmbeddingBatcher(embedder, sleep=sleep, logger=self._log)
        self.diff = VectorDiffEngine(store, logger=self._log)
        self.stats = stats or RunningStatisticsTracker(logger=self._log)
        self.deadline = deadline or JobDeadline()
        self.metrics = metrics or JobMetrics("training")
        # Related vectors already written for an earlier deal in this run
        self._covered: set[str] = set()

    async def validate_credentials(self) -> None:
        """One cheap search so an unusable credential fails the tenant before any work."""
        await self.ctx.caller.call(
            self.ctx.client.search_records, "deal", {"limit": 1, "properties": ["dealstage"]}
        )

    async def process_deal(
        self, deal_id: str, classification: str, *, skip_indexed_related: bool = False
    ) -> DealOutcome:
        """
        Index one deal and its associated contacts and companies.

        A contact or company shared by several deals carries the linkage of the
        first deal that wrote it in the run; later deals leave it alone. With
        ``skip_indexed_related`` related records already in the index are left
        alone too.

        Raises:
            EmbeddingError: embedding failed; nothing was written
            HubSpotApiError / VectorStoreError: fetch or write failed
        """
        deal: DealRecord = await self.ctx.caller.call(
            self.ctx.client.get_record,
            "deal",
            deal_id,
            properties_for("deal"),
            ["contact", "company"],
        )
        linkage = deal.linkage_metadata(classification)

        deal_document, related = await self.packager.package_with_relationships(
            deal, self.tenant_id, extra_metadata=linkage
        )
        owned = [r for r in related if vector_id_for(r.kind, r.id) not in self._covered]
        if skip_indexed_related and owned:
            indexed = await self.diff.existing_ids(
                [vector_id_for(r.kind, r.id) for r in owned], self.namespace
            )
            owned = [r for r in owned if vector_id_for(r.kind, r.id) not in indexed]
        documents = [deal_document] + [
            self.packager.package(record, self.tenant_id, related=[deal], extra_metadata=linkage)
            for record in owned
        ]

        embedded = await self.batcher.embed(documents)
        result = await self.diff.diff_and_upsert(embedded, self.namespace)
        self._covered.update(document.vector_id for document in documents[1:])

        written = set(result.upserted_ids)
        for document in documents:
            if document.vector_id in written:
                await AIEventLogger.log_training(
                    self.tenant_id,
                    document.structured_content.kind,
                    str(document.metadata["record_id"]),
                    classification,
                    document.metadata,
                )

        return DealOutcome(
            deal_id=deal.id,
            deal_value=deal.deal_value(),
            upserted=result.upserted,
            deal_vector_written=deal_document.vector_id in written,
        )

    async def _mark(self, deal_id: str, classification: str, status: str, error: str | None = None):
        try:
            await self._status.mark_training(
                self.tenant_id, "deal", deal_id, classification, status, error
            )
        except Exception as e:
            self._log.warning("Could not update training status", deal_id=deal_id, error=str(e))

    async def _train_one(
        self, deal_id: str, classification: str, *, skip_indexed_related: bool = False
    ) -> DealOutcome | None:
        await self._mark(deal_id, classification, "in_progress")
        try:
            outcome = await self.process_deal(
                deal_id, classification, skip_indexed_related=skip_indexed_related
            )
        except CredentialRefreshError:
            await self._mark(deal_id, classification, "failed", "credential refresh failed")
            raise
        except EmbeddingError as e:
            self.metrics.record_failure(self.tenant_id, deal_id, str(e))
            await self._mark(deal_id, classification, "failed", f"embedding failed: {e}")
            return None
        except Exception as e:
            self._log.exception("Deal training failed", deal_id=deal_id)
            self.metrics.record_failure(self.tenant_id, deal_id, str(e))
            await self._mark(deal_id, classification, "failed", str(e))
            return None

        self.metrics.record_success(self.tenant_id, deal_id, upserted=outcome.upserted)
        await self._mark(deal_id, classification, "completed")
        return outcome

    async def _update_stats(self, classification: str, amounts: list[float]) -> None:
        try:
            await self.stats.update(self.tenant_id, classification, amounts)
        except StatisticsError as e:
            self._log.warning("Statistics left stale for this run", error=str(e))

    async def train_classification(self, classification: str) -> int:
        """Train every matching deal for one classification. Returns deals attempted."""
        label = normalize_classification(classification)
        paginator = RecordPaginator(
            self.ctx.client,
            self.ctx.caller,
            training_filter(label),
            max_records=self._max_records,
            page_delay=self._page_delay,
            sleep=self._sleep,
            logger=self._log,
        )

        attempted = 0
        async for batch in paginator:
            new_amounts: list[float] = []
            for deal in batch:
                if self.deadline.approaching():
                    break
                if attempted:
                    await self._sleep(self._deal_delay)
                attempted += 1
                outcome = await self._train_one(deal.id, label)
                if outcome and outcome.deal_vector_written:
                    new_amounts.append(outcome.deal_value)

            await self._update_stats(label, new_amounts)
            if self.deadline.approaching():
                self._log.info("Time budget nearly spent, stopping", classification=label)
                self.metrics.mark_stopped_early(self.tenant_id)
                break

        self._log.info(
            "Classification trained",
            classification=label,
            attempted=attempted,
            pages=paginator.pages_fetched,
            capped=paginator.capped,
        )
        return attempted

    async def run(self) -> TenantJobSummary:
        summary = self.metrics.tenant(self.tenant_id)
        await self.validate_credentials()

        attempted: dict[str, int] = {}
        for classification in CLASSIFICATIONS:
            if self.deadline.approaching():
                self.metrics.mark_stopped_early(self.tenant_id)
                break
            attempted[classification] = await self.train_classification(classification)

        try:
            await self.stats.finalize(
                self.tenant_id, attempted.get("ideal", 0), attempted.get("nonideal", 0)
            )
        except StatisticsError as e:
            self._log.warning("Final statistics write failed", error=str(e))

        self._log.info(
            "Tenant training finished",
            processed=summary.processed,
            failed=summary.failed,
            upserted=summary.upserted,
        )
        return summary

    async def train_single_deal(self, deal_id: str, classification: str) -> dict:
        """Train one deal on demand. Deals already trained are left alone."""
        label = normalize_classification(classification)
        status = await self._status.get_training_status(self.tenant_id, "deal", deal_id)
        if status == "completed":
            return {"deal_id": deal_id, "status": "already_processed"}

        outcome = await self._train_one(deal_id, label, skip_indexed_related=True)
        if outcome is None:
            return {"deal_id": deal_id, "status": "failed"}

        if outcome.deal_vector_written:
            await self._update_stats(label, [outcome.deal_value])
        return {"deal_id": deal_id, "status": "completed", "upserted": outcome.upserted}
