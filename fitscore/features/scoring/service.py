"""
ScoringEngine - score one CRM record against the tenant's indexed history.

Flow per record:
1. quota check (no paid call happens for an exhausted tenant)
2. fetch the record and its related records
3. package and embed the composite record
4. nearest neighbors in the tenant namespace, same record kind
5. reference score per neighbor (stored LLM score, else derived from stats)
6. prompt, oracle verdict, CRM write-back, score event

Embedding or similarity search failures leave the record without neighbors;
the prompt then says so. Everything from the oracle call on is fatal.
"""

from datetime import UTC, datetime

import structlog

from fitscore.config import settings
from fitscore.features.scoring.derived_score import derived_score
from fitscore.features.scoring.prompt_builder import build_prompt, format_summary
from fitscore.features.scoring.quota import QuotaService
from fitscore.features.training.document_packager import RELATED_KINDS, DocumentPackager
from fitscore.models.domain.documents import Document, Vector, VectorMatch
from fitscore.models.domain.records import RECORD_KINDS, CrmRecord, properties_for
from fitscore.models.domain.scoring import (
    ClassificationStats,
    Neighbor,
    ScoringResult,
    normalize_classification,
)
from fitscore.repositories.tenant_repository import TenantRepository
from fitscore.services.ai.llm_oracle import LLMOracle
from fitscore.services.crm.resilient_caller import ResilientCaller
from fitscore.services.tenant_context import TenantContext
from fitscore.services.vectorstore.pinecone_client import PineconeClient


def _as_float(value) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class ScoringEngine:
    def __init__(
        self,
        ctx: TenantContext,
        *,
        store: PineconeClient,
        oracle: LLMOracle,
        quota: QuotaService | None = None,
        stats_repository: type[TenantRepository] = TenantRepository,
        top_k: int | None = None,
        store_vectors: bool | None = None,
        packager: DocumentPackager | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        self.ctx = ctx
        self.tenant_id = ctx.tenant_id
        self.namespace = settings.namespace_for(ctx.tenant_id)
        self._store = store
        self._oracle = oracle
        self._log = (logger or ctx.logger).bind(component="scoring_engine")
        self._quota = quota or QuotaService(logger=self._log)
        self._stats_repository = stats_repository
        self._top_k = top_k or settings.SCORING_TOP_K
        self._store_vectors = (
            settings.SCORING_STORE_VECTORS if store_vectors is None else store_vectors
        )
        self._packager = packager or DocumentPackager(ctx.client, ctx.caller, logger=self._log)
        self._stats: dict[str, ClassificationStats] = {}

    @property
    def caller(self) -> ResilientCaller:
        return self.ctx.caller

    async def _fetch(self, kind: str, record_id: str) -> CrmRecord:
        return await self.caller.call(
            self.ctx.client.get_record,
            kind,
            record_id,
            properties_for(kind),
            list(RELATED_KINDS[kind]),
        )

    async def _embed(self, document: Document) -> list[float] | None:
        try:
            embeddings = await self._oracle.embed([document.content])
        except Exception as e:
            self._log.warning("Embedding failed, scoring without neighbors", error=str(e))
            return None
        return embeddings[0] if embeddings else None

    async def _stats_for(self, classification: str) -> ClassificationStats | None:
        if classification not in self._stats:
            try:
                self._stats[classification] = await self._stats_repository.get_classification_stats(
                    self.tenant_id, classification
                )
            except Exception as e:
                self._log.warning(
                    "Classification stats unavailable", classification=classification, error=str(e)
                )
                return None
        return self._stats[classification]

    async def reference_score(self, match: VectorMatch) -> Neighbor | None:
        """Neighbor evidence for one match, or None when it carries nothing to compare."""
        metadata = match.metadata
        kind = str(metadata.get("record_type", ""))
        record_id = str(metadata.get("record_id") or match.id)
        deal_value = _as_float(metadata.get("deal_value"))

        classification = None
        if metadata.get("classification"):
            try:
                classification = normalize_classification(str(metadata["classification"]))
            except ValueError:
                classification = None

        stored = _as_float(metadata.get("ideal_client_score"))
        if stored is not None:
            score, source = stored, "llm"
        elif classification:
            stats = await self._stats_for(classification)
            score, source = derived_score(deal_value, classification, stats), "derived"
        else:
            return None

        return Neighbor(
            record_id=record_id,
            kind=kind,
            similarity=match.score,
            reference_score=score,
            score_source=source,
            classification=classification,
            deal_value=deal_value,
        )

    async def find_neighbors(self, kind: str, document: Document, embedding: list[float]) -> list[Neighbor]:
        try:
            matches = await self._store.query(
                self.namespace,
                embedding,
                {"record_type": kind, "tenant_id": self.tenant_id},
                # One extra in case the record itself is indexed
                self._top_k + 1,
            )
        except Exception as e:
            self._log.warning("Similarity search failed, scoring without neighbors", error=str(e))
            return []

        neighbors = []
        for match in matches:
            if match.id == document.vector_id:
                continue
            neighbor = await self.reference_score(match)
            if neighbor:
                neighbors.append(neighbor)
            if len(neighbors) == self._top_k:
                break
        return neighbors

    async def _store_scored_vector(
        self, document: Document, embedding: list[float], score: int, last_scored: str
    ) -> None:
        """Merge the new score into the record's vector, keeping any training linkage."""
        try:
            existing = await self._store.fetch_by_ids([document.vector_id], self.namespace)
            metadata = dict(existing[0].metadata) if existing else {}
            metadata.update(document.metadata)
            metadata["ideal_client_score"] = score
            metadata["ideal_client_last_scored"] = last_scored
            await self._store.upsert(
                self.namespace, [Vector(id=document.vector_id, values=embedding, metadata=metadata)]
            )
        except Exception as e:
            self._log.warning("Could not store scored vector", vector_id=document.vector_id, error=str(e))

    async def score(self, kind: str, record_id: str) -> ScoringResult:
        """
        Score one record and write the result back to the CRM.

        Raises:
            QuotaExceededError: no scores left; nothing else was called
            ValueError: unknown record kind
            OracleError: the oracle failed or answered outside the JSON contract
            HubSpotApiError: the write-back failed; the score event is already recorded
        """
        if kind not in RECORD_KINDS:
            raise ValueError(f"Unknown record kind '{kind}'")

        await self._quota.ensure_available(self.tenant_id)
        log = self._log.bind(record_kind=kind, record_id=record_id)

        record = await self._fetch(kind, record_id)
        related = await self._packager.fetch_related(record)
        document = self._packager.package(record, self.tenant_id, related=related)
        related_documents = [
            self._packager.package(item, self.tenant_id, related=[record]) for item in related
        ]

        embedding = await self._embed(document)
        neighbors = await self.find_neighbors(kind, document, embedding) if embedding else []

        prompt = build_prompt(
            document,
            related_documents,
            neighbors,
            instructions=self.ctx.ai_config.scoring_prompt,
        )
        verdict = await self._oracle.complete(
            prompt,
            temperature=self.ctx.ai_config.temperature,
            max_tokens=self.ctx.ai_config.max_tokens,
        )

        score = round(verdict.score)
        summary = format_summary(verdict.positives, verdict.negatives, verdict.summary)
        last_scored = datetime.now(UTC)

        # A completed oracle call counts against the quota whether or not the write-back lands
        await self._quota.consume(
            self.tenant_id,
            kind,
            record_id,
            score=score,
            prompt=prompt,
            response=verdict.model_dump(),
        )

        try:
            await self.caller.call(
                self.ctx.client.update_record,
                kind,
                record_id,
                {
                    "ideal_client_score": str(score),
                    "ideal_client_summary": summary,
                    "ideal_client_last_scored": last_scored.isoformat(),
                },
            )
        except Exception as e:
            log.error("CRM write-back failed after the score was recorded", score=score, error=str(e))
            raise

        if self._store_vectors and embedding:
            await self._store_scored_vector(document, embedding, score, last_scored.isoformat())

        log.info("Record scored", score=score, neighbors=len(neighbors))
        return ScoringResult(
            score=score,
            summary=summary,
            last_scored=last_scored,
            positives=verdict.positives,
            negatives=verdict.negatives,
            neighbor_count=len(neighbors),
        )
