"""
Incremental vector writes.

Candidates whose stored vector already carries the same comparison metadata
are skipped, so re-running a sync over unchanged deals writes nothing.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field

import structlog

from fitscore.config import settings
from fitscore.infrastructure.observability.logging import component_logger
from fitscore.models.domain.documents import EmbeddedDocument, Metadata, Vector
from fitscore.services.vectorstore.pinecone_client import PineconeClient

COMPARISON_FIELDS: tuple[str, ...] = (
    "deal_value",
    "conversion_days",
    "pipeline",
    "dealstage",
    "days_in_pipeline",
)


@dataclass(slots=True)
class DiffResult:
    upserted: int = 0
    skipped: int = 0
    upserted_ids: list[str] = field(default_factory=list)
    existence_check_failed: bool = False


def _same(left, right) -> bool:
    # Pinecone hands numbers back as floats
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return float(left) == float(right)
    return left == right


def has_changed(candidate: Metadata, existing: Metadata, fields: Sequence[str]) -> bool:
    return any(not _same(candidate.get(name), existing.get(name)) for name in fields)


class VectorDiffEngine:
    def __init__(
        self,
        store: PineconeClient,
        *,
        comparison_fields: Sequence[str] = COMPARISON_FIELDS,
        fetch_batch_size: int | None = None,
        upsert_batch_size: int | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        self._store = store
        self._fields = tuple(comparison_fields)
        self._fetch_batch_size = fetch_batch_size or settings.VECTOR_FETCH_BATCH_SIZE
        self._upsert_batch_size = upsert_batch_size or settings.VECTOR_UPSERT_BATCH_SIZE
        self._log = component_logger(__name__, logger, component="vector_diff")

    async def _existing_metadata(self, ids: list[str], namespace: str) -> dict[str, Metadata]:
        existing: dict[str, Metadata] = {}
        for start in range(0, len(ids), self._fetch_batch_size):
            chunk = ids[start : start + self._fetch_batch_size]
            for match in await self._store.fetch_by_ids(chunk, namespace):
                existing[match.id] = match.metadata
        return existing

    async def existing_ids(self, ids: list[str], namespace: str) -> set[str]:
        return set(await self._existing_metadata(ids, namespace))

    async def diff_and_upsert(
        self, candidates: list[EmbeddedDocument], namespace: str
    ) -> DiffResult:
        result = DiffResult()
        if not candidates:
            return result

        # Later candidates for the same id win, matching overwrite semantics
        by_id: dict[str, EmbeddedDocument] = {c.vector_id: c for c in candidates}
        ids = list(by_id)

        try:
            existing = await self._existing_metadata(ids, namespace)
            selected = [
                candidate
                for vector_id, candidate in by_id.items()
                if vector_id not in existing
                or has_changed(candidate.metadata, existing[vector_id], self._fields)
            ]
        except Exception as e:
            self._log.warning(
                "Existence check failed, upserting every candidate",
                namespace=namespace,
                candidates=len(ids),
                error=str(e),
            )
            result.existence_check_failed = True
            selected = list(by_id.values())

        result.skipped = len(by_id) - len(selected)
        for start in range(0, len(selected), self._upsert_batch_size):
            chunk = selected[start : start + self._upsert_batch_size]
            await self._store.upsert(
                namespace,
                [Vector(id=c.vector_id, values=c.embedding, metadata=c.metadata) for c in chunk],
            )
            result.upserted += len(chunk)
            result.upserted_ids.extend(c.vector_id for c in chunk)

        self._log.info(
            "Vector diff applied",
            namespace=namespace,
            candidates=len(by_id),
            upserted=result.upserted,
            skipped=result.skipped,
        )
        return result
