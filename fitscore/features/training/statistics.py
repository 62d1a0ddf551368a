"""
Running deal-amount statistics per tenant and classification.

The merge keeps only (low, high, median, count) between runs, so the merged
median treats the old distribution as ``count`` copies of its median. That is
an approximation and it drifts under skewed amounts.
"""

import math
import statistics
from collections.abc import Iterable
from datetime import UTC, datetime

import structlog

from fitscore.infrastructure.observability.logging import component_logger
from fitscore.models.domain.scoring import ClassificationStats, normalize_classification
from fitscore.repositories.tenant_repository import TenantRepository


class StatisticsError(Exception):
    def __init__(self, message: str, tenant_id: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.tenant_id = tenant_id
        self.recoverable = recoverable


def clean_amounts(amounts: Iterable[float | None]) -> list[float]:
    """Keep finite, positive amounts."""
    return [float(a) for a in amounts if a is not None and math.isfinite(a) and a > 0]


def compute_stats(amounts: list[float]) -> ClassificationStats:
    if not amounts:
        return ClassificationStats()
    return ClassificationStats(
        low=min(amounts),
        high=max(amounts),
        median=statistics.median(amounts),
        count=len(amounts),
    )


def merge_stats(old: ClassificationStats, new_amounts: list[float]) -> ClassificationStats:
    if not new_amounts:
        return old
    if old.is_empty:
        return compute_stats(new_amounts)

    new = compute_stats(new_amounts)
    combined = [old.median] * old.count + list(new_amounts)
    return ClassificationStats(
        low=min(old.low, new.low),
        high=max(old.high, new.high),
        median=statistics.median(combined),
        count=old.count + new.count,
    )


class RunningStatisticsTracker:
    def __init__(
        self,
        repository: type[TenantRepository] = TenantRepository,
        *,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        self._repository = repository
        self._log = component_logger(__name__, logger, component="statistics_tracker")
        self._observed: dict[tuple[str, str], int] = {}
        self._latest: dict[tuple[str, str], ClassificationStats] = {}

    def observed(self, tenant_id: str, classification: str) -> int:
        """Amounts merged for this tenant and classification during the current job."""
        return self._observed.get((tenant_id, normalize_classification(classification)), 0)

    async def update(
        self, tenant_id: str, classification: str, new_amounts: Iterable[float | None]
    ) -> ClassificationStats:
        """Merge ``new_amounts`` into the stored aggregate and persist it."""
        label = normalize_classification(classification)
        amounts = clean_amounts(new_amounts)
        try:
            old = await self._repository.get_classification_stats(tenant_id, label)
            if not amounts:
                return old
            merged = merge_stats(old, amounts)
            await self._repository.save_classification_stats(tenant_id, label, merged)
        except Exception as e:
            self._log.error(
                "Statistics update failed", tenant_id=tenant_id, classification=label, error=str(e)
            )
            raise StatisticsError(f"Statistics update failed: {e}", tenant_id=tenant_id) from e

        key = (tenant_id, label)
        self._observed[key] = self._observed.get(key, 0) + len(amounts)
        self._latest[key] = merged
        self._log.info(
            "Statistics updated",
            tenant_id=tenant_id,
            classification=label,
            new_amounts=len(amounts),
            low=merged.low,
            high=merged.high,
            median=merged.median,
            count=merged.count,
        )
        return merged

    async def finalize(
        self, tenant_id: str, ideal_deals: int, nonideal_deals: int
    ) -> dict[str, ClassificationStats]:
        """Persist the final aggregates and the training timestamp for a finished job."""
        try:
            final = {
                label: self._latest[(tenant_id, label)]
                for label in ("ideal", "nonideal")
                if (tenant_id, label) in self._latest
            }
            for label, stats in final.items():
                await self._repository.save_classification_stats(tenant_id, label, stats)
            await self._repository.mark_training_complete(
                tenant_id, ideal_deals, nonideal_deals, datetime.now(UTC)
            )
        except Exception as e:
            self._log.error("Statistics finalize failed", tenant_id=tenant_id, error=str(e))
            raise StatisticsError(f"Statistics finalize failed: {e}", tenant_id=tenant_id) from e
        return final
