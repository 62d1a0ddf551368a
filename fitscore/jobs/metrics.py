"""
Job bookkeeping: per-tenant counters and the wall-clock budget check.
"""

import time
from datetime import UTC, datetime

from fitscore.config import settings
from fitscore.infrastructure.observability.logging import get_logger
from fitscore.models.api.job_response import JobSummary, TenantJobSummary

logger = get_logger(__name__)


class JobDeadline:
    """
    Cooperative time budget.

    Jobs check ``approaching()`` between units of work and stop scheduling new
    ones once fewer than ``margin_seconds`` remain. In-flight calls are not
    interrupted.
    """

    def __init__(
        self,
        budget_seconds: float | None = None,
        margin_seconds: float | None = None,
        clock=time.monotonic,
    ):
        self.budget_seconds = (
            settings.JOB_TIME_BUDGET_SECONDS if budget_seconds is None else budget_seconds
        )
        self.margin_seconds = (
            settings.JOB_TIME_MARGIN_SECONDS if margin_seconds is None else margin_seconds
        )
        self._clock = clock
        self._started = clock()

    @classmethod
    def unlimited(cls) -> "JobDeadline":
        # A zero budget disables the check
        return cls(budget_seconds=0.0, margin_seconds=0.0)

    def elapsed(self) -> float:
        return self._clock() - self._started

    def approaching(self) -> bool:
        if not self.budget_seconds:
            return False
        return self.elapsed() >= self.budget_seconds - self.margin_seconds


class JobMetrics:
    """Counters for one job run, reported as a JobSummary."""

    def __init__(self, job_name: str):
        self.job_name = job_name
        self.reset()

    def reset(self):
        self.start_time = datetime.now(UTC)
        self.total_duration_seconds = 0.0
        self.tenants: dict[str, TenantJobSummary] = {}
        self.errors: list[dict] = []
        self.job_error: str | None = None

    def tenant(self, tenant_id: str) -> TenantJobSummary:
        if tenant_id not in self.tenants:
            self.tenants[tenant_id] = TenantJobSummary(tenant_id=tenant_id)
        return self.tenants[tenant_id]

    def record_success(self, tenant_id: str, record_id: str, upserted: int = 0):
        summary = self.tenant(tenant_id)
        summary.processed += 1
        summary.upserted += upserted
        logger.debug(
            "Record processed",
            job_run=self.job_name,
            tenant_id=tenant_id,
            record_id=record_id,
            upserted=upserted,
        )

    def record_failure(self, tenant_id: str, record_id: str, error: str):
        self.tenant(tenant_id).failed += 1
        self.errors.append(
            {
                "tenant_id": tenant_id,
                "record_id": record_id,
                "error": error,
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )
        logger.warning(
            "Record failed", job_run=self.job_name, tenant_id=tenant_id, record_id=record_id, error=error
        )

    def record_tenant_error(self, tenant_id: str, error: str):
        self.tenant(tenant_id).error = error
        self.errors.append(
            {
                "tenant_id": tenant_id,
                "error": error,
                "error_type": "tenant",
                "timestamp": datetime.now(UTC).isoformat(),
            }
        )
        logger.error("Tenant job failed", job_run=self.job_name, tenant_id=tenant_id, error=error)

    def mark_stopped_early(self, tenant_id: str):
        self.tenant(tenant_id).stopped_early = True

    def finalize(self):
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def processed(self) -> int:
        return sum(t.processed for t in self.tenants.values())

    @property
    def failed(self) -> int:
        return sum(t.failed for t in self.tenants.values())

    def to_summary(self) -> JobSummary:
        tenant_errors = [t for t in self.tenants.values() if t.error]
        error = self.job_error
        if error is None and tenant_errors:
            error = "; ".join(f"{t.tenant_id}: {t.error}" for t in tenant_errors)
        return JobSummary(
            success=self.job_error is None and not tenant_errors,
            processed=self.processed,
            failed=self.failed,
            error=error,
            tenants=list(self.tenants.values()),
            duration_seconds=round(self.total_duration_seconds, 2),
        )

    def to_dict(self) -> dict:
        return {
            "job_run": self.job_name,
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "tenants": len(self.tenants),
            "processed": self.processed,
            "failed": self.failed,
            "errors_count": len(self.errors),
        }
