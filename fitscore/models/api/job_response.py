from datetime import datetime

from pydantic import BaseModel, Field


class TenantJobSummary(BaseModel):
    tenant_id: str
    processed: int = 0
    failed: int = 0
    upserted: int = 0
    stopped_early: bool = False
    error: str | None = None


class JobSummary(BaseModel):
    success: bool
    processed: int
    failed: int
    error: str | None = None
    tenants: list[TenantJobSummary] = Field(default_factory=list)
    duration_seconds: float | None = None


class ClassificationSummary(BaseModel):
    low: float = 0
    high: float = 0
    median: float = 0
    count: int = 0
    last_trained: datetime | None = None
    trained_deals: int = 0


class TrainingSummary(BaseModel):
    tenant_id: str
    last_training_date: datetime | None = None
    ideal: ClassificationSummary
    nonideal: ClassificationSummary

    @classmethod
    def from_row(cls, tenant_id: str, row: dict) -> "TrainingSummary":
        """Build from a ``hubspot_accounts`` row; NULL columns read as zero."""

        def _classification(prefix: str, deals_column: str) -> ClassificationSummary:
            return ClassificationSummary(
                low=float(row.get(f"{prefix}_low") or 0),
                high=float(row.get(f"{prefix}_high") or 0),
                median=float(row.get(f"{prefix}_median") or 0),
                count=int(row.get(f"{prefix}_count") or 0),
                last_trained=row.get(f"{prefix}_last_trained"),
                trained_deals=int(row.get(deals_column) or 0),
            )

        return cls(
            tenant_id=tenant_id,
            last_training_date=row.get("last_training_date"),
            ideal=_classification("ideal", "current_ideal_deals"),
            nonideal=_classification("nonideal", "current_less_ideal_deals"),
        )
