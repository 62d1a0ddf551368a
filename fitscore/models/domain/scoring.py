"""
Domain models for statistics, the scoring queue and scoring results.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator

CLASSIFICATIONS: tuple[str, ...] = ("ideal", "nonideal")


def normalize_classification(value: str) -> str:
    """Accept the spellings used across the CRM and the database."""
    key = value.strip().lower().replace("-", "").replace("_", "").replace(" ", "")
    if key == "ideal":
        return "ideal"
    if key in {"nonideal", "lessideal"}:
        return "nonideal"
    raise ValueError(f"Unknown classification '{value}'")


@dataclass(slots=True)
class ClassificationStats:
    low: float = 0.0
    high: float = 0.0
    median: float = 0.0
    count: int = 0

    @property
    def is_empty(self) -> bool:
        return self.count <= 0


class QueueStatus(StrEnum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


ALLOWED_TRANSITIONS: dict[QueueStatus, frozenset[QueueStatus]] = {
    QueueStatus.QUEUED: frozenset({QueueStatus.IN_PROGRESS}),
    QueueStatus.IN_PROGRESS: frozenset({QueueStatus.COMPLETED, QueueStatus.FAILED}),
    QueueStatus.COMPLETED: frozenset(),
    QueueStatus.FAILED: frozenset({QueueStatus.QUEUED}),
}


class InvalidTransitionError(Exception):
    def __init__(self, current: QueueStatus, target: QueueStatus):
        super().__init__(f"Cannot move queue item from {current} to {target}")
        self.current = current
        self.target = target


@dataclass(slots=True)
class QueueItem:
    tenant_id: str
    record_kind: str
    record_id: str
    status: QueueStatus = QueueStatus.QUEUED
    error: str | None = None
    updated_at: datetime | None = None

    def transition(self, target: QueueStatus, error: str | None = None) -> None:
        if target not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.status, target)
        self.status = target
        self.error = error if target == QueueStatus.FAILED else None

    def to_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "record_kind": self.record_kind,
            "record_id": self.record_id,
            "status": self.status.value,
            "error": self.error,
        }


class OracleVerdict(BaseModel):
    """Strict shape of the LLM's JSON answer."""

    score: float = Field(allow_inf_nan=False)
    positives: list[str] = Field(default_factory=list)
    negatives: list[str] = Field(default_factory=list)
    summary: str = ""

    @field_validator("score")
    @classmethod
    def _clamp_score(cls, value: float) -> float:
        return max(0.0, min(100.0, value))


@dataclass(slots=True)
class ScoringResult:
    score: int
    summary: str
    last_scored: datetime
    positives: list[str] = field(default_factory=list)
    negatives: list[str] = field(default_factory=list)
    neighbor_count: int = 0

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "summary": self.summary,
            "last_scored": self.last_scored.isoformat(),
            "positives": self.positives,
            "negatives": self.negatives,
            "neighbor_count": self.neighbor_count,
        }


@dataclass(slots=True)
class Neighbor:
    """A similar, previously indexed record used as scoring evidence."""

    record_id: str
    kind: str
    similarity: float
    reference_score: float
    score_source: str
    classification: str | None = None
    deal_value: float | None = None
