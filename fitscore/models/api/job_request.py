from typing import Literal

from pydantic import BaseModel, Field

RecordKindField = Literal["contact", "company", "deal"]


class TrainingRunRequest(BaseModel):
    tenant_id: str | None = None


class TrainDealRequest(BaseModel):
    tenant_id: str
    classification: str = Field(..., description="ideal or nonideal")


class ScoringRunRequest(BaseModel):
    tenant_id: str | None = None
    limit: int | None = Field(default=None, ge=1)


class ScoringEnqueueRequest(BaseModel):
    tenant_id: str
    record_kind: RecordKindField
    record_id: str


class RecordRef(BaseModel):
    record_kind: RecordKindField
    record_id: str


class ScoringBatchEnqueueRequest(BaseModel):
    tenant_id: str
    records: list[RecordRef] = Field(..., min_length=1, max_length=100)
