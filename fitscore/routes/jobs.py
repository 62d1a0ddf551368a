"""
Job endpoints for the scheduler and operators.

Record-level failures never surface as HTTP errors here; they are counted in
the returned summary and kept on the per-record status rows.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from fitscore.auth.verify import auth_dependency
from fitscore.infrastructure.observability.logging import get_logger
from fitscore.jobs.scoring_job import ScoringJob
from fitscore.jobs.training_job import TrainingJob
from fitscore.models.api.job_request import ScoringRunRequest, TrainDealRequest, TrainingRunRequest
from fitscore.models.api.job_response import JobSummary, TrainingSummary
from fitscore.repositories.tenant_repository import TenantRepository
from fitscore.services.tenant_context import TenantNotFoundError

logger = get_logger(__name__)

router = APIRouter(tags=["Jobs"], dependencies=[Depends(auth_dependency)])

_training_job: TrainingJob | None = None
_scoring_job: ScoringJob | None = None


def get_training_job() -> TrainingJob:
    global _training_job
    if _training_job is None:
        _training_job = TrainingJob()
    return _training_job


def get_scoring_job() -> ScoringJob:
    global _scoring_job
    if _scoring_job is None:
        _scoring_job = ScoringJob()
    return _scoring_job


def get_tenant_repository() -> type[TenantRepository]:
    return TenantRepository


def _summary_fields(summary: JobSummary) -> dict:
    return summary.model_dump(exclude_none=True)


@router.post("/jobs/training", summary="Run the training job")
async def run_training(
    body: TrainingRunRequest | None = None,
    job: TrainingJob = Depends(get_training_job),
):
    tenant_id = body.tenant_id if body else None
    summary = await job.run_once(tenant_id)
    return _summary_fields(summary)


@router.post("/jobs/training/deals/{deal_id}", summary="Train a single deal")
async def train_deal(
    deal_id: str,
    body: TrainDealRequest,
    job: TrainingJob = Depends(get_training_job),
):
    try:
        return await job.train_deal(body.tenant_id, deal_id, body.classification)
    except TenantNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    except Exception as e:
        logger.error("Single deal training failed", deal_id=deal_id, error=str(e))
        return {"success": False, "processed": 0, "failed": 1, "error": str(e)}


@router.post("/jobs/scoring", summary="Drain the scoring queue")
async def run_scoring(
    body: ScoringRunRequest | None = None,
    job: ScoringJob = Depends(get_scoring_job),
):
    tenant_id = body.tenant_id if body else None
    limit = body.limit if body else None
    summary = await job.run_once(tenant_id, limit)
    return _summary_fields(summary)


@router.delete("/tenants/{tenant_id}/index", summary="Delete a tenant's vectors")
async def delete_tenant_index(tenant_id: str, job: TrainingJob = Depends(get_training_job)):
    deleted = await job.delete_tenant_index(tenant_id)
    return {"tenant_id": tenant_id, "deleted": deleted}


@router.get(
    "/tenants/{tenant_id}/training/summary",
    response_model=TrainingSummary,
    summary="Training statistics and trained-deal counts",
)
async def training_summary(
    tenant_id: str, repository: type[TenantRepository] = Depends(get_tenant_repository)
):
    row = await repository.get_training_summary(tenant_id)
    if row is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown tenant '{tenant_id}'"
        )
    return TrainingSummary.from_row(tenant_id, row)
