"""
Scoring endpoints: queue records, score one right away, read queue counts.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from fitscore.auth.verify import auth_dependency
from fitscore.features.scoring.queue_service import ScoringQueueService
from fitscore.features.scoring.quota import QuotaExceededError
from fitscore.infrastructure.observability.logging import get_logger
from fitscore.jobs.scoring_job import ScoringJob
from fitscore.models.api.job_request import ScoringBatchEnqueueRequest, ScoringEnqueueRequest
from fitscore.models.domain.records import RECORD_KINDS
from fitscore.routes.jobs import get_scoring_job
from fitscore.services.tenant_context import TenantNotFoundError

logger = get_logger(__name__)

router = APIRouter(prefix="/scoring", tags=["Scoring"], dependencies=[Depends(auth_dependency)])


def get_queue_service(job: ScoringJob = Depends(get_scoring_job)) -> ScoringQueueService:
    return job.queue


@router.post("/requests", status_code=status.HTTP_202_ACCEPTED, summary="Queue a record for scoring")
async def enqueue_scoring(
    body: ScoringEnqueueRequest, queue: ScoringQueueService = Depends(get_queue_service)
):
    item = await queue.enqueue(body.tenant_id, body.record_kind, body.record_id)
    return item.to_dict()


@router.post(
    "/requests/batch", status_code=status.HTTP_202_ACCEPTED, summary="Queue several records for scoring"
)
async def enqueue_scoring_batch(
    body: ScoringBatchEnqueueRequest, queue: ScoringQueueService = Depends(get_queue_service)
):
    items = [
        await queue.enqueue(body.tenant_id, record.record_kind, record.record_id)
        for record in body.records
    ]
    logger.info("Scoring batch queued", tenant_id=body.tenant_id, records=len(items))
    return {"tenant_id": body.tenant_id, "items": [item.to_dict() for item in items]}


@router.post("/{tenant_id}/{record_kind}/{record_id}", summary="Score a record now")
async def score_record(
    tenant_id: str,
    record_kind: str,
    record_id: str,
    job: ScoringJob = Depends(get_scoring_job),
):
    if record_kind not in RECORD_KINDS:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unknown record kind '{record_kind}'",
        )

    try:
        result = await job.score_now(tenant_id, record_kind, record_id)
    except QuotaExceededError as e:
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={
                "success": False,
                "error": str(e),
                "remaining": e.remaining,
                "reset_at": e.reset_at.isoformat(),
            },
        )
    except TenantNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    return {"success": True, "record_kind": record_kind, "record_id": record_id, **result.to_dict()}


@router.get("/{tenant_id}/summary", summary="Scoring queue counts by status")
async def scoring_summary(tenant_id: str, queue: ScoringQueueService = Depends(get_queue_service)):
    counts = await queue.summary(tenant_id)
    return {"tenant_id": tenant_id, "counts": counts, "total": sum(counts.values())}
