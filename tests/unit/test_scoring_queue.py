"""
Tests for the scoring queue state machine.
"""

import pytest

from conftest import TENANT_ID
from fitscore.features.scoring.queue_service import ScoringQueueService
from fitscore.features.scoring.quota import QuotaExceededError
from fitscore.models.domain.scoring import InvalidTransitionError, QueueItem, QueueStatus


class StubEngine:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.scored: list[tuple[str, str]] = []

    async def score(self, kind, record_id):
        self.scored.append((kind, record_id))
        if self.error:
            raise self.error
        return {"score": 75}


def test_allowed_transitions():
    item = QueueItem(TENANT_ID, "contact", "1")

    item.transition(QueueStatus.IN_PROGRESS)
    item.transition(QueueStatus.FAILED, error="boom")
    assert item.error == "boom"
    item.transition(QueueStatus.QUEUED)
    assert item.error is None


@pytest.mark.parametrize(
    ("start", "target"),
    [
        (QueueStatus.QUEUED, QueueStatus.COMPLETED),
        (QueueStatus.QUEUED, QueueStatus.FAILED),
        (QueueStatus.COMPLETED, QueueStatus.QUEUED),
        (QueueStatus.COMPLETED, QueueStatus.IN_PROGRESS),
        (QueueStatus.FAILED, QueueStatus.COMPLETED),
    ],
)
def test_rejected_transitions(start, target):
    item = QueueItem(TENANT_ID, "deal", "1", status=start)

    with pytest.raises(InvalidTransitionError):
        item.transition(target)
    assert item.status == start


@pytest.mark.asyncio
async def test_enqueue_creates_queued_item(fake_status):
    queue = ScoringQueueService(repository=fake_status)

    item = await queue.enqueue(TENANT_ID, "contact", "1")

    assert item.status == QueueStatus.QUEUED
    assert fake_status.saves == [("1", "queued")]


@pytest.mark.asyncio
async def test_enqueue_requeues_failed_item(fake_status):
    queue = ScoringQueueService(repository=fake_status)
    await fake_status.save_scoring_item(
        QueueItem(TENANT_ID, "contact", "1", status=QueueStatus.FAILED, error="boom")
    )

    item = await queue.enqueue(TENANT_ID, "contact", "1")

    assert item.status == QueueStatus.QUEUED
    assert item.error is None


@pytest.mark.parametrize("status", [QueueStatus.QUEUED, QueueStatus.IN_PROGRESS, QueueStatus.COMPLETED])
@pytest.mark.asyncio
async def test_enqueue_leaves_tracked_items_alone(fake_status, status):
    queue = ScoringQueueService(repository=fake_status)
    await fake_status.save_scoring_item(QueueItem(TENANT_ID, "deal", "5", status=status))
    fake_status.saves.clear()

    item = await queue.enqueue(TENANT_ID, "deal", "5")

    assert item.status == status
    assert fake_status.saves == []


@pytest.mark.asyncio
async def test_enqueue_rejects_unknown_kind(fake_status):
    queue = ScoringQueueService(repository=fake_status)

    with pytest.raises(ValueError):
        await queue.enqueue(TENANT_ID, "ticket", "1")


@pytest.mark.asyncio
async def test_process_item_completes(fake_status):
    queue = ScoringQueueService(repository=fake_status)
    await queue.enqueue(TENANT_ID, "contact", "1")
    [item] = await queue.claim(TENANT_ID, 10)

    result = await queue.process_item(StubEngine(), item)

    assert result == {"score": 75}
    assert fake_status.items[(TENANT_ID, "contact", "1")].status == QueueStatus.COMPLETED


@pytest.mark.asyncio
async def test_process_item_marks_failure(fake_status):
    queue = ScoringQueueService(repository=fake_status)
    await queue.enqueue(TENANT_ID, "contact", "1")
    [item] = await queue.claim(TENANT_ID, 10)

    result = await queue.process_item(StubEngine(RuntimeError("oracle down")), item)

    stored = fake_status.items[(TENANT_ID, "contact", "1")]
    assert result is None
    assert stored.status == QueueStatus.FAILED
    assert stored.error == "oracle down"


@pytest.mark.asyncio
async def test_process_item_reraises_quota(fake_status):
    queue = ScoringQueueService(repository=fake_status)
    await queue.enqueue(TENANT_ID, "deal", "3")
    [item] = await queue.claim(TENANT_ID, 10)
    error = QuotaExceededError("limit", TENANT_ID, remaining=0, reset_at=None, used=50, limit=50)

    with pytest.raises(QuotaExceededError):
        await queue.process_item(StubEngine(error), item)

    stored = fake_status.items[(TENANT_ID, "deal", "3")]
    assert stored.status == QueueStatus.FAILED
    assert stored.error.startswith("quota exceeded")


@pytest.mark.asyncio
async def test_claim_and_summary(fake_status):
    queue = ScoringQueueService(repository=fake_status)
    for record_id in ("1", "2", "3"):
        await queue.enqueue(TENANT_ID, "company", record_id)

    claimed = await queue.claim(TENANT_ID, 2)
    summary = await queue.summary(TENANT_ID)

    assert len(claimed) == 2
    assert all(item.status == QueueStatus.IN_PROGRESS for item in claimed)
    assert summary == {"queued": 1, "in_progress": 2, "completed": 0, "failed": 0}
