"""
Tests for the job and scoring endpoints.
"""

from datetime import UTC, datetime

import pytest
from fastapi.testclient import TestClient

from conftest import TENANT_ID, FakeStatusRepository
from fitscore.features.scoring.queue_service import ScoringQueueService
from fitscore.features.scoring.quota import QuotaExceededError
from fitscore.main import app
from fitscore.models.api.job_response import JobSummary, TenantJobSummary
from fitscore.models.domain.scoring import ClassificationStats, ScoringResult
from fitscore.routes.jobs import get_scoring_job, get_tenant_repository, get_training_job
from fitscore.services.tenant_context import TenantNotFoundError

RESET_AT = datetime(2026, 11, 1, tzinfo=UTC)


class StubTrainingJob:
    def __init__(self):
        self.runs: list[str | None] = []
        self.deal_error: Exception | None = None

    async def run_once(self, tenant_id=None):
        self.runs.append(tenant_id)
        return JobSummary(
            success=True,
            processed=3,
            failed=1,
            tenants=[TenantJobSummary(tenant_id=TENANT_ID, processed=3, failed=1, upserted=7)],
        )

    async def train_deal(self, tenant_id, deal_id, classification):
        if self.deal_error:
            raise self.deal_error
        return {"deal_id": deal_id, "status": "completed", "upserted": 3}

    async def delete_tenant_index(self, tenant_id):
        return True


class StubScoringJob:
    def __init__(self):
        self.queue = ScoringQueueService(repository=FakeStatusRepository())
        self.score_error: Exception | None = None
        self.runs: list[tuple] = []

    async def run_once(self, tenant_id=None, limit=None):
        self.runs.append((tenant_id, limit))
        return JobSummary(success=True, processed=0, failed=0)

    async def score_now(self, tenant_id, kind, record_id):
        if self.score_error:
            raise self.score_error
        return ScoringResult(score=77, summary="Summary: Solid fit.", last_scored=RESET_AT)


@pytest.fixture
def jobs(apply_auth_override):
    training, scoring = StubTrainingJob(), StubScoringJob()
    apply_auth_override(app)
    app.dependency_overrides[get_training_job] = lambda: training
    app.dependency_overrides[get_scoring_job] = lambda: scoring
    yield training, scoring
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    return TestClient(app)


def test_requires_bearer_token(client):
    assert client.post("/jobs/training").status_code in (401, 403)

    response = client.post("/jobs/training", headers={"Authorization": "Bearer wrong"})
    assert response.status_code == 401


def test_training_run_returns_summary(client, jobs):
    training, _ = jobs

    response = client.post("/jobs/training", json={"tenant_id": TENANT_ID})

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["processed"] == 3
    assert data["tenants"][0]["upserted"] == 7
    assert training.runs == [TENANT_ID]


def test_training_run_without_body_runs_every_tenant(client, jobs):
    training, _ = jobs

    client.post("/jobs/training")

    assert training.runs == [None]


def test_train_single_deal(client, jobs):
    response = client.post(
        "/jobs/training/deals/42", json={"tenant_id": TENANT_ID, "classification": "ideal"}
    )

    assert response.status_code == 200
    assert response.json()["status"] == "completed"


@pytest.mark.parametrize(
    ("error", "status_code"),
    [(TenantNotFoundError("999"), 404), (ValueError("Unknown classification 'great'"), 422)],
)
def test_train_single_deal_errors(client, jobs, error, status_code):
    training, _ = jobs
    training.deal_error = error

    response = client.post(
        "/jobs/training/deals/42", json={"tenant_id": "999", "classification": "ideal"}
    )

    assert response.status_code == status_code


def test_train_single_deal_unexpected_error_is_reported(client, jobs):
    training, _ = jobs
    training.deal_error = RuntimeError("pinecone unavailable")

    response = client.post(
        "/jobs/training/deals/42", json={"tenant_id": TENANT_ID, "classification": "ideal"}
    )

    assert response.status_code == 200
    assert response.json() == {
        "success": False,
        "processed": 0,
        "failed": 1,
        "error": "pinecone unavailable",
    }


def test_scoring_run_passes_limit(client, jobs):
    _, scoring = jobs

    response = client.post("/jobs/scoring", json={"tenant_id": TENANT_ID, "limit": 5})

    assert response.status_code == 200
    assert scoring.runs == [(TENANT_ID, 5)]


def test_delete_tenant_index(client, jobs):
    response = client.delete(f"/tenants/{TENANT_ID}/index")

    assert response.json() == {"tenant_id": TENANT_ID, "deleted": True}


def test_enqueue_and_summary(client, jobs):
    response = client.post(
        "/scoring/requests",
        json={"tenant_id": TENANT_ID, "record_kind": "contact", "record_id": "101"},
    )

    assert response.status_code == 202
    assert response.json()["status"] == "queued"

    summary = client.get(f"/scoring/{TENANT_ID}/summary").json()
    assert summary["counts"]["queued"] == 1
    assert summary["total"] == 1


def test_enqueue_rejects_unknown_kind(client, jobs):
    response = client.post(
        "/scoring/requests",
        json={"tenant_id": TENANT_ID, "record_kind": "ticket", "record_id": "1"},
    )

    assert response.status_code == 422


def test_score_now(client, jobs):
    response = client.post(f"/scoring/{TENANT_ID}/deal/7")

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["score"] == 77
    assert data["record_kind"] == "deal"


def test_score_now_quota_exceeded(client, jobs):
    _, scoring = jobs
    scoring.score_error = QuotaExceededError(
        "Scoring limit reached", TENANT_ID, remaining=0, reset_at=RESET_AT, used=50, limit=50
    )

    response = client.post(f"/scoring/{TENANT_ID}/contact/101")

    assert response.status_code == 429
    data = response.json()
    assert data["remaining"] == 0
    assert data["reset_at"] == RESET_AT.isoformat()


def test_score_now_unknown_tenant(client, jobs):
    _, scoring = jobs
    scoring.score_error = TenantNotFoundError("999")

    assert client.post("/scoring/999/contact/1").status_code == 404


def test_score_now_unknown_kind(client, jobs):
    assert client.post(f"/scoring/{TENANT_ID}/ticket/1").status_code == 422


def test_enqueue_batch(client, jobs):
    response = client.post(
        "/scoring/requests/batch",
        json={
            "tenant_id": TENANT_ID,
            "records": [
                {"record_kind": "contact", "record_id": "101"},
                {"record_kind": "deal", "record_id": "7"},
                {"record_kind": "contact", "record_id": "101"},
            ],
        },
    )

    assert response.status_code == 202
    items = response.json()["items"]
    assert [(i["record_kind"], i["record_id"], i["status"]) for i in items] == [
        ("contact", "101", "queued"),
        ("deal", "7", "queued"),
        ("contact", "101", "queued"),
    ]
    assert client.get(f"/scoring/{TENANT_ID}/summary").json()["total"] == 2


@pytest.mark.parametrize(
    "records",
    [[], [{"record_kind": "ticket", "record_id": "1"}]],
)
def test_enqueue_batch_rejects_bad_bodies(client, jobs, records):
    response = client.post(
        "/scoring/requests/batch", json={"tenant_id": TENANT_ID, "records": records}
    )

    assert response.status_code == 422


def test_training_summary(client, jobs, fake_tenants):
    trained_at = datetime(2026, 10, 1, 12, 0, tzinfo=UTC)
    fake_tenants.stats[(TENANT_ID, "ideal")] = ClassificationStats(
        low=12000, high=30000, median=21000, count=2
    )
    fake_tenants.completed.append((TENANT_ID, 2, 0))
    fake_tenants.trained_at[TENANT_ID] = trained_at
    app.dependency_overrides[get_tenant_repository] = lambda: fake_tenants

    response = client.get(f"/tenants/{TENANT_ID}/training/summary")

    assert response.status_code == 200
    data = response.json()
    assert data["tenant_id"] == TENANT_ID
    assert data["ideal"]["median"] == 21000
    assert data["ideal"]["count"] == 2
    assert data["ideal"]["trained_deals"] == 2
    assert data["ideal"]["last_trained"].startswith("2026-10-01T12:00:00")
    assert data["nonideal"]["count"] == 0
    assert data["nonideal"]["trained_deals"] == 0


def test_training_summary_before_any_training(client, jobs, fake_tenants):
    app.dependency_overrides[get_tenant_repository] = lambda: fake_tenants

    data = client.get(f"/tenants/{TENANT_ID}/training/summary").json()

    assert data["last_training_date"] is None
    assert data["ideal"] == {
        "low": 0,
        "high": 0,
        "median": 0,
        "count": 0,
        "last_trained": None,
        "trained_deals": 0,
    }


def test_training_summary_unknown_tenant(client, jobs, fake_tenants):
    app.dependency_overrides[get_tenant_repository] = lambda: fake_tenants

    assert client.get("/tenants/999/training/summary").status_code == 404
