"""
Tests for incremental vector writes.
"""

import pytest

from conftest import TENANT_ID
from fitscore.features.training.document_packager import DocumentPackager
from fitscore.features.training.vector_diff import VectorDiffEngine, has_changed
from fitscore.models.domain.documents import EmbeddedDocument, Vector
from fitscore.models.domain.records import parse_record

NAMESPACE = f"hubspot-{TENANT_ID}"

BASE_DEAL = {
    "amount": "1200",
    "dealstage": "closedwon",
    "pipeline": "default",
    "createdate": "2024-01-01T00:00:00Z",
    "closedate": "2024-01-11T00:00:00Z",
    "hs_time_in_pipeline": "10",
}


def _candidate(deal_id: str = "1", **overrides) -> EmbeddedDocument:
    deal = parse_record("deal", {"id": deal_id, "properties": {**BASE_DEAL, **overrides}})
    document = DocumentPackager().package(
        deal, TENANT_ID, extra_metadata=deal.linkage_metadata("ideal")
    )
    return EmbeddedDocument(document=document, embedding=[0.1, 0.2, 0.3])


async def _seed(store, candidate: EmbeddedDocument):
    await store.upsert(
        NAMESPACE,
        [Vector(id=candidate.vector_id, values=candidate.embedding, metadata=dict(candidate.metadata))],
    )
    store.upsert_calls.clear()


@pytest.mark.asyncio
async def test_new_vectors_are_upserted(fake_store):
    engine = VectorDiffEngine(fake_store)

    result = await engine.diff_and_upsert([_candidate("1"), _candidate("2")], NAMESPACE)

    assert result.upserted == 2
    assert result.upserted_ids == ["deal-1", "deal-2"]
    assert set(fake_store.namespaces[NAMESPACE]) == {"deal-1", "deal-2"}


@pytest.mark.asyncio
async def test_unchanged_vectors_are_skipped(fake_store):
    engine = VectorDiffEngine(fake_store)
    await _seed(fake_store, _candidate("1"))

    result = await engine.diff_and_upsert([_candidate("1")], NAMESPACE)

    assert result.upserted == 0
    assert result.skipped == 1
    assert fake_store.upsert_calls == []


@pytest.mark.parametrize(
    "overrides",
    [
        {"amount": "1300"},
        {"closedate": "2024-01-21T00:00:00Z"},
        {"pipeline": "enterprise"},
        {"dealstage": "closedlost"},
        {"hs_time_in_pipeline": "11"},
    ],
)
@pytest.mark.asyncio
async def test_any_comparison_field_change_triggers_upsert(fake_store, overrides):
    engine = VectorDiffEngine(fake_store)
    await _seed(fake_store, _candidate("1"))

    result = await engine.diff_and_upsert([_candidate("1", **overrides)], NAMESPACE)

    assert result.upserted == 1
    assert fake_store.upsert_calls == [["deal-1"]]


@pytest.mark.asyncio
async def test_fetch_failure_upserts_everything(fake_store):
    engine = VectorDiffEngine(fake_store)
    await _seed(fake_store, _candidate("1"))
    fake_store.fail_fetch = True

    result = await engine.diff_and_upsert([_candidate("1"), _candidate("2")], NAMESPACE)

    assert result.existence_check_failed is True
    assert result.upserted == 2


@pytest.mark.asyncio
async def test_batches_fetches_and_upserts(fake_store):
    engine = VectorDiffEngine(fake_store, fetch_batch_size=2, upsert_batch_size=2)

    await engine.diff_and_upsert([_candidate(str(i)) for i in range(5)], NAMESPACE)

    assert [len(ids) for ids in fake_store.fetch_calls] == [2, 2, 1]
    assert [len(ids) for ids in fake_store.upsert_calls] == [2, 2, 1]


def test_numbers_compare_by_value():
    assert not has_changed({"deal_value": 1200}, {"deal_value": 1200.0}, ["deal_value"])
    assert has_changed({"pipeline": "a"}, {}, ["pipeline"])


def test_comparison_fields_are_configurable():
    assert not has_changed(
        {"deal_value": 1, "pipeline": "a"}, {"deal_value": 2, "pipeline": "a"}, ["pipeline"]
    )
