"""
Tests for the Pinecone data-plane client, over a mock transport.
"""

import json

import httpx
import pytest

from fitscore.models.domain.documents import Vector
from fitscore.services.vectorstore.pinecone_client import PineconeClient, VectorStoreError


def _client(handler) -> PineconeClient:
    return PineconeClient(
        api_key="pc-test",
        index_host="index.test",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


@pytest.mark.asyncio
async def test_query_builds_eq_filter():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        seen["key"] = request.headers["Api-Key"]
        return httpx.Response(
            200, json={"matches": [{"id": "deal-1", "score": 0.91, "metadata": {"record_type": "deal"}}]}
        )

    matches = await _client(handler).query(
        "hubspot-1", [0.1, 0.2], {"record_type": "deal", "tenant_id": "1"}, top_k=3
    )

    assert seen["key"] == "pc-test"
    assert seen["body"]["topK"] == 3
    assert seen["body"]["filter"] == {"record_type": {"$eq": "deal"}, "tenant_id": {"$eq": "1"}}
    assert matches[0].id == "deal-1"
    assert matches[0].score == 0.91


@pytest.mark.asyncio
async def test_query_without_vector_fetches_ids():
    def handler(request):
        assert request.url.path == "/vectors/fetch"
        return httpx.Response(200, json={"vectors": {"deal-1": {"metadata": {"a": 1}}}})

    matches = await _client(handler).query("hubspot-1", None, ids=["deal-1"])

    assert [m.id for m in matches] == ["deal-1"]

    with pytest.raises(VectorStoreError):
        await _client(handler).query("hubspot-1", None)


@pytest.mark.asyncio
async def test_fetch_returns_only_stored_ids():
    def handler(request):
        assert request.url.params.get_list("ids") == ["deal-1", "deal-2"]
        assert request.url.params["namespace"] == "hubspot-1"
        return httpx.Response(200, json={"vectors": {"deal-2": {"metadata": {"deal_value": 5.0}}}})

    matches = await _client(handler).fetch_by_ids(["deal-1", "deal-2"], "hubspot-1")

    assert [(m.id, m.metadata) for m in matches] == [("deal-2", {"deal_value": 5.0})]


@pytest.mark.asyncio
async def test_upsert_sends_payload():
    def handler(request):
        body = json.loads(request.content)
        assert body["namespace"] == "hubspot-1"
        assert body["vectors"][0] == {"id": "deal-1", "values": [1.0], "metadata": {"x": "y"}}
        return httpx.Response(200, json={"upsertedCount": 1})

    count = await _client(handler).upsert("hubspot-1", [Vector("deal-1", [1.0], {"x": "y"})])

    assert count == 1


@pytest.mark.asyncio
async def test_empty_upsert_makes_no_request():
    def handler(request):
        raise AssertionError("no request expected")

    assert await _client(handler).upsert("hubspot-1", []) == 0


@pytest.mark.asyncio
async def test_delete_missing_namespace_returns_false():
    responses = iter([httpx.Response(200, json={}), httpx.Response(404, text="not found")])
    client = _client(lambda request: next(responses))

    assert await client.delete_namespace("hubspot-1") is True
    assert await client.delete_namespace("hubspot-1") is False


@pytest.mark.asyncio
async def test_client_errors_raise():
    with pytest.raises(VectorStoreError) as exc_info:
        await _client(lambda request: httpx.Response(400, text="bad")).upsert(
            "hubspot-1", [Vector("deal-1", [1.0])]
        )
    assert exc_info.value.status_code == 400
    assert exc_info.value.recoverable is False


def test_missing_configuration_is_rejected(monkeypatch):
    monkeypatch.setattr("fitscore.services.vectorstore.pinecone_client.settings.PINECONE_API_KEY", None)

    with pytest.raises(VectorStoreError):
        PineconeClient(index_host="index.test")
