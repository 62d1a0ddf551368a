"""
Pinecone data-plane client over httpx.
Query, upsert, fetch-by-id and namespace deletion against a single index host.
"""

import asyncio

import httpx
import structlog

from fitscore.config import settings
from fitscore.infrastructure.observability.logging import component_logger
from fitscore.models.domain.documents import Metadata, Vector, VectorMatch

REQUEST_TIMEOUT = 30
MAX_RETRIES = 3
BACKOFF_FACTOR = 2
RETRY_STATUS_CODES = {500, 502, 503, 504}


class VectorStoreError(Exception):
    """Custom exception for vector store errors."""

    def __init__(self, message: str, status_code: int | None = None, recoverable: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.recoverable = recoverable


class PineconeClient:
    def __init__(
        self,
        *,
        api_key: str | None = None,
        index_host: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        self._api_key = api_key or settings.PINECONE_API_KEY
        host = index_host or settings.PINECONE_INDEX_HOST
        if not self._api_key or not host:
            raise VectorStoreError(
                "PINECONE_API_KEY and PINECONE_INDEX_HOST must be configured", recoverable=False
            )
        self._base_url = host if host.startswith("http") else f"https://{host}"
        self._base_url = self._base_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(REQUEST_TIMEOUT))
        self._log = component_logger(__name__, logger, component="pinecone_client")

    async def close(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict:
        return {
            "Api-Key": self._api_key,
            "Content-Type": "application/json",
            "X-Pinecone-API-Version": settings.PINECONE_API_VERSION,
        }

    async def _request(self, method: str, path: str, operation: str, **kwargs) -> dict:
        url = f"{self._base_url}{path}"
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = await self._client.request(method, url, headers=self._headers(), **kwargs)
            except httpx.RequestError as e:
                if attempt >= MAX_RETRIES:
                    raise VectorStoreError(f"Pinecone {operation} request failed: {e}") from e
                await asyncio.sleep(BACKOFF_FACTOR * (2 ** (attempt - 1)))
                continue

            if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                backoff = BACKOFF_FACTOR * (2 ** (attempt - 1))
                self._log.debug(
                    "Pinecone retrying request",
                    operation=operation,
                    status_code=response.status_code,
                    backoff_seconds=backoff,
                )
                await asyncio.sleep(backoff)
                continue

            if not response.is_success:
                self._log.warning(
                    "Pinecone request failed",
                    operation=operation,
                    status_code=response.status_code,
                    response_text=response.text[:200],
                )
                raise VectorStoreError(
                    f"Pinecone {operation} failed (HTTP {response.status_code})",
                    status_code=response.status_code,
                    recoverable=response.status_code >= 500,
                )
            try:
                return response.json() if response.text else {}
            except ValueError as e:
                raise VectorStoreError(f"Invalid Pinecone {operation} response: {e}") from e
        raise RuntimeError("Pinecone retry loop exhausted")

    async def query(
        self,
        namespace: str,
        vector: list[float] | None,
        filter: Metadata | None = None,
        top_k: int = 5,
        *,
        ids: list[str] | None = None,
    ) -> list[VectorMatch]:
        """
        Similarity query within ``namespace``.

        Without a vector the call falls back to an id lookup, which needs ``ids``.
        """
        if vector is None:
            if not ids:
                raise VectorStoreError("query needs a vector or ids", recoverable=False)
            return await self.fetch_by_ids(ids, namespace)

        body: dict = {
            "namespace": namespace,
            "vector": vector,
            "topK": top_k,
            "includeMetadata": True,
            "includeValues": False,
        }
        if filter:
            body["filter"] = {key: {"$eq": value} for key, value in filter.items()}

        data = await self._request("POST", "/query", "query", json=body)
        return [
            VectorMatch(
                id=str(match["id"]),
                score=float(match.get("score") or 0.0),
                metadata=match.get("metadata") or {},
            )
            for match in data.get("matches", [])
        ]

    async def upsert(self, namespace: str, vectors: list[Vector]) -> int:
        if not vectors:
            return 0
        data = await self._request(
            "POST",
            "/vectors/upsert",
            "upsert",
            json={"namespace": namespace, "vectors": [v.to_payload() for v in vectors]},
        )
        return int(data.get("upsertedCount", len(vectors)))

    async def fetch_by_ids(self, ids: list[str], namespace: str) -> list[VectorMatch]:
        """Fetch existing vectors; ids that are not stored are simply absent."""
        if not ids:
            return []
        params = [("ids", vector_id) for vector_id in ids] + [("namespace", namespace)]
        data = await self._request("GET", "/vectors/fetch", "fetch", params=params)
        return [
            VectorMatch(id=str(vector_id), score=1.0, metadata=item.get("metadata") or {})
            for vector_id, item in (data.get("vectors") or {}).items()
        ]

    async def delete_namespace(self, namespace: str) -> bool:
        """Delete every vector in ``namespace``. A missing namespace counts as deleted."""
        try:
            await self._request(
                "POST",
                "/vectors/delete",
                "delete_namespace",
                json={"namespace": namespace, "deleteAll": True},
            )
        except VectorStoreError as e:
            if e.status_code == 404:
                self._log.info("Namespace already absent", namespace=namespace)
                return False
            raise
        self._log.info("Namespace deleted", namespace=namespace)
        return True
