"""
Chunked embedding of documents with a cool-down between requests.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Protocol

import structlog

from fitscore.config import settings
from fitscore.infrastructure.observability.logging import component_logger
from fitscore.models.domain.documents import Document, EmbeddedDocument


class Embedder(Protocol):
    async def embed(self, texts: list[str]) -> list[list[float]]: ...


class EmbeddingError(Exception):
    """An embedding chunk failed; no embeddings from the call are usable."""

    def __init__(self, message: str, chunk_index: int | None = None, recoverable: bool = True):
        super().__init__(message)
        self.chunk_index = chunk_index
        self.recoverable = recoverable


class EmbeddingBatcher:
    def __init__(
        self,
        embedder: Embedder,
        *,
        batch_size: int | None = None,
        delay: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        self._embedder = embedder
        self._batch_size = batch_size or settings.EMBEDDING_BATCH_SIZE
        self._delay = settings.EMBEDDING_BATCH_DELAY_SECONDS if delay is None else delay
        self._sleep = sleep
        self._log = component_logger(__name__, logger, component="embedding_batcher")

    async def embed(self, documents: list[Document]) -> list[EmbeddedDocument]:
        embedded: list[EmbeddedDocument] = []
        chunks = [
            documents[start : start + self._batch_size]
            for start in range(0, len(documents), self._batch_size)
        ]

        for index, chunk in enumerate(chunks):
            if index > 0:
                await self._sleep(self._delay)

            try:
                vectors = await self._embedder.embed([doc.content for doc in chunk])
            except Exception as e:
                self._log.error(
                    "Embedding chunk failed", chunk_index=index, chunk_size=len(chunk), error=str(e)
                )
                raise EmbeddingError(f"Embedding chunk {index} failed: {e}", chunk_index=index) from e

            if len(vectors) != len(chunk):
                raise EmbeddingError(
                    f"Embedding chunk {index} returned {len(vectors)} vectors for {len(chunk)} documents",
                    chunk_index=index,
                )
            embedded.extend(
                EmbeddedDocument(document=doc, embedding=vector) for doc, vector in zip(chunk, vectors)
            )

        self._log.debug("Documents embedded", documents=len(documents), chunks=len(chunks))
        return embedded
