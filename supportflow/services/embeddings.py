"""Async HTTP client for the Cohere embedding API with retry logic and an
in-memory LRU cache for query vectors.

Cohere API docs: https://docs.cohere.com/reference/embed
Cohere's v3 models embed asymmetrically: a query and a stored passage with
the same text get different vectors.  Every call therefore carries an
explicit :class:`EmbeddingMode`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import StrEnum
from typing import Any

import httpx

from supportflow.config import COHERE_API_KEY, COHERE_BASE_URL, EMBEDDING_MODEL
from supportflow.services.cache import EmbeddingCache
from supportflow.services.metrics import metrics

logger = logging.getLogger(__name__)

# ── Retry configuration ─────────────────────────────────────────────
MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0
REQUEST_TIMEOUT_SECONDS = 15.0

# Cohere accepts at most 96 texts per embed request
MAX_BATCH_SIZE = 96


class EmbeddingMode(StrEnum):
    QUERY = "search_query"
    DOCUMENT = "search_document"


class EmbeddingAPIError(Exception):
    """Raised when an embedding call fails after all retries."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class EmbeddingClient:
    """Thin async wrapper around ``POST /v2/embed``.

    Only query-mode vectors are cached: document embedding happens in bulk
    during ingestion and each text is embedded once.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        *,
        model: str | None = None,
        cache: EmbeddingCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.model = model or EMBEDDING_MODEL
        self._client = httpx.AsyncClient(
            base_url=base_url or COHERE_BASE_URL,
            headers={
                "Authorization": f"Bearer {api_key or COHERE_API_KEY}",
                "Content-Type": "application/json",
            },
            timeout=REQUEST_TIMEOUT_SECONDS,
            transport=transport,
        )
        self._cache = cache or EmbeddingCache()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── Internal helpers ─────────────────────────────────────────────

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        """POST to the embed endpoint with exponential-backoff retries."""
        last_error: Exception | None = None
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = await self._client.post("/v2/embed", json=payload)
                if response.status_code >= 500:
                    raise EmbeddingAPIError(
                        f"Server error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                if response.status_code >= 400:
                    raise EmbeddingAPIError(
                        f"Client error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                return response.json()

            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                last_error = exc
                logger.warning(
                    "Embedding API attempt %d/%d failed (%s). Retrying in %.1fs…",
                    attempt,
                    MAX_RETRIES,
                    type(exc).__name__,
                    INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)),
                )
            except EmbeddingAPIError as exc:
                if exc.status_code and exc.status_code >= 500:
                    last_error = exc
                    logger.warning(
                        "Embedding API server error on attempt %d/%d. Retrying…",
                        attempt,
                        MAX_RETRIES,
                    )
                else:
                    raise  # 4xx errors are not retried

            if attempt < MAX_RETRIES:
                await asyncio.sleep(INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)))

        raise EmbeddingAPIError(
            f"Embedding request failed after {MAX_RETRIES} retries: {last_error}"
        )

    async def _embed_batch(self, texts: list[str], mode: EmbeddingMode) -> list[list[float]]:
        payload = {
            "model": self.model,
            "texts": texts,
            "input_type": mode.value,
            "embedding_types": ["float"],
        }
        t0 = time.perf_counter()
        try:
            data = await self._post(payload)
        except EmbeddingAPIError as exc:
            metrics.record_failure(
                "cohere", f"embed:{mode.value}",
                error_type=type(exc).__name__,
                latency_ms=(time.perf_counter() - t0) * 1000,
            )
            raise
        metrics.record_success(
            "cohere", f"embed:{mode.value}", latency_ms=(time.perf_counter() - t0) * 1000,
        )

        vectors = data.get("embeddings", {}).get("float")
        if not isinstance(vectors, list) or len(vectors) != len(texts):
            raise EmbeddingAPIError(
                f"Malformed embed response: expected {len(texts)} vectors"
            )
        return vectors

    # ── Public API ───────────────────────────────────────────────────

    async def embed(self, texts: list[str], mode: EmbeddingMode) -> list[list[float]]:
        """Embed *texts* in the given *mode*, batching as the API requires."""
        vectors: list[list[float]] = []
        for i in range(0, len(texts), MAX_BATCH_SIZE):
            vectors.extend(await self._embed_batch(texts[i : i + MAX_BATCH_SIZE], mode))
        return vectors

    async def embed_query(self, text: str) -> list[float]:
        """Embed a user question for searching (cached)."""
        key = EmbeddingCache.key(EmbeddingMode.QUERY.value, text)
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Embedding cache hit for query %r", text[:60])
            return cached

        [vector] = await self._embed_batch([text], EmbeddingMode.QUERY)
        self._cache.put(key, vector)
        return vector

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed knowledge-base passages for storage."""
        return await self.embed(texts, EmbeddingMode.DOCUMENT)
