"""Tests for the Cohere embedding client."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from supportflow.services.cache import EmbeddingCache
from supportflow.services.embeddings import (
    MAX_BATCH_SIZE,
    MAX_RETRIES,
    EmbeddingAPIError,
    EmbeddingClient,
    EmbeddingMode,
)

# ── Helpers ──────────────────────────────────────────────────────────


def _embed_handler(requests: list[dict], *, fail_with: list[int] | None = None):
    """Mock transport handler: records request bodies, replies with one
    2-d vector per text.  ``fail_with`` lists status codes to return first.
    """
    failures = list(fail_with or [])

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        requests.append(body)
        if failures:
            return httpx.Response(failures.pop(0), text="boom")
        vectors = [[float(len(t)), 1.0] for t in body["texts"]]
        return httpx.Response(200, json={"embeddings": {"float": vectors}})

    return handler


def _client(handler, cache: EmbeddingCache | None = None) -> EmbeddingClient:
    return EmbeddingClient(
        "test-key", "https://cohere.test", cache=cache, transport=httpx.MockTransport(handler),
    )


# ── Request shape ────────────────────────────────────────────────────


class TestEmbedRequests:
    @pytest.mark.asyncio
    async def test_query_mode_sent_as_search_query(self):
        requests: list[dict] = []
        client = _client(_embed_handler(requests))
        vector = await client.embed_query("where is my order")
        assert vector == [17.0, 1.0]
        assert requests[0]["input_type"] == "search_query"
        assert requests[0]["embedding_types"] == ["float"]
        assert requests[0]["texts"] == ["where is my order"]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_document_mode_sent_as_search_document(self):
        requests: list[dict] = []
        client = _client(_embed_handler(requests))
        await client.embed_documents(["a", "bb"])
        assert requests[0]["input_type"] == "search_document"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_documents_are_batched(self):
        requests: list[dict] = []
        client = _client(_embed_handler(requests))
        texts = [f"text {i}" for i in range(MAX_BATCH_SIZE + 5)]
        vectors = await client.embed(texts, EmbeddingMode.DOCUMENT)
        assert len(vectors) == len(texts)
        assert [len(r["texts"]) for r in requests] == [MAX_BATCH_SIZE, 5]
        await client.aclose()

    @pytest.mark.asyncio
    async def test_authorization_header_is_sent(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"embeddings": {"float": [[1.0]]}})

        client = _client(handler)
        await client.embed_query("hi")
        assert seen[0].headers["Authorization"] == "Bearer test-key"
        assert seen[0].url.path == "/v2/embed"
        await client.aclose()


# ── Cache ────────────────────────────────────────────────────────────


class TestQueryCache:
    @pytest.mark.asyncio
    async def test_repeated_query_hits_cache(self):
        requests: list[dict] = []
        cache = EmbeddingCache()
        client = _client(_embed_handler(requests), cache=cache)
        first = await client.embed_query("shipping")
        second = await client.embed_query("shipping")
        assert first == second
        assert len(requests) == 1
        assert cache.hits == 1
        await client.aclose()

    @pytest.mark.asyncio
    async def test_documents_are_not_cached(self):
        requests: list[dict] = []
        client = _client(_embed_handler(requests))
        await client.embed_documents(["shipping"])
        await client.embed_documents(["shipping"])
        assert len(requests) == 2
        await client.aclose()


# ── Errors and retries ───────────────────────────────────────────────


class TestRetries:
    @pytest.mark.asyncio
    async def test_server_error_is_retried(self):
        requests: list[dict] = []
        client = _client(_embed_handler(requests, fail_with=[503]))
        with patch("supportflow.services.embeddings.asyncio.sleep", new=AsyncMock()) as sleep:
            vector = await client.embed_query("retry me")
        assert vector == [8.0, 1.0]
        assert len(requests) == 2
        sleep.assert_awaited_once()
        await client.aclose()

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        requests: list[dict] = []
        client = _client(_embed_handler(requests, fail_with=[500] * MAX_RETRIES))
        with patch("supportflow.services.embeddings.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(EmbeddingAPIError, match="after 3 retries"):
                await client.embed_query("never works")
        assert len(requests) == MAX_RETRIES
        await client.aclose()

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        requests: list[dict] = []
        client = _client(_embed_handler(requests, fail_with=[401]))
        with pytest.raises(EmbeddingAPIError) as exc_info:
            await client.embed_query("bad key")
        assert exc_info.value.status_code == 401
        assert len(requests) == 1
        await client.aclose()

    @pytest.mark.asyncio
    async def test_timeout_is_retried(self):
        attempts = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            attempts["count"] += 1
            if attempts["count"] == 1:
                raise httpx.ReadTimeout("slow", request=request)
            return httpx.Response(200, json={"embeddings": {"float": [[0.5, 0.5]]}})

        client = _client(handler)
        with patch("supportflow.services.embeddings.asyncio.sleep", new=AsyncMock()):
            assert await client.embed_query("slow") == [0.5, 0.5]
        assert attempts["count"] == 2
        await client.aclose()

    @pytest.mark.asyncio
    async def test_malformed_response_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"embeddings": {"float": []}})

        client = _client(handler)
        with pytest.raises(EmbeddingAPIError, match="Malformed"):
            await client.embed_query("x")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_failure_is_recorded_as_metric(self):
        client = _client(_embed_handler([], fail_with=[400]))
        with patch("supportflow.services.embeddings.metrics") as mock_metrics:
            with pytest.raises(EmbeddingAPIError):
                await client.embed_query("x")
        mock_metrics.record_failure.assert_called_once()
        assert mock_metrics.record_failure.call_args[0][:2] == ("cohere", "embed:search_query")
        await client.aclose()
