"""Knowledge-base retriever: text query → ranked chunks.

Composes the embedding client (query mode) with an exact
:class:`~supportflow.retrieval.similarity.SimilarityIndex` over whatever
the knowledge-base repository currently holds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from supportflow.retrieval.similarity import SimilarityIndex
from supportflow.storage.base import KnowledgeBaseRepository

logger = logging.getLogger(__name__)

NO_RESULTS_TEXT = "No relevant information found in the knowledge base."


class QueryEmbedder(Protocol):
    async def embed_query(self, text: str) -> list[float]: ...


@dataclass(frozen=True)
class RetrievedChunk:
    content: str
    source: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def relevance(self) -> str:
        """Similarity as a percentage string, e.g. ``"87.3%"``."""
        return f"{self.score * 100:.1f}%"

    def summary(self, excerpt_chars: int = 150) -> dict[str, Any]:
        """Short source card attached to answers and stored with messages."""
        excerpt = self.content
        if len(excerpt) > excerpt_chars:
            excerpt = excerpt[:excerpt_chars] + "..."
        return {"content": excerpt, "source": self.source, "relevance": self.relevance}


class Retriever:
    def __init__(self, embedder: QueryEmbedder, knowledge_base: KnowledgeBaseRepository):
        self._embedder = embedder
        self._knowledge_base = knowledge_base

    async def retrieve(self, query: str, k: int = 3) -> list[RetrievedChunk]:
        """Return up to *k* chunks most similar to *query*, best first.

        An empty knowledge base is a normal condition and yields ``[]``
        without calling the embedding provider.
        """
        chunks = await self._knowledge_base.all_chunks()
        if not chunks:
            logger.warning("Knowledge base is empty; retrieval returns no context")
            return []

        index = SimilarityIndex(chunks)
        query_vector = await self._embedder.embed_query(query)
        results = index.search(query_vector, k)

        logger.debug(
            "Retrieved %d/%d chunks for %r (top score %.4f)",
            len(results), len(index), query[:60], results[0].score if results else 0.0,
        )
        return [
            RetrievedChunk(
                content=r.chunk.content,
                source=r.chunk.source,
                score=r.score,
                metadata=dict(r.chunk.metadata),
            )
            for r in results
        ]

    async def search_context(self, query: str, k: int = 3) -> str:
        """Retrieve and render results as one context block for a prompt."""
        results = await self.retrieve(query, k)
        if not results:
            return NO_RESULTS_TEXT
        return "\n\n---\n\n".join(
            f"[Chunk {i}] (Relevance: {r.relevance})\n{r.content}"
            for i, r in enumerate(results, start=1)
        )
