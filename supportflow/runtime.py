"""Composition root: builds every client the agent needs and closes them.

The server's lifespan and the CLI both go through :func:`open_runtime`,
so there is exactly one place where connection pools are opened and one
(:meth:`Runtime.aclose`) where they are released.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from langchain_core.language_models import BaseChatModel
from pymongo import AsyncMongoClient

from supportflow import config
from supportflow.agent import ALL_TOOLS, SupportAgent
from supportflow.memory import ConversationMemory
from supportflow.retrieval.retriever import QueryEmbedder, Retriever
from supportflow.services.embeddings import EmbeddingClient
from supportflow.services.llm import ChatModelClient, build_chat_model
from supportflow.storage.base import (
    CommerceRepository,
    KnowledgeBaseRepository,
    ThreadRepository,
)
from supportflow.storage.memory import (
    InMemoryCommerceRepository,
    InMemoryKnowledgeBaseRepository,
    InMemoryThreadRepository,
)
from supportflow.storage.mongo import (
    MongoCommerceRepository,
    MongoKnowledgeBaseRepository,
    MongoThreadRepository,
    connect,
)
from supportflow.tools.registry import ToolContext, ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    agent: SupportAgent
    memory: ConversationMemory
    knowledge_base: KnowledgeBaseRepository
    commerce: CommerceRepository
    storage_backend: str
    embedder: QueryEmbedder
    mongo_client: AsyncMongoClient | None = None
    _closed: bool = field(default=False, repr=False)

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if isinstance(self.embedder, EmbeddingClient):
            await self.embedder.aclose()
        if self.mongo_client is not None:
            await self.mongo_client.close()
        logger.info("Runtime closed")


async def _open_storage(
    backend: str,
) -> tuple[ThreadRepository, KnowledgeBaseRepository, CommerceRepository, AsyncMongoClient | None]:
    if backend == "memory":
        logger.warning("Using in-memory storage; data is lost on restart")
        return (
            InMemoryThreadRepository(),
            InMemoryKnowledgeBaseRepository(),
            InMemoryCommerceRepository(),
            None,
        )
    if backend == "mongo":
        client = connect(config.MONGODB_URI)
        threads = MongoThreadRepository(client, config.MONGODB_DATABASE)
        try:
            await threads.ensure_indexes()
        except Exception:
            await client.close()
            raise
        logger.info("Connected to MongoDB database %s", config.MONGODB_DATABASE)
        return (
            threads,
            MongoKnowledgeBaseRepository(client, config.MONGODB_DATABASE),
            MongoCommerceRepository(client, config.MONGODB_DATABASE),
            client,
        )
    raise ValueError(f"Unknown STORAGE_BACKEND {backend!r}; expected 'memory' or 'mongo'")


async def open_runtime(
    *,
    storage_backend: str | None = None,
    chat_model: BaseChatModel | None = None,
    embedder: QueryEmbedder | None = None,
    chunk_delay: float | None = None,
) -> Runtime:
    """Open storage and provider clients and wire the agent together.

    *chat_model* and *embedder* replace the configured providers (tests
    pass fakes here).
    """
    backend = (storage_backend or config.STORAGE_BACKEND).lower()
    threads, knowledge_base, commerce, mongo_client = await _open_storage(backend)

    owned_embedder = None
    try:
        model = chat_model or build_chat_model(
            provider=config.MODEL_PROVIDER,
            model_name=config.MODEL_NAME,
            api_key=config.ANTHROPIC_API_KEY,
            temperature=config.MODEL_TEMPERATURE,
            max_tokens=config.MODEL_MAX_TOKENS,
        )
        llm = ChatModelClient(model, config.MODEL_NAME, provider=config.MODEL_PROVIDER)
        if embedder is None:
            embedder = owned_embedder = EmbeddingClient(config.COHERE_API_KEY, config.COHERE_BASE_URL)

        memory = ConversationMemory(threads)
        retriever = Retriever(embedder, knowledge_base)
        registry = ToolRegistry(
            ALL_TOOLS,
            ToolContext(
                commerce=commerce,
                retriever=retriever,
                memory=memory,
                refund_window_default_days=config.REFUND_WINDOW_DEFAULT_DAYS,
            ),
        )
        agent = SupportAgent(
            llm,
            retriever,
            registry,
            top_k=config.RETRIEVAL_TOP_K,
            chunk_delay=config.STREAM_CHUNK_DELAY_SECONDS if chunk_delay is None else chunk_delay,
        )
    except Exception:
        logger.exception("Runtime startup failed; releasing opened clients")
        if owned_embedder is not None:
            await owned_embedder.aclose()
        if mongo_client is not None:
            await mongo_client.close()
        raise

    logger.info(
        "Runtime ready (storage=%s, model=%s, tools=%d)", backend, config.MODEL_NAME, len(ALL_TOOLS),
    )
    return Runtime(
        agent=agent,
        memory=memory,
        knowledge_base=knowledge_base,
        commerce=commerce,
        storage_backend=backend,
        embedder=embedder,
        mongo_client=mongo_client,
    )
