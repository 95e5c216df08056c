"""Shared test fixtures for the SupportFlow test suite."""

from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta

import pytest
from langchain_core.messages import AIMessage


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("COHERE_API_KEY", "test-cohere-key-456")
    os.environ.setdefault("METRICS_ENABLED", "false")
    os.environ.setdefault("STORAGE_BACKEND", "memory")
    os.environ.setdefault("STREAM_CHUNK_DELAY_SECONDS", "0")


# ── Fixed clock and seed data ───────────────────────────────────────

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

ALICE = "user-alice"
BOB = "user-bob"

ORDER_PROCESSING = "64b7f0c2e1d3a4b5c6d7e8f1"
ORDER_SHIPPED = "64b7f0c2e1d3a4b5c6d7e8f2"
ORDER_DELIVERED_BOB = "64b7f0c2e1d3a4b5c6d7e8f3"
ORDER_CANCELLED = "64b7f0c2e1d3a4b5c6d7e8f4"
UNKNOWN_ORDER = "000000000000000000000000"

PRODUCT_HEADPHONES = "65a1b2c3d4e5f60718293a41"
PRODUCT_KEYBOARD = "65a1b2c3d4e5f60718293a42"
PRODUCT_MUG = "65a1b2c3d4e5f60718293a43"

KB_DOCUMENTS = [
    ("shipping.md", "Shipping: standard shipping is free on orders over $50 and ships from our warehouse."),
    ("returns.md", "Return policy: items can be returned within 30 days of purchase for a full refund."),
    ("warranty.md", "Warranty: electronics carry a one-year manufacturer warranty."),
]

# Toy embedding space: one dimension per keyword.
VOCAB = ("shipping", "return", "refund", "order", "product", "warranty", "days", "policy")


def keyword_vector(text: str) -> list[float]:
    lowered = text.lower()
    return [float(lowered.count(word)) for word in VOCAB]


def make_orders():
    from supportflow.models import Order, OrderItem, OrderStatus, ShippingAddress

    address = ShippingAddress(address1="1 Main St", city="Springfield", country="US")
    return [
        Order(
            id=ORDER_PROCESSING, user_id=ALICE, status=OrderStatus.PROCESSING,
            items=[OrderItem(name="Wireless Headphones", quantity=1, price=79.99)],
            total_amount=79.99, shipping_address=address, created_at=NOW - timedelta(days=2),
        ),
        Order(
            id=ORDER_SHIPPED, user_id=ALICE, status=OrderStatus.SHIPPED,
            items=[OrderItem(name="Coffee Mug", quantity=2, price=12.5)],
            total_amount=25.0, shipping_address=address, created_at=NOW - timedelta(days=10),
        ),
        Order(
            id=ORDER_DELIVERED_BOB, user_id=BOB, status=OrderStatus.DELIVERED,
            items=[OrderItem(name="Mechanical Keyboard", quantity=1, price=129.0)],
            total_amount=129.0, created_at=NOW - timedelta(days=40),
            delivered_at=NOW - timedelta(days=35),
        ),
        Order(
            id=ORDER_CANCELLED, user_id=ALICE, status=OrderStatus.CANCELLED,
            items=[OrderItem(name="Coffee Mug", quantity=1, price=12.5)],
            total_amount=12.5, created_at=NOW - timedelta(days=5),
        ),
    ]


def make_products():
    from supportflow.models import Product

    return [
        Product(id=PRODUCT_HEADPHONES, name="Wireless Headphones",
                description="Noise-cancelling over-ear headphones", price=79.99,
                category="Electronics", stock=12),
        Product(id=PRODUCT_KEYBOARD, name="Mechanical Keyboard",
                description="Tenkeyless keyboard with brown switches", price=129.0,
                category="Electronics", stock=0),
        Product(id=PRODUCT_MUG, name="Coffee Mug", description="Ceramic mug, 350 ml",
                price=12.5, category="Kitchen", stock=40),
    ]


def make_chunks():
    from supportflow.models import KnowledgeChunk

    return [
        KnowledgeChunk(content=text, embedding=keyword_vector(text), source=source)
        for source, text in KB_DOCUMENTS
    ]


# ── Provider doubles ────────────────────────────────────────────────


class FakeEmbedder:
    """Deterministic query embedder over the keyword space."""

    def __init__(self):
        self.queries: list[str] = []

    async def embed_query(self, text: str) -> list[float]:
        self.queries.append(text)
        return keyword_vector(text)


class ScriptedChatModel:
    """Stands in for a LangChain chat model; replays canned responses in order.

    A response that is an exception instance is raised instead.
    """

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls: list[list] = []
        self.bindings: list[dict] = []

    def bind_tools(self, tools, tool_choice=None, **kwargs):
        self.bindings.append({"tools": list(tools), "tool_choice": tool_choice})
        return self

    async def ainvoke(self, messages, *args, **kwargs):
        self.calls.append(list(messages))
        if not self.responses:
            raise AssertionError("ScriptedChatModel ran out of responses")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


def ai_text(text: str) -> AIMessage:
    return AIMessage(content=text)


def ai_tool_calls(*calls: tuple[str, dict]) -> AIMessage:
    return AIMessage(
        content="",
        tool_calls=[
            {"name": name, "args": args, "id": f"toolu_{i}", "type": "tool_call"}
            for i, (name, args) in enumerate(calls, start=1)
        ],
    )


async def collect(stream) -> list:
    return [event async for event in stream]


# ── Fixtures ─────────────────────────────────────────────────────────


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def knowledge_base():
    from supportflow.storage.memory import InMemoryKnowledgeBaseRepository

    return InMemoryKnowledgeBaseRepository(make_chunks())


@pytest.fixture
def commerce():
    from supportflow.storage.memory import InMemoryCommerceRepository

    return InMemoryCommerceRepository(make_orders(), make_products())


@pytest.fixture
def thread_repo():
    from supportflow.storage.memory import InMemoryThreadRepository

    return InMemoryThreadRepository()


@pytest.fixture
def memory(thread_repo):
    from supportflow.memory import ConversationMemory

    return ConversationMemory(thread_repo)


@pytest.fixture
def retriever(embedder, knowledge_base):
    from supportflow.retrieval.retriever import Retriever

    return Retriever(embedder, knowledge_base)


@pytest.fixture
def tool_context(commerce, retriever, memory):
    from supportflow.tools.registry import ToolContext

    return ToolContext(commerce=commerce, retriever=retriever, memory=memory, clock=lambda: NOW)


@pytest.fixture
def registry(tool_context):
    from supportflow.agent import ALL_TOOLS
    from supportflow.tools.registry import ToolRegistry

    return ToolRegistry(ALL_TOOLS, tool_context)


@pytest.fixture
def make_agent(registry, retriever):
    """Factory: ``make_agent(responses, retriever=None)`` → (agent, scripted model)."""
    from supportflow.agent import SupportAgent
    from supportflow.services.llm import ChatModelClient

    def _make(responses, *, retriever_override=None):
        model = ScriptedChatModel(responses)
        agent = SupportAgent(
            ChatModelClient(model, "test-model"),
            retriever_override or retriever,
            registry,
            top_k=3,
        )
        return agent, model

    return _make
