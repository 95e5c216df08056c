"""In-process repositories for local development and tests.

Each method completes without awaiting anything in between its read and
its write, so on a single event loop every mutation is atomic per
document, the same guarantee the MongoDB repositories rely on.
Stored records are copied on the way in and out so callers can never
mutate stored state by accident.
"""

from __future__ import annotations

import secrets
from datetime import datetime
from typing import Any

from supportflow.models import (
    ConversationThread,
    KnowledgeChunk,
    Message,
    Order,
    OrderStatus,
    Product,
    utcnow,
)
from supportflow.storage.base import (
    CommerceRepository,
    KnowledgeBaseRepository,
    ThreadRepository,
)


def new_object_id() -> str:
    """24-hex identifier in the same format MongoDB ObjectIds render to."""
    return secrets.token_hex(12)


class InMemoryThreadRepository(ThreadRepository):
    def __init__(self) -> None:
        self._threads: dict[str, ConversationThread] = {}

    def __len__(self) -> int:
        return len(self._threads)

    async def get(self, thread_id: str) -> ConversationThread | None:
        thread = self._threads.get(thread_id)
        return thread.model_copy(deep=True) if thread else None

    async def insert_if_absent(self, thread: ConversationThread) -> ConversationThread:
        stored = self._threads.setdefault(thread.thread_id, thread.model_copy(deep=True))
        return stored.model_copy(deep=True)

    async def append_message(
        self, thread_id: str, message: Message,
    ) -> ConversationThread | None:
        thread = self._threads.get(thread_id)
        if thread is None:
            return None
        now = utcnow()
        thread.messages.append(message)
        thread.metadata.message_count = len(thread.messages)
        thread.metadata.last_activity = now
        thread.updated_at = now
        if message.role == "user" and thread.metadata.first_message is None:
            thread.metadata.first_message = message.content
        return thread.model_copy(deep=True)

    async def update_metadata(
        self, thread_id: str, fields: dict[str, Any],
    ) -> ConversationThread | None:
        thread = self._threads.get(thread_id)
        if thread is None:
            return None
        now = utcnow()
        thread.metadata = thread.metadata.model_copy(update={**fields, "last_activity": now})
        thread.updated_at = now
        return thread.model_copy(deep=True)

    async def list_for_user(self, user_id: str, limit: int) -> list[ConversationThread]:
        owned = [t for t in self._threads.values() if t.user_id == user_id]
        owned.sort(key=lambda t: t.metadata.last_activity, reverse=True)
        return [t.model_copy(deep=True) for t in owned[:limit]]

    async def delete_inactive(self, cutoff: datetime) -> int:
        stale = [tid for tid, t in self._threads.items() if t.metadata.last_activity < cutoff]
        for thread_id in stale:
            del self._threads[thread_id]
        return len(stale)


class InMemoryKnowledgeBaseRepository(KnowledgeBaseRepository):
    def __init__(self, chunks: list[KnowledgeChunk] | None = None) -> None:
        self._chunks: list[KnowledgeChunk] = list(chunks or [])

    async def all_chunks(self) -> list[KnowledgeChunk]:
        return list(self._chunks)

    async def replace_source(self, source: str, chunks: list[KnowledgeChunk]) -> int:
        kept = [c for c in self._chunks if c.source != source]
        deleted = len(self._chunks) - len(kept)
        self._chunks = kept + sorted(chunks, key=lambda c: c.chunk_index)
        return deleted

    async def purge(self) -> int:
        deleted = len(self._chunks)
        self._chunks = []
        return deleted

    async def count(self) -> int:
        return len(self._chunks)


class InMemoryCommerceRepository(CommerceRepository):
    def __init__(
        self,
        orders: list[Order] | None = None,
        products: list[Product] | None = None,
    ) -> None:
        self._orders: dict[str, Order] = {o.id: o.model_copy(deep=True) for o in orders or []}
        self._products: dict[str, Product] = {
            p.id: p.model_copy(deep=True) for p in products or []
        }

    async def get_order(self, order_id: str) -> Order | None:
        order = self._orders.get(order_id)
        return order.model_copy(deep=True) if order else None

    async def list_orders(
        self,
        *,
        user_id: str | None = None,
        status: OrderStatus | None = None,
        limit: int | None = None,
    ) -> list[Order]:
        orders = [
            o for o in self._orders.values()
            if (user_id is None or o.user_id == user_id)
            and (status is None or o.status == status)
        ]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        if limit is not None:
            orders = orders[:limit]
        return [o.model_copy(deep=True) for o in orders]

    async def set_order_status(
        self,
        order_id: str,
        status: OrderStatus,
        *,
        expected: OrderStatus | None = None,
        delivered_at: datetime | None = None,
    ) -> Order | None:
        order = self._orders.get(order_id)
        if order is None or (expected is not None and order.status != expected):
            return None
        update: dict[str, Any] = {"status": status}
        if delivered_at is not None:
            update["delivered_at"] = delivered_at
        self._orders[order_id] = order.model_copy(update=update)
        return self._orders[order_id].model_copy(deep=True)

    async def get_product(self, product_id: str) -> Product | None:
        product = self._products.get(product_id)
        return product.model_copy(deep=True) if product else None

    async def search_products(
        self,
        *,
        query: str | None = None,
        category: str | None = None,
        limit: int = 5,
    ) -> list[Product]:
        def matches(product: Product) -> bool:
            if category and category.lower() not in product.category.lower():
                return False
            if query:
                needle = query.lower()
                haystacks = (product.name, product.description, product.category)
                return any(needle in h.lower() for h in haystacks)
            return True

        found = [p for p in self._products.values() if matches(p)]
        found.sort(key=lambda p: p.stock, reverse=True)
        return [p.model_copy(deep=True) for p in found[:limit]]

    async def set_product_stock(self, product_id: str, quantity: int) -> Product | None:
        product = self._products.get(product_id)
        if product is None:
            return None
        self._products[product_id] = product.model_copy(update={"stock": quantity})
        return self._products[product_id].model_copy(deep=True)

    async def categories(self) -> list[str]:
        return sorted({p.category for p in self._products.values() if p.category})
