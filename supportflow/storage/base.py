"""Repository interfaces for the three document collections the agent uses.

* ``ThreadRepository``        - conversation threads (read/write)
* ``KnowledgeBaseRepository`` - embedded knowledge chunks (read-mostly)
* ``CommerceRepository``      - orders and products consumed by the tools

Every write is a single-document atomic update, which is all the
isolation the agent needs: conversations never share documents.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from supportflow.models import (
    ConversationThread,
    KnowledgeChunk,
    Message,
    Order,
    OrderStatus,
    Product,
)


class ThreadRepository(ABC):
    @abstractmethod
    async def get(self, thread_id: str) -> ConversationThread | None:
        """Return the thread or ``None``."""

    @abstractmethod
    async def insert_if_absent(self, thread: ConversationThread) -> ConversationThread:
        """Store *thread* unless one with the same id exists; return the stored one."""

    @abstractmethod
    async def append_message(
        self, thread_id: str, message: Message,
    ) -> ConversationThread | None:
        """Append *message*, bump counters/timestamps, and set
        ``metadata.first_message`` if this is the first user message.

        Returns the updated thread, or ``None`` if the thread is unknown.
        """

    @abstractmethod
    async def update_metadata(
        self, thread_id: str, fields: dict[str, Any],
    ) -> ConversationThread | None:
        """Set metadata *fields* (snake_case names) and bump timestamps."""

    @abstractmethod
    async def list_for_user(self, user_id: str, limit: int) -> list[ConversationThread]:
        """Most recently active threads of *user_id*, newest first."""

    @abstractmethod
    async def delete_inactive(self, cutoff: datetime) -> int:
        """Delete threads whose last activity is before *cutoff*; return count."""


class KnowledgeBaseRepository(ABC):
    @abstractmethod
    async def all_chunks(self) -> list[KnowledgeChunk]:
        """Every stored chunk, in storage order."""

    @abstractmethod
    async def replace_source(self, source: str, chunks: list[KnowledgeChunk]) -> int:
        """Delete all chunks of *source* and insert *chunks*; return count deleted."""

    @abstractmethod
    async def purge(self) -> int:
        """Delete the whole knowledge base; return count deleted."""

    @abstractmethod
    async def count(self) -> int:
        ...


class CommerceRepository(ABC):
    @abstractmethod
    async def get_order(self, order_id: str) -> Order | None:
        ...

    @abstractmethod
    async def list_orders(
        self,
        *,
        user_id: str | None = None,
        status: OrderStatus | None = None,
        limit: int | None = None,
    ) -> list[Order]:
        """Orders newest first, optionally filtered."""

    @abstractmethod
    async def set_order_status(
        self,
        order_id: str,
        status: OrderStatus,
        *,
        expected: OrderStatus | None = None,
        delivered_at: datetime | None = None,
    ) -> Order | None:
        """Set the status in one atomic update.

        With *expected*, the write only happens while the order is still in
        that status; otherwise nothing changes and ``None`` is returned.
        """

    @abstractmethod
    async def get_product(self, product_id: str) -> Product | None:
        ...

    @abstractmethod
    async def search_products(
        self,
        *,
        query: str | None = None,
        category: str | None = None,
        limit: int = 5,
    ) -> list[Product]:
        """Case-insensitive partial match; *query* covers name, description
        and category, *category* narrows by category.  Both are ANDed.
        """

    @abstractmethod
    async def set_product_stock(self, product_id: str, quantity: int) -> Product | None:
        ...

    @abstractmethod
    async def categories(self) -> list[str]:
        ...
