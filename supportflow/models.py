"""Domain records shared by the agent, the tools and the storage layer.

Attributes are snake_case in Python.  Every model serialises to the
camelCase document/wire shape (``threadId``, ``toolsUsed``,
``lastActivity`` ...) via ``model_dump(by_alias=True)``, which is what the
MongoDB repositories persist and what the streaming API emits.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(UTC)


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Knowledge base ───────────────────────────────────────────────────


class KnowledgeChunk(CamelModel):
    """One retrievable slice of a source document plus its embedding."""

    content: str
    embedding: list[float]
    source: str
    chunk_index: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)


# ── Conversation memory ─────────────────────────────────────────────

Role = Literal["user", "assistant", "system"]
Sentiment = Literal["positive", "neutral", "negative"]


class ToolInvocationRecord(CamelModel):
    """One tool call made during a turn, embedded in ``Message.tools_used``."""

    tool: str
    args: dict[str, Any] = Field(default_factory=dict)
    result: dict[str, Any] = Field(default_factory=dict)
    success: bool = True


class Message(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    role: Role
    content: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)
    tools_used: list[ToolInvocationRecord] = Field(default_factory=list)
    sources: list[dict[str, Any]] = Field(default_factory=list)


class ThreadMetadata(CamelModel):
    first_message: str | None = None
    last_activity: datetime = Field(default_factory=utcnow)
    message_count: int = 0
    sentiment: Sentiment = "neutral"
    escalated: bool = False
    escalation_reason: str | None = None


class ConversationThread(CamelModel):
    """A persisted conversation.

    ``metadata.message_count`` always equals ``len(messages)``; the
    repositories keep the two in step on every append.
    """

    thread_id: str
    user_id: str | None = None
    session_id: str | None = None
    messages: list[Message] = Field(default_factory=list)
    metadata: ThreadMetadata = Field(default_factory=ThreadMetadata)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# ── Commerce backend ────────────────────────────────────────────────


class OrderStatus(StrEnum):
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class OrderItem(CamelModel):
    name: str
    quantity: int
    price: float
    product_id: str | None = None


class ShippingAddress(CamelModel):
    address1: str = ""
    city: str = ""
    country: str = ""

    def __str__(self) -> str:
        return ", ".join(part for part in (self.address1, self.city, self.country) if part)


class Order(CamelModel):
    id: str
    user_id: str | None = None
    items: list[OrderItem] = Field(default_factory=list)
    total_amount: float = 0.0
    status: OrderStatus = OrderStatus.PROCESSING
    shipping_address: ShippingAddress = Field(default_factory=ShippingAddress)
    created_at: datetime = Field(default_factory=utcnow)
    delivered_at: datetime | None = None


class Product(CamelModel):
    id: str
    name: str
    description: str = ""
    price: float = 0.0
    category: str = ""
    stock: int = 0
