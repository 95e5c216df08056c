"""MongoDB repositories (pymongo's native asyncio client).

Collections:
  * ``chat_threads``   - one document per conversation, camelCase fields
  * ``knowledge_base`` - one document per embedded chunk
  * ``orders`` / ``products`` - owned by the store backend; read here with
    the backend's own field names (``orderStatus``, ``orderItems`` ...)

Every mutation is a single ``update_one``/``find_one_and_update`` call so
it is atomic per document without any client-side locking.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any

from bson import ObjectId
from pydantic.alias_generators import to_camel
from pymongo import ASCENDING, DESCENDING, AsyncMongoClient, ReturnDocument

from supportflow.models import (
    ConversationThread,
    KnowledgeChunk,
    Message,
    Order,
    OrderItem,
    OrderStatus,
    Product,
    ShippingAddress,
    utcnow,
)
from supportflow.storage.base import (
    CommerceRepository,
    KnowledgeBaseRepository,
    ThreadRepository,
)

logger = logging.getLogger(__name__)


def connect(uri: str) -> AsyncMongoClient:
    """Create a client; the connection pool is opened lazily on first use."""
    return AsyncMongoClient(uri, tz_aware=True)


def _as_object_id(value: str) -> ObjectId | str:
    return ObjectId(value) if ObjectId.is_valid(value) else value


def _thread_from_doc(doc: dict[str, Any] | None) -> ConversationThread | None:
    if doc is None:
        return None
    doc.pop("_id", None)
    return ConversationThread.model_validate(doc)


# ── Conversation threads ────────────────────────────────────────────


class MongoThreadRepository(ThreadRepository):
    def __init__(self, client: AsyncMongoClient, database: str, collection: str = "chat_threads"):
        self._collection = client[database][collection]

    async def ensure_indexes(self) -> None:
        await self._collection.create_index("threadId", unique=True)
        await self._collection.create_index([("metadata.lastActivity", DESCENDING)])
        await self._collection.create_index(
            [("userId", ASCENDING), ("metadata.lastActivity", DESCENDING)]
        )

    async def get(self, thread_id: str) -> ConversationThread | None:
        return _thread_from_doc(await self._collection.find_one({"threadId": thread_id}))

    async def insert_if_absent(self, thread: ConversationThread) -> ConversationThread:
        doc = thread.model_dump(by_alias=True)
        doc.pop("threadId")
        stored = await self._collection.find_one_and_update(
            {"threadId": thread.thread_id},
            {"$setOnInsert": doc},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return _thread_from_doc(stored)

    async def append_message(
        self, thread_id: str, message: Message,
    ) -> ConversationThread | None:
        now = utcnow()
        doc = await self._collection.find_one_and_update(
            {"threadId": thread_id},
            {
                "$push": {"messages": message.model_dump(by_alias=True)},
                "$inc": {"metadata.messageCount": 1},
                "$set": {"metadata.lastActivity": now, "updatedAt": now},
            },
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            return None

        if message.role == "user" and doc.get("metadata", {}).get("firstMessage") is None:
            # Conditional on the field still being unset, so it is written once.
            updated = await self._collection.find_one_and_update(
                {"threadId": thread_id, "metadata.firstMessage": None},
                {"$set": {"metadata.firstMessage": message.content}},
                return_document=ReturnDocument.AFTER,
            )
            return _thread_from_doc(updated) or await self.get(thread_id)
        return _thread_from_doc(doc)

    async def update_metadata(
        self, thread_id: str, fields: dict[str, Any],
    ) -> ConversationThread | None:
        now = utcnow()
        update = {f"metadata.{to_camel(name)}": value for name, value in fields.items()}
        update.update({"metadata.lastActivity": now, "updatedAt": now})
        doc = await self._collection.find_one_and_update(
            {"threadId": thread_id},
            {"$set": update},
            return_document=ReturnDocument.AFTER,
        )
        return _thread_from_doc(doc)

    async def list_for_user(self, user_id: str, limit: int) -> list[ConversationThread]:
        cursor = (
            self._collection.find({"userId": user_id})
            .sort("metadata.lastActivity", DESCENDING)
            .limit(limit)
        )
        return [_thread_from_doc(doc) for doc in await cursor.to_list(length=None)]

    async def delete_inactive(self, cutoff: datetime) -> int:
        result = await self._collection.delete_many({"metadata.lastActivity": {"$lt": cutoff}})
        return result.deleted_count


# ── Knowledge base ──────────────────────────────────────────────────


class MongoKnowledgeBaseRepository(KnowledgeBaseRepository):
    def __init__(self, client: AsyncMongoClient, database: str, collection: str = "knowledge_base"):
        self._collection = client[database][collection]

    async def all_chunks(self) -> list[KnowledgeChunk]:
        cursor = self._collection.find({}).sort("_id", ASCENDING)
        return [KnowledgeChunk.model_validate(doc) for doc in await cursor.to_list(length=None)]

    async def replace_source(self, source: str, chunks: list[KnowledgeChunk]) -> int:
        # TODO: wrap delete+insert in a transaction once deployments run on a replica set
        deleted = await self._collection.delete_many({"source": source})
        if chunks:
            await self._collection.insert_many(
                [c.model_dump(by_alias=True) for c in sorted(chunks, key=lambda c: c.chunk_index)]
            )
        if deleted.deleted_count:
            logger.info("Replaced %d chunks of %s", deleted.deleted_count, source)
        return deleted.deleted_count

    async def purge(self) -> int:
        result = await self._collection.delete_many({})
        return result.deleted_count

    async def count(self) -> int:
        return await self._collection.count_documents({})


# ── Orders & products ───────────────────────────────────────────────


def _order_from_doc(doc: dict[str, Any] | None) -> Order | None:
    if doc is None:
        return None
    user = doc.get("user")
    return Order(
        id=str(doc["_id"]),
        user_id=str(user) if user is not None else None,
        items=[
            OrderItem(
                name=item.get("name", ""),
                quantity=item.get("quantity", 0),
                price=item.get("price", 0.0),
                product_id=str(item["product"]) if item.get("product") else None,
            )
            for item in doc.get("orderItems", [])
        ],
        total_amount=doc.get("totalAmount", 0.0),
        status=OrderStatus(doc.get("orderStatus", OrderStatus.PROCESSING)),
        shipping_address=ShippingAddress.model_validate(doc.get("shippingAddress") or {}),
        created_at=doc["createdAt"],
        delivered_at=doc.get("deliveredAt"),
    )


def _product_from_doc(doc: dict[str, Any] | None) -> Product | None:
    if doc is None:
        return None
    return Product(
        id=str(doc["_id"]),
        name=doc.get("name", ""),
        description=doc.get("description", ""),
        price=doc.get("price", 0.0),
        category=doc.get("category", ""),
        stock=doc.get("stock", 0),
    )


def _contains(text: str) -> dict[str, str]:
    return {"$regex": re.escape(text), "$options": "i"}


class MongoCommerceRepository(CommerceRepository):
    def __init__(self, client: AsyncMongoClient, database: str):
        self._orders = client[database]["orders"]
        self._products = client[database]["products"]

    async def get_order(self, order_id: str) -> Order | None:
        if not ObjectId.is_valid(order_id):
            return None
        return _order_from_doc(await self._orders.find_one({"_id": ObjectId(order_id)}))

    async def list_orders(
        self,
        *,
        user_id: str | None = None,
        status: OrderStatus | None = None,
        limit: int | None = None,
    ) -> list[Order]:
        query: dict[str, Any] = {}
        if user_id is not None:
            query["user"] = _as_object_id(user_id)
        if status is not None:
            query["orderStatus"] = status.value
        cursor = self._orders.find(query).sort("createdAt", DESCENDING)
        if limit is not None:
            cursor = cursor.limit(limit)
        return [_order_from_doc(doc) for doc in await cursor.to_list(length=None)]

    async def set_order_status(
        self,
        order_id: str,
        status: OrderStatus,
        *,
        expected: OrderStatus | None = None,
        delivered_at: datetime | None = None,
    ) -> Order | None:
        if not ObjectId.is_valid(order_id):
            return None
        update: dict[str, Any] = {"orderStatus": status.value}
        if delivered_at is not None:
            update["deliveredAt"] = delivered_at
        query: dict[str, Any] = {"_id": ObjectId(order_id)}
        if expected is not None:
            query["orderStatus"] = expected.value
        doc = await self._orders.find_one_and_update(
            query,
            {"$set": update},
            return_document=ReturnDocument.AFTER,
        )
        return _order_from_doc(doc)

    async def get_product(self, product_id: str) -> Product | None:
        if not ObjectId.is_valid(product_id):
            return None
        return _product_from_doc(await self._products.find_one({"_id": ObjectId(product_id)}))

    async def search_products(
        self,
        *,
        query: str | None = None,
        category: str | None = None,
        limit: int = 5,
    ) -> list[Product]:
        clauses: list[dict[str, Any]] = []
        if category:
            clauses.append({"category": _contains(category)})
        if query:
            clauses.append({
                "$or": [
                    {"name": _contains(query)},
                    {"description": _contains(query)},
                    {"category": _contains(query)},
                ]
            })
        filter_ = {"$and": clauses} if clauses else {}
        cursor = self._products.find(filter_).sort("stock", DESCENDING).limit(limit)
        return [_product_from_doc(doc) for doc in await cursor.to_list(length=None)]

    async def set_product_stock(self, product_id: str, quantity: int) -> Product | None:
        if not ObjectId.is_valid(product_id):
            return None
        doc = await self._products.find_one_and_update(
            {"_id": ObjectId(product_id)},
            {"$set": {"stock": quantity}},
            return_document=ReturnDocument.AFTER,
        )
        return _product_from_doc(doc)

    async def categories(self) -> list[str]:
        return sorted(c for c in await self._products.distinct("category") if c)
