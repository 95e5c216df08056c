"""Conversation memory: per-thread message log plus summary metadata.

Threads are created lazily (get-or-create keyed by ``thread_id``) and only
ever grow by appending messages.  All persistence goes through a
:class:`~supportflow.storage.base.ThreadRepository`, so the same service
runs against MongoDB in production and an in-process dict in tests.
"""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from typing import Any

from supportflow.models import (
    ConversationThread,
    Message,
    Role,
    Sentiment,
    ToolInvocationRecord,
    utcnow,
)
from supportflow.storage.base import ThreadRepository

logger = logging.getLogger(__name__)


class ThreadNotFound(LookupError):
    """Raised when an operation targets a thread that does not exist."""

    def __init__(self, thread_id: str):
        self.thread_id = thread_id
        super().__init__(f"Thread not found: {thread_id}")


def generate_thread_id() -> str:
    return str(uuid.uuid4())


class ConversationMemory:
    def __init__(self, repository: ThreadRepository):
        self._repository = repository

    async def get_or_create_thread(
        self,
        thread_id: str,
        user_id: str | None = None,
        session_id: str | None = None,
    ) -> ConversationThread:
        """Return the thread, creating an empty one if it does not exist yet.

        An existing thread is returned unchanged (its owner and session
        are never overwritten).
        """
        existing = await self._repository.get(thread_id)
        if existing is not None:
            return existing
        thread = await self._repository.insert_if_absent(
            ConversationThread(thread_id=thread_id, user_id=user_id, session_id=session_id)
        )
        logger.info("Created thread %s (user=%s)", thread_id, user_id or "anonymous")
        return thread

    async def add_message(
        self,
        thread_id: str,
        role: Role,
        content: str | None,
        tools_used: list[ToolInvocationRecord | dict[str, Any]] | None = None,
        sources: list[dict[str, Any]] | None = None,
    ) -> ConversationThread:
        message = Message(
            role=role,
            content=content,
            tools_used=[
                ToolInvocationRecord.model_validate(t) if isinstance(t, dict) else t
                for t in tools_used or []
            ],
            sources=list(sources or []),
        )
        thread = await self._repository.append_message(thread_id, message)
        if thread is None:
            raise ThreadNotFound(thread_id)
        return thread

    async def get_history(self, thread_id: str, limit: int = 10) -> list[dict[str, str]]:
        """Last *limit* messages as ``{"role", "content"}`` dicts for the model.

        Only ``assistant`` keeps its role; ``system`` collapses into
        ``user``.  An unknown thread simply has no history.
        """
        thread = await self._repository.get(thread_id)
        if thread is None:
            return []
        recent = thread.messages[-limit:] if limit > 0 else []
        return [
            {
                "role": "assistant" if m.role == "assistant" else "user",
                "content": m.content or "",
            }
            for m in recent
        ]

    async def get_thread(self, thread_id: str) -> ConversationThread | None:
        return await self._repository.get(thread_id)

    async def get_user_threads(self, user_id: str, limit: int = 20) -> list[ConversationThread]:
        return await self._repository.list_for_user(user_id, limit)

    async def update_sentiment(self, thread_id: str, sentiment: Sentiment) -> ConversationThread:
        thread = await self._repository.update_metadata(thread_id, {"sentiment": sentiment})
        if thread is None:
            raise ThreadNotFound(thread_id)
        return thread

    async def escalate_thread(self, thread_id: str, reason: str) -> ConversationThread:
        """Flag the thread for a human.  Re-escalating overwrites the reason."""
        thread = await self._repository.update_metadata(
            thread_id, {"escalated": True, "escalation_reason": reason},
        )
        if thread is None:
            raise ThreadNotFound(thread_id)
        logger.info("Thread %s escalated: %s", thread_id, reason)
        return thread

    async def generate_briefing(self, thread_id: str) -> dict[str, Any]:
        """Summarise a thread for the human agent taking it over."""
        thread = await self._repository.get(thread_id)
        if thread is None:
            raise ThreadNotFound(thread_id)

        meta = thread.metadata
        user_messages = [m.content for m in thread.messages if m.role == "user"]
        tool_names = [t.tool for m in thread.messages for t in m.tools_used]
        distinct_tools = list(dict.fromkeys(tool_names))
        minutes = int((utcnow() - thread.created_at).total_seconds() // 60)

        if tool_names:
            actions = f"AI attempted actions: {', '.join(tool_names)}"
        else:
            actions = "No automated actions taken."

        return {
            "threadId": thread.thread_id,
            "userId": thread.user_id,
            "duration": f"{minutes} minutes",
            "messageCount": meta.message_count,
            "sentiment": meta.sentiment,
            "firstMessage": meta.first_message,
            "recentMessages": user_messages[-3:],
            "toolsUsed": distinct_tools,
            "escalated": meta.escalated,
            "escalationReason": meta.escalation_reason,
            "summary": (
                f"Customer conversation with {meta.message_count} messages. "
                f"Current sentiment: {meta.sentiment}. {actions}"
            ),
        }

    async def cleanup_old_threads(self, days_old: int = 30) -> int:
        """Delete threads inactive for more than *days_old* days."""
        cutoff = utcnow() - timedelta(days=days_old)
        deleted = await self._repository.delete_inactive(cutoff)
        logger.info("Deleted %d threads inactive since %s", deleted, cutoff.isoformat())
        return deleted
