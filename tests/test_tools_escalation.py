"""Tests for the human hand-off tool."""

from __future__ import annotations

import pytest
from conftest import ALICE, BOB

from supportflow.tools.escalation import ESCALATION_MESSAGE, escalate_to_human


@pytest.mark.asyncio
async def test_escalation_marks_thread_and_returns_briefing(tool_context, memory):
    await memory.get_or_create_thread("t-1", ALICE)
    await memory.add_message("t-1", "user", "I want to talk to a manager")

    result = await escalate_to_human(
        tool_context, reason="Customer requested a manager", thread_id="t-1", user_id=ALICE,
    )

    assert result.success is True
    assert result.message == ESCALATION_MESSAGE
    assert result.data["escalated"] is True
    assert result.data["reason"] == "Customer requested a manager"
    briefing = result.data["briefing"]
    for key in ("duration", "messageCount", "sentiment", "summary"):
        assert key in briefing
    assert briefing["messageCount"] == 1

    thread = await memory.get_thread("t-1")
    assert thread.metadata.escalated is True
    assert thread.metadata.escalation_reason == "Customer requested a manager"


@pytest.mark.asyncio
async def test_unknown_thread_still_succeeds_without_briefing(tool_context):
    result = await escalate_to_human(tool_context, reason="Frustrated", thread_id="missing")
    assert result.success is True
    assert result.data["briefing"] is None
    assert result.data["threadId"] == "missing"


@pytest.mark.asyncio
async def test_escalation_without_thread(tool_context):
    result = await escalate_to_human(tool_context, reason="Frustrated")
    assert result.success is True
    assert result.data["briefing"] is None


@pytest.mark.asyncio
async def test_dispatch_through_registry(registry, memory):
    await memory.get_or_create_thread("t-2", ALICE)
    result = await registry.execute_tool("escalate_to_human", {"reason": "angry", "thread_id": "t-2"}, user_id=ALICE)
    assert result.success is True
    assert (await memory.get_thread("t-2")).metadata.escalated is True


@pytest.mark.asyncio
async def test_foreign_thread_is_refused_without_leaking_or_writing(registry, memory):
    await memory.get_or_create_thread("bob-thread", BOB)
    await memory.add_message("bob-thread", "user", "my card number is 4111 secret")

    result = await registry.execute_tool(
        "escalate_to_human", {"reason": "x", "thread_id": "bob-thread"}, user_id=ALICE,
    )

    assert result.success is False
    assert "Access denied" in result.message
    assert "4111" not in str(result.as_payload())
    thread = await memory.get_thread("bob-thread")
    assert thread.metadata.escalated is False
    assert thread.metadata.escalation_reason is None


@pytest.mark.asyncio
async def test_anonymous_caller_cannot_escalate_owned_thread(registry, memory):
    await memory.get_or_create_thread("bob-thread", BOB)
    result = await registry.execute_tool("escalate_to_human", {"reason": "x", "thread_id": "bob-thread"})
    assert result.success is False
    assert (await memory.get_thread("bob-thread")).metadata.escalated is False


@pytest.mark.asyncio
async def test_anonymous_thread_can_be_escalated(registry, memory):
    await memory.get_or_create_thread("anon-thread", None)
    result = await registry.execute_tool("escalate_to_human", {"reason": "x", "thread_id": "anon-thread"})
    assert result.success is True
    assert (await memory.get_thread("anon-thread")).metadata.escalated is True


@pytest.mark.asyncio
async def test_model_supplied_identity_cannot_unlock_foreign_thread(registry, memory):
    await memory.get_or_create_thread("bob-thread", BOB)
    result = await registry.execute_tool(
        "escalate_to_human", {"reason": "x", "thread_id": "bob-thread", "user_id": BOB}, user_id=ALICE,
    )
    assert result.success is False
