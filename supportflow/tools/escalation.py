"""Hand-off to a human agent."""

from __future__ import annotations

import logging

from supportflow.memory import ThreadNotFound
from supportflow.tools.registry import ToolContext, ToolParameter, ToolResult, ToolSpec

logger = logging.getLogger(__name__)

ESCALATION_MESSAGE = (
    "I've escalated your conversation to our human support team. "
    "An agent will review it and get back to you shortly."
)


async def escalate_to_human(
    ctx: ToolContext, *, reason: str, thread_id: str | None = None, user_id: str | None = None,
) -> ToolResult:
    """Mark the thread escalated and attach a briefing for the human agent.

    The customer-facing outcome is always a success; an unknown thread
    only means there is no briefing to hand over. A thread owned by
    someone other than the caller is refused without touching it.
    """
    briefing = None
    if thread_id:
        thread = await ctx.memory.get_thread(thread_id)
        if thread is not None and thread.user_id and thread.user_id != user_id:
            logger.warning(
                "Escalation of thread %s refused for user %s", thread_id, user_id or "anonymous",
            )
            return ToolResult.fail("Access denied: you can only escalate your own conversation.")
        try:
            await ctx.memory.escalate_thread(thread_id, reason)
            briefing = await ctx.memory.generate_briefing(thread_id)
        except ThreadNotFound:
            logger.warning("Escalation for unknown thread %s (reason: %s)", thread_id, reason)
    else:
        logger.info("Escalation without a thread id (reason: %s)", reason)

    return ToolResult.ok(
        ESCALATION_MESSAGE,
        escalated=True,
        reason=reason,
        threadId=thread_id,
        briefing=briefing,
    )


ESCALATION_TOOLS: tuple[ToolSpec, ...] = (
    ToolSpec(
        name="escalate_to_human",
        display_name="Connecting to Human Agent",
        description=(
            "Escalate the conversation to a human support agent. Use when the "
            "customer explicitly asks for a person, or is clearly frustrated."
        ),
        handler=escalate_to_human,
        caller_scoped=True,
        parameters=(
            ToolParameter("reason", "string", "Short reason for the escalation"),
            ToolParameter("thread_id", "string", "The current conversation's thread ID", required=False),
        ),
    ),
)
