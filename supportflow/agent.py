"""LangGraph-based support agent for the ShopHub store.

Architecture:
  One turn is a LangGraph StateGraph run.  Every node pushes typed
  progress events through LangGraph's custom stream writer, so the
  caller sees them in emission order while the turn is still running:

    1. **sentiment**   keyword frustration check (advisory only)
    2. **retrieve**    top-k knowledge-base chunks for the question
    3. **compose**     system prompt + prior turns + the new question
    4. **call_model**  first model call, tools offered, model decides
    5. **tools**       run requested tools in order, one ToolMessage each
    6. **synthesize**  second model call with tool calling disabled
    7. **answer**      word-level answer chunks, then ``complete``

  Routing:
    sentiment → retrieve → compose → call_model
    call_model → (tool calls?)    → tools → synthesize → answer → END
               → (no tool calls?) → answer → END

  Exactly one tool round runs per turn.  Conversation state lives in
  ConversationMemory, not in a LangGraph checkpointer: the caller passes
  the prior history in and persists the ``complete`` payload.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Annotated, Any

from langchain_core.messages import (
    AIMessage,
    AnyMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)
from langgraph.graph import END, StateGraph
from langgraph.graph.message import add_messages
from langgraph.types import StreamWriter
from typing_extensions import TypedDict

from supportflow.events import (
    AnswerChunkEvent,
    AnswerStartEvent,
    CompleteEvent,
    ErrorEvent,
    SentimentEvent,
    StatusEvent,
    StreamEvent,
    ToolCompleteEvent,
    ToolStartEvent,
)
from supportflow.prompts import NO_INFORMATION_REPLY, get_system_prompt
from supportflow.retrieval.retriever import Retriever
from supportflow.sentiment import detect_sentiment
from supportflow.services.llm import ChatModelClient
from supportflow.tools.escalation import ESCALATION_TOOLS
from supportflow.tools.orders import ORDER_TOOLS
from supportflow.tools.products import PRODUCT_TOOLS
from supportflow.tools.registry import IDENTITY_ARG, ToolRegistry

logger = logging.getLogger(__name__)

ALL_TOOLS = [*ORDER_TOOLS, *PRODUCT_TOOLS, *ESCALATION_TOOLS]

STREAM_ERROR_MESSAGE = "Sorry, something went wrong while answering. Please try again."

_WORD_CHUNK_RE = re.compile(r"\s*\S+\s*")


class InvalidQuestionError(ValueError):
    """The question is missing or blank; raised before any external call."""


class AgentError(RuntimeError):
    """A turn ended with an error event (non-streaming callers only)."""


# ── State schema ─────────────────────────────────────────────────────


class AgentState(TypedDict, total=False):
    """The state that flows through the graph.

    ``messages`` uses the ``add_messages`` reducer so each node appends to
    the model transcript instead of replacing it.
    """

    messages: Annotated[list[AnyMessage], add_messages]
    question: str
    history: list[dict[str, str]]
    thread_id: str | None
    user_id: str | None
    chunk_delay: float
    sentiment: str
    contexts: list[str]
    sources: list[dict[str, Any]]
    tools_used: list[dict[str, Any]]
    answer: str


# ── Helpers ─────────────────────────────────────────────────────────


def _message_text(message: BaseMessage) -> str:
    """Plain text of a model message, whether content is a str or a block list."""
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def _history_messages(history: list[dict[str, str]]) -> list[AnyMessage]:
    messages: list[AnyMessage] = []
    for turn in history:
        content = (turn.get("content") or "").strip()
        if not content:
            continue
        if turn.get("role") == "assistant":
            messages.append(AIMessage(content=content))
        else:
            messages.append(HumanMessage(content=content))
    return messages


def split_into_chunks(text: str) -> list[str]:
    """Word-level slices of *text*; joined back they equal *text*."""
    return _WORD_CHUNK_RE.findall(text)


# ── Node factories ───────────────────────────────────────────────────


def _make_sentiment_node():
    async def sentiment_node(state: AgentState, writer: StreamWriter) -> dict:
        result = detect_sentiment(state["question"])
        if result.is_negative:
            signals = sorted(result.matched_signals)
            writer(SentimentEvent(
                message=f"Negative sentiment detected: {', '.join(signals)}",
                severity=result.severity,
                signals=signals,
            ))
            logger.info("Negative sentiment (%s): %s", result.severity, signals)
        return {"sentiment": "negative" if result.is_negative else "neutral"}

    return sentiment_node


def _make_retrieve_node(retriever: Retriever, top_k: int):
    async def retrieve_node(state: AgentState, writer: StreamWriter) -> dict:
        writer(StatusEvent(message="🔍 Searching knowledge base...", status="searching"))
        chunks = await retriever.retrieve(state["question"], k=top_k)
        writer(StatusEvent(
            message=f"📚 Found {len(chunks)} relevant documents", status="found_context",
        ))
        return {
            "contexts": [c.content for c in chunks],
            "sources": [c.summary() for c in chunks],
        }

    return retrieve_node


def _make_compose_node():
    async def compose_node(state: AgentState) -> dict:
        system = SystemMessage(content=get_system_prompt(state["contexts"], state.get("thread_id")))
        return {
            "messages": [
                system,
                *_history_messages(state.get("history", [])),
                HumanMessage(content=state["question"]),
            ]
        }

    return compose_node


def _make_call_model_node(llm: ChatModelClient, registry: ToolRegistry):
    """First model call: every tool offered, the model decides whether to use any."""
    tool_schemas = registry.schemas(llm.provider)

    async def call_model_node(state: AgentState, writer: StreamWriter) -> dict:
        writer(StatusEvent(message="🤔 Thinking...", status="thinking"))
        response = await llm.complete(state["messages"], tools=tool_schemas, tool_choice="auto")
        return {"messages": [response]}

    return call_model_node


def _make_tools_node(registry: ToolRegistry):
    async def tools_node(state: AgentState, writer: StreamWriter) -> dict:
        tool_calls = state["messages"][-1].tool_calls
        writer(StatusEvent(
            message=f"🔧 Using {len(tool_calls)} tool(s)...", status="tool_execution",
        ))

        # Sequential on purpose: a later tool may read what an earlier one wrote.
        tool_messages: list[ToolMessage] = []
        tools_used: list[dict[str, Any]] = []
        for call in tool_calls:
            name = call["name"]
            args = {k: v for k, v in (call.get("args") or {}).items() if k != IDENTITY_ARG}
            display = registry.display_name(name)

            writer(ToolStartEvent(tool=name, args=args, message=f"🔧 {display}..."))
            result = await registry.execute_tool(name, args, user_id=state.get("user_id"))
            payload = result.as_payload()
            writer(ToolCompleteEvent(tool=name, result=payload, message=f"✅ {display} complete"))

            tool_messages.append(ToolMessage(
                content=json.dumps(payload, default=str),
                tool_call_id=call["id"],
                name=name,
            ))
            tools_used.append({"tool": name, "args": args, "result": payload, "success": result.success})

        return {"messages": tool_messages, "tools_used": tools_used}

    return tools_node


def _make_synthesize_node(llm: ChatModelClient, registry: ToolRegistry):
    """Second model call over the tool results; tools stay bound but disabled."""
    tool_schemas = registry.schemas(llm.provider)

    async def synthesize_node(state: AgentState, writer: StreamWriter) -> dict:
        writer(StatusEvent(message="✍️ Generating response...", status="generating"))
        response = await llm.complete(
            state["messages"], tools=tool_schemas, tool_choice="none", operation="llm_synthesize",
        )
        return {"messages": [response]}

    return synthesize_node


def _make_answer_node(model_name: str):
    async def answer_node(state: AgentState, writer: StreamWriter) -> dict:
        answer = _message_text(state["messages"][-1]).strip()
        if not answer:
            logger.warning("Model returned no text; using the fallback reply")
            answer = NO_INFORMATION_REPLY

        writer(AnswerStartEvent())
        delay = state.get("chunk_delay", 0.0)
        for chunk in split_into_chunks(answer):
            writer(AnswerChunkEvent(content=chunk))
            if delay > 0:
                await asyncio.sleep(delay)

        writer(CompleteEvent(
            answer=answer,
            sources=state.get("sources", []),
            tools_used=state.get("tools_used") or None,
            model=model_name,
        ))
        return {"answer": answer}

    return answer_node


# ── Conditional edges ────────────────────────────────────────────────


def should_use_tools(state: AgentState) -> str:
    """Route to the tools node if the model asked for any tool calls."""
    last_message = state["messages"][-1]
    if getattr(last_message, "tool_calls", None):
        return "tools"
    return "answer"


# ── Agent ────────────────────────────────────────────────────────────


class SupportAgent:
    """Runs support turns and streams their progress events."""

    def __init__(
        self,
        llm: ChatModelClient,
        retriever: Retriever,
        registry: ToolRegistry,
        *,
        top_k: int = 3,
        chunk_delay: float = 0.0,
    ):
        self._llm = llm
        self._chunk_delay = chunk_delay
        self._graph = self._build_graph(llm, retriever, registry, top_k)

    @property
    def model_name(self) -> str:
        return self._llm.model_name

    @staticmethod
    def _build_graph(llm: ChatModelClient, retriever: Retriever, registry: ToolRegistry, top_k: int):
        graph = StateGraph(AgentState)

        graph.add_node("sentiment", _make_sentiment_node())
        graph.add_node("retrieve", _make_retrieve_node(retriever, top_k))
        graph.add_node("compose", _make_compose_node())
        graph.add_node("call_model", _make_call_model_node(llm, registry))
        graph.add_node("tools", _make_tools_node(registry))
        graph.add_node("synthesize", _make_synthesize_node(llm, registry))
        graph.add_node("answer", _make_answer_node(llm.model_name))

        graph.set_entry_point("sentiment")
        graph.add_edge("sentiment", "retrieve")
        graph.add_edge("retrieve", "compose")
        graph.add_edge("compose", "call_model")
        graph.add_conditional_edges(
            "call_model", should_use_tools, {"tools": "tools", "answer": "answer"},
        )
        graph.add_edge("tools", "synthesize")
        graph.add_edge("synthesize", "answer")
        graph.add_edge("answer", END)

        compiled = graph.compile()
        logger.debug("Support agent compiled (model: %s, tools: %d)", llm.model_name, len(registry.specs))
        return compiled

    def stream(
        self,
        question: str,
        history: list[dict[str, str]] | None = None,
        thread_id: str | None = None,
        user_id: str | None = None,
        *,
        chunk_delay: float | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Validate *question* now, then return the turn's event stream.

        The stream always ends with exactly one ``complete`` or ``error``
        event and nothing after it.
        """
        if not isinstance(question, str) or not question.strip():
            raise InvalidQuestionError("Question is required")

        state: AgentState = {
            "messages": [],
            "question": question.strip(),
            "history": list(history or []),
            "thread_id": thread_id,
            "user_id": user_id,
            "chunk_delay": self._chunk_delay if chunk_delay is None else chunk_delay,
            "sources": [],
            "tools_used": [],
        }
        return self._run(state)

    async def _run(self, state: AgentState) -> AsyncIterator[StreamEvent]:
        terminated = False
        try:
            async with aclosing(self._graph.astream(state, stream_mode="custom")) as events:
                async for event in events:
                    yield event
                    if event.is_terminal:
                        terminated = True
                        break
        except Exception:
            if terminated:
                logger.exception("Agent failed after completing the turn")
                return
            logger.exception("Agent turn failed (thread=%s)", state.get("thread_id"))
            yield ErrorEvent(message=STREAM_ERROR_MESSAGE)
            return

        if not terminated:
            logger.error("Agent graph finished without a terminal event")
            yield ErrorEvent(message=STREAM_ERROR_MESSAGE)

    async def answer(self, question: str, history: list[dict[str, str]] | None = None) -> dict[str, Any]:
        """Run a whole turn without pacing and return the final result."""
        async with aclosing(self.stream(question, history, chunk_delay=0.0)) as events:
            async for event in events:
                if isinstance(event, ErrorEvent):
                    raise AgentError(event.message)
                if isinstance(event, CompleteEvent):
                    return {
                        "answer": event.answer,
                        "sources": event.sources,
                        "model": event.model,
                        "timestamp": event.timestamp,
                    }
        raise AgentError(STREAM_ERROR_MESSAGE)
