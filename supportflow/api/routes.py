"""FastAPI route definitions for the SupportFlow chat API."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import aclosing

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from supportflow import config
from supportflow.agent import AgentError, InvalidQuestionError
from supportflow.api.schemas import (
    AskRequest,
    AskResponse,
    HealthResponse,
    StreamRequest,
    SuggestionsResponse,
    ThreadListResponse,
    ThreadSummary,
)
from supportflow.events import (
    SSE_DONE,
    CompleteEvent,
    ErrorEvent,
    SentimentEvent,
    ThreadInitEvent,
)
from supportflow.memory import ThreadNotFound, generate_thread_id
from supportflow.models import ConversationThread
from supportflow.runtime import Runtime

logger = logging.getLogger(__name__)

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

SAVE_FAILED_MESSAGE = "We couldn't save your conversation. Please try again."

SUGGESTIONS = [
    "How does shipping work?",
    "What's your return policy?",
    "Where is my order?",
    "Can I still get a refund for my order?",
    "Search for electronics",
    "Show me all pending orders",
]


def _get_runtime(request: Request) -> Runtime:
    """Retrieve the runtime opened during the FastAPI lifespan."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=503,
            detail="The assistant is still starting up. Please try again in a moment.",
        )
    return runtime


def _caller_identity(request: Request) -> str | None:
    """Caller id from the trusted header set by the auth proxy, if any."""
    value = request.headers.get(config.IDENTITY_HEADER, "").strip()
    return value or None


def _visible_to(thread: ConversationThread, user_id: str | None) -> bool:
    return thread.user_id is None or thread.user_id == user_id


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """Report which providers are configured and whether the runtime is up."""
    runtime = getattr(request.app.state, "runtime", None)
    providers = {
        config.MODEL_PROVIDER: "configured" if config.ANTHROPIC_API_KEY else "missing",
        "cohere": "configured" if config.COHERE_API_KEY else "missing",
    }
    return HealthResponse(
        storage=runtime.storage_backend if runtime else None,
        providers=providers,
        ready=runtime is not None and all(v == "configured" for v in providers.values()),
    )


@router.get("/chat/suggestions", response_model=SuggestionsResponse)
async def suggestions():
    return SuggestionsResponse(suggestions=SUGGESTIONS)


@router.post("/chat/stream")
async def chat_stream(body: StreamRequest, http_request: Request):
    """Answer a question as a Server-Sent Events stream.

    The first event is ``thread_init``; the last is ``complete`` or
    ``error``, followed by the ``[DONE]`` sentinel.  The user message is
    stored before the agent runs and the assistant message before
    ``complete`` is sent.
    """
    runtime = _get_runtime(http_request)
    if not body.question.strip():
        raise HTTPException(status_code=400, detail="Question is required")

    request_id = getattr(http_request.state, "request_id", "?")
    user_id = _caller_identity(http_request)
    thread_id = body.thread_id or generate_thread_id()
    question = body.question.strip()

    async def event_stream() -> AsyncIterator[str]:
        yield ThreadInitEvent(thread_id=thread_id).to_sse()

        memory = runtime.memory
        try:
            thread = await memory.get_or_create_thread(thread_id, user_id, body.session_id)
            if not _visible_to(thread, user_id):
                logger.warning("[%s] User %s denied access to thread %s", request_id, user_id, thread_id)
                yield ErrorEvent(message="You don't have access to this conversation.").to_sse()
                yield SSE_DONE
                return
            history = await memory.get_history(thread_id, limit=config.HISTORY_LIMIT)
            await memory.add_message(thread_id, "user", question)
        except Exception:
            logger.exception("[%s] Could not store user message for thread %s", request_id, thread_id)
            yield ErrorEvent(message=SAVE_FAILED_MESSAGE).to_sse()
            yield SSE_DONE
            return

        events = runtime.agent.stream(question, history, thread_id=thread_id, user_id=user_id)
        async with aclosing(events):
            async for event in events:
                if isinstance(event, SentimentEvent):
                    try:
                        await memory.update_sentiment(thread_id, "negative")
                    except Exception:
                        logger.exception("[%s] Could not flag thread %s as negative", request_id, thread_id)

                if isinstance(event, CompleteEvent):
                    try:
                        await memory.add_message(
                            thread_id,
                            "assistant",
                            event.answer,
                            tools_used=event.tools_used or [],
                            sources=event.sources,
                        )
                    except Exception:
                        logger.exception("[%s] Could not store answer for thread %s", request_id, thread_id)
                        event = ErrorEvent(message=SAVE_FAILED_MESSAGE)

                yield event.to_sse()
                if event.is_terminal:
                    break

        yield SSE_DONE

    logger.info("[%s] Streaming answer for thread %s (user=%s)", request_id, thread_id, user_id or "anonymous")
    return StreamingResponse(event_stream(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/chat/ask", response_model=AskResponse)
async def chat_ask(body: AskRequest, http_request: Request):
    """Answer a question in one response, without storing anything."""
    runtime = _get_runtime(http_request)
    request_id = getattr(http_request.state, "request_id", "?")

    try:
        result = await runtime.agent.answer(
            body.question, [turn.model_dump() for turn in body.history],
        )
    except InvalidQuestionError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except AgentError as e:
        logger.error("[%s] Agent failed to answer: %s", request_id, e)
        raise HTTPException(
            status_code=500,
            detail="An internal error occurred. Please try again.",
        ) from e

    return AskResponse(**result)


@router.get("/chat/thread/{thread_id}", response_model=ConversationThread)
async def get_thread(thread_id: str, http_request: Request):
    runtime = _get_runtime(http_request)
    thread = await runtime.memory.get_thread(thread_id)
    if thread is None or not _visible_to(thread, _caller_identity(http_request)):
        raise HTTPException(status_code=404, detail="Thread not found")
    return thread


@router.get("/chat/briefing/{thread_id}")
async def get_briefing(thread_id: str, http_request: Request):
    """Hand-off summary for human agents (staff only, gated by the auth proxy)."""
    runtime = _get_runtime(http_request)
    try:
        briefing = await runtime.memory.generate_briefing(thread_id)
    except ThreadNotFound as e:
        raise HTTPException(status_code=404, detail="Thread not found") from e
    return {"success": True, "briefing": briefing}


@router.get("/chat/threads", response_model=ThreadListResponse)
async def list_threads(http_request: Request, limit: int = Query(20, ge=1, le=100)):
    """The caller's most recent conversations."""
    runtime = _get_runtime(http_request)
    user_id = _caller_identity(http_request)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Sign in to see your conversations")

    threads = await runtime.memory.get_user_threads(user_id, limit=limit)
    return ThreadListResponse(threads=[
        ThreadSummary(
            thread_id=t.thread_id,
            first_message=t.metadata.first_message,
            message_count=t.metadata.message_count,
            last_activity=t.metadata.last_activity,
            sentiment=t.metadata.sentiment,
            escalated=t.metadata.escalated,
        )
        for t in threads
    ])
