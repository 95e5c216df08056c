"""Tests for the FastAPI endpoints."""

from __future__ import annotations

import asyncio
import json
from contextlib import aclosing
from unittest.mock import MagicMock

import pytest
from conftest import ALICE, BOB, ScriptedChatModel, ai_text, ai_tool_calls
from fastapi.testclient import TestClient

from supportflow import config
from supportflow.agent import SupportAgent
from supportflow.api.routes import SAVE_FAILED_MESSAGE, SUGGESTIONS, chat_stream
from supportflow.api.schemas import StreamRequest
from supportflow.runtime import Runtime
from supportflow.server import app
from supportflow.services.llm import ChatModelClient

# ── Helpers ──────────────────────────────────────────────────────────


def _sse_events(body: str) -> list:
    """Split an SSE body into decoded events; the sentinel stays a string."""
    events = []
    for frame in body.split("\n\n"):
        if not frame:
            continue
        assert frame.startswith("data: ")
        payload = frame[len("data: "):]
        events.append(payload if payload == "[DONE]" else json.loads(payload))
    return events


def _as(user_id: str) -> dict[str, str]:
    return {config.IDENTITY_HEADER: user_id}


@pytest.fixture
def wire_runtime(registry, retriever, memory, knowledge_base, commerce, embedder):
    """Attach a runtime built from fakes to app state (mirrors the lifespan).

    Returns a factory taking the scripted model responses.
    """

    def _wire(responses):
        model = ScriptedChatModel(responses)
        agent = SupportAgent(ChatModelClient(model, "test-model"), retriever, registry, top_k=3)
        app.state.runtime = Runtime(
            agent=agent,
            memory=memory,
            knowledge_base=knowledge_base,
            commerce=commerce,
            storage_backend="memory",
            embedder=embedder,
        )
        return model

    yield _wire
    app.state.runtime = None


@pytest.fixture
def client():
    return TestClient(app)


# ── Health / suggestions / root ──────────────────────────────────────


class TestHealthEndpoint:
    def test_health_reports_runtime(self, client, wire_runtime):
        wire_runtime([])
        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["service"] == "supportflow"
        assert data["storage"] == "memory"
        assert data["providers"] == {"anthropic": "configured", "cohere": "configured"}
        assert data["ready"] is True

    def test_health_before_startup(self, client):
        app.state.runtime = None
        data = client.get("/api/health").json()
        assert data["ready"] is False
        assert data["storage"] is None


class TestSuggestions:
    def test_lists_starter_questions(self, client):
        response = client.get("/api/chat/suggestions")
        assert response.status_code == 200
        assert response.json()["suggestions"] == SUGGESTIONS


class TestRootEndpoint:
    def test_root_returns_service_info(self, client):
        data = client.get("/").json()
        assert data["service"] == "SupportFlow"
        assert "docs" in data


# ── Streaming chat ───────────────────────────────────────────────────


class TestChatStream:
    def test_stream_framing_and_order(self, client, wire_runtime):
        wire_runtime([ai_text("Standard shipping is free over $50.")])

        response = client.post("/api/chat/stream", json={"question": "How does shipping work?"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        assert response.headers["x-accel-buffering"] == "no"

        events = _sse_events(response.text)
        assert events[0]["type"] == "thread_init"
        assert events[0]["threadId"]
        assert events[-1] == "[DONE]"
        assert events[-2]["type"] == "complete"
        assert events[-2]["answer"] == "Standard shipping is free over $50."
        assert [e["type"] for e in events[:-1]].count("complete") == 1

    def test_both_messages_are_persisted(self, client, wire_runtime, memory):
        wire_runtime([ai_text("Free over $50.")])

        response = client.post(
            "/api/chat/stream",
            json={"question": "How does shipping work?", "threadId": "t-persist"},
            headers=_as(ALICE),
        )
        assert _sse_events(response.text)[0]["threadId"] == "t-persist"

        thread = client.get("/api/chat/thread/t-persist", headers=_as(ALICE)).json()
        assert [m["role"] for m in thread["messages"]] == ["user", "assistant"]
        assert thread["messages"][0]["content"] == "How does shipping work?"
        assert thread["messages"][1]["content"] == "Free over $50."
        assert thread["messages"][1]["sources"]
        assert thread["userId"] == ALICE

    def test_tool_events_are_streamed_and_stored(self, client, wire_runtime, memory):
        wire_runtime([
            ai_tool_calls(("get_all_orders", {"status": "Processing"})),
            ai_text("One order is pending."),
        ])

        response = client.post(
            "/api/chat/stream",
            json={"question": "Show me all pending orders", "threadId": "t-tools"},
            headers=_as(ALICE),
        )

        types = [e["type"] for e in _sse_events(response.text)[:-1]]
        assert types.index("tool_start") < types.index("tool_complete") < types.index("answer_start")
        thread = client.get("/api/chat/thread/t-tools", headers=_as(ALICE)).json()
        assert thread["messages"][1]["toolsUsed"][0]["tool"] == "get_all_orders"

    def test_history_is_sent_on_follow_up(self, client, wire_runtime):
        model = wire_runtime([ai_text("First answer."), ai_text("Second answer.")])
        body = {"question": "How does shipping work?", "threadId": "t-follow"}
        client.post("/api/chat/stream", json=body)
        client.post("/api/chat/stream", json={**body, "question": "And returns?"})

        second_call = model.calls[1]
        assert [m.content for m in second_call[1:]] == [
            "How does shipping work?", "First answer.", "And returns?",
        ]

    def test_negative_sentiment_flags_thread(self, client, wire_runtime, memory):
        wire_runtime([ai_text("I'm sorry about that.")])

        response = client.post(
            "/api/chat/stream",
            json={"question": "This is terrible, I want a manager", "threadId": "t-angry"},
        )

        events = _sse_events(response.text)
        assert events[1]["type"] == "sentiment_detected"
        assert events[1]["severity"] == "high"
        thread = client.get("/api/chat/thread/t-angry").json()
        assert thread["metadata"]["sentiment"] == "negative"

    def test_failed_answer_save_replaces_complete_with_error(self, client, wire_runtime, memory, monkeypatch):
        wire_runtime([ai_text("Free over $50.")])
        original = memory.add_message

        async def flaky_add_message(thread_id, role, content, **kwargs):
            if role == "assistant":
                raise ConnectionError("write concern timeout")
            return await original(thread_id, role, content, **kwargs)

        monkeypatch.setattr(memory, "add_message", flaky_add_message)

        response = client.post("/api/chat/stream", json={"question": "How does shipping work?"})

        events = _sse_events(response.text)
        types = [e["type"] for e in events[:-1]]
        assert "complete" not in types
        assert events[-2] == {"type": "error", "message": SAVE_FAILED_MESSAGE}
        assert events[-1] == "[DONE]"

    def test_model_failure_streams_single_error(self, client, wire_runtime):
        wire_runtime([RuntimeError("provider exploded")])

        response = client.post("/api/chat/stream", json={"question": "How does shipping work?"})

        events = _sse_events(response.text)
        assert events[-2]["type"] == "error"
        assert "exploded" not in events[-2]["message"]
        assert [e["type"] for e in events[:-1]].count("error") == 1

    def test_foreign_thread_is_refused(self, client, wire_runtime, memory):
        model = wire_runtime([ai_text("Hi Bob.")])
        client.post(
            "/api/chat/stream",
            json={"question": "hello", "threadId": "t-bob"},
            headers=_as(BOB),
        )

        response = client.post(
            "/api/chat/stream",
            json={"question": "what did bob say?", "threadId": "t-bob"},
            headers=_as(ALICE),
        )

        events = _sse_events(response.text)
        assert [e["type"] for e in events[:-1]] == ["thread_init", "error"]
        assert len(model.calls) == 1

    def test_blank_question_is_rejected(self, client, wire_runtime):
        wire_runtime([])
        response = client.post("/api/chat/stream", json={"question": "   "})
        assert response.status_code == 400
        assert response.json()["detail"] == "Question is required"

    def test_missing_question_fails_validation(self, client, wire_runtime):
        wire_runtime([])
        response = client.post("/api/chat/stream", json={"threadId": "t-1"})
        assert response.status_code == 422

    def test_overlong_question_fails_validation(self, client, wire_runtime):
        wire_runtime([])
        response = client.post("/api/chat/stream", json={"question": "x" * 2001})
        assert response.status_code == 422


class TestStreamDisconnect:
    """The client going away mid-turn, driven through the response iterator."""

    @staticmethod
    def _request(user_id: str):
        request = MagicMock()
        request.app = app
        request.headers = _as(user_id)
        request.state.request_id = "req-disconnect"
        return request

    @pytest.mark.asyncio
    async def test_disconnect_after_tool_start_persists_no_answer(self, wire_runtime, memory):
        wire_runtime([
            ai_tool_calls(("get_my_orders", {})),
            ai_text("This answer is never delivered."),
        ])
        response = await chat_stream(
            StreamRequest(question="Where are my orders?", thread_id="t-disconnect"), self._request(ALICE),
        )

        types = []
        async with aclosing(response.body_iterator) as body:
            async for frame in body:
                types.append(json.loads(frame[len("data: "):])["type"])
                if types[-1] == "tool_start":
                    break

        assert types[0] == "thread_init"
        assert "complete" not in types
        thread = await memory.get_thread("t-disconnect")
        assert [m.role for m in thread.messages] == ["user"]


# ── Non-streaming chat ───────────────────────────────────────────────


class TestChatAsk:
    def test_ask_returns_answer(self, client, wire_runtime, memory):
        wire_runtime([ai_text("Free over $50.")])

        response = client.post("/api/chat/ask", json={"question": "How does shipping work?"})

        assert response.status_code == 200
        data = response.json()
        assert data["answer"] == "Free over $50."
        assert data["model"] == "test-model"
        assert len(data["sources"]) <= 3

    def test_ask_passes_client_history(self, client, wire_runtime):
        model = wire_runtime([ai_text("Sure.")])
        client.post(
            "/api/chat/ask",
            json={
                "question": "And returns?",
                "history": [{"role": "user", "content": "Hi"}, {"role": "assistant", "content": "Hello"}],
            },
        )
        assert [m.content for m in model.calls[0][1:]] == ["Hi", "Hello", "And returns?"]

    def test_blank_question_is_rejected(self, client, wire_runtime):
        wire_runtime([])
        response = client.post("/api/chat/ask", json={"question": ""})
        assert response.status_code == 400

    def test_agent_failure_does_not_leak_internals(self, client, wire_runtime):
        wire_runtime([RuntimeError("LLM exploded")])
        response = client.post("/api/chat/ask", json={"question": "Hello!"})
        assert response.status_code == 500
        detail = response.json()["detail"]
        assert "LLM exploded" not in detail
        assert "internal error" in detail.lower()


# ── Threads and briefings ────────────────────────────────────────────


class TestThreads:
    @pytest.fixture
    def seeded(self, memory, wire_runtime):
        wire_runtime([])

        async def _seed():
            await memory.get_or_create_thread("t-alice", ALICE)
            await memory.add_message("t-alice", "user", "Where is my order?")
            await memory.get_or_create_thread("t-bob", BOB)
            await memory.get_or_create_thread("t-anon")

        asyncio.run(_seed())

    def test_owner_can_read_thread(self, client, seeded):
        response = client.get("/api/chat/thread/t-alice", headers=_as(ALICE))
        assert response.status_code == 200
        assert response.json()["threadId"] == "t-alice"

    def test_unknown_thread_is_404(self, client, seeded):
        assert client.get("/api/chat/thread/nope", headers=_as(ALICE)).status_code == 404

    def test_foreign_thread_is_404(self, client, seeded):
        assert client.get("/api/chat/thread/t-bob", headers=_as(ALICE)).status_code == 404

    def test_anonymous_thread_is_public(self, client, seeded):
        assert client.get("/api/chat/thread/t-anon").status_code == 200

    def test_thread_list_requires_identity(self, client, seeded):
        assert client.get("/api/chat/threads").status_code == 401

    def test_thread_list_is_scoped_to_caller(self, client, seeded):
        data = client.get("/api/chat/threads", headers=_as(ALICE)).json()
        assert [t["threadId"] for t in data["threads"]] == ["t-alice"]
        assert data["threads"][0]["firstMessage"] == "Where is my order?"
        assert data["threads"][0]["messageCount"] == 1

    def test_thread_list_limit_is_bounded(self, client, seeded):
        assert client.get("/api/chat/threads?limit=0", headers=_as(ALICE)).status_code == 422

    def test_briefing(self, client, seeded):
        response = client.get("/api/chat/briefing/t-alice")
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["briefing"]["messageCount"] == 1

    def test_briefing_unknown_thread(self, client, seeded):
        assert client.get("/api/chat/briefing/nope").status_code == 404


# ── Middleware and startup ───────────────────────────────────────────


class TestRequestId:
    def test_response_includes_request_id_header(self, client):
        response = client.get("/api/chat/suggestions")
        assert "X-Request-ID" in response.headers

    def test_client_supplied_request_id_is_echoed(self, client):
        response = client.get("/api/chat/suggestions", headers={"X-Request-ID": "my-trace-id-123"})
        assert response.headers["X-Request-ID"] == "my-trace-id-123"


class TestRuntimeNotReady:
    def test_returns_503_when_runtime_not_opened(self, client):
        """Before the lifespan has opened the runtime, chat endpoints return 503."""
        app.state.runtime = None
        response = client.post("/api/chat/stream", json={"question": "Hello!"})
        assert response.status_code == 503
        assert "starting up" in response.json()["detail"].lower()
