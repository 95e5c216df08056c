"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from supportflow.models import CamelModel


class StreamRequest(CamelModel):
    """Incoming streamed question from the chat widget."""

    question: str = Field(..., max_length=2000, description="The customer's question")
    thread_id: str | None = Field(
        None, max_length=100, description="Existing conversation to continue; omitted for a new one",
    )
    session_id: str | None = Field(None, max_length=100, description="Browser session identifier")


class HistoryTurn(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


class AskRequest(BaseModel):
    """Non-streaming question with optional client-held history."""

    question: str = Field(..., max_length=2000)
    history: list[HistoryTurn] = Field(default_factory=list, max_length=50)


class AskResponse(BaseModel):
    answer: str
    sources: list[dict[str, Any]]
    model: str | None
    timestamp: datetime


class ThreadSummary(CamelModel):
    thread_id: str
    first_message: str | None
    message_count: int
    last_activity: datetime
    sentiment: str
    escalated: bool


class ThreadListResponse(BaseModel):
    threads: list[ThreadSummary]


class SuggestionsResponse(BaseModel):
    suggestions: list[str]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "supportflow"
    storage: str | None = None
    providers: dict[str, str] = Field(default_factory=dict)
    ready: bool = False
