"""Typed progress events streamed to the client for one agent turn.

Each event serialises to a camelCase JSON object tagged with ``type``.
A turn always ends with exactly one terminal event: :class:`CompleteEvent`
or :class:`ErrorEvent`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import Field

from supportflow.models import CamelModel, utcnow

SSE_DONE = "data: [DONE]\n\n"


class StreamEvent(CamelModel):
    type: str

    @property
    def is_terminal(self) -> bool:
        return False

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    def to_sse(self) -> str:
        return f"data: {self.model_dump_json(by_alias=True)}\n\n"


class ThreadInitEvent(StreamEvent):
    type: Literal["thread_init"] = "thread_init"
    thread_id: str


class SentimentEvent(StreamEvent):
    type: Literal["sentiment_detected"] = "sentiment_detected"
    message: str
    severity: str
    signals: list[str] = Field(default_factory=list)


class StatusEvent(StreamEvent):
    type: Literal["status"] = "status"
    message: str
    status: str


class ToolStartEvent(StreamEvent):
    type: Literal["tool_start"] = "tool_start"
    tool: str
    args: dict[str, Any] = Field(default_factory=dict)
    message: str


class ToolCompleteEvent(StreamEvent):
    type: Literal["tool_complete"] = "tool_complete"
    tool: str
    result: dict[str, Any]
    message: str


class AnswerStartEvent(StreamEvent):
    type: Literal["answer_start"] = "answer_start"


class AnswerChunkEvent(StreamEvent):
    type: Literal["answer_chunk"] = "answer_chunk"
    content: str


class CompleteEvent(StreamEvent):
    type: Literal["complete"] = "complete"
    answer: str
    sources: list[dict[str, Any]] = Field(default_factory=list)
    tools_used: list[dict[str, Any]] | None = None
    model: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return True


class ErrorEvent(StreamEvent):
    type: Literal["error"] = "error"
    message: str

    @property
    def is_terminal(self) -> bool:
        return True
