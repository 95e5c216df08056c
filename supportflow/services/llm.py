"""Thin adapter around a LangChain chat model.

Keeps the provider-specific bits (tool binding, tool-choice encoding,
metrics) in one place so the agent graph only deals in LangChain
messages.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from typing import Any, Literal

from langchain_anthropic import ChatAnthropic
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, AnyMessage

from supportflow.services.metrics import metrics

logger = logging.getLogger(__name__)

ToolChoice = Literal["auto", "none"]


def build_chat_model(
    *,
    provider: str,
    model_name: str,
    api_key: str,
    temperature: float,
    max_tokens: int,
) -> BaseChatModel:
    """Construct the configured chat model."""
    if provider != "anthropic":
        raise ValueError(f"Unsupported model provider: {provider!r}")
    return ChatAnthropic(
        model=model_name,
        api_key=api_key,
        temperature=temperature,
        max_tokens=max_tokens,
    )


def _encode_tool_choice(provider: str, choice: ToolChoice) -> str | dict[str, str]:
    # ChatAnthropic treats a bare string other than auto/any as a tool name.
    if provider == "anthropic" and choice == "none":
        return {"type": "none"}
    return choice


class ChatModelClient:
    def __init__(self, model: BaseChatModel, model_name: str, provider: str = "anthropic"):
        self._model = model
        self.model_name = model_name
        self.provider = provider

    async def complete(
        self,
        messages: Sequence[AnyMessage],
        tools: Sequence[dict[str, Any]] | None = None,
        tool_choice: ToolChoice = "auto",
        operation: str = "llm_invoke",
    ) -> AIMessage:
        """Run one model call over *messages*.

        *tools* are provider-format schemas.  With ``tool_choice="none"``
        the tools stay bound (the transcript may reference them) but the
        model must answer in text.
        """
        runnable = self._model
        if tools:
            runnable = self._model.bind_tools(
                list(tools), tool_choice=_encode_tool_choice(self.provider, tool_choice),
            )

        t0 = time.perf_counter()
        try:
            response = await runnable.ainvoke(list(messages))
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                self.provider, operation,
                error_type=type(exc).__name__, latency_ms=elapsed,
            )
            raise

        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success(self.provider, operation, latency_ms=elapsed)
        logger.debug(
            "%s (%s) responded in %.0fms with %d tool call(s)",
            operation, self.model_name, elapsed, len(getattr(response, "tool_calls", []) or []),
        )
        return response
