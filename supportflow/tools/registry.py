"""Tool declarations, provider schema rendering and dispatch.

Each tool declares its parameters once, statically, as a tuple of
:class:`ToolParameter`.  :func:`render_tool_schemas` turns those into the
function-calling format a given model provider expects, and
:meth:`ToolRegistry.execute_tool` validates arguments against the same
declaration before calling the handler.

Dispatch never raises: unknown tools, bad arguments and backend
exceptions all come back as a failed :class:`ToolResult` so the model can
explain the problem instead of the turn crashing.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field

from supportflow.models import utcnow
from supportflow.services.metrics import metrics

if TYPE_CHECKING:
    from supportflow.memory import ConversationMemory
    from supportflow.retrieval.retriever import Retriever
    from supportflow.storage.base import CommerceRepository

logger = logging.getLogger(__name__)

ParamType = Literal["string", "number", "integer", "boolean"]

# The caller's identity is injected by the registry; a value the model
# puts in its arguments under this name is discarded.
IDENTITY_ARG = "user_id"

GENERIC_FAILURE = "An error occurred while processing your request. Please try again."


class ToolResult(BaseModel):
    """Outcome of one tool call: a success flag plus payload or failure message."""

    success: bool
    message: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, message: str | None = None, **data: Any) -> ToolResult:
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, message: str, **data: Any) -> ToolResult:
        return cls(success=False, message=message, data=data)

    def as_payload(self) -> dict[str, Any]:
        """Flat dict shown to the client and (as JSON) to the model."""
        payload: dict[str, Any] = {"success": self.success}
        if self.message is not None:
            payload["message"] = self.message
        payload.update(self.data)
        return payload


@dataclass
class ToolContext:
    """Backend handles every tool handler receives as its first argument."""

    commerce: CommerceRepository
    retriever: Retriever
    memory: ConversationMemory
    clock: Callable[[], datetime] = utcnow
    refund_window_default_days: int = 30


ToolHandler = Callable[..., Awaitable[ToolResult]]


@dataclass(frozen=True)
class ToolParameter:
    name: str
    type: ParamType
    description: str
    required: bool = True
    enum: tuple[str, ...] | None = None

    def json_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": self.type, "description": self.description}
        if self.enum:
            schema["enum"] = list(self.enum)
        return schema


@dataclass(frozen=True)
class ToolSpec:
    """Static declaration of one tool.

    ``caller_scoped`` tools receive the authenticated caller as ``user_id``.
    ``privileged`` tools are meant for staff only; enforcing that is the
    auth layer's job, the registry only logs their use.
    """

    name: str
    display_name: str
    description: str
    handler: ToolHandler
    parameters: tuple[ToolParameter, ...] = ()
    caller_scoped: bool = False
    privileged: bool = False

    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {p.name: p.json_schema() for p in self.parameters},
            "required": [p.name for p in self.parameters if p.required],
        }


# ── Provider schema rendering ───────────────────────────────────────


def _render_anthropic(spec: ToolSpec) -> dict[str, Any]:
    return {
        "name": spec.name,
        "description": spec.description,
        "input_schema": spec.input_schema(),
    }


def _render_openai(spec: ToolSpec) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": spec.name,
            "description": spec.description,
            "parameters": spec.input_schema(),
        },
    }


_RENDERERS: dict[str, Callable[[ToolSpec], dict[str, Any]]] = {
    "anthropic": _render_anthropic,
    "openai": _render_openai,
}


def render_tool_schemas(specs: Iterable[ToolSpec], provider: str = "anthropic") -> list[dict[str, Any]]:
    try:
        renderer = _RENDERERS[provider]
    except KeyError:
        raise ValueError(
            f"Unknown tool schema provider {provider!r}; expected one of {sorted(_RENDERERS)}"
        ) from None
    return [renderer(spec) for spec in specs]


# ── Argument validation ─────────────────────────────────────────────


def _coerce(param: ToolParameter, value: Any) -> Any:
    """Return *value* converted to the declared type, or raise ``ValueError``."""
    if param.type == "string":
        if not isinstance(value, str):
            raise ValueError(f"'{param.name}' must be a string")
        if param.enum and value not in param.enum:
            raise ValueError(f"'{param.name}' must be one of: {', '.join(param.enum)}")
        return value

    if param.type == "boolean":
        if not isinstance(value, bool):
            raise ValueError(f"'{param.name}' must be true or false")
        return value

    if isinstance(value, bool):
        raise ValueError(f"'{param.name}' must be a {param.type}")
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            raise ValueError(f"'{param.name}' must be a {param.type}") from None
    if not isinstance(value, int | float):
        raise ValueError(f"'{param.name}' must be a {param.type}")

    if param.type == "integer":
        if isinstance(value, float):
            if not value.is_integer():
                raise ValueError(f"'{param.name}' must be a whole number")
            value = int(value)
    return value


def validate_arguments(spec: ToolSpec, args: dict[str, Any]) -> dict[str, Any]:
    """Check *args* against *spec* and return the cleaned keyword arguments.

    Undeclared keys (including any model-supplied identity) are dropped;
    ``None`` counts as absent.
    """
    cleaned: dict[str, Any] = {}
    for param in spec.parameters:
        value = args.get(param.name)
        if value is None:
            if param.required:
                raise ValueError(f"Missing required parameter '{param.name}'")
            continue
        cleaned[param.name] = _coerce(param, value)

    ignored = set(args) - {p.name for p in spec.parameters}
    if ignored:
        logger.debug("Tool %s: ignoring undeclared arguments %s", spec.name, sorted(ignored))
    return cleaned


# ── Registry ────────────────────────────────────────────────────────


class ToolRegistry:
    def __init__(self, specs: Iterable[ToolSpec], context: ToolContext):
        self._specs: dict[str, ToolSpec] = {}
        for spec in specs:
            if spec.name in self._specs:
                raise ValueError(f"Duplicate tool name: {spec.name}")
            self._specs[spec.name] = spec
        self._context = context

    @property
    def specs(self) -> list[ToolSpec]:
        return list(self._specs.values())

    def get(self, name: str) -> ToolSpec | None:
        return self._specs.get(name)

    def display_name(self, name: str) -> str:
        spec = self._specs.get(name)
        return spec.display_name if spec else name

    def schemas(self, provider: str = "anthropic") -> list[dict[str, Any]]:
        return render_tool_schemas(self._specs.values(), provider)

    async def execute_tool(
        self,
        name: str,
        args: dict[str, Any] | None,
        user_id: str | None = None,
    ) -> ToolResult:
        """Run tool *name*; always returns a :class:`ToolResult`.

        Once started, the call is shielded from cancellation of the caller
        so a backend mutation is never abandoned halfway.
        """
        return await asyncio.shield(self._dispatch(name, dict(args or {}), user_id))

    async def _dispatch(self, name: str, args: dict[str, Any], user_id: str | None) -> ToolResult:
        spec = self._specs.get(name)
        if spec is None:
            logger.warning("Model requested unknown tool %r", name)
            return ToolResult.fail(f"Tool '{name}' not found.")

        try:
            kwargs = validate_arguments(spec, args)
        except ValueError as exc:
            logger.info("Tool %s rejected arguments: %s", name, exc)
            return ToolResult.fail(f"Invalid arguments for {name}: {exc}")

        if spec.caller_scoped:
            kwargs[IDENTITY_ARG] = user_id
        if spec.privileged:
            logger.warning("Privileged tool %s invoked (user=%s)", name, user_id or "anonymous")

        t0 = time.perf_counter()
        try:
            result = await spec.handler(self._context, **kwargs)
        except Exception as exc:
            logger.exception("Error executing tool %s", name)
            result = ToolResult.fail(GENERIC_FAILURE, error=str(exc))

        metrics.record_tool(name, success=result.success, latency_ms=(time.perf_counter() - t0) * 1000)
        return result

