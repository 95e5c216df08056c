"""Order tools: status lookup, listings, status transitions, refund checks.

Every handler takes the shared :class:`ToolContext` first and returns a
:class:`ToolResult`; the registry handles argument validation and turns
unexpected exceptions into failures.  Caller-scoped handlers receive the
authenticated ``user_id`` from the registry, never from the model.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any

from supportflow.models import Order, OrderStatus
from supportflow.tools.registry import ToolContext, ToolParameter, ToolResult, ToolSpec

logger = logging.getLogger(__name__)

# Orders are keyed by 24-hex-digit document ids.
_ORDER_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

REFUND_POLICY_QUERY = "return eligibility requirements"
_RETURN_WINDOW_RE = re.compile(r"(\d+)[\s-]*days?\b", re.IGNORECASE)

_STATUS_VALUES = tuple(s.value for s in OrderStatus)


def _validate_order_id(order_id: str) -> str | None:
    """Return an error message if *order_id* is malformed, else ``None``."""
    if not order_id or not order_id.strip():
        return "No order ID was provided. Please ask the customer for their order ID."
    if not _ORDER_ID_RE.match(order_id.strip()):
        return (
            f'"{order_id}" is not a valid order ID. Order IDs are 24 characters '
            "(digits and letters a-f). Please ask the customer to double-check it."
        )
    return None


def _format_dt(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _order_summary(order: Order) -> dict[str, Any]:
    return {
        "orderId": order.id,
        "status": order.status.value,
        "totalAmount": order.total_amount,
        "items": [
            {"name": item.name, "quantity": item.quantity, "price": item.price}
            for item in order.items
        ],
        "shippingAddress": str(order.shipping_address),
        "createdAt": _format_dt(order.created_at),
        "deliveredAt": _format_dt(order.delivered_at) or "Not delivered yet",
    }


async def _load_owned_order(
    ctx: ToolContext, order_id: str, user_id: str | None,
) -> tuple[Order | None, ToolResult | None]:
    """Fetch an order the caller may see.

    Returns ``(order, None)`` or ``(None, failure)``.  Without an
    authenticated caller no ownership filter applies.  The failure for an
    order owned by someone else carries none of that order's data.
    """
    error = _validate_order_id(order_id)
    if error:
        return None, ToolResult.fail(error)

    order = await ctx.commerce.get_order(order_id.strip())
    if order is None:
        return None, ToolResult.fail(f"Order {order_id} was not found.", error="not_found")
    if user_id is not None and order.user_id != user_id:
        logger.warning("User %s asked for order %s owned by someone else", user_id, order_id)
        return None, ToolResult.fail(
            "Access denied: this order belongs to a different account.", error="access_denied",
        )
    return order, None


def extract_return_window(text: str, default: int) -> int:
    """First ``N day(s)`` figure in *text*, or *default* if none."""
    match = _RETURN_WINDOW_RE.search(text or "")
    if match is None:
        return default
    return int(match.group(1))


# ── Handlers ────────────────────────────────────────────────────────


async def check_order(ctx: ToolContext, *, order_id: str, user_id: str | None = None) -> ToolResult:
    order, failure = await _load_owned_order(ctx, order_id, user_id)
    if failure:
        return failure
    return ToolResult.ok(order=_order_summary(order))


async def get_my_orders(
    ctx: ToolContext, *, user_id: str | None = None, status: str | None = None,
) -> ToolResult:
    if user_id is None:
        return ToolResult.fail(
            "I can only list orders for signed-in customers. "
            "Please sign in, or share a specific order ID."
        )
    orders = await ctx.commerce.list_orders(
        user_id=user_id, status=OrderStatus(status) if status else None,
    )
    return ToolResult.ok(count=len(orders), orders=[_order_summary(o) for o in orders])


async def update_order_status(
    ctx: ToolContext, *, order_id: str, status: str, user_id: str | None = None,
) -> ToolResult:
    order, failure = await _load_owned_order(ctx, order_id, user_id)
    if failure:
        return failure

    target = OrderStatus(status)
    if target not in ALLOWED_TRANSITIONS[order.status]:
        allowed = sorted(s.value for s in ALLOWED_TRANSITIONS[order.status])
        return ToolResult.fail(
            f"Cannot change order from {order.status.value} to {target.value}.",
            currentStatus=order.status.value,
            allowedTransitions=allowed,
        )

    delivered_at = ctx.clock() if target is OrderStatus.DELIVERED else None
    updated = await ctx.commerce.set_order_status(
        order.id, target, expected=order.status, delivered_at=delivered_at,
    )
    if updated is None:
        logger.info("Order %s left %s before the update to %s", order.id, order.status.value, target.value)
        return ToolResult.fail(
            f"Order {order_id} changed status while it was being updated. "
            "Please check the order and try again.",
            expectedStatus=order.status.value,
        )

    logger.info("Order %s: %s -> %s", order.id, order.status.value, target.value)
    return ToolResult.ok(
        f"Order status updated to {target.value}.",
        previousStatus=order.status.value,
        order=_order_summary(updated),
    )


async def get_all_orders(ctx: ToolContext, *, status: str | None = None, limit: int = 20) -> ToolResult:
    if limit < 1:
        return ToolResult.fail("'limit' must be at least 1.")
    orders = await ctx.commerce.list_orders(
        status=OrderStatus(status) if status else None, limit=limit,
    )
    return ToolResult.ok(count=len(orders), orders=[_order_summary(o) for o in orders])


async def check_refund_eligibility(
    ctx: ToolContext, *, order_id: str, user_id: str | None = None,
) -> ToolResult:
    """Decide refund eligibility from the order age and the return policy.

    The return window comes from the knowledge base's policy text; when
    no figure can be found the configured default applies.
    """
    order, failure = await _load_owned_order(ctx, order_id, user_id)
    if failure:
        return failure

    policy_chunks = await ctx.retriever.retrieve(REFUND_POLICY_QUERY, k=3)
    policy_text = "\n".join(chunk.content for chunk in policy_chunks)
    window = extract_return_window(policy_text, ctx.refund_window_default_days)
    policy_source = "knowledge_base" if _RETURN_WINDOW_RE.search(policy_text) else "default"

    elapsed = (ctx.clock() - order.created_at).days
    days_remaining = max(0, window - elapsed)
    cancelled = order.status is OrderStatus.CANCELLED
    within_window = elapsed <= window
    eligible = within_window and not cancelled

    reasons: list[str] = []
    if cancelled:
        reasons.append("Order was cancelled")
    if not within_window:
        reasons.append(f"Return window of {window} days has expired ({elapsed} days since purchase)")
    if eligible:
        reasons.append(f"Order is within the {window}-day return window ({days_remaining} days remaining)")

    return ToolResult.ok(
        eligible=eligible,
        orderId=order.id,
        status=order.status.value,
        daysSincePurchase=elapsed,
        returnWindowDays=window,
        daysRemaining=days_remaining,
        policySource=policy_source,
        reasons=reasons,
    )


# ── Declarations ────────────────────────────────────────────────────

_ORDER_ID_PARAM = ToolParameter("order_id", "string", "The 24-character order ID")

ORDER_TOOLS: tuple[ToolSpec, ...] = (
    ToolSpec(
        name="check_order",
        display_name="Checking Order Status",
        description=(
            "Look up a single order by its ID: status, items, total, shipping "
            "address and delivery date."
        ),
        handler=check_order,
        parameters=(_ORDER_ID_PARAM,),
        caller_scoped=True,
    ),
    ToolSpec(
        name="get_my_orders",
        display_name="Fetching Your Orders",
        description="List the signed-in customer's orders, newest first, optionally filtered by status.",
        handler=get_my_orders,
        parameters=(
            ToolParameter("status", "string", "Only return orders in this status", required=False,
                          enum=_STATUS_VALUES),
        ),
        caller_scoped=True,
    ),
    ToolSpec(
        name="update_order_status",
        display_name="Updating Order",
        description=(
            "Change an order's status. Allowed: Processing to Shipped or Cancelled; "
            "Shipped to Delivered or Cancelled. Delivered and Cancelled orders are final."
        ),
        handler=update_order_status,
        parameters=(
            _ORDER_ID_PARAM,
            ToolParameter("status", "string", "The new status", enum=_STATUS_VALUES),
        ),
        caller_scoped=True,
    ),
    ToolSpec(
        name="get_all_orders",
        display_name="Fetching All Orders",
        description="Staff only: list orders across all customers, newest first.",
        handler=get_all_orders,
        parameters=(
            ToolParameter("status", "string", "Only return orders in this status", required=False,
                          enum=_STATUS_VALUES),
            ToolParameter("limit", "integer", "Maximum number of orders (default 20)", required=False),
        ),
        privileged=True,
    ),
    ToolSpec(
        name="check_refund_eligibility",
        display_name="Checking Refund Eligibility",
        description=(
            "Check whether an order can still be returned for a refund under the "
            "store's return policy."
        ),
        handler=check_refund_eligibility,
        parameters=(_ORDER_ID_PARAM,),
        caller_scoped=True,
    ),
)
