"""Product catalogue tools: search, category listing, stock updates."""

from __future__ import annotations

import logging
import re
from typing import Any

from supportflow.models import Product
from supportflow.tools.registry import ToolContext, ToolParameter, ToolResult, ToolSpec

logger = logging.getLogger(__name__)

_PRODUCT_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")
_DESCRIPTION_CHARS = 100


def _product_summary(product: Product) -> dict[str, Any]:
    description = product.description
    if len(description) > _DESCRIPTION_CHARS:
        description = description[:_DESCRIPTION_CHARS] + "..."
    return {
        "id": product.id,
        "name": product.name,
        "description": description,
        "price": f"${product.price:.2f}",
        "category": product.category,
        "stock": product.stock,
        "availability": "In Stock" if product.stock > 0 else "Out of Stock",
    }


async def search_products(
    ctx: ToolContext,
    *,
    query: str | None = None,
    category: str | None = None,
    limit: int = 5,
) -> ToolResult:
    """Search by free text and/or category.  No match is a normal result."""
    if limit < 1:
        return ToolResult.fail("'limit' must be at least 1.")
    products = await ctx.commerce.search_products(
        query=query.strip() if query else None,
        category=category.strip() if category else None,
        limit=limit,
    )
    if not products:
        return ToolResult.ok("No products matched the search.", count=0, products=[])
    return ToolResult.ok(count=len(products), products=[_product_summary(p) for p in products])


async def get_categories(ctx: ToolContext) -> ToolResult:
    categories = await ctx.commerce.categories()
    return ToolResult.ok(count=len(categories), categories=categories)


async def update_product_stock(ctx: ToolContext, *, product_id: str, quantity: int) -> ToolResult:
    if quantity < 0:
        return ToolResult.fail("Stock quantity cannot be negative.")
    if not _PRODUCT_ID_RE.match(product_id.strip()):
        return ToolResult.fail(f'"{product_id}" is not a valid product ID.')

    product = await ctx.commerce.set_product_stock(product_id.strip(), quantity)
    if product is None:
        return ToolResult.fail(f"Product {product_id} was not found.")

    logger.info("Stock of product %s set to %d", product.id, quantity)
    return ToolResult.ok(f"Stock for {product.name} updated to {quantity}.", product=_product_summary(product))


PRODUCT_TOOLS: tuple[ToolSpec, ...] = (
    ToolSpec(
        name="search_products",
        display_name="Searching Products",
        description=(
            "Search the product catalogue by keyword and/or category. Returns "
            "price, stock and availability."
        ),
        handler=search_products,
        parameters=(
            ToolParameter("query", "string", "Keywords to match in name, description or category",
                          required=False),
            ToolParameter("category", "string", "Restrict to this category", required=False),
            ToolParameter("limit", "integer", "Maximum number of results (default 5)", required=False),
        ),
    ),
    ToolSpec(
        name="get_categories",
        display_name="Loading Categories",
        description="List all product categories in the store.",
        handler=get_categories,
    ),
    ToolSpec(
        name="update_product_stock",
        display_name="Updating Stock",
        description="Staff only: set the stock quantity of a product.",
        handler=update_product_stock,
        parameters=(
            ToolParameter("product_id", "string", "The 24-character product ID"),
            ToolParameter("quantity", "integer", "New stock quantity (zero or more)"),
        ),
        privileged=True,
    ),
)
