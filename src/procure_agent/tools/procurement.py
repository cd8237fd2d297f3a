"""Procurement operations exposed to the language model.

The business logic lives behind ``ProcurementBackend``; this module only
declares argument schemas, shapes payloads for the model, and binds the
operations into a ToolRegistry.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..errors import ToolExecutionError
from ..models import SYSTEM_ROLE, Message
from .base import ToolContext, ToolSpec
from .registry import ToolRegistry

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a helpful AI procurement assistant. Help users search the \
catalog, manage their shopping cart and create purchase requests.

- Be concise and friendly.
- Confirm actions before checking out.
- Ask clarifying questions for ambiguous requests.
- If a tool reports an error, explain it briefly and suggest an alternative."""


class ProcurementBackend(ABC):
    """Catalog, cart and checkout operations backed by the document store."""

    @abstractmethod
    async def search_items(
        self,
        query: str,
        category: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        limit: int = 10,
    ) -> List[Dict[str, Any]]:
        """Return catalog items matching the query."""

    @abstractmethod
    async def get_cart(self, user_id: str) -> Dict[str, Any]:
        """Return ``{"items": [...], "totalCost": float}`` for the user's cart."""

    @abstractmethod
    async def add_item(self, user_id: str, item_id: str, quantity: int) -> Dict[str, Any]:
        """Add an item and return the updated cart."""

    @abstractmethod
    async def update_quantity(self, user_id: str, item_id: str, quantity: int) -> Dict[str, Any]:
        """Set an item's quantity (0 removes it) and return the updated cart."""

    @abstractmethod
    async def remove_item(self, user_id: str, item_id: str) -> Dict[str, Any]:
        """Remove an item and return the updated cart."""

    @abstractmethod
    async def checkout(self, user_id: str, notes: Optional[str] = None) -> Dict[str, Any]:
        """Create a purchase request from the cart and return it."""


class _ToolArgs(BaseModel):
    # No coercion: "2" is not a quantity.
    model_config = ConfigDict(populate_by_name=True, strict=True)


class SearchCatalogArgs(_ToolArgs):
    query: str = Field(
        min_length=1,
        max_length=500,
        description='A single product name or category, e.g. "ergonomic keyboard"',
    )
    category: Optional[str] = Field(default=None, description="Category filter")
    min_price: Optional[float] = Field(
        default=None, ge=0, alias="minPrice", description="Minimum price filter"
    )
    max_price: Optional[float] = Field(
        default=None, ge=0, alias="maxPrice", description="Maximum price filter"
    )
    limit: int = Field(default=10, ge=1, le=100, description="Maximum number of results")

    @model_validator(mode="after")
    def _check_query_and_prices(self) -> "SearchCatalogArgs":
        if not self.query.strip():
            raise ValueError("Search query cannot be only whitespace")
        if self.min_price is not None and self.max_price is not None:
            if self.min_price > self.max_price:
                raise ValueError("Minimum price must be less than or equal to maximum price")
        return self


class ItemArgs(_ToolArgs):
    item_id: str = Field(
        min_length=1, max_length=100, alias="itemId", description="Item ID from search results"
    )


class AddToCartArgs(ItemArgs):
    quantity: int = Field(default=1, ge=1, le=1000, description="Quantity to add")


class UpdateCartQuantityArgs(ItemArgs):
    quantity: int = Field(
        ge=0, le=1000, description="New total quantity for the item; 0 removes it"
    )


class GetCartArgs(_ToolArgs):
    pass


class CheckoutArgs(_ToolArgs):
    notes: Optional[str] = Field(default=None, max_length=1000, description="Purchase notes")


def _require_user(context: ToolContext, action: str) -> str:
    if not context.user_id:
        raise ToolExecutionError(f"User must be authenticated to {action}")
    return context.user_id


def format_cart(cart: Dict[str, Any]) -> Dict[str, Any]:
    items = [
        {
            "itemId": item["itemId"],
            "itemName": item["itemName"],
            "itemPrice": item["itemPrice"],
            "quantity": item["quantity"],
        }
        for item in cart.get("items", [])
    ]
    return {"items": items, "totalCost": cart.get("totalCost", 0), "itemCount": len(items)}


def format_cart_context(cart: Dict[str, Any]) -> str:
    """Render a cart snapshot as pinned context for the model."""
    lines = [
        f"- {item['itemName']} (x{item['quantity']}) - "
        f"${item['itemPrice'] * item['quantity']:.2f}"
        for item in cart.get("items", [])
    ]
    return (
        "Current cart contents:\n"
        + "\n".join(lines)
        + f"\nTotal: ${cart.get('totalCost', 0):.2f}"
    )


class ProcurementTools:
    """Binds procurement operations on a backend to tool handlers."""

    def __init__(self, backend: ProcurementBackend):
        self.backend = backend

    async def search_catalog(self, args: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
        items = await self.backend.search_items(
            query=args["query"].strip(),
            category=args.get("category"),
            min_price=args.get("min_price"),
            max_price=args.get("max_price"),
            limit=args.get("limit", 10),
        )
        logger.debug(f"Search catalog '{args['query']}' returned {len(items)} items")
        return {
            "items": [
                {
                    "id": item["id"],
                    "name": item["name"],
                    "category": item.get("category"),
                    "description": item.get("description"),
                    "price": item["price"],
                    "availability": "in_stock" if item.get("active", True) else "out_of_stock",
                }
                for item in items
            ],
            "count": len(items),
        }

    async def add_to_cart(self, args: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
        user_id = _require_user(context, "add items to cart")
        cart = await self.backend.add_item(user_id, args["item_id"], args["quantity"])
        logger.info(f"Item {args['item_id']} x{args['quantity']} added to cart of {user_id}")
        return {"success": True, "cart": format_cart(cart)}

    async def update_cart_quantity(
        self, args: Dict[str, Any], context: ToolContext
    ) -> Dict[str, Any]:
        user_id = _require_user(context, "update the cart")
        cart = await self.backend.update_quantity(user_id, args["item_id"], args["quantity"])
        return {"success": True, "cart": format_cart(cart)}

    async def remove_from_cart(self, args: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
        user_id = _require_user(context, "remove items from cart")
        cart = await self.backend.remove_item(user_id, args["item_id"])
        logger.info(f"Item {args['item_id']} removed from cart of {user_id}")
        return {"success": True, "cart": format_cart(cart)}

    async def get_cart(self, args: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
        user_id = _require_user(context, "view cart")
        cart = format_cart(await self.backend.get_cart(user_id))
        if not cart["items"]:
            cart["message"] = "Your cart is empty"
        return cart

    async def checkout(self, args: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
        user_id = _require_user(context, "checkout")
        request = await self.backend.checkout(user_id, args.get("notes"))
        logger.info(f"Purchase request {request['id']} created for {user_id}")
        return {
            "success": True,
            "purchaseRequest": {
                "id": request["id"],
                "totalCost": request["totalCost"],
                "itemCount": len(request.get("items", [])),
                "status": request.get("status", "Submitted"),
                "createdAt": str(request.get("createdAt", "")),
            },
        }

    async def pinned_context(self, user_id: Optional[str]) -> List[Message]:
        """System instructions plus a snapshot of the user's cart, when non-empty."""
        messages = [Message(role=SYSTEM_ROLE, content=SYSTEM_PROMPT)]
        if not user_id:
            return messages
        try:
            cart = await self.backend.get_cart(user_id)
        except Exception as e:
            logger.warning(f"Failed to fetch cart for context (user={user_id}): {e}")
            return messages
        if cart and cart.get("items"):
            messages.append(Message(role=SYSTEM_ROLE, content=format_cart_context(cart)))
        return messages

    def specs(self) -> List[ToolSpec]:
        def cart_attachment(payload: Dict[str, Any]) -> Dict[str, Any]:
            return {"cart": payload["cart"]}

        return [
            ToolSpec(
                name="search_catalog",
                description=(
                    "Search for products in the catalog by a single keyword. Returns matching "
                    "items with id, name, price, category and description. Call it several "
                    "times for several different products."
                ),
                args_model=SearchCatalogArgs,
                handler=self.search_catalog,
                cacheable=True,
                attachments=lambda payload: {"items": payload["items"]},
            ),
            ToolSpec(
                name="add_to_cart",
                description="Add an item to the shopping cart. Use the item ID from search results.",
                args_model=AddToCartArgs,
                handler=self.add_to_cart,
                attachments=cart_attachment,
            ),
            ToolSpec(
                name="update_cart_quantity",
                description=(
                    "Set the total quantity of an item in the cart. A quantity of 0 removes it."
                ),
                args_model=UpdateCartQuantityArgs,
                handler=self.update_cart_quantity,
                attachments=cart_attachment,
            ),
            ToolSpec(
                name="remove_from_cart",
                description="Remove an item (all quantities) from the shopping cart.",
                args_model=ItemArgs,
                handler=self.remove_from_cart,
                attachments=cart_attachment,
            ),
            ToolSpec(
                name="get_cart",
                description="View current shopping cart contents and total cost.",
                args_model=GetCartArgs,
                handler=self.get_cart,
                attachments=lambda payload: {"cart": payload},
            ),
            ToolSpec(
                name="checkout",
                description="Create a purchase request from the cart items.",
                args_model=CheckoutArgs,
                handler=self.checkout,
                attachments=lambda payload: {"purchaseRequest": payload["purchaseRequest"]},
            ),
        ]


def build_procurement_registry(backend: ProcurementBackend) -> ToolRegistry:
    """Registry with every procurement operation bound to ``backend``."""
    return ToolRegistry(ProcurementTools(backend).specs())
