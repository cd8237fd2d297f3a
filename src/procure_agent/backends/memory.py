"""In-memory procurement backend with a small seeded catalog."""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ..errors import ToolExecutionError
from ..tools.procurement import ProcurementBackend

logger = logging.getLogger(__name__)

DEFAULT_CATALOG: List[Dict[str, Any]] = [
    {
        "id": "item_pen_blue",
        "name": "Ballpoint Pen, Blue (12-pack)",
        "category": "Office Supplies",
        "description": "Medium point ballpoint pens with blue ink",
        "price": 6.49,
        "active": True,
    },
    {
        "id": "item_pen_gel",
        "name": "Gel Pen, Black (10-pack)",
        "category": "Office Supplies",
        "description": "Smooth-writing retractable gel pens",
        "price": 9.99,
        "active": True,
    },
    {
        "id": "item_pen_stick",
        "name": "Stick Pen, Black",
        "category": "Office Supplies",
        "description": "Disposable stick pens, sold individually",
        "price": 0.89,
        "active": True,
    },
    {
        "id": "item_pen_fineliner",
        "name": "Fineliner Pen, 0.4mm",
        "category": "Office Supplies",
        "description": "Fine tip felt pens for drafting and notes",
        "price": 2.49,
        "active": True,
    },
    {
        "id": "item_highlighter",
        "name": "Highlighter Pens (4-pack)",
        "category": "Office Supplies",
        "description": "Chisel tip highlighters in assorted colours",
        "price": 4.79,
        "active": True,
    },
    {
        "id": "item_notebook_a5",
        "name": "A5 Notebook, Ruled",
        "category": "Office Supplies",
        "description": "Hardcover ruled notebook, 192 pages",
        "price": 7.25,
        "active": True,
    },
    {
        "id": "item_stapler",
        "name": "Desktop Stapler",
        "category": "Office Supplies",
        "description": "Full-strip stapler, 25-sheet capacity",
        "price": 14.5,
        "active": True,
    },
    {
        "id": "item_keyboard_ergo",
        "name": "Ergonomic Keyboard",
        "category": "Electronics",
        "description": "Split wireless keyboard with palm rest",
        "price": 89.0,
        "active": True,
    },
    {
        "id": "item_mouse_wireless",
        "name": "Wireless Mouse",
        "category": "Electronics",
        "description": "Compact wireless mouse with USB receiver",
        "price": 24.99,
        "active": True,
    },
    {
        "id": "item_monitor_27",
        "name": "27-inch Monitor",
        "category": "Electronics",
        "description": "QHD IPS monitor with height-adjustable stand",
        "price": 329.0,
        "active": True,
    },
    {
        "id": "item_chair_task",
        "name": "Task Chair",
        "category": "Furniture",
        "description": "Mesh-back office chair with lumbar support",
        "price": 219.0,
        "active": True,
    },
    {
        "id": "item_desk_lamp",
        "name": "LED Desk Lamp",
        "category": "Furniture",
        "description": "Dimmable LED lamp with adjustable arm",
        "price": 39.95,
        "active": False,
    },
]


class InMemoryProcurementBackend(ProcurementBackend):
    """Catalog, carts and purchase requests held in dicts.

    Carts map item id to quantity per user. Prices are looked up from the
    catalog whenever a cart is rendered.
    """

    def __init__(self, catalog: Optional[Iterable[Dict[str, Any]]] = None):
        source = DEFAULT_CATALOG if catalog is None else catalog
        self.catalog: Dict[str, Dict[str, Any]] = {item["id"]: dict(item) for item in source}
        self.carts: Dict[str, Dict[str, int]] = {}
        self.purchase_requests: List[Dict[str, Any]] = []
        self._lock = asyncio.Lock()

    async def search_items(
        self,
        query: str,
        category: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        limit: int = 10,
    ) -> List[Dict[str, Any]]:
        terms = query.lower().split()
        results = []
        for item in self.catalog.values():
            if not item.get("active", True):
                continue
            haystack = " ".join(
                [item["name"], item.get("category", ""), item.get("description", "")]
            ).lower()
            if not any(term in haystack for term in terms):
                continue
            if category and item.get("category", "").lower() != category.lower():
                continue
            if min_price is not None and item["price"] < min_price:
                continue
            if max_price is not None and item["price"] > max_price:
                continue
            results.append(dict(item))
            if len(results) >= limit:
                break
        return results

    async def get_cart(self, user_id: str) -> Dict[str, Any]:
        return self._render_cart(user_id)

    async def add_item(self, user_id: str, item_id: str, quantity: int) -> Dict[str, Any]:
        item = self._get_active_item(item_id)
        async with self._lock:
            cart = self.carts.setdefault(user_id, {})
            cart[item["id"]] = cart.get(item["id"], 0) + quantity
        return self._render_cart(user_id)

    async def update_quantity(self, user_id: str, item_id: str, quantity: int) -> Dict[str, Any]:
        async with self._lock:
            cart = self.carts.get(user_id, {})
            if item_id not in cart:
                raise ToolExecutionError(f"Item {item_id} is not in the cart")
            if quantity == 0:
                del cart[item_id]
            else:
                cart[item_id] = quantity
        return self._render_cart(user_id)

    async def remove_item(self, user_id: str, item_id: str) -> Dict[str, Any]:
        async with self._lock:
            cart = self.carts.get(user_id, {})
            if item_id not in cart:
                raise ToolExecutionError(f"Item {item_id} is not in the cart")
            del cart[item_id]
        return self._render_cart(user_id)

    async def checkout(self, user_id: str, notes: Optional[str] = None) -> Dict[str, Any]:
        async with self._lock:
            snapshot = self._render_cart(user_id)
            if not snapshot["items"]:
                raise ToolExecutionError("Cart is empty")
            request = {
                "id": f"pr_{uuid.uuid4().hex[:10]}",
                "userId": user_id,
                "items": snapshot["items"],
                "totalCost": snapshot["totalCost"],
                "notes": notes,
                "status": "Submitted",
                "createdAt": datetime.now().isoformat(),
            }
            self.purchase_requests.append(request)
            self.carts[user_id] = {}
        logger.info(f"Checkout for {user_id}: {len(request['items'])} items, ${request['totalCost']:.2f}")
        return request

    def _get_active_item(self, item_id: str) -> Dict[str, Any]:
        item = self.catalog.get(item_id)
        if item is None:
            raise ToolExecutionError(f"Item {item_id} not found")
        if not item.get("active", True):
            raise ToolExecutionError(f"Item {item_id} is not available")
        return item

    def _render_cart(self, user_id: str) -> Dict[str, Any]:
        items = []
        for item_id, quantity in self.carts.get(user_id, {}).items():
            item = self.catalog[item_id]
            items.append(
                {
                    "itemId": item_id,
                    "itemName": item["name"],
                    "itemPrice": item["price"],
                    "quantity": quantity,
                }
            )
        total = round(sum(i["itemPrice"] * i["quantity"] for i in items), 2)
        return {"items": items, "totalCost": total}
