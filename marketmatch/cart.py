"""Per-user shopping cart.

Stored lines hold only a product reference and a quantity. Prices, names and
totals are resolved from the catalog on every read, so the cart always shows
current prices until checkout snapshots them into an order.
"""

from __future__ import annotations
import logging
from typing import Any, Optional
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from .catalog import get_product, get_products_by_ids
from .database import parse_object_id, utcnow
from .errors import InvalidQuantityError, NotFoundError, OutOfStockError
from .pricing import line_total, round_money

logger = logging.getLogger(__name__)

CARTS = "cart"
MAX_LINE_QUANTITY = 100


async def get_or_create(db: AsyncIOMotorDatabase, user_id: Any) -> dict[str, Any]:
    uid = parse_object_id(user_id, "User")
    now = utcnow()
    try:
        return await db[CARTS].find_one_and_update(
            {"user_id": uid},
            {"$setOnInsert": {"user_id": uid, "items": [], "created_at": now, "updated_at": now}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        # Lost an upsert race against another request for the same user
        return await db[CARTS].find_one({"user_id": uid})


async def _save_items(db: AsyncIOMotorDatabase, cart: dict[str, Any], items: list[dict[str, Any]]) -> dict[str, Any]:
    cart["items"] = items
    cart["updated_at"] = utcnow()
    await db[CARTS].update_one(
        {"_id": cart["_id"]}, {"$set": {"items": items, "updated_at": cart["updated_at"]}}
    )
    return cart


def _find_line(cart: dict[str, Any], product_id: ObjectId) -> Optional[dict[str, Any]]:
    for item in cart.get("items", []):
        if item["product_id"] == product_id:
            return item
    return None


def _product_summary(product: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": str(product["_id"]),
        "name": product.get("name"),
        "price": product.get("price", 0),
        "images": product.get("images", []),
        "category": product.get("category"),
        "brand": product.get("brand"),
        "status": product.get("status"),
        "quantity": product.get("quantity", 0),
    }


async def resolve_lines(
    db: AsyncIOMotorDatabase, cart: dict[str, Any]
) -> list[tuple[dict[str, Any], dict[str, Any]]]:
    """Pair each cart line with its live product, dropping lines whose product is gone or inactive.

    A drop is written back to the cart before returning.
    """
    items = cart.get("items", [])
    products = await get_products_by_ids(db, [item["product_id"] for item in items])
    resolved = []
    for item in items:
        product = products.get(item["product_id"])
        if product and product.get("status") == "active":
            resolved.append((item, product))

    if len(resolved) != len(items):
        logger.info("Dropping %d unavailable line(s) from cart %s", len(items) - len(resolved), cart["_id"])
        await _save_items(db, cart, [item for item, _ in resolved])
    return resolved


def _totals(resolved: list[tuple[dict[str, Any], dict[str, Any]]]) -> tuple[int, float]:
    total_items = sum(item["quantity"] for item, _ in resolved)
    total_price = round_money(sum(line_total(p.get("price", 0), item["quantity"]) for item, p in resolved))
    return total_items, total_price


async def cart_view(db: AsyncIOMotorDatabase, cart: dict[str, Any]) -> dict[str, Any]:
    resolved = await resolve_lines(db, cart)
    total_items, total_price = _totals(resolved)
    return {
        "id": str(cart["_id"]),
        "items": [
            {
                "product": _product_summary(product),
                "quantity": item["quantity"],
                "line_total": line_total(product.get("price", 0), item["quantity"]),
                "added_at": item.get("added_at"),
            }
            for item, product in resolved
        ],
        "total_items": total_items,
        "total_price": total_price,
        "created_at": cart.get("created_at"),
        "updated_at": cart.get("updated_at"),
    }


async def get_cart(db: AsyncIOMotorDatabase, user_id: Any) -> dict[str, Any]:
    cart = await get_or_create(db, user_id)
    return await cart_view(db, cart)


async def add_item(db: AsyncIOMotorDatabase, user_id: Any, product_id: Any, quantity: int = 1) -> dict[str, Any]:
    if quantity < 1 or quantity > MAX_LINE_QUANTITY:
        raise InvalidQuantityError()

    product = await get_product(db, product_id)
    cart = await get_or_create(db, user_id)
    line = _find_line(cart, product["_id"])
    in_cart = line["quantity"] if line else 0
    new_quantity = in_cart + quantity

    if new_quantity > product.get("quantity", 0):
        raise OutOfStockError(
            f"Only {product.get('quantity', 0)} items available. You have {in_cart} in cart."
        )
    if new_quantity > MAX_LINE_QUANTITY:
        raise InvalidQuantityError(f"Quantity cannot exceed {MAX_LINE_QUANTITY} (you have {in_cart} in cart)")

    items = [dict(item) for item in cart.get("items", [])]
    if line:
        for item in items:
            if item["product_id"] == product["_id"]:
                item["quantity"] = new_quantity
    else:
        items.append({"product_id": product["_id"], "quantity": quantity, "added_at": utcnow()})

    await _save_items(db, cart, items)
    return await cart_view(db, cart)


async def remove_item(db: AsyncIOMotorDatabase, user_id: Any, product_id: Any) -> dict[str, Any]:
    cart = await get_or_create(db, user_id)
    try:
        pid = parse_object_id(product_id, "Product")
    except NotFoundError:
        return await cart_view(db, cart)
    remaining = [item for item in cart.get("items", []) if item["product_id"] != pid]
    if len(remaining) != len(cart.get("items", [])):
        await _save_items(db, cart, remaining)
    return await cart_view(db, cart)


async def update_item_quantity(db: AsyncIOMotorDatabase, user_id: Any, product_id: Any, quantity: int) -> dict[str, Any]:
    if quantity < 0 or quantity > MAX_LINE_QUANTITY:
        raise InvalidQuantityError(f"Quantity must be between 0 and {MAX_LINE_QUANTITY}")
    if quantity == 0:
        return await remove_item(db, user_id, product_id)

    product = await get_product(db, product_id)
    if quantity > product.get("quantity", 0):
        raise OutOfStockError(f"Only {product.get('quantity', 0)} items available in stock")

    cart = await get_or_create(db, user_id)
    if _find_line(cart, product["_id"]) is None:
        raise NotFoundError("Item not found in cart")

    items = [dict(item) for item in cart["items"]]
    for item in items:
        if item["product_id"] == product["_id"]:
            item["quantity"] = quantity
    await _save_items(db, cart, items)
    return await cart_view(db, cart)


async def clear(db: AsyncIOMotorDatabase, user_id: Any) -> dict[str, Any]:
    cart = await get_or_create(db, user_id)
    await _save_items(db, cart, [])
    return await cart_view(db, cart)


async def summary(db: AsyncIOMotorDatabase, user_id: Any) -> dict[str, Any]:
    cart = await db[CARTS].find_one({"user_id": parse_object_id(user_id, "User")})
    if not cart:
        return {"total_items": 0, "total_price": 0, "item_count": 0}
    resolved = await resolve_lines(db, cart)
    total_items, total_price = _totals(resolved)
    return {"total_items": total_items, "total_price": total_price, "item_count": len(resolved)}
