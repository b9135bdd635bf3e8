"""Saved products per user. One entry per (user, product), newest first."""

from __future__ import annotations
import logging
from typing import Any
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from .catalog import get_product, get_products_by_ids, product_view
from .database import create_document, get_documents, parse_object_id, utcnow
from .errors import ConflictError, NotFoundError
from .schemas import Wishlist

logger = logging.getLogger(__name__)

WISHLIST = "wishlist"
MAX_ITEMS = 500


def wishlist_view(entry: dict[str, Any], product: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": str(entry["_id"]),
        "product_id": str(entry["product_id"]),
        "added_at": entry.get("added_at"),
        "product": product_view(product),
    }


async def get_wishlist(db: AsyncIOMotorDatabase, user_id: Any) -> list[dict[str, Any]]:
    """Entries with their product attached. Entries whose product was deleted are skipped."""
    uid = parse_object_id(user_id, "User")
    entries = await get_documents(db, WISHLIST, {"user_id": uid}, sort=[("added_at", -1)], limit=MAX_ITEMS)
    products = await get_products_by_ids(db, [e["product_id"] for e in entries])
    return [wishlist_view(e, products[e["product_id"]]) for e in entries if e["product_id"] in products]


async def add_item(db: AsyncIOMotorDatabase, user_id: Any, product_id: Any) -> dict[str, Any]:
    uid = parse_object_id(user_id, "User")
    product = await get_product(db, product_id)
    entry = Wishlist(user_id=str(uid), product_id=str(product["_id"]), added_at=utcnow()).model_dump()
    entry["user_id"] = uid
    entry["product_id"] = product["_id"]
    try:
        doc = await create_document(db, WISHLIST, entry)
    except DuplicateKeyError:
        raise ConflictError("Item already in wishlist")
    logger.info("User %s wishlisted product %s", uid, product["_id"])
    return wishlist_view(doc, product)


async def remove_item(db: AsyncIOMotorDatabase, user_id: Any, product_id: Any) -> None:
    result = await db[WISHLIST].delete_one({
        "user_id": parse_object_id(user_id, "User"),
        "product_id": parse_object_id(product_id, "Wishlist item"),
    })
    if not result.deleted_count:
        raise NotFoundError("Wishlist item not found")


async def is_wishlisted(db: AsyncIOMotorDatabase, user_id: Any, product_id: Any) -> bool:
    try:
        pid = parse_object_id(product_id, "Product")
    except NotFoundError:
        return False
    entry = await db[WISHLIST].find_one({"user_id": parse_object_id(user_id, "User"), "product_id": pid})
    return entry is not None
