from __future__ import annotations
import logging
import math
import re
from datetime import timedelta
from typing import Any, Optional
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from .config import settings
from .database import create_document, get_documents, parse_object_id, serialize_document, utcnow
from .errors import ConflictError, NotFoundError, ValidationError
from .schemas import Product, ProductUpdate

logger = logging.getLogger(__name__)

PRODUCTS = "product"

SORT_OPTIONS: dict[str, list[tuple[str, int]]] = {
    "newest": [("created_at", -1)],
    "oldest": [("created_at", 1)],
    "price-low": [("price", 1)],
    "price-high": [("price", -1)],
    "name-asc": [("name", 1)],
    "name-desc": [("name", -1)],
}

NEW_ARRIVAL_DAYS = 30
SHOWCASE_LIMIT = 24


# Derived fields

def discount_percentage(doc: dict[str, Any]) -> int:
    original = doc.get("original_price")
    price = doc.get("price", 0)
    if original and original > price:
        return round((original - price) / original * 100)
    return 0


def is_available(doc: dict[str, Any]) -> bool:
    return doc.get("status") == "active" and doc.get("quantity", 0) > 0


def formatted_price(price: float, currency: str | None = None) -> str:
    amount = f"{int(price):,}" if float(price).is_integer() else f"{price:,.2f}"
    return f"{currency or settings.CURRENCY} {amount}"


def product_view(doc: dict[str, Any]) -> dict[str, Any]:
    out = serialize_document(doc)
    out["discount_percentage"] = discount_percentage(doc)
    out["is_available"] = is_available(doc)
    out["formatted_price"] = formatted_price(doc.get("price", 0))
    return out


def pagination(page: int, limit: int, total: int) -> dict[str, Any]:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "current_page": page,
        "total_pages": total_pages,
        "total_products": total,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }


# Public browsing

async def list_products(
    db: AsyncIOMotorDatabase,
    page: int = 1,
    limit: int = 20,
    category: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    q: Optional[str] = None,
    sort: str = "newest",
) -> tuple[list[dict[str, Any]], dict[str, Any]]:
    page = max(page, 1)
    limit = max(limit, 1)
    filter_dict: dict[str, Any] = {"status": "active"}
    if category:
        filter_dict["category"] = {"$regex": f"^{re.escape(category)}$", "$options": "i"}
    if q:
        # Simple case-insensitive name search
        filter_dict["name"] = {"$regex": re.escape(q), "$options": "i"}
    if min_price is not None or max_price is not None:
        filter_dict["price"] = {}
        if min_price is not None:
            filter_dict["price"]["$gte"] = min_price
        if max_price is not None:
            filter_dict["price"]["$lte"] = max_price

    docs = await get_documents(
        db, PRODUCTS, filter_dict,
        sort=SORT_OPTIONS.get(sort, SORT_OPTIONS["newest"]),
        skip=(page - 1) * limit,
        limit=limit,
    )
    total = await db[PRODUCTS].count_documents(filter_dict)
    return [product_view(d) for d in docs], pagination(page, limit, total)


async def get_product(db: AsyncIOMotorDatabase, product_id: Any, active_only: bool = True) -> dict[str, Any]:
    filter_dict: dict[str, Any] = {"_id": parse_object_id(product_id, "Product")}
    if active_only:
        filter_dict["status"] = "active"
    doc = await db[PRODUCTS].find_one(filter_dict)
    if not doc:
        raise NotFoundError("Product not found")
    return doc


async def get_products_by_ids(db: AsyncIOMotorDatabase, product_ids: list[ObjectId]) -> dict[ObjectId, dict[str, Any]]:
    if not product_ids:
        return {}
    docs = await get_documents(db, PRODUCTS, {"_id": {"$in": product_ids}}, limit=len(product_ids))
    return {d["_id"]: d for d in docs}


async def new_arrivals(db: AsyncIOMotorDatabase) -> list[dict[str, Any]]:
    since = utcnow() - timedelta(days=NEW_ARRIVAL_DAYS)
    docs = await get_documents(
        db, PRODUCTS, {"status": "active", "created_at": {"$gte": since}},
        sort=[("created_at", -1)], limit=SHOWCASE_LIMIT,
    )
    return [product_view(d) for d in docs]


async def deals(db: AsyncIOMotorDatabase) -> list[dict[str, Any]]:
    candidates = await get_documents(
        db, PRODUCTS, {"status": "active", "original_price": {"$gt": 0}},
        sort=[("updated_at", -1)], limit=SHOWCASE_LIMIT * 4,
    )
    discounted = [d for d in candidates if d["original_price"] > d.get("price", 0)]
    return [product_view(d) for d in discounted[:SHOWCASE_LIMIT]]


# Comparison

COMPARE_SEARCH_LIMIT = 20
COMPARE_MAX_PRODUCTS = 4
SIMILAR_LIMIT = 10
SIMILAR_PRICE_BAND = 0.3


def _object_ids(values: list[str]) -> list[ObjectId]:
    if not all(isinstance(v, str) and ObjectId.is_valid(v) and len(v) == 24 for v in values):
        raise ValidationError("Invalid product ID format")
    return [ObjectId(v) for v in values]


async def compare_search(
    db: AsyncIOMotorDatabase,
    q: Optional[str],
    category: Optional[str] = None,
    brand: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    limit: int = COMPARE_SEARCH_LIMIT,
) -> list[dict[str, Any]]:
    """Search active products by name, description, category or brand.

    Queries shorter than two characters return nothing.
    """
    q = (q or "").strip()
    if len(q) < 2:
        return []
    pattern = {"$regex": re.escape(q), "$options": "i"}
    filter_dict: dict[str, Any] = {
        "status": "active",
        "$or": [{"name": pattern}, {"description": pattern}, {"category": pattern}, {"brand": pattern}],
    }
    if category:
        filter_dict["category"] = {"$regex": re.escape(category), "$options": "i"}
    if brand:
        filter_dict["brand"] = {"$regex": re.escape(brand), "$options": "i"}
    if min_price is not None or max_price is not None:
        filter_dict["price"] = {}
        if min_price is not None:
            filter_dict["price"]["$gte"] = min_price
        if max_price is not None:
            filter_dict["price"]["$lte"] = max_price
    docs = await get_documents(db, PRODUCTS, filter_dict, sort=[("created_at", -1)], limit=max(limit, 1))
    return [product_view(d) for d in docs]


async def compare_by_ids(db: AsyncIOMotorDatabase, ids: list[str]) -> list[dict[str, Any]]:
    """Active products for a saved comparison, at most four, in the order asked for."""
    if not ids:
        raise ValidationError("Product IDs array is required")
    wanted = list(dict.fromkeys(_object_ids(ids)))[:COMPARE_MAX_PRODUCTS]
    found = await get_products_by_ids(db, wanted)
    return [product_view(found[i]) for i in wanted if i in found and found[i].get("status") == "active"]


async def similar_products(
    db: AsyncIOMotorDatabase, product_id: str, limit: int = SIMILAR_LIMIT
) -> tuple[dict[str, Any], list[dict[str, Any]]]:
    """Active products in the same category priced within 30% of the given one."""
    (oid,) = _object_ids([product_id])
    base = await get_product(db, oid, active_only=False)
    price = base.get("price", 0)
    band = price * SIMILAR_PRICE_BAND
    docs = await get_documents(
        db, PRODUCTS,
        {
            "_id": {"$ne": oid},
            "status": "active",
            "category": base.get("category"),
            "price": {"$gte": price - band, "$lte": price + band},
        },
        sort=[("created_at", -1)],
        limit=max(limit, 1),
    )
    summary = {"id": str(oid), "name": base.get("name"), "category": base.get("category"), "price": price}
    return summary, [product_view(d) for d in docs]


# Inventory

async def reserve_stock(db: AsyncIOMotorDatabase, product_id: ObjectId, quantity: int) -> bool:
    """Take `quantity` units off the shelf only if that many are on hand.

    Returns False, leaving the product untouched, when the product is not
    active or has too little stock.
    """
    updated = await db[PRODUCTS].find_one_and_update(
        {"_id": product_id, "status": "active", "quantity": {"$gte": quantity}},
        {"$inc": {"quantity": -quantity}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    return updated is not None


async def release_stock(db: AsyncIOMotorDatabase, product_id: ObjectId, quantity: int) -> None:
    await db[PRODUCTS].update_one(
        {"_id": product_id},
        {"$inc": {"quantity": quantity}, "$set": {"updated_at": utcnow()}},
    )


# Admin moderation

def _check_prices(price: Optional[float], original_price: Optional[float]) -> None:
    if original_price and price is not None and original_price < price:
        raise ValidationError("Original price must be greater than or equal to current price")


async def create_product(db: AsyncIOMotorDatabase, product: Product, managed_by: str) -> dict[str, Any]:
    _check_prices(product.price, product.original_price)
    data = product.model_dump()
    data["tags"] = [t.strip().lower() for t in data["tags"] if t.strip()]
    data["managed_by"] = parse_object_id(managed_by, "User")
    data["views"] = 0
    doc = await create_document(db, PRODUCTS, data)
    logger.info("Product %s created by %s", doc["_id"], managed_by)
    return doc


async def update_product(db: AsyncIOMotorDatabase, product_id: str, changes: ProductUpdate) -> dict[str, Any]:
    current = await get_product(db, product_id, active_only=False)
    updates = changes.model_dump(exclude_unset=True)
    if "tags" in updates and updates["tags"] is not None:
        updates["tags"] = [t.strip().lower() for t in updates["tags"] if t.strip()]
    _check_prices(
        updates.get("price", current.get("price")),
        updates.get("original_price", current.get("original_price")),
    )
    updates["updated_at"] = utcnow()
    return await db[PRODUCTS].find_one_and_update(
        {"_id": current["_id"]}, {"$set": updates}, return_document=ReturnDocument.AFTER,
    )


async def delete_product(db: AsyncIOMotorDatabase, product_id: str) -> None:
    current = await get_product(db, product_id, active_only=False)
    if await db["order"].find_one({"items.product_id": current["_id"]}):
        raise ConflictError("Product is referenced by existing orders; revoke it instead")
    await db[PRODUCTS].delete_one({"_id": current["_id"]})
    await db["wishlist"].delete_many({"product_id": current["_id"]})
    logger.info("Product %s deleted", current["_id"])


async def set_product_status(db: AsyncIOMotorDatabase, product_id: str, status: str) -> dict[str, Any]:
    updated = await db[PRODUCTS].find_one_and_update(
        {"_id": parse_object_id(product_id, "Product")},
        {"$set": {"status": status, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise NotFoundError("Product not found")
    logger.info("Product %s set to %s", product_id, status)
    return updated


async def list_all_products(db: AsyncIOMotorDatabase, status: Optional[str] = None) -> list[dict[str, Any]]:
    filter_dict = {"status": status} if status else {}
    docs = await get_documents(db, PRODUCTS, filter_dict, sort=[("created_at", -1)], limit=1000)
    return [product_view(d) for d in docs]
