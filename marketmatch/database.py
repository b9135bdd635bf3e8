from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Any, Optional
from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from .config import settings
from .errors import NotFoundError

logger = logging.getLogger(__name__)

_client: Optional[AsyncIOMotorClient] = None
_db: Optional[AsyncIOMotorDatabase] = None


async def get_db() -> AsyncIOMotorDatabase:
    global _client, _db
    if _db is None:
        _client = AsyncIOMotorClient(settings.DATABASE_URL)
        _db = _client[settings.DATABASE_NAME]
        logger.info("Connected to MongoDB database %s", settings.DATABASE_NAME)
    return _db


def close_db() -> None:
    global _client, _db
    if _client is not None:
        _client.close()
    _client = None
    _db = None


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what MongoDB hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_object_id(value: Any, entity: str = "Document") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise NotFoundError(f"{entity} not found")


def serialize_document(doc: Any) -> Any:
    """Make a stored document JSON friendly: `_id` becomes `id`, ObjectIds become strings."""
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, list):
        return [serialize_document(v) for v in doc]
    if isinstance(doc, dict):
        out = {}
        for key, value in doc.items():
            if key == "_id":
                out["id"] = str(value)
            else:
                out[key] = serialize_document(value)
        return out
    return doc


async def create_document(db: AsyncIOMotorDatabase, collection_name: str, data: dict[str, Any]) -> dict[str, Any]:
    now = utcnow()
    data_with_meta = {**data, "created_at": now, "updated_at": now}
    result = await db[collection_name].insert_one(data_with_meta)
    inserted = await db[collection_name].find_one({"_id": result.inserted_id})
    return inserted or {}


async def get_documents(
    db: AsyncIOMotorDatabase,
    collection_name: str,
    filter_dict: dict[str, Any] | None = None,
    sort: list[tuple[str, int]] | None = None,
    skip: int = 0,
    limit: int = 100,
) -> list[dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    cursor = cursor.limit(limit)
    docs = []
    async for d in cursor:
        docs.append(d)
    return docs


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    await db["user"].create_index("email", unique=True)
    await db["user"].create_index("username", unique=True)
    await db["session"].create_index("token", unique=True)
    await db["cart"].create_index("user_id", unique=True)
    await db["order"].create_index("order_number", unique=True, sparse=True)
    await db["order"].create_index([("order_date", ASCENDING), ("order_sequence", DESCENDING)])
    await db["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    await db["order"].create_index([("status", ASCENDING), ("created_at", DESCENDING)])
    await db["wishlist"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    await db["wishlist"].create_index([("user_id", ASCENDING), ("added_at", DESCENDING)])
    await db["product"].create_index([("status", ASCENDING), ("category", ASCENDING)])
    await db["product"].create_index([("status", ASCENDING), ("created_at", DESCENDING)])
    logger.info("MongoDB indexes ensured")
