from __future__ import annotations
from typing import Any
from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from .. import wishlist as wishlists
from ..auth import get_current_user
from ..database import get_db
from ..schemas import WishlistIn

router = APIRouter(prefix="/api/user/wishlist", tags=["wishlist"])


@router.get("")
async def get_wishlist(
    user: dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    items = await wishlists.get_wishlist(db, user["_id"])
    return {"success": True, "items": items, "count": len(items)}


@router.post("", status_code=201)
async def add_to_wishlist(
    payload: WishlistIn,
    user: dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    item = await wishlists.add_item(db, user["_id"], payload.product_id)
    return {"success": True, "message": "Item added to wishlist successfully", "item": item}


@router.get("/check/{product_id}")
async def check_wishlist(
    product_id: str,
    user: dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    return {"success": True, "is_wishlisted": await wishlists.is_wishlisted(db, user["_id"], product_id)}


@router.delete("/{product_id}")
async def remove_from_wishlist(
    product_id: str,
    user: dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    await wishlists.remove_item(db, user["_id"], product_id)
    return {"success": True, "message": "Item removed from wishlist successfully"}
