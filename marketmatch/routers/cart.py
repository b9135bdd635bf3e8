from __future__ import annotations
from typing import Any
from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from .. import cart as carts
from ..auth import get_current_user
from ..database import get_db
from ..schemas import CartItemIn, CartQuantityIn

router = APIRouter(prefix="/api/cart", tags=["cart"])


@router.get("/summary")
async def cart_summary(
    user: dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    return {"success": True, "summary": await carts.summary(db, user["_id"])}


@router.get("")
async def get_cart(
    user: dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    return {"success": True, "cart": await carts.get_cart(db, user["_id"])}


@router.post("")
async def add_to_cart(
    payload: CartItemIn,
    user: dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    cart = await carts.add_item(db, user["_id"], payload.product_id, payload.quantity)
    return {"success": True, "message": "Item added to cart successfully", "cart": cart}


@router.delete("/clear")
async def clear_cart(
    user: dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    cart = await carts.clear(db, user["_id"])
    return {"success": True, "message": "Cart cleared successfully", "cart": cart}


@router.put("/{product_id}")
async def update_cart_item(
    product_id: str,
    payload: CartQuantityIn,
    user: dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    cart = await carts.update_item_quantity(db, user["_id"], product_id, payload.quantity)
    return {"success": True, "message": "Cart updated successfully", "cart": cart}


@router.delete("/{product_id}")
async def remove_from_cart(
    product_id: str,
    user: dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    cart = await carts.remove_item(db, user["_id"], product_id)
    return {"success": True, "message": "Item removed from cart successfully", "cart": cart}
