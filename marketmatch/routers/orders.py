from __future__ import annotations
from typing import Any, Optional
from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from .. import orders
from ..auth import get_current_user
from ..database import get_db
from ..schemas import OrderCancelIn, OrderIn, OrderStatus

router = APIRouter(prefix="/api/user/orders", tags=["orders"])


@router.post("", status_code=201)
async def create_order(
    payload: OrderIn,
    user: dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    order = await orders.create_order(
        db, user["_id"], payload.shipping_address, payload.payment_method, payload.notes
    )
    return {"success": True, "message": "Order created successfully", "order": orders.order_view(order)}


@router.get("")
async def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[OrderStatus] = None,
    user: dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    docs, pagination = await orders.list_orders(db, user["_id"], status=status, page=page, limit=limit)
    return {"success": True, "orders": [orders.order_view(d) for d in docs], "pagination": pagination}


@router.get("/stats")
async def order_stats(
    user: dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    return {"success": True, "stats": await orders.order_stats(db, user["_id"])}


@router.get("/status-options")
async def status_options(user: dict[str, Any] = Depends(get_current_user)):
    return {"success": True, "status_options": orders.status_options()}


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    user: dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    order = await orders.get_order(db, order_id, user["_id"])
    return {"success": True, "order": orders.order_view(order)}


@router.patch("/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    payload: Optional[OrderCancelIn] = None,
    user: dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    order = await orders.get_order(db, order_id, user["_id"])
    order = await orders.cancel_order(db, order, payload.reason if payload else None)
    return {"success": True, "message": "Order cancelled successfully", "order": orders.order_view(order)}
