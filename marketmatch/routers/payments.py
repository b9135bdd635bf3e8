from __future__ import annotations
from typing import Any, Optional
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorDatabase

from .. import payments
from ..auth import get_current_user
from ..database import get_db
from ..orders import get_order
from ..schemas import PaymentIn, RefundIn

router = APIRouter(prefix="/api/user/payments", tags=["payments"])


@router.post("")
async def process_payment(
    payload: PaymentIn,
    user: dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    order = await get_order(db, payload.order_id, user["_id"])
    result, order = await payments.process_payment(
        db, order, payload.payment_method, payload.payment_details
    )
    if not result.success:
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": result.message,
                "payment": {"order_id": str(order["_id"]), "status": "failed", "method": payload.payment_method},
            },
        )
    return {
        "success": True,
        "message": result.message,
        "payment": {
            "order_id": str(order["_id"]),
            "transaction_id": result.transaction_id,
            "amount": order["total"],
            "status": order["payment_status"],
            "method": payload.payment_method,
        },
    }


@router.get("/methods")
async def payment_methods(user: dict[str, Any] = Depends(get_current_user)):
    return {"success": True, "payment_methods": payments.PAYMENT_METHODS}


@router.get("/{order_id}/status")
async def payment_status(
    order_id: str,
    user: dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    order = await get_order(db, order_id, user["_id"])
    return {"success": True, "payment": payments.payment_status(order)}


@router.post("/{order_id}/refund")
async def refund(
    order_id: str,
    payload: Optional[RefundIn] = None,
    user: dict[str, Any] = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    order = await get_order(db, order_id, user["_id"])
    reason = payload.reason if payload else None
    order = await payments.process_refund(db, order, reason)
    return {
        "success": True,
        "message": "Refund processed successfully",
        "refund": {
            "order_id": str(order["_id"]),
            "amount": order["total"],
            "transaction_id": order.get("payment_transaction_id"),
            "refunded_at": order["refunded_at"],
            "reason": reason,
        },
    }
