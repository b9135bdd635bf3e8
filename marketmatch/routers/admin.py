from __future__ import annotations
from collections import defaultdict
from typing import Any, Optional
from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from .. import auth, catalog, orders
from ..database import get_db, get_documents, parse_object_id, serialize_document
from ..errors import ConflictError, NotFoundError
from ..schemas import AdminUserUpdate, OrderStatus, OrderStatusUpdate, Product, ProductStatus, ProductUpdate

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(auth.require_admin)])

# Seed data: a small starter catalogue
SEED_PRODUCTS: list[dict] = [
    {"name": "Wireless Earbuds Pro", "description": "Noise cancelling earbuds with 24h battery case.", "price": 8500, "original_price": 11000, "quantity": 40, "category": "electronics", "brand": "Audionic", "tags": ["audio", "wireless"]},
    {"name": "Smart Fitness Band", "description": "Heart rate, SpO2 and sleep tracking.", "price": 4200, "quantity": 60, "category": "electronics", "brand": "Ronin", "tags": ["fitness"]},
    {"name": "Cotton Kurta", "description": "Breathable summer kurta, regular fit.", "price": 2500, "original_price": 3200, "quantity": 80, "category": "clothing", "brand": "Khaadi", "tags": ["men", "summer"]},
    {"name": "Ceramic Dinner Set", "description": "18-piece dinner set, dishwasher safe.", "price": 9800, "quantity": 15, "category": "home", "brand": "Sonex", "tags": ["kitchen"]},
    {"name": "Leather Wallet", "description": "Slim bifold wallet in genuine leather.", "price": 1500, "quantity": 120, "category": "accessories", "brand": "Bata", "tags": ["men", "leather"]},
]


@router.get("/stats")
async def dashboard_stats(db: AsyncIOMotorDatabase = Depends(get_db)):
    user_count = await db[auth.USERS].count_documents({"role": "buyer"})
    product_count = await db[catalog.PRODUCTS].count_documents({"status": "active"})
    total_orders = await db[orders.ORDERS].count_documents({})

    total_revenue = 0.0
    trend: dict[str, float] = defaultdict(float)
    cursor = db[orders.ORDERS].find(
        {"status": {"$nin": ["cancelled", "refunded"]}}, {"total": 1, "created_at": 1}
    )
    async for order in cursor:
        total_revenue += order.get("total", 0)
        trend[order["created_at"].strftime("%Y-%m-%d")] += order.get("total", 0)

    return {
        "success": True,
        "stats": {
            "user_count": user_count,
            "product_count": product_count,
            "total_orders": total_orders,
            "total_revenue": round(total_revenue, 2),
            "sales_trend": [{"date": d, "sales": round(trend[d], 2)} for d in sorted(trend)],
        },
    }


# User management

@router.get("/users")
async def list_users(db: AsyncIOMotorDatabase = Depends(get_db)):
    docs = await get_documents(db, auth.USERS, {"role": "buyer"}, sort=[("created_at", -1)], limit=1000)
    return {"success": True, "users": [auth.public_user(d) for d in docs]}


@router.get("/users/{user_id}")
async def get_user(user_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    user = await db[auth.USERS].find_one({"_id": parse_object_id(user_id, "User")})
    if not user:
        raise NotFoundError("User not found")
    return {"success": True, "user": auth.public_user(user)}


@router.put("/users/{user_id}")
async def update_user(user_id: str, payload: AdminUserUpdate, db: AsyncIOMotorDatabase = Depends(get_db)):
    user = await auth.update_user(db, user_id, payload)
    return {"success": True, "message": "User updated successfully", "user": auth.public_user(user)}


@router.put("/users/{user_id}/suspend")
async def suspend_user(user_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    user = await auth.update_user(db, user_id, AdminUserUpdate(status="suspended"))
    return {"success": True, "message": "User suspended successfully", "user": auth.public_user(user)}


@router.put("/users/{user_id}/activate")
async def activate_user(user_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    user = await auth.update_user(db, user_id, AdminUserUpdate(status="active"))
    return {"success": True, "message": "User activated successfully", "user": auth.public_user(user)}


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: str,
    admin: dict[str, Any] = Depends(auth.require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    uid = parse_object_id(user_id, "User")
    if uid == admin["_id"]:
        raise ConflictError("Admins cannot delete their own account")
    result = await db[auth.USERS].delete_one({"_id": uid})
    if not result.deleted_count:
        raise NotFoundError("User not found")
    await db[auth.SESSIONS].delete_many({"user_id": uid})
    await db["cart"].delete_one({"user_id": uid})
    await db["wishlist"].delete_many({"user_id": uid})
    return {"success": True, "message": "User deleted successfully"}


# Product management

@router.get("/products")
async def list_products(status: Optional[ProductStatus] = None, db: AsyncIOMotorDatabase = Depends(get_db)):
    return {"success": True, "products": await catalog.list_all_products(db, status)}


@router.post("/products", status_code=201)
async def create_product(
    payload: Product,
    admin: dict[str, Any] = Depends(auth.require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    product = await catalog.create_product(db, payload, admin["_id"])
    return {"success": True, "message": "Product created successfully", "product": catalog.product_view(product)}


@router.put("/products/{product_id}")
async def update_product(product_id: str, payload: ProductUpdate, db: AsyncIOMotorDatabase = Depends(get_db)):
    product = await catalog.update_product(db, product_id, payload)
    return {"success": True, "message": "Product updated successfully", "product": catalog.product_view(product)}


@router.delete("/products/{product_id}")
async def delete_product(product_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    await catalog.delete_product(db, product_id)
    return {"success": True, "message": "Product deleted successfully"}


@router.put("/products/{product_id}/revoke")
async def revoke_product(product_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    product = await catalog.set_product_status(db, product_id, "revoked")
    return {"success": True, "message": "Product revoked successfully", "product": catalog.product_view(product)}


@router.put("/products/{product_id}/reactivate")
async def reactivate_product(product_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    product = await catalog.set_product_status(db, product_id, "active")
    return {"success": True, "message": "Product reactivated successfully", "product": catalog.product_view(product)}


@router.post("/seed")
async def seed_products(
    admin: dict[str, Any] = Depends(auth.require_admin),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    # Insert only if products collection is empty
    if await db[catalog.PRODUCTS].count_documents({}) > 0:
        return {"success": True, "inserted": 0}
    for p in SEED_PRODUCTS:
        await catalog.create_product(db, Product(**p), admin["_id"])
    return {"success": True, "inserted": len(SEED_PRODUCTS)}


# Orders

@router.get("/orders")
async def list_orders(
    status: Optional[OrderStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    docs, pagination = await orders.list_orders(db, status=status, page=page, limit=limit)
    return {"success": True, "orders": [orders.order_view(d) for d in docs], "pagination": pagination}


@router.patch("/orders/{order_id}/status")
async def update_order_status(order_id: str, payload: OrderStatusUpdate, db: AsyncIOMotorDatabase = Depends(get_db)):
    order = await orders.get_order(db, order_id)
    order = await orders.update_status(db, order, payload.status, payload.notes, payload.tracking_number)
    return {"success": True, "message": "Order status updated", "order": orders.order_view(order)}


@router.get("/supply-purchase")
async def supply_purchase(db: AsyncIOMotorDatabase = Depends(get_db)):
    products = await get_documents(db, catalog.PRODUCTS, sort=[("created_at", -1)], limit=1000)
    raw_orders = await get_documents(db, orders.ORDERS, sort=[("created_at", -1)], limit=1000)

    users = await get_documents(
        db, auth.USERS, {"_id": {"$in": list({o["user_id"] for o in raw_orders})}},
        limit=max(len(raw_orders), 1),
    )
    usernames = {u["_id"]: u["username"] for u in users}

    # One row per item sold
    purchases = [
        {
            "order_id": str(order["_id"]),
            "order_number": order.get("order_number"),
            "user": usernames.get(order["user_id"], "Guest"),
            "product_id": str(item["product_id"]),
            "product_name": item["name"],
            "quantity": item["quantity"],
            "price": item["price"],
            "date": order["created_at"],
        }
        for order in raw_orders
        for item in order.get("items", [])
    ]
    return {
        "success": True,
        "products": [serialize_document(p) for p in products],
        "orders": purchases,
    }
