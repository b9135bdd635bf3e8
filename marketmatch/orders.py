"""Checkout and order lifecycle.

An order is a snapshot of the cart at checkout time: names, prices and line
totals are copied in and never re-read from the catalog. Stock moves only
through `catalog.reserve_stock` (conditional decrement) and
`catalog.release_stock`, so two checkouts racing for the last unit cannot
both win.
"""

from __future__ import annotations
import logging
import math
from datetime import datetime, timedelta
from typing import Any, Optional, get_args
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import ValidationError as PydanticValidationError
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from . import cart as carts
from .catalog import get_products_by_ids, release_stock, reserve_stock
from .config import settings
from .database import get_documents, parse_object_id, serialize_document, utcnow
from .errors import (
    AlreadyPaidError,
    ConflictError,
    EmptyCartError,
    InsufficientInventoryError,
    InvalidTransitionError,
    NotFoundError,
    OrderNotPaidError,
    ValidationError,
)
from .pricing import check_totals, compute_totals, format_order_number, line_total, order_number_prefix
from .schemas import Order, PaymentMethod, ShippingAddress

logger = logging.getLogger(__name__)

ORDERS = "order"
ORDER_NUMBER_ATTEMPTS = 5

# Main chain; forward moves may skip steps
STATUS_FLOW = ["pending", "confirmed", "processing", "shipped", "delivered"]
CANCELLABLE = ("pending", "confirmed")
TERMINAL = ("delivered", "cancelled", "refunded")

STATUS_LABELS = {
    "pending": "Pending Confirmation",
    "confirmed": "Confirmed",
    "processing": "Processing",
    "shipped": "Shipped",
    "delivered": "Delivered",
    "cancelled": "Cancelled",
    "refunded": "Refunded",
}

STATUS_DESCRIPTIONS = {
    "pending": "Order is being processed",
    "confirmed": "Order has been confirmed",
    "processing": "Order is being prepared",
    "shipped": "Order has been shipped",
    "delivered": "Order has been delivered",
    "cancelled": "Order has been cancelled",
}

PAYMENT_STATUS_LABELS = {
    "pending": "Payment Pending",
    "paid": "Paid",
    "failed": "Payment Failed",
    "refunded": "Refunded",
}


def can_transition(current: str, target: str) -> bool:
    if current in TERMINAL:
        return False
    if target == "cancelled":
        return current in CANCELLABLE
    if target in STATUS_FLOW and current in STATUS_FLOW:
        return STATUS_FLOW.index(target) > STATUS_FLOW.index(current)
    return False


def status_options() -> list[dict[str, str]]:
    return [
        {"value": status, "label": STATUS_LABELS[status], "description": description}
        for status, description in STATUS_DESCRIPTIONS.items()
    ]


def order_view(doc: dict[str, Any], now: Optional[datetime] = None) -> dict[str, Any]:
    """Serialize an order and attach the display-only fields."""
    now = now or utcnow()
    out = serialize_document(doc)
    out["formatted_order_number"] = f"#{doc['order_number']}" if doc.get("order_number") else None
    out["status_display"] = STATUS_LABELS.get(doc.get("status"), doc.get("status"))
    out["payment_status_display"] = PAYMENT_STATUS_LABELS.get(doc.get("payment_status"), doc.get("payment_status"))
    address = out.get("shipping_address") or {}
    if address:
        address["full_name"] = f"{address.get('first_name', '')} {address.get('last_name', '')}".strip()
    created = doc.get("created_at")
    out["order_age"] = math.ceil(abs((now - created).total_seconds()) / 86400) if created else 0
    return out


def validate_shipping_address(address: ShippingAddress | dict[str, Any] | None) -> ShippingAddress:
    if isinstance(address, ShippingAddress):
        return address
    if not address:
        raise ValidationError("Complete shipping address is required")
    try:
        return ShippingAddress.model_validate(address)
    except PydanticValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
        raise ValidationError(f"Complete shipping address is required (check: {', '.join(fields)})")


async def generate_order_number(db: AsyncIOMotorDatabase, when: Optional[datetime] = None) -> tuple[str, int]:
    """Next (order_number, sequence) for the day, ordered on the stored integer sequence."""
    when = when or utcnow()
    last = await db[ORDERS].find_one(
        {"order_date": order_number_prefix(when)},
        sort=[("order_sequence", -1)],
    )
    sequence = last["order_sequence"] + 1 if last else 1
    return format_order_number(when, sequence), sequence


async def _insert_with_number(db: AsyncIOMotorDatabase, order_doc: dict[str, Any]) -> dict[str, Any]:
    for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
        now = utcnow()
        order_doc["order_number"], order_doc["order_sequence"] = await generate_order_number(db, now)
        order_doc["order_date"] = order_number_prefix(now)
        try:
            result = await db[ORDERS].insert_one(order_doc)
        except DuplicateKeyError:
            logger.warning("Order number %s already taken (attempt %d)", order_doc["order_number"], attempt)
            order_doc.pop("_id", None)
            continue
        order_doc["_id"] = result.inserted_id
        return order_doc
    raise ConflictError("Could not assign an order number, please retry")


async def _release_all(db: AsyncIOMotorDatabase, reserved: list[tuple[ObjectId, int]]) -> None:
    for product_id, quantity in reserved:
        await release_stock(db, product_id, quantity)


async def create_order(
    db: AsyncIOMotorDatabase,
    user_id: Any,
    shipping_address: ShippingAddress | dict[str, Any] | None,
    payment_method: str = "cash_on_delivery",
    notes: str = "",
) -> dict[str, Any]:
    address = validate_shipping_address(shipping_address)
    if payment_method not in get_args(PaymentMethod):
        raise ValidationError("Invalid payment method")
    if notes and len(notes) > 500:
        raise ValidationError("Notes cannot exceed 500 characters")
    uid = parse_object_id(user_id, "User")

    cart = await db[carts.CARTS].find_one({"user_id": uid})
    if not cart or not cart.get("items"):
        raise EmptyCartError()

    products = await get_products_by_ids(db, [item["product_id"] for item in cart["items"]])
    unavailable = []
    lines = []
    for item in cart["items"]:
        product = products.get(item["product_id"])
        if not product or product.get("status") != "active":
            unavailable.append(product.get("name") if product else "Unknown product")
            continue
        if product.get("quantity", 0) < item["quantity"]:
            unavailable.append(f"{product['name']} (only {product.get('quantity', 0)} available)")
            continue
        lines.append((product, item["quantity"]))
    if unavailable:
        raise InsufficientInventoryError(unavailable)

    totals = compute_totals((p.get("price", 0), qty) for p, qty in lines)
    now = utcnow()
    order = Order(
        user_id=str(uid),
        items=[
            {
                "product_id": str(p["_id"]),
                "name": p["name"],
                "price": p.get("price", 0),
                "quantity": qty,
                "total": line_total(p.get("price", 0), qty),
            }
            for p, qty in lines
        ],
        shipping_address=address,
        payment_method=payment_method,
        notes=notes or "",
        estimated_delivery=now + timedelta(days=settings.ESTIMATED_DELIVERY_DAYS),
        **totals.as_dict(),
    )
    order_doc = order.model_dump()
    order_doc["user_id"] = uid
    for item in order_doc["items"]:
        item["product_id"] = ObjectId(item["product_id"])
    order_doc["created_at"] = now
    order_doc["updated_at"] = now
    check_totals(order_doc)

    # Reserve stock line by line; the first line that cannot be reserved undoes the rest
    reserved: list[tuple[ObjectId, int]] = []
    for product, qty in lines:
        if not await reserve_stock(db, product["_id"], qty):
            await _release_all(db, reserved)
            raise InsufficientInventoryError([product["name"]])
        reserved.append((product["_id"], qty))

    try:
        order_doc = await _insert_with_number(db, order_doc)
    except Exception:
        await _release_all(db, reserved)
        raise

    await db[carts.CARTS].update_one({"_id": cart["_id"]}, {"$set": {"items": [], "updated_at": utcnow()}})
    logger.info(
        "Order %s created for user %s: %d line(s), total %.2f",
        order_doc["order_number"], uid, len(lines), order_doc["total"],
    )
    return order_doc


async def get_order(db: AsyncIOMotorDatabase, order_id: Any, user_id: Any = None) -> dict[str, Any]:
    filter_dict: dict[str, Any] = {"_id": parse_object_id(order_id, "Order")}
    if user_id is not None:
        filter_dict["user_id"] = parse_object_id(user_id, "User")
    order = await db[ORDERS].find_one(filter_dict)
    if not order:
        raise NotFoundError("Order not found")
    return order


async def list_orders(
    db: AsyncIOMotorDatabase,
    user_id: Any = None,
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[dict[str, Any]], dict[str, Any]]:
    page = max(page, 1)
    limit = max(limit, 1)
    filter_dict: dict[str, Any] = {}
    if user_id is not None:
        filter_dict["user_id"] = parse_object_id(user_id, "User")
    if status:
        filter_dict["status"] = status
    docs = await get_documents(
        db, ORDERS, filter_dict, sort=[("created_at", -1)], skip=(page - 1) * limit, limit=limit
    )
    total = await db[ORDERS].count_documents(filter_dict)
    total_pages = math.ceil(total / limit)
    return docs, {
        "current_page": page,
        "total_pages": total_pages,
        "total_orders": total,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }


async def save_order(
    db: AsyncIOMotorDatabase,
    order: dict[str, Any],
    updates: dict[str, Any],
    expected_statuses: Optional[tuple[str, ...]] = None,
    expected_payment_statuses: Optional[tuple[str, ...]] = None,
) -> dict[str, Any]:
    """Write lifecycle changes to an order after re-checking its totals.

    With `expected_statuses` / `expected_payment_statuses`, the write only
    happens if the stored document still matches them, so a caller holding a
    stale copy cannot overwrite a change made in the meantime. A lost race
    raises InvalidTransitionError (status moved) or AlreadyPaidError /
    OrderNotPaidError (payment status moved).
    """
    check_totals({**order, **updates})
    updates = {**updates, "updated_at": utcnow()}
    filter_dict: dict[str, Any] = {"_id": order["_id"]}
    if expected_statuses:
        filter_dict["status"] = {"$in": list(expected_statuses)}
    if expected_payment_statuses:
        filter_dict["payment_status"] = {"$in": list(expected_payment_statuses)}
    updated = await db[ORDERS].find_one_and_update(
        filter_dict, {"$set": updates}, return_document=ReturnDocument.AFTER
    )
    if updated is not None:
        return updated

    stored = await db[ORDERS].find_one({"_id": order["_id"]})
    if stored is None:
        raise NotFoundError("Order not found")
    payment_moved = expected_payment_statuses and stored.get("payment_status") not in expected_payment_statuses
    if payment_moved and stored.get("status") not in ("cancelled", "refunded"):
        if stored.get("payment_status") == "paid":
            raise AlreadyPaidError()
        raise OrderNotPaidError()
    raise InvalidTransitionError(stored.get("status"), updates.get("status", stored.get("status")))


async def cancel_order(db: AsyncIOMotorDatabase, order: dict[str, Any], reason: Optional[str] = None) -> dict[str, Any]:
    if order.get("status") not in CANCELLABLE:
        raise InvalidTransitionError(
            order.get("status"), "cancelled", "Order cannot be cancelled at this stage"
        )

    updates: dict[str, Any] = {
        "status": "cancelled",
        "payment_status": "refunded",
        "cancelled_at": utcnow(),
    }
    if reason:
        updates["cancellation_reason"] = reason
    # Claiming the transition first means a concurrent cancel cannot restore stock twice
    updated = await save_order(db, order, updates, expected_statuses=CANCELLABLE)

    for item in updated["items"]:
        await release_stock(db, item["product_id"], item["quantity"])
    logger.info("Order %s cancelled, %d line(s) restocked", updated.get("order_number"), len(updated["items"]))
    return updated


async def update_status(
    db: AsyncIOMotorDatabase,
    order: dict[str, Any],
    new_status: str,
    notes: str = "",
    tracking_number: Optional[str] = None,
) -> dict[str, Any]:
    current = order.get("status")
    if not can_transition(current, new_status):
        raise InvalidTransitionError(current, new_status)
    if new_status == "cancelled":
        return await cancel_order(db, order, notes or None)

    updates: dict[str, Any] = {"status": new_status}
    if new_status == "delivered":
        updates["delivered_at"] = utcnow()
        updates["payment_status"] = "paid"
    if tracking_number:
        updates["tracking_number"] = tracking_number
    if notes:
        updates["notes"] = f"{order['notes']}\n{notes}" if order.get("notes") else notes

    updated = await save_order(db, order, updates, expected_statuses=(current,))
    logger.info("Order %s moved %s -> %s", updated.get("order_number"), current, new_status)
    return updated


async def order_stats(db: AsyncIOMotorDatabase, user_id: Any) -> dict[str, Any]:
    stats = {
        "total_orders": 0,
        "total_spent": 0.0,
        "pending_orders": 0,
        "confirmed_orders": 0,
        "delivered_orders": 0,
        "cancelled_orders": 0,
    }
    cursor = db[ORDERS].find(
        {"user_id": parse_object_id(user_id, "User")}, {"status": 1, "total": 1}
    )
    async for doc in cursor:
        stats["total_orders"] += 1
        stats["total_spent"] += doc.get("total", 0)
        key = f"{doc.get('status')}_orders"
        if key in stats:
            stats[key] += 1
    stats["total_spent"] = round(stats["total_spent"], 2)
    return stats
