"""Simulated payment processing.

No gateway is contacted. Each method resolves immediately to a
PaymentResult; only successful results touch the order.
"""

from __future__ import annotations
import logging
import random
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase

from .config import settings
from .database import utcnow
from .errors import (
    AlreadyPaidError,
    InsufficientBalanceError,
    OrderCancelledError,
    OrderNotPaidError,
    RefundWindowExpiredError,
    ValidationError,
)
from .orders import save_order

logger = logging.getLogger(__name__)

PAYMENT_METHODS = [
    {
        "id": "cash_on_delivery",
        "name": "Cash on Delivery",
        "description": "Pay when your order is delivered",
        "available": True,
    },
    {
        "id": "credit_card",
        "name": "Credit/Debit Card",
        "description": "Pay with Visa, MasterCard, or American Express",
        "available": True,
    },
    {
        "id": "bank_transfer",
        "name": "Bank Transfer",
        "description": "Transfer money directly from your bank account",
        "available": True,
    },
    {
        "id": "wallet",
        "name": "Wallet",
        "description": "Pay using your MarketMatch wallet balance",
        "available": True,
    },
]


@dataclass
class PaymentResult:
    success: bool
    message: str
    transaction_id: Optional[str] = None


def transaction_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16].upper()}"


def _cash_on_delivery(order: dict[str, Any], details: dict[str, Any], rng: random.Random) -> PaymentResult:
    return PaymentResult(success=True, message="Payment will be collected on delivery")


def _credit_card(order: dict[str, Any], details: dict[str, Any], rng: random.Random) -> PaymentResult:
    if not details.get("card_number") or not details.get("cvv"):
        raise ValidationError("Credit card details are required")
    # Draw the outcome first, then derive everything else from it
    approved = rng.random() < settings.CARD_SUCCESS_RATE
    if approved:
        return PaymentResult(success=True, message="Payment processed successfully", transaction_id=transaction_id("TXN"))
    return PaymentResult(success=False, message="Payment failed")


def _bank_transfer(order: dict[str, Any], details: dict[str, Any], rng: random.Random) -> PaymentResult:
    return PaymentResult(
        success=True,
        message="Bank transfer processed successfully",
        transaction_id=transaction_id("BANK"),
    )


def _wallet(order: dict[str, Any], details: dict[str, Any], rng: random.Random) -> PaymentResult:
    if settings.WALLET_BALANCE < order["total"]:
        raise InsufficientBalanceError()
    return PaymentResult(success=True, message="Payment processed from wallet", transaction_id=transaction_id("WALLET"))


PAYMENT_HANDLERS: dict[str, Callable[[dict[str, Any], dict[str, Any], random.Random], PaymentResult]] = {
    "cash_on_delivery": _cash_on_delivery,
    "credit_card": _credit_card,
    "bank_transfer": _bank_transfer,
    "wallet": _wallet,
}


async def process_payment(
    db: AsyncIOMotorDatabase,
    order: dict[str, Any],
    method: str,
    details: Optional[dict[str, Any]] = None,
    rng: Optional[random.Random] = None,
) -> tuple[PaymentResult, dict[str, Any]]:
    """Run a simulated payment against an order.

    Returns the result together with the order as it stands afterwards. A
    failed card charge leaves the order untouched.
    """
    if order.get("payment_status") == "paid":
        raise AlreadyPaidError()
    if order.get("status") in ("cancelled", "refunded"):
        raise OrderCancelledError(order["status"])

    handler = PAYMENT_HANDLERS.get(method)
    if handler is None:
        raise ValidationError("Invalid payment method")

    result = handler(order, details or {}, rng or random.Random())
    if not result.success:
        logger.info("Payment via %s declined for order %s", method, order.get("order_number"))
        return result, order

    updates: dict[str, Any] = {
        "payment_method": method,
        "payment_transaction_id": result.transaction_id,
        "payment_status": "paid",
    }
    if order.get("status") == "pending":
        updates["status"] = "confirmed"
    # Guarded on what was checked above; a cancellation or payment that landed meanwhile wins
    order = await save_order(
        db,
        order,
        updates,
        expected_statuses=(order["status"],),
        expected_payment_statuses=(order.get("payment_status", "pending"),),
    )
    logger.info(
        "Payment via %s recorded for order %s (transaction %s)",
        method, order.get("order_number"), result.transaction_id,
    )
    return result, order


def payment_status(order: dict[str, Any]) -> dict[str, Any]:
    return {
        "order_id": str(order["_id"]),
        "status": order.get("payment_status"),
        "method": order.get("payment_method"),
        "transaction_id": order.get("payment_transaction_id"),
        "amount": order.get("total"),
        "order_status": order.get("status"),
    }


def refund_deadline(order: dict[str, Any]) -> datetime:
    delivered = order.get("delivered_at") or order["created_at"]
    return delivered + timedelta(days=settings.REFUND_WINDOW_DAYS)


async def process_refund(
    db: AsyncIOMotorDatabase,
    order: dict[str, Any],
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    if order.get("payment_status") != "paid":
        raise OrderNotPaidError()

    now = now or utcnow()
    if order.get("status") == "delivered" and now > refund_deadline(order):
        raise RefundWindowExpiredError(settings.REFUND_WINDOW_DAYS)

    order = await save_order(
        db,
        order,
        {
            "payment_status": "refunded",
            "status": "refunded",
            "refund_reason": reason,
            "refunded_at": now,
        },
        expected_statuses=(order["status"],),
        expected_payment_statuses=("paid",),
    )
    logger.info("Order %s refunded", order.get("order_number"))
    return order
