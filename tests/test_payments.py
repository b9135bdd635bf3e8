"""Tests for marketmatch.payments."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from marketmatch import orders, payments
from marketmatch.errors import (
    AlreadyPaidError,
    InsufficientBalanceError,
    InvalidTransitionError,
    OrderCancelledError,
    OrderNotPaidError,
    RefundWindowExpiredError,
    ValidationError,
)

CARD = {"card_number": "4111111111111111", "cvv": "123", "expiry": "12/30"}


def fixed_rng(value):
    rng = MagicMock()
    rng.random.return_value = value
    return rng


class TestProcessPayment:
    async def test_cash_on_delivery(self, db, place_order):
        order, _ = await place_order()
        result, updated = await payments.process_payment(db, order, "cash_on_delivery")
        assert result.success
        assert result.transaction_id is None
        assert updated["payment_status"] == "paid"
        assert updated["status"] == "confirmed"

    async def test_card_requires_details(self, db, place_order):
        order, _ = await place_order()
        with pytest.raises(ValidationError, match="Credit card details"):
            await payments.process_payment(db, order, "credit_card", {"card_number": "4111"})

    async def test_card_approved(self, db, place_order):
        order, _ = await place_order()
        result, updated = await payments.process_payment(db, order, "credit_card", CARD, rng=fixed_rng(0.05))
        assert result.success
        assert result.transaction_id.startswith("TXN_")
        assert updated["payment_transaction_id"] == result.transaction_id
        assert updated["payment_method"] == "credit_card"
        assert updated["payment_status"] == "paid"

    async def test_card_declined_leaves_order_alone(self, db, place_order):
        order, _ = await place_order()
        result, updated = await payments.process_payment(db, order, "credit_card", CARD, rng=fixed_rng(0.95))
        assert not result.success
        assert result.transaction_id is None
        stored = await orders.get_order(db, order["_id"])
        assert stored["payment_status"] == "pending"
        assert stored["status"] == "pending"
        assert stored.get("payment_transaction_id") is None

    async def test_bank_transfer_settles(self, db, place_order):
        order, _ = await place_order()
        result, updated = await payments.process_payment(db, order, "bank_transfer")
        assert result.success
        assert result.transaction_id.startswith("BANK_")
        assert updated["payment_status"] == "paid"
        assert updated["status"] == "confirmed"
        assert updated["payment_method"] == "bank_transfer"

        with pytest.raises(AlreadyPaidError):
            await payments.process_payment(db, updated, "bank_transfer")
        stored = await orders.get_order(db, order["_id"])
        assert stored["payment_transaction_id"] == result.transaction_id

    async def test_wallet(self, db, place_order):
        order, _ = await place_order()
        result, updated = await payments.process_payment(db, order, "wallet")
        assert result.transaction_id.startswith("WALLET_")
        assert updated["payment_status"] == "paid"

    async def test_wallet_insufficient_balance(self, db, place_order):
        order, _ = await place_order(price=6000, quantity=2)
        with pytest.raises(InsufficientBalanceError):
            await payments.process_payment(db, order, "wallet")
        assert (await orders.get_order(db, order["_id"]))["payment_status"] == "pending"

    async def test_unknown_method(self, db, place_order):
        order, _ = await place_order()
        with pytest.raises(ValidationError):
            await payments.process_payment(db, order, "cheque")

    async def test_already_paid(self, db, place_order):
        order, _ = await place_order()
        _, paid = await payments.process_payment(db, order, "cash_on_delivery")
        with pytest.raises(AlreadyPaidError):
            await payments.process_payment(db, paid, "wallet")

    async def test_cancelled_order_rejected(self, db, place_order):
        order, _ = await place_order()
        cancelled = await orders.cancel_order(db, order)
        with pytest.raises(OrderCancelledError):
            await payments.process_payment(db, cancelled, "cash_on_delivery")

    async def test_stale_copy_cannot_pay_a_cancelled_order(self, db, place_order):
        order, product = await place_order(quantity=3, stock=10)
        stale = dict(order)
        await orders.cancel_order(db, order, "Changed my mind")

        with pytest.raises(InvalidTransitionError):
            await payments.process_payment(db, stale, "cash_on_delivery")

        stored = await orders.get_order(db, order["_id"])
        assert stored["status"] == "cancelled"
        assert stored["payment_status"] == "refunded"
        assert stored.get("payment_method") == "cash_on_delivery"
        assert stored.get("payment_transaction_id") is None
        assert (await db["product"].find_one({"_id": product["_id"]}))["quantity"] == 10

    async def test_stale_copy_cannot_pay_twice(self, db, place_order):
        order, _ = await place_order()
        stale = dict(order)
        first, _ = await payments.process_payment(db, order, "wallet")

        with pytest.raises(AlreadyPaidError):
            await payments.process_payment(db, stale, "bank_transfer")

        stored = await orders.get_order(db, order["_id"])
        assert stored["payment_method"] == "wallet"
        assert stored["payment_transaction_id"] == first.transaction_id

    async def test_cancel_wins_over_payment_in_flight(self, db, place_order, monkeypatch):
        order, product = await place_order(quantity=3, stock=10)
        real_save = orders.save_order

        async def cancel_then_save(db, order, updates, **kwargs):
            # The buyer cancels between the payment checks and the write
            await orders.cancel_order(db, order)
            return await real_save(db, order, updates, **kwargs)

        monkeypatch.setattr(payments, "save_order", cancel_then_save)
        with pytest.raises(InvalidTransitionError):
            await payments.process_payment(db, order, "credit_card", CARD, rng=fixed_rng(0.05))

        stored = await orders.get_order(db, order["_id"])
        assert stored["status"] == "cancelled"
        assert stored.get("payment_transaction_id") is None
        assert (await db["product"].find_one({"_id": product["_id"]}))["quantity"] == 10

    async def test_payment_status(self, db, place_order):
        order, _ = await place_order()
        status = payments.payment_status(order)
        assert status == {
            "order_id": str(order["_id"]),
            "status": "pending",
            "method": "cash_on_delivery",
            "transaction_id": None,
            "amount": 1250,
            "order_status": "pending",
        }


class TestRefund:
    async def _delivered(self, db, place_order):
        order, _ = await place_order()
        return await orders.update_status(db, order, "delivered")

    async def test_within_window(self, db, place_order):
        delivered = await self._delivered(db, place_order)
        refunded = await payments.process_refund(
            db, delivered, "Damaged", now=delivered["delivered_at"] + timedelta(days=6)
        )
        assert refunded["status"] == "refunded"
        assert refunded["payment_status"] == "refunded"
        assert refunded["refund_reason"] == "Damaged"
        assert refunded["refunded_at"] is not None

    async def test_window_expired(self, db, place_order):
        delivered = await self._delivered(db, place_order)
        with pytest.raises(RefundWindowExpiredError, match="7 days"):
            await payments.process_refund(db, delivered, now=delivered["delivered_at"] + timedelta(days=8))
        assert (await orders.get_order(db, delivered["_id"]))["payment_status"] == "paid"

    async def test_unpaid_order(self, db, place_order):
        order, _ = await place_order()
        with pytest.raises(OrderNotPaidError):
            await payments.process_refund(db, order)

    async def test_paid_but_undelivered(self, db, place_order):
        order, _ = await place_order()
        _, paid = await payments.process_payment(db, order, "wallet")
        refunded = await payments.process_refund(db, paid)
        assert refunded["payment_status"] == "refunded"

    async def test_stale_copy_cannot_refund_twice(self, db, place_order):
        delivered = await self._delivered(db, place_order)
        stale = dict(delivered)
        await payments.process_refund(db, delivered, "Damaged")

        with pytest.raises(InvalidTransitionError):
            await payments.process_refund(db, stale, "Damaged again")
        stored = await orders.get_order(db, delivered["_id"])
        assert stored["refund_reason"] == "Damaged"
