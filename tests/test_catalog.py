"""Tests for marketmatch.catalog."""

from datetime import timedelta

import pytest

from marketmatch import catalog
from marketmatch.database import utcnow
from marketmatch.errors import ConflictError, NotFoundError, ValidationError
from marketmatch.schemas import Product, ProductUpdate


# ------------------------------------------------------------------ #
#  Derived fields                                                      #
# ------------------------------------------------------------------ #


class TestDerivedFields:
    def test_discount_percentage(self):
        assert catalog.discount_percentage({"price": 750, "original_price": 1000}) == 25
        assert catalog.discount_percentage({"price": 1000, "original_price": 1000}) == 0
        assert catalog.discount_percentage({"price": 1000}) == 0

    def test_is_available(self):
        assert catalog.is_available({"status": "active", "quantity": 1})
        assert not catalog.is_available({"status": "active", "quantity": 0})
        assert not catalog.is_available({"status": "revoked", "quantity": 5})

    def test_formatted_price(self):
        assert catalog.formatted_price(1500) == "PKR 1,500"
        assert catalog.formatted_price(1234.5) == "PKR 1,234.50"
        assert catalog.formatted_price(0) == "PKR 0"

    async def test_view_is_json_friendly(self, make_product):
        product = await make_product(price=900, original_price=1200)
        view = catalog.product_view(product)
        assert view["id"] == str(product["_id"])
        assert "_id" not in view
        assert view["discount_percentage"] == 25
        assert view["formatted_price"] == "PKR 900"


# ------------------------------------------------------------------ #
#  Browsing                                                            #
# ------------------------------------------------------------------ #


class TestBrowsing:
    async def test_list_only_active(self, db, make_product):
        await make_product(name="Visible")
        await make_product(name="Hidden", status="revoked")
        products, pagination = await catalog.list_products(db)
        assert [p["name"] for p in products] == ["Visible"]
        assert pagination["total_products"] == 1

    async def test_price_filter_and_sort(self, db, make_product):
        await make_product(name="Cheap", price=100)
        await make_product(name="Mid", price=500)
        await make_product(name="Dear", price=900)
        products, _ = await catalog.list_products(db, min_price=200, sort="price-high")
        assert [p["name"] for p in products] == ["Dear", "Mid"]

    async def test_pagination(self, db, make_product):
        for i in range(5):
            await make_product(name=f"P{i}", price=i)
        products, pagination = await catalog.list_products(db, page=2, limit=2, sort="price-low")
        assert [p["name"] for p in products] == ["P2", "P3"]
        assert pagination["total_pages"] == 3
        assert pagination["has_next"] is True
        assert pagination["has_prev"] is True

    async def test_category_is_case_insensitive(self, db, make_product):
        await make_product(name="Phone", category="Electronics")
        await make_product(name="Shirt", category="clothing")
        products, _ = await catalog.list_products(db, category="electronics")
        assert [p["name"] for p in products] == ["Phone"]

    async def test_get_inactive_product_is_not_found(self, db, make_product):
        product = await make_product(status="draft")
        with pytest.raises(NotFoundError):
            await catalog.get_product(db, product["_id"])
        assert (await catalog.get_product(db, product["_id"], active_only=False))["_id"] == product["_id"]

    async def test_get_malformed_id_is_not_found(self, db):
        with pytest.raises(NotFoundError, match="Product not found"):
            await catalog.get_product(db, "not-an-id")

    async def test_deals_need_a_real_discount(self, db, make_product):
        await make_product(name="Deal", price=80, original_price=100)
        await make_product(name="Same", price=100, original_price=100)
        await make_product(name="Plain", price=100)
        assert [p["name"] for p in await catalog.deals(db)] == ["Deal"]

    async def test_new_arrivals_skip_old_products(self, db, make_product):
        old = await make_product(name="Old")
        await db["product"].update_one(
            {"_id": old["_id"]}, {"$set": {"created_at": utcnow() - timedelta(days=45)}}
        )
        await make_product(name="Fresh")
        assert [p["name"] for p in await catalog.new_arrivals(db)] == ["Fresh"]


# ------------------------------------------------------------------ #
#  Inventory                                                           #
# ------------------------------------------------------------------ #


class TestInventory:
    async def test_reserve_decrements(self, db, make_product):
        product = await make_product(quantity=5)
        assert await catalog.reserve_stock(db, product["_id"], 3) is True
        assert (await db["product"].find_one({"_id": product["_id"]}))["quantity"] == 2

    async def test_reserve_refuses_to_go_negative(self, db, make_product):
        product = await make_product(quantity=1)
        assert await catalog.reserve_stock(db, product["_id"], 2) is False
        assert (await db["product"].find_one({"_id": product["_id"]}))["quantity"] == 1

    async def test_reserve_refuses_inactive(self, db, make_product):
        product = await make_product(quantity=10, status="revoked")
        assert await catalog.reserve_stock(db, product["_id"], 1) is False

    async def test_release_restores(self, db, make_product):
        product = await make_product(quantity=0)
        await catalog.release_stock(db, product["_id"], 4)
        assert (await db["product"].find_one({"_id": product["_id"]}))["quantity"] == 4


# ------------------------------------------------------------------ #
#  Admin moderation                                                    #
# ------------------------------------------------------------------ #


def _product(**overrides):
    data = {"name": "Lamp", "description": "Desk lamp", "price": 1500, "quantity": 3, "category": "home"}
    data.update(overrides)
    return Product(**data)


class TestModeration:
    async def test_create_normalises_tags(self, db, admin):
        product = await catalog.create_product(db, _product(tags=[" Home ", "LIGHT", ""]), admin["_id"])
        assert product["tags"] == ["home", "light"]
        assert product["managed_by"] == admin["_id"]
        assert product["status"] == "active"

    async def test_original_price_below_price_rejected(self, db, admin):
        with pytest.raises(ValidationError):
            await catalog.create_product(db, _product(price=1500, original_price=1000), admin["_id"])

    async def test_update_checks_prices_against_stored_values(self, db, admin):
        product = await catalog.create_product(db, _product(original_price=2000), admin["_id"])
        with pytest.raises(ValidationError):
            await catalog.update_product(db, str(product["_id"]), ProductUpdate(price=2500))
        updated = await catalog.update_product(db, str(product["_id"]), ProductUpdate(price=1800))
        assert updated["price"] == 1800

    async def test_revoke_and_reactivate(self, db, make_product):
        product = await make_product()
        revoked = await catalog.set_product_status(db, str(product["_id"]), "revoked")
        assert revoked["status"] == "revoked"
        active = await catalog.set_product_status(db, str(product["_id"]), "active")
        assert active["status"] == "active"

    async def test_delete_unreferenced(self, db, make_product):
        product = await make_product()
        await catalog.delete_product(db, str(product["_id"]))
        assert await db["product"].find_one({"_id": product["_id"]}) is None

    async def test_delete_referenced_by_order_refused(self, db, place_order):
        _, product = await place_order()
        with pytest.raises(ConflictError):
            await catalog.delete_product(db, str(product["_id"]))


# ------------------------------------------------------------------ #
#  Comparison                                                          #
# ------------------------------------------------------------------ #


class TestCompare:
    async def test_search_matches_several_fields(self, db, make_product):
        by_name = await make_product(name="Phone Stand", category="Office")
        by_brand = await make_product(name="Earbuds", brand="PhoneCo", category="Audio")
        await make_product(name="Kettle", category="Kitchen")
        await make_product(name="Phone Case", status="revoked")

        found = await catalog.compare_search(db, "phone")
        assert {p["id"] for p in found} == {str(by_name["_id"]), str(by_brand["_id"])}

        found = await catalog.compare_search(db, "phone", category="audio")
        assert [p["id"] for p in found] == [str(by_brand["_id"])]

    async def test_search_price_filter_and_short_query(self, db, make_product):
        await make_product(name="Cheap Lamp", price=100)
        dear = await make_product(name="Dear Lamp", price=900)
        found = await catalog.compare_search(db, "lamp", min_price=500)
        assert [p["id"] for p in found] == [str(dear["_id"])]
        assert await catalog.compare_search(db, "l") == []
        assert await catalog.compare_search(db, None) == []

    async def test_search_treats_query_literally(self, db, make_product):
        await make_product(name="Widget")
        assert await catalog.compare_search(db, ".*") == []

    async def test_by_ids_keeps_order_and_caps_at_four(self, db, make_product):
        products = [await make_product(name=f"P{i}") for i in range(5)]
        hidden = await make_product(name="Hidden", status="revoked")
        ids = [str(p["_id"]) for p in reversed(products)]

        found = await catalog.compare_by_ids(db, ids)
        assert [p["id"] for p in found] == ids[:4]

        found = await catalog.compare_by_ids(db, [str(hidden["_id"]), ids[0]])
        assert [p["id"] for p in found] == [ids[0]]

    async def test_by_ids_rejects_malformed_ids(self, db, make_product):
        product = await make_product()
        with pytest.raises(ValidationError, match="Invalid product ID format"):
            await catalog.compare_by_ids(db, [str(product["_id"]), "abc"])
        with pytest.raises(ValidationError):
            await catalog.compare_by_ids(db, [])

    async def test_similar_within_price_band(self, db, make_product):
        base = await make_product(name="Base", price=1000, category="Audio")
        near = await make_product(name="Near", price=1250, category="Audio")
        await make_product(name="Too dear", price=1400, category="Audio")
        await make_product(name="Other aisle", price=1000, category="Kitchen")
        await make_product(name="Revoked", price=1000, category="Audio", status="revoked")

        summary, similar = await catalog.similar_products(db, str(base["_id"]))
        assert summary == {"id": str(base["_id"]), "name": "Base", "category": "Audio", "price": 1000}
        assert [p["id"] for p in similar] == [str(near["_id"])]

    async def test_similar_unknown_or_malformed(self, db):
        with pytest.raises(NotFoundError):
            await catalog.similar_products(db, "64b000000000000000000000")
        with pytest.raises(ValidationError):
            await catalog.similar_products(db, "nope")
