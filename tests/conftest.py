"""Pytest fixtures for MarketMatch tests."""

import re
import secrets
from datetime import timedelta

import httpx
import pytest
from mongomock_motor import AsyncMongoMockClient

from marketmatch import cart as carts
from marketmatch.auth import password_hasher
from marketmatch.database import create_document, ensure_indexes, get_db, utcnow
from marketmatch.mailer import MailDeliveryError, get_mailer
from marketmatch.main import app

PASSWORD = "secret123"


@pytest.fixture
async def db():
    """In-memory MongoDB with the production indexes."""
    database = AsyncMongoMockClient()["marketmatch_test"]
    await ensure_indexes(database)
    yield database


class RecordingMailer:
    """Keeps sent messages in memory; set `fail` to make every send raise."""

    def __init__(self):
        self.sent = []
        self.fail = False

    async def send(self, to, subject, body):
        if self.fail:
            raise MailDeliveryError("SMTP server unavailable")
        self.sent.append({"to": to, "subject": subject, "body": body})

    def last_code(self):
        """The six-digit code in the most recent message."""
        return re.search(r"\b(\d{6})\b", self.sent[-1]["body"]).group(1)

    def last_reset_token(self):
        return re.search(r"reset-password/([0-9a-f]+)", self.sent[-1]["body"]).group(1)


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
async def client(db, mailer):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_mailer] = lambda: mailer
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def create_user(db, username, role="buyer", status="active"):
    return await create_document(db, "user", {
        "username": username,
        "email": f"{username}@example.com",
        "password_hash": password_hasher.hash(PASSWORD),
        "role": role,
        "status": status,
        "is_email_verified": status != "pending",
        "last_login": None,
    })


async def auth_headers(db, user):
    token = secrets.token_urlsafe(16)
    now = utcnow()
    await db["session"].insert_one({
        "token": token,
        "user_id": user["_id"],
        "created_at": now,
        "expires_at": now + timedelta(hours=1),
    })
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def buyer(db):
    return await create_user(db, "buyer")


@pytest.fixture
async def admin(db):
    return await create_user(db, "admin", role="admin")


@pytest.fixture
async def buyer_headers(db, buyer):
    return await auth_headers(db, buyer)


@pytest.fixture
async def admin_headers(db, admin):
    return await auth_headers(db, admin)


@pytest.fixture
def make_product(db):
    """Factory inserting a product straight into the catalog."""

    async def _make(name="Widget", price=500.0, quantity=10, status="active", **extra):
        return await create_document(db, "product", {
            "name": name,
            "description": f"{name} description",
            "images": [],
            "price": price,
            "quantity": quantity,
            "category": extra.pop("category", "general"),
            "status": status,
            **extra,
        })

    return _make


@pytest.fixture
def shipping_address():
    return {
        "first_name": "Ayesha",
        "last_name": "Khan",
        "email": "ayesha@example.com",
        "phone": "03001234567",
        "street": "12 Mall Road",
        "city": "Lahore",
        "state": "Punjab",
        "zip_code": "54000",
    }


@pytest.fixture
def place_order(db, buyer, make_product, shipping_address):
    """Factory: put one product in the buyer's cart and check out."""
    from marketmatch.orders import create_order

    async def _place(price=500.0, quantity=2, stock=10, payment_method="cash_on_delivery"):
        product = await make_product(price=price, quantity=stock)
        await carts.add_item(db, buyer["_id"], product["_id"], quantity)
        order = await create_order(db, buyer["_id"], shipping_address, payment_method)
        return order, product

    return _place
