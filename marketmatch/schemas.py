"""
Database Schemas for MarketMatch

Product, Order, User and Wishlist describe stored documents; each lives in the
collection named after the lowercase class name. Carts are plain documents
kept by the cart module. Request bodies are suffixed with In / Update.
"""

from __future__ import annotations
from datetime import datetime
from typing import Any, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

ProductStatus = Literal["active", "revoked", "pending", "draft", "suspended"]
OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled", "refunded"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]
PaymentMethod = Literal["cash_on_delivery", "credit_card", "bank_transfer", "wallet"]
UserRole = Literal["admin", "buyer"]
UserStatus = Literal["active", "suspended", "pending"]

EMAIL_PATTERN = r"^\S+@\S+\.\S+$"


# Catalog

class Specification(BaseModel):
    key: str = Field(..., min_length=1)
    value: str = Field(..., min_length=1)


class Product(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=2000)
    images: list[str] = Field(default_factory=list, max_length=10)
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(None, ge=0, description="Pre-discount price, never below price")
    quantity: int = Field(0, ge=0, description="Quantity on hand")
    category: str = Field(..., min_length=1)
    brand: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    specifications: list[Specification] = Field(default_factory=list)
    status: ProductStatus = "active"


class ProductUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, min_length=1, max_length=2000)
    images: Optional[list[str]] = Field(None, max_length=10)
    price: Optional[float] = Field(None, ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    quantity: Optional[int] = Field(None, ge=0)
    category: Optional[str] = Field(None, min_length=1)
    brand: Optional[str] = None
    tags: Optional[list[str]] = None
    specifications: Optional[list[Specification]] = None
    status: Optional[ProductStatus] = None


# Cart

class CartItemIn(BaseModel):
    product_id: str
    quantity: int = 1


class CartQuantityIn(BaseModel):
    quantity: int


# Orders

class ShippingAddress(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: str = Field(..., pattern=EMAIL_PATTERN)
    phone: str = Field(..., min_length=1)
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    country: str = "Pakistan"


class OrderItem(BaseModel):
    product_id: str
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    total: float = Field(..., ge=0)


class Order(BaseModel):
    user_id: str
    order_number: Optional[str] = None
    order_date: Optional[str] = None
    order_sequence: Optional[int] = None
    items: list[OrderItem] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    status: OrderStatus = "pending"
    payment_status: PaymentStatus = "pending"
    payment_method: PaymentMethod = "cash_on_delivery"
    payment_transaction_id: Optional[str] = None
    subtotal: float = Field(..., ge=0)
    shipping_cost: float = Field(0, ge=0)
    tax: float = Field(0, ge=0)
    total: float = Field(..., ge=0)
    notes: str = Field("", max_length=500)
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    refunded_at: Optional[datetime] = None
    refund_reason: Optional[str] = None


class OrderIn(BaseModel):
    # Validated by the order workflow so an incomplete address gets one clear message
    shipping_address: Optional[dict[str, Any]] = None
    payment_method: PaymentMethod = "cash_on_delivery"
    notes: str = Field("", max_length=500)


class OrderCancelIn(BaseModel):
    reason: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    notes: str = ""
    tracking_number: Optional[str] = None


# Payments

class PaymentIn(BaseModel):
    order_id: str
    payment_method: str
    payment_details: Optional[dict[str, Any]] = None


class RefundIn(BaseModel):
    reason: Optional[str] = None


# Users

class User(BaseModel):
    username: str = Field(..., min_length=3, max_length=30, pattern=r"^[a-zA-Z0-9_]+$")
    email: str = Field(..., pattern=EMAIL_PATTERN)
    password_hash: str
    role: UserRole = "buyer"
    status: UserStatus = "pending"
    phone: Optional[str] = None
    address: Optional[str] = None
    last_login: Optional[datetime] = None
    is_email_verified: bool = False
    # sha256 digests; the plain OTP and reset token only ever go out by mail
    email_verification_otp: Optional[str] = None
    otp_expires: Optional[datetime] = None
    reset_password_token: Optional[str] = None
    reset_password_expire: Optional[datetime] = None


class RegisterIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(..., min_length=3, max_length=30, pattern=r"^[a-zA-Z0-9_]+$")
    email: str = Field(..., pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=6)


class LoginIn(BaseModel):
    email: str
    password: str


class VerifyEmailIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(..., pattern=EMAIL_PATTERN)
    otp: str = Field(..., pattern=r"^\d{6}$")


class EmailIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(..., pattern=EMAIL_PATTERN)


class ResetPasswordIn(BaseModel):
    password: str = Field(..., min_length=6)


class ProfileUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    username: Optional[str] = Field(None, min_length=3, max_length=30, pattern=r"^[a-zA-Z0-9_]+$")
    phone: Optional[str] = None
    address: Optional[str] = None


class AdminUserUpdate(ProfileUpdate):
    role: Optional[UserRole] = None
    status: Optional[UserStatus] = None


# Wishlist and comparison

class Wishlist(BaseModel):
    user_id: str
    product_id: str
    added_at: Optional[datetime] = None


class WishlistIn(BaseModel):
    product_id: str


class CompareIdsIn(BaseModel):
    ids: list[str] = Field(..., min_length=1)
