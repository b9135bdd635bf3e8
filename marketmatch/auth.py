"""Accounts and bearer-token sessions.

Passwords are hashed with Argon2id. A successful login issues an opaque
random token stored in the `session` collection; the token is what clients
send back as `Authorization: Bearer <token>`.

New accounts start pending and become active once the emailed one-time code
is confirmed. Verification codes and password reset tokens are stored as
sha256 digests and expire after a few minutes.
"""

from __future__ import annotations
import hashlib
import logging
import secrets
from datetime import timedelta
from typing import Any, Optional
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from fastapi import Depends, Header
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from .config import settings
from .database import create_document, get_db, parse_object_id, serialize_document, utcnow
from .errors import (
    AlreadyVerifiedError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    UpstreamFailureError,
    ValidationError,
)
from .mailer import MailDeliveryError, Mailer
from .schemas import AdminUserUpdate, ProfileUpdate, RegisterIn, User

logger = logging.getLogger(__name__)

USERS = "user"
SESSIONS = "session"

PRIVATE_FIELDS = (
    "password_hash",
    "email_verification_otp",
    "otp_expires",
    "reset_password_token",
    "reset_password_expire",
)

password_hasher = PasswordHasher()


def public_user(doc: dict[str, Any]) -> dict[str, Any]:
    out = serialize_document(doc)
    for field in PRIVATE_FIELDS:
        out.pop(field, None)
    return out


def digest(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()


def generate_otp() -> str:
    return str(100000 + secrets.randbelow(900000))


def otp_message(username: str, otp: str) -> tuple[str, str]:
    return (
        "Verify your email - MarketMatch",
        f"Hi {username},\n\nYour verification code is {otp}. "
        f"It expires in {settings.OTP_TTL_MINUTES} minutes.\n",
    )


def welcome_message(username: str) -> tuple[str, str]:
    return (
        "Welcome to MarketMatch",
        f"Hi {username},\n\nYour email is verified and your account is ready.\n",
    )


def reset_message(reset_url: str) -> tuple[str, str]:
    return (
        "Password reset request - MarketMatch",
        "Someone asked to reset the password for this account. Open the link below "
        f"within {settings.RESET_TOKEN_TTL_MINUTES} minutes to choose a new one:\n\n{reset_url}\n\n"
        "If this wasn't you, ignore this email.\n",
    )


async def deliver(mailer: Mailer, to: str, message: tuple[str, str], failure: str) -> None:
    """Send one message; a delivery failure surfaces as UpstreamFailureError(failure)."""
    subject, body = message
    try:
        await mailer.send(to, subject, body)
    except MailDeliveryError as exc:
        logger.error("Could not mail %r to %s: %s", subject, to, exc)
        raise UpstreamFailureError(failure) from exc


async def register(db: AsyncIOMotorDatabase, data: RegisterIn, mailer: Mailer) -> dict[str, Any]:
    """Create a pending buyer and mail them a verification code.

    The account is kept if the mail fails; `resend_otp` issues a new code.
    """
    email = data.email.lower()
    username = data.username.lower()
    if await db[USERS].find_one({"$or": [{"email": email}, {"username": username}]}):
        raise ConflictError("User with this email or username already exists")
    otp = generate_otp()
    user = User(
        username=username,
        email=email,
        password_hash=password_hasher.hash(data.password),
        email_verification_otp=digest(otp),
        otp_expires=utcnow() + timedelta(minutes=settings.OTP_TTL_MINUTES),
    )
    try:
        user_doc = await create_document(db, USERS, user.model_dump())
    except DuplicateKeyError:
        raise ConflictError("User with this email or username already exists")
    logger.info("Registered user %s, awaiting email verification", user_doc["_id"])
    await deliver(mailer, email, otp_message(username, otp), "Failed to send verification email")
    return user_doc


async def create_session(db: AsyncIOMotorDatabase, user: dict[str, Any]) -> str:
    now = utcnow()
    token = secrets.token_urlsafe(32)
    await db[SESSIONS].insert_one({
        "token": token,
        "user_id": user["_id"],
        "created_at": now,
        "expires_at": now + timedelta(hours=settings.SESSION_TTL_HOURS),
    })
    return token


async def login(db: AsyncIOMotorDatabase, email: str, password: str) -> tuple[str, dict[str, Any]]:
    user = await db[USERS].find_one({"email": email.strip().lower()})
    if not user:
        raise UnauthorizedError("Invalid email or password")
    try:
        password_hasher.verify(user["password_hash"], password)
    except (VerificationError, InvalidHashError):
        raise UnauthorizedError("Invalid email or password")
    if user.get("status") == "pending":
        raise ForbiddenError("Please verify your email before logging in")
    if user.get("status") != "active":
        raise ForbiddenError("Account is suspended")

    token = await create_session(db, user)
    now = utcnow()
    await db[USERS].update_one({"_id": user["_id"]}, {"$set": {"last_login": now}})
    user["last_login"] = now
    return token, user


async def _unverified_user(db: AsyncIOMotorDatabase, email: str) -> dict[str, Any]:
    user = await db[USERS].find_one({"email": email.strip().lower()})
    if not user:
        raise NotFoundError("User not found")
    if user.get("is_email_verified"):
        raise AlreadyVerifiedError()
    return user


async def verify_email(
    db: AsyncIOMotorDatabase, email: str, otp: str, mailer: Mailer
) -> tuple[str, dict[str, Any]]:
    """Confirm the emailed code, activate the account and log the user in.

    The welcome mail goes out after activation is stored. If it fails the
    account stays verified and UpstreamFailureError is raised; the user can
    log in normally.
    """
    user = await _unverified_user(db, email)
    stored = user.get("email_verification_otp")
    if not stored or not secrets.compare_digest(digest(otp), stored):
        raise ValidationError("Invalid OTP")
    if user.get("otp_expires") is None or user["otp_expires"] < utcnow():
        raise ValidationError("OTP has expired. Please request a new one.")

    changes: dict[str, Any] = {"is_email_verified": True, "updated_at": utcnow()}
    if user.get("status") == "pending":
        changes["status"] = "active"
    # Matching on the stored code makes it single use
    user = await db[USERS].find_one_and_update(
        {"_id": user["_id"], "email_verification_otp": stored},
        {"$set": changes, "$unset": {"email_verification_otp": "", "otp_expires": ""}},
        return_document=ReturnDocument.AFTER,
    )
    if user is None:
        raise ValidationError("Invalid OTP")
    logger.info("User %s verified their email", user["_id"])

    await deliver(
        mailer,
        user["email"],
        welcome_message(user["username"]),
        "Email verified, but the welcome email could not be sent. Please login.",
    )
    return await create_session(db, user), user


async def resend_otp(db: AsyncIOMotorDatabase, email: str, mailer: Mailer) -> None:
    user = await _unverified_user(db, email)
    otp = generate_otp()
    await db[USERS].update_one(
        {"_id": user["_id"]},
        {"$set": {
            "email_verification_otp": digest(otp),
            "otp_expires": utcnow() + timedelta(minutes=settings.OTP_TTL_MINUTES),
            "updated_at": utcnow(),
        }},
    )
    await deliver(mailer, user["email"], otp_message(user["username"], otp), "Failed to send verification email")


async def forgot_password(db: AsyncIOMotorDatabase, email: str, mailer: Mailer) -> None:
    """Mail a single-use reset link. The token is withdrawn again if the mail fails."""
    user = await db[USERS].find_one({"email": email.strip().lower()})
    if not user:
        raise NotFoundError("User not found")

    token = secrets.token_hex(20)
    await db[USERS].update_one(
        {"_id": user["_id"]},
        {"$set": {
            "reset_password_token": digest(token),
            "reset_password_expire": utcnow() + timedelta(minutes=settings.RESET_TOKEN_TTL_MINUTES),
        }},
    )
    try:
        await deliver(
            mailer, user["email"], reset_message(f"{settings.CLIENT_URL}reset-password/{token}"), "Email could not be sent"
        )
    except UpstreamFailureError:
        await db[USERS].update_one(
            {"_id": user["_id"]},
            {"$unset": {"reset_password_token": "", "reset_password_expire": ""}},
        )
        raise
    logger.info("Password reset requested for user %s", user["_id"])


async def reset_password(
    db: AsyncIOMotorDatabase, token: str, password: str
) -> tuple[Optional[str], dict[str, Any]]:
    """Set a new password from a reset token and revoke existing sessions.

    Returns a fresh session token for active accounts, None otherwise.
    """
    now = utcnow()
    user = await db[USERS].find_one_and_update(
        {"reset_password_token": digest(token), "reset_password_expire": {"$gt": now}},
        {
            "$set": {"password_hash": password_hasher.hash(password), "updated_at": now},
            "$unset": {"reset_password_token": "", "reset_password_expire": ""},
        },
        return_document=ReturnDocument.AFTER,
    )
    if user is None:
        raise ValidationError("Invalid token")
    await db[SESSIONS].delete_many({"user_id": user["_id"]})
    logger.info("Password reset for user %s, sessions revoked", user["_id"])
    if user.get("status") != "active":
        return None, user
    return await create_session(db, user), user


async def logout(db: AsyncIOMotorDatabase, token: str) -> None:
    await db[SESSIONS].delete_one({"token": token})


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise UnauthorizedError("No token provided")
    token = authorization[7:] if authorization.startswith("Bearer ") else authorization
    token = token.strip()
    if not token:
        raise UnauthorizedError("No token provided")
    return token


async def resolve_user(db: AsyncIOMotorDatabase, token: str) -> dict[str, Any]:
    session = await db[SESSIONS].find_one({"token": token})
    if not session:
        raise UnauthorizedError("Invalid token")
    if session["expires_at"] <= utcnow():
        await db[SESSIONS].delete_one({"_id": session["_id"]})
        raise UnauthorizedError("Token expired")
    user = await db[USERS].find_one({"_id": session["user_id"]})
    if not user:
        raise UnauthorizedError("User not found")
    if user.get("status") != "active":
        raise ForbiddenError("Account is suspended")
    return user


async def get_current_user(
    authorization: Optional[str] = Header(None),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> dict[str, Any]:
    return await resolve_user(db, bearer_token(authorization))


async def require_admin(user: dict[str, Any] = Depends(get_current_user)) -> dict[str, Any]:
    if user.get("role") != "admin":
        raise ForbiddenError(f"Access denied for {user.get('role')} role")
    return user


async def update_user(
    db: AsyncIOMotorDatabase, user_id: Any, changes: ProfileUpdate | AdminUserUpdate
) -> dict[str, Any]:
    uid = parse_object_id(user_id, "User")
    updates = changes.model_dump(exclude_unset=True, exclude_none=True)
    if "username" in updates:
        updates["username"] = updates["username"].lower()
        if await db[USERS].find_one({"username": updates["username"], "_id": {"$ne": uid}}):
            raise ConflictError("Username is already taken")
    updates["updated_at"] = utcnow()
    updated = await db[USERS].find_one_and_update(
        {"_id": uid}, {"$set": updates}, return_document=ReturnDocument.AFTER
    )
    if not updated:
        raise NotFoundError("User not found")
    if updates.get("status") == "suspended":
        await db[SESSIONS].delete_many({"user_id": uid})
        logger.info("User %s suspended, sessions revoked", uid)
    return updated
