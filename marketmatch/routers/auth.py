from __future__ import annotations
from typing import Any, Optional
from fastapi import APIRouter, Depends, Header
from motor.motor_asyncio import AsyncIOMotorDatabase

from .. import auth
from ..database import get_db
from ..mailer import Mailer, get_mailer
from ..schemas import EmailIn, LoginIn, ProfileUpdate, RegisterIn, ResetPasswordIn, VerifyEmailIn

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register", status_code=201)
async def register(
    payload: RegisterIn,
    db: AsyncIOMotorDatabase = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    user = await auth.register(db, payload, mailer)
    return {
        "success": True,
        "message": "Registration successful. Please check your email for the verification code.",
        "user": auth.public_user(user),
    }


@router.post("/verify-email")
async def verify_email(
    payload: VerifyEmailIn,
    db: AsyncIOMotorDatabase = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    token, user = await auth.verify_email(db, payload.email, payload.otp, mailer)
    return {"success": True, "message": "Email verified successfully", "token": token, "user": auth.public_user(user)}


@router.post("/resend-otp")
async def resend_otp(
    payload: EmailIn,
    db: AsyncIOMotorDatabase = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    await auth.resend_otp(db, payload.email, mailer)
    return {"success": True, "message": "Verification code resent successfully"}


@router.post("/forgot-password")
async def forgot_password(
    payload: EmailIn,
    db: AsyncIOMotorDatabase = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    await auth.forgot_password(db, payload.email, mailer)
    return {"success": True, "message": "Email sent"}


@router.put("/reset-password/{token}")
async def reset_password(token: str, payload: ResetPasswordIn, db: AsyncIOMotorDatabase = Depends(get_db)):
    session_token, user = await auth.reset_password(db, token, payload.password)
    return {
        "success": True,
        "message": "Password updated successfully",
        "token": session_token,
        "user": auth.public_user(user),
    }


@router.post("/login")
async def login(payload: LoginIn, db: AsyncIOMotorDatabase = Depends(get_db)):
    token, user = await auth.login(db, payload.email, payload.password)
    return {"success": True, "token": token, "user": auth.public_user(user)}


@router.post("/logout")
async def logout(
    authorization: Optional[str] = Header(None),
    user: dict[str, Any] = Depends(auth.get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    await auth.logout(db, auth.bearer_token(authorization))
    return {"success": True, "message": "Logged out successfully"}


@router.get("/me")
async def me(user: dict[str, Any] = Depends(auth.get_current_user)):
    return {"success": True, "user": auth.public_user(user)}


@router.put("/profile")
async def update_profile(
    payload: ProfileUpdate,
    user: dict[str, Any] = Depends(auth.get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    updated = await auth.update_user(db, user["_id"], payload)
    return {"success": True, "message": "Profile updated successfully", "user": auth.public_user(updated)}
