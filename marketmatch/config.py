from __future__ import annotations
import os
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
    DATABASE_NAME: str = os.getenv("DATABASE_NAME", "marketmatch")

    ALLOWED_ORIGINS: str = "http://localhost:5173,http://localhost:5174,http://localhost:3000"
    LOG_LEVEL: str = "INFO"
    PORT: int = 5000

    SESSION_TTL_HOURS: int = 24 * 7
    OTP_TTL_MINUTES: int = 10
    RESET_TOKEN_TTL_MINUTES: int = 10
    CLIENT_URL: str = "http://localhost:5173/"

    # Outgoing mail; without SMTP_HOST messages are only logged
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USERNAME: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_START_TLS: bool = True
    MAIL_FROM: str = "MarketMatch <no-reply@marketmatch.local>"
    MAIL_TIMEOUT_SECONDS: float = 10

    # Checkout pricing
    CURRENCY: str = "PKR"
    FREE_SHIPPING_THRESHOLD: float = 5000
    SHIPPING_FEE: float = 200
    TAX_RATE: float = 0.05
    ESTIMATED_DELIVERY_DAYS: int = 3

    # Payment simulation
    CARD_SUCCESS_RATE: float = 0.9
    WALLET_BALANCE: float = 10000
    REFUND_WINDOW_DAYS: int = 7

    @property
    def allowed_origins(self) -> list[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]


settings = Settings()
