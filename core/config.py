"""
Application configuration.

All values come from the environment (or a local .env file).
"""

import os
from decimal import Decimal
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _bool(value: str) -> bool:
    return str(value).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    # Application
    APP_NAME = os.getenv("APP_NAME", "Mining Hosting Billing API")
    DEBUG = _bool(os.getenv("DEBUG", "false"))
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:3000")
    APP_URL = os.getenv("APP_URL", "http://localhost:3000")

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./billing.db")

    # JWT
    SECRET_KEY = os.getenv("SECRET_KEY", "change-me-in-production")
    ALGORITHM = os.getenv("ALGORITHM", "HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
    REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7"))

    # Billing defaults (seeded into the system default pricing row)
    DEFAULT_UNIT_PRICE = Decimal(os.getenv("DEFAULT_UNIT_PRICE", "199.05"))
    DEFAULT_DUE_DAYS = int(os.getenv("DEFAULT_DUE_DAYS", "30"))

    # SMTP
    SMTP_HOST = os.getenv("SMTP_HOST", "")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USER = os.getenv("SMTP_USER", "")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
    SMTP_FROM = os.getenv("SMTP_FROM", "billing@example.com")
    INVOICE_CC_EMAIL = os.getenv("INVOICE_CC_EMAIL", "invoices@example.com")

    # Luxor mining pool
    LUXOR_API_KEY = os.getenv("LUXOR_API_KEY", "")
    LUXOR_BASE_URL = os.getenv("LUXOR_BASE_URL", "https://app.luxor.tech/api/v1")

    # Confirmo crypto payments
    CONFIRMO_API_KEY = os.getenv("CONFIRMO_API_KEY", "")
    CONFIRMO_BASE_URL = os.getenv("CONFIRMO_BASE_URL", "https://confirmo.net/api/v3")
    CONFIRMO_WEBHOOK_SECRET = os.getenv("CONFIRMO_WEBHOOK_SECRET", "")
    CONFIRMO_SETTLEMENT_CURRENCY = os.getenv("CONFIRMO_SETTLEMENT_CURRENCY", "USDC")

    # Overdue sweep scheduler
    OVERDUE_SWEEP_ENABLED = _bool(os.getenv("OVERDUE_SWEEP_ENABLED", "false"))
    OVERDUE_SWEEP_INTERVAL_SECONDS = int(os.getenv("OVERDUE_SWEEP_INTERVAL_SECONDS", "3600"))

    # First-run admin
    SEED_ADMIN_EMAIL = os.getenv("SEED_ADMIN_EMAIL", "admin@example.com")
    SEED_ADMIN_PASSWORD = os.getenv("SEED_ADMIN_PASSWORD", "")

    # Lowercase accessors used across the codebase
    @property
    def debug(self) -> bool:
        return self.DEBUG

    @property
    def secret_key(self) -> str:
        return self.SECRET_KEY

    @property
    def algorithm(self) -> str:
        return self.ALGORITHM

    @property
    def access_token_expire_minutes(self) -> int:
        return self.ACCESS_TOKEN_EXPIRE_MINUTES

    @property
    def refresh_token_expire_days(self) -> int:
        return self.REFRESH_TOKEN_EXPIRE_DAYS

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def confirmo_enabled(self) -> bool:
        return bool(self.CONFIRMO_API_KEY)


settings = Settings()
