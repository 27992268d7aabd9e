"""Configuration constants for the ChainRise web backend."""
from __future__ import annotations

import os
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


DATABASE_URL = os.environ.get("CHAINRISE_DATABASE_URL", "sqlite:///chainrise.db")
SESSION_SECRET = os.environ.get("SESSION_SECRET", "change-this-session-secret")
CRON_SECRET = os.environ.get("CRON_SECRET", "")
SITE_URL = os.environ.get("SITE_URL", "http://localhost:8000")
ADMIN_URL = os.environ.get("ADMIN_URL", f"{SITE_URL.rstrip('/')}/admin")
ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL", "admin@chainrise.local")
EMAIL_FROM = os.environ.get("EMAIL_FROM", "ChainRise-Partners <no-reply@chainrise.local>")
SMTP_HOST = os.environ.get("SMTP_HOST", "")
SMTP_PORT = int(os.environ.get("SMTP_PORT", "587"))
SMTP_USERNAME = os.environ.get("SMTP_USERNAME") or None
SMTP_PASSWORD = os.environ.get("SMTP_PASSWORD") or None
SMTP_USE_TLS = _env_flag("SMTP_USE_TLS", True)
LOG_PATH = os.environ.get("CHAINRISE_LOG_PATH") or None
ADMIN_USERNAME = os.environ.get("ADMIN_USERNAME", "")
ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "")

APP_NAME = "ChainRise-Partners"
MIN_WITHDRAWAL_CENTS = 10_00
SIGNUP_BONUS_CENTS = 5_00
DEPOSIT_REFERRAL_RATE_BPS = 1000
PASSWORD_MIN_LENGTH = 8
RESET_TOKEN_LIFETIME = timedelta(hours=1)
REFERRAL_CODE_LENGTH = 8
REFERRAL_CODE_ATTEMPTS = 5
REFERRAL_CODE_PREFIX = "CHAIN"
LARGE_DEPOSIT_CENTS = 10_000_00
RAPID_DEPOSIT_COUNT = 3
RAPID_DEPOSIT_WINDOW = timedelta(minutes=10)
LEADERBOARD_SIZE = 10

__all__ = [
    "ADMIN_EMAIL",
    "ADMIN_PASSWORD",
    "ADMIN_URL",
    "ADMIN_USERNAME",
    "APP_NAME",
    "CRON_SECRET",
    "DATABASE_URL",
    "DEPOSIT_REFERRAL_RATE_BPS",
    "EMAIL_FROM",
    "LARGE_DEPOSIT_CENTS",
    "LEADERBOARD_SIZE",
    "LOG_PATH",
    "MIN_WITHDRAWAL_CENTS",
    "PASSWORD_MIN_LENGTH",
    "RAPID_DEPOSIT_COUNT",
    "RAPID_DEPOSIT_WINDOW",
    "REFERRAL_CODE_ATTEMPTS",
    "REFERRAL_CODE_LENGTH",
    "REFERRAL_CODE_PREFIX",
    "RESET_TOKEN_LIFETIME",
    "SESSION_SECRET",
    "SIGNUP_BONUS_CENTS",
    "SITE_URL",
    "SMTP_HOST",
    "SMTP_PASSWORD",
    "SMTP_PORT",
    "SMTP_USERNAME",
    "SMTP_USE_TLS",
]
