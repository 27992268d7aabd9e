"""Process-wide collaborators shared by the service modules and routes."""
from __future__ import annotations

from pathlib import Path

from ..emailing import EmailClient, Mailer
from ..ops import HealthMonitor, StructuredLogger
from ..security import AuthManager
from .config import (
    ADMIN_EMAIL,
    ADMIN_URL,
    APP_NAME,
    EMAIL_FROM,
    LOG_PATH,
    SITE_URL,
    SMTP_HOST,
    SMTP_PASSWORD,
    SMTP_PORT,
    SMTP_USERNAME,
    SMTP_USE_TLS,
)

event_log = StructuredLogger(path=Path(LOG_PATH) if LOG_PATH else None)
health = HealthMonitor()
auth_manager = AuthManager()
email_client = EmailClient(
    SMTP_HOST,
    SMTP_PORT,
    username=SMTP_USERNAME,
    password=SMTP_PASSWORD,
    use_tls=SMTP_USE_TLS,
    logger=event_log,
)
mailer = Mailer(
    email_client,
    sender=EMAIL_FROM,
    admin_email=ADMIN_EMAIL,
    site_url=SITE_URL,
    admin_url=ADMIN_URL,
    app_name=APP_NAME,
)

__all__ = ["auth_manager", "email_client", "event_log", "health", "mailer"]
