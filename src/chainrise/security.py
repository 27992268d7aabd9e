"""Security helpers: password hashing, sign-in lockout and token generation."""

from __future__ import annotations

import hmac
import secrets
import string
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Deque, Dict, Optional
from uuid import uuid4

from werkzeug.security import check_password_hash, generate_password_hash

REFERRAL_ALPHABET = string.ascii_uppercase + string.digits


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: Optional[str], password: str) -> bool:
    if not password_hash:
        return False
    return check_password_hash(password_hash, password)


def generate_referral_code(length: int = 8, *, prefix: str = "") -> str:
    return prefix + "".join(secrets.choice(REFERRAL_ALPHABET) for _ in range(length))


def generate_reset_token() -> str:
    return str(uuid4())


def generate_reference(prefix: str, moment: datetime) -> str:
    """Build a human readable request reference such as ``DEP-1700000000000-42``.

    Naive datetimes are treated as UTC.
    """

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    millis = int(moment.timestamp() * 1000)
    return f"{prefix}-{millis}-{secrets.randbelow(1000)}"


def bearer_token_matches(header: Optional[str], secret: str) -> bool:
    """Return ``True`` when ``header`` is ``Bearer <secret>``."""

    if not header or not header.startswith("Bearer "):
        return False
    return hmac.compare_digest(header[len("Bearer "):], secret)


class AuthManager:
    """Sliding-window lockout for repeated failed sign-in attempts."""

    def __init__(self, *, max_attempts: int = 5, lockout_minutes: int = 15) -> None:
        self._max_attempts = max_attempts
        self._lockout_window = timedelta(minutes=lockout_minutes)
        self._login_attempts: Dict[str, Deque[datetime]] = {}

    def record_login_attempt(self, identifier: str, *, success: bool, at: Optional[datetime] = None) -> bool:
        """Record a sign-in attempt and return whether further attempts are allowed."""

        now = at or datetime.utcnow()
        bucket = self._login_attempts.setdefault(identifier.lower(), deque())
        self._prune(bucket, now)
        if success:
            bucket.clear()
            return True
        bucket.append(now)
        return len(bucket) < self._max_attempts

    def is_locked(self, identifier: str, *, at: Optional[datetime] = None) -> bool:
        now = at or datetime.utcnow()
        bucket = self._login_attempts.get(identifier.lower())
        if not bucket:
            return False
        self._prune(bucket, now)
        return len(bucket) >= self._max_attempts

    def reset(self) -> None:
        self._login_attempts.clear()

    def _prune(self, bucket: Deque[datetime], now: datetime) -> None:
        while bucket and now - bucket[0] > self._lockout_window:
            bucket.popleft()


__all__ = [
    "AuthManager",
    "bearer_token_matches",
    "generate_reference",
    "generate_referral_code",
    "generate_reset_token",
    "hash_password",
    "verify_password",
]
