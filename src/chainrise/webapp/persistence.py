"""Persistence and SQLModel definitions for the ChainRise web backend."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, Optional
from uuid import uuid4

from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Session, SQLModel, create_engine, select

from ..investing import DEFAULT_PLAN_TIERS
from .config import DATABASE_URL

# ---------------------------------------------------------------------------
# Engine and clock
# ---------------------------------------------------------------------------
_IN_MEMORY_URLS = {"sqlite://", "sqlite:///:memory:"}


def build_engine(url: str):
    kwargs: Dict[str, Any] = {"echo": False}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in _IN_MEMORY_URLS:
            # One shared connection so every session sees the same database.
            kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


engine = build_engine(DATABASE_URL)

_time_provider: Callable[[], datetime] = datetime.utcnow


def utcnow() -> datetime:
    """Return naive UTC time using the configured provider."""

    return _time_provider()


def new_profile_id() -> str:
    return str(uuid4())


# ---------------------------------------------------------------------------
# Database models
# ---------------------------------------------------------------------------
class Profile(SQLModel, table=True):
    id: str = Field(default_factory=new_profile_id, primary_key=True)
    name: str
    username: str = Field(index=True, unique=True)
    email: str = Field(index=True, unique=True)
    phone_number: Optional[str] = Field(default=None, index=True)
    password_hash: str
    referral_code: str = Field(index=True, unique=True)
    referred_by: Optional[str] = Field(default=None, index=True)
    balance_cents: int = 0
    total_invested_cents: int = 0
    total_earnings_cents: int = 0
    referral_count: int = 0
    is_admin: bool = False
    is_active: bool = True
    is_banned: bool = False
    banned_at: Optional[datetime] = None
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None
    last_profit_at: Optional[datetime] = None
    session_version: int = 0
    btc_address: Optional[str] = None
    bnb_address: Optional[str] = None
    dodge_address: Optional[str] = None
    eth_address: Optional[str] = None
    solana_address: Optional[str] = None
    usdttrc20_address: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class LedgerTransaction(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    type: str  # see chainrise.models.TransactionType
    amount_cents: int
    status: str = "completed"
    description: str = ""
    reference: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class InvestmentPlan(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(index=True, unique=True)
    title: str
    rate_bps: int
    min_cents: int
    max_cents: int
    duration_days: int = 60
    interval: str = "daily"
    referral_bonus_bps: int = 1000
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)


class WalletAddress(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    symbol: str = Field(index=True)
    name: str = ""
    network: Optional[str] = None
    wallet_address: str
    qr_code_url: Optional[str] = None
    min_deposit_cents: int = 0
    max_deposit_cents: Optional[int] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Deposit(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    plan_id: Optional[int] = None
    amount_cents: int
    crypto_type: str
    wallet_address: str
    transaction_hash: Optional[str] = None
    status: str = Field(default="pending", index=True)
    reference: str
    narration: str = ""
    admin_notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    processed_at: Optional[datetime] = None


class Withdrawal(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    amount_cents: int
    crypto_type: str
    wallet_address: str
    status: str = Field(default="pending", index=True)
    reference: str
    narration: str = ""
    admin_notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    processed_at: Optional[datetime] = None


class LockedInvestment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    investment_plan: str  # plan code, e.g. plan_2
    amount_cents: int
    locked_amount_cents: int
    is_locked: bool = True
    status: str = Field(default="locked", index=True)
    days_remaining: int = 60
    maturity_date: datetime
    last_accrued_at: Optional[datetime] = None
    released_at: Optional[datetime] = None
    crypto_type: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ReferralBonus(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    referrer_id: str = Field(index=True)
    referred_id: str = Field(index=True)
    amount_cents: int
    bonus_type: str  # signup|deposit
    status: str = "pending"  # pending|paid
    created_at: datetime = Field(default_factory=utcnow)
    paid_at: Optional[datetime] = None


class UserBan(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    banned_by: Optional[str] = None
    reason: str = ""
    banned_at: datetime = Field(default_factory=utcnow)
    expires_at: Optional[datetime] = None
    is_active: bool = True
    lifted_at: Optional[datetime] = None
    lifted_by: Optional[str] = None


class PasswordResetToken(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    token: str = Field(index=True, unique=True)
    expires_at: datetime
    used: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class EmailLog(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    sender_id: Optional[str] = None
    recipient_id: Optional[str] = None
    recipient_email: str
    subject: str
    message: str
    delivered: bool = False
    created_at: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Schema management
# ---------------------------------------------------------------------------
def seed_default_plans(session: Session) -> int:
    """Insert any missing default plan rows and return how many were added."""

    existing = {plan.code for plan in session.exec(select(InvestmentPlan)).all()}
    added = 0
    for tier in DEFAULT_PLAN_TIERS:
        if tier.code in existing:
            continue
        session.add(
            InvestmentPlan(
                code=tier.code,
                title=tier.title,
                rate_bps=tier.rate_bps,
                min_cents=tier.min_cents,
                max_cents=tier.max_cents,
                duration_days=tier.duration_days,
                interval=tier.interval,
                referral_bonus_bps=tier.referral_bonus_bps,
            )
        )
        added += 1
    if added:
        session.commit()
    return added


def init_db(bind=None) -> None:
    """Create tables and seed reference data; safe to call repeatedly."""

    target = bind or engine
    SQLModel.metadata.create_all(target)
    with Session(target) as session:
        seed_default_plans(session)


def reset_db(bind=None) -> None:
    target = bind or engine
    SQLModel.metadata.drop_all(target)
    init_db(target)


__all__ = [
    "Deposit",
    "EmailLog",
    "InvestmentPlan",
    "LedgerTransaction",
    "LockedInvestment",
    "PasswordResetToken",
    "Profile",
    "ReferralBonus",
    "UserBan",
    "WalletAddress",
    "Withdrawal",
    "build_engine",
    "engine",
    "init_db",
    "new_profile_id",
    "reset_db",
    "seed_default_plans",
    "utcnow",
]
