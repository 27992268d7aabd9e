import os
from typing import Optional

os.environ["CHAINRISE_DATABASE_URL"] = "sqlite://"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["SMTP_HOST"] = ""
os.environ["ADMIN_USERNAME"] = ""
os.environ["ADMIN_PASSWORD"] = ""

import pytest  # noqa: E402
from sqlmodel import Session  # noqa: E402

from chainrise.security import hash_password  # noqa: E402
from chainrise.webapp.persistence import Profile, WalletAddress, engine, reset_db  # noqa: E402
from chainrise.webapp.runtime import auth_manager, email_client, event_log, health  # noqa: E402

PASSWORD = "correct-horse"


@pytest.fixture(autouse=True)
def clean_database() -> None:
    reset_db()
    email_client.clear()
    auth_manager.reset()
    event_log.clear()
    health.last_runs.clear()
    health.database_online = True


def make_profile(
    username: str,
    *,
    balance_cents: int = 0,
    total_invested_cents: int = 0,
    is_admin: bool = False,
    referred_by: Optional[str] = None,
    email: Optional[str] = None,
    referral_code: Optional[str] = None,
) -> str:
    with Session(engine) as session:
        profile = Profile(
            name=username.title(),
            username=username,
            email=email or f"{username}@example.com",
            password_hash=hash_password(PASSWORD),
            referral_code=referral_code or f"REF{username.upper()}"[:12],
            balance_cents=balance_cents,
            total_invested_cents=total_invested_cents,
            is_admin=is_admin,
            referred_by=referred_by,
        )
        session.add(profile)
        session.commit()
        return profile.id


def make_wallet(symbol: str = "BTC", address: str = "bc1-platform-wallet") -> int:
    with Session(engine) as session:
        wallet = WalletAddress(symbol=symbol, name=symbol, wallet_address=address)
        session.add(wallet)
        session.commit()
        session.refresh(wallet)
        return wallet.id


@pytest.fixture
def session():
    with Session(engine) as db:
        yield db
