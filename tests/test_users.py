from datetime import datetime

import pytest
from sqlmodel import Session, select

from chainrise.exceptions import DuplicateAccountError, PermissionDeniedError, RecordNotFoundError, ValidationError
from chainrise.models import BonusType, InvestmentStatus, TransactionType
from chainrise.webapp.persistence import (
    EmailLog,
    LedgerTransaction,
    LockedInvestment,
    Profile,
    ReferralBonus,
    UserBan,
    engine,
)
from chainrise.webapp.runtime import email_client
from chainrise.webapp.users import (
    admin_fund_user,
    admin_update_user_profile,
    ban_user,
    delete_user,
    get_all_users,
    get_banned_users,
    get_earnings_analytics,
    get_platform_stats,
    get_user_metrics,
    send_admin_email,
    unban_user,
)
from chainrise.webapp.withdrawals import initiate_withdrawal

from conftest import make_profile


def test_only_admins_manage_users(session: Session) -> None:
    user_id = make_profile("sam")
    other_id = make_profile("ola")
    with pytest.raises(PermissionDeniedError, match="Admin privileges required"):
        ban_user(session, user_id, other_id)
    with pytest.raises(PermissionDeniedError):
        get_all_users(session, None)


def test_ban_and_unban_cycle(session: Session) -> None:
    admin_id = make_profile("boss", is_admin=True)
    user_id = make_profile("sam")

    result = ban_user(session, admin_id, user_id, reason="Chargeback", duration_hours=24)

    assert result.success
    assert result.action == "banned"
    assert result.message == "User sam has been banned for 24 hours"
    profile = session.get(Profile, user_id)
    assert profile.is_banned
    assert profile.session_version == 1
    bans = get_banned_users(session, admin_id)
    assert [(row["username"], row["reason"], row["banned_by"]) for row in bans] == [("sam", "Chargeback", "boss")]

    unbanned = unban_user(session, admin_id, user_id)
    assert unbanned.action == "unbanned"
    assert not session.get(Profile, user_id).is_banned
    assert get_banned_users(session, admin_id) == []
    ban = session.exec(select(UserBan)).one()
    assert ban.lifted_by == admin_id
    with pytest.raises(ValidationError, match="not currently banned"):
        unban_user(session, admin_id, user_id)


def test_ban_rejects_self_and_bad_duration(session: Session) -> None:
    admin_id = make_profile("boss", is_admin=True)
    user_id = make_profile("sam")
    with pytest.raises(ValidationError, match="cannot ban your own account"):
        ban_user(session, admin_id, admin_id)
    with pytest.raises(ValidationError, match="positive number of hours"):
        ban_user(session, admin_id, user_id, duration_hours=0)

    permanent = ban_user(session, admin_id, user_id, reason="  ")
    assert permanent.message.endswith("permanently")
    assert session.exec(select(UserBan)).one().reason == "Violation of terms of service"


def test_delete_is_hard_without_money_history(session: Session) -> None:
    admin_id = make_profile("boss", is_admin=True)
    user_id = make_profile("sam")
    with pytest.raises(ValidationError, match="confirm user deletion"):
        delete_user(session, admin_id, user_id)
    with pytest.raises(ValidationError, match="cannot delete your own account"):
        delete_user(session, admin_id, admin_id, confirm=True)

    result = delete_user(session, admin_id, user_id, confirm=True)

    assert result.message == "User sam has been permanently deleted"
    assert session.get(Profile, user_id) is None


def test_hard_delete_removes_referral_links(session: Session) -> None:
    admin_id = make_profile("boss", is_admin=True)
    upline = make_profile("upline")
    referrer_id = make_profile("rex", referred_by=upline)
    referred_id = make_profile("nia", referred_by=referrer_id)
    for referrer, referred in ((upline, referrer_id), (referrer_id, referred_id)):
        session.add(
            ReferralBonus(referrer_id=referrer, referred_id=referred, amount_cents=5_00, bonus_type=BonusType.SIGNUP.value)
        )
    upline_profile = session.get(Profile, upline)
    upline_profile.referral_count = 1
    session.add(upline_profile)
    session.commit()

    delete_user(session, admin_id, referrer_id, confirm=True)

    session.expire_all()
    assert session.get(Profile, referrer_id) is None
    assert session.exec(select(ReferralBonus)).all() == []
    assert session.get(Profile, referred_id).referred_by is None
    assert session.get(Profile, upline).referral_count == 0


def test_delete_is_soft_with_money_history(session: Session) -> None:
    admin_id = make_profile("boss", is_admin=True)
    user_id = make_profile("sam")
    admin_fund_user(session, admin_id, user_id, "25", "bonus")

    result = delete_user(session, admin_id, user_id, confirm=True)

    assert result.message == "User sam has been soft deleted"
    profile = session.get(Profile, user_id)
    assert profile.is_deleted
    assert not profile.is_active
    assert profile.deleted_by == admin_id
    assert [p.username for p in get_all_users(session, admin_id)] == ["boss"]
    assert len(get_all_users(session, admin_id, include_deleted=True)) == 2


def test_fund_user_bonus_and_earnings(session: Session) -> None:
    admin_id = make_profile("boss", is_admin=True)
    user_id = make_profile("sam")

    with pytest.raises(ValidationError, match="Not a Deposit"):
        admin_fund_user(session, admin_id, user_id, "25", "bonus", plan="plan_1")
    with pytest.raises(ValidationError, match="Earnings cannot be assigned"):
        admin_fund_user(session, admin_id, user_id, "25", "earnings", plan="plan_1")
    with pytest.raises(ValidationError, match="Unknown transaction type"):
        admin_fund_user(session, admin_id, user_id, "25", "gift")

    bonus = admin_fund_user(session, admin_id, user_id, "25", "bonus", notify_email="sam@example.com")
    admin_fund_user(session, admin_id, user_id, "10", "earnings", description="Promo payout")

    assert bonus.message == "Bonus of $25.00 added to sam"
    session.expire_all()
    profile = session.get(Profile, user_id)
    assert profile.balance_cents == 35_00
    assert profile.total_earnings_cents == 10_00
    entries = session.exec(select(LedgerTransaction).order_by(LedgerTransaction.id)).all()
    assert [(entry.type, entry.description) for entry in entries] == [
        (TransactionType.BONUS.value, "Bonus added by admin"),
        (TransactionType.EARNINGS.value, "Promo payout"),
    ]
    assert [m["Subject"] for m in email_client.deliveries()] == ["Bonus of $25.00 added"]


def test_fund_user_into_plan_opens_locked_investment(session: Session) -> None:
    admin_id = make_profile("boss", is_admin=True)
    user_id = make_profile("sam")

    with pytest.raises(ValidationError, match="Amount must be between"):
        admin_fund_user(session, admin_id, user_id, "50", "add_funds_with_fee", plan="plan_2")
    with pytest.raises(RecordNotFoundError, match="Investment plan not found"):
        admin_fund_user(session, admin_id, user_id, "5000", "add_funds_with_fee", plan="gold")

    admin_fund_user(session, admin_id, user_id, "5000", "add_funds_with_fee", plan="plan_2", crypto_type="usdt")

    session.expire_all()
    profile = session.get(Profile, user_id)
    assert profile.balance_cents == 0
    assert profile.total_invested_cents == 5_000_00
    investment = session.exec(select(LockedInvestment)).one()
    assert investment.status == InvestmentStatus.LOCKED.value
    assert investment.crypto_type == "USDT"
    assert investment.days_remaining == 60
    entry = session.exec(select(LedgerTransaction)).one()
    assert entry.type == TransactionType.ADD_FUNDS.value
    assert entry.description == "Funds added to Plan 2"


def test_user_metrics_and_platform_stats(session: Session) -> None:
    admin_id = make_profile("boss", is_admin=True)
    user_id = make_profile("sam")
    banned_id = make_profile("bad", balance_cents=40_00)
    admin_fund_user(session, admin_id, user_id, "25", "bonus")
    admin_fund_user(session, admin_id, user_id, "100", "add_funds_with_fee")
    admin_fund_user(session, admin_id, user_id, "10", "earnings")
    with Session(engine) as other:
        initiate_withdrawal(other, user_id, amount="20", crypto_type="BTC", wallet_address="bc1-sam")
    ban_user(session, admin_id, banned_id)

    metrics = get_user_metrics(session, user_id)

    assert metrics["username"] == "sam"
    assert metrics["balance_cents"] == 135_00
    assert metrics["funded_cents"] == 100_00
    assert metrics["total_bonus_cents"] == 25_00
    assert metrics["total_earnings_cents"] == 10_00
    assert metrics["pending_withdrawal_cents"] == 20_00
    assert metrics["total_withdrawal_cents"] == 0
    assert metrics["referral_commission_cents"] == 0

    stats = get_platform_stats(session)
    assert stats["total_users"] == 3
    assert stats["active_users"] == 2
    assert stats["total_balance_cents"] == 135_00 + 40_00
    assert stats["total_earnings_cents"] == 10_00


def test_earnings_analytics_buckets(session: Session) -> None:
    user_id = make_profile("sam")
    now = datetime(2024, 3, 15, 12, 0)
    for kind, cents, created_at in (
        (TransactionType.PROFIT, 10_00, datetime(2024, 3, 15, 8, 0)),
        (TransactionType.EARNINGS, 5_00, datetime(2024, 3, 9, 23, 0)),
        (TransactionType.REFERRAL_BONUS, 7_00, datetime(2023, 11, 20)),
        (TransactionType.BONUS, 100_00, datetime(2024, 3, 15, 9, 0)),
        (TransactionType.PROFIT, 50_00, datetime(2024, 3, 16, 9, 0)),
    ):
        session.add(
            LedgerTransaction(user_id=user_id, type=kind.value, amount_cents=cents, created_at=created_at)
        )
    session.commit()

    analytics = get_earnings_analytics(session, now=now)

    weekly = analytics["weekly"]
    assert len(weekly) == 7
    assert weekly[0] == {"date": "2024-03-09", "earnings_cents": 5_00}
    assert weekly[-1] == {"date": "2024-03-15", "earnings_cents": 10_00}
    monthly = {row["month"]: row["earnings_cents"] for row in analytics["monthly"]}
    assert list(monthly) == ["2023-10", "2023-11", "2023-12", "2024-01", "2024-02", "2024-03"]
    assert monthly["2023-11"] == 7_00
    assert monthly["2024-03"] == 15_00
    assert analytics["yearly"] == [
        {"year": "2022", "earnings_cents": 0},
        {"year": "2023", "earnings_cents": 7_00},
        {"year": "2024", "earnings_cents": 15_00},
    ]


def test_admin_update_user_profile(session: Session) -> None:
    admin_id = make_profile("boss", is_admin=True)
    user_id = make_profile("sam")
    make_profile("taken")

    with pytest.raises(ValidationError, match="Unknown profile fields: referral_code"):
        admin_update_user_profile(session, admin_id, user_id, {"referral_code": "MINE"})
    with pytest.raises(ValidationError, match="balance cannot be negative"):
        admin_update_user_profile(session, admin_id, user_id, {"balance": "-1"})
    with pytest.raises(ValidationError, match="balance must be a valid number"):
        admin_update_user_profile(session, admin_id, user_id, {"balance": "lots"})
    with pytest.raises(DuplicateAccountError, match="Username already taken"):
        admin_update_user_profile(session, admin_id, user_id, {"username": "taken"})

    profile = admin_update_user_profile(
        session,
        admin_id,
        user_id,
        {"name": "Samuel", "email": "SAM2@example.com", "balance": "12.50", "total_invested": "", "is_active": False},
    )

    assert profile.name == "Samuel"
    assert profile.email == "sam2@example.com"
    assert profile.balance_cents == 12_50
    assert profile.total_invested_cents == 0
    assert not profile.is_active


def test_send_admin_email(session: Session) -> None:
    admin_id = make_profile("boss", is_admin=True)
    user_id = make_profile("sam")

    with pytest.raises(ValidationError, match="Subject and message are required"):
        send_admin_email(session, admin_id, "sam@example.com", "  ", "Hello")
    with pytest.raises(ValidationError, match="Recipient email not found"):
        send_admin_email(session, admin_id, "ghost@example.com", "Hi", "Hello")

    log = send_admin_email(session, admin_id, "SAM@example.com", " Account review ", "Please verify your wallet.")

    assert log.recipient_id == user_id
    assert log.subject == "Account review"
    assert log.delivered is False
    assert session.exec(select(EmailLog)).one().sender_id == admin_id
    message = email_client.deliveries()[-1]
    assert message["Subject"] == "Account review"
    assert "Please verify your wallet." in message.get_content()
