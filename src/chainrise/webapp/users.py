"""Admin user management: bans, deletion, manual funding, metrics and email."""
from __future__ import annotations

from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import func, or_, update
from sqlmodel import Session, delete, desc, select

from ..exceptions import PermissionDeniedError, ValidationError
from ..models import (
    FundingType,
    InvestmentStatus,
    ManagementResult,
    TransactionType,
    WithdrawalStatus,
)
from ..money import AmountLike, format_currency, to_cents
from .accrual import create_locked_investment, get_active_plan
from .ledger import ensure_unique_identity, find_profile_by_email, load_profile, parse_amount, record_transaction, touch
from .persistence import (
    Deposit,
    EmailLog,
    LedgerTransaction,
    LockedInvestment,
    PasswordResetToken,
    Profile,
    ReferralBonus,
    UserBan,
    Withdrawal,
    utcnow,
)
from .runtime import event_log, mailer

NOT_A_DEPOSIT = "not_a_deposit"
DEFAULT_BAN_REASON = "Violation of terms of service"
EARNING_TYPES = (
    TransactionType.PROFIT.value,
    TransactionType.INVESTMENT_EARNINGS.value,
    TransactionType.REFERRAL_BONUS.value,
    TransactionType.EARNINGS.value,
)

_FUNDING_LABELS = {
    FundingType.BONUS: "Bonus",
    FundingType.ADD_FUNDS_WITH_FEE: "Funds",
    FundingType.EARNINGS: "Earnings",
}


def require_admin(session: Session, admin_id: Optional[str]) -> Profile:
    admin = session.get(Profile, admin_id) if admin_id else None
    if admin is None or not admin.is_admin or admin.is_deleted:
        raise PermissionDeniedError("Admin privileges required")
    return admin


def _display_name(profile: Profile) -> str:
    return profile.username or profile.email


# ---------------------------------------------------------------------------
# Bans
# ---------------------------------------------------------------------------
def ban_user(
    session: Session,
    admin_id: str,
    user_id: str,
    *,
    reason: str = DEFAULT_BAN_REASON,
    duration_hours: Optional[int] = None,
) -> ManagementResult:
    """Ban a user for ``duration_hours`` or permanently when no duration is given."""

    admin = require_admin(session, admin_id)
    target = load_profile(session, user_id)
    if target.id == admin.id:
        raise ValidationError("You cannot ban your own account")
    if duration_hours is not None and duration_hours <= 0:
        raise ValidationError("Ban duration must be a positive number of hours")
    moment = utcnow()
    expires_at = moment + timedelta(hours=duration_hours) if duration_hours else None
    session.add(
        UserBan(
            user_id=target.id,
            banned_by=admin.id,
            reason=(reason or "").strip() or DEFAULT_BAN_REASON,
            banned_at=moment,
            expires_at=expires_at,
        )
    )
    target.is_banned = True
    target.banned_at = moment
    # Existing sessions carry the old version and stop authenticating.
    target.session_version += 1
    touch(target)
    session.add(target)
    session.commit()
    event_log.log("user_banned", user_id=target.id, admin_id=admin.id, duration_hours=duration_hours)
    span = f" for {duration_hours} hours" if duration_hours else " permanently"
    return ManagementResult(True, f"User {_display_name(target)} has been banned{span}", target.id, "banned")


def _deactivate_bans(session: Session, user_id: str, moment: datetime, lifted_by: Optional[str]) -> None:
    for ban in session.exec(select(UserBan).where(UserBan.user_id == user_id, UserBan.is_active == True)).all():  # noqa: E712
        ban.is_active = False
        ban.lifted_at = moment
        ban.lifted_by = lifted_by
        session.add(ban)


def unban_user(session: Session, admin_id: str, user_id: str) -> ManagementResult:
    admin = require_admin(session, admin_id)
    target = load_profile(session, user_id)
    if not target.is_banned:
        raise ValidationError("User is not currently banned")
    moment = utcnow()
    _deactivate_bans(session, target.id, moment, admin.id)
    target.is_banned = False
    target.banned_at = None
    touch(target)
    session.add(target)
    session.commit()
    event_log.log("user_unbanned", user_id=target.id, admin_id=admin.id)
    return ManagementResult(True, f"User {_display_name(target)} has been unbanned", target.id, "unbanned")


def lift_expired_ban(session: Session, profile: Profile, *, now: Optional[datetime] = None) -> bool:
    """Clear ``profile``'s ban when every active ban on it has expired."""

    moment = now or utcnow()
    bans = session.exec(select(UserBan).where(UserBan.user_id == profile.id, UserBan.is_active == True)).all()  # noqa: E712
    if any(ban.expires_at is None or ban.expires_at > moment for ban in bans):
        return False
    _deactivate_bans(session, profile.id, moment, None)
    profile.is_banned = False
    profile.banned_at = None
    touch(profile)
    session.add(profile)
    session.commit()
    event_log.log("ban_expired", user_id=profile.id)
    return True


def get_banned_users(session: Session, admin_id: str) -> List[Dict[str, Any]]:
    require_admin(session, admin_id)
    bans = session.exec(
        select(UserBan).where(UserBan.is_active == True).order_by(desc(UserBan.banned_at))  # noqa: E712
    ).all()
    rows: List[Dict[str, Any]] = []
    for ban in bans:
        user = session.get(Profile, ban.user_id)
        banned_by = session.get(Profile, ban.banned_by) if ban.banned_by else None
        rows.append(
            {
                "id": ban.id,
                "user_id": ban.user_id,
                "username": user.username if user else None,
                "email": user.email if user else None,
                "reason": ban.reason,
                "banned_at": ban.banned_at.isoformat(),
                "expires_at": ban.expires_at.isoformat() if ban.expires_at else None,
                "banned_by": banned_by.username if banned_by else None,
            }
        )
    return rows


def get_all_users(session: Session, admin_id: str, *, include_deleted: bool = False) -> List[Profile]:
    require_admin(session, admin_id)
    statement = select(Profile)
    if not include_deleted:
        statement = statement.where(Profile.is_deleted == False)  # noqa: E712
    return list(session.exec(statement.order_by(desc(Profile.created_at))).all())


# ---------------------------------------------------------------------------
# Deletion
# ---------------------------------------------------------------------------
def _has_money_records(session: Session, user_id: str) -> bool:
    for model in (Deposit, Withdrawal, LockedInvestment, LedgerTransaction):
        if session.exec(select(model.id).where(model.user_id == user_id)).first() is not None:
            return True
    return False


def delete_user(session: Session, admin_id: str, user_id: str, *, confirm: bool = False) -> ManagementResult:
    """Delete a user; accounts with any money history are only soft deleted."""

    if not confirm:
        raise ValidationError("Please confirm user deletion")
    admin = require_admin(session, admin_id)
    target = load_profile(session, user_id)
    if target.id == admin.id:
        raise ValidationError("You cannot delete your own account")
    name = _display_name(target)
    if _has_money_records(session, target.id):
        moment = utcnow()
        target.is_deleted = True
        target.is_active = False
        target.deleted_at = moment
        target.deleted_by = admin.id
        target.session_version += 1
        touch(target)
        session.add(target)
        session.commit()
        event_log.log("user_soft_deleted", user_id=user_id, admin_id=admin.id)
        return ManagementResult(True, f"User {name} has been soft deleted", user_id, "deleted")

    session.exec(delete(UserBan).where(UserBan.user_id == user_id))
    session.exec(delete(PasswordResetToken).where(PasswordResetToken.user_id == user_id))
    session.exec(
        delete(ReferralBonus).where(or_(ReferralBonus.referrer_id == user_id, ReferralBonus.referred_id == user_id))
    )
    session.exec(update(Profile).where(Profile.referred_by == user_id).values(referred_by=None))
    if target.referred_by:
        referrer = session.get(Profile, target.referred_by)
        if referrer is not None and referrer.referral_count > 0:
            referrer.referral_count -= 1
            session.add(referrer)
    session.delete(target)
    session.commit()
    event_log.log("user_deleted", user_id=user_id, admin_id=admin.id)
    return ManagementResult(True, f"User {name} has been permanently deleted", user_id, "deleted")


# ---------------------------------------------------------------------------
# Manual funding
# ---------------------------------------------------------------------------
def admin_fund_user(
    session: Session,
    admin_id: str,
    user_id: str,
    amount: AmountLike,
    transaction_type: str,
    *,
    plan: Optional[str] = NOT_A_DEPOSIT,
    description: str = "",
    notify_email: Optional[str] = None,
    crypto_type: Optional[str] = None,
) -> ManagementResult:
    """Post a manual credit to a user account.

    ``bonus`` credits the balance and may not name a plan. ``earnings`` credits
    the balance and total earnings. ``add_funds_with_fee`` opens a locked
    investment when a plan is given, otherwise it credits the balance.
    """

    admin = require_admin(session, admin_id)
    try:
        funding = FundingType(transaction_type)
    except ValueError as exc:
        raise ValidationError(f"Unknown transaction type: {transaction_type}") from exc
    amount_cents = parse_amount(amount)
    plan_code = (plan or NOT_A_DEPOSIT).strip() or NOT_A_DEPOSIT
    if funding is FundingType.BONUS and plan_code != NOT_A_DEPOSIT:
        raise ValidationError("Bonus transactions must use 'Not a Deposit' plan")
    if funding is FundingType.EARNINGS and plan_code != NOT_A_DEPOSIT:
        raise ValidationError("Earnings cannot be assigned to an investment plan")
    target = load_profile(session, user_id)
    label = _FUNDING_LABELS[funding]
    note = description.strip() or f"{label} added by admin"

    if funding is FundingType.ADD_FUNDS_WITH_FEE and plan_code != NOT_A_DEPOSIT:
        investment_plan = get_active_plan(session, plan_code)
        create_locked_investment(
            session,
            target,
            investment_plan,
            amount_cents,
            crypto_type=(crypto_type or "").strip().upper() or None,
        )
        note = description.strip() or f"Funds added to {investment_plan.title}"
    else:
        target.balance_cents += amount_cents
        if funding is FundingType.EARNINGS:
            target.total_earnings_cents += amount_cents
        touch(target)
        session.add(target)
    kind = {
        FundingType.BONUS: TransactionType.BONUS,
        FundingType.ADD_FUNDS_WITH_FEE: TransactionType.ADD_FUNDS,
        FundingType.EARNINGS: TransactionType.EARNINGS,
    }[funding]
    record_transaction(session, target.id, kind, amount_cents, note)
    session.commit()
    event_log.log(
        "user_funded",
        user_id=target.id,
        admin_id=admin.id,
        amount_cents=amount_cents,
        funding=funding.value,
        plan=plan_code,
    )
    if notify_email:
        mailer.funds_added(email=notify_email, amount_cents=amount_cents, label=label, description=note)
    return ManagementResult(
        True,
        f"{label} of {format_currency(amount_cents)} added to {_display_name(target)}",
        target.id,
        "funded",
    )


# ---------------------------------------------------------------------------
# Metrics and analytics
# ---------------------------------------------------------------------------
def _ledger_total(session: Session, user_id: str, *kinds: str) -> int:
    total = session.exec(
        select(func.coalesce(func.sum(LedgerTransaction.amount_cents), 0)).where(
            LedgerTransaction.user_id == user_id,
            LedgerTransaction.type.in_(kinds),
        )
    ).one()
    return int(total or 0)


def get_user_metrics(session: Session, user_id: str) -> Dict[str, Any]:
    profile = load_profile(session, user_id, include_deleted=True)
    withdrawals = session.exec(select(Withdrawal).where(Withdrawal.user_id == user_id)).all()
    investments = session.exec(
        select(LockedInvestment).where(
            LockedInvestment.user_id == user_id,
            LockedInvestment.status == InvestmentStatus.LOCKED.value,
        )
    ).all()
    return {
        "username": profile.username,
        "email": profile.email,
        "created_at": profile.created_at.isoformat(),
        "is_active": profile.is_active,
        "balance_cents": profile.balance_cents,
        "total_earnings_cents": profile.total_earnings_cents,
        "funded_cents": _ledger_total(session, user_id, TransactionType.DEPOSIT.value, TransactionType.ADD_FUNDS.value),
        "active_deposit_cents": sum(investment.amount_cents for investment in investments),
        "total_withdrawal_cents": sum(
            row.amount_cents for row in withdrawals if row.status == WithdrawalStatus.COMPLETED.value
        ),
        "pending_withdrawal_cents": sum(
            row.amount_cents for row in withdrawals if row.status == WithdrawalStatus.PENDING.value
        ),
        "total_bonus_cents": _ledger_total(session, user_id, TransactionType.BONUS.value),
        "referral_commission_cents": _ledger_total(session, user_id, TransactionType.REFERRAL_BONUS.value),
    }


def get_platform_stats(session: Session) -> Dict[str, int]:
    profiles = session.exec(select(Profile).where(Profile.is_deleted == False)).all()  # noqa: E712
    return {
        "total_balance_cents": sum(profile.balance_cents for profile in profiles),
        "total_earnings_cents": sum(profile.total_earnings_cents for profile in profiles),
        "total_invested_cents": sum(profile.total_invested_cents for profile in profiles),
        "active_users": sum(1 for profile in profiles if profile.is_active and not profile.is_banned),
        "total_users": len(profiles),
    }


def get_earnings_analytics(
    session: Session,
    *,
    now: Optional[datetime] = None,
    months: int = 6,
    years: int = 3,
) -> Dict[str, List[Dict[str, Any]]]:
    """Bucket platform earnings credits by day (last 7), month and year."""

    moment = now or utcnow()
    today = moment.date()
    weekly: "OrderedDict[str, int]" = OrderedDict(
        ((today - timedelta(days=offset)).isoformat(), 0) for offset in range(6, -1, -1)
    )
    monthly: "OrderedDict[str, int]" = OrderedDict()
    year, month = today.year, today.month
    keys = []
    for _ in range(months):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    for key in reversed(keys):
        monthly[key] = 0
    yearly: "OrderedDict[str, int]" = OrderedDict((str(today.year - offset), 0) for offset in range(years - 1, -1, -1))

    earliest = datetime(today.year - years + 1, 1, 1)
    entries = session.exec(
        select(LedgerTransaction).where(
            LedgerTransaction.type.in_(EARNING_TYPES),
            LedgerTransaction.created_at >= earliest,
            LedgerTransaction.created_at <= moment,
        )
    ).all()
    for entry in entries:
        day_key = entry.created_at.date().isoformat()
        month_key = entry.created_at.strftime("%Y-%m")
        year_key = str(entry.created_at.year)
        if day_key in weekly:
            weekly[day_key] += entry.amount_cents
        if month_key in monthly:
            monthly[month_key] += entry.amount_cents
        if year_key in yearly:
            yearly[year_key] += entry.amount_cents
    return {
        "weekly": [{"date": key, "earnings_cents": value} for key, value in weekly.items()],
        "monthly": [{"month": key, "earnings_cents": value} for key, value in monthly.items()],
        "yearly": [{"year": key, "earnings_cents": value} for key, value in yearly.items()],
    }


_ADMIN_EDITABLE = {
    "name",
    "username",
    "email",
    "phone_number",
    "balance",
    "total_earnings",
    "total_invested",
    "is_active",
}


def admin_update_user_profile(
    session: Session, admin_id: str, user_id: str, updates: Mapping[str, Any]
) -> Profile:
    """Apply an admin edit to a profile; amount fields are given in dollars."""

    admin = require_admin(session, admin_id)
    unknown = set(updates) - _ADMIN_EDITABLE
    if unknown:
        raise ValidationError(f"Unknown profile fields: {', '.join(sorted(unknown))}")
    profile = load_profile(session, user_id)
    username = str(updates.get("username") or "").strip() or None
    email = str(updates.get("email") or "").strip().lower() or None
    phone_number = str(updates.get("phone_number") or "").strip() or None
    ensure_unique_identity(
        session,
        username=username if username != profile.username else None,
        email=email if email != profile.email else None,
        phone_number=phone_number if phone_number != profile.phone_number else None,
        exclude_id=profile.id,
    )
    if updates.get("name"):
        profile.name = str(updates["name"]).strip()
    if username:
        profile.username = username
    if email:
        profile.email = email
    if phone_number:
        profile.phone_number = phone_number
    for field, column in (
        ("balance", "balance_cents"),
        ("total_earnings", "total_earnings_cents"),
        ("total_invested", "total_invested_cents"),
    ):
        if field not in updates or updates[field] in (None, ""):
            continue
        try:
            cents = to_cents(updates[field])
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"{field} must be a valid number") from exc
        if cents < 0:
            raise ValidationError(f"{field} cannot be negative")
        setattr(profile, column, cents)
    if "is_active" in updates:
        profile.is_active = bool(updates["is_active"])
    touch(profile)
    session.add(profile)
    session.commit()
    session.refresh(profile)
    event_log.log("admin_profile_update", user_id=profile.id, admin_id=admin.id, fields=sorted(updates))
    return profile


def send_admin_email(
    session: Session,
    admin_id: str,
    recipient_email: str,
    subject: str,
    message: str,
) -> EmailLog:
    admin = require_admin(session, admin_id)
    if not (subject or "").strip() or not (message or "").strip():
        raise ValidationError("Subject and message are required")
    recipient = find_profile_by_email(session, recipient_email or "")
    if recipient is None:
        raise ValidationError("Recipient email not found in system")
    delivered = mailer.admin_message(
        email=recipient.email, name=recipient.name, subject=subject.strip(), message=message.strip()
    )
    log = EmailLog(
        sender_id=admin.id,
        recipient_id=recipient.id,
        recipient_email=recipient.email,
        subject=subject.strip(),
        message=message.strip(),
        delivered=delivered,
    )
    session.add(log)
    session.commit()
    session.refresh(log)
    event_log.log("admin_email_sent", admin_id=admin.id, recipient_id=recipient.id, delivered=delivered)
    return log


__all__ = [
    "NOT_A_DEPOSIT",
    "admin_fund_user",
    "admin_update_user_profile",
    "ban_user",
    "delete_user",
    "get_all_users",
    "get_banned_users",
    "get_earnings_analytics",
    "get_platform_stats",
    "get_user_metrics",
    "lift_expired_ban",
    "require_admin",
    "send_admin_email",
    "unban_user",
]
