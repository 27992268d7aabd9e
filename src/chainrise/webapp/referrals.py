"""Referral codes, referral bonuses and the referral leaderboard."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlmodel import Session, desc, select

from ..exceptions import InvalidReferralCodeError, ValidationError
from ..models import BonusStatus, BonusType, TransactionType
from ..money import apply_rate, format_currency
from ..security import generate_referral_code as _random_code
from .config import (
    DEPOSIT_REFERRAL_RATE_BPS,
    LEADERBOARD_SIZE,
    REFERRAL_CODE_ATTEMPTS,
    REFERRAL_CODE_LENGTH,
    REFERRAL_CODE_PREFIX,
    SIGNUP_BONUS_CENTS,
)
from .ledger import load_profile, record_transaction, touch
from .persistence import LedgerTransaction, Profile, ReferralBonus, utcnow
from .runtime import event_log


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def referral_code_taken(session: Session, code: str) -> bool:
    return session.exec(select(Profile.id).where(Profile.referral_code == code)).first() is not None


def unique_referral_code(session: Session, *, prefix: str = "") -> str:
    """Return an unused referral code, giving up after a few collisions."""

    for _ in range(REFERRAL_CODE_ATTEMPTS):
        code = _random_code(REFERRAL_CODE_LENGTH, prefix=prefix)
        if not referral_code_taken(session, code):
            return code
    raise ValidationError("Failed to generate unique referral code. Please try again.")


def validate_referral_code(session: Session, code: Optional[str], *, user_id: Optional[str] = None) -> Profile:
    """Resolve ``code`` to the referrer profile or raise :class:`InvalidReferralCodeError`."""

    normalized = normalize_code(code)
    if not normalized:
        raise InvalidReferralCodeError("Referral code is required")
    referrer = session.exec(select(Profile).where(Profile.referral_code == normalized)).first()
    if referrer is None or referrer.is_deleted:
        raise InvalidReferralCodeError("Invalid referral code")
    if user_id is not None and referrer.id == user_id:
        raise InvalidReferralCodeError("You cannot use your own referral code")
    if not referrer.is_active or referrer.is_banned:
        raise InvalidReferralCodeError("Referrer account is not active")
    return referrer


def attach_referrer(session: Session, profile: Profile, referrer: Profile) -> ReferralBonus:
    """Link ``profile`` to ``referrer`` and stage the pending signup bonus."""

    profile.referred_by = referrer.id
    referrer.referral_count += 1
    touch(referrer)
    bonus = ReferralBonus(
        referrer_id=referrer.id,
        referred_id=profile.id,
        amount_cents=SIGNUP_BONUS_CENTS,
        bonus_type=BonusType.SIGNUP.value,
        status=BonusStatus.PENDING.value,
        created_at=utcnow(),
    )
    session.add(profile)
    session.add(referrer)
    session.add(bonus)
    return bonus


def apply_referral_code(session: Session, user_id: str, code: str) -> Profile:
    """Attach a referrer to an existing account that signed up without one."""

    profile = load_profile(session, user_id)
    if profile.referred_by:
        raise ValidationError("A referral code has already been applied to this account")
    referrer = validate_referral_code(session, code, user_id=profile.id)
    attach_referrer(session, profile, referrer)
    session.commit()
    session.refresh(profile)
    event_log.log("referral_applied", user_id=profile.id, referrer_id=referrer.id)
    return profile


def _credit_referrer(
    session: Session,
    referrer: Profile,
    amount_cents: int,
    description: str,
    *,
    reference: Optional[str] = None,
) -> None:
    referrer.balance_cents += amount_cents
    referrer.total_earnings_cents += amount_cents
    touch(referrer)
    session.add(referrer)
    record_transaction(
        session,
        referrer.id,
        TransactionType.REFERRAL_BONUS,
        amount_cents,
        description,
        reference=reference,
    )


def process_referral_bonus(
    session: Session,
    referred_user_id: str,
    deposit_cents: int,
    *,
    reference: Optional[str] = None,
    commit: bool = True,
) -> int:
    """Pay the referrer of ``referred_user_id`` for an approved deposit.

    The referrer receives the deposit referral rate of ``deposit_cents``. If the
    signup bonus for this referral is still pending it is paid at the same time.
    Returns the total paid to the referrer; 0 when the user has no referrer.
    """

    referred = session.get(Profile, referred_user_id)
    if referred is None or not referred.referred_by:
        return 0
    referrer = session.get(Profile, referred.referred_by)
    if referrer is None or referrer.is_deleted:
        return 0

    moment = utcnow()
    paid = 0
    pending_signup = session.exec(
        select(ReferralBonus).where(
            ReferralBonus.referrer_id == referrer.id,
            ReferralBonus.referred_id == referred.id,
            ReferralBonus.bonus_type == BonusType.SIGNUP.value,
            ReferralBonus.status == BonusStatus.PENDING.value,
        )
    ).first()
    if pending_signup is not None:
        pending_signup.status = BonusStatus.PAID.value
        pending_signup.paid_at = moment
        session.add(pending_signup)
        _credit_referrer(
            session,
            referrer,
            pending_signup.amount_cents,
            f"Signup referral bonus for {referred.username}",
            reference=reference,
        )
        paid += pending_signup.amount_cents

    bonus_cents = apply_rate(deposit_cents, DEPOSIT_REFERRAL_RATE_BPS)
    if bonus_cents > 0:
        session.add(
            ReferralBonus(
                referrer_id=referrer.id,
                referred_id=referred.id,
                amount_cents=bonus_cents,
                bonus_type=BonusType.DEPOSIT.value,
                status=BonusStatus.PAID.value,
                created_at=moment,
                paid_at=moment,
            )
        )
        _credit_referrer(
            session,
            referrer,
            bonus_cents,
            f"Referral bonus from {format_currency(deposit_cents)} deposit",
            reference=reference,
        )
        paid += bonus_cents

    if commit:
        session.commit()
    if paid:
        event_log.log("referral_bonus_paid", referrer_id=referrer.id, referred_id=referred.id, amount_cents=paid)
    return paid


def get_referral_stats(session: Session, user_id: str) -> Dict[str, Any]:
    profile = load_profile(session, user_id)
    bonuses = session.exec(select(ReferralBonus).where(ReferralBonus.referrer_id == user_id)).all()
    earned_by_user: Dict[str, int] = {}
    pending_cents = 0
    for bonus in bonuses:
        if bonus.status == BonusStatus.PAID.value:
            earned_by_user[bonus.referred_id] = earned_by_user.get(bonus.referred_id, 0) + bonus.amount_cents
        else:
            pending_cents += bonus.amount_cents
    referred = session.exec(
        select(Profile).where(Profile.referred_by == user_id).order_by(desc(Profile.created_at))
    ).all()
    referrals: List[Dict[str, Any]] = [
        {
            "id": user.id,
            "name": user.name,
            "email": user.email,
            "joined_at": user.created_at.isoformat(),
            "deposit_amount_cents": user.total_invested_cents,
            "earnings_from_referral_cents": earned_by_user.get(user.id, 0),
            "status": "active" if user.total_invested_cents > 0 else "pending",
        }
        for user in referred
    ]
    return {
        "referral_code": profile.referral_code,
        "total_referrals": profile.referral_count,
        "total_earnings_cents": profile.total_earnings_cents,
        "referral_earnings_cents": sum(earned_by_user.values()),
        "pending_bonus_cents": pending_cents,
        "referrals": referrals,
    }


def get_referral_earnings(session: Session, user_id: str) -> Dict[str, Any]:
    history = session.exec(
        select(LedgerTransaction)
        .where(
            LedgerTransaction.user_id == user_id,
            LedgerTransaction.type == TransactionType.REFERRAL_BONUS.value,
        )
        .order_by(desc(LedgerTransaction.created_at), desc(LedgerTransaction.id))
    ).all()
    return {
        "total_cents": sum(entry.amount_cents for entry in history),
        "history": [
            {
                "id": entry.id,
                "amount_cents": entry.amount_cents,
                "description": entry.description,
                "reference": entry.reference,
                "created_at": entry.created_at.isoformat(),
            }
            for entry in history
        ],
    }


def generate_referral_code(session: Session, user_id: str) -> str:
    """Replace the user's referral code with a fresh ``CHAIN``-prefixed one."""

    profile = load_profile(session, user_id)
    code = unique_referral_code(session, prefix=REFERRAL_CODE_PREFIX)
    profile.referral_code = code
    touch(profile)
    session.add(profile)
    session.commit()
    event_log.log("referral_code_generated", user_id=profile.id)
    return code


def get_referral_leaderboard(session: Session, limit: int = LEADERBOARD_SIZE) -> List[Dict[str, Any]]:
    rows = session.exec(
        select(Profile)
        .where(Profile.referral_count > 0, Profile.is_deleted == False)  # noqa: E712
        .order_by(desc(Profile.total_earnings_cents), Profile.username)
        .limit(limit)
    ).all()
    return [
        {
            "name": row.name,
            "username": row.username,
            "referral_count": row.referral_count,
            "total_earnings_cents": row.total_earnings_cents,
        }
        for row in rows
    ]


__all__ = [
    "apply_referral_code",
    "attach_referrer",
    "generate_referral_code",
    "get_referral_earnings",
    "get_referral_leaderboard",
    "get_referral_stats",
    "normalize_code",
    "process_referral_bonus",
    "unique_referral_code",
    "validate_referral_code",
]
