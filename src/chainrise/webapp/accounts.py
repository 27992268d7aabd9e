"""Sign-up, sign-in, password resets, profile data and balance summaries."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Mapping, Optional, Tuple, Union

from sqlalchemy import func
from sqlmodel import Session, select

from ..exceptions import (
    AccountBannedError,
    AccountNotFoundError,
    AuthenticationError,
    InvalidReferralCodeError,
    ValidationError,
)
from ..models import CryptoAddressType, DepositStatus, WithdrawalStatus
from ..security import generate_reset_token, hash_password, verify_password
from .config import PASSWORD_MIN_LENGTH, RESET_TOKEN_LIFETIME
from .deposits import list_user_deposits
from .ledger import ensure_unique_identity, load_profile, touch
from .persistence import Deposit, LockedInvestment, PasswordResetToken, Profile, Withdrawal, utcnow
from .referrals import attach_referrer, normalize_code, unique_referral_code
from .runtime import auth_manager, event_log, mailer
from .users import lift_expired_ban
from .withdrawals import list_user_withdrawals

ADMIN_HOME = "/admin"
USER_HOME = "/user/dashboard"


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _check_password(password: str, confirm_password: str) -> None:
    if password != confirm_password:
        raise ValidationError("Passwords do not match")
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")


def _parse_address_type(address_type: Union[str, CryptoAddressType]) -> CryptoAddressType:
    try:
        return CryptoAddressType(address_type)
    except ValueError as exc:
        raise ValidationError(f"Unknown crypto address type: {address_type}") from exc


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------
def sign_up(
    session: Session,
    *,
    name: str,
    email: str,
    username: str,
    phone_number: Optional[str],
    password: str,
    confirm_password: str,
    referral_code: Optional[str] = None,
    addresses: Optional[Mapping[str, Optional[str]]] = None,
) -> Profile:
    """Create a profile, link its referrer and send the welcome email."""

    _check_password(password, confirm_password)
    name = (name or "").strip()
    username = (username or "").strip()
    email = _normalize_email(email)
    phone_number = (phone_number or "").strip() or None
    if not name or not username or not email:
        raise ValidationError("Name, username and email are required")
    ensure_unique_identity(session, username=username, email=email, phone_number=phone_number)

    referrer: Optional[Profile] = None
    code = normalize_code(referral_code)
    if code:
        referrer = session.exec(select(Profile).where(Profile.referral_code == code)).first()
        if referrer is None or referrer.is_deleted:
            raise InvalidReferralCodeError("Invalid referral code")

    moment = utcnow()
    profile = Profile(
        name=name,
        username=username,
        email=email,
        phone_number=phone_number,
        password_hash=hash_password(password),
        referral_code=unique_referral_code(session),
        created_at=moment,
        updated_at=moment,
    )
    wallets: Dict[str, str] = {}
    for key, value in (addresses or {}).items():
        address = (value or "").strip()
        if not address:
            continue
        address_type = _parse_address_type(key)
        setattr(profile, address_type.value, address)
        wallets[address_type.label] = address
    session.add(profile)
    if referrer is not None:
        attach_referrer(session, profile, referrer)
    session.commit()
    session.refresh(profile)
    event_log.log("account_created", user_id=profile.id, username=profile.username, referred=referrer is not None)
    mailer.welcome(
        email=profile.email,
        name=profile.name,
        username=profile.username,
        referral_code=profile.referral_code,
        wallets=wallets,
    )
    return profile


def sign_in(
    session: Session,
    email_or_username: str,
    password: str,
    *,
    now: Optional[datetime] = None,
) -> Tuple[Profile, str]:
    """Authenticate and return the profile with the page it should land on."""

    identifier = (email_or_username or "").strip()
    if not identifier or not password:
        raise ValidationError("Email/Username and password are required")
    moment = now or utcnow()
    if auth_manager.is_locked(identifier, at=moment):
        raise AuthenticationError("Too many failed sign-in attempts. Please try again later.")

    if "@" in identifier:
        statement = select(Profile).where(Profile.email == _normalize_email(identifier))
    else:
        statement = select(Profile).where(Profile.username == identifier)
    profile = session.exec(statement).first()
    if profile is None or profile.is_deleted or not verify_password(profile.password_hash, password):
        auth_manager.record_login_attempt(identifier, success=False, at=moment)
        event_log.log("sign_in_failed", identifier=identifier)
        raise AuthenticationError("Invalid credentials")

    if profile.is_banned:
        lift_expired_ban(session, profile, now=moment)
    if profile.is_banned:
        raise AccountBannedError("Your account has been banned")
    if not profile.is_active:
        raise AccountBannedError("Your account is not active")

    auth_manager.record_login_attempt(identifier, success=True, at=moment)
    event_log.log("sign_in", user_id=profile.id)
    return profile, ADMIN_HOME if profile.is_admin else USER_HOME


def request_password_reset(session: Session, email: str) -> PasswordResetToken:
    email = _normalize_email(email)
    if not email:
        raise ValidationError("Email is required")
    profile = session.exec(select(Profile).where(Profile.email == email)).first()
    if profile is None or profile.is_deleted:
        raise AccountNotFoundError("No account found with this email")
    moment = utcnow()
    token = PasswordResetToken(
        user_id=profile.id,
        token=generate_reset_token(),
        expires_at=moment + RESET_TOKEN_LIFETIME,
        created_at=moment,
    )
    session.add(token)
    session.commit()
    session.refresh(token)
    event_log.log("password_reset_requested", user_id=profile.id)
    mailer.password_reset(email=profile.email, name=profile.name, token=token.token)
    return token


def confirm_password_reset(session: Session, token: str, new_password: str, confirm_password: str) -> Profile:
    if not token or not new_password or not confirm_password:
        raise ValidationError("All fields are required")
    _check_password(new_password, confirm_password)
    moment = utcnow()
    record = session.exec(
        select(PasswordResetToken).where(
            PasswordResetToken.token == token,
            PasswordResetToken.used == False,  # noqa: E712
            PasswordResetToken.expires_at > moment,
        )
    ).first()
    if record is None:
        raise ValidationError("Invalid or expired reset link. Please request a new one.")
    profile = load_profile(session, record.user_id)
    profile.password_hash = hash_password(new_password)
    profile.session_version += 1
    touch(profile)
    record.used = True
    session.add(profile)
    session.add(record)
    session.commit()
    event_log.log("password_reset_completed", user_id=profile.id)
    return profile


def ensure_admin(session: Session, username: str, password: str, *, email: Optional[str] = None) -> Optional[Profile]:
    """Create or promote the configured bootstrap admin account."""

    if not username or not password:
        return None
    profile = session.exec(select(Profile).where(Profile.username == username)).first()
    if profile is None:
        profile = Profile(
            name="Administrator",
            username=username,
            email=_normalize_email(email or f"{username}@chainrise.local"),
            password_hash=hash_password(password),
            referral_code=unique_referral_code(session),
            is_admin=True,
        )
        session.add(profile)
        session.commit()
        session.refresh(profile)
        event_log.log("admin_bootstrapped", user_id=profile.id)
    elif not profile.is_admin:
        profile.is_admin = True
        touch(profile)
        session.add(profile)
        session.commit()
    return profile


# ---------------------------------------------------------------------------
# Profile data
# ---------------------------------------------------------------------------
def get_profile(session: Session, user_id: str) -> Profile:
    return load_profile(session, user_id)


def update_profile(
    session: Session,
    user_id: str,
    *,
    name: Optional[str] = None,
    username: Optional[str] = None,
    email: Optional[str] = None,
    phone_number: Optional[str] = None,
    current_password: Optional[str] = None,
) -> Profile:
    profile = load_profile(session, user_id)
    username = (username or "").strip() or None
    phone_number = (phone_number or "").strip() or None
    new_email = _normalize_email(email) if email else None
    if new_email == profile.email:
        new_email = None
    if new_email is not None:
        if not current_password:
            raise ValidationError("Current password is required to change email")
        if not verify_password(profile.password_hash, current_password):
            raise AuthenticationError("Current password is incorrect")
    ensure_unique_identity(
        session,
        username=username if username != profile.username else None,
        email=new_email,
        phone_number=phone_number if phone_number != profile.phone_number else None,
        exclude_id=profile.id,
    )
    if name is not None and name.strip():
        profile.name = name.strip()
    if username:
        profile.username = username
    if new_email:
        profile.email = new_email
    if phone_number:
        profile.phone_number = phone_number
    touch(profile)
    session.add(profile)
    session.commit()
    session.refresh(profile)
    event_log.log("profile_updated", user_id=profile.id, email_changed=new_email is not None)
    return profile


def get_crypto_addresses(session: Session, user_id: str) -> Dict[str, Optional[str]]:
    profile = load_profile(session, user_id)
    return {address_type.value: getattr(profile, address_type.value) for address_type in CryptoAddressType}


def update_crypto_address(
    session: Session, user_id: str, address_type: Union[str, CryptoAddressType], address: str
) -> Profile:
    kind = _parse_address_type(address_type)
    cleaned = (address or "").strip()
    if not cleaned:
        raise ValidationError("Invalid address format")
    profile = load_profile(session, user_id)
    setattr(profile, kind.value, cleaned)
    touch(profile)
    session.add(profile)
    session.commit()
    event_log.log("crypto_address_updated", user_id=profile.id, address_type=kind.value)
    return profile


def delete_crypto_address(session: Session, user_id: str, address_type: Union[str, CryptoAddressType]) -> Profile:
    kind = _parse_address_type(address_type)
    profile = load_profile(session, user_id)
    setattr(profile, kind.value, None)
    touch(profile)
    session.add(profile)
    session.commit()
    event_log.log("crypto_address_deleted", user_id=profile.id, address_type=kind.value)
    return profile


def update_multiple_crypto_addresses(
    session: Session, user_id: str, addresses: Mapping[str, Optional[str]]
) -> Dict[str, Optional[str]]:
    """Save every non-blank address in ``addresses``; all blank is an error."""

    cleaned = {
        _parse_address_type(key).value: value.strip()
        for key, value in addresses.items()
        if value and value.strip()
    }
    if not cleaned:
        raise ValidationError("No valid addresses provided")
    profile = load_profile(session, user_id)
    for column, value in cleaned.items():
        setattr(profile, column, value)
    touch(profile)
    session.add(profile)
    session.commit()
    event_log.log("crypto_addresses_updated", user_id=profile.id, address_types=sorted(cleaned))
    return get_crypto_addresses(session, user_id)


# ---------------------------------------------------------------------------
# Balance summaries
# ---------------------------------------------------------------------------
def _sum(session: Session, column, *conditions) -> int:
    total = session.exec(select(func.coalesce(func.sum(column), 0)).where(*conditions)).one()
    return int(total or 0)


def total_completed_deposits(session: Session, user_id: str) -> int:
    return _sum(
        session,
        Deposit.amount_cents,
        Deposit.user_id == user_id,
        Deposit.status == DepositStatus.COMPLETED.value,
    )


def total_active_investments(session: Session, user_id: str) -> int:
    return _sum(
        session,
        LockedInvestment.amount_cents,
        LockedInvestment.user_id == user_id,
        LockedInvestment.is_locked == True,  # noqa: E712
    )


def total_completed_withdrawals(session: Session, user_id: str) -> int:
    return _sum(
        session,
        Withdrawal.amount_cents,
        Withdrawal.user_id == user_id,
        Withdrawal.status == WithdrawalStatus.COMPLETED.value,
    )


def total_pending_withdrawals(session: Session, user_id: str) -> int:
    return _sum(
        session,
        Withdrawal.amount_cents,
        Withdrawal.user_id == user_id,
        Withdrawal.status == WithdrawalStatus.PENDING.value,
    )


def list_user_transactions(
    session: Session,
    user_id: str,
    kind: str,
    *,
    status: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> Tuple[List[Union[Deposit, Withdrawal]], int]:
    if kind == "deposits":
        return list_user_deposits(session, user_id, status=status, limit=limit, offset=offset)
    if kind == "withdrawals":
        return list_user_withdrawals(session, user_id, status=status, limit=limit, offset=offset)
    raise ValidationError("Transaction type must be 'deposits' or 'withdrawals'")


def profile_payload(profile: Profile) -> dict:
    return {
        "id": profile.id,
        "name": profile.name,
        "username": profile.username,
        "email": profile.email,
        "phone_number": profile.phone_number,
        "referral_code": profile.referral_code,
        "balance_cents": profile.balance_cents,
        "total_invested_cents": profile.total_invested_cents,
        "total_earnings_cents": profile.total_earnings_cents,
        "referral_count": profile.referral_count,
        "is_admin": profile.is_admin,
        "is_active": profile.is_active,
        "is_banned": profile.is_banned,
        "created_at": profile.created_at.isoformat(),
    }


__all__ = [
    "ADMIN_HOME",
    "USER_HOME",
    "confirm_password_reset",
    "delete_crypto_address",
    "ensure_admin",
    "get_crypto_addresses",
    "get_profile",
    "list_user_transactions",
    "profile_payload",
    "request_password_reset",
    "sign_in",
    "sign_up",
    "total_active_investments",
    "total_completed_deposits",
    "total_completed_withdrawals",
    "total_pending_withdrawals",
    "update_crypto_address",
    "update_multiple_crypto_addresses",
    "update_profile",
]
