"""Small helpers shared by the service modules for profile lookups and ledger rows."""
from __future__ import annotations

from typing import Optional

from sqlalchemy import or_
from sqlmodel import Session, select

from ..exceptions import AccountNotFoundError, DuplicateAccountError, ValidationError
from ..models import TransactionType
from ..money import AmountLike, to_cents
from .persistence import LedgerTransaction, Profile, utcnow


def parse_amount(amount: AmountLike, *, field: str = "Amount") -> int:
    """Convert user input to positive cents, raising :class:`ValidationError` otherwise."""

    try:
        cents = to_cents(amount)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be a valid number") from exc
    if cents <= 0:
        raise ValidationError(f"{field} must be greater than zero")
    return cents


def load_profile(session: Session, user_id: str, *, include_deleted: bool = False) -> Profile:
    profile = session.get(Profile, user_id)
    if profile is None or (profile.is_deleted and not include_deleted):
        raise AccountNotFoundError("User not found")
    return profile


def find_profile_by_email(session: Session, email: str) -> Optional[Profile]:
    return session.exec(select(Profile).where(Profile.email == email.strip().lower())).first()


def ensure_unique_identity(
    session: Session,
    *,
    username: Optional[str] = None,
    email: Optional[str] = None,
    phone_number: Optional[str] = None,
    exclude_id: Optional[str] = None,
) -> None:
    """Raise :class:`DuplicateAccountError` on the first conflicting field.

    Username is checked first, then email, then phone number.
    """

    conditions = []
    if username:
        conditions.append(Profile.username == username)
    if email:
        conditions.append(Profile.email == email)
    if phone_number:
        conditions.append(Profile.phone_number == phone_number)
    if not conditions:
        return
    statement = select(Profile).where(or_(*conditions))
    if exclude_id is not None:
        statement = statement.where(Profile.id != exclude_id)
    existing = session.exec(statement).all()
    if username and any(user.username == username for user in existing):
        raise DuplicateAccountError("Username already taken")
    if email and any(user.email == email for user in existing):
        raise DuplicateAccountError("Email already registered")
    if phone_number and any(user.phone_number == phone_number for user in existing):
        raise DuplicateAccountError("Phone number already registered")


def record_transaction(
    session: Session,
    user_id: str,
    kind: TransactionType,
    amount_cents: int,
    description: str,
    *,
    reference: Optional[str] = None,
    status: str = "completed",
) -> LedgerTransaction:
    """Stage a ledger row on ``session``; the caller commits."""

    entry = LedgerTransaction(
        user_id=user_id,
        type=kind.value,
        amount_cents=amount_cents,
        status=status,
        description=description,
        reference=reference,
        created_at=utcnow(),
    )
    session.add(entry)
    return entry


def touch(profile: Profile) -> None:
    profile.updated_at = utcnow()


__all__ = ["ensure_unique_identity", "find_profile_by_email", "load_profile", "parse_amount", "record_transaction", "touch"]
