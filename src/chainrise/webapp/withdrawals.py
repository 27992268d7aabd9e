"""Withdrawal requests and their admin approval workflow."""
from __future__ import annotations

from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, desc, select

from ..exceptions import AlreadyProcessedError, ChainRiseError, InsufficientFundsError, RecordNotFoundError, ValidationError
from ..models import CryptoAddressType, TransactionType, WithdrawalStatus
from ..money import AmountLike, format_currency
from ..security import generate_reference
from .config import MIN_WITHDRAWAL_CENTS
from .ledger import load_profile, parse_amount, record_transaction, touch
from .persistence import Profile, Withdrawal, utcnow
from .runtime import event_log, mailer


def _saved_address(profile: Profile, crypto_type: str) -> Optional[str]:
    wanted = crypto_type.strip().upper()
    for address_type in CryptoAddressType:
        if wanted in {address_type.label, address_type.value.upper()}:
            return getattr(profile, address_type.value)
    return None


def get_withdrawal(session: Session, withdrawal_id: int) -> Withdrawal:
    withdrawal = session.get(Withdrawal, withdrawal_id)
    if withdrawal is None:
        raise RecordNotFoundError("Withdrawal not found")
    return withdrawal


def initiate_withdrawal(
    session: Session,
    user_id: str,
    *,
    amount: AmountLike,
    crypto_type: str,
    wallet_address: Optional[str] = None,
) -> Withdrawal:
    """Record a pending withdrawal; the balance is only debited on approval."""

    profile = load_profile(session, user_id)
    amount_cents = parse_amount(amount)
    if profile.balance_cents < amount_cents:
        raise InsufficientFundsError("Insufficient balance for withdrawal")
    if amount_cents < MIN_WITHDRAWAL_CENTS:
        raise ValidationError(f"Minimum withdrawal amount is {format_currency(MIN_WITHDRAWAL_CENTS)}")
    crypto_type = crypto_type.strip().upper()
    if not crypto_type:
        raise ValidationError("Cryptocurrency is required")
    address = (wallet_address or "").strip() or _saved_address(profile, crypto_type)
    if not address:
        raise ValidationError("Wallet address is required")

    moment = utcnow()
    withdrawal = Withdrawal(
        user_id=profile.id,
        amount_cents=amount_cents,
        crypto_type=crypto_type,
        wallet_address=address,
        status=WithdrawalStatus.PENDING.value,
        reference=generate_reference("WDR", moment),
        narration=f"Withdrawal request for {format_currency(amount_cents)}",
        created_at=moment,
        updated_at=moment,
    )
    session.add(withdrawal)
    session.commit()
    session.refresh(withdrawal)
    event_log.log("withdrawal_requested", withdrawal_id=withdrawal.id, user_id=profile.id, amount_cents=amount_cents)
    mailer.withdrawal_requested(
        user_id=profile.id,
        user_email=profile.email,
        amount_cents=amount_cents,
        crypto_type=crypto_type,
        wallet_address=address,
        reference=withdrawal.reference,
        withdrawal_id=withdrawal.id,
    )
    return withdrawal


def _require_pending(withdrawal: Withdrawal) -> None:
    if withdrawal.status != WithdrawalStatus.PENDING.value:
        raise AlreadyProcessedError("Withdrawal already processed", current_status=withdrawal.status)


def approve_withdrawal(session: Session, withdrawal_id: int) -> Withdrawal:
    """Debit the user and complete a pending withdrawal.

    The balance is checked again because it may have changed since the request.
    If the debit cannot be written the withdrawal is left ``pending``.
    """

    withdrawal = get_withdrawal(session, withdrawal_id)
    _require_pending(withdrawal)
    profile = load_profile(session, withdrawal.user_id, include_deleted=True)
    if profile.balance_cents < withdrawal.amount_cents:
        raise InsufficientFundsError("User has insufficient balance")

    moment = utcnow()
    withdrawal.status = WithdrawalStatus.PROCESSING.value
    withdrawal.processed_at = moment
    withdrawal.updated_at = moment
    session.add(withdrawal)
    try:
        session.flush()
        profile.balance_cents -= withdrawal.amount_cents
        touch(profile)
        session.add(profile)
        record_transaction(
            session,
            profile.id,
            TransactionType.WITHDRAWAL,
            withdrawal.amount_cents,
            withdrawal.narration or "Withdrawal",
            reference=withdrawal.reference,
        )
        withdrawal.status = WithdrawalStatus.COMPLETED.value
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        event_log.error("withdrawal_debit_failed", withdrawal_id=withdrawal_id, error=str(exc))
        raise ChainRiseError("Failed to update user balance") from exc
    session.refresh(withdrawal)
    event_log.log(
        "withdrawal_approved",
        withdrawal_id=withdrawal.id,
        user_id=profile.id,
        amount_cents=withdrawal.amount_cents,
    )
    mailer.withdrawal_processed(email=profile.email, amount_cents=withdrawal.amount_cents, withdrawal_id=withdrawal.id)
    return withdrawal


def reject_withdrawal(session: Session, withdrawal_id: int, admin_notes: str = "") -> Withdrawal:
    withdrawal = get_withdrawal(session, withdrawal_id)
    _require_pending(withdrawal)
    moment = utcnow()
    withdrawal.status = WithdrawalStatus.REJECTED.value
    withdrawal.processed_at = moment
    withdrawal.updated_at = moment
    withdrawal.admin_notes = admin_notes
    session.add(withdrawal)
    session.commit()
    session.refresh(withdrawal)
    event_log.log("withdrawal_rejected", withdrawal_id=withdrawal.id, notes=admin_notes)
    return withdrawal


def list_all_withdrawals(
    session: Session,
    *,
    status: Optional[str] = None,
    user_id: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> Tuple[List[Withdrawal], int]:
    statement = select(Withdrawal)
    count_statement = select(func.count()).select_from(Withdrawal)
    if status:
        statement = statement.where(Withdrawal.status == status)
        count_statement = count_statement.where(Withdrawal.status == status)
    if user_id:
        statement = statement.where(Withdrawal.user_id == user_id)
        count_statement = count_statement.where(Withdrawal.user_id == user_id)
    total = session.exec(count_statement).one()
    statement = statement.order_by(desc(Withdrawal.created_at), desc(Withdrawal.id))
    if offset:
        statement = statement.offset(offset)
    if limit:
        statement = statement.limit(limit)
    return list(session.exec(statement).all()), int(total)


def list_user_withdrawals(
    session: Session,
    user_id: str,
    *,
    status: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> Tuple[List[Withdrawal], int]:
    return list_all_withdrawals(session, status=status, user_id=user_id, limit=limit, offset=offset)


def withdrawal_payload(withdrawal: Withdrawal, *, user: Optional[Profile] = None) -> dict:
    payload = {
        "id": withdrawal.id,
        "user_id": withdrawal.user_id,
        "amount_cents": withdrawal.amount_cents,
        "amount": format_currency(withdrawal.amount_cents),
        "crypto_type": withdrawal.crypto_type,
        "wallet_address": withdrawal.wallet_address,
        "status": withdrawal.status,
        "reference": withdrawal.reference,
        "admin_notes": withdrawal.admin_notes,
        "created_at": withdrawal.created_at.isoformat(),
        "processed_at": withdrawal.processed_at.isoformat() if withdrawal.processed_at else None,
    }
    if user is not None:
        payload["username"] = user.username
        payload["email"] = user.email
    return payload


__all__ = [
    "approve_withdrawal",
    "get_withdrawal",
    "initiate_withdrawal",
    "list_all_withdrawals",
    "list_user_withdrawals",
    "reject_withdrawal",
    "withdrawal_payload",
]
