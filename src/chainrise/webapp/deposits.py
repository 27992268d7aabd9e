"""Investment plans and the deposit request / approval workflow."""
from __future__ import annotations

from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlmodel import Session, desc, select

from ..exceptions import AlreadyProcessedError, RecordNotFoundError, ValidationError
from ..models import DepositStatus, TransactionType
from ..money import AmountLike, bps_to_percent, format_currency
from ..security import generate_reference
from .ledger import load_profile, parse_amount, record_transaction, touch
from .persistence import Deposit, InvestmentPlan, Profile, utcnow
from .referrals import process_referral_bonus
from .runtime import event_log, mailer
from .wallets import find_active_wallet


def list_investment_plans(session: Session, *, include_inactive: bool = False) -> List[InvestmentPlan]:
    statement = select(InvestmentPlan)
    if not include_inactive:
        statement = statement.where(InvestmentPlan.is_active == True)  # noqa: E712
    return list(session.exec(statement.order_by(InvestmentPlan.min_cents)).all())


def get_plan(session: Session, plan_id: int) -> InvestmentPlan:
    plan = session.get(InvestmentPlan, plan_id)
    if plan is None:
        raise RecordNotFoundError("Invalid investment plan")
    return plan


def get_deposit(session: Session, deposit_id: int) -> Deposit:
    deposit = session.get(Deposit, deposit_id)
    if deposit is None:
        raise RecordNotFoundError("Deposit not found")
    return deposit


def initiate_deposit(
    session: Session,
    user_id: str,
    *,
    plan_id: int,
    amount: AmountLike,
    crypto_type: str,
    transaction_hash: Optional[str] = None,
) -> Deposit:
    """Record a pending deposit against a plan and notify the admin."""

    profile = load_profile(session, user_id)
    amount_cents = parse_amount(amount)
    plan = get_plan(session, plan_id)
    if not plan.is_active:
        raise ValidationError("Invalid investment plan")
    if amount_cents < plan.min_cents or amount_cents > plan.max_cents:
        raise ValidationError(
            f"Amount must be between {format_currency(plan.min_cents)} and "
            f"{format_currency(plan.max_cents)} for this plan"
        )
    wallet = find_active_wallet(session, crypto_type)
    if wallet is None:
        raise ValidationError("Invalid cryptocurrency selected")

    moment = utcnow()
    deposit = Deposit(
        user_id=profile.id,
        plan_id=plan.id,
        amount_cents=amount_cents,
        crypto_type=wallet.symbol,
        wallet_address=wallet.wallet_address,
        transaction_hash=(transaction_hash or "").strip() or None,
        status=DepositStatus.PENDING.value,
        reference=generate_reference("DEP", moment),
        narration=f"Investment deposit for {plan.title}",
        created_at=moment,
        updated_at=moment,
    )
    session.add(deposit)
    session.commit()
    session.refresh(deposit)
    event_log.log("deposit_requested", deposit_id=deposit.id, user_id=profile.id, amount_cents=amount_cents)
    mailer.deposit_requested(
        user_id=profile.id,
        user_email=profile.email,
        amount_cents=amount_cents,
        plan_title=plan.title,
        crypto_type=deposit.crypto_type,
        wallet_address=deposit.wallet_address,
        reference=deposit.reference,
        deposit_id=deposit.id,
        transaction_hash=deposit.transaction_hash,
    )
    return deposit


def _require_pending(deposit: Deposit) -> None:
    if deposit.status != DepositStatus.PENDING.value:
        raise AlreadyProcessedError("Deposit already processed", current_status=deposit.status)


def approve_deposit(session: Session, deposit_id: int) -> Deposit:
    """Complete a pending deposit, credit the depositor and pay referral bonuses."""

    deposit = get_deposit(session, deposit_id)
    _require_pending(deposit)
    profile = load_profile(session, deposit.user_id, include_deleted=True)
    moment = utcnow()
    deposit.status = DepositStatus.COMPLETED.value
    deposit.processed_at = moment
    deposit.updated_at = moment
    profile.balance_cents += deposit.amount_cents
    touch(profile)
    session.add(deposit)
    session.add(profile)
    record_transaction(
        session,
        profile.id,
        TransactionType.DEPOSIT,
        deposit.amount_cents,
        deposit.narration or "Deposit approved",
        reference=deposit.reference,
    )
    referral_paid = process_referral_bonus(
        session, profile.id, deposit.amount_cents, reference=deposit.reference, commit=False
    )
    session.commit()
    session.refresh(deposit)
    event_log.log(
        "deposit_approved",
        deposit_id=deposit.id,
        user_id=profile.id,
        amount_cents=deposit.amount_cents,
        referral_paid_cents=referral_paid,
    )
    mailer.deposit_approved(email=profile.email, amount_cents=deposit.amount_cents, deposit_id=deposit.id)
    return deposit


def reject_deposit(session: Session, deposit_id: int, admin_notes: str = "") -> Deposit:
    deposit = get_deposit(session, deposit_id)
    _require_pending(deposit)
    moment = utcnow()
    deposit.status = DepositStatus.REJECTED.value
    deposit.processed_at = moment
    deposit.updated_at = moment
    deposit.admin_notes = admin_notes
    session.add(deposit)
    session.commit()
    session.refresh(deposit)
    event_log.log("deposit_rejected", deposit_id=deposit.id, notes=admin_notes)
    return deposit


def _paginate(session: Session, statement, count_statement, limit: Optional[int], offset: int):
    total = session.exec(count_statement).one()
    statement = statement.order_by(desc(Deposit.created_at), desc(Deposit.id))
    if offset:
        statement = statement.offset(offset)
    if limit:
        statement = statement.limit(limit)
    return list(session.exec(statement).all()), int(total)


def list_user_deposits(
    session: Session,
    user_id: str,
    *,
    status: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> Tuple[List[Deposit], int]:
    return list_all_deposits(session, status=status, user_id=user_id, limit=limit, offset=offset)


def list_all_deposits(
    session: Session,
    *,
    status: Optional[str] = None,
    user_id: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> Tuple[List[Deposit], int]:
    """Return deposits newest first together with the unpaginated total."""

    statement = select(Deposit)
    count_statement = select(func.count()).select_from(Deposit)
    if status:
        statement = statement.where(Deposit.status == status)
        count_statement = count_statement.where(Deposit.status == status)
    if user_id:
        statement = statement.where(Deposit.user_id == user_id)
        count_statement = count_statement.where(Deposit.user_id == user_id)
    return _paginate(session, statement, count_statement, limit, offset)


def deposit_payload(deposit: Deposit, *, plan: Optional[InvestmentPlan] = None, user: Optional[Profile] = None) -> dict:
    payload = {
        "id": deposit.id,
        "user_id": deposit.user_id,
        "amount_cents": deposit.amount_cents,
        "amount": format_currency(deposit.amount_cents),
        "crypto_type": deposit.crypto_type,
        "wallet_address": deposit.wallet_address,
        "transaction_hash": deposit.transaction_hash,
        "status": deposit.status,
        "reference": deposit.reference,
        "narration": deposit.narration,
        "admin_notes": deposit.admin_notes,
        "created_at": deposit.created_at.isoformat(),
        "processed_at": deposit.processed_at.isoformat() if deposit.processed_at else None,
    }
    if plan is not None:
        payload["plan_title"] = plan.title
    if user is not None:
        payload["username"] = user.username
        payload["email"] = user.email
    return payload


def plan_payload(plan: InvestmentPlan) -> dict:
    return {
        "id": plan.id,
        "code": plan.code,
        "title": plan.title,
        "daily_rate_percent": float(bps_to_percent(plan.rate_bps)),
        "min_amount_cents": plan.min_cents,
        "max_amount_cents": plan.max_cents,
        "duration_days": plan.duration_days,
        "interval": plan.interval,
        "referral_bonus_percent": float(bps_to_percent(plan.referral_bonus_bps)),
        "is_active": plan.is_active,
    }


__all__ = [
    "approve_deposit",
    "deposit_payload",
    "get_deposit",
    "get_plan",
    "initiate_deposit",
    "list_all_deposits",
    "list_investment_plans",
    "list_user_deposits",
    "plan_payload",
    "reject_deposit",
]
