"""Locked investment lifecycle: opening, daily accrual and maturity release."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, desc, select

from ..exceptions import ChainRiseError, InsufficientFundsError, RecordNotFoundError, ValidationError
from ..investing import (
    PlanTier,
    accrued_earnings_cents,
    daily_earnings_cents,
    daily_rate_bps,
    days_remaining,
    maturity_date,
    monthly_earnings_cents,
    progress_percent,
    tier_for_amount,
)
from ..models import (
    BatchOutcome,
    DailyProfitSummary,
    InvestmentStats,
    InvestmentStatus,
    InvestmentTotals,
    MaturityRunResult,
    TransactionType,
)
from ..money import AmountLike, bps_to_percent, format_currency
from .ledger import load_profile, parse_amount, record_transaction, touch
from .persistence import InvestmentPlan, LockedInvestment, Profile, utcnow
from .runtime import event_log, health

_ROW_ERRORS = (SQLAlchemyError, ChainRiseError, ValueError)


def _locked_rows():
    return select(LockedInvestment).where(
        LockedInvestment.is_locked == True,  # noqa: E712
        LockedInvestment.status == InvestmentStatus.LOCKED.value,
    )


# ---------------------------------------------------------------------------
# Opening investments
# ---------------------------------------------------------------------------
def get_active_plan(session: Session, plan_code: str) -> InvestmentPlan:
    plan = session.exec(select(InvestmentPlan).where(InvestmentPlan.code == plan_code)).first()
    if plan is None or not plan.is_active:
        raise RecordNotFoundError("Investment plan not found")
    return plan


def create_locked_investment(
    session: Session,
    profile: Profile,
    plan: InvestmentPlan,
    amount_cents: int,
    *,
    crypto_type: Optional[str] = None,
    now: Optional[datetime] = None,
) -> LockedInvestment:
    """Stage a locked investment for ``profile`` and count it as invested.

    The caller decides where the principal comes from and commits the session.
    """

    if not plan.min_cents <= amount_cents <= plan.max_cents:
        raise ValidationError(
            f"Amount must be between {format_currency(plan.min_cents)} and "
            f"{format_currency(plan.max_cents)} for {plan.title}"
        )
    moment = now or utcnow()
    investment = LockedInvestment(
        user_id=profile.id,
        investment_plan=plan.code,
        amount_cents=amount_cents,
        locked_amount_cents=amount_cents,
        days_remaining=plan.duration_days,
        maturity_date=maturity_date(moment, plan.duration_days),
        crypto_type=crypto_type,
        created_at=moment,
        updated_at=moment,
    )
    profile.total_invested_cents += amount_cents
    touch(profile)
    session.add(investment)
    session.add(profile)
    return investment


def open_investment(
    session: Session,
    user_id: str,
    plan_code: str,
    amount: AmountLike,
    *,
    now: Optional[datetime] = None,
) -> LockedInvestment:
    """Move ``amount`` from the user's balance into a new locked investment."""

    amount_cents = parse_amount(amount)
    profile = load_profile(session, user_id)
    plan = get_active_plan(session, plan_code)
    if profile.balance_cents < amount_cents:
        raise InsufficientFundsError("Insufficient balance for investment")
    profile.balance_cents -= amount_cents
    investment = create_locked_investment(session, profile, plan, amount_cents, now=now)
    record_transaction(
        session,
        profile.id,
        TransactionType.INVESTMENT,
        amount_cents,
        f"Investment in {plan.title} locked for {plan.duration_days} days",
    )
    session.commit()
    session.refresh(investment)
    event_log.log("investment_opened", user_id=profile.id, plan=plan.code, amount_cents=amount_cents)
    return investment


# ---------------------------------------------------------------------------
# Maturity batch
# ---------------------------------------------------------------------------
def update_days_remaining(session: Session, now: Optional[datetime] = None) -> int:
    """Recompute ``days_remaining`` on every locked row; errors propagate."""

    moment = now or utcnow()
    rows = session.exec(_locked_rows()).all()
    for investment in rows:
        investment.days_remaining = days_remaining(investment.maturity_date, moment)
        investment.updated_at = moment
        session.add(investment)
    session.commit()
    return len(rows)


def process_matured_investments(session: Session, now: Optional[datetime] = None) -> BatchOutcome:
    """Release every locked investment whose counter has reached zero."""

    moment = now or utcnow()
    outcome = BatchOutcome()
    rows = session.exec(_locked_rows().where(LockedInvestment.days_remaining <= 0)).all()
    for investment in rows:
        investment_id = investment.id
        try:
            profile = session.get(Profile, investment.user_id)
            if profile is None:
                raise ValueError("profile not found")
            amount = investment.amount_cents
            profile.total_invested_cents -= amount
            profile.balance_cents += amount
            touch(profile)
            investment.status = InvestmentStatus.COMPLETED.value
            investment.is_locked = False
            investment.locked_amount_cents = 0
            investment.released_at = moment
            investment.updated_at = moment
            session.add(profile)
            session.add(investment)
            record_transaction(
                session,
                profile.id,
                TransactionType.INVESTMENT_MATURITY,
                amount,
                f"Investment matured: {investment.investment_plan} principal returned to balance",
            )
            session.commit()
        except _ROW_ERRORS as exc:
            session.rollback()
            outcome.errors.append(f"Investment {investment_id}: {exc}")
            event_log.error("investment_release_failed", investment_id=investment_id, error=str(exc))
            continue
        outcome.processed += 1
        event_log.log("investment_released", investment_id=investment_id, amount_cents=amount)
    return outcome


def process_daily_investment_earnings(session: Session, now: Optional[datetime] = None) -> BatchOutcome:
    """Credit one day of earnings to every locked investment still running.

    Rows already credited on the current UTC date are skipped so a repeated run
    on the same day pays nothing twice.
    """

    moment = now or utcnow()
    outcome = BatchOutcome()
    rows = session.exec(_locked_rows().where(LockedInvestment.days_remaining >= 1)).all()
    for investment in rows:
        investment_id = investment.id
        if investment.last_accrued_at is not None and investment.last_accrued_at.date() == moment.date():
            continue
        earnings = daily_earnings_cents(investment.amount_cents, daily_rate_bps(investment.investment_plan))
        if earnings <= 0:
            continue
        try:
            profile = session.get(Profile, investment.user_id)
            if profile is None:
                raise ValueError("profile not found")
            profile.balance_cents += earnings
            profile.total_earnings_cents += earnings
            touch(profile)
            investment.last_accrued_at = moment
            investment.updated_at = moment
            session.add(profile)
            session.add(investment)
            record_transaction(
                session,
                profile.id,
                TransactionType.INVESTMENT_EARNINGS,
                earnings,
                f"Daily earnings from {investment.investment_plan} investment",
            )
            session.commit()
        except _ROW_ERRORS as exc:
            session.rollback()
            outcome.errors.append(f"Investment {investment_id}: {exc}")
            event_log.error("investment_earnings_failed", investment_id=investment_id, error=str(exc))
            continue
        outcome.processed += 1
    return outcome


def process_investment_maturity(session: Session, now: Optional[datetime] = None) -> MaturityRunResult:
    """Run the full maturity pass: refresh counters, release, then accrue."""

    moment = now or utcnow()
    try:
        update_days_remaining(session, moment)
    except SQLAlchemyError as exc:
        session.rollback()
        event_log.error("investment_maturity_failed", error=str(exc))
        return MaturityRunResult(success=False, error=f"Failed to update days remaining: {exc}", ran_at=moment)

    matured = process_matured_investments(session, moment)
    earnings = process_daily_investment_earnings(session, moment)
    result = MaturityRunResult(
        success=True,
        processed=matured.processed + earnings.processed,
        matured=matured,
        earnings=earnings,
        ran_at=moment,
    )
    health.record_run("investment_maturity", moment)
    event_log.log(
        "investment_maturity_run",
        matured=matured.processed,
        earnings=earnings.processed,
        errors=len(matured.errors) + len(earnings.errors),
    )
    return result


# ---------------------------------------------------------------------------
# Profile-level daily profits
# ---------------------------------------------------------------------------
def calculate_daily_profits(session: Session, now: Optional[datetime] = None) -> DailyProfitSummary:
    """Credit each active investor the daily rate of the tier matching their total invested."""

    moment = now or utcnow()
    profiles = session.exec(
        select(Profile).where(
            Profile.total_invested_cents > 0,
            Profile.is_active == True,  # noqa: E712
            Profile.is_deleted == False,  # noqa: E712
        )
    ).all()
    distributed = 0
    investors = 0
    credited = 0
    errors: List[str] = []
    for profile in profiles:
        profile_id = profile.id
        investors += 1
        if profile.last_profit_at is not None and profile.last_profit_at.date() == moment.date():
            continue
        tier = tier_for_amount(profile.total_invested_cents)
        if tier is None:
            continue
        profit = daily_earnings_cents(profile.total_invested_cents, tier.rate_bps)
        if profit <= 0:
            continue
        try:
            profile.balance_cents += profit
            profile.total_earnings_cents += profit
            profile.last_profit_at = moment
            touch(profile)
            session.add(profile)
            record_transaction(
                session,
                profile_id,
                TransactionType.PROFIT,
                profit,
                f"Daily profit from {tier.title} ({bps_to_percent(tier.rate_bps)}%)",
            )
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            errors.append(f"User {profile_id}: {exc}")
            event_log.error("daily_profit_failed", user_id=profile_id, error=str(exc))
            continue
        distributed += profit
        credited += 1

    summary = DailyProfitSummary(
        total_users_processed=len(profiles),
        total_profits_distributed_cents=distributed,
        users_with_investments=investors,
        errors=errors,
    )
    health.record_run("daily_profits", moment)
    event_log.log("daily_profits_run", users=credited, distributed_cents=distributed)
    return summary


def get_user_investment_plan(session: Session, user_id: str) -> Optional[PlanTier]:
    profile = load_profile(session, user_id)
    return tier_for_amount(profile.total_invested_cents)


def calculate_user_profit(session: Session, user_id: str) -> Dict[str, Any]:
    """Credit one day of profile-level profit to a single user on demand."""

    profile = load_profile(session, user_id)
    tier = tier_for_amount(profile.total_invested_cents)
    if tier is None:
        raise ValidationError("No active investment plan for this user")
    profit = daily_earnings_cents(profile.total_invested_cents, tier.rate_bps)
    previous = profile.balance_cents
    profile.balance_cents += profit
    profile.total_earnings_cents += profit
    touch(profile)
    session.add(profile)
    record_transaction(
        session,
        profile.id,
        TransactionType.PROFIT,
        profit,
        f"Daily profit from {tier.title} ({bps_to_percent(tier.rate_bps)}%)",
    )
    session.commit()
    event_log.log("user_profit_calculated", user_id=profile.id, profit_cents=profit)
    return {
        "plan": tier.code,
        "earnings_cents": profit,
        "previous_balance_cents": previous,
        "new_balance_cents": profile.balance_cents,
    }


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------
def get_user_investments(session: Session, user_id: str) -> Tuple[List[LockedInvestment], InvestmentTotals]:
    rows = session.exec(
        select(LockedInvestment)
        .where(LockedInvestment.user_id == user_id)
        .order_by(desc(LockedInvestment.created_at), desc(LockedInvestment.id))
    ).all()
    totals = InvestmentTotals()
    for investment in rows:
        totals.total_invested_cents += investment.amount_cents
        totals.total_earnings_cents += accrued_earnings_cents(
            investment.amount_cents,
            daily_rate_bps(investment.investment_plan),
            investment.days_remaining,
        )
        if investment.is_locked:
            totals.total_locked_cents += investment.locked_amount_cents
            totals.active_investments += 1
        elif investment.status == InvestmentStatus.COMPLETED.value:
            totals.matured_investments += 1
    return list(rows), totals


def get_investment_stats(session: Session, user_id: str) -> InvestmentStats:
    profile = load_profile(session, user_id)
    rows, _ = get_user_investments(session, user_id)
    stats = InvestmentStats(available_balance_cents=profile.balance_cents)
    for investment in rows:
        stats.total_value_cents += investment.amount_cents
        if not investment.is_locked:
            continue
        rate = daily_rate_bps(investment.investment_plan)
        stats.daily_earnings_cents += daily_earnings_cents(investment.amount_cents, rate)
        stats.monthly_earnings_cents += monthly_earnings_cents(investment.amount_cents, rate)
        stats.locked_balance_cents += investment.locked_amount_cents
    return stats


def investment_payload(investment: LockedInvestment) -> dict:
    rate = daily_rate_bps(investment.investment_plan)
    return {
        "id": investment.id,
        "investment_plan": investment.investment_plan,
        "amount_cents": investment.amount_cents,
        "amount": format_currency(investment.amount_cents),
        "locked_amount_cents": investment.locked_amount_cents,
        "daily_rate_percent": float(bps_to_percent(rate)),
        "daily_earnings_cents": daily_earnings_cents(investment.amount_cents, rate),
        "status": investment.status,
        "is_locked": investment.is_locked,
        "days_remaining": investment.days_remaining,
        "progress_percent": progress_percent(investment.days_remaining),
        "maturity_date": investment.maturity_date.isoformat(),
        "created_at": investment.created_at.isoformat(),
        "released_at": investment.released_at.isoformat() if investment.released_at else None,
    }


__all__ = [
    "calculate_daily_profits",
    "calculate_user_profit",
    "create_locked_investment",
    "get_active_plan",
    "get_investment_stats",
    "get_user_investment_plan",
    "get_user_investments",
    "investment_payload",
    "open_investment",
    "process_daily_investment_earnings",
    "process_investment_maturity",
    "process_matured_investments",
    "update_days_remaining",
]
