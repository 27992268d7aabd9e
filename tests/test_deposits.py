import pytest
from sqlmodel import Session, select

from chainrise.exceptions import AlreadyProcessedError, RecordNotFoundError, ValidationError
from chainrise.models import DepositStatus, TransactionType
from chainrise.webapp.deposits import (
    approve_deposit,
    initiate_deposit,
    list_all_deposits,
    list_investment_plans,
    list_user_deposits,
    reject_deposit,
)
from chainrise.webapp.persistence import InvestmentPlan, LedgerTransaction, Profile
from chainrise.webapp.runtime import email_client

from conftest import make_profile, make_wallet


def plan_id(session: Session, code: str) -> int:
    return session.exec(select(InvestmentPlan).where(InvestmentPlan.code == code)).one().id


def test_plans_are_seeded_in_amount_order(session: Session) -> None:
    plans = list_investment_plans(session)
    assert [plan.code for plan in plans] == ["plan_1", "plan_2", "plan_3", "plan_4"]
    assert plans[0].min_cents == 100_00
    assert plans[-1].max_cents == 59_999_00


def test_initiate_deposit_creates_pending_request(session: Session) -> None:
    user_id = make_profile("dan")
    make_wallet("BTC", "bc1-platform")

    deposit = initiate_deposit(
        session, user_id, plan_id=plan_id(session, "plan_1"), amount="250", crypto_type="btc", transaction_hash=" 0xabc "
    )

    assert deposit.status == DepositStatus.PENDING.value
    assert deposit.amount_cents == 250_00
    assert deposit.crypto_type == "BTC"
    assert deposit.wallet_address == "bc1-platform"
    assert deposit.transaction_hash == "0xabc"
    assert deposit.reference.startswith("DEP-")
    assert deposit.narration == "Investment deposit for Plan 1"
    subjects = [message["Subject"] for message in email_client.deliveries()]
    assert subjects == ["New Deposit Request - $250.00 BTC"]


def test_initiate_deposit_rejects_out_of_band_amount_and_unknown_crypto(session: Session) -> None:
    user_id = make_profile("dan")
    make_wallet("BTC")
    with pytest.raises(ValidationError, match="Amount must be between"):
        initiate_deposit(session, user_id, plan_id=plan_id(session, "plan_2"), amount="100", crypto_type="BTC")
    with pytest.raises(ValidationError, match="Invalid cryptocurrency selected"):
        initiate_deposit(session, user_id, plan_id=plan_id(session, "plan_1"), amount="100", crypto_type="DOGE")
    with pytest.raises(RecordNotFoundError):
        initiate_deposit(session, user_id, plan_id=999, amount="100", crypto_type="BTC")


def test_approve_deposit_credits_balance_once(session: Session) -> None:
    user_id = make_profile("dan")
    make_wallet("BTC")
    deposit = initiate_deposit(session, user_id, plan_id=plan_id(session, "plan_1"), amount="500", crypto_type="BTC")

    approved = approve_deposit(session, deposit.id)

    assert approved.status == DepositStatus.COMPLETED.value
    assert approved.processed_at is not None
    assert session.get(Profile, user_id).balance_cents == 500_00
    entry = session.exec(select(LedgerTransaction).where(LedgerTransaction.user_id == user_id)).one()
    assert entry.type == TransactionType.DEPOSIT.value
    assert entry.reference == deposit.reference

    with pytest.raises(AlreadyProcessedError) as excinfo:
        approve_deposit(session, deposit.id)
    assert excinfo.value.current_status == "completed"
    session.expire_all()
    assert session.get(Profile, user_id).balance_cents == 500_00


def test_reject_deposit_keeps_balance(session: Session) -> None:
    user_id = make_profile("dan")
    make_wallet("BTC")
    deposit = initiate_deposit(session, user_id, plan_id=plan_id(session, "plan_1"), amount="500", crypto_type="BTC")

    rejected = reject_deposit(session, deposit.id, "Hash not found on chain")

    assert rejected.status == DepositStatus.REJECTED.value
    assert rejected.admin_notes == "Hash not found on chain"
    assert session.get(Profile, user_id).balance_cents == 0
    with pytest.raises(AlreadyProcessedError):
        approve_deposit(session, deposit.id)


def test_deposit_listing_filters_and_counts(session: Session) -> None:
    first = make_profile("dan")
    second = make_profile("eve")
    make_wallet("BTC")
    basic = plan_id(session, "plan_1")
    for amount in ("100", "200", "300"):
        initiate_deposit(session, first, plan_id=basic, amount=amount, crypto_type="BTC")
    other = initiate_deposit(session, second, plan_id=basic, amount="400", crypto_type="BTC")
    approve_deposit(session, other.id)

    rows, total = list_user_deposits(session, first, limit=2)
    assert total == 3
    assert len(rows) == 2

    rows, total = list_all_deposits(session, status="completed")
    assert total == 1
    assert rows[0].user_id == second

    rows, total = list_all_deposits(session, offset=3)
    assert total == 4
    assert len(rows) == 1
