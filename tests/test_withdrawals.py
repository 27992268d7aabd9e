import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from chainrise.exceptions import AlreadyProcessedError, ChainRiseError, InsufficientFundsError, ValidationError
from chainrise.models import TransactionType, WithdrawalStatus
from chainrise.webapp import withdrawals
from chainrise.webapp.persistence import LedgerTransaction, Profile, Withdrawal, engine
from chainrise.webapp.runtime import email_client
from chainrise.webapp.withdrawals import (
    approve_withdrawal,
    initiate_withdrawal,
    list_all_withdrawals,
    list_user_withdrawals,
    reject_withdrawal,
)

from conftest import make_profile


def test_balance_is_checked_before_minimum(session: Session) -> None:
    user_id = make_profile("wes", balance_cents=5_00)
    with pytest.raises(InsufficientFundsError, match="Insufficient balance for withdrawal"):
        initiate_withdrawal(session, user_id, amount="8", crypto_type="BTC", wallet_address="bc1-user")

    rich = make_profile("rita", balance_cents=1_000_00)
    with pytest.raises(ValidationError, match=r"Minimum withdrawal amount is \$10.00"):
        initiate_withdrawal(session, rich, amount="9.99", crypto_type="BTC", wallet_address="bc1-user")


def test_withdrawal_uses_saved_address_when_none_given(session: Session) -> None:
    user_id = make_profile("wes", balance_cents=100_00)
    profile = session.get(Profile, user_id)
    profile.eth_address = "0xsaved"
    session.add(profile)
    session.commit()

    withdrawal = initiate_withdrawal(session, user_id, amount="50", crypto_type="eth")

    assert withdrawal.wallet_address == "0xsaved"
    assert withdrawal.crypto_type == "ETH"
    assert withdrawal.status == WithdrawalStatus.PENDING.value
    assert withdrawal.reference.startswith("WDR-")
    assert session.get(Profile, user_id).balance_cents == 100_00
    assert [m["Subject"] for m in email_client.deliveries()] == ["New Withdrawal Request - $50.00 ETH"]

    with pytest.raises(ValidationError, match="Wallet address is required"):
        initiate_withdrawal(session, user_id, amount="20", crypto_type="SOL")


def test_approve_withdrawal_debits_and_completes(session: Session) -> None:
    user_id = make_profile("wes", balance_cents=100_00)
    withdrawal = initiate_withdrawal(session, user_id, amount="40", crypto_type="BTC", wallet_address="bc1-user")

    approved = approve_withdrawal(session, withdrawal.id)

    assert approved.status == WithdrawalStatus.COMPLETED.value
    assert session.get(Profile, user_id).balance_cents == 60_00
    entry = session.exec(select(LedgerTransaction).where(LedgerTransaction.user_id == user_id)).one()
    assert entry.type == TransactionType.WITHDRAWAL.value
    assert entry.amount_cents == 40_00
    with pytest.raises(AlreadyProcessedError):
        approve_withdrawal(session, withdrawal.id)


def test_approve_rechecks_balance(session: Session) -> None:
    user_id = make_profile("wes", balance_cents=100_00)
    withdrawal = initiate_withdrawal(session, user_id, amount="80", crypto_type="BTC", wallet_address="bc1-user")
    profile = session.get(Profile, user_id)
    profile.balance_cents = 20_00
    session.add(profile)
    session.commit()

    with pytest.raises(InsufficientFundsError, match="User has insufficient balance"):
        approve_withdrawal(session, withdrawal.id)
    assert session.get(Withdrawal, withdrawal.id).status == WithdrawalStatus.PENDING.value


def test_failed_debit_leaves_withdrawal_pending(monkeypatch: pytest.MonkeyPatch) -> None:
    user_id = make_profile("wes", balance_cents=100_00)
    with Session(engine) as session:
        withdrawal_id = initiate_withdrawal(
            session, user_id, amount="40", crypto_type="BTC", wallet_address="bc1-user"
        ).id

    def broken(*_args, **_kwargs):
        raise OperationalError("INSERT INTO ledgertransaction", {}, Exception("disk I/O error"))

    monkeypatch.setattr(withdrawals, "record_transaction", broken)
    with Session(engine) as session:
        with pytest.raises(ChainRiseError, match="Failed to update user balance"):
            approve_withdrawal(session, withdrawal_id)

    with Session(engine) as session:
        assert session.get(Withdrawal, withdrawal_id).status == WithdrawalStatus.PENDING.value
        assert session.get(Profile, user_id).balance_cents == 100_00


def test_reject_withdrawal_and_listing(session: Session) -> None:
    user_id = make_profile("wes", balance_cents=500_00)
    first = initiate_withdrawal(session, user_id, amount="20", crypto_type="BTC", wallet_address="bc1-user")
    initiate_withdrawal(session, user_id, amount="30", crypto_type="BTC", wallet_address="bc1-user")

    rejected = reject_withdrawal(session, first.id, "Address mismatch")
    assert rejected.status == WithdrawalStatus.REJECTED.value
    assert rejected.admin_notes == "Address mismatch"
    assert session.get(Profile, user_id).balance_cents == 500_00

    rows, total = list_user_withdrawals(session, user_id, status="pending")
    assert total == 1
    assert rows[0].amount_cents == 30_00

    rows, total = list_all_withdrawals(session, status="rejected")
    assert total == 1
    assert rows[0].id == first.id
