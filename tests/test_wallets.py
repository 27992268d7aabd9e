import pytest
from sqlmodel import Session

from chainrise.exceptions import RecordNotFoundError, ValidationError
from chainrise.webapp.wallets import (
    create_wallet_address,
    delete_wallet_address,
    find_active_wallet,
    get_active_wallet_addresses,
    get_all_wallet_addresses,
    get_wallet_by_id,
    toggle_wallet_address_status,
    update_wallet_address,
    wallet_payload,
)


def test_create_wallet_normalises_input(session: Session) -> None:
    wallet = create_wallet_address(
        session, symbol=" usdt ", wallet_address=" T-platform ", network="TRC20", min_deposit="50", max_deposit=""
    )

    assert wallet.symbol == "USDT"
    assert wallet.name == "USDT"
    assert wallet.wallet_address == "T-platform"
    assert wallet.min_deposit_cents == 50_00
    assert wallet.max_deposit_cents is None
    assert wallet.is_active
    assert wallet_payload(wallet)["network"] == "TRC20"

    with pytest.raises(ValidationError, match="Symbol and wallet address are required"):
        create_wallet_address(session, symbol="BTC", wallet_address="  ")
    with pytest.raises(ValidationError, match="cannot be negative"):
        create_wallet_address(session, symbol="BTC", wallet_address="bc1", min_deposit="-5")


def test_listing_orders_and_filters(session: Session) -> None:
    first = create_wallet_address(session, symbol="BTC", wallet_address="bc1", min_deposit="100")
    second = create_wallet_address(session, symbol="ETH", wallet_address="0xeth", min_deposit="10")
    third = create_wallet_address(session, symbol="SOL", wallet_address="sol1")
    toggle_wallet_address_status(session, third.id, False)

    assert [w.id for w in get_all_wallet_addresses(session)] == [third.id, second.id, first.id]
    assert [w.symbol for w in get_active_wallet_addresses(session)] == ["ETH", "BTC"]
    assert find_active_wallet(session, "eth").id == second.id
    assert find_active_wallet(session, "SOL") is None


def test_update_and_delete_wallet(session: Session) -> None:
    wallet = create_wallet_address(session, symbol="BTC", wallet_address="bc1-old")

    updated = update_wallet_address(
        session, wallet.id, {"wallet_address": " bc1-new ", "max_deposit": "5000", "name": "Bitcoin"}
    )
    assert updated.wallet_address == "bc1-new"
    assert updated.max_deposit_cents == 5_000_00
    assert updated.name == "Bitcoin"

    with pytest.raises(ValidationError, match="Unknown wallet fields: label"):
        update_wallet_address(session, wallet.id, {"label": "x"})
    with pytest.raises(ValidationError, match="cannot be empty"):
        update_wallet_address(session, wallet.id, {"wallet_address": " "})

    delete_wallet_address(session, wallet.id)
    with pytest.raises(RecordNotFoundError, match="No wallet found"):
        get_wallet_by_id(session, wallet.id)
