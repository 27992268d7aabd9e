"""Platform deposit wallet addresses managed by admins."""
from __future__ import annotations

from typing import Any, List, Mapping, Optional

from sqlmodel import Session, desc, select

from ..exceptions import RecordNotFoundError, ValidationError
from ..money import AmountLike, to_cents
from .persistence import WalletAddress, utcnow
from .runtime import event_log

_EDITABLE_FIELDS = {"symbol", "name", "network", "wallet_address", "qr_code_url", "min_deposit", "max_deposit", "is_active"}


def _cents_or_none(value: Optional[AmountLike]) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        cents = to_cents(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError("Deposit limits must be valid numbers") from exc
    if cents < 0:
        raise ValidationError("Deposit limits cannot be negative")
    return cents


def create_wallet_address(
    session: Session,
    *,
    symbol: str,
    wallet_address: str,
    name: str = "",
    network: Optional[str] = None,
    min_deposit: AmountLike = 0,
    max_deposit: Optional[AmountLike] = None,
    qr_code_url: Optional[str] = None,
) -> WalletAddress:
    symbol = symbol.strip().upper()
    wallet_address = wallet_address.strip()
    if not symbol or not wallet_address:
        raise ValidationError("Symbol and wallet address are required")
    wallet = WalletAddress(
        symbol=symbol,
        name=name.strip() or symbol,
        network=(network or "").strip() or None,
        wallet_address=wallet_address,
        qr_code_url=qr_code_url,
        min_deposit_cents=_cents_or_none(min_deposit) or 0,
        max_deposit_cents=_cents_or_none(max_deposit),
        is_active=True,
    )
    session.add(wallet)
    session.commit()
    session.refresh(wallet)
    event_log.log("wallet_created", wallet_id=wallet.id, symbol=wallet.symbol)
    return wallet


def get_all_wallet_addresses(session: Session) -> List[WalletAddress]:
    return list(
        session.exec(select(WalletAddress).order_by(desc(WalletAddress.created_at), desc(WalletAddress.id))).all()
    )


def get_active_wallet_addresses(session: Session) -> List[WalletAddress]:
    return list(
        session.exec(
            select(WalletAddress)
            .where(WalletAddress.is_active == True)  # noqa: E712
            .order_by(WalletAddress.min_deposit_cents, WalletAddress.id)
        ).all()
    )


def get_wallet_by_id(session: Session, wallet_id: int) -> WalletAddress:
    wallet = session.get(WalletAddress, wallet_id)
    if wallet is None:
        raise RecordNotFoundError("No wallet found with the provided ID")
    return wallet


def find_active_wallet(session: Session, symbol: str) -> Optional[WalletAddress]:
    return session.exec(
        select(WalletAddress).where(
            WalletAddress.symbol == symbol.strip().upper(),
            WalletAddress.is_active == True,  # noqa: E712
        )
    ).first()


def update_wallet_address(session: Session, wallet_id: int, updates: Mapping[str, Any]) -> WalletAddress:
    wallet = get_wallet_by_id(session, wallet_id)
    unknown = set(updates) - _EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown wallet fields: {', '.join(sorted(unknown))}")
    for key, value in updates.items():
        if key == "min_deposit":
            wallet.min_deposit_cents = _cents_or_none(value) or 0
        elif key == "max_deposit":
            wallet.max_deposit_cents = _cents_or_none(value)
        elif key == "symbol":
            wallet.symbol = str(value).strip().upper()
        elif key == "wallet_address":
            address = str(value).strip()
            if not address:
                raise ValidationError("Wallet address cannot be empty")
            wallet.wallet_address = address
        else:
            setattr(wallet, key, value)
    wallet.updated_at = utcnow()
    session.add(wallet)
    session.commit()
    session.refresh(wallet)
    event_log.log("wallet_updated", wallet_id=wallet.id, fields=sorted(updates))
    return wallet


def delete_wallet_address(session: Session, wallet_id: int) -> None:
    wallet = get_wallet_by_id(session, wallet_id)
    session.delete(wallet)
    session.commit()
    event_log.log("wallet_deleted", wallet_id=wallet_id)


def toggle_wallet_address_status(session: Session, wallet_id: int, is_active: bool) -> WalletAddress:
    wallet = get_wallet_by_id(session, wallet_id)
    wallet.is_active = is_active
    wallet.updated_at = utcnow()
    session.add(wallet)
    session.commit()
    session.refresh(wallet)
    event_log.log("wallet_toggled", wallet_id=wallet_id, is_active=is_active)
    return wallet


def wallet_payload(wallet: WalletAddress) -> dict:
    return {
        "id": wallet.id,
        "symbol": wallet.symbol,
        "name": wallet.name,
        "network": wallet.network,
        "wallet_address": wallet.wallet_address,
        "qr_code_url": wallet.qr_code_url,
        "min_deposit_cents": wallet.min_deposit_cents,
        "max_deposit_cents": wallet.max_deposit_cents,
        "is_active": wallet.is_active,
        "created_at": wallet.created_at.isoformat(),
    }


__all__ = [
    "create_wallet_address",
    "delete_wallet_address",
    "find_active_wallet",
    "get_active_wallet_addresses",
    "get_all_wallet_addresses",
    "get_wallet_by_id",
    "toggle_wallet_address_status",
    "update_wallet_address",
    "wallet_payload",
]
