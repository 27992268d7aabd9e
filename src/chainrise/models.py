"""Domain enums and value objects used by the ChainRise package."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class TransactionType(str, Enum):
    """Enumerates the ledger entry types written to the transactions table."""

    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    PROFIT = "profit"
    INVESTMENT = "investment"
    INVESTMENT_EARNINGS = "investment_earnings"
    INVESTMENT_MATURITY = "investment_maturity"
    REFERRAL_BONUS = "referral_bonus"
    BONUS = "bonus"
    EARNINGS = "earnings"
    ADD_FUNDS = "add_funds_with_fee"


class DepositStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    REJECTED = "rejected"


class InvestmentStatus(str, Enum):
    """Lifecycle of a locked investment."""

    LOCKED = "locked"
    COMPLETED = "completed"


class BonusType(str, Enum):
    SIGNUP = "signup"
    DEPOSIT = "deposit"


class BonusStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class FundingType(str, Enum):
    """Kinds of manual credits an admin can post to a user account."""

    BONUS = "bonus"
    ADD_FUNDS_WITH_FEE = "add_funds_with_fee"
    EARNINGS = "earnings"


class CryptoAddressType(str, Enum):
    """Payout address columns stored on a profile."""

    BTC = "btc_address"
    BNB = "bnb_address"
    DOGE = "dodge_address"
    ETH = "eth_address"
    SOLANA = "solana_address"
    USDT_TRC20 = "usdttrc20_address"

    @property
    def label(self) -> str:
        return _ADDRESS_LABELS[self]


_ADDRESS_LABELS = {
    CryptoAddressType.BTC: "BTC",
    CryptoAddressType.BNB: "BNB",
    CryptoAddressType.DOGE: "DOGE",
    CryptoAddressType.ETH: "ETH",
    CryptoAddressType.SOLANA: "SOL",
    CryptoAddressType.USDT_TRC20: "USDT-TRC20",
}


@dataclass(slots=True)
class BatchOutcome:
    """Result of one batch step: how many rows succeeded and which failed."""

    processed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def error(self) -> Optional[str]:
        if not self.errors:
            return None
        return f"Completed with {len(self.errors)} errors: {'; '.join(self.errors)}"

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"processed": self.processed}
        if self.errors:
            payload["error"] = self.error
        return payload


@dataclass(slots=True)
class MaturityRunResult:
    """Summary of a full investment maturity run."""

    success: bool
    processed: int = 0
    matured: BatchOutcome = field(default_factory=BatchOutcome)
    earnings: BatchOutcome = field(default_factory=BatchOutcome)
    error: Optional[str] = None
    ran_at: datetime = field(default_factory=datetime.utcnow)

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": self.success,
            "processed": self.processed,
            "details": {"matured": self.matured.as_dict(), "earnings": self.earnings.as_dict()},
            "timestamp": self.ran_at.isoformat(),
        }
        if self.error:
            payload["error"] = self.error
        return payload


@dataclass(slots=True)
class DailyProfitSummary:
    """Summary of a profile-level daily profit distribution."""

    total_users_processed: int
    total_profits_distributed_cents: int
    users_with_investments: int
    errors: List[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        if self.total_users_processed == 0:
            return "No users with investments found"
        dollars = self.total_profits_distributed_cents / 100
        return f"Distributed ${dollars:,.2f} in profits to {self.users_with_investments} users"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "summary": {
                "totalUsersProcessed": self.total_users_processed,
                "totalProfitsDistributed": round(self.total_profits_distributed_cents / 100, 2),
                "usersWithInvestments": self.users_with_investments,
            },
            "errors": list(self.errors),
        }


@dataclass(slots=True)
class InvestmentTotals:
    total_invested_cents: int = 0
    total_locked_cents: int = 0
    total_earnings_cents: int = 0
    active_investments: int = 0
    matured_investments: int = 0


@dataclass(slots=True)
class InvestmentStats:
    total_value_cents: int = 0
    daily_earnings_cents: int = 0
    monthly_earnings_cents: int = 0
    available_balance_cents: int = 0
    locked_balance_cents: int = 0


@dataclass(slots=True)
class ManagementResult:
    """Outcome of an admin user-management action."""

    success: bool
    message: str
    user_id: Optional[str] = None
    action: Optional[str] = None


__all__ = [
    "BatchOutcome",
    "BonusStatus",
    "BonusType",
    "CryptoAddressType",
    "DailyProfitSummary",
    "DepositStatus",
    "FundingType",
    "InvestmentStats",
    "InvestmentStatus",
    "InvestmentTotals",
    "MaturityRunResult",
    "ManagementResult",
    "TransactionType",
    "WithdrawalStatus",
]
