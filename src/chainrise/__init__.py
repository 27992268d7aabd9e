"""ChainRise package for crypto-funded locked investments with daily accrual."""

from .emailing import EmailClient, Mailer
from .exceptions import (
    AccountBannedError,
    AccountNotFoundError,
    AlreadyProcessedError,
    AuthenticationError,
    ChainRiseError,
    DuplicateAccountError,
    InsufficientFundsError,
    InvalidReferralCodeError,
    PermissionDeniedError,
    RecordNotFoundError,
    ValidationError,
)
from .investing import DEFAULT_PLAN_TIERS, PlanTier, tier_for_amount
from .models import (
    BatchOutcome,
    CryptoAddressType,
    DailyProfitSummary,
    DepositStatus,
    InvestmentStatus,
    MaturityRunResult,
    ManagementResult,
    TransactionType,
    WithdrawalStatus,
)
from .ops import HealthMonitor, StructuredLogger
from .security import AuthManager

__all__ = [
    "AccountBannedError",
    "AccountNotFoundError",
    "AlreadyProcessedError",
    "AuthManager",
    "AuthenticationError",
    "BatchOutcome",
    "ChainRiseError",
    "CryptoAddressType",
    "DEFAULT_PLAN_TIERS",
    "DailyProfitSummary",
    "DepositStatus",
    "DuplicateAccountError",
    "EmailClient",
    "HealthMonitor",
    "InsufficientFundsError",
    "InvalidReferralCodeError",
    "InvestmentStatus",
    "MaturityRunResult",
    "ManagementResult",
    "Mailer",
    "PermissionDeniedError",
    "PlanTier",
    "RecordNotFoundError",
    "StructuredLogger",
    "TransactionType",
    "ValidationError",
    "WithdrawalStatus",
    "tier_for_amount",
]
