"""Custom exception hierarchy for the ChainRise package."""

from __future__ import annotations

from typing import Optional


class ChainRiseError(Exception):
    """Base class for all ChainRise specific errors."""

    status_code = 400


class ValidationError(ChainRiseError):
    """Raised when user supplied input fails validation."""


class AuthenticationError(ChainRiseError):
    """Raised when credentials are missing or invalid."""

    status_code = 401


class AccountBannedError(AuthenticationError):
    """Raised when a banned account attempts to authenticate."""

    status_code = 403


class PermissionDeniedError(ChainRiseError):
    """Raised when a non-admin attempts an admin operation."""

    status_code = 403


class AccountNotFoundError(ChainRiseError):
    """Raised when a profile lookup fails."""

    status_code = 404


class RecordNotFoundError(ChainRiseError):
    """Raised when a deposit, withdrawal, wallet or investment cannot be found."""

    status_code = 404


class DuplicateAccountError(ChainRiseError):
    """Raised when a username, email or phone number is already registered."""

    status_code = 409


class AlreadyProcessedError(ChainRiseError):
    """Raised when approving or rejecting a request that is no longer pending."""

    status_code = 409

    def __init__(self, message: str, *, current_status: Optional[str] = None) -> None:
        super().__init__(message)
        self.current_status = current_status


class InsufficientFundsError(ChainRiseError):
    """Raised when an operation would result in a negative balance."""


class InvalidReferralCodeError(ChainRiseError):
    """Raised when a referral code does not resolve to an eligible referrer."""
