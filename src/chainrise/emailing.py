"""SMTP email helper and plain-text notifications for ChainRise."""

from __future__ import annotations

import smtplib
from email.message import EmailMessage
from typing import Dict, Iterable, List, Optional, Sequence

from .money import format_currency
from .ops import StructuredLogger


class EmailClient:
    """Very small wrapper around :mod:`smtplib` with test-friendly fallbacks."""

    def __init__(
        self,
        host: str,
        port: int,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        logger: Optional[StructuredLogger] = None,
        max_outbox: int = 500,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.logger = logger
        self._max_outbox = max_outbox
        self._outbox: List[EmailMessage] = []

    def build_message(self, subject: str, body: str, *, sender: str, recipients: Sequence[str]) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = sender
        message["To"] = ", ".join(recipients)
        message.set_content(body)
        return message

    def send(self, message: EmailMessage) -> bool:
        """Deliver ``message``; returns ``False`` when it was kept in the outbox instead."""

        if not self.host:
            self._keep(message)
            return False
        try:
            with smtplib.SMTP(self.host, self.port, timeout=5) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username and self.password:
                    smtp.login(self.username, self.password)
                smtp.send_message(message)
        except (OSError, smtplib.SMTPException) as exc:
            # Keep the message for inspection when SMTP is unavailable.
            self._keep(message)
            if self.logger is not None:
                self.logger.error("email_failed", subject=message["Subject"], to=message["To"], error=str(exc))
            return False
        return True

    def _keep(self, message: EmailMessage) -> None:
        self._outbox.append(message)
        if len(self._outbox) > self._max_outbox:
            del self._outbox[: len(self._outbox) - self._max_outbox]

    def deliveries(self) -> Sequence[EmailMessage]:
        return tuple(self._outbox)

    def clear(self) -> None:
        self._outbox.clear()


class Mailer:
    """Build and send the platform's notification emails."""

    def __init__(
        self,
        client: EmailClient,
        *,
        sender: str,
        admin_email: str,
        site_url: str,
        admin_url: str,
        app_name: str = "ChainRise-Partners",
    ) -> None:
        self.client = client
        self.sender = sender
        self.admin_email = admin_email
        self.site_url = site_url.rstrip("/")
        self.admin_url = admin_url.rstrip("/")
        self.app_name = app_name

    def _send(self, recipient: Optional[str], subject: str, lines: Iterable[str]) -> bool:
        if not recipient:
            return False
        body = "\n".join(lines) + f"\n\n{self.app_name}\n"
        message = self.client.build_message(subject, body, sender=self.sender, recipients=[recipient])
        return self.client.send(message)

    # User facing -------------------------------------------------------------
    def welcome(
        self,
        *,
        email: str,
        name: str,
        username: str,
        referral_code: str,
        wallets: Optional[Dict[str, str]] = None,
    ) -> bool:
        lines = [
            f"Hello {name},",
            "",
            f"Thank you for registering with {self.app_name}!",
            f"Username: {username}",
            f"Referral code: {referral_code}",
            "Share your referral code with friends to earn rewards.",
        ]
        if wallets:
            lines.append("")
            lines.append("Your wallet addresses:")
            lines.extend(f"  {label}: {address}" for label, address in wallets.items())
        lines.extend(["", "If you didn't create this account, please contact our support team immediately."])
        return self._send(email, f"Welcome to {self.app_name}", lines)

    def password_reset(self, *, email: str, name: str, token: str) -> bool:
        link = f"{self.site_url}/auth/reset-password?token={token}"
        lines = [
            f"Hello {name},",
            "",
            f"We received a request to reset your {self.app_name} account password.",
            f"Reset your password: {link}",
            "This link will expire in 1 hour.",
            "If you didn't request this, please ignore this email.",
        ]
        return self._send(email, f"{self.app_name} - Password Reset Request", lines)

    def deposit_approved(self, *, email: Optional[str], amount_cents: int, deposit_id: int) -> bool:
        lines = [
            f"Your deposit of {format_currency(amount_cents)} has been approved and your account has been credited.",
            f"Deposit ID: {deposit_id}",
        ]
        return self._send(email, f"Deposit of {format_currency(amount_cents)} Approved", lines)

    def withdrawal_processed(self, *, email: Optional[str], amount_cents: int, withdrawal_id: int) -> bool:
        lines = [
            f"Your withdrawal of {format_currency(amount_cents)} has been processed and sent to your wallet.",
            f"Withdrawal ID: {withdrawal_id}",
        ]
        return self._send(email, f"Withdrawal of {format_currency(amount_cents)} Processed", lines)

    def funds_added(self, *, email: Optional[str], amount_cents: int, label: str, description: str = "") -> bool:
        lines = [f"{format_currency(amount_cents)} ({label}) has been added to your account."]
        if description:
            lines.append(description)
        return self._send(email, f"{label} of {format_currency(amount_cents)} added", lines)

    def admin_message(self, *, email: str, name: Optional[str], subject: str, message: str) -> bool:
        lines = [f"Hello {name or 'Valued User'},", "", "Message from Admin:", message]
        return self._send(email, subject, lines)

    # Admin facing ------------------------------------------------------------
    def deposit_requested(
        self,
        *,
        user_id: str,
        user_email: str,
        amount_cents: int,
        plan_title: str,
        crypto_type: str,
        wallet_address: str,
        reference: str,
        deposit_id: int,
        transaction_hash: Optional[str] = None,
    ) -> bool:
        lines = [
            f"User ID: {user_id}",
            f"User Email: {user_email}",
            f"Plan: {plan_title}",
            f"Amount: {format_currency(amount_cents)}",
            f"Crypto Type: {crypto_type}",
            f"Wallet Address: {wallet_address}",
        ]
        if transaction_hash:
            lines.append(f"Transaction Hash: {transaction_hash}")
        lines.extend(
            [
                f"Reference: {reference}",
                "",
                f"Approve: {self.admin_url}/deposits/{deposit_id}/approve",
                f"Reject: {self.admin_url}/deposits/{deposit_id}/reject",
            ]
        )
        subject = f"New Deposit Request - {format_currency(amount_cents)} {crypto_type}"
        return self._send(self.admin_email, subject, lines)

    def withdrawal_requested(
        self,
        *,
        user_id: str,
        user_email: str,
        amount_cents: int,
        crypto_type: str,
        wallet_address: str,
        reference: str,
        withdrawal_id: int,
    ) -> bool:
        lines = [
            f"User ID: {user_id}",
            f"User Email: {user_email}",
            f"Amount: {format_currency(amount_cents)}",
            f"Crypto Type: {crypto_type}",
            f"Wallet Address: {wallet_address}",
            f"Reference: {reference}",
            "",
            f"Approve: {self.admin_url}/withdrawals/{withdrawal_id}/approve",
            f"Reject: {self.admin_url}/withdrawals/{withdrawal_id}/reject",
        ]
        subject = f"New Withdrawal Request - {format_currency(amount_cents)} {crypto_type}"
        return self._send(self.admin_email, subject, lines)


__all__ = ["EmailClient", "Mailer"]
