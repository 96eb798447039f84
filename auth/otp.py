"""
auth/otp.py -- One-time code issuance and verification.

OtpService.send_otp() stores a fresh numeric code for an email (creating the
account on first use) and hands it to the email collaborator.
OtpService.verify_otp() is the only place an account becomes verified: a
matching, unexpired code is cleared and is_verified is set in one conditional
UPDATE keyed on the code itself, so the same code can never be used twice,
even by two requests racing each other.

Delivery is best effort by contract. The code is persisted before delivery
is attempted, so an EmailDeliveryError is logged and swallowed and the call
still reports success -- the code remains verifiable regardless.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone

from auth.models import User
from auth.store import UserStore, db_errors
from core.errors import InvalidInput, Unauthorized
from mail.sender import EmailDeliveryError, EmailSender, redact_email

logger = logging.getLogger("otpgate.auth")

_DEFAULT_TTL = 10 * 60  # seconds


def generate_otp(length: int = 6) -> str:
    """Return a numeric code of exactly length digits (leading zeros kept)."""
    return f"{secrets.randbelow(10**length):0{length}d}"


def is_valid_email(email: str | None) -> bool:
    return bool(email) and "@" in email


class OtpService:
    def __init__(
        self,
        store: UserStore,
        sender: EmailSender,
        *,
        ttl_seconds: int = _DEFAULT_TTL,
        length: int = 6,
        debug: bool = False,
    ) -> None:
        self.store = store
        self.sender = sender
        self.ttl_seconds = ttl_seconds
        self.length = length
        self.debug = debug

    def send_otp(self, email: str) -> dict:
        """Issue a code for email. Returns {success, message, email}.

        Raises InvalidInput for a malformed email or a persistence failure.
        """
        if not is_valid_email(email):
            raise InvalidInput("Invalid email format")

        code = generate_otp(self.length)
        expiry = datetime.now(timezone.utc) + timedelta(seconds=self.ttl_seconds)

        with db_errors("Failed to send OTP. Please try again."):
            self.store.upsert_otp(email, code, expiry.isoformat())
        logger.info("OTP issued for %s (expires %s)", redact_email(email), expiry.isoformat())

        try:
            self.sender.send_otp(email, code)
        except EmailDeliveryError as exc:
            logger.warning("OTP email to %s failed: %s", redact_email(email), exc)
            if self.debug:
                logger.info("[dev] Use this OTP for testing: %s", code)

        return {
            "success": True,
            "message": "OTP sent successfully to your email",
            "email": email,
        }

    def verify_otp(self, email: str, code: str) -> User:
        """Check code for email; on success clear it and mark the account verified.

        Raises Unauthorized for an unknown email, a wrong code, or an expired
        code. None of the failure paths touch the stored code.
        """
        if not email or not code:
            raise InvalidInput("Email and OTP are required")

        with db_errors("Failed to verify OTP. Please try again."):
            user = self.store.get_by_email(email)
        if user is None:
            raise Unauthorized("User not found")

        if user.otp is None or not hmac.compare_digest(user.otp.encode(), code.encode()):
            logger.info("Invalid OTP submitted for %s", redact_email(email))
            raise Unauthorized("Invalid OTP")

        if user.otp_expiry is None or datetime.now(timezone.utc) > _parse_iso(user.otp_expiry):
            logger.info("Expired OTP submitted for %s", redact_email(email))
            raise Unauthorized("OTP has expired")

        with db_errors("Failed to verify OTP. Please try again."):
            consumed = self.store.mark_verified(email, user.otp)
            verified = self.store.get_by_email(email) if consumed else None
        if not consumed:
            # A concurrent request consumed or replaced the code first.
            logger.info("OTP for %s already consumed", redact_email(email))
            raise Unauthorized("Invalid OTP")
        if verified is None:
            # Deleted between the update and the re-read.
            raise Unauthorized("User not found")
        logger.info("OTP verified for %s", redact_email(email))
        return verified


def _parse_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
