"""
mail/sender.py -- Outbound email for OTP delivery.

EmailSender is the narrow interface the OTP issuer depends on:
send_otp(email, code) either returns or raises EmailDeliveryError. The issuer
treats that error as non-fatal -- the code is already stored and verifiable.

Implementations:
  SmtpEmailSender -- stdlib smtplib; STARTTLS on the submission port by
                     default, implicit TLS when smtp_use_ssl is set.
  LogEmailSender  -- dev mode fallback when SMTP is not configured. Logs a
                     redacted recipient; the code itself is logged only when
                     DEBUG is on.

Layer rule: imports only core/. No imports from api/, auth/, or csrf/.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Protocol

from core.config import Settings

logger = logging.getLogger("otpgate.mail")

_SUBJECT = "Your OTP Code"


class EmailDeliveryError(Exception):
    """The email could not be handed to the mail server."""


class EmailSender(Protocol):
    def send_otp(self, email: str, code: str) -> None: ...


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


def build_otp_message(sender: str, recipient: str, code: str) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = _SUBJECT
    msg["From"] = sender
    msg["To"] = recipient
    msg.set_content(f"Your OTP is: {code}\n\nIt expires in 10 minutes.")
    msg.add_alternative(f"<h2>Your OTP is: <b>{code}</b></h2>", subtype="html")
    return msg


class SmtpEmailSender:
    def __init__(
        self,
        *,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        from_email: str,
        from_name: str = "OTP Service",
        use_tls: bool = True,
        use_ssl: bool = False,
        timeout: int = 10,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_email = from_email
        self.from_name = from_name
        self.use_tls = use_tls
        self.use_ssl = use_ssl
        self.timeout = timeout

    def send_otp(self, email: str, code: str) -> None:
        msg = build_otp_message(f'"{self.from_name}" <{self.from_email}>', email, code)
        context = ssl.create_default_context()
        try:
            if self.use_ssl:
                with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout) as server:
                    self._deliver(server, msg)
            else:
                with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                    server.ehlo()
                    if self.use_tls:
                        server.starttls(context=context)
                        server.ehlo()
                    self._deliver(server, msg)
        except (smtplib.SMTPException, ssl.SSLError, OSError) as exc:
            logger.error(
                "SMTP delivery to %s via %s:%d failed: %s: %s",
                redact_email(email),
                self.host,
                self.port,
                type(exc).__name__,
                exc,
            )
            raise EmailDeliveryError("Unable to send OTP email") from exc
        logger.info("OTP email sent to %s", redact_email(email))

    def _deliver(self, server: smtplib.SMTP, msg: EmailMessage) -> None:
        if self.username and self.password:
            server.login(self.username, self.password)
        server.send_message(msg)


class LogEmailSender:
    def __init__(self, show_codes: bool = False) -> None:
        self.show_codes = show_codes

    def send_otp(self, email: str, code: str) -> None:
        if self.show_codes:
            logger.info("[dev] OTP for %s: %s", redact_email(email), code)
        else:
            logger.info("SMTP not configured; OTP email for %s not sent", redact_email(email))


def build_email_sender(settings: Settings) -> EmailSender:
    """Return the SMTP sender when configured, else the logging fallback."""
    if settings.smtp_host and settings.email_from:
        return SmtpEmailSender(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_user,
            password=settings.smtp_password,
            from_email=settings.email_from,
            from_name=settings.email_from_name,
            use_tls=settings.smtp_use_tls,
            use_ssl=settings.smtp_use_ssl,
            timeout=settings.smtp_timeout_seconds,
        )
    logger.warning("SMTP_HOST/EMAIL_FROM not set -- OTP emails will be logged, not sent")
    return LogEmailSender(show_codes=settings.debug)
