"""
mail/mailer.py -- Welcome and password-reset mail delivery.

Mail is fire-and-forget from the account flows' point of view: a signup or a
reminder request succeeds even if the SMTP relay is down. send_quietly() is
the only entry point routes use; it logs delivery failures and never raises.

Backends (MAIL_BACKEND):
  log  -- LogMailer, records that a message would have been sent. Default for
          development; never logs the reset token or link.
  smtp -- SMTPMailer, stdlib smtplib with optional STARTTLS and login.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Literal, Protocol
from urllib.parse import quote

from auth.models import UserRecord
from core.config import Settings, get_settings

logger = logging.getLogger("accounts.mail")

MessageKind = Literal["welcome", "password_reset"]


class Mailer(Protocol):
    def send_welcome_message(self, record: UserRecord) -> None: ...

    def send_password_reset(self, record: UserRecord) -> None: ...


def reset_link(base_url: str, record: UserRecord) -> str:
    """Build the link the user follows to consume their current reset token."""
    if record.reset is None:
        raise ValueError(f"user_id={record.id} has no active reset token")
    return f"{base_url.rstrip('/')}/api/v1/users/reset/{quote(record.email, safe='@')}/{record.reset.token}"


class LogMailer:
    """Development mailer: logs message kind and recipient id only."""

    def send_welcome_message(self, record: UserRecord) -> None:
        logger.info("[log-mailer] welcome message for user_id=%s", record.id)

    def send_password_reset(self, record: UserRecord) -> None:
        logger.info("[log-mailer] password reset message for user_id=%s", record.id)


class SMTPMailer:
    """Sends plain-text account mail through an SMTP relay."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def _send(self, to: str, subject: str, body: str) -> None:
        msg = EmailMessage()
        msg["From"] = self.settings.mail_from
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)
        with smtplib.SMTP(
            self.settings.smtp_host,
            self.settings.smtp_port,
            timeout=self.settings.smtp_timeout_seconds,
        ) as smtp:
            if self.settings.smtp_use_tls:
                smtp.starttls()
            if self.settings.smtp_username:
                smtp.login(self.settings.smtp_username, self.settings.smtp_password)
            smtp.send_message(msg)

    def send_welcome_message(self, record: UserRecord) -> None:
        self._send(
            record.email,
            "Welcome",
            f"Hi {record.name},\n\nYour account has been created.\n",
        )

    def send_password_reset(self, record: UserRecord) -> None:
        link = reset_link(self.settings.public_base_url, record)
        minutes = self.settings.reset_token_ttl_seconds // 60
        self._send(
            record.email,
            "Password reset",
            f"Hi {record.name},\n\n"
            f"Follow this link within {minutes} minutes to sign in and choose a new password:\n\n"
            f"{link}\n\n"
            "If you did not ask for this, you can ignore this message.\n",
        )


def get_mailer(settings: Settings | None = None) -> Mailer:
    """Return the mailer selected by MAIL_BACKEND."""
    settings = settings or get_settings()
    if settings.mail_backend == "smtp":
        return SMTPMailer(settings)
    return LogMailer()


def send_quietly(mailer: Mailer, kind: MessageKind, record: UserRecord) -> bool:
    """Deliver one message; log and swallow delivery failures.

    Returns True if the mailer reported no error. Callers ignore the result;
    it exists for tests and the CLI.
    """
    send = mailer.send_welcome_message if kind == "welcome" else mailer.send_password_reset
    try:
        send(record)
    except Exception:  # delivery must never fail the request
        logger.exception("Failed to send %s mail for user_id=%s", kind, record.id)
        return False
    return True
