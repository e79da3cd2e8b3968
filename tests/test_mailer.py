"""
tests/test_mailer.py -- Unit tests for mail/mailer.py.

Covers:
  - send_quietly never propagates delivery failures, and logs them
  - LogMailer never writes the reset token to the log
  - SMTPMailer builds and sends the expected messages (smtplib mocked)
  - get_mailer backend selection
"""

from __future__ import annotations

import logging
from dataclasses import replace
from unittest.mock import MagicMock, patch

import pytest

from core.config import Settings
from mail.mailer import LogMailer, SMTPMailer, get_mailer, reset_link, send_quietly

_KEY = "k" * 32


class _FailingMailer:
    def send_welcome_message(self, record) -> None:
        raise ConnectionRefusedError("relay down")

    def send_password_reset(self, record) -> None:
        raise RuntimeError("template exploded")


def test_send_quietly_swallows_and_logs(john, caplog) -> None:
    with caplog.at_level(logging.ERROR, logger="accounts.mail"):
        assert send_quietly(_FailingMailer(), "welcome", john) is False
        assert send_quietly(_FailingMailer(), "password_reset", john) is False
    assert "Failed to send welcome mail" in caplog.text
    assert "Failed to send password_reset mail" in caplog.text


def test_send_quietly_success(john) -> None:
    assert send_quietly(LogMailer(), "welcome", john) is True


def test_log_mailer_never_logs_token(john, caplog) -> None:
    with caplog.at_level(logging.INFO, logger="accounts.mail"):
        LogMailer().send_password_reset(john)
    assert "password reset" in caplog.text
    assert john.reset.token not in caplog.text


def test_reset_link(john) -> None:
    link = reset_link("https://accounts.example.com/", john)
    assert link == f"https://accounts.example.com/api/v1/users/reset/john.doe@example.com/{john.reset.token}"


def test_reset_link_requires_token(john) -> None:
    with pytest.raises(ValueError):
        reset_link("https://accounts.example.com", replace(john, reset=None))


def test_smtp_mailer_sends_reset_link(john) -> None:
    settings = Settings(
        secret_key=_KEY,
        mail_backend="smtp",
        smtp_host="smtp.example.com",
        smtp_username="relay",
        smtp_password="secret",
        smtp_timeout_seconds=3.0,
        public_base_url="https://accounts.example.com",
    )
    smtp = MagicMock()
    with patch("mail.mailer.smtplib.SMTP") as smtp_cls:
        smtp_cls.return_value.__enter__.return_value = smtp
        SMTPMailer(settings).send_password_reset(john)

    smtp_cls.assert_called_once_with("smtp.example.com", 587, timeout=3.0)
    smtp.starttls.assert_called_once()
    smtp.login.assert_called_once_with("relay", "secret")
    msg = smtp.send_message.call_args.args[0]
    assert msg["To"] == "john.doe@example.com"
    assert msg["Subject"] == "Password reset"
    assert reset_link("https://accounts.example.com", john) in msg.get_content()


def test_smtp_mailer_without_tls_or_login(john) -> None:
    settings = Settings(secret_key=_KEY, smtp_use_tls=False)
    smtp = MagicMock()
    with patch("mail.mailer.smtplib.SMTP") as smtp_cls:
        smtp_cls.return_value.__enter__.return_value = smtp
        SMTPMailer(settings).send_welcome_message(john)

    smtp.starttls.assert_not_called()
    smtp.login.assert_not_called()
    assert smtp.send_message.call_args.args[0]["Subject"] == "Welcome"


def test_get_mailer_selects_backend() -> None:
    assert isinstance(get_mailer(Settings(secret_key=_KEY)), LogMailer)
    assert isinstance(get_mailer(Settings(secret_key=_KEY, mail_backend="smtp")), SMTPMailer)
