"""
tests/test_config.py -- Settings validation in core/config.py.

Settings are built directly (not through get_settings()) so the cached
singleton used by the rest of the suite is never disturbed.
"""

from __future__ import annotations

import pytest

from core.config import Settings, get_settings


def test_production_requires_secret_key() -> None:
    with pytest.raises(ValueError, match="SECRET_KEY is required"):
        Settings(debug=False, secret_key="")


def test_short_secret_key_rejected() -> None:
    with pytest.raises(ValueError, match="at least 32 characters"):
        Settings(debug=True, secret_key="too-short")


def test_debug_generates_secret_key() -> None:
    settings = Settings(debug=True, secret_key="")
    assert len(settings.secret_key) >= 32


def test_defaults() -> None:
    settings = Settings(secret_key="k" * 32, bcrypt_rounds=12)
    assert settings.reset_token_ttl_seconds == 300
    assert settings.reset_token_bytes == 10
    assert settings.issue_reset_token_on_register is True
    assert settings.mail_backend == "log"


@pytest.mark.parametrize("rounds", [3, 32])
def test_bcrypt_rounds_bounds(rounds: int) -> None:
    with pytest.raises(ValueError):
        Settings(secret_key="k" * 32, bcrypt_rounds=rounds)


def test_env_override(monkeypatch) -> None:
    monkeypatch.setenv("RESET_TOKEN_TTL_SECONDS", "120")
    assert Settings(secret_key="k" * 32).reset_token_ttl_seconds == 120


def test_get_settings_is_cached() -> None:
    assert get_settings() is get_settings()
