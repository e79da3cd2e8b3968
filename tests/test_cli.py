"""
tests/test_cli.py -- Operator CLI in main.py, run against an in-memory store.
"""

from __future__ import annotations

import io

import pytest

from auth.credentials import CredentialManager
from main import main


def _register(store, name: str, email: str, monkeypatch, password: str = "s3cret") -> int:
    monkeypatch.setattr("sys.stdin", io.StringIO(f"{password}\n"))
    return main(["register", name, email, "--password-stdin"], store=store)


def test_register_and_show(store, capsys, monkeypatch) -> None:
    assert _register(store, "jane doe", "jane@example.com", monkeypatch) == 0
    assert "Registered user" in capsys.readouterr().out

    assert main(["show", "jane@example.com"], store=store) == 0
    out = capsys.readouterr().out
    assert "jane doe" in out
    assert "$2" not in out  # no hash in output


def test_password_from_stdin_is_the_login_password(store, monkeypatch) -> None:
    _register(store, "jane doe", "jane@example.com", monkeypatch, password="piped in")
    assert CredentialManager(store, rounds=4).authenticate("jane@example.com", "piped in").email == "jane@example.com"


def test_password_is_not_an_argument(store) -> None:
    with pytest.raises(SystemExit):
        main(["register", "jane doe", "jane@example.com", "--password", "s3cret"], store=store)


def test_register_duplicate(store, capsys, monkeypatch) -> None:
    _register(store, "jane doe", "jane@example.com", monkeypatch)
    assert _register(store, "jane doe", "jane@example.com", monkeypatch) == 1
    assert "already exists" in capsys.readouterr().out


def test_register_invalid_email(store, capsys, monkeypatch) -> None:
    assert _register(store, "jane doe", "jane.example.com", monkeypatch) == 1
    assert "valid email" in capsys.readouterr().out


def test_issue_reset_prints_current_link(store, capsys, monkeypatch) -> None:
    _register(store, "jane doe", "jane@example.com", monkeypatch)
    capsys.readouterr()
    assert main(["issue-reset", "jane@example.com"], store=store) == 0
    out = capsys.readouterr().out
    token = store.find_by_email("jane@example.com").reset.token
    assert f"/api/v1/users/reset/jane@example.com/{token}" in out


def test_unknown_email(store, capsys) -> None:
    assert main(["show", "nobody@example.com"], store=store) == 1
    assert main(["issue-reset", "nobody@example.com"], store=store) == 1
