"""
auth/errors.py -- Error taxonomy for the credential and reset-token engine.

Every core operation returns a record or raises exactly one of these. The API
layer maps each kind to a status code and a {"code", "message"} envelope via
the class attributes, so messages are defined once, here.

Enumeration resistance:
  InvalidCredentials and InvalidOrExpiredToken carry a fixed message and never
  record which check failed. "No such user", "wrong password", "wrong token"
  and "expired token" must be indistinguishable to the caller.

CredentialIntegrityError is deliberately outside the user-facing hierarchy:
a malformed stored hash is data corruption, not a login failure, and is never
retried or reworded into a security-sensitive message.

Layer rule: no imports from api/, core/, or mail/.
"""

from __future__ import annotations


class AccountError(Exception):
    """Base class for user-facing account errors."""

    code: str = "account_error"
    message: str = "Account operation failed."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ValidationError(AccountError):
    """Malformed input. `field` names the offending input for field-level display."""

    code = "validation_error"
    message = "Invalid input."

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(message)


class DuplicateEmail(AccountError):
    code = "duplicate_email"
    message = "An account with that email address already exists."


class InvalidCredentials(AccountError):
    code = "invalid_credentials"
    message = "Invalid email address or password."

    def __init__(self) -> None:
        super().__init__()


class InvalidOrExpiredToken(AccountError):
    code = "invalid_or_expired_token"
    message = "Invalid user or token."

    def __init__(self) -> None:
        super().__init__()


class NotFound(AccountError):
    code = "not_found"
    message = "No matching account found."


class StoreUnavailable(AccountError):
    """Transient persistence failure (lock timeout, lost connection). Safe to retry."""

    code = "store_unavailable"
    message = "The account store is temporarily unavailable."


class CredentialIntegrityError(Exception):
    """A stored password hash could not be parsed. Fatal; never retried."""

    code = "integrity_error"
    message = "Stored credential data is corrupt."
