"""
auth/credentials.py -- Account creation, password hashing and authentication.

Security design decisions:
  Passwords: bcrypt, used directly (no passlib wrapper). The cost factor is
       BCRYPT_ROUNDS from settings; each step doubles the work an attacker has
       to do per guess. bcrypt.checkpw compares in constant time.

       bcrypt only reads the first 72 bytes of a password, and bcrypt >= 5
       raises on longer input. register/update reject such passwords with a
       ValidationError rather than silently truncating them.

  Timing equalization [C1]: authenticate() always performs exactly one bcrypt
       comparison at the manager's cost. Unknown email: compare against
       _dummy_hash, a hash of random bytes generated when the manager is
       built. Known email: compare against the stored hash. Both failures
       raise the same InvalidCredentials, so neither the response body nor
       its latency reveals whether the account exists.

       A successful login whose stored hash was made at a different cost is
       re-hashed at the current cost, so stored hashes converge on the cost
       of _dummy_hash after BCRYPT_ROUNDS changes.

  Integrity: a stored hash bcrypt cannot parse raises CredentialIntegrityError.
       It is never reported as a wrong password.

Layer rule: no imports from api/ or mail/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime

import bcrypt

from auth.errors import CredentialIntegrityError, InvalidCredentials, ValidationError
from auth.models import UserRecord, UserUpdate
from auth.reset import new_reset_token, utcnow
from auth.store import UserRecordStore
from core.config import get_settings

logger = logging.getLogger("accounts.auth")

_MAX_PASSWORD_BYTES = 72
_MAX_NAME_LENGTH = 255
_MAX_EMAIL_LENGTH = 320


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


def validate_name(name: str) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("name", "Name is required.")
    if len(name) > _MAX_NAME_LENGTH:
        raise ValidationError("name", f"Name must be at most {_MAX_NAME_LENGTH} characters.")
    return name


def validate_email(email: str) -> str:
    """Require a basic address shape: something containing '@'.

    Case is preserved; addresses are compared exactly as entered. A "/"
    is rejected: the address is a path segment of the reset link.
    """
    if not isinstance(email, str) or "@" not in email or "/" in email:
        raise ValidationError("email", "A valid email address is required.")
    if len(email) > _MAX_EMAIL_LENGTH:
        raise ValidationError("email", f"Email must be at most {_MAX_EMAIL_LENGTH} characters.")
    return email


def validate_password(password: str) -> str:
    if not isinstance(password, str) or not password:
        raise ValidationError("password", "Password is required.")
    if len(password.encode("utf-8")) > _MAX_PASSWORD_BYTES:
        raise ValidationError("password", f"Password must be at most {_MAX_PASSWORD_BYTES} bytes.")
    return password


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class CredentialManager:
    """Creates accounts and verifies passwords against a UserRecordStore.

    Usage:
        manager = CredentialManager(store)
        record = manager.register("jane doe", "jane@example.com", "s3cret")
        manager.authenticate("jane@example.com", "s3cret")

    rounds, token_bytes and issue_reset_on_register default to application
    settings. Tests pass rounds=4 to keep bcrypt fast.
    """

    def __init__(
        self,
        store: UserRecordStore,
        rounds: int | None = None,
        token_bytes: int | None = None,
        issue_reset_on_register: bool | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        settings = get_settings()
        self.store = store
        self.rounds = rounds if rounds is not None else settings.bcrypt_rounds
        self.token_bytes = token_bytes if token_bytes is not None else settings.reset_token_bytes
        self.issue_reset_on_register = (
            issue_reset_on_register
            if issue_reset_on_register is not None
            else settings.issue_reset_token_on_register
        )
        self.clock = clock or utcnow
        # Same algorithm and cost as real hashes; the plaintext is discarded.
        self._dummy_hash: bytes = self._hash(secrets.token_hex(16))

    # ------------------------------------------------------------------
    # Hashing primitives
    # ------------------------------------------------------------------

    def _hash(self, password: str) -> bytes:
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds))

    def hash_password(self, password: str) -> str:
        """Return a salted bcrypt hash of password as text."""
        return self._hash(validate_password(password)).decode("utf-8")

    @staticmethod
    def _check(password: str, hashed: bytes) -> bool:
        """Constant-time bcrypt comparison.

        Raises CredentialIntegrityError if hashed is not a valid bcrypt hash.
        Over-long passwords can never match a stored hash, so they return
        False without consulting bcrypt.
        """
        if not isinstance(password, str):
            return False
        encoded = password.encode("utf-8")
        if len(encoded) > _MAX_PASSWORD_BYTES:
            return False
        try:
            return bcrypt.checkpw(encoded, hashed)
        except ValueError as exc:
            raise CredentialIntegrityError() from exc

    @staticmethod
    def _cost_of(password_hash: str) -> int | None:
        """Cost factor encoded in a bcrypt hash ($2b$NN$...), or None if unreadable."""
        parts = password_hash.split("$")
        if len(parts) < 4 or not parts[2].isdigit():
            return None
        return int(parts[2])

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def register(self, name: str, email: str, password: str) -> UserRecord:
        """Create a new account.

        Raises ValidationError on malformed input and DuplicateEmail if the
        address is taken (enforced by the store's UNIQUE constraint).
        """
        validate_name(name)
        validate_email(email)
        password_hash = self.hash_password(password)
        reset = new_reset_token(self.token_bytes, self.clock()) if self.issue_reset_on_register else None
        record = self.store.create(name=name, email=email, password_hash=password_hash, reset=reset)
        logger.info("Registered user_id=%s", record.id)
        return record

    def verify_password(self, record: UserRecord, password: str) -> bool:
        """Return True if password matches record.password_hash.

        Never raises on a mismatch; raises CredentialIntegrityError if the
        stored hash is malformed.
        """
        try:
            hashed = record.password_hash.encode("utf-8")
        except AttributeError as exc:
            raise CredentialIntegrityError() from exc
        return self._check(password, hashed)

    def set_password(self, record: UserRecord, password: str) -> UserRecord:
        """Re-hash and persist a new password for record; return the updated record."""
        updated = self.store.update(record.id, UserUpdate(password_hash=self.hash_password(password)))
        logger.info("Password changed for user_id=%s", record.id)
        return updated

    def update_settings(
        self,
        user_id: int,
        name: str | None = None,
        email: str | None = None,
        password: str | None = None,
    ) -> UserRecord:
        """Update any of name, email and password in one atomic write.

        None or empty values keep the current value. Provided values are
        validated before anything is written. Raises ValidationError,
        DuplicateEmail, or NotFound if user_id does not exist.
        """
        changes: dict = {}
        if name:
            changes["name"] = validate_name(name)
        if email:
            changes["email"] = validate_email(email)
        if password:
            changes["password_hash"] = self.hash_password(password)
        updated = self.store.update(user_id, UserUpdate(**changes))
        if changes:
            logger.info("Updated settings for user_id=%s fields=%s", user_id, sorted(changes))
        return updated

    def authenticate(self, email: str, password: str) -> UserRecord:
        """Return the account for (email, password) or raise InvalidCredentials.

        Always runs one bcrypt comparison whether or not the email exists [C1].
        Do NOT add an early return before the comparison on the not-found path.
        """
        record = self.store.find_by_email(email)
        if record is None:
            self._check(password, self._dummy_hash)
            logger.info("Authentication failed")
            raise InvalidCredentials()
        if not self.verify_password(record, password):
            logger.info("Authentication failed")
            raise InvalidCredentials()
        if self._cost_of(record.password_hash) != self.rounds:
            record = self.store.update(record.id, UserUpdate(password_hash=self.hash_password(password)))
            logger.info("Re-hashed password at cost %s for user_id=%s", self.rounds, record.id)
        return record
