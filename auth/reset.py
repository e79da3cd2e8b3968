"""
auth/reset.py -- Password-reset token lifecycle.

Token state machine (per record):
  NoActiveToken            -- reset is None (only when registration skips issuance)
  Active(token, issued_at) -- issue_token() from any state
  consume within window    -> Active(new token)  [success]
  consume after window     -> Active(new token)  [InvalidOrExpiredToken]

Rotation on the expired path burns the presented token, so an expired token
cannot be replayed even by an attacker retrying in a loop. A token is never
cleared back to None once issued.

Rotation on consume goes through store.rotate_reset(), which only writes if
the presented token is still current. Concurrent consumers of one link race
on that write and exactly one of them wins.

Security design decisions:
  Tokens: secrets.token_hex(n) from the OS CSPRNG. The hex form is URL safe,
       so it can be embedded in the reset link without encoding.

  Enumeration resistance: "no such email" and "wrong token" are one lookup
       (find_by_email_and_token) and one error, InvalidOrExpiredToken. The
       expired path raises the same error.

Layer rule: no imports from api/ or mail/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.errors import InvalidOrExpiredToken, NotFound
from auth.models import ResetToken, UserRecord, UserUpdate
from auth.store import UserRecordStore
from core.config import get_settings

logger = logging.getLogger("accounts.reset")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_reset_token(token_bytes: int, now: datetime) -> ResetToken:
    """Return a fresh ResetToken of token_bytes random bytes, hex-encoded."""
    return ResetToken(token=secrets.token_hex(token_bytes), issued_at=now)


class ResetTokenManager:
    """Issues, validates and rotates password-reset tokens.

    Stateless apart from the store; safe to share across request threads.
    ttl_seconds, token_bytes and clock default to application settings and
    the wall clock; tests inject a fake clock to cross the expiry window.
    """

    def __init__(
        self,
        store: UserRecordStore,
        ttl_seconds: int | None = None,
        token_bytes: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        settings = get_settings()
        self.store = store
        self.ttl = timedelta(seconds=ttl_seconds if ttl_seconds is not None else settings.reset_token_ttl_seconds)
        self.token_bytes = token_bytes if token_bytes is not None else settings.reset_token_bytes
        self.clock = clock or utcnow

    def issue_token(self, record: UserRecord) -> UserRecord:
        """Generate and persist a new token for record; return the updated record."""
        updated = self.store.update(record.id, UserUpdate(reset=new_reset_token(self.token_bytes, self.clock())))
        logger.info("Reset token issued for user_id=%s", record.id)
        return updated

    def request_by_identity(self, name: str, email: str) -> UserRecord:
        """Find the account matching both name and email exactly.

        Read-only: issuing a token for the match is the caller's follow-up.
        Raises NotFound on a miss.
        """
        record = self.store.find_by_name_and_email(name, email)
        if record is None:
            raise NotFound("Invalid email or name.")
        return record

    def is_expired(self, reset: ResetToken, now: datetime) -> bool:
        """A token is expired once a full TTL has elapsed since issuance."""
        return now - reset.issued_at >= self.ttl

    def consume_and_rotate(self, email: str, token: str) -> UserRecord:
        """Validate (email, token) and rotate the token.

        Returns the rotated record when the token is current and inside the
        window. Raises InvalidOrExpiredToken when there is no match, and also
        when the match is expired -- after rotating it.
        """
        record = self.store.find_by_email_and_token(email, token)
        if record is None or record.reset is None:
            logger.info("Reset token rejected: no matching account/token")
            raise InvalidOrExpiredToken()

        now = self.clock()
        expired = self.is_expired(record.reset, now)
        rotated = self.store.rotate_reset(record.id, token, new_reset_token(self.token_bytes, now))
        if rotated is None:
            # Another request consumed this token between lookup and rotation.
            logger.info("Reset token rejected: already consumed for user_id=%s", record.id)
            raise InvalidOrExpiredToken()
        if expired:
            logger.info("Reset token rejected: expired for user_id=%s (rotated)", record.id)
            raise InvalidOrExpiredToken()
        return rotated
