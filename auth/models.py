"""
auth/models.py -- Domain dataclasses for account entities.

Pattern: Data class (pure data container, zero logic). Records are frozen
snapshots: managers never mutate a record in place. A change is expressed as a
UserUpdate passed to the store, which returns a fresh snapshot.

Layer rule: no imports from api/, core/, or mail/.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime


class _Unset:
    """Sentinel type for "field not part of this update"."""

    _instance: _Unset | None = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET = _Unset()


@dataclass(frozen=True)
class ResetToken:
    """An active password-reset token.

    A record with reset=None has no active token. Once a token has been
    issued the record always holds some active token: consumption rotates it
    rather than clearing it.
    """

    token: str = field(repr=False)
    issued_at: datetime


@dataclass(frozen=True)
class UserRecord:
    """Identity and credential state for one account.

    email is compared case-sensitively, matching the legacy data. The hash
    and token are excluded from repr so records can be logged safely.
    """

    id: int
    name: str
    email: str
    password_hash: str = field(repr=False)
    reset: ResetToken | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class UserUpdate:
    """Partial update for one record. Only fields not left UNSET are written.

    reset may be set to None to clear the active token.
    """

    name: str | _Unset = UNSET
    email: str | _Unset = UNSET
    password_hash: str | _Unset = field(default=UNSET, repr=False)
    reset: ResetToken | None | _Unset = UNSET

    def changed(self) -> dict:
        """Return {field_name: value} for every field that is set."""
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not UNSET}

    def __bool__(self) -> bool:
        return bool(self.changed())
