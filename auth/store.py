"""
auth/store.py -- SQLAlchemy Core persistence layer for account records.

Pattern: Repository + Data Mapper.
UserRecordStore is the contract the managers depend on; UserStore is the
SQLAlchemy Core repository and _row_to_record is the mapper. Manager and
route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Consistency:
  UNIQUE(email) is enforced by the database, never by a check-then-insert in
  Python. Two concurrent registrations for one address race inside SQLite /
  the RDBMS, and exactly one INSERT wins; the loser's IntegrityError becomes
  DuplicateEmail.

  update() runs UPDATE + re-read in a single transaction (engine.begin()), so
  every field in a UserUpdate lands together or not at all.

  rotate_reset() is a compare-and-set on the current token
  (UPDATE ... WHERE id = ? AND reset_token = ?), so one token is consumed
  by at most one caller.

Failure translation:
  IntegrityError                -> DuplicateEmail
  OperationalError / DBAPIError -> StoreUnavailable (lock timeout, lost connection)

Layer rule: no imports from api/, core/, or mail/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from auth.errors import DuplicateEmail, NotFound, StoreUnavailable
from auth.models import ResetToken, UserRecord, UserUpdate

logger = logging.getLogger("accounts.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("email", String(320), nullable=False, unique=True),  # case-sensitive
    Column("password_hash", Text, nullable=False),
    Column("reset_token", String(128)),  # NULL = no active token
    Column("reset_issued_at", String(32)),  # ISO 8601, NULL with reset_token
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class UserRecordStore(Protocol):
    """Persistence operations the credential and reset managers rely on.

    Lookups return None as the single not-found signal. Infrastructure
    failures raise StoreUnavailable; they are never folded into None.
    """

    def create(self, name: str, email: str, password_hash: str, reset: ResetToken | None) -> UserRecord: ...

    def find_by_id(self, user_id: int) -> UserRecord | None: ...

    def find_by_email(self, email: str) -> UserRecord | None: ...

    def find_by_email_and_token(self, email: str, token: str) -> UserRecord | None: ...

    def find_by_name_and_email(self, name: str, email: str) -> UserRecord | None: ...

    def update(self, user_id: int, changes: UserUpdate) -> UserRecord: ...

    def rotate_reset(self, user_id: int, expected_token: str, new_reset: ResetToken) -> UserRecord | None: ...

    def close(self) -> None: ...


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind writers.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@contextmanager
def _translate_errors() -> Iterator[None]:
    """Map SQLAlchemy exceptions onto the account error taxonomy.

    IntegrityError subclasses DBAPIError, so it must be checked first.
    """
    try:
        yield
    except IntegrityError as exc:
        raise DuplicateEmail() from exc
    except (OperationalError, DBAPIError) as exc:
        logger.warning("Account store unavailable: %s", exc.__class__.__name__)
        raise StoreUnavailable() from exc


def _reset_columns(reset: ResetToken | None) -> dict:
    if reset is None:
        return {"reset_token": None, "reset_issued_at": None}
    return {"reset_token": reset.token, "reset_issued_at": reset.issued_at.isoformat()}


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """SQLAlchemy Core implementation of UserRecordStore.

    Usage:
        store = UserStore("sqlite:///accounts.db")
        record = store.create("jane", "jane@example.com", hashed, reset=None)
        store.find_by_email("jane@example.com")
        store.close()
    """

    def __init__(self, db_url: str, timeout: float = 5.0) -> None:
        is_sqlite = db_url.startswith("sqlite")
        connect_args: dict = {}
        engine_args: dict = {}
        if is_sqlite:
            # sqlite3's busy timeout bounds how long a writer waits on a lock.
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = timeout
        else:
            engine_args["pool_timeout"] = timeout
            engine_args["pool_pre_ping"] = True
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_args)
        if is_sqlite:
            event.listen(self.engine, "connect", _set_wal_mode)
        with _translate_errors():
            _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, name: str, email: str, password_hash: str, reset: ResetToken | None) -> UserRecord:
        """Insert a new record and return it with its assigned id.

        Raises DuplicateEmail if the email is already registered.
        """
        with _translate_errors(), self.engine.begin() as conn:
            result = conn.execute(
                _users.insert().values(
                    name=name,
                    email=email,
                    password_hash=password_hash,
                    created_at=_now_iso(),
                    **_reset_columns(reset),
                )
            )
            user_id = result.inserted_primary_key[0]
            row = conn.execute(select(_users).where(_users.c.id == user_id)).fetchone()
        return _row_to_record(row)

    def update(self, user_id: int, changes: UserUpdate) -> UserRecord:
        """Apply a partial update atomically and return the fresh record.

        Raises NotFound if user_id does not exist (nothing is written),
        DuplicateEmail if a changed email collides with another record.
        """
        values = changes.changed()
        if "reset" in values:
            values.update(_reset_columns(values.pop("reset")))
        with _translate_errors(), self.engine.begin() as conn:
            if values:
                result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
                if result.rowcount == 0:
                    raise NotFound()
            row = conn.execute(select(_users).where(_users.c.id == user_id)).fetchone()
        if row is None:
            raise NotFound()
        return _row_to_record(row)

    def rotate_reset(self, user_id: int, expected_token: str, new_reset: ResetToken) -> UserRecord | None:
        """Replace the reset token only if it still equals expected_token.

        Compare-and-set: of several concurrent callers holding the same
        token, exactly one sees the UPDATE match a row. The others get None.
        """
        with _translate_errors(), self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.reset_token == expected_token))
                .values(**_reset_columns(new_reset))
            )
            if result.rowcount != 1:
                return None
            row = conn.execute(select(_users).where(_users.c.id == user_id)).fetchone()
        return _row_to_record(row)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_by_id(self, user_id: int) -> UserRecord | None:
        return self._find_one(_users.c.id == user_id)

    def find_by_email(self, email: str) -> UserRecord | None:
        """Exact, case-sensitive email lookup."""
        return self._find_one(_users.c.email == email)

    def find_by_email_and_token(self, email: str, token: str) -> UserRecord | None:
        """Match a record whose email AND current reset token both equal the inputs.

        An empty token never matches; records with no active token have a NULL
        column, which SQL equality never matches either.
        """
        if not token:
            return None
        return self._find_one((_users.c.email == email) & (_users.c.reset_token == token))

    def find_by_name_and_email(self, name: str, email: str) -> UserRecord | None:
        return self._find_one((_users.c.name == name) & (_users.c.email == email))

    def _find_one(self, clause) -> UserRecord | None:
        with _translate_errors(), self.engine.connect() as conn:
            row = conn.execute(select(_users).where(clause)).fetchone()
        return _row_to_record(row) if row is not None else None

    # ------------------------------------------------------------------
    # Operational
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except DBAPIError:
            logger.warning("Account store ping failed")
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_record(row) -> UserRecord:
    reset = None
    if row.reset_token is not None and row.reset_issued_at is not None:
        reset = ResetToken(token=row.reset_token, issued_at=datetime.fromisoformat(row.reset_issued_at))
    return UserRecord(
        id=row.id,
        name=row.name,
        email=row.email,
        password_hash=row.password_hash,
        reset=reset,
        created_at=datetime.fromisoformat(row.created_at),
    )
