"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserDirectory and CredentialStore are the repositories; _row_to_user is the
mapper. Service and route code never touches SQL directly.

Two stores, two databases:
  UserDirectory   -- users table (identity, role, timestamps). No secrets.
  CredentialStore -- credentials table (user_id -> bcrypt hash). Nothing else.
  Each has its own engine and its own DB URL, so a leaked copy of one file
  does not carry the other.

Concurrency:
  Every read-modify-write sequence (check uniqueness then insert, check row
  then delete, read then upsert) runs while holding that store's lock and
  inside one transaction (engine.begin()). Two mutations to the same store
  never interleave, so a writer cannot silently clobber another's update.
  Lock waits are bounded; a timeout surfaces as StorageError.

  Reads take no lock. SQLite in WAL mode gives each read a consistent
  snapshot while a writer is active.

  When both locks are needed the order is always directory -> credentials.

Errors:
  "Row not there" is a normal return value (None / False), never an
  exception. "Database unreadable" is StorageError. SQLAlchemy exceptions
  never escape this module.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import Column, MetaData, String, Table, Text, create_engine, event, func, or_, select
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import ROLE_ADMIN, User
from core.errors import ConflictError, NotFoundError, StorageError

logger = logging.getLogger("blogadmin.store")

# ---------------------------------------------------------------------------
# Schema -- one MetaData per database
# ---------------------------------------------------------------------------

_user_metadata = MetaData()

_users = Table(
    "users",
    _user_metadata,
    Column("id", String(32), primary_key=True),  # uuid4 hex
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("role", String(30), nullable=False, server_default="editor"),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),  # ISO 8601 timestamp of last successful login
)

_credential_metadata = MetaData()

_credentials = Table(
    "credentials",
    _credential_metadata,
    Column("user_id", String(32), primary_key=True),
    Column("password_hash", Text, nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    WAL (Write-Ahead Logging) allows readers to proceed without blocking
    during writes. Set per-connection because SQLite PRAGMAs are not
    inherited by new connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _ensure_sqlite_dir(db_url: str) -> None:
    database = make_url(db_url).database
    if not database or database == ":memory:" or database.startswith("file:"):
        return
    Path(database).parent.mkdir(parents=True, exist_ok=True)


def _make_engine(db_url: str, timeout: float) -> Engine:
    connect_args: dict = {}
    is_sqlite = db_url.startswith("sqlite")
    if is_sqlite:
        connect_args["check_same_thread"] = False
        # sqlite3 busy handler: bounded wait when another connection holds the write lock.
        connect_args["timeout"] = timeout
        _ensure_sqlite_dir(db_url)
    engine = create_engine(db_url, connect_args=connect_args)
    if is_sqlite:
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@contextmanager
def _storage_errors(store: str) -> Iterator[None]:
    """Translate any SQLAlchemy failure into StorageError."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("%s store I/O failure: %s", store, exc.__class__.__name__)
        raise StorageError(f"The {store} store is unavailable.") from exc


class _StoreLock:
    """Exclusive, re-entrant, time-bounded writer lock for one store.

    Re-entrant so UserManager can hold the directory lock across a
    check-then-delete while the directory's own methods take it again.
    """

    def __init__(self, name: str, timeout: float) -> None:
        self._name = name
        self._timeout = timeout
        self._lock = threading.RLock()

    @contextmanager
    def hold(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=self._timeout):
            logger.error("Timed out after %.1fs waiting for the %s store lock", self._timeout, self._name)
            raise StorageError(f"The {self._name} store is busy.")
        try:
            yield
        finally:
            self._lock.release()


# ---------------------------------------------------------------------------
# User Directory
# ---------------------------------------------------------------------------


class UserDirectory:
    """Repository for User records (identity and role, no secrets).

    Usage:
        directory = UserDirectory("sqlite:///data/admin_users.db")
        directory.insert(User(id=uuid4().hex, username="ed", email="ed@x.com", role="editor"))
        user = directory.find_by_username_or_email("ed")
        directory.close()
    """

    def __init__(self, db_url: str, timeout: float = 5.0) -> None:
        self.engine: Engine = _make_engine(db_url, timeout)
        self._lock = _StoreLock("user", timeout)
        with _storage_errors("user"):
            _user_metadata.create_all(self.engine)

    def exclusive(self):
        """Hold this store's writer lock for a multi-step sequence.

        Usage:
            with directory.exclusive():
                if directory.count_admins() > 1:
                    directory.remove(user_id)
        """
        return self._lock.hold()

    # ------------------------------------------------------------------
    # Reads (lock-free, WAL snapshot)
    # ------------------------------------------------------------------

    def find_by_username_or_email(self, login: str) -> User | None:
        """Exact, case-sensitive match on username or email. Returns None if not found.

        insert() forbids a username equal to another user's email (and vice
        versa), so at most one row can match.
        """
        with _storage_errors("user"), self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(or_(_users.c.username == login, _users.c.email == login))
            ).first()
        return _row_to_user(row) if row is not None else None

    def find_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with _storage_errors("user"), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).first()
        return _row_to_user(row) if row is not None else None

    def list_all(self) -> list[User]:
        """Return every user, oldest first."""
        with _storage_errors("user"), self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.created_at, _users.c.username)).fetchall()
        return [_row_to_user(r) for r in rows]

    def count_admins(self) -> int:
        """Return the number of users holding the admin role."""
        with _storage_errors("user"), self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_users).where(_users.c.role == ROLE_ADMIN)
            ).scalar()
        return result or 0

    def is_empty(self) -> bool:
        with _storage_errors("user"), self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return not result

    # ------------------------------------------------------------------
    # Writes (exclusive lock + single transaction)
    # ------------------------------------------------------------------

    def insert(self, user: User) -> User:
        """Insert a new user record and return it with created_at filled in.

        Raises ConflictError if the username or email is already taken, either
        as a username or as an email, so login-by-either stays unambiguous.
        The UNIQUE constraints back this up if another process raced us.
        """
        created_at = user.created_at or _now_iso()
        with self._lock.hold(), _storage_errors("user"), self.engine.begin() as conn:
            taken = [user.username, user.email]
            clash = conn.execute(
                select(_users.c.id).where(or_(_users.c.username.in_(taken), _users.c.email.in_(taken)))
            ).first()
            if clash is not None:
                raise ConflictError()
            try:
                conn.execute(
                    _users.insert().values(
                        id=user.id,
                        username=user.username,
                        email=user.email,
                        role=user.role,
                        created_at=created_at,
                        last_login=user.last_login,
                    )
                )
            except IntegrityError as exc:
                raise ConflictError() from exc
        return User(
            id=user.id,
            username=user.username,
            email=user.email,
            role=user.role,
            created_at=created_at,
            last_login=user.last_login,
        )

    def remove(self, user_id: str) -> None:
        """Delete a user record. Raises NotFoundError if it does not exist.

        Callers must check the minimum-admin invariant first (UserManager does,
        under exclusive()). The directory does not know about credentials.
        """
        with self._lock.hold(), _storage_errors("user"), self.engine.begin() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            if result.rowcount == 0:
                raise NotFoundError()

    def touch_last_login(self, user_id: str, timestamp: str | None = None) -> bool:
        """Stamp last_login for the given user. Returns False if the user is gone."""
        stamp = timestamp or _now_iso()
        with self._lock.hold(), _storage_errors("user"), self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=stamp))
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Credential Store
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for password hashes, keyed by user id.

    This is the only class that reads or writes secret material. It stores
    hashes, never plaintext; hashing and verification live in auth/passwords.py.
    """

    def __init__(self, db_url: str, timeout: float = 5.0) -> None:
        self.engine: Engine = _make_engine(db_url, timeout)
        self._lock = _StoreLock("credential", timeout)
        with _storage_errors("credential"):
            _credential_metadata.create_all(self.engine)

    def exclusive(self):
        """Hold this store's writer lock across a check-then-replace sequence.

        Usage:
            with credentials.exclusive():
                if verify_password(old, credentials.get(user_id)):
                    credentials.set(user_id, new_hash)
        """
        return self._lock.hold()

    def get(self, user_id: str) -> str | None:
        """Return the stored hash for user_id, or None if there is none."""
        with _storage_errors("credential"), self.engine.connect() as conn:
            row = conn.execute(
                select(_credentials.c.password_hash).where(_credentials.c.user_id == user_id)
            ).first()
        return row.password_hash if row is not None else None

    def has_any(self) -> bool:
        """True if at least one credential exists. Raises StorageError if the store is unreadable."""
        with _storage_errors("credential"), self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_credentials)).scalar()
        return bool(result)

    def set(self, user_id: str, password_hash: str) -> None:
        """Insert or replace the hash for user_id. Idempotent."""
        with self._lock.hold(), _storage_errors("credential"), self.engine.begin() as conn:
            exists = conn.execute(select(_credentials.c.user_id).where(_credentials.c.user_id == user_id)).first()
            if exists is None:
                conn.execute(
                    _credentials.insert().values(user_id=user_id, password_hash=password_hash, updated_at=_now_iso())
                )
            else:
                conn.execute(
                    _credentials.update()
                    .where(_credentials.c.user_id == user_id)
                    .values(password_hash=password_hash, updated_at=_now_iso())
                )

    def remove(self, user_id: str) -> None:
        """Delete the hash for user_id. No-op if absent."""
        with self._lock.hold(), _storage_errors("credential"), self.engine.begin() as conn:
            conn.execute(_credentials.delete().where(_credentials.c.user_id == user_id))

    def bootstrap(self, directory: UserDirectory, admin: User, password_hash: str) -> bool:
        """First-run setup: give the default admin identity a password.

        Does nothing and returns False if any credential already exists.
        Otherwise makes sure `admin` exists in the directory (reusing an
        existing admin with the same username, e.g. after the credential
        database was lost) and stores password_hash for it. If the credential
        write fails, a directory row inserted here is removed again so no
        identity is left without a credential.

        Raises ConflictError if the bootstrap username belongs to a non-admin.
        """
        with directory.exclusive(), self._lock.hold():
            if self.has_any():
                return False
            existing = directory.find_by_username_or_email(admin.username)
            if existing is not None and existing.role != ROLE_ADMIN:
                raise ConflictError(f"Bootstrap username {admin.username!r} belongs to a non-admin user.")
            inserted = existing is None
            target = directory.insert(admin) if inserted else existing
            try:
                self.set(target.id, password_hash)
            except StorageError:
                if inserted:
                    directory.remove(target.id)
                raise
        logger.info("Bootstrap credential stored for %r", target.username)
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        role=row.role,
        created_at=row.created_at,
        last_login=row.last_login,
    )
