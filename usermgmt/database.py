"""SQLite-backed persistence for user accounts."""
from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from passlib.context import CryptContext

from .models import Role, UserChanges, UserRecord


class StorageError(RuntimeError):
    """Raised when the underlying database cannot complete an operation."""


class DuplicateEmailError(StorageError):
    """Raised when a write would give two accounts the same email address."""


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the user database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "users.sqlite3").resolve(strict=False)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


def _normalize_email(email: str) -> str:
    return email.strip().lower()


# pbkdf2_sha256 sidesteps the 72 byte input limit of the bcrypt backend.
_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    """Return a salted one-way hash of ``password``."""

    if not password:
        raise ValueError("Password must not be empty")
    return _pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    try:
        return _pwd_context.verify(password, hashed)
    except (ValueError, TypeError):
        return False


_UPDATABLE_COLUMNS = ("name", "email", "password_hash", "role", "updated_at")


class Database:
    """Simple wrapper around SQLite for persisting user accounts."""

    def __init__(self, path: Path) -> None:
        _ensure_directory(path)
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(self._path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise StorageError(f"Unable to open database at {self._path}") from exc
        conn.row_factory = sqlite3.Row
        return conn

    def _execute(self, query: str, params: tuple = ()) -> sqlite3.Cursor:
        conn = self._connect()
        try:
            with conn:
                return conn.execute(query, params)
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" in str(exc):
                raise DuplicateEmailError("A user with that email already exists") from exc
            raise StorageError(str(exc)) from exc
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc
        finally:
            conn.close()

    def _fetchone(self, query: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        conn = self._connect()
        try:
            return conn.execute(query, params).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc
        finally:
            conn.close()

    def _fetchall(self, query: str, params: tuple = ()) -> List[sqlite3.Row]:
        conn = self._connect()
        try:
            return conn.execute(query, params).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        conn = self._connect()
        try:
            with conn:
                conn.executescript(
                    """
                    CREATE TABLE IF NOT EXISTS users (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL,
                        email TEXT NOT NULL UNIQUE,
                        password_hash TEXT NOT NULL,
                        role TEXT NOT NULL DEFAULT 'user',
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    );

                    CREATE INDEX IF NOT EXISTS idx_users_email ON users(email);
                    """
                )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to initialise database at {self._path}") from exc
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------
    def create_user(
        self,
        name: str,
        email: str,
        password: str,
        *,
        role: Role = Role.USER,
    ) -> UserRecord:
        """Register a new account and return the stored record."""

        if Role(role) is Role.GUEST:
            raise ValueError("Accounts must have the user or admin role")

        normalized_name = name.strip()
        if not normalized_name:
            raise ValueError("Name must not be empty")
        normalized_email = _normalize_email(email)
        if not normalized_email:
            raise ValueError("Email must not be empty")

        password_hash = hash_password(password)
        created_at = _current_timestamp()
        timestamp = _serialize_datetime(created_at)

        cursor = self._execute(
            """
            INSERT INTO users (name, email, password_hash, role, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (normalized_name, normalized_email, password_hash, Role(role).value, timestamp, timestamp),
        )

        return UserRecord(
            id=int(cursor.lastrowid),
            name=normalized_name,
            email=normalized_email,
            password_hash=password_hash,
            role=Role(role),
            created_at=created_at,
            updated_at=created_at,
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def find_user(self, user_id: int) -> Optional[UserRecord]:
        row = self._fetchone("SELECT * FROM users WHERE id = ?", (user_id,))
        if row is None:
            return None
        return self._row_to_user(row)

    def find_user_by_email(self, email: str) -> Optional[UserRecord]:
        row = self._fetchone("SELECT * FROM users WHERE email = ?", (_normalize_email(email),))
        if row is None:
            return None
        return self._row_to_user(row)

    def list_users(self) -> List[UserRecord]:
        rows = self._fetchall("SELECT * FROM users ORDER BY id")
        return [self._row_to_user(row) for row in rows]

    def authenticate_user(self, email: str, password: str) -> Optional[UserRecord]:
        user = self.find_user_by_email(email)
        if user is None:
            return None
        if not verify_password(password, user.password_hash):
            return None
        return user

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def update_user(self, user_id: int, changes: UserChanges) -> Optional[UserRecord]:
        """Write ``changes`` to the user and return the refreshed record.

        Returns ``None`` when no row with ``user_id`` exists.
        """

        columns = changes.columns()
        updates: List[str] = []
        values: List[object] = []
        for column in _UPDATABLE_COLUMNS:
            if column not in columns:
                continue
            value = columns[column]
            if column == "email":
                value = _normalize_email(str(value))
            elif column == "name":
                value = str(value).strip()
            elif column == "role":
                value = Role(value).value
            elif column == "updated_at":
                value = _serialize_datetime(value)  # type: ignore[arg-type]
            updates.append(f"{column} = ?")
            values.append(value)

        values.append(user_id)
        query = f"UPDATE users SET {', '.join(updates)} WHERE id = ?"
        cursor = self._execute(query, tuple(values))
        if cursor.rowcount == 0:
            return None
        return self.find_user(user_id)

    def delete_user(self, user_id: int) -> bool:
        cursor = self._execute("DELETE FROM users WHERE id = ?", (user_id,))
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _row_to_user(self, row: sqlite3.Row) -> UserRecord:
        return UserRecord(
            id=int(row["id"]),
            name=str(row["name"]),
            email=str(row["email"]),
            password_hash=str(row["password_hash"]),
            role=Role(row["role"]),
            created_at=_parse_datetime(str(row["created_at"])),
            updated_at=_parse_datetime(str(row["updated_at"])),
        )


__all__ = [
    "Database",
    "DuplicateEmailError",
    "StorageError",
    "hash_password",
    "resolve_database_path",
    "verify_password",
]
