"""DuckDB-backed user record storage.

This is the identity side of the chat service: the token verifier resolves
the user id inside an access token against this store, and the chat layer
uses it to expand participant ids into user objects.

Database Schema:
    users table:
        - id: User id (primary key, also the identity-room key)
        - username: Unique lower-cased handle
        - email: Contact address
        - avatar: Optional avatar URL
        - role: ADMIN or USER
        - created_at: Creation time (UTC)

Thread Safety:
    The DuckDB connection is NOT thread-safe and is shared with the chat
    store. Callers stay on the event loop thread: routes and the
    dependencies that reach a store are ``async def``, never plain ``def``
    (FastAPI would run those in its threadpool).
"""
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import duckdb

from .schemas import User, UserCreate, UserRole

logger = logging.getLogger(__name__)


class UserExistsError(Exception):
    """Raised when creating a user whose username is already taken."""


class UserStore:
    """Persisted user records with lookup by id.

    Attributes:
        _db_path: Path to the DuckDB database file (``:memory:`` for tests).
    """

    _db_path: str = "chat.duckdb"

    def __init__(
        self,
        db_path: Optional[str] = None,
        connection: Optional[duckdb.DuckDBPyConnection] = None,
    ) -> None:
        """Initialize the store, creating the schema if needed.

        Args:
            db_path: Path to DuckDB file. Ignored when ``connection`` is given.
            connection: Existing connection to share with other stores.
        """
        if db_path:
            self._db_path = db_path
        self._connection = connection
        self._owns_connection = connection is None
        self._initialize_db()

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id VARCHAR PRIMARY KEY,
                username VARCHAR NOT NULL UNIQUE,
                email VARCHAR NOT NULL,
                avatar VARCHAR,
                role VARCHAR NOT NULL,
                created_at TIMESTAMP NOT NULL
            )
        """)

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    def create(self, data: UserCreate) -> User:
        """Create a user record.

        Raises:
            UserExistsError: If the username is already taken.
        """
        username = data.username.strip().lower()
        if self.get_by_username(username) is not None:
            raise UserExistsError(f"User with username '{username}' already exists")

        user = User(
            username=username,
            email=data.email.strip(),
            avatar=data.avatar,
            role=data.role,
        )
        self._get_connection().execute(
            """
            INSERT INTO users (id, username, email, avatar, role, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [user.id, user.username, user.email, user.avatar, user.role.value, user.created_at],
        )
        logger.info("[Users] Created user %s (%s)", user.id, user.username)
        return user

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def get(self, user_id: str) -> Optional[User]:
        """Look up a user by id. Returns None if unknown."""
        row = self._get_connection().execute(
            "SELECT id, username, email, avatar, role, created_at FROM users WHERE id = ?",
            [user_id],
        ).fetchone()
        return self._row_to_user(row) if row else None

    def get_by_username(self, username: str) -> Optional[User]:
        row = self._get_connection().execute(
            "SELECT id, username, email, avatar, role, created_at FROM users WHERE username = ?",
            [username.strip().lower()],
        ).fetchone()
        return self._row_to_user(row) if row else None

    def get_many(self, user_ids: Iterable[str]) -> List[User]:
        """Look up several users, preserving the order of ``user_ids``.

        Unknown ids are skipped.
        """
        ids = list(user_ids)
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        rows = self._get_connection().execute(
            f"SELECT id, username, email, avatar, role, created_at FROM users WHERE id IN ({placeholders})",
            ids,
        ).fetchall()
        by_id: Dict[str, User] = {row[0]: self._row_to_user(row) for row in rows}
        return [by_id[i] for i in ids if i in by_id]

    def search_available(self, exclude_user_id: str) -> List[User]:
        """All users except the caller, ordered by username."""
        rows = self._get_connection().execute(
            """
            SELECT id, username, email, avatar, role, created_at
            FROM users
            WHERE id <> ?
            ORDER BY username ASC
            """,
            [exclude_user_id],
        ).fetchall()
        return [self._row_to_user(row) for row in rows]

    def close(self) -> None:
        """Close the database connection if this store opened it."""
        if self._connection is not None and self._owns_connection:
            self._connection.close()
        self._connection = None

    @staticmethod
    def _row_to_user(row) -> User:
        created_at = row[5]
        if not isinstance(created_at, datetime):
            created_at = datetime.fromisoformat(str(created_at))
        return User(
            id=row[0],
            username=row[1],
            email=row[2],
            avatar=row[3],
            role=UserRole(row[4]),
            created_at=created_at,
        )
