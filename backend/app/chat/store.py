"""DuckDB-backed storage for chats and messages.

Database Schema:
    chats table:
        - id: Chat id (uuid, unique by construction)
        - name: Display name
        - is_group_chat: Group or one-on-one
        - participants: VARCHAR[] of user ids, in join order
        - admin: Creator / admin user id
        - last_message: Id of the most recent message (nullable)
        - created_at / updated_at: UTC timestamps

    messages table:
        - seq: Insertion order (ties on timestamps are common in tests)
        - id: Message id (primary key)
        - chat_id: Owning chat
        - sender: Sender user id
        - content: Text body (may be empty when attachments are present)
        - attachments: JSON array of {"url": ...}
        - created_at / updated_at: UTC timestamps

This is the source of truth for conversation membership. The socket
registry only mirrors it for live delivery.
"""
import json
import logging
from datetime import datetime
from typing import List, Optional

import duckdb

from .schemas import Attachment, ChatRecord, MessageRecord

logger = logging.getLogger(__name__)

_CHAT_COLUMNS = "id, name, is_group_chat, participants, admin, last_message, created_at, updated_at"
_MESSAGE_COLUMNS = "id, chat_id, sender, content, attachments, created_at, updated_at"


class ChatStore:
    """Persisted chats and messages."""

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
            CREATE TABLE IF NOT EXISTS chats (
                id VARCHAR NOT NULL,
                name VARCHAR NOT NULL,
                is_group_chat BOOLEAN NOT NULL DEFAULT FALSE,
                participants VARCHAR[] NOT NULL,
                admin VARCHAR,
                last_message VARCHAR,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL
            )
        """)
        conn.execute("CREATE SEQUENCE IF NOT EXISTS messages_seq START 1")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                seq BIGINT DEFAULT nextval('messages_seq'),
                id VARCHAR PRIMARY KEY,
                chat_id VARCHAR NOT NULL,
                sender VARCHAR NOT NULL,
                content VARCHAR NOT NULL,
                attachments VARCHAR NOT NULL,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_messages_chat ON messages(chat_id)")

    # =========================================================================
    # Chats
    # =========================================================================

    def create_chat(
        self,
        name: str,
        participants: List[str],
        admin: Optional[str],
        is_group_chat: bool = False,
    ) -> ChatRecord:
        chat = ChatRecord(
            name=name,
            isGroupChat=is_group_chat,
            participants=list(participants),
            admin=admin,
        )
        self._get_connection().execute(
            f"INSERT INTO chats ({_CHAT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            [
                chat.id, chat.name, chat.isGroupChat, chat.participants,
                chat.admin, chat.lastMessage, chat.createdAt, chat.updatedAt,
            ],
        )
        logger.info(
            "[ChatStore] Created %s chat %s with %d participant(s)",
            "group" if is_group_chat else "one-on-one", chat.id, len(chat.participants),
        )
        return chat

    def get_chat(self, chat_id: str) -> Optional[ChatRecord]:
        row = self._get_connection().execute(
            f"SELECT {_CHAT_COLUMNS} FROM chats WHERE id = ?", [chat_id]
        ).fetchone()
        return self._row_to_chat(row) if row else None

    def find_one_on_one(self, user_a: str, user_b: str) -> Optional[ChatRecord]:
        """The direct chat between two users, if one exists."""
        row = self._get_connection().execute(
            f"""
            SELECT {_CHAT_COLUMNS} FROM chats
            WHERE NOT is_group_chat
              AND list_contains(participants, ?)
              AND list_contains(participants, ?)
            ORDER BY created_at ASC
            LIMIT 1
            """,
            [user_a, user_b],
        ).fetchone()
        return self._row_to_chat(row) if row else None

    def list_for_user(self, user_id: str) -> List[ChatRecord]:
        """Chats the user participates in, most recently updated first."""
        rows = self._get_connection().execute(
            f"""
            SELECT {_CHAT_COLUMNS} FROM chats
            WHERE list_contains(participants, ?)
            ORDER BY updated_at DESC
            """,
            [user_id],
        ).fetchall()
        return [self._row_to_chat(r) for r in rows]

    def is_participant(self, chat_id: str, user_id: str) -> bool:
        row = self._get_connection().execute(
            "SELECT list_contains(participants, ?) FROM chats WHERE id = ?",
            [user_id, chat_id],
        ).fetchone()
        return bool(row and row[0])

    def rename_chat(self, chat_id: str, name: str) -> Optional[ChatRecord]:
        self._get_connection().execute(
            "UPDATE chats SET name = ?, updated_at = ? WHERE id = ?",
            [name, datetime.utcnow(), chat_id],
        )
        return self.get_chat(chat_id)

    def set_participants(self, chat_id: str, participants: List[str]) -> Optional[ChatRecord]:
        self._get_connection().execute(
            "UPDATE chats SET participants = ?, updated_at = ? WHERE id = ?",
            [list(participants), datetime.utcnow(), chat_id],
        )
        return self.get_chat(chat_id)

    def set_last_message(self, chat_id: str, message_id: Optional[str]) -> None:
        self._get_connection().execute(
            "UPDATE chats SET last_message = ?, updated_at = ? WHERE id = ?",
            [message_id, datetime.utcnow(), chat_id],
        )

    def delete_chat(self, chat_id: str) -> int:
        """Delete a chat and all of its messages.

        Returns:
            Number of messages removed with it.
        """
        conn = self._get_connection()
        removed = conn.execute(
            "DELETE FROM messages WHERE chat_id = ? RETURNING id", [chat_id]
        ).fetchall()
        conn.execute("DELETE FROM chats WHERE id = ?", [chat_id])
        logger.info("[ChatStore] Deleted chat %s and %d message(s)", chat_id, len(removed))
        return len(removed)

    # =========================================================================
    # Messages
    # =========================================================================

    def add_message(
        self,
        chat_id: str,
        sender: str,
        content: str,
        attachments: Optional[List[Attachment]] = None,
    ) -> MessageRecord:
        message = MessageRecord(
            chat=chat_id,
            sender=sender,
            content=content,
            attachments=list(attachments or []),
        )
        self._get_connection().execute(
            f"INSERT INTO messages ({_MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
            [
                message.id, message.chat, message.sender, message.content,
                json.dumps([a.model_dump() for a in message.attachments]),
                message.createdAt, message.updatedAt,
            ],
        )
        return message

    def get_message(self, message_id: str) -> Optional[MessageRecord]:
        row = self._get_connection().execute(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = ?", [message_id]
        ).fetchone()
        return self._row_to_message(row) if row else None

    def list_messages(self, chat_id: str) -> List[MessageRecord]:
        """Messages of a chat, newest first."""
        rows = self._get_connection().execute(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE chat_id = ? ORDER BY seq DESC",
            [chat_id],
        ).fetchall()
        return [self._row_to_message(r) for r in rows]

    def latest_message(self, chat_id: str) -> Optional[MessageRecord]:
        row = self._get_connection().execute(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE chat_id = ? ORDER BY seq DESC LIMIT 1",
            [chat_id],
        ).fetchone()
        return self._row_to_message(row) if row else None

    def delete_message(self, message_id: str) -> bool:
        result = self._get_connection().execute(
            "DELETE FROM messages WHERE id = ? RETURNING id", [message_id]
        ).fetchone()
        return result is not None

    def close(self) -> None:
        """Close the database connection if this store opened it."""
        if self._connection is not None and self._owns_connection:
            self._connection.close()
        self._connection = None

    # =========================================================================
    # Internal
    # =========================================================================

    @staticmethod
    def _row_to_chat(row) -> ChatRecord:
        return ChatRecord(
            id=row[0],
            name=row[1],
            isGroupChat=bool(row[2]),
            participants=list(row[3] or []),
            admin=row[4],
            lastMessage=row[5],
            createdAt=row[6],
            updatedAt=row[7],
        )

    @staticmethod
    def _row_to_message(row) -> MessageRecord:
        return MessageRecord(
            id=row[0],
            chat=row[1],
            sender=row[2],
            content=row[3],
            attachments=[Attachment(**a) for a in json.loads(row[4] or "[]")],
            createdAt=row[5],
            updatedAt=row[6],
        )
