"""PostgreSQL client for conversation persistence."""

import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import asyncpg

from chatrelay.config import settings
from chatrelay.models import Conversation, Message


# SQL schema for conversation tables
SCHEMA_SQL = """
-- Conversations
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT 'New Chat',
    summary TEXT,
    message_count INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_conversations_user_id ON conversations(user_id);
CREATE INDEX IF NOT EXISTS idx_conversations_updated_at ON conversations(updated_at);

-- Messages (append-only)
CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    user_id TEXT NOT NULL,
    role TEXT NOT NULL CHECK (role IN ('user', 'assistant', 'system')),
    content TEXT NOT NULL,
    model TEXT,
    metadata JSONB DEFAULT '{}',
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id);
CREATE INDEX IF NOT EXISTS idx_messages_created_at ON messages(created_at);
"""


class Database:
    """PostgreSQL database client for conversations and messages."""

    def __init__(self):
        self._pool: asyncpg.Pool | None = None

    async def connect(self):
        """Create connection pool."""
        if not settings.database_url:
            return
        self._pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=2,
            max_size=10,
        )

    async def disconnect(self):
        """Close connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def connection(self):
        """Get a connection from the pool."""
        if not self._pool:
            raise RuntimeError("Database not connected")
        async with self._pool.acquire() as conn:
            yield conn

    async def ensure_tables_exist(self):
        """Create tables if they don't exist."""
        if not self._pool:
            return
        async with self.connection() as conn:
            await conn.execute(SCHEMA_SQL)

    # ============= Conversation Operations =============

    async def create_conversation(
        self, user_id: str, title: str | None = None
    ) -> Conversation:
        """Create a new conversation."""
        conversation = Conversation(
            user_id=user_id,
            title=title or "New Chat",
            created_at=datetime.now(timezone.utc),
            updated_at=datetime.now(timezone.utc),
        )
        if not self._pool:
            return conversation
        async with self.connection() as conn:
            await conn.execute(
                """
                INSERT INTO conversations (id, user_id, title, created_at, updated_at)
                VALUES ($1, $2, $3, $4, $5)
                """,
                conversation.id,
                conversation.user_id,
                conversation.title,
                conversation.created_at,
                conversation.updated_at,
            )
        return conversation

    async def get_conversation(
        self, conversation_id: str, user_id: str | None = None
    ) -> Conversation | None:
        """Get a conversation by ID, optionally scoped to its owner."""
        if not self._pool:
            return None
        query = "SELECT * FROM conversations WHERE id = $1"
        params: list[str] = [conversation_id]
        if user_id is not None:
            query += " AND user_id = $2"
            params.append(user_id)
        async with self.connection() as conn:
            row = await conn.fetchrow(query, *params)
        if not row:
            return None
        return self._row_to_conversation(row)

    async def list_conversations(
        self, user_id: str, limit: int = 50
    ) -> list[Conversation]:
        """List conversations for a user, most recently active first."""
        if not self._pool:
            return []
        async with self.connection() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM conversations
                WHERE user_id = $1
                ORDER BY updated_at DESC
                LIMIT $2
                """,
                user_id,
                limit,
            )
        return [self._row_to_conversation(row) for row in rows]

    async def update_conversation_summary(self, conversation_id: str, summary: str):
        """Replace the conversation's summary."""
        if not self._pool:
            return
        async with self.connection() as conn:
            await conn.execute(
                "UPDATE conversations SET summary = $1 WHERE id = $2",
                summary,
                conversation_id,
            )

    async def update_conversation_title(
        self, conversation_id: str, user_id: str, title: str
    ) -> bool:
        """Rename a conversation. Returns False if it doesn't exist for this user."""
        if not self._pool:
            return False
        async with self.connection() as conn:
            result = await conn.execute(
                """
                UPDATE conversations SET title = $1, updated_at = $2
                WHERE id = $3 AND user_id = $4
                """,
                title,
                datetime.now(timezone.utc),
                conversation_id,
                user_id,
            )
        return result.endswith(" 1")

    async def delete_conversation(self, conversation_id: str, user_id: str) -> bool:
        """Delete a conversation (messages cascade)."""
        if not self._pool:
            return False
        async with self.connection() as conn:
            result = await conn.execute(
                "DELETE FROM conversations WHERE id = $1 AND user_id = $2",
                conversation_id,
                user_id,
            )
        return result.endswith(" 1")

    def _row_to_conversation(self, row: asyncpg.Record) -> Conversation:
        return Conversation(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            summary=row["summary"],
            message_count=row["message_count"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # ============= Message Operations =============

    async def append_messages(
        self,
        conversation_id: str,
        user_id: str,
        messages: list[Message],
        title: str | None = None,
    ) -> int:
        """Append messages in one transaction and return the new message count.

        The title is only applied while the conversation is still empty.
        """
        if not self._pool:
            return len(messages)
        async with self.connection() as conn:
            async with conn.transaction():
                for message in messages:
                    await conn.execute(
                        """
                        INSERT INTO messages
                        (id, conversation_id, user_id, role, content, model, metadata, created_at)
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                        """,
                        message.id,
                        conversation_id,
                        user_id,
                        message.role,
                        message.content,
                        message.model,
                        json.dumps(message.metadata or {}),
                        message.created_at,
                    )
                new_count = await conn.fetchval(
                    """
                    UPDATE conversations
                    SET message_count = message_count + $1,
                        updated_at = $2,
                        title = CASE WHEN message_count = 0 AND $3::TEXT IS NOT NULL
                                     THEN $3::TEXT ELSE title END
                    WHERE id = $4
                    RETURNING message_count
                    """,
                    len(messages),
                    datetime.now(timezone.utc),
                    title,
                    conversation_id,
                )
        return new_count or 0

    async def get_messages(self, conversation_id: str) -> list[Message]:
        """Get all messages for a conversation in creation order."""
        if not self._pool:
            return []
        async with self.connection() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM messages
                WHERE conversation_id = $1
                ORDER BY created_at ASC
                """,
                conversation_id,
            )
        return [
            Message(
                id=row["id"],
                role=row["role"],  # type: ignore
                content=row["content"],
                model=row["model"],
                metadata=row["metadata"] if isinstance(row["metadata"], dict) else (json.loads(row["metadata"]) if row["metadata"] else {}),
                created_at=row["created_at"],
            )
            for row in rows
        ]


# Global database instance
db = Database()
