"""Conversation store - durable conversations behind a read-through cache.

PostgreSQL is authoritative. Redis holds a copy of each loaded conversation
(`chat:<id>`) and the short-lived partial buffer for in-flight responses
(`chat:partial:<id>:<user>`). Every mutating call invalidates the cached copy
before returning, so the next read goes back to the database.
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import ValidationError

from chatrelay.cache import TTLCache
from chatrelay.db import Database
from chatrelay.models import Conversation, Message

logger = logging.getLogger(__name__)

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)

TITLE_LENGTH = 50


def is_valid_conversation_id(conversation_id: str | None) -> bool:
    """Check that an ID looks like a UUID."""
    return isinstance(conversation_id, str) and bool(UUID_PATTERN.match(conversation_id))


def conversation_key(conversation_id: str) -> str:
    return f"chat:{conversation_id}"


def partial_key(conversation_id: str, user_id: str) -> str:
    return f"chat:partial:{conversation_id}:{user_id}"


class ConversationStore:
    """Owns persistence and cache lifecycle of conversations."""

    def __init__(
        self,
        database: Database,
        cache: TTLCache | None = None,
        conversation_ttl: int = 3600,
        partial_ttl: int = 600,
    ):
        self.database = database
        self.cache = cache
        self.conversation_ttl = conversation_ttl
        self.partial_ttl = partial_ttl

    # ============= Reads =============

    async def get(self, conversation_id: str | None, user_id: str) -> Conversation:
        """Get a conversation with its messages, creating one if needed.

        A missing or malformed ID, or one that doesn't exist for this user,
        yields a freshly created empty conversation instead of an error.
        """
        if not is_valid_conversation_id(conversation_id):
            if conversation_id:
                logger.warning(
                    f"Invalid conversation id {conversation_id!r}, creating a new conversation"
                )
            return await self.create(user_id)

        cached = await self._read_cache(conversation_id)
        if cached is not None and cached.user_id == user_id:
            return cached

        conversation = await self._load(conversation_id, user_id)
        if conversation is None:
            logger.info(
                f"Conversation {conversation_id} not found for user {user_id}, creating a new one"
            )
            return await self.create(user_id)
        return conversation

    async def find(self, conversation_id: str) -> Conversation | None:
        """Look up an existing conversation regardless of owner. Never creates."""
        if not is_valid_conversation_id(conversation_id):
            return None
        cached = await self._read_cache(conversation_id)
        if cached is not None:
            return cached
        return await self._load(conversation_id)

    async def create(self, user_id: str, title: str | None = None) -> Conversation:
        """Create and cache a new empty conversation."""
        conversation = await self.database.create_conversation(user_id, title)
        await self._write_cache(conversation)
        logger.info(f"Created conversation {conversation.id} for user {user_id}")
        return conversation

    async def list_conversations(self, user_id: str, limit: int = 50) -> list[Conversation]:
        """List a user's conversations (without messages)."""
        return await self.database.list_conversations(user_id, limit=limit)

    async def get_partial(self, conversation_id: str, user_id: str) -> str | None:
        """Get the partial buffer of an in-flight response, if any."""
        if not self.cache:
            return None
        return await self.cache.get_text(partial_key(conversation_id, user_id))

    # ============= Writes =============

    async def append_exchange(
        self,
        conversation_id: str,
        user_id: str,
        user_turn: str,
        assistant_turn: str,
        model: str,
        metadata: dict[str, Any] | None = None,
    ) -> Conversation:
        """Persist a completed user/assistant exchange.

        Both messages are written in one transaction. The cached copy and the
        partial buffer are dropped before returning.
        """
        now = datetime.now(timezone.utc)
        user_message = Message(
            role="user", content=user_turn, model=None, metadata={"type": "text"}, created_at=now
        )
        assistant_message = Message(
            role="assistant",
            content=assistant_turn,
            model=model,
            metadata=metadata or {"type": "text"},
            created_at=now + timedelta(microseconds=1),
        )

        new_count = await self.database.append_messages(
            conversation_id,
            user_id,
            [user_message, assistant_message],
            title=user_turn[:TITLE_LENGTH] or None,
        )
        await self.invalidate(conversation_id, user_id, include_partial=True)
        logger.info(
            f"Saved exchange in conversation {conversation_id} "
            f"(model={model}, message_count={new_count})"
        )

        conversation = await self._load(conversation_id, user_id)
        if conversation is None:
            # No durable row (database disabled); hand back what was written
            conversation = Conversation(
                id=conversation_id,
                user_id=user_id,
                title=user_turn[:TITLE_LENGTH] or "New Chat",
                messages=[user_message, assistant_message],
                message_count=new_count,
            )
        return conversation

    async def rewrite_summary(self, conversation_id: str, text: str) -> None:
        """Replace the conversation summary wholesale."""
        await self.database.update_conversation_summary(conversation_id, text)
        await self.invalidate(conversation_id)
        logger.info(f"Rewrote summary for conversation {conversation_id} ({len(text)} chars)")

    async def save_partial(self, conversation_id: str, user_id: str, chunk: str) -> None:
        """Append a streamed chunk to the short-lived partial buffer."""
        if not self.cache or not chunk:
            return
        await self.cache.append(partial_key(conversation_id, user_id), chunk, self.partial_ttl)

    async def update_title(self, conversation_id: str, user_id: str, title: str) -> bool:
        """Rename a conversation."""
        updated = await self.database.update_conversation_title(conversation_id, user_id, title)
        await self.invalidate(conversation_id)
        return updated

    async def delete_conversation(self, conversation_id: str, user_id: str) -> bool:
        """Delete a conversation and everything cached for it."""
        deleted = await self.database.delete_conversation(conversation_id, user_id)
        await self.invalidate(conversation_id, user_id, include_partial=True)
        return deleted

    async def invalidate(
        self, conversation_id: str, user_id: str | None = None, include_partial: bool = False
    ) -> None:
        """Drop cached state for a conversation."""
        if not self.cache:
            return
        keys = [conversation_key(conversation_id)]
        if include_partial and user_id:
            keys.append(partial_key(conversation_id, user_id))
        await self.cache.delete(*keys)

    # ============= Internals =============

    async def _load(self, conversation_id: str, user_id: str | None = None) -> Conversation | None:
        """Read a conversation from the database and refresh the cache."""
        conversation = await self.database.get_conversation(conversation_id, user_id)
        if conversation is None:
            return None
        conversation.messages = await self.database.get_messages(conversation_id)
        await self._write_cache(conversation)
        return conversation

    async def _read_cache(self, conversation_id: str) -> Conversation | None:
        if not self.cache:
            return None
        cached = await self.cache.get(conversation_key(conversation_id))
        if cached is None:
            return None
        try:
            return Conversation.model_validate(cached)
        except ValidationError as e:
            logger.warning(f"Dropping malformed cache entry for {conversation_id}: {e}")
            await self.cache.delete(conversation_key(conversation_id))
            return None

    async def _write_cache(self, conversation: Conversation) -> None:
        if not self.cache:
            return
        await self.cache.set(
            conversation_key(conversation.id),
            conversation.model_dump(mode="json"),
            self.conversation_ttl,
        )
