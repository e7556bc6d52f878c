"""Shared fixtures and in-memory fakes."""

import json
from datetime import datetime, timezone

import pytest

from chatrelay.models import Conversation, EpisodicHit, Message
from chatrelay.providers import AdapterRegistry, ProviderError, ProviderFamily
from chatrelay.services.conversation_store import ConversationStore


class FakeDatabase:
    """In-memory stand-in for the asyncpg Database."""

    def __init__(self):
        self.conversations: dict[str, Conversation] = {}
        self.messages: dict[str, list[Message]] = {}
        self.summary_updates: list[tuple[str, str]] = []

    async def create_conversation(self, user_id: str, title: str | None = None) -> Conversation:
        conversation = Conversation(user_id=user_id, title=title or "New Chat")
        self.conversations[conversation.id] = conversation
        self.messages[conversation.id] = []
        return conversation.model_copy(deep=True)

    async def get_conversation(self, conversation_id: str, user_id: str | None = None):
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            return None
        if user_id is not None and conversation.user_id != user_id:
            return None
        return conversation.model_copy(deep=True)

    async def list_conversations(self, user_id: str, limit: int = 50) -> list[Conversation]:
        owned = [c for c in self.conversations.values() if c.user_id == user_id]
        owned.sort(key=lambda c: c.updated_at, reverse=True)
        return [c.model_copy(deep=True) for c in owned[:limit]]

    async def update_conversation_summary(self, conversation_id: str, summary: str):
        self.summary_updates.append((conversation_id, summary))
        if conversation_id in self.conversations:
            self.conversations[conversation_id].summary = summary

    async def update_conversation_title(self, conversation_id: str, user_id: str, title: str) -> bool:
        conversation = self.conversations.get(conversation_id)
        if conversation is None or conversation.user_id != user_id:
            return False
        conversation.title = title
        return True

    async def delete_conversation(self, conversation_id: str, user_id: str) -> bool:
        conversation = self.conversations.get(conversation_id)
        if conversation is None or conversation.user_id != user_id:
            return False
        del self.conversations[conversation_id]
        self.messages.pop(conversation_id, None)
        return True

    async def append_messages(
        self, conversation_id: str, user_id: str, messages: list[Message], title: str | None = None
    ) -> int:
        conversation = self.conversations[conversation_id]
        if conversation.message_count == 0 and title:
            conversation.title = title
        self.messages[conversation_id].extend(m.model_copy(deep=True) for m in messages)
        conversation.message_count += len(messages)
        conversation.updated_at = datetime.now(timezone.utc)
        return conversation.message_count

    async def get_messages(self, conversation_id: str) -> list[Message]:
        return [m.model_copy(deep=True) for m in self.messages.get(conversation_id, [])]

    def seed(self, user_id: str, contents: list[str], summary: str | None = None) -> Conversation:
        """Create a conversation with alternating user/assistant messages."""
        conversation = Conversation(user_id=user_id, summary=summary)
        messages = [
            Message(role="user" if i % 2 == 0 else "assistant", content=text)
            for i, text in enumerate(contents)
        ]
        conversation.message_count = len(messages)
        self.conversations[conversation.id] = conversation
        self.messages[conversation.id] = messages
        return conversation


class FakeCache:
    """In-memory TTL cache; values go through JSON like the Redis cache."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.fail = False

    async def get(self, key: str):
        text = await self.get_text(key)
        return json.loads(text) if text is not None else None

    async def get_text(self, key: str):
        if self.fail:
            return None
        return self.data.get(key)

    async def set(self, key: str, value, ttl: int) -> bool:
        if self.fail:
            return False
        self.data[key] = json.dumps(value, default=str)
        self.ttls[key] = ttl
        return True

    async def append(self, key: str, text: str, ttl: int) -> bool:
        if self.fail:
            return False
        self.data[key] = self.data.get(key, "") + text
        self.ttls[key] = ttl
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed


class ScriptedAdapter:
    """Adapter that replays scripted chunks per model, or fails."""

    def __init__(self, family=ProviderFamily.OPENAI, output_type: str = "text"):
        self.family = family
        self.output_type = output_type
        self.scripts: dict[str, list[str] | Exception] = {}
        self.fail_after: dict[str, int] = {}
        self.calls: list[str] = []
        self.last_system: str | None = None
        self.last_history: list[Message] | None = None

    def script(self, model: str, result, fail_after: int | None = None):
        self.scripts[model] = result
        if fail_after is not None:
            self.fail_after[model] = fail_after

    async def stream(self, model, system_instructions, history, new_turn):
        self.calls.append(model)
        self.last_system = system_instructions
        self.last_history = history
        result = self.scripts.get(model, ["ok"])
        if isinstance(result, Exception):
            raise result
        for i, chunk in enumerate(result):
            if self.fail_after.get(model) == i:
                raise ProviderError("connection reset", model=model)
            yield chunk


class FakeMemory:
    def __init__(self, hits: list[EpisodicHit] | None = None, fail: bool = False):
        self.hits = hits or []
        self.fail = fail
        self.searches: list[tuple[str, str, int]] = []
        self.stored: list[dict] = []

    async def search(self, user_id: str, text: str, k: int) -> list[EpisodicHit]:
        self.searches.append((user_id, text, k))
        if self.fail:
            raise ConnectionError("qdrant unreachable")
        return self.hits[:k]

    async def store_exchange(self, user_id, query, answer, model, query_type) -> None:
        self.stored.append(
            {"user_id": user_id, "query": query, "answer": answer, "model": model, "type": query_type}
        )


class FakeCompleter:
    def __init__(self, reply: str = "", fail: bool = False):
        self.reply = reply
        self.fail = fail
        self.prompts: list[str] = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.fail:
            raise RuntimeError("model unavailable")
        return self.reply


@pytest.fixture
def database():
    return FakeDatabase()


@pytest.fixture
def cache():
    return FakeCache()


@pytest.fixture
def store(database, cache):
    return ConversationStore(database, cache)


@pytest.fixture
def adapter():
    return ScriptedAdapter()


@pytest.fixture
def registry(adapter):
    """Registry that sends every model to the scripted adapter."""
    return AdapterRegistry({ProviderFamily.OPENAI: adapter}, force_family=ProviderFamily.OPENAI)
