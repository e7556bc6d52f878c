"""Tests for the streaming dispatcher."""

import pytest
from conftest import FakeMemory, ScriptedAdapter

from chatrelay.models import ContextBundle, Message, Route
from chatrelay.providers import AdapterRegistry, ProviderError, ProviderFamily
from chatrelay.services.conversation_store import partial_key
from chatrelay.services.dispatcher import (
    ALL_MODELS_FAILED_MESSAGE,
    SYSTEM_PROMPTS,
    StreamingDispatcher,
    build_system_prompt,
)
from chatrelay.sse import EventType


async def _collect(events) -> list:
    return [event async for event in events]


def _route(primary: str, *fallbacks: str, **kwargs) -> Route:
    return Route(primary_model=primary, fallback_models=list(fallbacks), **kwargs)


def _kinds(events) -> list[str]:
    return [e.event for e in events]


class TestFallback:
    """Test candidate ordering and failover."""

    @pytest.mark.asyncio
    async def test_falls_back_until_a_model_succeeds(self, registry, adapter, store, database):
        conversation = await store.get(None, "u1")
        adapter.script("model-a", ProviderError("rate limited"))
        adapter.script("model-b", ProviderError("bad key"))
        adapter.script("model-c", ["Hello", " there"])
        dispatcher = StreamingDispatcher(registry, store)

        events = await _collect(
            dispatcher.dispatch(
                _route("model-a", "model-b", "model-c"),
                ContextBundle(),
                "u1",
                conversation.id,
                "Hi",
            )
        )

        assert adapter.calls == ["model-a", "model-b", "model-c"]
        assert _kinds(events) == [
            EventType.SESSION,
            EventType.MODEL_SELECTED,
            EventType.MODEL_SELECTED,
            EventType.MODEL_SELECTED,
            EventType.TOKEN,
            EventType.TOKEN,
            EventType.DONE,
        ]
        selected = [e.data["model"] for e in events if e.event == EventType.MODEL_SELECTED]
        assert selected == ["model-a", "model-b", "model-c"]

        saved = database.messages[conversation.id]
        assert [(m.role, m.content) for m in saved] == [("user", "Hi"), ("assistant", "Hello there")]
        assert saved[1].model == "model-c"
        assert saved[1].metadata == {"type": "text"}

    @pytest.mark.asyncio
    async def test_exhaustion_emits_single_fatal_error(self, registry, adapter, store, database):
        conversation = await store.get(None, "u1")
        adapter.script("model-a", ProviderError("down"))
        adapter.script("model-b", RuntimeError("socket closed"))
        dispatcher = StreamingDispatcher(registry, store)

        events = await _collect(
            dispatcher.dispatch(_route("model-a", "model-b"), ContextBundle(), "u1", conversation.id, "Hi")
        )

        errors = [e for e in events if e.event == EventType.ERROR]
        assert len(errors) == 1
        assert errors[0].data == {"message": ALL_MODELS_FAILED_MESSAGE, "fatal": True}
        # Raw provider errors are not exposed
        assert "socket closed" not in errors[0].data["message"]
        assert events[-1].event == EventType.DONE
        assert [e.event for e in events].count(EventType.DONE) == 1
        assert database.messages[conversation.id] == []

    @pytest.mark.asyncio
    async def test_duplicate_candidates_tried_once(self, registry, adapter, store):
        conversation = await store.get(None, "u1")
        adapter.script("model-a", ProviderError("down"))
        adapter.script("model-b", ["ok"])
        dispatcher = StreamingDispatcher(registry, store)

        await _collect(
            dispatcher.dispatch(
                _route("model-a", "model-a", "model-b", "model-b"), ContextBundle(), "u1", conversation.id, "Hi"
            )
        )

        assert adapter.calls == ["model-a", "model-b"]

    @pytest.mark.asyncio
    async def test_empty_output_counts_as_failure(self, registry, adapter, store, database):
        conversation = await store.get(None, "u1")
        adapter.script("model-a", ["", "   "])
        adapter.script("model-b", ["answer"])
        dispatcher = StreamingDispatcher(registry, store)

        events = await _collect(
            dispatcher.dispatch(_route("model-a", "model-b"), ContextBundle(), "u1", conversation.id, "Hi")
        )

        assert adapter.calls == ["model-a", "model-b"]
        assert database.messages[conversation.id][1].model == "model-b"
        assert events[-1].event == EventType.DONE

    @pytest.mark.asyncio
    async def test_mid_stream_failure_moves_on(self, registry, adapter, store, database):
        conversation = await store.get(None, "u1")
        adapter.script("model-a", ["par", "tial", "never"], fail_after=2)
        adapter.script("model-b", ["complete answer"])
        dispatcher = StreamingDispatcher(registry, store)

        events = await _collect(
            dispatcher.dispatch(_route("model-a", "model-b"), ContextBundle(), "u1", conversation.id, "Hi")
        )

        tokens = [e for e in events if e.event == EventType.TOKEN]
        assert [t.data["content"] for t in tokens] == ["par", "tial", "complete answer"]
        assert tokens[-1].data["full_response"] == "complete answer"
        assert database.messages[conversation.id][1].content == "complete answer"

    @pytest.mark.asyncio
    async def test_missing_adapter_is_a_candidate_failure(self, store, database):
        conversation = await store.get(None, "u1")
        claude = ScriptedAdapter(family=ProviderFamily.CLAUDE)
        claude.script("claude-sonnet", ["from claude"])
        registry = AdapterRegistry({ProviderFamily.CLAUDE: claude})
        dispatcher = StreamingDispatcher(registry, store)

        events = await _collect(
            dispatcher.dispatch(
                _route("gpt-4o", "claude-sonnet"), ContextBundle(), "u1", conversation.id, "Hi"
            )
        )

        assert not any(e.event == EventType.ERROR for e in events)
        assert events[2].event == EventType.MODEL_SELECTED
        assert events[2].data["model"] == "claude-sonnet"
        assert database.messages[conversation.id][1].model == "claude-sonnet"


class TestStreaming:
    """Test token relay, partial saves and persistence."""

    @pytest.mark.asyncio
    async def test_tokens_accumulate_full_response(self, registry, adapter, store):
        conversation = await store.get(None, "u1")
        adapter.script("m", ["a", "b", "c"])
        dispatcher = StreamingDispatcher(registry, store)

        events = await _collect(dispatcher.dispatch(_route("m"), ContextBundle(), "u1", conversation.id, "Hi"))

        tokens = [e.data for e in events if e.event == EventType.TOKEN]
        assert tokens == [
            {"content": "a", "full_response": "a"},
            {"content": "b", "full_response": "ab"},
            {"content": "c", "full_response": "abc"},
        ]
        assert events[0].data == {"conversation_id": conversation.id}
        assert events[1].data == {"model": "m"}

    @pytest.mark.asyncio
    async def test_partial_saves_written_in_background(self, registry, adapter, store, cache):
        adapter.script("m", ["Hel", "lo"])
        dispatcher = StreamingDispatcher(registry, store)
        events = dispatcher.dispatch(_route("m"), ContextBundle(), "u1", "c1", "Hi")

        async for event in events:
            if event.event == EventType.TOKEN and event.data["full_response"] == "Hello":
                break
        await events.aclose()
        await dispatcher.drain()

        assert cache.data[partial_key("c1", "u1")] == "Hello"

    @pytest.mark.asyncio
    async def test_failed_candidate_text_dropped_from_partial_buffer(self, registry, adapter, store):
        adapter.script("model-a", ["par", "tial", "never"], fail_after=2)
        adapter.script("model-b", ["good ", "answer"])
        dispatcher = StreamingDispatcher(registry, store)
        events = dispatcher.dispatch(_route("model-a", "model-b"), ContextBundle(), "u1", "c1", "Hi")

        async for event in events:
            if event.event == EventType.TOKEN and event.data["content"] == "good ":
                break
        await events.aclose()
        await dispatcher.drain()

        assert await store.get_partial("c1", "u1") == "good "

    @pytest.mark.asyncio
    async def test_early_close_emits_nothing_more_and_commits_nothing(
        self, registry, adapter, store, database
    ):
        conversation = await store.get(None, "u1")
        adapter.script("m", ["one", "two", "three"])
        dispatcher = StreamingDispatcher(registry, store)
        events = dispatcher.dispatch(_route("m"), ContextBundle(), "u1", conversation.id, "Hi")

        received = []
        async for event in events:
            received.append(event)
            if event.event == EventType.TOKEN:
                break
        await events.aclose()
        await dispatcher.drain()

        assert EventType.DONE not in _kinds(received)
        assert database.messages[conversation.id] == []

    @pytest.mark.asyncio
    async def test_commit_failure_still_terminates_stream(self, registry, adapter, store):
        adapter.script("m", ["fine"])

        async def broken_append(*args, **kwargs):
            raise ConnectionError("database down")

        store.append_exchange = broken_append
        dispatcher = StreamingDispatcher(registry, store)

        events = await _collect(dispatcher.dispatch(_route("m"), ContextBundle(), "u1", "c1", "Hi"))

        assert events[-1].event == EventType.DONE
        assert not any(e.event == EventType.ERROR for e in events)

    @pytest.mark.asyncio
    async def test_image_output_type_recorded(self, store, database):
        conversation = await store.get(None, "u1")
        images = ScriptedAdapter(family=ProviderFamily.OPENAI_IMAGE, output_type="image")
        images.script("dall-e-3", ["https://img.example/1.png"])
        registry = AdapterRegistry({ProviderFamily.OPENAI_IMAGE: images})
        dispatcher = StreamingDispatcher(registry, store)

        await _collect(
            dispatcher.dispatch(
                _route("dall-e-3", type="image", tier="pro"), ContextBundle(), "u1", conversation.id, "draw"
            )
        )

        assert database.messages[conversation.id][1].metadata == {"type": "image"}

    @pytest.mark.asyncio
    async def test_exchange_indexed_in_episodic_memory(self, registry, adapter, store):
        conversation = await store.get(None, "u1")
        adapter.script("m", ["42"])
        memory = FakeMemory()
        dispatcher = StreamingDispatcher(registry, store, memory=memory)

        await _collect(
            dispatcher.dispatch(_route("m", type="coding"), ContextBundle(), "u1", conversation.id, "answer?")
        )
        await dispatcher.drain()

        assert memory.stored == [
            {"user_id": "u1", "query": "answer?", "answer": "42", "model": "m", "type": "coding"}
        ]

    @pytest.mark.asyncio
    async def test_context_passed_to_adapter(self, registry, adapter, store):
        conversation = await store.get(None, "u1")
        history = [Message(role="user", content="earlier"), Message(role="assistant", content="reply")]
        bundle = ContextBundle(bounded_messages=history, instruction_text="Previous conversation summary: x")
        dispatcher = StreamingDispatcher(registry, store)

        await _collect(dispatcher.dispatch(_route("m"), bundle, "u1", conversation.id, "Hi"))

        assert adapter.last_history == history
        assert adapter.last_system.startswith(SYSTEM_PROMPTS["text"])
        assert adapter.last_system.endswith("Previous conversation summary: x")


class TestSystemPrompt:
    """Test system prompt selection."""

    def test_uses_type_prompt(self):
        route = _route("m", type="coding")
        assert build_system_prompt(route, "") == SYSTEM_PROMPTS["coding"]

    def test_downgraded_route_uses_text_prompt(self):
        route = _route("m", type="image", allowed=False, downgraded=True)
        assert build_system_prompt(route, "ctx") == f"{SYSTEM_PROMPTS['text']}\n\nctx"
