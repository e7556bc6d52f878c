"""Streaming dispatcher - tries candidate models in order and relays output.

For each candidate the dispatcher resolves an adapter, relays its chunks as
token events and, on the first success, commits the exchange. Failures move
on to the next candidate; running out of candidates ends the stream with one
fatal error. Every stream ends with exactly one completion sentinel.
"""

import asyncio
import logging
from typing import AsyncIterator, Coroutine

from chatrelay.models import ContentType, ContextBundle, Route
from chatrelay.providers import AdapterRegistry, ProviderError
from chatrelay.services.conversation_store import ConversationStore
from chatrelay.services.episodic_memory import EpisodicMemory
from chatrelay.sse import EventType, StreamEvent, done_event, error_event

logger = logging.getLogger(__name__)

SYSTEM_PROMPTS: dict[ContentType, str] = {
    ContentType.TEXT: (
        "You are a helpful, knowledgeable assistant. Answer clearly and concisely, "
        "and say so when you are unsure."
    ),
    ContentType.CODING: (
        "You are an expert software engineer. Give correct, idiomatic code in fenced "
        "code blocks and explain the important parts briefly."
    ),
    ContentType.DIAGRAM: (
        "You produce diagrams as Mermaid code in a ```mermaid fenced block, followed "
        "by a short explanation of the diagram."
    ),
    ContentType.IMAGE: "Create an image that matches the user's description.",
    ContentType.VIDEO: (
        "Video generation is not available. Describe the requested video in words "
        "and suggest a storyboard instead."
    ),
}

ALL_MODELS_FAILED_MESSAGE = "All models are currently unavailable. Please try again later."


def build_system_prompt(route: Route, instruction_text: str) -> str:
    """Per-type base prompt followed by the assembled context instructions."""
    content_type = route.type if route.allowed else ContentType.TEXT
    base = SYSTEM_PROMPTS.get(content_type, SYSTEM_PROMPTS[ContentType.TEXT])
    if instruction_text:
        return f"{base}\n\n{instruction_text}"
    return base


class StreamingDispatcher:
    """Relays a model response stream with fallback across candidates."""

    def __init__(
        self,
        registry: AdapterRegistry,
        store: ConversationStore,
        memory: EpisodicMemory | None = None,
    ):
        self.registry = registry
        self.store = store
        self.memory = memory
        self._background: set[asyncio.Task] = set()

    async def dispatch(
        self,
        route: Route,
        bundle: ContextBundle,
        user_id: str,
        conversation_id: str,
        message: str,
    ) -> AsyncIterator[StreamEvent]:
        """Stream events for one user turn, ending with the completion sentinel.

        If the consumer closes the stream early nothing more is emitted and
        nothing is committed; streamed text stays in the partial buffer only.
        """
        yield StreamEvent(event=EventType.SESSION, data={"conversation_id": conversation_id})

        system_prompt = build_system_prompt(route, bundle.instruction_text)
        succeeded = False
        try:
            for model in route.candidates:
                logger.info(f"Trying model {model} for conversation {conversation_id}")
                yield StreamEvent(event=EventType.MODEL_SELECTED, data={"model": model})

                full_response = ""
                saves: list[asyncio.Task] = []
                try:
                    adapter = self.registry.resolve(model)
                    async for chunk in adapter.stream(
                        model, system_prompt, bundle.bounded_messages, message
                    ):
                        if not chunk:
                            continue
                        full_response += chunk
                        saves.append(
                            self._spawn(self.store.save_partial(conversation_id, user_id, chunk))
                        )
                        yield StreamEvent(
                            event=EventType.TOKEN,
                            data={"content": chunk, "full_response": full_response},
                        )
                    if not full_response.strip():
                        raise ProviderError("empty response", model=model)
                except Exception as e:
                    logger.warning(f"Model {model} failed: {e}")
                    # The next candidate starts from an empty partial buffer
                    if saves:
                        await asyncio.gather(*saves, return_exceptions=True)
                    await self.store.invalidate(conversation_id, user_id, include_partial=True)
                    continue

                await self._commit(
                    route, user_id, conversation_id, message, full_response, model, adapter.output_type
                )
                succeeded = True
                break

            if not succeeded:
                logger.error(
                    f"All {len(route.candidates)} candidate models failed "
                    f"for conversation {conversation_id}"
                )
                yield error_event(ALL_MODELS_FAILED_MESSAGE, fatal=True)
        except Exception as e:
            logger.error(f"Dispatch failed for conversation {conversation_id}: {e}", exc_info=True)
            if not succeeded:
                yield error_event(ALL_MODELS_FAILED_MESSAGE, fatal=True)

        yield done_event()

    async def _commit(
        self,
        route: Route,
        user_id: str,
        conversation_id: str,
        message: str,
        response: str,
        model: str,
        output_type: str,
    ) -> None:
        """Persist the exchange, then index it in episodic memory in the background."""
        try:
            await self.store.append_exchange(
                conversation_id,
                user_id,
                message,
                response,
                model,
                metadata={"type": output_type},
            )
        except Exception as e:
            logger.error(f"Failed to save exchange for conversation {conversation_id}: {e}")
            return

        if self.memory is not None:
            self._spawn(
                self.memory.store_exchange(user_id, message, response, model, route.type.value)
            )

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        """Run a best-effort coroutine in the background."""
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"Background task failed: {exc}")

    async def drain(self) -> None:
        """Wait for outstanding background writes."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
