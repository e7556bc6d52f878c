"""Chat service - the inbound send operation."""

import logging
from typing import AsyncIterator

from chatrelay.models import EntitlementTier
from chatrelay.services.context_assembler import ContextAssembler
from chatrelay.services.conversation_store import ConversationStore
from chatrelay.services.dispatcher import StreamingDispatcher
from chatrelay.services.router import Router
from chatrelay.sse import EventType, StreamEvent, done_event, error_event

logger = logging.getLogger(__name__)

SESSION_FAILED_MESSAGE = "Could not open the conversation. Please try again."


class ChatService:
    """Routes a message, resolves its conversation and streams the answer."""

    def __init__(
        self,
        router: Router,
        store: ConversationStore,
        assembler: ContextAssembler,
        dispatcher: StreamingDispatcher,
    ):
        self.router = router
        self.store = store
        self.assembler = assembler
        self.dispatcher = dispatcher

    async def send(
        self,
        user_id: str,
        conversation_id: str | None,
        message: str,
        tier: EntitlementTier,
    ) -> AsyncIterator[StreamEvent]:
        route = await self.router.decide(message, tier)
        yield StreamEvent(event=EventType.ROUTING, data=route.model_dump(mode="json"))

        try:
            conversation = await self.store.get(conversation_id, user_id)
        except Exception as e:
            logger.error(f"Failed to resolve conversation {conversation_id} for {user_id}: {e}")
            yield error_event(SESSION_FAILED_MESSAGE, fatal=True)
            yield done_event()
            return

        bundle = await self.assembler.build(
            user_id, conversation.id, message, route.primary_model
        )

        events = self.dispatcher.dispatch(route, bundle, user_id, conversation.id, message)
        try:
            async for event in events:
                yield event
        finally:
            await events.aclose()
