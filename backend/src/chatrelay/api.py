"""FastAPI application for the chat gateway."""

import logging

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from chatrelay.cache import RedisCache
from chatrelay.config import settings
from chatrelay.db import db
from chatrelay.models import Conversation, EntitlementTier, Route
from chatrelay.providers import ModelCompleter, build_registry
from chatrelay.schemas import (
    ChatRequest,
    ConversationListResponse,
    ConversationResponse,
    PartialResponse,
    RouteRequest,
    TitleUpdate,
)
from chatrelay.services.chat import ChatService
from chatrelay.services.classifier import QueryClassifier
from chatrelay.services.context_assembler import ContextAssembler, ContextConfig
from chatrelay.services.conversation_store import ConversationStore
from chatrelay.services.dispatcher import StreamingDispatcher
from chatrelay.services.episodic_memory import create_episodic_memory
from chatrelay.services.router import Router
from chatrelay.sse import create_sse_response, relay_events

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Chatrelay API",
    description="Conversational AI gateway with multi-provider streaming",
    version="0.1.0",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    """Connect backing services and wire the chat pipeline."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Connect to PostgreSQL
    await db.connect()
    await db.ensure_tables_exist()

    cache = None
    if settings.redis_url:
        cache = RedisCache(settings.redis_url)
        await cache.connect()

    memory = create_episodic_memory(
        settings.qdrant_url,
        settings.qdrant_api_key,
        settings.openai_api_key,
        settings.qdrant_collection,
        settings.embedding_model,
    )
    registry = build_registry(settings)

    store = ConversationStore(
        db,
        cache,
        conversation_ttl=settings.conversation_cache_ttl,
        partial_ttl=settings.partial_buffer_ttl,
    )
    classifier = QueryClassifier(
        cache=cache,
        completer=ModelCompleter(registry, settings.classifier_model)
        if settings.classifier_model
        else None,
        confidence_threshold=settings.classifier_confidence_threshold,
        cache_ttl=settings.router_cache_ttl,
    )
    router = Router(
        classifier,
        max_fallbacks=settings.router_max_fallbacks,
        default_model=settings.default_model,
    )
    assembler = ContextAssembler(
        store,
        summarizer=ModelCompleter(registry, settings.summary_model),
        memory=memory,
        config=ContextConfig(
            max_tokens=settings.context_max_tokens,
            window_size=settings.context_window_size,
            summary_trigger_count=settings.context_summary_trigger,
            episodic_k=settings.context_episodic_k,
            chars_per_token=settings.context_chars_per_token,
        ),
    )
    dispatcher = StreamingDispatcher(registry, store, memory=memory)

    app.state.cache = cache
    app.state.memory = memory
    app.state.store = store
    app.state.router = router
    app.state.dispatcher = dispatcher
    app.state.chat_service = ChatService(router, store, assembler, dispatcher)
    logger.info("Chat gateway started")


@app.on_event("shutdown")
async def shutdown_event():
    """Clean up on shutdown."""
    dispatcher = getattr(app.state, "dispatcher", None)
    if dispatcher is not None:
        await dispatcher.drain()
    cache = getattr(app.state, "cache", None)
    if cache is not None:
        await cache.close()
    memory = getattr(app.state, "memory", None)
    if memory is not None:
        await memory.close()
    await db.disconnect()


# ============= Dependencies =============


def get_user_id(user_id: str | None = Header(alias="X-User-ID", default=None)) -> str:
    """Caller identity, as set by the authenticating proxy."""
    return user_id or "local-dev-user"


def get_tier(tier: str | None = Header(alias="X-Subscription-Tier", default=None)) -> EntitlementTier:
    return EntitlementTier.parse(tier)


def get_store(request: Request) -> ConversationStore:
    return request.app.state.store


def get_router(request: Request) -> Router:
    return request.app.state.router


def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service


async def get_owned_conversation(
    conversation_id: str,
    user_id: str = Depends(get_user_id),
    store: ConversationStore = Depends(get_store),
) -> Conversation:
    conversation = await store.find(conversation_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    if conversation.user_id != user_id:
        raise HTTPException(status_code=403, detail="Not your conversation")
    return conversation


# ============= Chat Endpoints =============


@app.post("/chat/stream")
async def chat_stream(
    body: ChatRequest,
    request: Request,
    user_id: str = Depends(get_user_id),
    tier: EntitlementTier = Depends(get_tier),
    chat_service: ChatService = Depends(get_chat_service),
):
    """Stream a response to a message as Server-Sent Events."""
    events = chat_service.send(user_id, body.conversation_id, body.message, tier)
    return create_sse_response(relay_events(events, request))


@app.post("/route", response_model=Route)
async def preview_route(
    body: RouteRequest,
    tier: EntitlementTier = Depends(get_tier),
    router: Router = Depends(get_router),
):
    """Show which models would answer a message."""
    return await router.decide(body.message, tier)


# ============= Conversation Endpoints =============


@app.get("/conversations", response_model=ConversationListResponse)
async def list_conversations(
    limit: int = 50,
    user_id: str = Depends(get_user_id),
    store: ConversationStore = Depends(get_store),
):
    """List user's conversations."""
    conversations = await store.list_conversations(user_id, limit=limit)
    return ConversationListResponse(
        conversations=conversations,
        total=len(conversations),
    )


@app.get("/conversations/{conversation_id}", response_model=ConversationResponse)
async def get_conversation(conversation: Conversation = Depends(get_owned_conversation)):
    """Get a conversation with its messages."""
    return ConversationResponse(
        conversation=conversation.model_copy(update={"messages": []}),
        messages=conversation.messages,
    )


@app.patch("/conversations/{conversation_id}", response_model=Conversation)
async def rename_conversation(
    body: TitleUpdate,
    conversation: Conversation = Depends(get_owned_conversation),
    store: ConversationStore = Depends(get_store),
):
    """Rename a conversation."""
    await store.update_title(conversation.id, conversation.user_id, body.title)
    return conversation.model_copy(update={"title": body.title, "messages": []})


@app.delete("/conversations/{conversation_id}")
async def delete_conversation(
    conversation: Conversation = Depends(get_owned_conversation),
    store: ConversationStore = Depends(get_store),
):
    """Delete a conversation and its messages."""
    await store.delete_conversation(conversation.id, conversation.user_id)
    return {"status": "deleted", "conversation_id": conversation.id}


@app.get("/conversations/{conversation_id}/partial", response_model=PartialResponse)
async def get_partial_response(
    conversation_id: str,
    user_id: str = Depends(get_user_id),
    store: ConversationStore = Depends(get_store),
):
    """Get the text streamed so far for an in-flight or interrupted response."""
    content = await store.get_partial(conversation_id, user_id)
    return PartialResponse(conversation_id=conversation_id, content=content)


# ============= Run =============


def run():
    """Run the application."""
    import uvicorn

    uvicorn.run(
        "chatrelay.api:app",
        host=settings.host,
        port=settings.port,
        reload=True,
    )


if __name__ == "__main__":
    run()
