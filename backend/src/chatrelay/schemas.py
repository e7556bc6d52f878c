"""API-specific request and response models."""

from pydantic import BaseModel, Field

from chatrelay.models import Conversation, Message


class ConversationResponse(BaseModel):
    """Response model for conversation with messages."""

    conversation: Conversation
    messages: list[Message] = Field(default_factory=list)


class ConversationListResponse(BaseModel):
    """Response model for list of conversations."""

    conversations: list[Conversation]
    total: int


class ChatRequest(BaseModel):
    """Request model for sending a message."""

    message: str = Field(..., min_length=1, description="User message")
    conversation_id: str | None = Field(None, description="Existing conversation ID")


class RouteRequest(BaseModel):
    """Request model for a routing preview."""

    message: str = Field(..., min_length=1, description="Query to route")


class TitleUpdate(BaseModel):
    """Request model for renaming a conversation."""

    title: str = Field(..., min_length=1, max_length=200)


class PartialResponse(BaseModel):
    """In-flight response text for a conversation."""

    conversation_id: str
    content: str | None = None
