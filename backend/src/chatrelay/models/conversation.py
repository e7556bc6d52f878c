"""Conversation and message models."""

import uuid
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

MessageRole = Literal["user", "assistant", "system"]


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Message(BaseModel):
    """A single message in a conversation."""

    id: str = Field(default_factory=_uuid, description="Unique message ID")
    role: MessageRole = Field(..., description="Message role")
    content: str = Field(..., description="Message content")
    model: str | None = Field(None, description="Model that produced the message")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Free-form metadata, e.g. type")
    created_at: datetime = Field(default_factory=_now, description="Creation timestamp")


class Conversation(BaseModel):
    """A conversation thread."""

    id: str = Field(default_factory=_uuid, description="Unique conversation ID")
    user_id: str = Field(..., description="Owner user ID")
    title: str = Field("New Chat", description="Conversation title")
    summary: str | None = Field(None, description="Rolling compressed summary of older turns")
    messages: list[Message] = Field(default_factory=list, description="Ordered messages")
    message_count: int = Field(0, description="Total persisted message count")
    created_at: datetime = Field(default_factory=_now, description="Creation timestamp")
    updated_at: datetime = Field(default_factory=_now, description="Last update timestamp")
