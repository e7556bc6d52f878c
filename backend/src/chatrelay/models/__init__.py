"""Shared Pydantic models for chatrelay."""

from chatrelay.models.context import ContextBundle, EpisodicHit
from chatrelay.models.conversation import Conversation, Message, MessageRole
from chatrelay.models.routing import (
    Classification,
    ContentType,
    Difficulty,
    EntitlementTier,
    Route,
)

__all__ = [
    "Conversation",
    "Message",
    "MessageRole",
    # Routing models
    "Classification",
    "ContentType",
    "Difficulty",
    "EntitlementTier",
    "Route",
    # Context models
    "ContextBundle",
    "EpisodicHit",
]
