"""Prompt context and memory models."""

from pydantic import BaseModel, Field

from chatrelay.models.conversation import Message


class ContextBundle(BaseModel):
    """Bounded prompt context for one model call."""

    bounded_messages: list[Message] = Field(default_factory=list)
    instruction_text: str = ""


class EpisodicHit(BaseModel):
    """A past exchange retrieved by similarity."""

    query: str
    answer: str = ""
    score: float = 0.0
