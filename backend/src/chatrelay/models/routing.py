"""Routing decision models."""

from enum import Enum

from pydantic import BaseModel, Field


class EntitlementTier(str, Enum):
    """Subscription level of the caller."""

    FREE = "free"
    PLUS = "plus"
    PRO = "pro"

    @classmethod
    def parse(cls, value: str | None) -> "EntitlementTier":
        """Parse a tier header value, treating unknown values as free."""
        try:
            return cls((value or "free").strip().lower())
        except ValueError:
            return cls.FREE


class ContentType(str, Enum):
    """Kind of content a query asks for."""

    TEXT = "text"
    CODING = "coding"
    IMAGE = "image"
    DIAGRAM = "diagram"
    VIDEO = "video"


class Difficulty(str, Enum):
    """Coarse query difficulty."""

    EASY = "easy"
    HARD = "hard"


class Classification(BaseModel):
    """Result of classifying a query."""

    type: ContentType = ContentType.TEXT
    difficulty: Difficulty = Difficulty.EASY
    confidence: float = 0.0
    source: str = "local"


class Route(BaseModel):
    """Ephemeral routing decision for one request."""

    type: ContentType = ContentType.TEXT
    difficulty: Difficulty = Difficulty.EASY
    primary_model: str
    fallback_models: list[str] = Field(default_factory=list)
    tier: EntitlementTier = EntitlementTier.FREE
    allowed: bool = True
    downgraded: bool = False
    source: str = Field("local", description="Where the classification came from")

    @property
    def candidates(self) -> list[str]:
        """Primary followed by fallbacks, in order, without duplicates."""
        seen: set[str] = set()
        ordered: list[str] = []
        for model in [self.primary_model, *self.fallback_models]:
            if model and model not in seen:
                seen.add(model)
                ordered.append(model)
        return ordered
