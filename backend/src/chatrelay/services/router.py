"""Model router - picks a primary model and fallbacks for a query.

Routing combines the query classification with the caller's entitlement
tier. Requests for a capability the tier doesn't include are served by a text
model instead of failing.
"""

import logging

from chatrelay.models import (
    Classification,
    ContentType,
    Difficulty,
    EntitlementTier,
    Route,
)
from chatrelay.services.classifier import QueryClassifier

logger = logging.getLogger(__name__)

FREE_MODELS = [
    "gemini-2.5-flash",
    "gpt-4o-mini",
    "deepseek-v3.2",
    "qwen",
    "mistral-small",
    "codestral",
    "llama-3.1-8b",
]

PLUS_MODELS = ["gpt-4o", "gemini-pro", "claude-sonnet", *FREE_MODELS]

PRO_MODELS = ["grok-4", "claude-opus", *PLUS_MODELS]

TIER_MODELS: dict[EntitlementTier, list[str]] = {
    EntitlementTier.FREE: FREE_MODELS,
    EntitlementTier.PLUS: PLUS_MODELS,
    EntitlementTier.PRO: PRO_MODELS,
}

IMAGE_MODELS = ["dall-e-3"]

PREMIUM_MODELS = {"gpt-4o", "gemini-pro", "claude-sonnet", "grok-4", "claude-opus"}

# Preferred order per content type; models not listed keep their tier order
TYPE_PREFERENCES: dict[ContentType, list[str]] = {
    ContentType.TEXT: ["gemini-2.5-flash", "gpt-4o-mini", "mistral-small", "gpt-4o", "gemini-pro"],
    ContentType.CODING: ["codestral", "deepseek-v3.2", "qwen", "claude-sonnet", "gpt-4o", "gpt-4o-mini"],
    ContentType.DIAGRAM: ["gpt-4o", "gemini-pro", "gpt-4o-mini", "gemini-2.5-flash"],
}

# Minimum tier for each non-text capability; None means unavailable at every tier
CAPABILITY_TIERS: dict[ContentType, EntitlementTier | None] = {
    ContentType.IMAGE: EntitlementTier.PRO,
    ContentType.DIAGRAM: EntitlementTier.PLUS,
    ContentType.VIDEO: None,
}

TIER_RANK = {EntitlementTier.FREE: 0, EntitlementTier.PLUS: 1, EntitlementTier.PRO: 2}

DEFAULT_MODEL = FREE_MODELS[0]


def default_route(tier: EntitlementTier = EntitlementTier.FREE, model: str = DEFAULT_MODEL) -> Route:
    """The route used when routing itself fails."""
    return Route(
        type=ContentType.TEXT,
        difficulty=Difficulty.EASY,
        primary_model=model,
        fallback_models=[],
        tier=tier,
        source="default",
    )


def is_capability_allowed(content_type: ContentType, tier: EntitlementTier) -> bool:
    if content_type not in CAPABILITY_TIERS:
        return True
    required = CAPABILITY_TIERS[content_type]
    if required is None:
        return False
    return TIER_RANK[tier] >= TIER_RANK[required]


def rank_models(content_type: ContentType, difficulty: Difficulty, tier: EntitlementTier) -> list[str]:
    """Order the tier's text models for a content type and difficulty."""
    eligible = TIER_MODELS[tier]
    preferred = [m for m in TYPE_PREFERENCES.get(content_type, TYPE_PREFERENCES[ContentType.TEXT]) if m in eligible]
    ranked = preferred + [m for m in eligible if m not in preferred]

    if difficulty == Difficulty.HARD:
        premium = [m for m in ranked if m in PREMIUM_MODELS]
        ranked = premium + [m for m in ranked if m not in PREMIUM_MODELS]
    return ranked


def _dedupe(models: list[str]) -> list[str]:
    seen: set[str] = set()
    return [m for m in models if not (m in seen or seen.add(m))]


class Router:
    """Classifies a query and decides which models should answer it."""

    def __init__(
        self,
        classifier: QueryClassifier,
        max_fallbacks: int | None = None,
        default_model: str = DEFAULT_MODEL,
    ):
        self.classifier = classifier
        self.max_fallbacks = max_fallbacks
        self.default_model = default_model

    async def decide(self, query: str, tier: EntitlementTier) -> Route:
        """Pick the route for a query. Never raises."""
        try:
            classification = await self.classifier.classify(query)
            route = self.build_route(classification, tier)
        except Exception as e:
            logger.error(f"Routing failed, using default route: {e}", exc_info=True)
            return default_route(tier, self.default_model)

        logger.info(
            f"Routed {route.type.value}/{route.difficulty.value} query for {tier.value} tier "
            f"to {route.primary_model} (fallbacks={route.fallback_models}, "
            f"allowed={route.allowed})"
        )
        return route

    def build_route(self, classification: Classification, tier: EntitlementTier) -> Route:
        content_type = classification.type
        allowed = is_capability_allowed(content_type, tier)

        if not allowed:
            logger.info(f"{content_type.value} not available on {tier.value} tier, downgrading to text")
            candidates = rank_models(ContentType.TEXT, classification.difficulty, tier)
        elif content_type == ContentType.IMAGE:
            candidates = IMAGE_MODELS + rank_models(ContentType.TEXT, classification.difficulty, tier)
        else:
            candidates = rank_models(content_type, classification.difficulty, tier)

        candidates = _dedupe(candidates)
        primary, fallbacks = candidates[0], candidates[1:]
        if self.max_fallbacks is not None:
            fallbacks = fallbacks[: self.max_fallbacks]

        return Route(
            type=content_type,
            difficulty=classification.difficulty,
            primary_model=primary,
            fallback_models=fallbacks,
            tier=tier,
            allowed=allowed,
            downgraded=not allowed,
            source=classification.source,
        )
