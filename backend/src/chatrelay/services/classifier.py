"""Query classification - local weighted patterns with an optional LLM fallback."""

import hashlib
import json
import logging
import re
from dataclasses import dataclass
from typing import Protocol

from pydantic import ValidationError

from chatrelay.cache import TTLCache
from chatrelay.models import Classification, ContentType, Difficulty

logger = logging.getLogger(__name__)


class Completer(Protocol):
    async def complete(self, prompt: str) -> str: ...


@dataclass(frozen=True)
class Pattern:
    regex: re.Pattern
    weight: float
    difficulty: Difficulty


def _p(pattern: str, weight: float, difficulty: str = "easy") -> Pattern:
    return Pattern(re.compile(pattern, re.IGNORECASE), weight, Difficulty(difficulty))


PATTERNS: dict[ContentType, list[Pattern]] = {
    ContentType.CODING: [
        _p(r"```[\s\S]*```", 0.9, "hard"),
        _p(r"\b(function|class|const|let|var|def|import|export)\s*[\(\{\=]", 0.85),
        _p(
            r"\b(javascript|python|java|typescript|react|node\.?js|express|sql|html|css|php|ruby|golang|rust|c\+\+)\b",
            0.8,
        ),
        _p(
            r"\b(debug|fix|implement|create|build|develop|code|program)\s+(a|an|the)?\s*"
            r"(function|class|component|api|app|website|database)",
            0.85,
            "hard",
        ),
        _p(r"\b(how\s+to\s+)?(code|program|implement|develop)\b", 0.7),
        _p(r"\b(error|bug|exception|crash|fail|broken)\b.*\b(fix|solve|debug|resolve)", 0.8, "hard"),
        _p(r"\b(syntax\s+error|runtime\s+error|compilation\s+error)", 0.9, "hard"),
        _p(r"\b(algorithm|data\s+structure|optimization|scalability)", 0.75, "hard"),
        _p(r"\b(api|endpoint|database|query|schema|migration)\b", 0.7),
    ],
    ContentType.IMAGE: [
        _p(
            r"\b(create|generate|make|draw|design)\s+(an?\s+)?"
            r"(image|picture|illustration|artwork|logo|icon)",
            0.9,
        ),
        _p(r"\b(show|display)\s+me\s+(an?\s+)?(image|picture|photo)", 0.85),
        _p(r"\b(visual|graphic|artwork|painting|sketch|drawing|render)", 0.75),
        _p(r"\b(banner|poster|thumbnail|avatar|profile\s+picture)", 0.8),
        _p(r"\b(realistic|cartoon|anime|abstract|minimalist|vintage)\s+(style|art|image)", 0.8),
        _p(r"\bin\s+the\s+style\s+of", 0.75),
    ],
    ContentType.DIAGRAM: [
        _p(r"\b(diagram|flowchart|flow\s+chart|sequence\s+diagram|er\s+diagram|uml)\b", 0.9),
        _p(r"\b(mermaid|plantuml|graphviz)\b", 0.9),
        _p(r"\b(chart|graph|mind\s*map|org\s+chart)\s+(of|for|showing)", 0.8),
        _p(r"\b(architecture|system)\s+(diagram|overview|layout)", 0.85, "hard"),
    ],
    ContentType.TEXT: [
        _p(r"^(what|how|why|when|where|who|which|can\s+you)\s+", 0.7),
        _p(r"\b(explain|describe|tell\s+me|help\s+me\s+understand)", 0.75),
        _p(r"\b(analyze|compare|contrast|evaluate|assess|review)", 0.8, "hard"),
        _p(r"\b(pros\s+and\s+cons|advantages\s+and\s+disadvantages|benefits\s+and\s+drawbacks)", 0.75, "hard"),
        _p(r"\b(write|compose|draft)\s+(a|an|the)?\s*(letter|email|essay|article|report|summary)", 0.8, "hard"),
        _p(r"\b(improve|edit|revise|proofread)\s+(this|my)", 0.75),
        _p(r"^(hi|hello|hey|good\s+(morning|afternoon|evening))", 0.9),
        _p(r"\b(thank\s+you|thanks|please|sorry)", 0.6),
    ],
    ContentType.VIDEO: [
        _p(r"\b(create|generate|make)\s+(a|an|the)?\s*(video|animation|movie|clip)", 0.9, "hard"),
        _p(r"\b(video\s+editing|motion\s+graphics)", 0.85, "hard"),
    ],
}

KEYWORDS: dict[ContentType, list[str]] = {
    ContentType.CODING: ["code", "function", "class", "debug", "implement", "programming", "software"],
    ContentType.IMAGE: ["image", "picture", "visual", "draw", "artwork"],
    ContentType.DIAGRAM: ["diagram", "flowchart", "chart", "uml"],
    ContentType.TEXT: ["explain", "help", "question", "answer", "information", "advice"],
    ContentType.VIDEO: ["video", "animation", "movie", "clip"],
}

KEYWORD_WEIGHT = 0.1
NO_MATCH_CONFIDENCE = 0.3

CLASSIFIER_PROMPT = """Classify the user query below.
Reply with JSON only: {{"type": "text|coding|image|diagram|video", "difficulty": "easy|hard"}}

Query:
{query}"""


def cache_key(query: str) -> str:
    digest = hashlib.md5(query.strip().lower().encode("utf-8")).hexdigest()
    return f"router:{digest}"


def classify_locally(query: str) -> Classification:
    """Score each content type by matched patterns and keywords."""
    normalized = query.lower().strip()
    scores: dict[ContentType, float] = {}
    difficulty = Difficulty.EASY

    for content_type, patterns in PATTERNS.items():
        score = 0.0
        for pattern in patterns:
            if pattern.regex.search(query):
                score += pattern.weight
                if pattern.difficulty == Difficulty.HARD:
                    difficulty = Difficulty.HARD
        keyword_hits = sum(1 for keyword in KEYWORDS[content_type] if keyword in normalized)
        score += keyword_hits * KEYWORD_WEIGHT
        if score > 0:
            scores[content_type] = min(score, 1.0)

    if not scores:
        return Classification(confidence=NO_MATCH_CONFIDENCE)

    ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
    primary_type, primary_score = ranked[0]
    secondary_score = ranked[1][1] if len(ranked) > 1 else 0.0
    confidence = min(primary_score * 0.7 + (primary_score - secondary_score) * 0.3, 0.95)

    return Classification(
        type=primary_type,
        difficulty=difficulty,
        confidence=round(confidence, 4),
        source="local",
    )


def parse_llm_classification(raw: str) -> Classification | None:
    """Parse the classifier model's JSON reply. Returns None if unusable."""
    text = raw.strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        data = json.loads(text[start : end + 1])
        return Classification(
            type=data.get("type", "text"),
            difficulty=data.get("difficulty", "easy"),
            confidence=0.95,
            source="llm",
        )
    except (json.JSONDecodeError, ValidationError, AttributeError):
        return None


class QueryClassifier:
    """Classifies queries, caching results by query hash."""

    def __init__(
        self,
        cache: TTLCache | None = None,
        completer: Completer | None = None,
        confidence_threshold: float = 0.75,
        cache_ttl: int = 300,
    ):
        self.cache = cache
        self.completer = completer
        self.confidence_threshold = confidence_threshold
        self.cache_ttl = cache_ttl

    async def classify(self, query: str) -> Classification:
        key = cache_key(query)
        if self.cache:
            cached = await self.cache.get(key)
            if cached is not None:
                try:
                    return Classification.model_validate({**cached, "source": "cache"})
                except (ValidationError, TypeError):
                    logger.warning(f"Ignoring malformed classification cache entry {key}")

        result = classify_locally(query)
        if result.confidence < self.confidence_threshold and self.completer is not None:
            logger.info(f"Low local confidence ({result.confidence:.2f}), asking classifier model")
            result = await self._classify_with_model(query, result)
        else:
            logger.info(
                f"Local classification: {result.type.value}/{result.difficulty.value} "
                f"(confidence: {result.confidence:.2f})"
            )

        if self.cache:
            await self.cache.set(key, result.model_dump(mode="json"), self.cache_ttl)
        return result

    async def _classify_with_model(self, query: str, local: Classification) -> Classification:
        try:
            raw = await self.completer.complete(CLASSIFIER_PROMPT.format(query=query))
        except Exception as e:
            logger.warning(f"Classifier model failed, keeping local result: {e}")
            return local
        parsed = parse_llm_classification(raw)
        if parsed is None:
            logger.warning(f"Classifier model returned unusable output: {raw[:100]!r}")
            return local
        return parsed
