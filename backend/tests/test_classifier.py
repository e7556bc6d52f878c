"""Tests for query classification."""

import pytest
from conftest import FakeCompleter

from chatrelay.models import ContentType, Difficulty
from chatrelay.services.classifier import (
    QueryClassifier,
    cache_key,
    classify_locally,
    parse_llm_classification,
)


class TestLocalClassification:
    """Test the weighted pattern classifier."""

    def test_no_match_defaults_to_low_confidence_text(self):
        result = classify_locally("zebra")
        assert result.type == ContentType.TEXT
        assert result.difficulty == Difficulty.EASY
        assert result.confidence == pytest.approx(0.3)

    def test_code_block_is_hard_coding(self):
        result = classify_locally("Why does this fail?\n```python\nprint(x\n```")
        assert result.type == ContentType.CODING
        assert result.difficulty == Difficulty.HARD

    def test_image_request(self):
        result = classify_locally("Generate an image of a lighthouse at dusk")
        assert result.type == ContentType.IMAGE
        assert result.confidence >= 0.75

    def test_diagram_request(self):
        result = classify_locally("Draw a sequence diagram for the login flow")
        assert result.type == ContentType.DIAGRAM

    def test_video_request(self):
        result = classify_locally("Make a video of my cat dancing")
        assert result.type == ContentType.VIDEO

    def test_greeting_is_text(self):
        result = classify_locally("hello")
        assert result.type == ContentType.TEXT

    def test_confidence_capped(self):
        result = classify_locally("```def f(): pass``` python function debug code class")
        assert result.confidence <= 0.95


class TestParseLlmClassification:
    """Test parsing of the classifier model's reply."""

    def test_plain_json(self):
        result = parse_llm_classification('{"type": "coding", "difficulty": "hard"}')
        assert result.type == ContentType.CODING
        assert result.difficulty == Difficulty.HARD
        assert result.source == "llm"

    def test_fenced_json(self):
        result = parse_llm_classification('```json\n{"type": "diagram", "difficulty": "easy"}\n```')
        assert result.type == ContentType.DIAGRAM

    def test_invalid_type_rejected(self):
        assert parse_llm_classification('{"type": "podcast", "difficulty": "easy"}') is None

    def test_garbage_rejected(self):
        assert parse_llm_classification("I think it's code") is None


class TestQueryClassifier:
    """Test caching and the LLM fallback."""

    @pytest.mark.asyncio
    async def test_confident_local_result_skips_model(self):
        completer = FakeCompleter(reply='{"type": "text", "difficulty": "easy"}')
        classifier = QueryClassifier(completer=completer)

        result = await classifier.classify("Generate an image of a lighthouse at dusk")

        assert result.type == ContentType.IMAGE
        assert completer.prompts == []

    @pytest.mark.asyncio
    async def test_low_confidence_asks_model(self):
        completer = FakeCompleter(reply='{"type": "coding", "difficulty": "hard"}')
        classifier = QueryClassifier(completer=completer)

        result = await classifier.classify("zebra")

        assert len(completer.prompts) == 1
        assert "zebra" in completer.prompts[0]
        assert result.type == ContentType.CODING
        assert result.source == "llm"

    @pytest.mark.asyncio
    async def test_model_failure_keeps_local_result(self):
        classifier = QueryClassifier(completer=FakeCompleter(fail=True))
        result = await classifier.classify("zebra")
        assert result.type == ContentType.TEXT
        assert result.source == "local"

    @pytest.mark.asyncio
    async def test_unusable_model_output_keeps_local_result(self):
        classifier = QueryClassifier(completer=FakeCompleter(reply="no idea"))
        result = await classifier.classify("zebra")
        assert result.source == "local"

    @pytest.mark.asyncio
    async def test_results_cached_by_query_hash(self, cache):
        completer = FakeCompleter(reply='{"type": "coding", "difficulty": "easy"}')
        classifier = QueryClassifier(cache=cache, completer=completer, cache_ttl=300)

        first = await classifier.classify("zebra")
        second = await classifier.classify("zebra")

        assert len(completer.prompts) == 1
        assert cache.ttls[cache_key("zebra")] == 300
        assert cache_key("zebra").startswith("router:")
        assert second.type == first.type
        assert second.source == "cache"
