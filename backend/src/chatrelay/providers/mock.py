"""Mock provider for development without API calls.

Streams canned, intent-dependent responses word by word. Model names
containing `fail` raise a ProviderError, so fallback chains can be exercised
end to end without real providers.
"""

import asyncio
import logging
import re
from typing import AsyncIterator

from chatrelay.models import Message
from chatrelay.providers.base import ProviderError, ProviderFamily

logger = logging.getLogger(__name__)

GREETING_PATTERNS = [
    r"^(hi|hello|hey|greetings|good\s+(morning|afternoon|evening))[\s!.,]*$",
]

CODING_PATTERNS = [
    r"```",
    r"\b(code|function|class|debug|bug|error|python|javascript|typescript|sql)\b",
]

RESPONSES = {
    "greeting": "Hello! How can I help you today?",
    "coding": (
        "Here's one way to approach it:\n\n```python\ndef solve():\n    pass\n```\n\n"
        "Fill in the body with your logic and let me know if you hit an error."
    ),
    "general": "That's a good question. Here is a short answer based on what you asked: {echo}",
}


class MockAdapter:
    """Deterministic stand-in for any provider."""

    family = ProviderFamily.MOCK
    output_type = "text"

    def __init__(self, delay: float = 0.0):
        self.delay = delay

    @staticmethod
    def _detect_intent(prompt: str) -> str:
        lower_prompt = prompt.lower().strip()

        for pattern in GREETING_PATTERNS:
            if re.search(pattern, lower_prompt, re.IGNORECASE):
                return "greeting"

        for pattern in CODING_PATTERNS:
            if re.search(pattern, lower_prompt, re.IGNORECASE):
                return "coding"

        return "general"

    async def stream(
        self,
        model: str,
        system_instructions: str,
        history: list[Message],
        new_turn: str,
    ) -> AsyncIterator[str]:
        if "fail" in model.lower():
            raise ProviderError("mock failure", model=model, provider=self.family.value)

        intent = self._detect_intent(new_turn)
        logger.info(f"Mock provider: detected intent '{intent}' for model {model}")
        text = RESPONSES[intent].format(echo=new_turn[:80])

        words = text.split(" ")
        for i, word in enumerate(words):
            if self.delay:
                await asyncio.sleep(self.delay)
            yield word if i == len(words) - 1 else f"{word} "
