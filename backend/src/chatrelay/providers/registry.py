"""Provider registry - resolves model names to streaming adapters."""

import logging

from chatrelay.config import Settings
from chatrelay.providers.base import (
    ProviderError,
    ProviderFamily,
    StreamingAdapter,
    classify_model,
)
from chatrelay.providers.claude import ClaudeAdapter
from chatrelay.providers.gemini import GeminiAdapter
from chatrelay.providers.mock import MockAdapter
from chatrelay.providers.openai_compat import OpenAICompatibleAdapter, OpenAIImageAdapter

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Maps each provider family to exactly one adapter."""

    def __init__(
        self,
        adapters: dict[ProviderFamily, StreamingAdapter],
        force_family: ProviderFamily | None = None,
    ):
        self._adapters = dict(adapters)
        self.force_family = force_family

    def family_for(self, model: str) -> ProviderFamily:
        return self.force_family or classify_model(model)

    def resolve(self, model: str) -> StreamingAdapter:
        """Get the adapter for a model. Raises ProviderError if none is registered."""
        family = self.family_for(model)
        adapter = self._adapters.get(family)
        if adapter is None:
            raise ProviderError(
                f"No adapter registered for provider family {family.value}",
                model=model,
                provider=family.value,
            )
        return adapter

    async def complete(self, model: str, prompt: str, system_instructions: str = "") -> str:
        """Run a one-shot completion and return the full text."""
        adapter = self.resolve(model)
        collected: list[str] = []
        async for chunk in adapter.stream(model, system_instructions, [], prompt):
            collected.append(chunk)
        return "".join(collected)


class ModelCompleter:
    """`complete(prompt) -> text` bound to one model, for internal cheap calls."""

    def __init__(self, registry: AdapterRegistry, model: str):
        self.registry = registry
        self.model = model

    async def complete(self, prompt: str) -> str:
        return await self.registry.complete(self.model, prompt)


def build_registry(settings: Settings) -> AdapterRegistry:
    """Create adapters for every provider family from settings."""

    def compatible(family: ProviderFamily, api_key: str, base_url: str | None = None):
        return OpenAICompatibleAdapter(
            family, api_key, base_url=base_url, temperature=settings.temperature
        )

    adapters: dict[ProviderFamily, StreamingAdapter] = {
        ProviderFamily.MOCK: MockAdapter(),
        ProviderFamily.GEMINI: GeminiAdapter(
            settings.gemini_api_key,
            temperature=settings.temperature,
            max_output_tokens=settings.max_output_tokens,
        ),
        ProviderFamily.CLAUDE: ClaudeAdapter(settings.claude_oauth_token),
        ProviderFamily.OPENAI_IMAGE: OpenAIImageAdapter(settings.openai_api_key),
        ProviderFamily.OPENAI: compatible(ProviderFamily.OPENAI, settings.openai_api_key),
        ProviderFamily.DEEPSEEK: compatible(
            ProviderFamily.DEEPSEEK, settings.deepseek_api_key, settings.deepseek_base_url
        ),
        ProviderFamily.MISTRAL: compatible(
            ProviderFamily.MISTRAL, settings.mistral_api_key, settings.mistral_base_url
        ),
        ProviderFamily.XAI: compatible(ProviderFamily.XAI, settings.xai_api_key, settings.xai_base_url),
        ProviderFamily.GROQ: compatible(
            ProviderFamily.GROQ, settings.groq_api_key, settings.groq_base_url
        ),
        ProviderFamily.QWEN: compatible(
            ProviderFamily.QWEN, settings.qwen_api_key, settings.qwen_base_url
        ),
    }

    for family, key in (
        (ProviderFamily.OPENAI, settings.openai_api_key),
        (ProviderFamily.GEMINI, settings.gemini_api_key),
        (ProviderFamily.CLAUDE, settings.claude_oauth_token),
    ):
        if not key:
            logger.warning(f"{family.value} credentials missing; its models will fail over")

    force_family = ProviderFamily.MOCK if settings.use_mock_ai else None
    if force_family:
        logger.info("Mock AI enabled: all models route to the mock provider")
    return AdapterRegistry(adapters, force_family=force_family)
