"""Adapters for OpenAI and OpenAI-compatible vendor endpoints."""

import logging
from typing import AsyncIterator

import openai
from openai import AsyncOpenAI

from chatrelay.models import Message
from chatrelay.providers.base import (
    ProviderError,
    ProviderFamily,
    resolve_model_id,
    to_chat_messages,
)

logger = logging.getLogger(__name__)


class OpenAICompatibleAdapter:
    """Streams chat completions from OpenAI or any vendor speaking its API.

    DeepSeek, Mistral, xAI, Groq and Qwen differ only in base URL and key.
    """

    output_type = "text"

    def __init__(
        self,
        family: ProviderFamily,
        api_key: str,
        base_url: str | None = None,
        temperature: float = 0.7,
    ):
        self.family = family
        self.api_key = api_key
        self.base_url = base_url
        self.temperature = temperature
        self._client: AsyncOpenAI | None = None

    def _get_client(self, model: str) -> AsyncOpenAI:
        """Get or create the client, failing fast without credentials."""
        if not self.api_key:
            raise ProviderError(
                f"{self.family.value} client not initialized (missing API key)",
                model=model,
                provider=self.family.value,
            )
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    async def stream(
        self,
        model: str,
        system_instructions: str,
        history: list[Message],
        new_turn: str,
    ) -> AsyncIterator[str]:
        client = self._get_client(model)
        api_model = resolve_model_id(model)
        messages = to_chat_messages(system_instructions, history, new_turn)

        try:
            stream = await client.chat.completions.create(
                model=api_model,
                messages=messages,
                stream=True,
                temperature=self.temperature,
            )
            async for chunk in stream:
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if content:
                    yield content
        except openai.OpenAIError as e:
            raise ProviderError(
                f"{self.family.value} request failed: {e}",
                model=model,
                provider=self.family.value,
            ) from e


class OpenAIImageAdapter:
    """Generates an image and streams its URL as a single chunk."""

    family = ProviderFamily.OPENAI_IMAGE
    output_type = "image"

    def __init__(self, api_key: str, size: str = "1024x1024"):
        self.api_key = api_key
        self.size = size
        self._client: AsyncOpenAI | None = None

    async def stream(
        self,
        model: str,
        system_instructions: str,
        history: list[Message],
        new_turn: str,
    ) -> AsyncIterator[str]:
        if not self.api_key:
            raise ProviderError(
                "openai image client not initialized (missing API key)",
                model=model,
                provider=self.family.value,
            )
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key)

        logger.info(f"Generating image with {model}")
        try:
            response = await self._client.images.generate(
                model=resolve_model_id(model),
                prompt=new_turn,
                n=1,
                size=self.size,
            )
        except openai.OpenAIError as e:
            raise ProviderError(
                f"image generation failed: {e}", model=model, provider=self.family.value
            ) from e

        url = response.data[0].url if response.data else None
        if not url:
            raise ProviderError(
                "image generation returned no URL", model=model, provider=self.family.value
            )
        yield url
