"""Google Gemini adapter."""

import logging
from typing import AsyncIterator

from google import genai
from google.genai import types

from chatrelay.models import Message
from chatrelay.providers.base import (
    ProviderError,
    ProviderFamily,
    render_transcript,
    resolve_model_id,
)

logger = logging.getLogger(__name__)


def _normalize_model_id(model: str) -> str:
    """Strip the `models/` prefix and `-latest` alias suffix."""
    model_id = resolve_model_id(model)
    if model_id.startswith("models/"):
        model_id = model_id[len("models/"):]
    if model_id.endswith("-latest"):
        model_id = model_id[: -len("-latest")]
    return model_id


class GeminiAdapter:
    """Streams from Gemini, falling back to a single non-streamed call.

    Gemini takes the whole context as one text prompt.
    """

    family = ProviderFamily.GEMINI
    output_type = "text"

    def __init__(self, api_key: str, temperature: float = 0.7, max_output_tokens: int = 2048):
        self.api_key = api_key
        self.generation_config = types.GenerateContentConfig(
            temperature=temperature,
            max_output_tokens=max_output_tokens,
        )
        self._client: genai.Client | None = None

    def _get_client(self, model: str) -> genai.Client:
        if not self.api_key:
            raise ProviderError(
                f"Gemini API key is invalid or missing - cannot use model {model}",
                model=model,
                provider=self.family.value,
            )
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def stream(
        self,
        model: str,
        system_instructions: str,
        history: list[Message],
        new_turn: str,
    ) -> AsyncIterator[str]:
        client = self._get_client(model)
        model_id = _normalize_model_id(model)
        prompt = render_transcript(system_instructions, history, new_turn)

        streamed_any = False
        try:
            response = await client.aio.models.generate_content_stream(
                model=model_id, contents=prompt, config=self.generation_config
            )
            async for chunk in response:
                piece = chunk.text
                if not piece:
                    continue
                streamed_any = True
                yield piece
        except Exception as e:
            if streamed_any:
                raise ProviderError(
                    f"Gemini stream broke mid-response: {e}",
                    model=model,
                    provider=self.family.value,
                ) from e
            logger.warning(f"Gemini streaming failed; falling back to non-streaming: {e}")

        if streamed_any:
            return

        try:
            response = await client.aio.models.generate_content(
                model=model_id, contents=prompt, config=self.generation_config
            )
            text = response.text
        except Exception as e:
            raise ProviderError(
                f"Gemini request failed: {e}", model=model, provider=self.family.value
            ) from e
        if not text:
            raise ProviderError(
                "Gemini returned empty response", model=model, provider=self.family.value
            )
        yield text
