"""Claude adapter using the Agent SDK."""

from typing import AsyncIterator

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ClaudeSDKError,
    ResultMessage,
    TextBlock,
    query,
)

from chatrelay.models import Message
from chatrelay.providers.base import (
    ProviderError,
    ProviderFamily,
    render_transcript,
    resolve_model_id,
)


class ClaudeAdapter:
    """Streams assistant text blocks from Claude as they arrive."""

    family = ProviderFamily.CLAUDE
    output_type = "text"

    def __init__(self, oauth_token: str):
        self.oauth_token = oauth_token

    def _options(self, model: str, system_instructions: str) -> ClaudeAgentOptions:
        return ClaudeAgentOptions(
            model=resolve_model_id(model),
            system_prompt=system_instructions or None,
            permission_mode="bypassPermissions",
            max_turns=1,
            env={"CLAUDE_CODE_OAUTH_TOKEN": self.oauth_token},
        )

    async def stream(
        self,
        model: str,
        system_instructions: str,
        history: list[Message],
        new_turn: str,
    ) -> AsyncIterator[str]:
        if not self.oauth_token:
            raise ProviderError(
                "Claude client not initialized (missing OAuth token)",
                model=model,
                provider=self.family.value,
            )

        prompt = render_transcript("", history, new_turn)
        options = self._options(model, system_instructions)

        try:
            async for msg in query(prompt=prompt, options=options):
                if isinstance(msg, AssistantMessage):
                    for block in msg.content:
                        if isinstance(block, TextBlock) and block.text:
                            yield block.text
                elif isinstance(msg, ResultMessage):
                    if msg.is_error:
                        raise ProviderError(
                            f"Claude error: {msg.result or 'Unknown error'}",
                            model=model,
                            provider=self.family.value,
                        )
        except ClaudeSDKError as e:
            raise ProviderError(
                f"Claude Agent SDK error: {e}", model=model, provider=self.family.value
            ) from e
