"""Context assembly - bounded prompt context from several memory tiers.

Combines the rolling window of recent messages, the conversation's rolling
summary and episodic memory hits, then trims the window to the token budget.
Every memory tier is advisory: a failing tier contributes nothing.
"""

import logging
import math
from dataclasses import dataclass
from typing import Protocol

from chatrelay.models import ContextBundle, EpisodicHit, Message
from chatrelay.services.conversation_store import ConversationStore
from chatrelay.services.episodic_memory import EpisodicMemory

logger = logging.getLogger(__name__)


class Summarizer(Protocol):
    async def complete(self, prompt: str) -> str: ...


@dataclass
class ContextConfig:
    """Limits for context assembly."""

    max_tokens: int = 4000
    window_size: int = 6
    summary_trigger_count: int = 6
    episodic_k: int = 5
    chars_per_token: int = 4


SUMMARY_PROMPT = """You are a helpful assistant that summarizes conversation progress.
Update the following summary with the new messages provided.
Keep the summary concise, focusing on key facts, user preferences, and decisions.
Do NOT output "Here is the summary" or similar. Just the summary text.

Old Summary:
{old_summary}

New Messages:
{new_messages}

Updated Summary:"""

SUMMARY_HEADER = "Previous conversation summary:"
EPISODIC_HEADER = "Relevant past details:"


class ContextAssembler:
    """Builds the ContextBundle for one model call."""

    def __init__(
        self,
        store: ConversationStore,
        summarizer: Summarizer | None = None,
        memory: EpisodicMemory | None = None,
        config: ContextConfig | None = None,
    ):
        self.store = store
        self.summarizer = summarizer
        self.memory = memory
        self.config = config or ContextConfig()

    async def build(
        self, user_id: str, conversation_id: str, new_message: str, target_model: str
    ) -> ContextBundle:
        """Assemble bounded context. Never raises."""
        all_messages: list[Message] = []
        try:
            summary = None
            try:
                conversation = await self.store.get(conversation_id, user_id)
                all_messages = conversation.messages
                summary = conversation.summary
            except Exception as e:
                logger.error(f"Failed to load conversation {conversation_id}: {e}")

            window = self.rolling_window(all_messages)
            summary = await self.refresh_summary(conversation_id, all_messages, summary)
            episodic = await self.retrieve_episodic(user_id, new_message)

            sections = []
            if summary:
                sections.append(f"{SUMMARY_HEADER} {summary}")
            if episodic:
                sections.append(f"{EPISODIC_HEADER} {episodic}")

            bounded = self.enforce_budget(window)
            logger.info(
                f"Context for {target_model}: {len(all_messages)} total messages, "
                f"{len(bounded)} in window, summary={bool(summary)}, episodic={bool(episodic)}"
            )
            return ContextBundle(bounded_messages=bounded, instruction_text="\n\n".join(sections))
        except Exception as e:
            logger.error(f"Context assembly failed, using rolling window only: {e}", exc_info=True)
            return ContextBundle(
                bounded_messages=self.enforce_budget(self.rolling_window(all_messages)),
                instruction_text="",
            )

    # ============= Short-term memory =============

    def rolling_window(self, messages: list[Message]) -> list[Message]:
        """Last `window_size` non-system messages."""
        chat_messages = [m for m in messages if m.role != "system"]
        if self.config.window_size <= 0:
            return []
        return chat_messages[-self.config.window_size :]

    # ============= Rolling summary =============

    def should_summarize(self, message_count: int) -> bool:
        trigger = self.config.summary_trigger_count
        return message_count > 0 and message_count % trigger == 0

    async def refresh_summary(
        self, conversation_id: str, messages: list[Message], current: str | None
    ) -> str | None:
        """Regenerate the summary when the cadence fires; keep the old one otherwise."""
        if self.summarizer is None or not self.should_summarize(len(messages)):
            return current or None

        logger.info(
            f"Regenerating summary for conversation {conversation_id} at {len(messages)} messages"
        )
        recent = messages[-self.config.summary_trigger_count :]
        prompt = SUMMARY_PROMPT.format(
            old_summary=current or "None",
            new_messages="\n".join(f"{m.role}: {m.content}" for m in recent),
        )
        try:
            new_summary = (await self.summarizer.complete(prompt)).strip()
            if not new_summary:
                return current or None
            await self.store.rewrite_summary(conversation_id, new_summary)
            return new_summary
        except Exception as e:
            logger.warning(f"Summary regeneration failed for {conversation_id}: {e}")
            return current or None

    # ============= Episodic memory =============

    async def retrieve_episodic(self, user_id: str, query: str) -> str:
        if self.memory is None or not query:
            return ""
        try:
            hits = await self.memory.search(user_id, query, self.config.episodic_k)
        except Exception as e:
            logger.error(f"Episodic memory search failed: {e}")
            return ""
        return self.format_episodic(hits)

    @staticmethod
    def format_episodic(hits: list[EpisodicHit]) -> str:
        return "\n\n".join(f"Q: {hit.query}\nA: {hit.answer}" for hit in hits)

    # ============= Token budget =============

    def estimate_tokens(self, text: str) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / self.config.chars_per_token)

    def enforce_budget(self, messages: list[Message]) -> list[Message]:
        """Keep the longest newest suffix that fits in `max_tokens`."""
        total = 0
        start = len(messages)
        for i in range(len(messages) - 1, -1, -1):
            cost = self.estimate_tokens(messages[i].content)
            if total + cost > self.config.max_tokens:
                break
            total += cost
            start = i
        return messages[start:]
