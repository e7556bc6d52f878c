"""Streaming adapter interface and model-name classification."""

from enum import Enum
from typing import AsyncIterator, Protocol

from chatrelay.models import Message


class ProviderError(Exception):
    """A provider could not produce a completion.

    Raised for missing credentials, transport or API failures and empty
    output. The dispatcher treats it as a per-candidate failure.
    """

    def __init__(self, message: str, model: str | None = None, provider: str | None = None):
        super().__init__(message)
        self.model = model
        self.provider = provider


class ProviderFamily(str, Enum):
    """Closed set of upstream provider families."""

    MOCK = "mock"
    GEMINI = "gemini"
    CLAUDE = "claude"
    OPENAI_IMAGE = "openai_image"
    DEEPSEEK = "deepseek"
    MISTRAL = "mistral"
    XAI = "xai"
    GROQ = "groq"
    QWEN = "qwen"
    OPENAI = "openai"


class StreamingAdapter(Protocol):
    """Streams a completion for one provider family."""

    family: ProviderFamily
    output_type: str  # "text" or "image"

    def stream(
        self,
        model: str,
        system_instructions: str,
        history: list[Message],
        new_turn: str,
    ) -> AsyncIterator[str]:
        """Yield incremental text chunks. Raises ProviderError on failure."""
        ...


# (family, name prefixes, name fragments), checked in order; first match wins
FAMILY_RULES: tuple[tuple[ProviderFamily, tuple[str, ...], tuple[str, ...]], ...] = (
    (ProviderFamily.MOCK, ("mock-",), ()),
    (ProviderFamily.GEMINI, ("gemini", "models/gemini"), ()),
    (ProviderFamily.CLAUDE, ("claude",), ()),
    (ProviderFamily.OPENAI_IMAGE, ("dall-e", "gpt-image"), ()),
    (ProviderFamily.DEEPSEEK, (), ("deepseek",)),
    (ProviderFamily.MISTRAL, (), ("mistral", "mixtral", "codestral")),
    (ProviderFamily.XAI, (), ("grok",)),
    (ProviderFamily.GROQ, (), ("llama", "groq")),
    (ProviderFamily.QWEN, (), ("qwen",)),
)

# Internal model names -> provider API model IDs
MODEL_ID_MAPPING: dict[str, str] = {
    "deepseek-v3.2": "deepseek-chat",
    "codestral": "codestral-latest",
    "mistral-small": "mistral-small-2506",
    "llama-3.1-8b": "llama-3.1-8b-instant",
    "grok-4": "grok-beta",
    "qwen": "qwen-turbo",
    "gemini-pro": "gemini-2.5-pro",
    "claude-haiku": "haiku",
    "claude-sonnet": "sonnet",
    "claude-opus": "opus",
}


def classify_model(model: str) -> ProviderFamily:
    """Map a model name to its provider family."""
    name = model.strip().lower()
    for family, prefixes, fragments in FAMILY_RULES:
        if prefixes and name.startswith(prefixes):
            return family
        if any(fragment in name for fragment in fragments):
            return family
    return ProviderFamily.OPENAI


def resolve_model_id(model: str) -> str:
    """Translate an internal model name to the provider's API ID."""
    return MODEL_ID_MAPPING.get(model, model)


def to_chat_messages(
    system_instructions: str, history: list[Message], new_turn: str
) -> list[dict[str, str]]:
    """Build a chat-completions message list."""
    messages = []
    if system_instructions:
        messages.append({"role": "system", "content": system_instructions})
    for msg in history:
        if msg.role == "system":
            continue
        messages.append({"role": msg.role, "content": msg.content})
    messages.append({"role": "user", "content": new_turn})
    return messages


def render_transcript(system_instructions: str, history: list[Message], new_turn: str) -> str:
    """Flatten context into a single prompt for providers that take plain text."""
    lines = []
    for msg in history:
        if msg.role == "system":
            continue
        role = "Assistant" if msg.role == "assistant" else "User"
        lines.append(f"{role}: {msg.content}")
    lines.append(f"User: {new_turn}")

    transcript = "\n".join(lines)
    if system_instructions:
        return f"{system_instructions}\n\n{transcript}"
    return transcript
