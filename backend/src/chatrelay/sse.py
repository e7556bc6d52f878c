"""Server-Sent Events support for streamed chat responses."""

import json
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncGenerator, AsyncIterator

from fastapi import Request
from fastapi.responses import StreamingResponse

logger = logging.getLogger(__name__)

DONE_MARKER = "[DONE]"


class EventType(str, Enum):
    """SSE event types."""

    SESSION = "session"
    ROUTING = "routing"
    MODEL_SELECTED = "model_selected"
    TOKEN = "token"
    ERROR = "error"

    # Completion sentinel, encoded as `data: [DONE]`
    DONE = "done"


@dataclass
class StreamEvent:
    """An event in a chat response stream."""

    event: str
    data: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])

    @property
    def is_sentinel(self) -> bool:
        return self.event == EventType.DONE

    def encode(self) -> str:
        """Encode as SSE format."""
        if self.is_sentinel:
            return f"data: {DONE_MARKER}\n\n"
        event = self.event.value if isinstance(self.event, EventType) else self.event
        lines = [
            f"id: {self.id}",
            f"event: {event}",
            f"data: {json.dumps(self.data, default=str)}",
            "",  # Empty line to end the event
        ]
        return "\n".join(lines) + "\n"


def done_event() -> StreamEvent:
    """The completion sentinel."""
    return StreamEvent(event=EventType.DONE)


def error_event(message: str, fatal: bool, model: str | None = None) -> StreamEvent:
    data: dict[str, Any] = {"message": message, "fatal": fatal}
    if model:
        data["model"] = model
    return StreamEvent(event=EventType.ERROR, data=data)


async def relay_events(
    events: AsyncIterator[StreamEvent],
    request: Request | None = None,
) -> AsyncGenerator[str, None]:
    """Encode stream events, stopping early if the client goes away."""
    try:
        async for event in events:
            if request is not None and await request.is_disconnected():
                logger.info("Client disconnected, closing chat stream")
                break
            yield event.encode()
            if event.is_sentinel:
                break
    finally:
        aclose = getattr(events, "aclose", None)
        if aclose is not None:
            await aclose()


def create_sse_response(generator: AsyncGenerator[str, None]) -> StreamingResponse:
    """Create an SSE StreamingResponse."""
    return StreamingResponse(
        generator,
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )
