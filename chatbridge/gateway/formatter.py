"""Chat-completion envelopes and SSE framing for backend text."""

from __future__ import annotations

import json

from chatbridge.core.types import (
    ChatCompletionChoice,
    ChatCompletionChoiceMessage,
    ChatCompletionResponse,
)

SSE_MEDIA_TYPE = "text/event-stream; charset=utf-8"
DONE_FRAME = "data: [DONE]\n\n"


def delta_envelope(content: str) -> ChatCompletionResponse:
    """Envelope for a streamed frame; ``delta`` and ``message`` carry the same text."""
    message = ChatCompletionChoiceMessage(content=content)
    return ChatCompletionResponse(
        choices=[ChatCompletionChoice(delta=message, message=message)],
    )


def message_envelope(content: str) -> ChatCompletionResponse:
    """Envelope for the aggregate, non-streamed reply."""
    return ChatCompletionResponse(
        choices=[ChatCompletionChoice(message=ChatCompletionChoiceMessage(content=content))],
    )


def sse_frame(envelope: ChatCompletionResponse) -> str:
    payload = envelope.model_dump(mode="json", exclude_none=True)
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def delta_frame(content: str) -> str:
    return sse_frame(delta_envelope(content))
