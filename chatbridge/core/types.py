"""Shared Pydantic models for chatbridge.

Inbound chat-completion request shapes, outbound envelopes and the
backend-native call derived from a request.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

Role = Literal["system", "user", "assistant"]
DEFAULT_ROLE: Role = "user"


def coerce_content(content: Any) -> str:
    """Coerce various content formats to a plain string."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
                continue
            if isinstance(part, dict):
                if isinstance(part.get("text"), str):
                    parts.append(part["text"])
                    continue
                if isinstance(part.get("content"), str):
                    parts.append(part["content"])
                    continue
        return "\n".join(parts)
    if isinstance(content, dict):
        text = content.get("text")
        if isinstance(text, str):
            return text
    return str(content)


class ConversationStyle(str, Enum):
    """Backend personality presets selectable per request."""

    CREATIVE = "Creative"
    BALANCED = "Balanced"
    PRECISE = "Precise"


DEFAULT_STYLE = ConversationStyle.CREATIVE


# --- Inbound Request Models ---


class ChatCompletionMessage(BaseModel):
    """A single message in a chat completion request."""

    model_config = ConfigDict(frozen=True)

    role: str = DEFAULT_ROLE
    content: str = ""

    @field_validator("role", mode="before")
    @classmethod
    def _role_or_default(cls, value: Any) -> str:
        return str(value) if value else DEFAULT_ROLE

    @field_validator("content", mode="before")
    @classmethod
    def _content_as_text(cls, value: Any) -> str:
        return coerce_content(value)


class ChatCompletionRequest(BaseModel):
    """OpenAI-style chat completion request accepted by the gateway."""

    model: str = ""
    action: Literal["next", "variant"] = "next"
    messages: list[ChatCompletionMessage] = Field(default_factory=list)
    stream: bool = False


# --- Outbound Response Models ---


class ChatCompletionChoiceMessage(BaseModel):
    """Assistant message inside a chat completion choice."""

    role: str = "assistant"
    content: str


class ChatCompletionChoice(BaseModel):
    """A single choice; ``delta`` is only set on streamed frames."""

    delta: ChatCompletionChoiceMessage | None = None
    message: ChatCompletionChoiceMessage


class ChatCompletionResponse(BaseModel):
    """Chat completion envelope, used for both the aggregate body and SSE frames."""

    choices: list[ChatCompletionChoice]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str


# --- Backend call ---


@dataclass(frozen=True)
class BackendCall:
    """Backend-native call derived once from an inbound request."""

    prompt: str
    context: str
    stream: bool
    allow_search: bool
    style_hint: str
