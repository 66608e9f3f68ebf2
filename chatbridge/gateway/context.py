"""Render prior conversation turns as backend-native context."""

from __future__ import annotations

from collections.abc import Sequence

from chatbridge.core.types import DEFAULT_ROLE, ChatCompletionMessage

_KNOWN_ROLES = frozenset({"system", "user", "assistant"})


def _render(message: ChatCompletionMessage) -> str:
    role = message.role if message.role in _KNOWN_ROLES else DEFAULT_ROLE
    return f"[{role}](#message)\n{message.content.strip()}\n"


def messages_to_context(messages: Sequence[ChatCompletionMessage], limit: int = 32000) -> str:
    """Render ``messages`` oldest first, keeping the newest that fit in ``limit`` chars.

    Each entry is ``[<role>](#message)`` followed by the stripped content;
    entries are separated by a blank line. Unknown roles render as the
    default role.
    """
    kept: list[str] = []
    used = 0
    for message in reversed(messages):
        entry = _render(message)
        if used + len(entry) > limit:
            break
        kept.append(entry)
        used += len(entry) + 1
    kept.reverse()
    return "\n".join(kept)
