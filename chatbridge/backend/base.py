"""Abstract conversational backend interface and event dataclasses."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chatbridge.core.config import GatewayConfig
    from chatbridge.core.types import ConversationStyle

UPDATE_ANSWER = "UPDATE_ANSWER"


@dataclass(frozen=True)
class BackendEvent:
    """One event from the backend stream.

    For ``UPDATE_ANSWER`` events ``text`` is the cumulative answer so far,
    not a delta.
    """

    type: str
    text: str = ""

    @property
    def is_text_update(self) -> bool:
        return self.type == UPDATE_ANSWER and bool(self.text)


@dataclass(frozen=True)
class BackendOptions:
    """Mode flags sent alongside the prompt."""

    allow_search: bool
    style: ConversationStyle


EventHandler = Callable[[BackendEvent], Awaitable[None]]


class ConversationBackend(ABC):
    """Abstract base for conversational backends.

    A backend is created per request with the origin it should talk to.
    """

    def __init__(self, cfg: GatewayConfig, *, endpoint: str) -> None:
        self._cfg = cfg
        self.endpoint = endpoint.rstrip("/")

    @abstractmethod
    async def send_message(
        self,
        *,
        prompt: str,
        context: str,
        options: BackendOptions,
        cancel: asyncio.Event,
        on_event: EventHandler,
    ) -> None:
        """Send one message and await ``on_event`` for every event received.

        Returns when the backend stream ends; raises on backend failure.
        Implementations should stop promptly once ``cancel`` is set.
        """

    async def aclose(self) -> None:
        """Release any per-request resources. Default is a no-op."""
