"""HTTP event-stream conversation backend.

POSTs the backend call as JSON to ``<endpoint><backend_url_path>`` and reads
the response as ``data:`` lines, each a JSON event such as::

    data: {"type": "UPDATE_ANSWER", "data": {"text": "Hel"}}

Session handling, upstream auth and retries are the upstream's business.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

from .base import BackendEvent, BackendOptions, ConversationBackend, EventHandler

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared httpx client
# ---------------------------------------------------------------------------

_backend_client: httpx.AsyncClient | None = None


def _get_backend_client() -> httpx.AsyncClient:
    global _backend_client  # noqa: PLW0603
    if _backend_client is None:
        _backend_client = httpx.AsyncClient(timeout=httpx.Timeout(None, connect=10.0))
    return _backend_client


def parse_event_line(line: str) -> BackendEvent | None:
    """Parse one ``data:`` line into a :class:`BackendEvent`.

    Returns ``None`` for blank lines, comments, non-data fields, the
    ``[DONE]`` sentinel and payloads that are not JSON objects.
    """
    if not line.startswith("data:"):
        return None
    payload = line[len("data:"):].strip()
    if not payload or payload == "[DONE]":
        return None
    try:
        raw = json.loads(payload)
    except json.JSONDecodeError:
        logger.debug("Skipping non-JSON backend line: %r", payload[:200])
        return None
    if not isinstance(raw, dict):
        return None
    data = raw.get("data")
    text: Any = data.get("text") if isinstance(data, dict) else raw.get("text")
    return BackendEvent(type=str(raw.get("type", "")), text=text if isinstance(text, str) else "")


class HttpEventStreamBackend(ConversationBackend):
    """Backend that forwards each call to an upstream HTTP event stream."""

    def _url(self) -> str:
        return f"{self.endpoint}{self._cfg.backend_url_path}"

    async def send_message(
        self,
        *,
        prompt: str,
        context: str,
        options: BackendOptions,
        cancel: asyncio.Event,
        on_event: EventHandler,
    ) -> None:
        client = _get_backend_client()
        body: dict[str, Any] = {
            "prompt": prompt,
            "context": context,
            "allowSearch": options.allow_search,
            "style": options.style.value,
        }
        async with client.stream(
            "POST",
            self._url(),
            json=body,
            headers={"Accept": "text/event-stream"},
        ) as resp:
            resp.raise_for_status()
            async for line in resp.aiter_lines():
                if cancel.is_set():
                    logger.debug("Backend stream cancelled for %s", self._url())
                    return
                event = parse_event_line(line)
                if event is not None:
                    await on_event(event)
