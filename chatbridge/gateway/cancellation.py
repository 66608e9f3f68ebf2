"""Link the inbound transport's disconnect signal to backend cancellation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class CancellationBridge:
    """One-shot cancellation for a single backend call.

    ``token`` is handed to the backend. ``fire`` sets it and invokes the
    observer registered with ``arm``; repeated fires, and fires after
    ``finish``, do nothing.
    """

    def __init__(self) -> None:
        self.token = asyncio.Event()
        self.reason: str | None = None
        self._observer: Callable[[], None] | None = None
        self._finished = False

    @property
    def fired(self) -> bool:
        return self.token.is_set()

    @property
    def finished(self) -> bool:
        return self._finished

    def arm(self, observer: Callable[[], None]) -> None:
        if self._observer is not None:
            raise RuntimeError("CancellationBridge is already armed")
        self._observer = observer

    def fire(self, reason: str = "client disconnected") -> bool:
        """Signal cancellation. Returns ``True`` only for the call that took effect."""
        if self.finished or self.fired:
            return False
        self.reason = reason
        self.token.set()
        logger.info("Cancelling backend call: %s", reason)
        if self._observer is not None:
            self._observer()
        return True

    def finish(self) -> None:
        self._finished = True

    async def watch(
        self,
        is_disconnected: Callable[[], Awaitable[bool]],
        interval: float,
    ) -> None:
        """Poll ``is_disconnected`` until it reports a disconnect or the call finishes."""
        while not self.finished and not self.fired:
            if await is_disconnected():
                self.fire()
                return
            await asyncio.sleep(interval)
