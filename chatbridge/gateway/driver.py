"""Drive one backend call and re-envelope its event stream.

The backend runs as its own task and hands events to the driver through a
bounded queue; the driver is the only consumer and the only writer of
frames. Lifecycle::

    INIT -> CALLING -> (UPDATING)* -> FINALIZING -> DONE

``DONE`` is reached exactly once, whether the backend completed, failed or
was cancelled by a client disconnect.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing, suppress
from dataclasses import dataclass
from enum import Enum

from chatbridge.backend.base import BackendEvent, BackendOptions, ConversationBackend
from chatbridge.core.types import BackendCall, ChatCompletionResponse

from .cancellation import CancellationBridge
from .delta import DeltaTracker
from .formatter import DONE_FRAME, delta_frame, message_envelope
from .translator import coerce_style

logger = logging.getLogger(__name__)


class DriverState(str, Enum):
    INIT = "init"
    CALLING = "calling"
    UPDATING = "updating"
    FINALIZING = "finalizing"
    DONE = "done"


@dataclass(frozen=True)
class _Completed:
    """Queue sentinel: the backend call returned or raised."""

    error: Exception | None = None


def describe_error(error: BaseException) -> str:
    message = str(error)
    return f"{type(error).__name__}: {message}" if message else type(error).__name__


class StreamDriver:
    """Run a :class:`BackendCall` against a backend and render its output.

    Use :meth:`stream` for SSE responses or :meth:`collect` for a single
    aggregate reply; a driver runs once.
    """

    def __init__(
        self,
        backend: ConversationBackend,
        call: BackendCall,
        *,
        bridge: CancellationBridge | None = None,
        queue_size: int = 1,
    ) -> None:
        self._backend = backend
        self._call = call
        self.bridge = bridge or CancellationBridge()
        self.tracker = DeltaTracker()
        self.state = DriverState.INIT
        self._queue: asyncio.Queue[BackendEvent | _Completed] = asyncio.Queue(
            maxsize=max(1, queue_size),
        )
        self._task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Backend side
    # ------------------------------------------------------------------

    def _begin(self) -> None:
        if self.state is not DriverState.INIT:
            raise RuntimeError(f"StreamDriver already started (state={self.state.value})")
        options = BackendOptions(
            allow_search=self._call.allow_search,
            style=coerce_style(self._call.style_hint),
        )
        logger.debug(
            "Calling backend style=%s allow_search=%s stream=%s",
            options.style.value,
            options.allow_search,
            self._call.stream,
        )
        self.state = DriverState.CALLING
        self._task = asyncio.create_task(self._invoke(options))
        self.bridge.arm(self._task.cancel)

    async def _on_event(self, event: BackendEvent) -> None:
        await self._queue.put(event)

    async def _invoke(self, options: BackendOptions) -> None:
        error: Exception | None = None
        try:
            await self._backend.send_message(
                prompt=self._call.prompt,
                context=self._call.context,
                options=options,
                cancel=self.bridge.token,
                on_event=self._on_event,
            )
        except Exception as exc:
            logger.exception("Backend call failed")
            error = exc
        await self._queue.put(_Completed(error))

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    async def _deltas(self) -> AsyncIterator[str]:
        """Yield each newly produced suffix, then the error text if the call failed."""
        cancelled = asyncio.ensure_future(self.bridge.token.wait())
        getter: asyncio.Future[BackendEvent | _Completed] | None = None
        try:
            while True:
                getter = asyncio.ensure_future(self._queue.get())
                await asyncio.wait({getter, cancelled}, return_when=asyncio.FIRST_COMPLETED)
                if self.bridge.fired:
                    return
                item = getter.result()
                if isinstance(item, _Completed):
                    if item.error is not None:
                        yield self.tracker.merge_terminal(describe_error(item.error))
                    return
                if not item.is_text_update:
                    continue
                self.state = DriverState.UPDATING
                delta, advanced = self.tracker.compute_delta(item.text)
                if advanced:
                    yield delta
        finally:
            cancelled.cancel()
            if getter is not None:
                getter.cancel()

    async def _finish(self) -> None:
        if self.state is DriverState.DONE:
            return
        self.state = DriverState.DONE
        self.bridge.finish()
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        logger.info(
            "Backend call finished chars=%d cancelled=%s",
            len(self.tracker.last_cumulative_text),
            self.bridge.fired,
        )

    async def stream(self) -> AsyncIterator[str]:
        """Yield SSE frames: one per text advance, then the ``[DONE]`` terminator.

        Closing the iterator early counts as a client disconnect.
        """
        self._begin()
        drained = False
        try:
            async with aclosing(self._deltas()) as deltas:
                async for delta in deltas:
                    yield delta_frame(delta)
            drained = True
            self.state = DriverState.FINALIZING
            if not self.bridge.fired:
                yield DONE_FRAME
        finally:
            if not drained:
                self.bridge.fire("client disconnected")
            await self._finish()

    async def collect(self) -> ChatCompletionResponse | None:
        """Run the call to completion and return the aggregate reply.

        Returns ``None`` when the call was cancelled, since nobody is left to
        read the reply.
        """
        self._begin()
        drained = False
        try:
            async with aclosing(self._deltas()) as deltas:
                async for _ in deltas:
                    pass
            drained = True
            self.state = DriverState.FINALIZING
        finally:
            if not drained:
                self.bridge.fire("request cancelled")
            await self._finish()
        if self.bridge.fired:
            return None
        return message_envelope(self.tracker.last_cumulative_text)
